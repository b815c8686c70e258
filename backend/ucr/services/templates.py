"""Template catalog and cloning of templates into draft rules."""

import copy
import json
from collections.abc import Sequence
from pathlib import Path

import structlog
from sqlalchemy.orm import Session

from config import get_settings
from ucr.services._helpers import JsonDict, smart_code_version
from ucr.services.errors import TemplateNotFound, ValidationFailed
from ucr.services.rule_store import RuleStore
from ucr.services.schemas.rules import Rule, RuleDraft, Template
from ucr.services.validator import SMART_CODE_ERROR, SMART_CODE_PATTERN

logger = structlog.get_logger(__name__)

TEMPLATE_PROVENANCE: JsonDict = {
    "ai_confidence": 0.95,
    "ai_insights": ["Template-based creation"],
    "model_version": "ucr-template-1.0",
}

BUILTIN_TEMPLATES: tuple[Template, ...] = (
    Template(
        template_id="T_APPT_CANCEL",
        industry="HOSPITALITY",
        module="SALON",
        smart_code="HERA.HOSPITALITY.SALON.APPOINTMENT.CANCEL_POLICY.v1",
        title="Salon Appointment Cancellation Policy",
        rule_payload={
            "description": "Standard salon cancellation policy with grace periods and fees",
            "definitions": {
                "grace_minutes": 15,
                "no_show_fee_pct": 100,
                "late_cancel_threshold_minutes": 120,
                "late_cancel_fee_pct": 50,
            },
            "exceptions": [
                {
                    "if": {"customer_tier": "VIP"},
                    "then": {"late_cancel_fee_pct": 0, "no_show_fee_pct": 25},
                }
            ],
            "calendar_effects": {"block_future_bookings_on_no_show": True, "blocks_days": 1},
            "notifications": {"channels": ["SMS", "WHATSAPP"], "template": "SALON_CANCEL_POLICY_V1"},
        },
    ),
    Template(
        template_id="T_POS_DISCOUNT",
        industry="HOSPITALITY",
        module="SALON",
        smart_code="HERA.HOSPITALITY.SALON.POS.DISCOUNT_CAP.v1",
        title="POS Discount Cap Rules",
        rule_payload={
            "description": "Maximum discount limits for POS transactions",
            "definitions": {
                "max_discount_pct": 30,
                "max_discount_amount": 500,
                "requires_approval_above": 20,
            },
            "exceptions": [
                {"if": {"staff_role": "MANAGER"}, "then": {"max_discount_pct": 50}},
                {"if": {"customer_tier": "VIP"}, "then": {"max_discount_pct": 40}},
            ],
        },
    ),
    Template(
        template_id="T_BOOKING_WINDOW",
        industry="HOSPITALITY",
        module="RESTAURANT",
        smart_code="HERA.HOSPITALITY.RESTAURANT.RESERVATION.BOOKING_WINDOW.v1",
        title="Restaurant Booking Window Rules",
        rule_payload={
            "description": "Advance booking windows by customer type",
            "definitions": {
                "standard_advance_days": 30,
                "vip_advance_days": 90,
                "min_lead_hours": 2,
            },
            "peak_periods": [
                {"dates": ["2025-12-24", "2025-12-25"], "min_lead_hours": 24},
                {"dates": ["2025-12-31"], "min_lead_hours": 48},
            ],
        },
    ),
)


def _template_from_dict(data: dict[str, object], source: Path) -> Template:
    missing = [
        k for k in ("template_id", "industry", "module", "smart_code", "title", "rule_payload")
        if k not in data
    ]
    if missing:
        raise ValueError(f"Template file {source} is missing {', '.join(missing)}")
    payload: object = data["rule_payload"]
    if not isinstance(payload, dict):
        raise ValueError(f"Template file {source}: rule_payload must be an object")
    return Template(
        template_id=str(data["template_id"]),
        industry=str(data["industry"]).upper(),
        module=str(data["module"]).upper(),
        smart_code=str(data["smart_code"]),
        title=str(data["title"]),
        rule_payload=dict(payload),
    )


def load_templates_dir(directory: Path) -> list[Template]:
    """Read ``*.json`` files; each holds one template object or a list of them."""
    templates: list[Template] = []
    for path in sorted(directory.glob("*.json")):
        raw: object = json.loads(path.read_text(encoding="utf-8"))
        items: list[object] = raw if isinstance(raw, list) else [raw]
        for item in items:
            if not isinstance(item, dict):
                raise ValueError(f"Template file {path} must contain objects")
            templates.append(_template_from_dict(item, path))
    logger.info("Templates loaded", directory=str(directory), count=len(templates))
    return templates


class TemplateLibrary:
    """Built-in templates plus any loaded from the configured directory."""

    def __init__(
        self,
        session: Session | None = None,
        templates_dir: Path | None = None,
        extra: Sequence[Template] = (),
    ) -> None:
        self.session: Session | None = session
        directory: Path | None = templates_dir or get_settings().ucr.templates_dir
        catalog: dict[str, Template] = {t.template_id: t for t in BUILTIN_TEMPLATES}
        if directory is not None and directory.is_dir():
            catalog.update({t.template_id: t for t in load_templates_dir(directory)})
        catalog.update({t.template_id: t for t in extra})
        self._catalog: dict[str, Template] = catalog

    def list_templates(self, industry: str | None = None, module: str | None = None) -> list[Template]:
        """Matching templates, payloads copied so callers cannot alter the catalog."""
        result: list[Template] = []
        for t in self._catalog.values():
            if industry and t.industry != industry.upper():
                continue
            if module and t.module != module.upper():
                continue
            result.append(
                Template(
                    template_id=t.template_id,
                    industry=t.industry,
                    module=t.module,
                    smart_code=t.smart_code,
                    title=t.title,
                    rule_payload=copy.deepcopy(t.rule_payload),
                )
            )
        return result

    def get_template(self, template_id: str) -> Template:
        template: Template | None = self._catalog.get(template_id)
        if template is None:
            raise TemplateNotFound(f"Template {template_id} not found")
        return template

    def clone(
        self,
        organization_id: str,
        template_id: str,
        target_smart_code: str | None = None,
        actor: str = "system",
    ) -> Rule:
        """New draft rule carrying a deep copy of the template payload."""
        if self.session is None:
            raise RuntimeError("TemplateLibrary.clone needs a database session")
        template: Template = self.get_template(template_id)
        smart_code: str = target_smart_code or template.smart_code
        if not SMART_CODE_PATTERN.match(smart_code):
            raise ValidationFailed(SMART_CODE_ERROR, [SMART_CODE_ERROR])

        draft = RuleDraft(
            organization_id=organization_id,
            smart_code=smart_code,
            title=template.title,
            rule_payload=copy.deepcopy(template.rule_payload),
            tags=["cloned", template.module.lower()],
            owner=actor,
            version=smart_code_version(smart_code),
            minor_version=0,
            ai_metadata={**copy.deepcopy(TEMPLATE_PROVENANCE), "source_template": template_id},
        )
        rule: Rule = RuleStore(self.session).create(
            organization_id,
            draft,
            actor,
            audit_metadata={"template_id": template_id},
        )
        logger.info(
            "Template cloned",
            organization_id=organization_id,
            template_id=template_id,
            rule_id=rule.id,
            smart_code=smart_code,
        )
        return rule
