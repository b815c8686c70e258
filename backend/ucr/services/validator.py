"""Structural and semantic validation of rule drafts."""

import re

import structlog
from sqlalchemy.orm import Session

from ucr.services._helpers import smart_code_family, smart_code_version
from ucr.services.guardrails import DESCRIPTION_REQUIRED
from ucr.services.payload import parse_payload
from ucr.services.rule_store import RuleStore
from ucr.services.schemas.results import ValidationResult
from ucr.services.schemas.rules import Rule, RuleDraft

logger = structlog.get_logger(__name__)

SMART_CODE_PATTERN = re.compile(r"^HERA\.[A-Z]+(\.[A-Z0-9_]+){2,}\.v[0-9]+$")

SMART_CODE_ERROR = "Smart code must match pattern HERA.<DOMAIN>.<MODULE...>.v<N>"
NO_TAGS_WARNING = "Consider adding tags for better searchability"
NO_EXCEPTIONS_WARNING = "No exceptions defined - consider VIP/special cases"


class RuleValidator:
    """Validates drafts. Reads the rule store for the active version, never writes."""

    def __init__(self, session: Session, store: RuleStore | None = None) -> None:
        self.session: Session = session
        self.store: RuleStore = store or RuleStore(session)

    def validate(
        self,
        draft: RuleDraft,
        organization_id: str,
        *,
        exclude_rule_id: str | None = None,
    ) -> ValidationResult:
        """Validate ``draft`` for ``organization_id``.

        ``exclude_rule_id`` skips the rule being re-validated when it is itself
        the active row of its family.
        """
        errors: list[str] = []
        warnings: list[str] = []

        if not SMART_CODE_PATTERN.match(draft.smart_code or ""):
            errors.append(SMART_CODE_ERROR)

        payload = draft.rule_payload if isinstance(draft.rule_payload, dict) else {}
        description: object = payload.get("description")
        if not isinstance(description, str) or not description.strip():
            errors.append(DESCRIPTION_REQUIRED)
        model, shape_errors = parse_payload(payload)
        errors.extend(shape_errors)

        if draft.organization_id != organization_id:
            errors.append("Organization ID mismatch")

        if SMART_CODE_PATTERN.match(draft.smart_code or ""):
            version: int = draft.version or smart_code_version(draft.smart_code)
            candidate: tuple[int, int] = (version, draft.minor_version)
            active: Rule | None = self.store.active_rule(
                organization_id, smart_code_family(draft.smart_code)
            )
            if (
                active is not None
                and active.id != exclude_rule_id
                and active.version_identity >= candidate
            ):
                errors.append(
                    f"Version {version}.{draft.minor_version} already exists or is lower than "
                    f"current active version {active.version_label}"
                )

        if not draft.tags:
            warnings.append(NO_TAGS_WARNING)
        if model is None or not model.exceptions:
            warnings.append(NO_EXCEPTIONS_WARNING)

        result = ValidationResult(ok=not errors, errors=errors, warnings=warnings)
        logger.debug(
            "Rule validated",
            organization_id=organization_id,
            smart_code=draft.smart_code,
            ok=result.ok,
            error_count=len(errors),
        )
        return result

    def validate_rule(self, rule: Rule) -> ValidationResult:
        return self.validate(RuleDraft.from_rule(rule), rule.organization_id, exclude_rule_id=rule.id)
