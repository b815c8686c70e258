"""Rule persistence over the universal entity store."""

import copy
from collections.abc import Iterable, Mapping

import structlog
from sqlalchemy.orm import Session

from config import UCRSettings, get_settings
from db.enums import AuditEventType, EntityType, RuleStatus
from db.models import CoreEntities
from ucr.services._helpers import JsonDict, smart_code_version
from ucr.services.audit import AuditLog
from ucr.services.errors import DuplicateSmartCode, RuleNotFound, StateError, ValidationError
from ucr.services.payload import normalize_payload
from ucr.services.schemas.rules import Rule, RuleDraft, RuleFilters
from ucr.services.universal import UniversalStore

logger = structlog.get_logger(__name__)

RULE_PAYLOAD_FIELD = "rule_payload"
AI_METADATA_FIELD = "ai_metadata"


def normalize_tags(tags: Iterable[str]) -> list[str]:
    return sorted({t.strip() for t in tags if t and t.strip()})


def _int(value: object, default: int) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else default


class RuleStore:
    """Creates, reads and updates rules. Every call is scoped to one organization."""

    def __init__(self, session: Session, settings: UCRSettings | None = None) -> None:
        self.session: Session = session
        self.settings: UCRSettings = settings or get_settings().ucr
        self.audit: AuditLog = AuditLog(session)

    def _store(self, organization_id: str) -> UniversalStore:
        return UniversalStore(self.session, organization_id)

    # -- mapping -----------------------------------------------------------

    def _to_rule(self, store: UniversalStore, entity: CoreEntities) -> Rule:
        meta: JsonDict = store.entity_metadata(entity)
        fields: dict[str, object] = store.get_dynamic_fields(entity.id)
        payload: object = fields.get(RULE_PAYLOAD_FIELD)
        ai_meta: object = fields.get(AI_METADATA_FIELD)
        tags: object = meta.get("tags") or []
        approvals: object = meta.get("approvals") or []
        return Rule(
            id=entity.id,
            organization_id=entity.organization_id,
            smart_code=entity.smart_code,
            title=entity.entity_name,
            status=RuleStatus(entity.status),
            version=_int(meta.get("rule_version"), smart_code_version(entity.smart_code)),
            minor_version=_int(meta.get("minor_version"), 0),
            schema_version=_int(meta.get("schema_version"), 1),
            rule_payload=dict(payload) if isinstance(payload, dict) else {},
            ai_metadata=dict(ai_meta) if isinstance(ai_meta, dict) else None,
            tags=[str(t) for t in tags] if isinstance(tags, list) else [],
            owner=str(meta.get("owner") or "system"),
            requires_approval=bool(meta.get("requires_approval", True)),
            approvals=[dict(a) for a in approvals if isinstance(a, dict)]
            if isinstance(approvals, list)
            else [],
            predecessor_id=str(meta["predecessor_id"]) if meta.get("predecessor_id") else None,
            version_notes=str(meta["version_notes"]) if meta.get("version_notes") else None,
            created_by=entity.created_by,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    @staticmethod
    def _metadata(rule: Rule) -> JsonDict:
        return {
            "rule_version": rule.version,
            "minor_version": rule.minor_version,
            "schema_version": rule.schema_version,
            "tags": list(rule.tags),
            "owner": rule.owner,
            "smart_code_family": rule.family,
            "requires_approval": rule.requires_approval,
            "approvals": list(rule.approvals),
            "predecessor_id": rule.predecessor_id,
            "version_notes": rule.version_notes,
        }

    # -- writes ------------------------------------------------------------

    def create(
        self,
        organization_id: str,
        draft: RuleDraft,
        actor: str = "system",
        *,
        predecessor_id: str | None = None,
        version_notes: str | None = None,
        audit_event: AuditEventType = AuditEventType.CREATED,
        audit_metadata: Mapping[str, object] | None = None,
    ) -> Rule:
        if draft.organization_id != organization_id:
            raise ValidationError("Organization ID mismatch", ["Organization ID mismatch"])
        store: UniversalStore = self._store(organization_id)
        version: int = draft.version or smart_code_version(draft.smart_code)
        identity: tuple[int, int] = (version, draft.minor_version)

        for existing in self._load(
            store, smart_codes=[draft.smart_code], statuses=[RuleStatus.ACTIVE.value]
        ):
            # a strictly newer minor of the active code is a bump, anything else is a duplicate
            if existing.version_identity >= identity:
                raise DuplicateSmartCode(
                    f"Active rule {existing.id} already uses {draft.smart_code} "
                    f"version {existing.version_label}"
                )

        rule = Rule(
            id="",
            organization_id=organization_id,
            smart_code=draft.smart_code,
            title=draft.title,
            status=RuleStatus.DRAFT,
            version=version,
            minor_version=draft.minor_version,
            schema_version=draft.schema_version,
            rule_payload=normalize_payload(draft.rule_payload),
            ai_metadata=copy.deepcopy(draft.ai_metadata),
            tags=normalize_tags(draft.tags),
            owner=draft.owner,
            requires_approval=(
                draft.requires_approval
                if draft.requires_approval is not None
                else self.settings.default_requires_approval
            ),
            predecessor_id=predecessor_id,
            version_notes=version_notes,
            created_by=actor,
        )
        entity: CoreEntities = store.create_entity(
            entity_type=EntityType.RULE.value,
            entity_name=rule.title,
            entity_code=rule.family,
            smart_code=rule.smart_code,
            status=rule.status.value,
            metadata=self._metadata(rule),
            created_by=actor,
        )
        store.set_dynamic_field(entity.id, RULE_PAYLOAD_FIELD, rule.rule_payload)
        if rule.ai_metadata is not None:
            store.set_dynamic_field(entity.id, AI_METADATA_FIELD, rule.ai_metadata)

        self.audit.record(
            organization_id,
            entity.id,
            audit_event,
            actor=actor,
            to_status=RuleStatus.DRAFT,
            metadata={
                "smart_code": rule.smart_code,
                "version": rule.version,
                "minor_version": rule.minor_version,
                **dict(audit_metadata or {}),
            },
        )
        logger.info(
            "Rule created",
            organization_id=organization_id,
            rule_id=entity.id,
            smart_code=rule.smart_code,
            version=rule.version_label,
        )
        return self._to_rule(store, entity)

    def update_status(self, organization_id: str, rule_id: str, new_status: RuleStatus) -> Rule:
        store: UniversalStore = self._store(organization_id)
        entity: CoreEntities = self._entity(store, rule_id)
        store.update_entity(entity.id, status=new_status.value)
        return self._to_rule(store, entity)

    def save(self, rule: Rule) -> Rule:
        """Persist bookkeeping fields (approvals, approval requirement, tags) of ``rule``."""
        store: UniversalStore = self._store(rule.organization_id)
        entity: CoreEntities = self._entity(store, rule.id)
        store.update_entity(
            entity.id,
            entity_name=rule.title,
            status=rule.status.value,
            metadata=self._metadata(rule),
        )
        return self._to_rule(store, entity)

    def update_draft(
        self,
        organization_id: str,
        rule_id: str,
        *,
        title: str | None = None,
        tags: Iterable[str] | None = None,
        rule_payload: Mapping[str, object] | None = None,
        actor: str = "system",
    ) -> Rule:
        store: UniversalStore = self._store(organization_id)
        rule: Rule = self._to_rule(store, self._entity(store, rule_id))
        if rule.status != RuleStatus.DRAFT:
            raise StateError(f"Rule {rule_id} is {rule.status.value}; only drafts can be edited")

        changed: list[str] = []
        if title is not None and title != rule.title:
            rule.title = title
            changed.append("title")
        if tags is not None:
            new_tags = normalize_tags(tags)
            if new_tags != rule.tags:
                rule.tags = new_tags
                changed.append("tags")
        if rule_payload is not None:
            store.set_dynamic_field(rule.id, RULE_PAYLOAD_FIELD, normalize_payload(rule_payload))
            changed.append("rule_payload")
        rule = self.save(rule)

        if changed:
            self.audit.record(
                organization_id,
                rule.id,
                AuditEventType.UPDATED,
                actor=actor,
                from_status=RuleStatus.DRAFT,
                to_status=RuleStatus.DRAFT,
                metadata={"fields": changed},
            )
        return rule

    # -- reads -------------------------------------------------------------

    def _entity(self, store: UniversalStore, rule_id: str) -> CoreEntities:
        entity: CoreEntities | None = store.get_entity(rule_id, EntityType.RULE.value)
        if entity is None:
            raise RuleNotFound(f"Rule {rule_id} not found in organization {store.organization_id}")
        return entity

    def _load(self, store: UniversalStore, **criteria: object) -> list[Rule]:
        entities = store.find_entities(EntityType.RULE.value, **criteria)  # type: ignore[arg-type]
        return [self._to_rule(store, e) for e in entities]

    def get(
        self,
        organization_id: str,
        rule_id: str | None = None,
        smart_code: str | None = None,
    ) -> Rule:
        """By id, or by smart code: the active rule of that code if any, else the newest version."""
        store: UniversalStore = self._store(organization_id)
        if rule_id is not None:
            return self._to_rule(store, self._entity(store, rule_id))
        if not smart_code:
            raise ValidationError("rule_id or smart_code is required")
        rules: list[Rule] = self._load(store, smart_codes=[smart_code])
        if not rules:
            raise RuleNotFound(f"No rule with smart code {smart_code} in organization {organization_id}")
        active: list[Rule] = [r for r in rules if r.status == RuleStatus.ACTIVE]
        if active:
            return active[0]
        return max(rules, key=lambda r: (r.version_identity, r.created_at))

    def family_rules(self, organization_id: str, family: str) -> list[Rule]:
        """All versions of a smart-code family, oldest identity first."""
        store: UniversalStore = self._store(organization_id)
        rules: list[Rule] = self._load(store, smart_code_prefix=f"{family}.v")
        rules = [r for r in rules if r.family == family]
        return sorted(rules, key=lambda r: (r.version_identity, r.created_at))

    def active_rule(self, organization_id: str, family: str) -> Rule | None:
        active: list[Rule] = [
            r for r in self.family_rules(organization_id, family) if r.status == RuleStatus.ACTIVE
        ]
        return active[-1] if active else None

    def list_rules(self, organization_id: str, filters: RuleFilters | None = None) -> list[Rule]:
        filters = filters or RuleFilters()
        store: UniversalStore = self._store(organization_id)
        rules: list[Rule] = self._load(
            store,
            smart_codes=[filters.smart_code] if filters.smart_code else None,
            statuses=[filters.status.value] if filters.status else None,
            smart_code_prefix=f"{filters.family}.v" if filters.family else None,
        )
        if filters.family:
            rules = [r for r in rules if r.family == filters.family]
        if not filters.include_deprecated:
            rules = [r for r in rules if r.status != RuleStatus.DEPRECATED]
        if filters.tags:
            wanted: set[str] = set(normalize_tags(filters.tags))
            rules = [r for r in rules if wanted.issubset(r.tags)]
        if filters.query:
            needle: str = filters.query.strip().lower()
            rules = [r for r in rules if needle in _search_text(r)]
        if filters.limit is not None:
            rules = rules[: filters.limit]
        return rules

    def search(
        self,
        organization_id: str,
        query: str,
        *,
        tags: Iterable[str] = (),
        include_deprecated: bool = False,
        limit: int | None = None,
    ) -> list[Rule]:
        return self.list_rules(
            organization_id,
            RuleFilters(
                query=query,
                tags=list(tags),
                include_deprecated=include_deprecated,
                limit=limit,
            ),
        )


def _search_text(rule: Rule) -> str:
    description: object = rule.rule_payload.get("description", "")
    parts: list[str] = [rule.title, rule.smart_code, str(description), *rule.tags]
    return " ".join(parts).lower()

