"""Append-only audit log of rule lifecycle events."""

from collections.abc import Mapping, Sequence
from datetime import datetime

import structlog
from sqlalchemy import Select
from sqlalchemy.orm import Session

from db.enums import AuditEventType, RuleStatus
from db.models import UcrAuditEvents
from ucr.services._helpers import dump_json, load_json, new_id, now_iso, to_iso
from ucr.services.schemas.deployments import AuditEvent
from ucr.services.universal import UniversalStore

logger = structlog.get_logger(__name__)


def _to_event(row: UcrAuditEvents) -> AuditEvent:
    return AuditEvent(
        id=row.id,
        organization_id=row.organization_id,
        rule_id=row.rule_id,
        event_type=AuditEventType(row.event_type),
        actor=row.actor,
        from_status=RuleStatus(row.from_status) if row.from_status else None,
        to_status=RuleStatus(row.to_status) if row.to_status else None,
        metadata=load_json(row.metadata_json) or {},
        created_at=row.created_at,
    )


class AuditLog:
    """Writes and reads audit events. There is no update or delete path."""

    def __init__(self, session: Session) -> None:
        self.session: Session = session

    def record(
        self,
        organization_id: str,
        rule_id: str,
        event_type: AuditEventType,
        *,
        actor: str = "system",
        from_status: RuleStatus | None = None,
        to_status: RuleStatus | None = None,
        metadata: Mapping[str, object] | None = None,
    ) -> AuditEvent:
        row = UcrAuditEvents(
            id=new_id(),
            organization_id=organization_id,
            rule_id=rule_id,
            event_type=event_type.value,
            actor=actor,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value if to_status else None,
            metadata_json=dump_json(dict(metadata or {})),
            created_at=now_iso(),
        )
        self.session.add(row)
        UniversalStore(self.session, organization_id).flush()
        logger.info(
            "Audit event recorded",
            organization_id=organization_id,
            rule_id=rule_id,
            event_type=event_type.value,
            from_status=row.from_status,
            to_status=row.to_status,
        )
        return _to_event(row)

    def events(
        self,
        organization_id: str,
        rule_id: str | None = None,
        since: str | datetime | None = None,
        until: str | datetime | None = None,
        event_types: Sequence[AuditEventType] | None = None,
    ) -> list[AuditEvent]:
        """Events in chronological order; ``since``/``until`` are inclusive."""
        stmt: Select = UniversalStore(self.session, organization_id).scoped(UcrAuditEvents)
        if rule_id is not None:
            stmt = stmt.where(UcrAuditEvents.rule_id == rule_id)
        if event_types:
            stmt = stmt.where(UcrAuditEvents.event_type.in_([e.value for e in event_types]))
        if since is not None:
            stmt = stmt.where(UcrAuditEvents.created_at >= to_iso(since))
        if until is not None:
            stmt = stmt.where(UcrAuditEvents.created_at <= to_iso(until))
        stmt = stmt.order_by(UcrAuditEvents.created_at, UcrAuditEvents.id)
        return [_to_event(r) for r in self.session.execute(stmt).scalars().all()]

    def recent(self, organization_id: str, limit: int = 50) -> list[AuditEvent]:
        """Newest first."""
        stmt: Select = (
            UniversalStore(self.session, organization_id)
            .scoped(UcrAuditEvents)
            .order_by(UcrAuditEvents.created_at.desc(), UcrAuditEvents.id.desc())
            .limit(limit)
        )
        return [_to_event(r) for r in self.session.execute(stmt).scalars().all()]
