"""Audit log endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.dependencies import get_db
from db.enums import AuditEventType
from ucr.services.audit import AuditLog

router = APIRouter(prefix="/api", tags=["audit"])


@router.get("/orgs/{organization_id}/audit")
def list_audit_events(
    organization_id: str,
    rule_id: str | None = Query(None),
    since: str | None = Query(None),
    until: str | None = Query(None),
    event_type: list[AuditEventType] | None = Query(None),
    db: Session = Depends(get_db),
):
    return AuditLog(db).events(
        organization_id, rule_id=rule_id, since=since, until=until, event_types=event_type
    )


@router.get("/orgs/{organization_id}/audit/recent")
def recent_audit_events(
    organization_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return AuditLog(db).recent(organization_id, limit=limit)
