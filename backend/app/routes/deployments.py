"""Lifecycle endpoints: submit, approve, deploy, deprecate, rollback and scheduling."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.dependencies import get_api_key, get_db
from app.schemas.deployments import (
    ApprovalIn,
    DeployRequest,
    DeprecateRequest,
    RollbackRequest,
    ScheduleRunRequest,
    SubmitRequest,
)
from db.enums import DeploymentStatus
from ucr.services._helpers import new_id, now_iso, parse_iso
from ucr.services.orchestrator import DeploymentOrchestrator
from ucr.services.schemas import Approval, DeploymentRequest, DeploymentScope

router = APIRouter(prefix="/api", tags=["deployments"])


def _approval(body: ApprovalIn) -> Approval:
    return Approval(
        user_id=body.user_id,
        user_name=body.user_name,
        role=body.role,
        approved_at=body.approved_at or now_iso(),
        notes=body.notes,
    )


@router.post("/orgs/{organization_id}/rules/{rule_id}/submit")
def submit_rule(
    organization_id: str,
    rule_id: str,
    body: SubmitRequest,
    db: Session = Depends(get_db),
    _key: str = Depends(get_api_key),
):
    return DeploymentOrchestrator(db).submit(
        organization_id, rule_id, body.actor, requires_approval=body.requires_approval
    )


@router.post("/orgs/{organization_id}/rules/{rule_id}/approve")
def approve_rule(
    organization_id: str,
    rule_id: str,
    body: ApprovalIn,
    db: Session = Depends(get_db),
    _key: str = Depends(get_api_key),
):
    return DeploymentOrchestrator(db).approve(organization_id, rule_id, _approval(body))


@router.post("/orgs/{organization_id}/rules/{rule_id}/deploy")
def deploy_rule(
    organization_id: str,
    rule_id: str,
    body: DeployRequest,
    db: Session = Depends(get_db),
    _key: str = Depends(get_api_key),
):
    request = DeploymentRequest(
        rule_id=rule_id,
        scope=DeploymentScope(
            apps=body.scope.apps,
            locations=body.scope.locations,
            segments=body.scope.segments,
        ),
        effective_from=body.effective_from,
        effective_to=body.effective_to,
        approvals=[_approval(a) for a in body.approvals],
        checklist=body.checklist,
        deployment_id=body.deployment_id or new_id(),
        actor=body.actor,
    )
    return DeploymentOrchestrator(db).deploy(organization_id, request)


@router.post("/orgs/{organization_id}/rules/{rule_id}/deprecate")
def deprecate_rule(
    organization_id: str,
    rule_id: str,
    body: DeprecateRequest,
    db: Session = Depends(get_db),
    _key: str = Depends(get_api_key),
):
    return DeploymentOrchestrator(db).deprecate(organization_id, rule_id, body.actor, body.reason)


@router.post("/orgs/{organization_id}/rollback")
def rollback_rule(
    organization_id: str,
    body: RollbackRequest,
    db: Session = Depends(get_db),
    _key: str = Depends(get_api_key),
):
    return DeploymentOrchestrator(db).rollback(
        organization_id,
        body.to_version,
        rule_id=body.rule_id,
        smart_code=body.smart_code,
        actor=body.actor,
        reason=body.reason,
        minor_version=body.minor_version,
    )


@router.get("/orgs/{organization_id}/deployments")
def list_deployments(
    organization_id: str,
    rule_id: str | None = Query(None),
    status: DeploymentStatus | None = Query(None),
    db: Session = Depends(get_db),
):
    return DeploymentOrchestrator(db).list_deployments(organization_id, rule_id, status)


@router.get("/orgs/{organization_id}/deployments/{deployment_id}")
def get_deployment(organization_id: str, deployment_id: str, db: Session = Depends(get_db)):
    return DeploymentOrchestrator(db).get_deployment(organization_id, deployment_id)


@router.post("/scheduler/run")
def run_scheduler(
    body: ScheduleRunRequest,
    db: Session = Depends(get_db),
    _key: str = Depends(get_api_key),
):
    """Activate due scheduled deployments and expire lapsed ones."""
    now = parse_iso(body.now) if body.now else None
    return DeploymentOrchestrator(db).activate_due(now, organization_id=body.organization_id)
