"""Rule authoring endpoints: CRUD, validation, simulation and versioning."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.dependencies import get_api_key, get_db
from app.schemas.rules import (
    BumpRequest,
    PayloadCheck,
    RuleCreate,
    RuleSearch,
    RuleUpdate,
    SimulateRequest,
)
from db.enums import RuleStatus
from ucr.services.errors import ValidationFailed
from ucr.services.guardrails import validate_payload
from ucr.services.orchestrator import DeploymentOrchestrator
from ucr.services.rule_store import RuleStore
from ucr.services.schemas import RuleDraft, RuleFilters, Scenario
from ucr.services.simulation import SimulationEngine
from ucr.services.validator import RuleValidator
from ucr.services.versioning import VersionManager

router = APIRouter(prefix="/api", tags=["rules"])


def _draft(organization_id: str, body: RuleCreate) -> RuleDraft:
    return RuleDraft(
        organization_id=organization_id,
        smart_code=body.smart_code,
        title=body.title,
        rule_payload=body.rule_payload,
        tags=body.tags,
        owner=body.owner or body.actor,
        version=body.version,
        minor_version=body.minor_version,
        schema_version=body.schema_version,
        ai_metadata=body.ai_metadata,
        requires_approval=body.requires_approval,
    )


@router.get("/orgs/{organization_id}/rules")
def list_rules(
    organization_id: str,
    status: RuleStatus | None = Query(None),
    family: str | None = Query(None),
    smart_code: str | None = Query(None),
    tag: list[str] | None = Query(None),
    q: str | None = Query(None),
    include_deprecated: bool = Query(True),
    limit: int | None = Query(None, ge=1, le=500),
    db: Session = Depends(get_db),
):
    filters = RuleFilters(
        status=status,
        family=family,
        smart_code=smart_code,
        tags=tag or [],
        query=q,
        include_deprecated=include_deprecated,
        limit=limit,
    )
    return RuleStore(db).list_rules(organization_id, filters)


@router.post("/orgs/{organization_id}/rules/search")
def search_rules(organization_id: str, body: RuleSearch, db: Session = Depends(get_db)):
    return RuleStore(db).search(
        organization_id,
        body.query,
        tags=body.tags,
        include_deprecated=body.include_deprecated,
        limit=body.limit,
    )


@router.get("/orgs/{organization_id}/rules/by-code/{smart_code}")
def get_rule_by_code(organization_id: str, smart_code: str, db: Session = Depends(get_db)):
    return RuleStore(db).get(organization_id, smart_code=smart_code)


@router.get("/orgs/{organization_id}/rules/{rule_id}")
def get_rule(organization_id: str, rule_id: str, db: Session = Depends(get_db)):
    return RuleStore(db).get(organization_id, rule_id=rule_id)


@router.post("/orgs/{organization_id}/rules", status_code=201)
def create_rule(
    organization_id: str,
    body: RuleCreate,
    db: Session = Depends(get_db),
    _key: str = Depends(get_api_key),
):
    store = RuleStore(db)
    draft = _draft(organization_id, body)
    result = RuleValidator(db, store).validate(draft, organization_id)
    if not result.ok:
        raise ValidationFailed("Rule failed validation", result.errors)
    return store.create(organization_id, draft, body.actor)


@router.patch("/orgs/{organization_id}/rules/{rule_id}")
def update_rule(
    organization_id: str,
    rule_id: str,
    body: RuleUpdate,
    db: Session = Depends(get_db),
    _key: str = Depends(get_api_key),
):
    return RuleStore(db).update_draft(
        organization_id,
        rule_id,
        title=body.title,
        tags=body.tags,
        rule_payload=body.rule_payload,
        actor=body.actor,
    )


@router.post("/orgs/{organization_id}/rules/validate")
def validate_draft(organization_id: str, body: RuleCreate, db: Session = Depends(get_db)):
    """Dry-run validation of an unsaved rule."""
    return RuleValidator(db).validate(_draft(organization_id, body), organization_id)


@router.post("/orgs/{organization_id}/rules/{rule_id}/validate")
def validate_rule(
    organization_id: str,
    rule_id: str,
    actor: str = Query("system"),
    db: Session = Depends(get_db),
    _key: str = Depends(get_api_key),
):
    return DeploymentOrchestrator(db).validate(organization_id, rule_id, actor)


@router.post("/orgs/{organization_id}/validate-payload")
def check_payload(organization_id: str, body: PayloadCheck):
    return validate_payload(body.rule_payload)


@router.post("/orgs/{organization_id}/simulate")
def simulate(organization_id: str, body: SimulateRequest, db: Session = Depends(get_db)):
    scenarios = [
        Scenario(scenario_id=s.scenario_id, context=s.context, expected=s.expected)
        for s in body.scenarios
    ]
    draft = _draft(organization_id, body.draft) if body.draft is not None else None
    return SimulationEngine(db).simulate(
        organization_id,
        scenarios,
        rule_id=body.rule_id,
        draft=draft,
        baseline_rule_id=body.baseline_rule_id,
    )


@router.post("/orgs/{organization_id}/rules/{rule_id}/bump")
def bump_version(
    organization_id: str,
    rule_id: str,
    body: BumpRequest,
    db: Session = Depends(get_db),
    _key: str = Depends(get_api_key),
):
    return VersionManager(db).bump_version(
        organization_id, rule_id, body.change_type, body.notes, body.actor
    )


@router.get("/orgs/{organization_id}/diff")
def diff_rules(
    organization_id: str,
    base_rule_id: str = Query(...),
    new_rule_id: str = Query(...),
    db: Session = Depends(get_db),
):
    return VersionManager(db).diff(organization_id, base_rule_id, new_rule_id)


@router.get("/orgs/{organization_id}/families/{family}/history")
def version_history(organization_id: str, family: str, db: Session = Depends(get_db)):
    return VersionManager(db).history(organization_id, family)
