"""Shared fixtures: in-memory SQLite DB with all tables, plus rule builders."""

from collections.abc import Callable, Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from config import UCRSettings
from db.models import Base
from ucr.services.events import TransitionEventBus
from ucr.services.orchestrator import DeploymentOrchestrator
from ucr.services.rule_store import RuleStore
from ucr.services.schemas import Approval, DeploymentRequest, Rule, RuleDraft

ORG = "org-salon-1"
OTHER_ORG = "org-salon-2"
FAMILY = "HERA.HOSPITALITY.SALON.APPOINTMENT.CANCEL_POLICY"

FULL_CHECKLIST: dict[str, bool] = {
    "tested": True,
    "reviewed": True,
    "approved": True,
    "documented": True,
    "backupPlan": True,
}

CANCEL_PAYLOAD: dict[str, object] = {
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
}


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    eng: Engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine: Engine) -> Generator[Session, None, None]:
    factory: sessionmaker[Session] = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    sess: Session = factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture()
def ucr_settings() -> UCRSettings:
    return UCRSettings(
        default_requires_approval=True,
        approver_roles=["manager", "owner", "admin"],
        enforce_open_period=True,
        simulation_max_workers=1,
        templates_dir=None,
    )


@pytest.fixture()
def bus() -> TransitionEventBus:
    return TransitionEventBus()


@pytest.fixture()
def store(session: Session, ucr_settings: UCRSettings) -> RuleStore:
    return RuleStore(session, ucr_settings)


@pytest.fixture()
def orchestrator(
    session: Session, ucr_settings: UCRSettings, bus: TransitionEventBus
) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(session, ucr_settings, events=bus)


def make_draft(
    smart_code: str = f"{FAMILY}.v1",
    *,
    organization_id: str = ORG,
    minor_version: int = 0,
    payload: dict[str, object] | None = None,
    tags: list[str] | None = None,
) -> RuleDraft:
    return RuleDraft(
        organization_id=organization_id,
        smart_code=smart_code,
        title="Salon cancellation policy",
        rule_payload=dict(payload if payload is not None else CANCEL_PAYLOAD),
        tags=tags if tags is not None else ["salon", "cancellation"],
        owner="owner-1",
        minor_version=minor_version,
    )


def manager_approval() -> Approval:
    return Approval(user_id="u-manager", user_name="Maria Manager", role="manager")


def deploy_request(rule_id: str, **overrides: object) -> DeploymentRequest:
    fields: dict[str, object] = {"rule_id": rule_id, "checklist": dict(FULL_CHECKLIST)}
    fields.update(overrides)
    return DeploymentRequest(**fields)  # type: ignore[arg-type]


@pytest.fixture()
def approved_rule(
    store: RuleStore, orchestrator: DeploymentOrchestrator
) -> Callable[..., Rule]:
    """Create a rule and move it to ``approved``."""

    def _make(smart_code: str = f"{FAMILY}.v1", **kwargs: object) -> Rule:
        organization_id = str(kwargs.get("organization_id", ORG))
        rule: Rule = store.create(organization_id, make_draft(smart_code, **kwargs), "author-1")  # type: ignore[arg-type]
        orchestrator.submit(organization_id, rule.id, "author-1")
        return orchestrator.approve(organization_id, rule.id, manager_approval())

    return _make


@pytest.fixture()
def active_rule(
    approved_rule: Callable[..., Rule], orchestrator: DeploymentOrchestrator
) -> Callable[..., Rule]:
    """Create a rule and deploy it immediately."""

    def _make(smart_code: str = f"{FAMILY}.v1", **kwargs: object) -> Rule:
        rule: Rule = approved_rule(smart_code, **kwargs)
        organization_id = str(kwargs.get("organization_id", ORG))
        orchestrator.deploy(organization_id, deploy_request(rule.id))
        return orchestrator.store.get(organization_id, rule_id=rule.id)

    return _make
