"""Tests for ucr.services.orchestrator: the rule lifecycle state machine."""

import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from conftest import FAMILY, FULL_CHECKLIST, ORG, OTHER_ORG, deploy_request, make_draft, manager_approval
from config import UCRSettings
from db.connection import install_sqlite_pragmas
from db.enums import AuditEventType, DeploymentStatus, RuleStatus
from db.models import Base, UcrActiveRules, UniversalTransactions
from ucr.services.audit import AuditLog
from ucr.services.errors import (
    ApprovalRequired,
    AuthorizationError,
    ChecklistIncomplete,
    ConflictError,
    DeploymentNotFound,
    SmartCodeConflict,
    StateError,
    ValidationFailed,
    VersionNotFound,
)
from ucr.services.events import TransitionEventBus
from ucr.services.locks import KeyedLock
from ucr.services.orchestrator import DeploymentOrchestrator
from ucr.services.rule_store import RuleStore
from ucr.services.schemas import (
    Approval,
    DeploymentRecord,
    DeploymentRequest,
    DeploymentScope,
    Rule,
    TransitionEvent,
)


def _active_ids(store: RuleStore, organization_id: str = ORG) -> list[str]:
    return [r.id for r in store.family_rules(organization_id, FAMILY) if r.status == RuleStatus.ACTIVE]


class TestSubmitAndApprove:
    def test_submit_moves_to_pending(
        self, store: RuleStore, orchestrator: DeploymentOrchestrator, session: Session
    ) -> None:
        rule: Rule = store.create(ORG, make_draft())
        submitted: Rule = orchestrator.submit(ORG, rule.id, "author-1")
        assert submitted.status == RuleStatus.PENDING_APPROVAL
        events = AuditLog(session).events(ORG, rule_id=rule.id, event_types=[AuditEventType.SUBMITTED])
        assert len(events) == 1
        assert events[0].from_status == RuleStatus.DRAFT

    def test_submit_without_approval_requirement(
        self, store: RuleStore, orchestrator: DeploymentOrchestrator
    ) -> None:
        rule: Rule = store.create(ORG, make_draft())
        submitted: Rule = orchestrator.submit(ORG, rule.id, "author-1", requires_approval=False)
        assert submitted.status == RuleStatus.APPROVED
        assert submitted.requires_approval is False

    def test_submit_invalid_rule(
        self, store: RuleStore, orchestrator: DeploymentOrchestrator
    ) -> None:
        rule: Rule = store.create(ORG, make_draft(payload={"definitions": {}}))
        with pytest.raises(ValidationFailed) as exc_info:
            orchestrator.submit(ORG, rule.id)
        assert "Rule payload must include a description" in exc_info.value.errors
        assert store.get(ORG, rule_id=rule.id).status == RuleStatus.DRAFT

    def test_submit_twice(self, store: RuleStore, orchestrator: DeploymentOrchestrator) -> None:
        rule: Rule = store.create(ORG, make_draft())
        orchestrator.submit(ORG, rule.id)
        with pytest.raises(StateError):
            orchestrator.submit(ORG, rule.id)

    def test_approve_records_approval(
        self, store: RuleStore, orchestrator: DeploymentOrchestrator
    ) -> None:
        rule: Rule = store.create(ORG, make_draft())
        orchestrator.submit(ORG, rule.id)
        approved: Rule = orchestrator.approve(ORG, rule.id, manager_approval())
        assert approved.status == RuleStatus.APPROVED
        assert approved.approvals[0]["user_id"] == "u-manager"
        assert approved.approvals[0]["role"] == "manager"

    def test_approve_requires_approver_role(
        self, store: RuleStore, orchestrator: DeploymentOrchestrator
    ) -> None:
        rule: Rule = store.create(ORG, make_draft())
        orchestrator.submit(ORG, rule.id)
        stylist = Approval(user_id="u-2", user_name="Sam", role="stylist")
        with pytest.raises(AuthorizationError):
            orchestrator.approve(ORG, rule.id, stylist)
        assert store.get(ORG, rule_id=rule.id).status == RuleStatus.PENDING_APPROVAL

    def test_approve_draft_rejected(
        self, store: RuleStore, orchestrator: DeploymentOrchestrator
    ) -> None:
        rule: Rule = store.create(ORG, make_draft())
        with pytest.raises(StateError):
            orchestrator.approve(ORG, rule.id, manager_approval())

    def test_validate_records_audit(
        self, store: RuleStore, orchestrator: DeploymentOrchestrator, session: Session
    ) -> None:
        rule: Rule = store.create(ORG, make_draft(tags=[]))
        result = orchestrator.validate(ORG, rule.id, "author-1")
        assert result.ok
        events = AuditLog(session).events(ORG, rule_id=rule.id, event_types=[AuditEventType.VALIDATED])
        assert events[0].metadata["warnings"] == result.warnings


class TestDeploy:
    def test_deploy_activates(
        self,
        approved_rule: Callable[..., Rule],
        orchestrator: DeploymentOrchestrator,
        session: Session,
    ) -> None:
        rule: Rule = approved_rule()
        request = deploy_request(
            rule.id, scope=DeploymentScope(apps=["pos", "booking", "pos"], locations=["dubai"])
        )
        record = orchestrator.deploy(ORG, request)

        assert record.status == DeploymentStatus.COMPLETED
        assert record.scope == {"apps": ["booking", "pos"], "locations": ["dubai"]}
        assert record.transaction_id is not None
        assert orchestrator.store.get(ORG, rule_id=rule.id).status == RuleStatus.ACTIVE

        slot = session.execute(select(UcrActiveRules)).scalar_one()
        assert (slot.rule_id, slot.deployment_id, slot.lock_version) == (rule.id, record.id, 1)

        txn = session.get(UniversalTransactions, record.transaction_id)
        assert txn is not None
        assert txn.transaction_type == "ucr_deployment"
        assert txn.smart_code == "HERA.GOV.UCR.DEPLOY.v1"
        assert txn.reference_number.startswith(f"deploy-{rule.id}-")

    def test_deploy_supersedes_previous(
        self,
        active_rule: Callable[..., Rule],
        approved_rule: Callable[..., Rule],
        orchestrator: DeploymentOrchestrator,
        session: Session,
    ) -> None:
        v1: Rule = active_rule()
        v2: Rule = approved_rule(f"{FAMILY}.v2")
        orchestrator.deploy(ORG, deploy_request(v2.id))

        assert orchestrator.store.get(ORG, rule_id=v1.id).status == RuleStatus.SUPERSEDED
        assert _active_ids(orchestrator.store) == [v2.id]
        slot = session.execute(select(UcrActiveRules)).scalar_one()
        assert slot.rule_id == v2.id
        assert slot.lock_version == 2

    def test_each_transition_audited_once(
        self,
        active_rule: Callable[..., Rule],
        approved_rule: Callable[..., Rule],
        orchestrator: DeploymentOrchestrator,
        session: Session,
    ) -> None:
        v1: Rule = active_rule()
        v2: Rule = approved_rule(f"{FAMILY}.v2")
        orchestrator.deploy(ORG, deploy_request(v2.id))
        log = AuditLog(session)
        v1_types = sorted(e.event_type.value for e in log.events(ORG, rule_id=v1.id))
        v2_types = sorted(e.event_type.value for e in log.events(ORG, rule_id=v2.id))
        assert v1_types == ["approved", "created", "deployed", "submitted", "superseded"]
        assert v2_types == ["approved", "created", "deployed", "submitted"]

    def test_transition_events_published(
        self,
        active_rule: Callable[..., Rule],
        approved_rule: Callable[..., Rule],
        orchestrator: DeploymentOrchestrator,
        bus: TransitionEventBus,
    ) -> None:
        v1: Rule = active_rule()
        v2: Rule = approved_rule(f"{FAMILY}.v2")
        seen: list[TransitionEvent] = []
        bus.subscribe(seen.append)
        record = orchestrator.deploy(ORG, deploy_request(v2.id))
        assert [(e.rule_id, e.status) for e in seen] == [
            (v2.id, RuleStatus.DEPLOYING),
            (v1.id, RuleStatus.SUPERSEDED),
            (v2.id, RuleStatus.ACTIVE),
        ]
        assert all(e.deployment_id == record.id for e in seen)

    def test_failed_deploy_publishes_nothing(
        self,
        approved_rule: Callable[..., Rule],
        orchestrator: DeploymentOrchestrator,
        bus: TransitionEventBus,
    ) -> None:
        rule: Rule = approved_rule()
        seen: list[TransitionEvent] = []
        bus.subscribe(seen.append)
        with pytest.raises(ChecklistIncomplete):
            orchestrator.deploy(ORG, deploy_request(rule.id, checklist={"tested": True}))
        assert seen == []

    def test_requires_approved_status(
        self, store: RuleStore, orchestrator: DeploymentOrchestrator
    ) -> None:
        rule: Rule = store.create(ORG, make_draft())
        with pytest.raises(StateError):
            orchestrator.deploy(ORG, deploy_request(rule.id))

    def test_checklist_must_be_complete(
        self, approved_rule: Callable[..., Rule], orchestrator: DeploymentOrchestrator
    ) -> None:
        rule: Rule = approved_rule()
        checklist = {**FULL_CHECKLIST, "backupPlan": False}
        with pytest.raises(ChecklistIncomplete) as exc_info:
            orchestrator.deploy(ORG, deploy_request(rule.id, checklist=checklist))
        assert exc_info.value.errors == ["Checklist item 'backupPlan' must be true"]
        assert orchestrator.store.get(ORG, rule_id=rule.id).status == RuleStatus.APPROVED
        assert orchestrator.list_deployments(ORG) == []

    def test_approval_required(
        self, store: RuleStore, orchestrator: DeploymentOrchestrator
    ) -> None:
        rule: Rule = store.create(ORG, make_draft())
        approved: Rule = orchestrator.submit(ORG, rule.id, requires_approval=False)
        approved.requires_approval = True
        store.save(approved)
        with pytest.raises(ApprovalRequired):
            orchestrator.deploy(ORG, deploy_request(rule.id))
        record = orchestrator.deploy(ORG, deploy_request(rule.id, approvals=[manager_approval()]))
        assert record.approvals[0]["user_id"] == "u-manager"

    def test_no_approval_needed(
        self, store: RuleStore, orchestrator: DeploymentOrchestrator
    ) -> None:
        rule: Rule = store.create(ORG, make_draft())
        orchestrator.submit(ORG, rule.id, requires_approval=False)
        record = orchestrator.deploy(ORG, deploy_request(rule.id))
        assert record.status == DeploymentStatus.COMPLETED
        assert record.requires_approval is False

    def test_closed_period_rejected(
        self, approved_rule: Callable[..., Rule], orchestrator: DeploymentOrchestrator
    ) -> None:
        rule: Rule = approved_rule()
        last_year = datetime.now(UTC) - timedelta(days=400)
        with pytest.raises(ValidationFailed):
            orchestrator.deploy(ORG, deploy_request(rule.id, effective_from=last_year))

    def test_window_must_be_ordered(
        self, approved_rule: Callable[..., Rule], orchestrator: DeploymentOrchestrator
    ) -> None:
        rule: Rule = approved_rule()
        start = datetime.now(UTC) + timedelta(days=2)
        with pytest.raises(ValidationFailed):
            orchestrator.deploy(
                ORG,
                deploy_request(rule.id, effective_from=start, effective_to=start - timedelta(days=1)),
            )

    def test_idempotent_deployment_id(
        self,
        approved_rule: Callable[..., Rule],
        orchestrator: DeploymentOrchestrator,
        session: Session,
    ) -> None:
        rule: Rule = approved_rule()
        first = orchestrator.deploy(ORG, deploy_request(rule.id, deployment_id="dep-1"))
        again = orchestrator.deploy(ORG, deploy_request(rule.id, deployment_id="dep-1"))
        assert again == first
        assert len(orchestrator.list_deployments(ORG)) == 1
        assert len(session.execute(select(UniversalTransactions)).scalars().all()) == 1

    @staticmethod
    def _first_lookup_misses(
        orchestrator: DeploymentOrchestrator, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """The unlocked lookup misses, as when a retry races the original request."""
        lookup = orchestrator._stored_deployment
        calls: list[str] = []

        def _lookup(organization_id: str, request: DeploymentRequest) -> DeploymentRecord | None:
            calls.append(request.deployment_id)
            return None if len(calls) == 1 else lookup(organization_id, request)

        monkeypatch.setattr(orchestrator, "_stored_deployment", _lookup)

    def test_retry_racing_immediate_deploy(
        self,
        approved_rule: Callable[..., Rule],
        orchestrator: DeploymentOrchestrator,
        session: Session,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        rule: Rule = approved_rule()
        first = orchestrator.deploy(ORG, deploy_request(rule.id, deployment_id="dep-1"))
        self._first_lookup_misses(orchestrator, monkeypatch)
        again = orchestrator.deploy(ORG, deploy_request(rule.id, deployment_id="dep-1"))
        assert again == first
        assert len(orchestrator.list_deployments(ORG)) == 1
        assert len(session.execute(select(UniversalTransactions)).scalars().all()) == 1

    def test_retry_racing_scheduled_deploy(
        self,
        approved_rule: Callable[..., Rule],
        orchestrator: DeploymentOrchestrator,
        session: Session,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        rule: Rule = approved_rule()
        start = datetime.now(UTC) + timedelta(days=1)
        first = orchestrator.deploy(
            ORG, deploy_request(rule.id, deployment_id="dep-2", effective_from=start)
        )
        # the racing request's session has never seen the stored row
        session.expunge_all()
        self._first_lookup_misses(orchestrator, monkeypatch)
        again = orchestrator.deploy(
            ORG, deploy_request(rule.id, deployment_id="dep-2", effective_from=start)
        )
        assert again == first
        assert len(orchestrator.list_deployments(ORG)) == 1
        scheduled = [
            e
            for e in AuditLog(session).events(ORG, rule_id=rule.id)
            if e.event_type == AuditEventType.SCHEDULED
        ]
        assert len(scheduled) == 1

    def test_deployment_id_of_other_rule(
        self,
        active_rule: Callable[..., Rule],
        approved_rule: Callable[..., Rule],
        orchestrator: DeploymentOrchestrator,
    ) -> None:
        active_rule()
        record = orchestrator.list_deployments(ORG)[0]
        other: Rule = approved_rule(f"{FAMILY}.v2")
        with pytest.raises(ConflictError):
            orchestrator.deploy(ORG, deploy_request(other.id, deployment_id=record.id))

    def test_older_version_conflicts(
        self,
        approved_rule: Callable[..., Rule],
        active_rule: Callable[..., Rule],
        orchestrator: DeploymentOrchestrator,
    ) -> None:
        v1: Rule = approved_rule()
        v2: Rule = active_rule(f"{FAMILY}.v2")
        with pytest.raises(SmartCodeConflict):
            orchestrator.deploy(ORG, deploy_request(v1.id))
        assert _active_ids(orchestrator.store) == [v2.id]
        assert orchestrator.store.get(ORG, rule_id=v1.id).status == RuleStatus.APPROVED
        assert [d.rule_id for d in orchestrator.list_deployments(ORG)] == [v2.id]

    def test_families_are_independent_per_tenant(
        self, active_rule: Callable[..., Rule], orchestrator: DeploymentOrchestrator
    ) -> None:
        mine: Rule = active_rule()
        theirs: Rule = active_rule(organization_id=OTHER_ORG)
        assert _active_ids(orchestrator.store, ORG) == [mine.id]
        assert _active_ids(orchestrator.store, OTHER_ORG) == [theirs.id]

    def test_get_deployment(
        self, active_rule: Callable[..., Rule], orchestrator: DeploymentOrchestrator
    ) -> None:
        active_rule()
        record = orchestrator.list_deployments(ORG)[0]
        assert orchestrator.get_deployment(ORG, record.id) == record
        with pytest.raises(DeploymentNotFound):
            orchestrator.get_deployment(OTHER_ORG, record.id)


class TestScheduling:
    def test_future_deploy_is_scheduled(
        self,
        approved_rule: Callable[..., Rule],
        orchestrator: DeploymentOrchestrator,
        session: Session,
    ) -> None:
        rule: Rule = approved_rule()
        start = datetime.now(UTC) + timedelta(days=1)
        record = orchestrator.deploy(ORG, deploy_request(rule.id, effective_from=start))
        assert record.status == DeploymentStatus.PENDING
        assert orchestrator.store.get(ORG, rule_id=rule.id).status == RuleStatus.APPROVED
        events = AuditLog(session).events(ORG, rule_id=rule.id, event_types=[AuditEventType.SCHEDULED])
        assert events[0].metadata["deployment_id"] == record.id

    def test_activate_due(
        self, approved_rule: Callable[..., Rule], orchestrator: DeploymentOrchestrator
    ) -> None:
        rule: Rule = approved_rule()
        start = datetime.now(UTC) + timedelta(days=1)
        record = orchestrator.deploy(ORG, deploy_request(rule.id, effective_from=start))

        early = orchestrator.activate_due(datetime.now(UTC))
        assert early.activated == []

        result = orchestrator.activate_due(start + timedelta(minutes=1))
        assert [r.id for r in result.activated] == [record.id]
        assert result.activated[0].status == DeploymentStatus.COMPLETED
        assert orchestrator.store.get(ORG, rule_id=rule.id).status == RuleStatus.ACTIVE

        rerun = orchestrator.activate_due(start + timedelta(minutes=2))
        assert rerun.activated == []

    def test_scheduled_activation_failure_is_recorded(
        self,
        approved_rule: Callable[..., Rule],
        active_rule: Callable[..., Rule],
        orchestrator: DeploymentOrchestrator,
    ) -> None:
        v2: Rule = approved_rule(f"{FAMILY}.v2")
        start = datetime.now(UTC) + timedelta(days=1)
        record = orchestrator.deploy(ORG, deploy_request(v2.id, effective_from=start))
        active_rule(f"{FAMILY}.v3")

        result = orchestrator.activate_due(start + timedelta(minutes=1))
        assert [r.id for r in result.failed] == [record.id]
        failed = orchestrator.get_deployment(ORG, record.id)
        assert failed.status == DeploymentStatus.FAILED
        assert failed.error

    def test_expire_due(
        self,
        approved_rule: Callable[..., Rule],
        orchestrator: DeploymentOrchestrator,
        session: Session,
    ) -> None:
        rule: Rule = approved_rule()
        end = datetime.now(UTC) + timedelta(days=3)
        orchestrator.deploy(ORG, deploy_request(rule.id, effective_to=end))

        assert orchestrator.expire_due(datetime.now(UTC)) == []
        assert orchestrator.expire_due(end + timedelta(seconds=1)) == [rule.id]
        assert orchestrator.store.get(ORG, rule_id=rule.id).status == RuleStatus.DEPRECATED
        assert session.execute(select(UcrActiveRules)).scalars().all() == []


class TestDeprecateAndRollback:
    def test_deprecate(
        self,
        active_rule: Callable[..., Rule],
        orchestrator: DeploymentOrchestrator,
        session: Session,
    ) -> None:
        rule: Rule = active_rule()
        deprecated: Rule = orchestrator.deprecate(ORG, rule.id, "owner-1", "retired")
        assert deprecated.status == RuleStatus.DEPRECATED
        assert session.execute(select(UcrActiveRules)).scalars().all() == []
        events = AuditLog(session).events(ORG, rule_id=rule.id, event_types=[AuditEventType.DEPRECATED])
        assert events[0].metadata == {"reason": "retired"}

    def test_deprecate_requires_active(
        self, approved_rule: Callable[..., Rule], orchestrator: DeploymentOrchestrator
    ) -> None:
        rule: Rule = approved_rule()
        with pytest.raises(StateError):
            orchestrator.deprecate(ORG, rule.id)

    def test_redeploy_after_deprecation(
        self,
        active_rule: Callable[..., Rule],
        approved_rule: Callable[..., Rule],
        orchestrator: DeploymentOrchestrator,
    ) -> None:
        v1: Rule = active_rule()
        orchestrator.deprecate(ORG, v1.id)
        v2: Rule = approved_rule(f"{FAMILY}.v2")
        orchestrator.deploy(ORG, deploy_request(v2.id))
        assert _active_ids(orchestrator.store) == [v2.id]

    def test_rollback_restores_previous(
        self,
        active_rule: Callable[..., Rule],
        orchestrator: DeploymentOrchestrator,
        session: Session,
    ) -> None:
        v1: Rule = active_rule()
        v2: Rule = active_rule(f"{FAMILY}.v2")

        result = orchestrator.rollback(ORG, 1, rule_id=v2.id, actor="owner-1", reason="bad fees")

        assert result.rolled_back_rule_id == v2.id
        assert result.restored_rule_id == v1.id
        assert (result.restored_version, result.restored_minor_version) == (1, 0)
        assert orchestrator.store.get(ORG, rule_id=v2.id).status == RuleStatus.ROLLED_BACK
        assert _active_ids(orchestrator.store) == [v1.id]

        v2_deployments = orchestrator.list_deployments(ORG, rule_id=v2.id)
        assert [d.status for d in v2_deployments] == [DeploymentStatus.ROLLED_BACK]
        assert v2_deployments[0].rolled_back_at is not None

        txn = session.get(UniversalTransactions, result.transaction_id)
        assert txn is not None
        assert txn.transaction_type == "ucr_rollback"

        restored = AuditLog(session).events(ORG, rule_id=v1.id, event_types=[AuditEventType.RESTORED])
        assert restored[0].metadata["rolled_back_rule_id"] == v2.id

        slot = session.execute(select(UcrActiveRules)).scalar_one()
        assert slot.rule_id == v1.id

    def test_rollback_by_smart_code(
        self, active_rule: Callable[..., Rule], orchestrator: DeploymentOrchestrator
    ) -> None:
        v1: Rule = active_rule()
        active_rule(f"{FAMILY}.v2")
        result = orchestrator.rollback(ORG, 1, smart_code=f"{FAMILY}.v2")
        assert result.restored_rule_id == v1.id

    def test_rollback_to_active_version(
        self, active_rule: Callable[..., Rule], orchestrator: DeploymentOrchestrator
    ) -> None:
        v1: Rule = active_rule()
        with pytest.raises(StateError):
            orchestrator.rollback(ORG, 1, rule_id=v1.id)

    def test_rollback_without_active_rule(
        self, active_rule: Callable[..., Rule], orchestrator: DeploymentOrchestrator
    ) -> None:
        v1: Rule = active_rule()
        orchestrator.deprecate(ORG, v1.id)
        with pytest.raises(StateError):
            orchestrator.rollback(ORG, 1, rule_id=v1.id)

    def test_rollback_to_never_deployed(
        self,
        active_rule: Callable[..., Rule],
        store: RuleStore,
        orchestrator: DeploymentOrchestrator,
    ) -> None:
        store.create(ORG, make_draft())
        v2: Rule = active_rule(f"{FAMILY}.v2")
        with pytest.raises(VersionNotFound):
            orchestrator.rollback(ORG, 1, rule_id=v2.id)
        assert _active_ids(store) == [v2.id]


class TestConcurrentActivation:
    def test_one_active_rule_per_family(self, tmp_path: Path, ucr_settings: UCRSettings) -> None:
        eng: Engine = create_engine(
            f"sqlite:///{(tmp_path / 'ucr.db').as_posix()}",
            connect_args={"check_same_thread": False},
        )
        install_sqlite_pragmas(eng)
        Base.metadata.create_all(eng)
        factory: sessionmaker[Session] = sessionmaker(bind=eng, expire_on_commit=False)
        locks = KeyedLock()

        with factory() as setup:
            orch = DeploymentOrchestrator(setup, ucr_settings, TransitionEventBus(), locks)
            ids: list[str] = []
            for code in (f"{FAMILY}.v2", f"{FAMILY}.v3"):
                rule: Rule = orch.store.create(ORG, make_draft(code))
                orch.submit(ORG, rule.id)
                orch.approve(ORG, rule.id, manager_approval())
                ids.append(rule.id)

        barrier = threading.Barrier(len(ids))
        outcomes: dict[str, str] = {}

        def _deploy(rule_id: str) -> None:
            with factory() as sess:
                orch = DeploymentOrchestrator(sess, ucr_settings, TransitionEventBus(), locks)
                barrier.wait()
                try:
                    orch.deploy(ORG, deploy_request(rule_id))
                    outcomes[rule_id] = "deployed"
                except SmartCodeConflict:
                    outcomes[rule_id] = "conflict"

        threads = [threading.Thread(target=_deploy, args=(rule_id,)) for rule_id in ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        v2_id, v3_id = ids
        assert outcomes[v3_id] == "deployed"
        assert outcomes[v2_id] in ("deployed", "conflict")
        with factory() as check:
            store = RuleStore(check, ucr_settings)
            assert _active_ids(store) == [v3_id]
            slots = check.execute(select(UcrActiveRules)).scalars().all()
            assert [s.rule_id for s in slots] == [v3_id]
        eng.dispose()
