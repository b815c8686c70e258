"""Rule lifecycle state machine: submit, approve, deploy, supersede, deprecate, rollback.

Each public operation is one database transaction that is committed before the
method returns. Activations of one (organization, smart-code family) run under
a process-wide lock held until commit, and the ``ucr_active_rules`` slot row
(unique key plus compare-and-swap ``lock_version``) guards against writers in
other processes.
"""

from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime

import structlog
from sqlalchemy import ColumnElement, Select, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import UCRSettings, get_settings
from db.enums import (
    CHECKLIST_ITEMS,
    AuditEventType,
    DeploymentStatus,
    RuleStatus,
    TransactionType,
)
from db.models import UcrActiveRules, UcrDeployments
from ucr.services._helpers import (
    JsonDict,
    dump_json,
    load_json,
    load_json_list,
    now_iso,
    parse_iso,
    smart_code_family,
    to_iso,
)
from ucr.services._types import TransactionDict
from ucr.services.audit import AuditLog
from ucr.services.errors import (
    ApprovalRequired,
    AuthorizationError,
    ChecklistIncomplete,
    ConflictError,
    DeploymentNotFound,
    SmartCodeConflict,
    StateError,
    StorageError,
    UCRError,
    ValidationError,
    ValidationFailed,
)
from ucr.services.events import TransitionEventBus, transition_events
from ucr.services.guardrails import check_scope, is_period_open
from ucr.services.locks import KeyedLock, family_locks
from ucr.services.rule_store import RuleStore
from ucr.services.schemas.deployments import (
    Approval,
    DeploymentRecord,
    DeploymentRequest,
    TransitionEvent,
)
from ucr.services.schemas.results import RollbackResult, ScheduleRunResult, ValidationResult
from ucr.services.schemas.rules import Rule
from ucr.services.universal import UniversalStore
from ucr.services.validator import RuleValidator
from ucr.services.versioning import VersionManager

logger = structlog.get_logger(__name__)

DEPLOY_SMART_CODE = "HERA.GOV.UCR.DEPLOY.v1"

ALLOWED_TRANSITIONS: dict[RuleStatus, frozenset[RuleStatus]] = {
    RuleStatus.DRAFT: frozenset({RuleStatus.PENDING_APPROVAL}),
    RuleStatus.PENDING_APPROVAL: frozenset({RuleStatus.APPROVED}),
    RuleStatus.APPROVED: frozenset({RuleStatus.ACTIVE}),
    RuleStatus.ACTIVE: frozenset(
        {RuleStatus.SUPERSEDED, RuleStatus.DEPRECATED, RuleStatus.ROLLED_BACK}
    ),
    RuleStatus.SUPERSEDED: frozenset({RuleStatus.ACTIVE}),
    RuleStatus.DEPRECATED: frozenset({RuleStatus.ACTIVE}),
    RuleStatus.ROLLED_BACK: frozenset({RuleStatus.ACTIVE}),
}


def _to_record(row: UcrDeployments) -> DeploymentRecord:
    return DeploymentRecord(
        id=row.id,
        organization_id=row.organization_id,
        rule_id=row.rule_id,
        smart_code=row.smart_code,
        scope=load_json(row.scope) or {},
        effective_from=row.effective_from,
        effective_to=row.effective_to,
        approvals=load_json_list(row.approvals),
        checklist=load_json(row.checklist) or {},
        status=DeploymentStatus(row.status),
        requires_approval=row.requires_approval,
        transaction_id=row.transaction_id,
        error=row.error,
        created_by=row.created_by,
        created_at=row.created_at,
        completed_at=row.completed_at,
        rolled_back_at=row.rolled_back_at,
    )


def _require_status(rule: Rule, expected: RuleStatus, action: str) -> None:
    if rule.status != expected:
        raise StateError(
            f"Rule {rule.id} is {rule.status.value}; {action} requires {expected.value}"
        )


class DeploymentOrchestrator:
    """Drives rule status transitions and owns deployment records."""

    def __init__(
        self,
        session: Session,
        settings: UCRSettings | None = None,
        events: TransitionEventBus | None = None,
        locks: KeyedLock | None = None,
    ) -> None:
        self.session: Session = session
        self.settings: UCRSettings = settings or get_settings().ucr
        self.store: RuleStore = RuleStore(session, self.settings)
        self.validator: RuleValidator = RuleValidator(session, self.store)
        self.versions: VersionManager = VersionManager(session, self.store)
        self.audit: AuditLog = AuditLog(session)
        self.events: TransitionEventBus = events or transition_events
        self.locks: KeyedLock = locks or family_locks

    # -- plumbing ----------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Generator[list[TransitionEvent], None, None]:
        """Commit on success, roll back on any error, then publish collected events."""
        pending: list[TransitionEvent] = []
        try:
            yield pending
            self.session.commit()
        except UCRError:
            self.session.rollback()
            raise
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(f"Concurrent lifecycle change detected: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageError(f"Lifecycle transaction failed: {exc}") from exc
        except Exception:
            self.session.rollback()
            raise
        for event in pending:
            self.events.publish(event)

    @contextmanager
    def _family_lock(self, organization_id: str, family: str) -> Generator[None, None, None]:
        with self.locks.hold((organization_id, family)):
            # drop identity-map state so reads under the lock see other writers' commits
            self.session.flush()
            self.session.expire_all()
            yield

    def _transition(
        self,
        rule: Rule,
        to_status: RuleStatus,
        event_type: AuditEventType,
        actor: str,
        pending: list[TransitionEvent],
        metadata: JsonDict | None = None,
        deployment_id: str | None = None,
    ) -> Rule:
        if to_status not in ALLOWED_TRANSITIONS.get(rule.status, frozenset()):
            raise StateError(
                f"Rule {rule.id} cannot move from {rule.status.value} to {to_status.value}"
            )
        from_status: RuleStatus = rule.status
        updated: Rule = self.store.update_status(rule.organization_id, rule.id, to_status)
        self.audit.record(
            rule.organization_id,
            rule.id,
            event_type,
            actor=actor,
            from_status=from_status,
            to_status=to_status,
            metadata=metadata,
        )
        pending.append(
            TransitionEvent(
                organization_id=rule.organization_id,
                rule_id=rule.id,
                smart_code=rule.smart_code,
                status=to_status,
                deployment_id=deployment_id,
            )
        )
        return updated

    def _slot(self, organization_id: str, family: str) -> UcrActiveRules | None:
        stmt: Select = (
            UniversalStore(self.session, organization_id)
            .scoped(UcrActiveRules)
            .where(UcrActiveRules.smart_code_family == family)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def _swap_slot(
        self,
        organization_id: str,
        family: str,
        rule_id: str,
        deployment_id: str | None,
    ) -> None:
        """Point the family's slot at ``rule_id``; fails if another writer moved it first."""
        slot: UcrActiveRules | None = self._slot(organization_id, family)
        if slot is None:
            self.session.add(
                UcrActiveRules(
                    organization_id=organization_id,
                    smart_code_family=family,
                    rule_id=rule_id,
                    deployment_id=deployment_id,
                    lock_version=1,
                    updated_at=now_iso(),
                )
            )
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise ConflictError(f"Another activation of {family} won the race") from exc
            return
        expected: int = slot.lock_version
        result = self.session.execute(
            update(UcrActiveRules)
            .where(
                UcrActiveRules.organization_id == organization_id,
                UcrActiveRules.smart_code_family == family,
                UcrActiveRules.lock_version == expected,
            )
            .values(
                rule_id=rule_id,
                deployment_id=deployment_id,
                lock_version=expected + 1,
                updated_at=now_iso(),
            )
        )
        if result.rowcount != 1:
            raise ConflictError(f"Active slot for {family} changed concurrently")

    def _clear_slot(self, organization_id: str, family: str, rule_id: str) -> None:
        slot: UcrActiveRules | None = self._slot(organization_id, family)
        if slot is not None and slot.rule_id == rule_id:
            self.session.delete(slot)
            self.session.flush()

    def _deployment_row(self, organization_id: str, deployment_id: str) -> UcrDeployments | None:
        stmt: Select = (
            UniversalStore(self.session, organization_id)
            .scoped(UcrDeployments)
            .where(UcrDeployments.id == deployment_id)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    # -- reads -------------------------------------------------------------

    def get_deployment(self, organization_id: str, deployment_id: str) -> DeploymentRecord:
        row: UcrDeployments | None = self._deployment_row(organization_id, deployment_id)
        if row is None:
            raise DeploymentNotFound(f"Deployment {deployment_id} not found")
        return _to_record(row)

    def list_deployments(
        self,
        organization_id: str,
        rule_id: str | None = None,
        status: DeploymentStatus | None = None,
    ) -> list[DeploymentRecord]:
        stmt: Select = UniversalStore(self.session, organization_id).scoped(UcrDeployments)
        if rule_id is not None:
            stmt = stmt.where(UcrDeployments.rule_id == rule_id)
        if status is not None:
            stmt = stmt.where(UcrDeployments.status == status.value)
        stmt = stmt.order_by(UcrDeployments.created_at)
        return [_to_record(r) for r in self.session.execute(stmt).scalars().all()]

    # -- draft -> approved -------------------------------------------------

    def validate(
        self, organization_id: str, rule_id: str, actor: str = "system"
    ) -> ValidationResult:
        """Validate a stored rule and record the outcome in the audit log."""
        with self._transaction():
            rule: Rule = self.store.get(organization_id, rule_id=rule_id)
            result: ValidationResult = self.validator.validate_rule(rule)
            self.audit.record(
                organization_id,
                rule.id,
                AuditEventType.VALIDATED,
                actor=actor,
                from_status=rule.status,
                to_status=rule.status,
                metadata={"ok": result.ok, "errors": result.errors, "warnings": result.warnings},
            )
        return result

    def submit(
        self,
        organization_id: str,
        rule_id: str,
        actor: str = "system",
        requires_approval: bool | None = None,
    ) -> Rule:
        """``draft -> pending_approval``, straight on to ``approved`` when no approval is needed."""
        with self._transaction() as pending:
            rule: Rule = self.store.get(organization_id, rule_id=rule_id)
            _require_status(rule, RuleStatus.DRAFT, "submit")
            result: ValidationResult = self.validator.validate_rule(rule)
            if not result.ok:
                raise ValidationFailed(f"Rule {rule_id} failed validation", result.errors)
            if requires_approval is not None and requires_approval != rule.requires_approval:
                rule.requires_approval = requires_approval
                rule = self.store.save(rule)

            rule = self._transition(
                rule,
                RuleStatus.PENDING_APPROVAL,
                AuditEventType.SUBMITTED,
                actor,
                pending,
                metadata={"warnings": result.warnings, "requires_approval": rule.requires_approval},
            )
            if not rule.requires_approval:
                rule = self._transition(
                    rule,
                    RuleStatus.APPROVED,
                    AuditEventType.APPROVED,
                    actor,
                    pending,
                    metadata={"automatic": True},
                )
        logger.info(
            "Rule submitted",
            organization_id=organization_id,
            rule_id=rule_id,
            status=rule.status.value,
        )
        return rule

    def _check_approver(self, approval: Approval) -> None:
        scope = check_scope([approval.role], any_of_roles=self.settings.approver_roles)
        if not scope.allowed:
            raise AuthorizationError(f"{approval.user_name or approval.user_id}: {scope.reason}")

    def approve(self, organization_id: str, rule_id: str, approval: Approval) -> Rule:
        """``pending_approval -> approved``; the approver's role must be an approver role."""
        self._check_approver(approval)
        with self._transaction() as pending:
            rule: Rule = self.store.get(organization_id, rule_id=rule_id)
            _require_status(rule, RuleStatus.PENDING_APPROVAL, "approve")
            rule.approvals = [*rule.approvals, approval.to_dict()]
            rule = self.store.save(rule)
            rule = self._transition(
                rule,
                RuleStatus.APPROVED,
                AuditEventType.APPROVED,
                approval.user_id,
                pending,
                metadata={"approval": approval.to_dict()},
            )
        logger.info(
            "Rule approved",
            organization_id=organization_id,
            rule_id=rule_id,
            approver=approval.user_id,
            role=approval.role,
        )
        return rule

    # -- deploy ------------------------------------------------------------

    def _precheck(self, rule: Rule, request: DeploymentRequest) -> list[JsonDict]:
        _require_status(rule, RuleStatus.APPROVED, "deploy")
        for approval in request.approvals:
            self._check_approver(approval)
        approvals: list[JsonDict] = [*rule.approvals, *(a.to_dict() for a in request.approvals)]
        if rule.requires_approval and not approvals:
            raise ApprovalRequired(
                f"Rule {rule.id} requires at least one approval before deployment"
            )
        missing: list[str] = [k for k in CHECKLIST_ITEMS if request.checklist.get(k) is not True]
        if missing:
            raise ChecklistIncomplete(
                f"Deployment checklist incomplete: {', '.join(missing)}",
                [f"Checklist item '{k}' must be true" for k in missing],
            )
        return approvals

    def _window(self, request: DeploymentRequest) -> tuple[datetime, datetime | None]:
        try:
            start: datetime = parse_iso(request.effective_from or datetime.now(UTC))
            end: datetime | None = parse_iso(request.effective_to) if request.effective_to else None
        except ValueError as exc:
            raise ValidationFailed(f"Invalid effective date: {exc}", [str(exc)]) from exc
        if end is not None and end <= start:
            message = "effective_to must be after effective_from"
            raise ValidationFailed(message, [message])
        if self.settings.enforce_open_period and not is_period_open(start):
            message = f"Accounting period for {start.date().isoformat()} is closed"
            raise ValidationFailed(message, [message])
        return start, end

    def _insert_deployment(
        self,
        organization_id: str,
        rule: Rule,
        request: DeploymentRequest,
        approvals: list[JsonDict],
        start: datetime,
        end: datetime | None,
    ) -> UcrDeployments:
        row = UcrDeployments(
            id=request.deployment_id,
            organization_id=organization_id,
            rule_id=rule.id,
            smart_code=rule.smart_code,
            scope=dump_json(request.scope.to_dict()),
            effective_from=to_iso(start),
            effective_to=to_iso(end) if end else None,
            approvals=dump_json(approvals),
            checklist=dump_json(dict(request.checklist)),
            status=DeploymentStatus.PENDING.value,
            requires_approval=rule.requires_approval,
            created_by=request.actor,
            created_at=now_iso(),
        )
        self.session.add(row)
        UniversalStore(self.session, organization_id).flush()
        return row

    def _activate(
        self,
        organization_id: str,
        row: UcrDeployments,
        actor: str,
        pending: list[TransitionEvent],
    ) -> None:
        """Make the deployment's rule the active one of its family. Caller holds the family lock."""
        rule: Rule = self.store.get(organization_id, rule_id=row.rule_id)
        _require_status(rule, RuleStatus.APPROVED, "activation")

        current: Rule | None = self.store.active_rule(organization_id, rule.family)
        if current is not None and current.version_identity >= rule.version_identity:
            raise SmartCodeConflict(
                f"{current.smart_code} version {current.version_label} is already active; "
                f"cannot activate version {rule.version_label}"
            )
        result: ValidationResult = self.validator.validate_rule(rule)
        if not result.ok:
            raise ValidationFailed(f"Rule {rule.id} no longer passes validation", result.errors)

        ts: str = now_iso()
        txn: TransactionDict = UniversalStore(self.session, organization_id).create_transaction(
            transaction_type=TransactionType.DEPLOYMENT.value,
            smart_code=DEPLOY_SMART_CODE,
            reference_number=f"deploy-{rule.id}-{ts}",
            created_by=actor,
            metadata={
                "rule_id": rule.id,
                "smart_code": rule.smart_code,
                "version": rule.version_label,
                "deployment_id": row.id,
                "scope": load_json(row.scope) or {},
                "effective_from": row.effective_from,
                "effective_to": row.effective_to,
                "superseded_rule_id": current.id if current else None,
            },
        )

        pending.append(
            TransitionEvent(
                organization_id=organization_id,
                rule_id=rule.id,
                smart_code=rule.smart_code,
                status=RuleStatus.DEPLOYING,
                deployment_id=row.id,
            )
        )
        if current is not None:
            self._transition(
                current,
                RuleStatus.SUPERSEDED,
                AuditEventType.SUPERSEDED,
                actor,
                pending,
                metadata={"superseded_by": rule.id, "deployment_id": row.id},
                deployment_id=row.id,
            )
        self._transition(
            rule,
            RuleStatus.ACTIVE,
            AuditEventType.DEPLOYED,
            actor,
            pending,
            metadata={
                "deployment_id": row.id,
                "transaction_id": txn["id"],
                "scope": load_json(row.scope) or {},
                "superseded_rule_id": current.id if current else None,
            },
            deployment_id=row.id,
        )
        self._swap_slot(organization_id, rule.family, rule.id, row.id)

        row.status = DeploymentStatus.COMPLETED.value
        row.transaction_id = txn["id"]
        row.completed_at = ts
        row.error = None
        UniversalStore(self.session, organization_id).flush()

    def deploy(self, organization_id: str, request: DeploymentRequest) -> DeploymentRecord:
        """Deploy an approved rule now, or schedule it when ``effective_from`` is in the future.

        Re-invoking with the ``deployment_id`` of a stored deployment returns
        that record unchanged.
        """
        existing: DeploymentRecord | None = self._stored_deployment(organization_id, request)
        if existing is not None:
            return existing
        try:
            return self._deploy(organization_id, request)
        except ConflictError as exc:
            # a retry with the same id committed first; its row is the answer
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            existing = self._stored_deployment(organization_id, request)
            if existing is None:
                raise
            return existing

    def _stored_deployment(
        self, organization_id: str, request: DeploymentRequest
    ) -> DeploymentRecord | None:
        row: UcrDeployments | None = self._deployment_row(organization_id, request.deployment_id)
        if row is None:
            return None
        if row.rule_id != request.rule_id:
            raise ConflictError(
                f"Deployment {request.deployment_id} already belongs to rule {row.rule_id}"
            )
        return _to_record(row)

    def _deploy(self, organization_id: str, request: DeploymentRequest) -> DeploymentRecord:
        rule: Rule = self.store.get(organization_id, rule_id=request.rule_id)
        start, end = self._window(request)

        if start > datetime.now(UTC):
            approvals: list[JsonDict] = self._precheck(rule, request)
            with self._transaction():
                row = self._insert_deployment(organization_id, rule, request, approvals, start, end)
                self.audit.record(
                    organization_id,
                    rule.id,
                    AuditEventType.SCHEDULED,
                    actor=request.actor,
                    from_status=rule.status,
                    to_status=rule.status,
                    metadata={"deployment_id": row.id, "effective_from": row.effective_from},
                )
            logger.info(
                "Deployment scheduled",
                organization_id=organization_id,
                rule_id=rule.id,
                deployment_id=row.id,
                effective_from=row.effective_from,
            )
            return _to_record(row)

        with self._family_lock(organization_id, rule.family):
            with self._transaction() as pending:
                existing = self._stored_deployment(organization_id, request)
                if existing is not None:
                    return existing
                rule = self.store.get(organization_id, rule_id=request.rule_id)
                approvals = self._precheck(rule, request)
                row = self._insert_deployment(organization_id, rule, request, approvals, start, end)
                self._activate(organization_id, row, request.actor, pending)
        logger.info(
            "Rule deployed",
            organization_id=organization_id,
            rule_id=rule.id,
            smart_code=rule.smart_code,
            deployment_id=row.id,
            transaction_id=row.transaction_id,
        )
        return _to_record(row)

    # -- scheduler ---------------------------------------------------------

    def _organizations_with(self, column_filter: ColumnElement[bool]) -> list[str]:
        stmt = select(UcrDeployments.organization_id).where(column_filter).distinct()
        return [str(org) for org in self.session.execute(stmt).scalars().all()]

    def activate_due(
        self, now: datetime | None = None, organization_id: str | None = None
    ) -> ScheduleRunResult:
        """Activate scheduled deployments whose ``effective_from`` has arrived."""
        cutoff: str = to_iso(now or datetime.now(UTC))
        orgs: list[str] = (
            [organization_id]
            if organization_id
            else self._organizations_with(UcrDeployments.status == DeploymentStatus.PENDING.value)
        )
        activated: list[DeploymentRecord] = []
        failed: list[DeploymentRecord] = []
        for org in orgs:
            stmt: Select = (
                UniversalStore(self.session, org)
                .scoped(UcrDeployments)
                .where(
                    UcrDeployments.status == DeploymentStatus.PENDING.value,
                    UcrDeployments.effective_from <= cutoff,
                )
                .order_by(UcrDeployments.effective_from, UcrDeployments.created_at)
            )
            due: list[tuple[str, str]] = [
                (r.id, r.smart_code) for r in self.session.execute(stmt).scalars().all()
            ]
            for deployment_id, smart_code in due:
                record = self._activate_scheduled(org, deployment_id, smart_code)
                if record is None:
                    continue
                if record.status == DeploymentStatus.COMPLETED:
                    activated.append(record)
                else:
                    failed.append(record)
        expired: list[str] = self.expire_due(now, organization_id)
        return ScheduleRunResult(activated=activated, failed=failed, expired=expired)

    def _activate_scheduled(
        self, organization_id: str, deployment_id: str, smart_code: str
    ) -> DeploymentRecord | None:
        family: str = smart_code_family(smart_code)
        try:
            with self._family_lock(organization_id, family):
                with self._transaction() as pending:
                    row = self._deployment_row(organization_id, deployment_id)
                    if row is None or row.status != DeploymentStatus.PENDING.value:
                        return None
                    self._activate(organization_id, row, row.created_by, pending)
            logger.info(
                "Scheduled deployment activated",
                organization_id=organization_id,
                deployment_id=deployment_id,
            )
            return _to_record(row)
        except UCRError as exc:
            logger.warning(
                "Scheduled deployment failed",
                organization_id=organization_id,
                deployment_id=deployment_id,
                error=str(exc),
            )
            with self._transaction():
                row = self._deployment_row(organization_id, deployment_id)
                if row is None:
                    raise
                row.status = DeploymentStatus.FAILED.value
                row.error = str(exc)
                self.audit.record(
                    organization_id,
                    row.rule_id,
                    AuditEventType.DEPLOYMENT_FAILED,
                    actor=row.created_by,
                    metadata={"deployment_id": deployment_id, "error": str(exc)},
                )
            return _to_record(row)

    def expire_due(
        self, now: datetime | None = None, organization_id: str | None = None
    ) -> list[str]:
        """Deprecate active rules whose deployment ``effective_to`` has passed."""
        cutoff: str = to_iso(now or datetime.now(UTC))
        orgs: list[str] = (
            [organization_id]
            if organization_id
            else self._organizations_with(UcrDeployments.effective_to.is_not(None))
        )
        expired: list[str] = []
        for org in orgs:
            stmt: Select = (
                UniversalStore(self.session, org)
                .scoped(UcrActiveRules)
                .join(UcrDeployments, UcrDeployments.id == UcrActiveRules.deployment_id)
                .where(
                    UcrDeployments.effective_to.is_not(None),
                    UcrDeployments.effective_to <= cutoff,
                )
            )
            slots: list[tuple[str, str]] = [
                (s.rule_id, s.smart_code_family) for s in self.session.execute(stmt).scalars().all()
            ]
            for rule_id, family in slots:
                with self._family_lock(org, family):
                    with self._transaction() as pending:
                        rule: Rule = self.store.get(org, rule_id=rule_id)
                        if rule.status != RuleStatus.ACTIVE:
                            continue
                        self._transition(
                            rule,
                            RuleStatus.DEPRECATED,
                            AuditEventType.DEPRECATED,
                            "system",
                            pending,
                            metadata={"reason": "effective_to reached"},
                        )
                        self._clear_slot(org, family, rule_id)
                expired.append(rule_id)
                logger.info("Rule expired", organization_id=org, rule_id=rule_id)
        return expired

    # -- retire / rollback -------------------------------------------------

    def deprecate(
        self,
        organization_id: str,
        rule_id: str,
        actor: str = "system",
        reason: str | None = None,
    ) -> Rule:
        """``active -> deprecated``; the family is left without an active rule."""
        rule: Rule = self.store.get(organization_id, rule_id=rule_id)
        with self._family_lock(organization_id, rule.family):
            with self._transaction() as pending:
                rule = self.store.get(organization_id, rule_id=rule_id)
                _require_status(rule, RuleStatus.ACTIVE, "deprecate")
                rule = self._transition(
                    rule,
                    RuleStatus.DEPRECATED,
                    AuditEventType.DEPRECATED,
                    actor,
                    pending,
                    metadata={"reason": reason},
                )
                self._clear_slot(organization_id, rule.family, rule.id)
        logger.info(
            "Rule deprecated", organization_id=organization_id, rule_id=rule_id, reason=reason
        )
        return rule

    def rollback(
        self,
        organization_id: str,
        to_version: int,
        rule_id: str | None = None,
        smart_code: str | None = None,
        actor: str = "system",
        reason: str | None = None,
        minor_version: int | None = None,
    ) -> RollbackResult:
        """Re-activate a previously deployed version; the current active rule is rolled back."""
        if rule_id is None and smart_code is None:
            raise ValidationError("rule_id or smart_code is required")
        ref: Rule = self.store.get(organization_id, rule_id=rule_id, smart_code=smart_code)
        family: str = ref.family

        with self._family_lock(organization_id, family):
            with self._transaction() as pending:
                current: Rule | None = self.store.active_rule(organization_id, family)
                if current is None:
                    raise StateError(f"No active rule in {family} to roll back")
                target: Rule = self.versions.resolve_version(
                    organization_id, family, to_version, minor_version
                )
                if target.id == current.id:
                    raise StateError(
                        f"Version {target.version_label} of {family} is already active"
                    )

                ts: str = now_iso()
                txn: TransactionDict = self.versions.record_rollback(
                    organization_id, current, target, actor, reason
                )
                self._transition(
                    current,
                    RuleStatus.ROLLED_BACK,
                    AuditEventType.ROLLED_BACK,
                    actor,
                    pending,
                    metadata={
                        "restored_rule_id": target.id,
                        "transaction_id": txn["id"],
                        "reason": reason,
                    },
                )
                for record in self.list_deployments(
                    organization_id, rule_id=current.id, status=DeploymentStatus.COMPLETED
                ):
                    row = self._deployment_row(organization_id, record.id)
                    if row is not None:
                        row.status = DeploymentStatus.ROLLED_BACK.value
                        row.rolled_back_at = ts
                self._transition(
                    target,
                    RuleStatus.ACTIVE,
                    AuditEventType.RESTORED,
                    actor,
                    pending,
                    metadata={
                        "rolled_back_rule_id": current.id,
                        "transaction_id": txn["id"],
                        "reason": reason,
                    },
                )
                self._swap_slot(organization_id, family, target.id, None)
        logger.info(
            "Rule rolled back",
            organization_id=organization_id,
            family=family,
            rolled_back_rule_id=current.id,
            restored_rule_id=target.id,
            restored_version=target.version_label,
        )
        return RollbackResult(
            rolled_back_rule_id=current.id,
            restored_rule_id=target.id,
            restored_version=target.version,
            restored_minor_version=target.minor_version,
            smart_code=target.smart_code,
            transaction_id=txn["id"],
        )
