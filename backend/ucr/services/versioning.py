"""Version bumps, structural payload diffs and version history."""

import re
from collections.abc import Mapping, Sequence

import structlog
from sqlalchemy import Select
from sqlalchemy.orm import Session

from db.enums import AuditEventType, ChangeType, DeploymentStatus, TransactionType
from db.models import UcrDeployments, UniversalTransactions
from ucr.services._helpers import load_json, now_iso, with_version
from ucr.services._types import TransactionDict, VersionHistoryEntry
from ucr.services.errors import VersionNotFound
from ucr.services.rule_store import RuleStore
from ucr.services.schemas.results import BumpResult, DiffResult, LineDiff
from ucr.services.schemas.rules import Rule, RuleDraft
from ucr.services.simulation import deep_equal
from ucr.services.universal import UniversalStore

logger = structlog.get_logger(__name__)

_MISSING = object()

DEPLOYED_STATUSES = (DeploymentStatus.COMPLETED.value, DeploymentStatus.ROLLED_BACK.value)
ROLLBACK_SMART_CODE = "HERA.GOV.UCR.ROLLBACK.v1"

_DEFINITION = re.compile(r"^rule_payload\.definitions\.([^.\[]+)$")
_EXCEPTION = re.compile(r"^rule_payload\.exceptions\[(\d+)\]$")
_EXC_IF = re.compile(r"^rule_payload\.exceptions\[(\d+)\]\.if$")
_EXC_IF_KEY = re.compile(r"^rule_payload\.exceptions\[(\d+)\]\.if\.([^.\[]+)(.*)$")
_EXC_THEN = re.compile(r"^rule_payload\.exceptions\[(\d+)\]\.then$")
_EXC_THEN_KEY = re.compile(r"^rule_payload\.exceptions\[(\d+)\]\.then\.([^.\[]+)$")


def _non_empty(value: object) -> bool:
    return value is not _MISSING and bool(value)


def breaking_reason(path: str, old: object, new: object) -> str | None:
    """Why a single change is breaking, or None.

    Breaking: a removed definitions key, a removed exception, an exception
    condition that gains a key or changes a value, an exception override that
    loses a key.
    """
    removed: bool = new is _MISSING
    added: bool = old is _MISSING

    if path == "rule_payload.definitions" and removed and _non_empty(old):
        return "Removed all definitions"
    if path == "rule_payload.exceptions" and _non_empty(old) and not _non_empty(new):
        return "Removed all exceptions"
    if (m := _DEFINITION.match(path)) and removed:
        return f"Removed definition '{m.group(1)}'"
    if (m := _EXCEPTION.match(path)) and removed:
        return f"Removed exception {m.group(1)}"
    if (m := _EXC_IF.match(path)) and added and _non_empty(new):
        return f"Exception {m.group(1)} gained a condition"
    if m := _EXC_IF_KEY.match(path):
        idx, key, rest = m.groups()
        if removed and not rest:
            return None
        if added and not rest:
            return f"Exception {idx} condition now also requires '{key}'"
        return f"Exception {idx} condition on '{key}' changed"
    if (m := _EXC_THEN.match(path)) and removed and _non_empty(old):
        return f"Exception {m.group(1)} no longer overrides anything"
    if (m := _EXC_THEN_KEY.match(path)) and removed:
        return f"Exception {m.group(1)} no longer overrides '{m.group(2)}'"
    return None


def _walk(
    path: str, old: object, new: object, out: list[LineDiff], breaking: list[str]
) -> None:
    if isinstance(old, Mapping) and isinstance(new, Mapping):
        keys: list[object] = list(old) + [k for k in new if k not in old]
        for key in keys:
            _walk(f"{path}.{key}", old.get(key, _MISSING), new.get(key, _MISSING), out, breaking)
        return
    if isinstance(old, list) and isinstance(new, list):
        for idx in range(max(len(old), len(new))):
            _walk(
                f"{path}[{idx}]",
                old[idx] if idx < len(old) else _MISSING,
                new[idx] if idx < len(new) else _MISSING,
                out,
                breaking,
            )
        return
    if old is _MISSING and new is _MISSING:
        return
    if old is not _MISSING and new is not _MISSING and deep_equal(old, new):
        return
    reason: str | None = breaking_reason(path, old, new)
    if reason is not None:
        breaking.append(f"{path}: {reason}")
    out.append(
        LineDiff(
            path=path,
            old_value=None if old is _MISSING else old,
            new_value=None if new is _MISSING else new,
            breaking=reason is not None,
        )
    )


def diff_payloads(old: Mapping[str, object], new: Mapping[str, object]) -> DiffResult:
    line_diffs: list[LineDiff] = []
    breaking: list[str] = []
    _walk("rule_payload", old, new, line_diffs, breaking)
    if not line_diffs:
        summary = "No changes"
    else:
        summary = f"{len(line_diffs)} change(s), {len(breaking)} breaking"
    return DiffResult(summary=summary, breaking_changes=breaking, line_diffs=line_diffs)


class VersionManager:
    """Mints new rule versions and compares them."""

    def __init__(self, session: Session, store: RuleStore | None = None) -> None:
        self.session: Session = session
        self.store: RuleStore = store or RuleStore(session)

    def bump_version(
        self,
        organization_id: str,
        rule_id: str,
        change_type: ChangeType,
        notes: str | None = None,
        actor: str = "system",
    ) -> BumpResult:
        """New draft identity in the same family; the predecessor is untouched."""
        base: Rule = self.store.get(organization_id, rule_id=rule_id)
        family: list[Rule] = self.store.family_rules(organization_id, base.family)

        if change_type == ChangeType.MAJOR:
            version: int = max(r.version for r in family) + 1
            minor: int = 0
            smart_code: str = with_version(base.smart_code, version)
        else:
            version = base.version
            minor = max(r.minor_version for r in family if r.version == base.version) + 1
            smart_code = base.smart_code

        draft: RuleDraft = RuleDraft.from_rule(base)
        draft.smart_code = smart_code
        draft.version = version
        draft.minor_version = minor
        new_rule: Rule = self.store.create(
            organization_id,
            draft,
            actor,
            predecessor_id=base.id,
            version_notes=notes,
            audit_event=AuditEventType.VERSION_BUMPED,
            audit_metadata={
                "from_rule_id": base.id,
                "from_version": base.version_label,
                "change_type": change_type.value,
                "notes": notes,
            },
        )
        logger.info(
            "Rule version bumped",
            organization_id=organization_id,
            from_rule_id=base.id,
            new_rule_id=new_rule.id,
            new_version=new_rule.version_label,
            change_type=change_type.value,
        )
        return BumpResult(
            new_rule_id=new_rule.id,
            new_version=version,
            minor_version=minor,
            smart_code=smart_code,
        )

    def diff(self, organization_id: str, base_rule_id: str, new_rule_id: str) -> DiffResult:
        base: Rule = self.store.get(organization_id, rule_id=base_rule_id)
        new: Rule = self.store.get(organization_id, rule_id=new_rule_id)
        return diff_payloads(base.rule_payload, new.rule_payload)

    def _deployments(self, organization_id: str, rule_ids: Sequence[str]) -> list[UcrDeployments]:
        if not rule_ids:
            return []
        stmt: Select = (
            UniversalStore(self.session, organization_id)
            .scoped(UcrDeployments)
            .where(
                UcrDeployments.rule_id.in_(list(rule_ids)),
                UcrDeployments.status.in_(DEPLOYED_STATUSES),
            )
            .order_by(UcrDeployments.completed_at)
        )
        return list(self.session.execute(stmt).scalars().all())

    def record_rollback(
        self,
        organization_id: str,
        rolled_back: Rule,
        restored: Rule,
        actor: str = "system",
        reason: str | None = None,
    ) -> TransactionDict:
        """Ledger entry for a rollback; ``history`` reports it as the restored version's ``restored_at``."""
        return UniversalStore(self.session, organization_id).create_transaction(
            transaction_type=TransactionType.ROLLBACK.value,
            smart_code=ROLLBACK_SMART_CODE,
            reference_number=f"rollback-{rolled_back.id}-{now_iso()}",
            created_by=actor,
            metadata={
                "family": restored.family,
                "rolled_back_rule_id": rolled_back.id,
                "rolled_back_version": rolled_back.version_label,
                "restored_rule_id": restored.id,
                "restored_version": restored.version_label,
                "reason": reason,
            },
        )

    def _restores(self, organization_id: str, family: str) -> dict[str, str]:
        stmt: Select = (
            UniversalStore(self.session, organization_id)
            .scoped(UniversalTransactions)
            .where(UniversalTransactions.transaction_type == TransactionType.ROLLBACK.value)
            .order_by(UniversalTransactions.created_at)
        )
        restored_at: dict[str, str] = {}
        for txn in self.session.execute(stmt).scalars().all():
            meta = load_json(txn.metadata_json) or {}
            if meta.get("family") == family:
                restored_at[str(meta["restored_rule_id"])] = txn.created_at
        return restored_at

    def history(self, organization_id: str, family: str) -> list[VersionHistoryEntry]:
        rules: list[Rule] = self.store.family_rules(organization_id, family)
        last_deployed: dict[str, str | None] = {}
        for dep in self._deployments(organization_id, [r.id for r in rules]):
            last_deployed[dep.rule_id] = dep.completed_at
        restored_at: dict[str, str] = self._restores(organization_id, family)
        return [
            VersionHistoryEntry(
                rule_id=r.id,
                smart_code=r.smart_code,
                version=r.version,
                minor_version=r.minor_version,
                status=r.status.value,
                created_at=r.created_at,
                deployed=r.id in last_deployed,
                last_deployed_at=last_deployed.get(r.id),
                restored_at=restored_at.get(r.id),
            )
            for r in rules
        ]

    def resolve_version(
        self,
        organization_id: str,
        family: str,
        to_version: int,
        minor_version: int | None = None,
    ) -> Rule:
        """Latest deployed minor of major ``to_version`` (or the exact minor when given)."""
        candidates: list[Rule] = [
            r
            for r in self.store.family_rules(organization_id, family)
            if r.version == to_version and (minor_version is None or r.minor_version == minor_version)
        ]
        deployed_ids: set[str] = {
            d.rule_id for d in self._deployments(organization_id, [r.id for r in candidates])
        }
        deployed: list[Rule] = [r for r in candidates if r.id in deployed_ids]
        if not deployed:
            label = f"{to_version}.{minor_version}" if minor_version is not None else str(to_version)
            raise VersionNotFound(f"Version {label} of {family} was never deployed")
        return max(deployed, key=lambda r: (r.version_identity, r.created_at))
