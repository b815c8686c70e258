"""Deployment, approval and audit data transfer objects."""

from dataclasses import asdict, dataclass, field
from datetime import datetime

from db.enums import AuditEventType, DeploymentStatus, RuleStatus
from ucr.services._helpers import JsonDict, new_id, now_iso


@dataclass
class Approval:
    user_id: str
    user_name: str
    role: str
    approved_at: str = field(default_factory=now_iso)
    notes: str | None = None

    def to_dict(self) -> JsonDict:
        data: JsonDict = asdict(self)
        if self.notes is None:
            data.pop("notes")
        return data

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Approval":
        notes: object = data.get("notes")
        return cls(
            user_id=str(data.get("user_id", "")),
            user_name=str(data.get("user_name", "")),
            role=str(data.get("role", "")),
            approved_at=str(data.get("approved_at") or now_iso()),
            notes=str(notes) if notes is not None else None,
        )


@dataclass
class DeploymentScope:
    apps: list[str] = field(default_factory=list)
    locations: list[str] = field(default_factory=list)
    segments: object = None

    def to_dict(self) -> JsonDict:
        data: JsonDict = {"apps": sorted(set(self.apps)), "locations": sorted(set(self.locations))}
        if self.segments is not None:
            data["segments"] = self.segments
        return data

    @classmethod
    def from_dict(cls, data: dict[str, object] | None) -> "DeploymentScope":
        data = data or {}
        apps: object = data.get("apps") or []
        locations: object = data.get("locations") or []
        return cls(
            apps=[str(a) for a in apps] if isinstance(apps, list | set | tuple) else [],
            locations=[str(loc) for loc in locations]
            if isinstance(locations, list | set | tuple)
            else [],
            segments=data.get("segments"),
        )


@dataclass
class DeploymentRequest:
    rule_id: str
    scope: DeploymentScope = field(default_factory=DeploymentScope)
    effective_from: str | datetime | None = None
    effective_to: str | datetime | None = None
    approvals: list[Approval] = field(default_factory=list)
    checklist: dict[str, bool] = field(default_factory=dict)
    deployment_id: str = field(default_factory=new_id)
    actor: str = "system"


@dataclass
class DeploymentRecord:
    id: str
    organization_id: str
    rule_id: str
    smart_code: str
    scope: JsonDict
    effective_from: str
    effective_to: str | None
    approvals: list[JsonDict]
    checklist: JsonDict
    status: DeploymentStatus
    requires_approval: bool
    transaction_id: str | None = None
    error: str | None = None
    created_by: str = "system"
    created_at: str = ""
    completed_at: str | None = None
    rolled_back_at: str | None = None


@dataclass
class AuditEvent:
    id: str
    organization_id: str
    rule_id: str
    event_type: AuditEventType
    actor: str
    from_status: RuleStatus | None
    to_status: RuleStatus | None
    metadata: JsonDict
    created_at: str


@dataclass(frozen=True)
class TransitionEvent:
    """Progress event published after a lifecycle transition is committed."""

    organization_id: str
    rule_id: str
    smart_code: str
    status: RuleStatus
    deployment_id: str | None = None
    occurred_at: str = field(default_factory=now_iso)
