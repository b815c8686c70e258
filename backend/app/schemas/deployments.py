"""Lifecycle and deployment request schemas."""

from typing import Any

from pydantic import Field

from app.schemas.common import ActorBody, CamelModel


class SubmitRequest(ActorBody):
    requires_approval: bool | None = None


class ApprovalIn(CamelModel):
    user_id: str = Field(..., min_length=1)
    user_name: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1)
    approved_at: str | None = None
    notes: str | None = Field(None, max_length=2000)


class ScopeIn(CamelModel):
    apps: list[str] = Field(default_factory=list)
    locations: list[str] = Field(default_factory=list)
    segments: Any = None


class DeployRequest(ActorBody):
    scope: ScopeIn = Field(default_factory=ScopeIn)
    effective_from: str | None = Field(None, description="ISO date or datetime; defaults to now")
    effective_to: str | None = None
    approvals: list[ApprovalIn] = Field(default_factory=list)
    checklist: dict[str, bool] = Field(default_factory=dict)
    deployment_id: str | None = Field(None, description="Idempotency key")


class DeprecateRequest(ActorBody):
    reason: str | None = Field(None, max_length=2000)


class RollbackRequest(ActorBody):
    to_version: int = Field(..., ge=1)
    minor_version: int | None = Field(None, ge=0)
    rule_id: str | None = None
    smart_code: str | None = None
    reason: str | None = Field(None, max_length=2000)


class ScheduleRunRequest(CamelModel):
    now: str | None = Field(None, description="Evaluate schedules as of this instant")
    organization_id: str | None = None
