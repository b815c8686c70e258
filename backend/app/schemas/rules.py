"""Rule, template and simulation request schemas."""

from typing import Any

from pydantic import Field

from app.schemas.common import ActorBody, CamelModel
from db.enums import ChangeType


class RuleCreate(ActorBody):
    smart_code: str = Field(..., min_length=1, max_length=256)
    title: str = Field(..., min_length=1, max_length=256)
    rule_payload: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    owner: str | None = None
    version: int | None = Field(None, ge=1)
    minor_version: int = Field(0, ge=0)
    schema_version: int = Field(1, ge=1)
    ai_metadata: dict[str, Any] | None = None
    requires_approval: bool | None = None


class RuleUpdate(ActorBody):
    title: str | None = Field(None, min_length=1, max_length=256)
    tags: list[str] | None = None
    rule_payload: dict[str, Any] | None = None


class RuleSearch(CamelModel):
    query: str = ""
    tags: list[str] = Field(default_factory=list)
    include_deprecated: bool = False
    limit: int | None = Field(None, ge=1, le=500)


class PayloadCheck(CamelModel):
    rule_payload: dict[str, Any] | None = None


class ScenarioIn(CamelModel):
    scenario_id: str = Field(..., min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)
    expected: dict[str, Any] = Field(default_factory=dict)


class SimulateRequest(CamelModel):
    scenarios: list[ScenarioIn] = Field(default_factory=list)
    rule_id: str | None = None
    draft: RuleCreate | None = Field(None, description="Simulate an unsaved rule instead of rule_id")
    baseline_rule_id: str | None = None


class BumpRequest(ActorBody):
    change_type: ChangeType
    notes: str | None = Field(None, max_length=2000)


class CloneRequest(ActorBody):
    template_id: str = Field(..., min_length=1)
    target_smart_code: str | None = None
