"""Rule, template and scenario data transfer objects."""

import copy
from dataclasses import dataclass, field

from db.enums import RuleStatus
from ucr.services._helpers import JsonDict, smart_code_family


@dataclass
class Rule:
    id: str
    organization_id: str
    smart_code: str
    title: str
    status: RuleStatus
    version: int
    rule_payload: JsonDict
    tags: list[str] = field(default_factory=list)
    owner: str = "system"
    minor_version: int = 0
    schema_version: int = 1
    ai_metadata: JsonDict | None = None
    requires_approval: bool = True
    approvals: list[JsonDict] = field(default_factory=list)
    predecessor_id: str | None = None
    version_notes: str | None = None
    created_by: str = "system"
    created_at: str = ""
    updated_at: str = ""

    @property
    def family(self) -> str:
        return smart_code_family(self.smart_code)

    @property
    def version_identity(self) -> tuple[int, int]:
        return (self.version, self.minor_version)

    @property
    def version_label(self) -> str:
        return f"{self.version}.{self.minor_version}"


@dataclass
class RuleDraft:
    """A rule as submitted for creation or validation."""

    organization_id: str
    smart_code: str
    title: str
    rule_payload: JsonDict
    tags: list[str] = field(default_factory=list)
    owner: str = "system"
    version: int | None = None
    minor_version: int = 0
    schema_version: int = 1
    ai_metadata: JsonDict | None = None
    requires_approval: bool | None = None

    @classmethod
    def from_rule(cls, rule: Rule) -> "RuleDraft":
        return cls(
            organization_id=rule.organization_id,
            smart_code=rule.smart_code,
            title=rule.title,
            rule_payload=copy.deepcopy(rule.rule_payload),
            tags=list(rule.tags),
            owner=rule.owner,
            version=rule.version,
            minor_version=rule.minor_version,
            schema_version=rule.schema_version,
            ai_metadata=copy.deepcopy(rule.ai_metadata),
            requires_approval=rule.requires_approval,
        )


@dataclass
class RuleFilters:
    status: RuleStatus | None = None
    family: str | None = None
    smart_code: str | None = None
    tags: list[str] = field(default_factory=list)
    query: str | None = None
    include_deprecated: bool = True
    limit: int | None = None


@dataclass(frozen=True)
class Template:
    template_id: str
    industry: str
    module: str
    smart_code: str
    title: str
    rule_payload: JsonDict


@dataclass
class Scenario:
    scenario_id: str
    context: JsonDict
    expected: JsonDict

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Scenario":
        context: object = data.get("context") or {}
        expected: object = data.get("expected") or {}
        return cls(
            scenario_id=str(data.get("scenario_id") or data.get("scenarioId") or ""),
            context=dict(context) if isinstance(context, dict) else {},
            expected=dict(expected) if isinstance(expected, dict) else {},
        )
