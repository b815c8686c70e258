"""Result dataclasses returned by service operations."""

from dataclasses import dataclass, field

from ucr.services._helpers import JsonDict
from ucr.services.schemas.deployments import DeploymentRecord


@dataclass
class ValidationResult:
    ok: bool
    errors: list[str]
    warnings: list[str]


@dataclass
class PayloadCheckResult:
    ok: bool
    errors: list[str]
    hints: list[str]


@dataclass
class ScopeCheckResult:
    allowed: bool
    reason: str | None = None


@dataclass
class ScenarioResult:
    scenario_id: str
    passed: bool
    actual: JsonDict | None
    expected: JsonDict
    diff: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class SimulationResult:
    results: list[ScenarioResult]
    coverage: float
    passed: int
    failed: int
    regressions: list[str]


@dataclass
class BumpResult:
    new_rule_id: str
    new_version: int
    minor_version: int
    smart_code: str


@dataclass
class LineDiff:
    path: str
    old_value: object
    new_value: object
    breaking: bool = False


@dataclass
class DiffResult:
    summary: str
    breaking_changes: list[str]
    line_diffs: list[LineDiff]


@dataclass
class RollbackResult:
    rolled_back_rule_id: str
    restored_rule_id: str
    restored_version: int
    restored_minor_version: int
    smart_code: str
    transaction_id: str


@dataclass
class ScheduleRunResult:
    activated: list[DeploymentRecord]
    failed: list[DeploymentRecord]
    expired: list[str]
