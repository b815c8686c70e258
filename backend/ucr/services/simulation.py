"""Pure evaluation of rule payloads against scenarios."""

import copy
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor

import structlog
from sqlalchemy.orm import Session

from config import get_settings
from ucr.services._helpers import JsonDict
from ucr.services.errors import ValidationError
from ucr.services.rule_store import RuleStore
from ucr.services.schemas.results import ScenarioResult, SimulationResult
from ucr.services.schemas.rules import RuleDraft, Scenario

logger = structlog.get_logger(__name__)


def _mapping(value: object, what: str) -> Mapping[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{what} must be a map, got {type(value).__name__}")
    return value


def _condition_holds(context: Mapping[str, object], key: str, expected: object) -> bool:
    if key in context and deep_equal(context[key], expected):
        return True
    customer: object = context.get("customer")
    return isinstance(customer, Mapping) and key in customer and deep_equal(customer[key], expected)


def evaluate(payload: Mapping[str, object], context: Mapping[str, object]) -> JsonDict:
    """Definitions, then matching exceptions in order (last write wins), then calendar effects."""
    result: JsonDict = copy.deepcopy(dict(_mapping(payload.get("definitions"), "definitions")))

    exceptions: object = payload.get("exceptions") or []
    if not isinstance(exceptions, list):
        raise ValueError("exceptions must be a list")
    for idx, exc in enumerate(exceptions):
        exc_map = _mapping(exc, f"exceptions[{idx}]")
        condition = _mapping(exc_map.get("if"), f"exceptions[{idx}].if")
        overrides = _mapping(exc_map.get("then"), f"exceptions[{idx}].then")
        if all(_condition_holds(context, str(k), v) for k, v in condition.items()):
            result.update(copy.deepcopy(dict(overrides)))

    calendar = _mapping(payload.get("calendar_effects"), "calendar_effects")
    result.update(copy.deepcopy(dict(calendar)))
    return result


def deep_equal(left: object, right: object) -> bool:
    """Structural equality that keeps booleans distinct from numbers."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, Mapping) and isinstance(right, Mapping):
        return left.keys() == right.keys() and all(deep_equal(left[k], right[k]) for k in left)
    if isinstance(left, list | tuple) and isinstance(right, list | tuple):
        return len(left) == len(right) and all(deep_equal(a, b) for a, b in zip(left, right))
    return left == right


def result_diff(expected: Mapping[str, object], actual: Mapping[str, object]) -> list[str]:
    diffs: list[str] = []
    for key, want in expected.items():
        if key not in actual:
            diffs.append(f"{key}: expected {want!r}, missing")
        elif not deep_equal(actual[key], want):
            diffs.append(f"{key}: expected {want!r}, got {actual[key]!r}")
    for key, got in actual.items():
        if key not in expected:
            diffs.append(f"{key}: unexpected {got!r}")
    return diffs


def run_scenario(payload: Mapping[str, object], scenario: Scenario) -> ScenarioResult:
    try:
        actual: JsonDict = evaluate(payload, scenario.context)
    except Exception as exc:  # recorded as a failed scenario
        return ScenarioResult(
            scenario_id=scenario.scenario_id,
            passed=False,
            actual=None,
            expected=scenario.expected,
            error=str(exc),
        )
    diff: list[str] = result_diff(scenario.expected, actual)
    return ScenarioResult(
        scenario_id=scenario.scenario_id,
        passed=not diff,
        actual=actual,
        expected=scenario.expected,
        diff=diff,
    )


class SimulationEngine:
    """Evaluates scenarios; touches the rule store only to resolve rule ids."""

    def __init__(self, session: Session | None = None, max_workers: int | None = None) -> None:
        self.session: Session | None = session
        self.max_workers: int = max_workers or get_settings().ucr.simulation_max_workers

    def _payload(
        self,
        organization_id: str,
        rule_id: str | None,
        draft: RuleDraft | Mapping[str, object] | None,
    ) -> Mapping[str, object]:
        if draft is not None:
            if isinstance(draft, RuleDraft):
                return draft.rule_payload
            return draft
        if rule_id is None:
            raise ValidationError("Either rule_id or draft is required")
        if self.session is None:
            raise RuntimeError("SimulationEngine needs a database session to resolve rule_id")
        return RuleStore(self.session).get(organization_id, rule_id=rule_id).rule_payload

    def run(self, payload: Mapping[str, object], scenarios: Sequence[Scenario]) -> list[ScenarioResult]:
        """Results in input order, evaluated in a thread pool when configured."""
        if self.max_workers > 1 and len(scenarios) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                return list(pool.map(lambda s: run_scenario(payload, s), scenarios))
        return [run_scenario(payload, s) for s in scenarios]

    def simulate(
        self,
        organization_id: str,
        scenarios: Sequence[Scenario | Mapping[str, object]],
        rule_id: str | None = None,
        draft: RuleDraft | Mapping[str, object] | None = None,
        baseline_rule_id: str | None = None,
    ) -> SimulationResult:
        """Run ``scenarios``. Regressions: baseline passes, candidate fails."""
        cases: list[Scenario] = [
            s if isinstance(s, Scenario) else Scenario.from_dict(dict(s)) for s in scenarios
        ]
        payload: Mapping[str, object] = self._payload(organization_id, rule_id, draft)
        results: list[ScenarioResult] = self.run(payload, cases)

        regressions: list[str] = []
        if baseline_rule_id is not None:
            baseline = self.run(self._payload(organization_id, baseline_rule_id, None), cases)
            regressions = [
                cur.scenario_id
                for base, cur in zip(baseline, results)
                if base.passed and not cur.passed
            ]

        passed: int = sum(1 for r in results if r.passed)
        total: int = len(results)
        coverage: float = passed / total * 100 if total else 0.0
        logger.info(
            "Simulation complete",
            organization_id=organization_id,
            rule_id=rule_id,
            scenarios=total,
            passed=passed,
            regressions=len(regressions),
        )
        return SimulationResult(
            results=results,
            coverage=coverage,
            passed=passed,
            failed=total - passed,
            regressions=regressions,
        )
