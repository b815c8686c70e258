"""Tests for ucr.services.simulation."""

from collections.abc import Callable

import pytest
from sqlalchemy.orm import Session

from conftest import CANCEL_PAYLOAD, ORG, make_draft
from ucr.services.errors import RuleNotFound, ValidationError
from ucr.services.rule_store import RuleStore
from ucr.services.schemas import Rule, Scenario
from ucr.services.simulation import SimulationEngine, deep_equal, evaluate, result_diff

STANDARD = {
    "grace_minutes": 15,
    "no_show_fee_pct": 100,
    "late_cancel_threshold_minutes": 120,
    "late_cancel_fee_pct": 50,
}
VIP = {**STANDARD, "late_cancel_fee_pct": 0, "no_show_fee_pct": 25}


def _cancellation_scenarios() -> list[Scenario]:
    return [
        Scenario("regular", {"customer_tier": "REGULAR"}, dict(STANDARD)),
        Scenario("vip-top-level", {"customer_tier": "VIP"}, dict(VIP)),
        Scenario("vip-nested", {"customer": {"customer_tier": "VIP"}}, dict(VIP)),
    ]


class TestEvaluate:
    def test_definitions_only(self) -> None:
        assert evaluate(CANCEL_PAYLOAD, {}) == STANDARD

    def test_exception_applies(self) -> None:
        assert evaluate(CANCEL_PAYLOAD, {"customer_tier": "VIP"}) == VIP

    def test_nested_customer_context(self) -> None:
        assert evaluate(CANCEL_PAYLOAD, {"customer": {"customer_tier": "VIP"}}) == VIP

    def test_all_conditions_must_hold(self) -> None:
        payload = {
            "definitions": {"fee": 10},
            "exceptions": [{"if": {"tier": "VIP", "channel": "APP"}, "then": {"fee": 0}}],
        }
        assert evaluate(payload, {"tier": "VIP"}) == {"fee": 10}
        assert evaluate(payload, {"tier": "VIP", "channel": "APP"}) == {"fee": 0}

    def test_last_write_wins(self) -> None:
        payload = {
            "definitions": {"max_discount_pct": 30},
            "exceptions": [
                {"if": {"staff_role": "MANAGER"}, "then": {"max_discount_pct": 50}},
                {"if": {"customer_tier": "VIP"}, "then": {"max_discount_pct": 40}},
            ],
        }
        both = {"staff_role": "MANAGER", "customer_tier": "VIP"}
        assert evaluate(payload, both) == {"max_discount_pct": 40}

    def test_calendar_effects_merged_last(self) -> None:
        payload = {"definitions": {"a": 1}, "calendar_effects": {"blocks_days": 1}}
        assert evaluate(payload, {}) == {"a": 1, "blocks_days": 1}

    def test_bool_is_not_int(self) -> None:
        payload = {"definitions": {}, "exceptions": [{"if": {"flag": True}, "then": {"x": 1}}]}
        assert evaluate(payload, {"flag": 1}) == {}
        assert evaluate(payload, {"flag": True}) == {"x": 1}

    def test_does_not_mutate_payload(self) -> None:
        payload = {"definitions": {"nested": {"a": 1}}}
        result = evaluate(payload, {})
        result["nested"]["a"] = 2
        assert payload["definitions"]["nested"]["a"] == 1

    def test_malformed_exceptions(self) -> None:
        with pytest.raises(ValueError):
            evaluate({"definitions": {}, "exceptions": {"if": {}}}, {})


class TestDiffHelpers:
    def test_deep_equal(self) -> None:
        assert deep_equal({"a": [1, 2]}, {"a": [1, 2]})
        assert not deep_equal({"a": 1}, {"a": True})
        assert deep_equal(1, 1.0)

    def test_result_diff(self) -> None:
        diff = result_diff({"a": 1, "b": 2}, {"a": 2, "c": 3})
        assert diff == [
            "a: expected 1, got 2",
            "b: expected 2, missing",
            "c: unexpected 3",
        ]


class TestSimulationEngine:
    def test_cancellation_policy(self) -> None:
        result = SimulationEngine(max_workers=1).simulate(
            ORG, _cancellation_scenarios(), draft=make_draft()
        )
        assert [r.passed for r in result.results] == [True, True, True]
        assert result.coverage == 100.0
        assert result.passed == 3
        assert result.failed == 0

    def test_failure_reports_diff(self) -> None:
        scenarios = [Scenario("wrong", {"customer_tier": "VIP"}, dict(STANDARD))]
        result = SimulationEngine(max_workers=1).simulate(ORG, scenarios, draft=CANCEL_PAYLOAD)
        assert not result.results[0].passed
        assert "late_cancel_fee_pct: expected 50, got 0" in result.results[0].diff
        assert result.coverage == 0.0

    def test_partial_coverage(self) -> None:
        scenarios = _cancellation_scenarios()
        scenarios[2] = Scenario("bad", {}, {"nope": 1})
        result = SimulationEngine(max_workers=1).simulate(ORG, scenarios, draft=CANCEL_PAYLOAD)
        assert result.coverage == pytest.approx(200 / 3)
        assert result.coverage != 66.67
        assert result.failed == 1

    def test_no_scenarios(self) -> None:
        result = SimulationEngine(max_workers=1).simulate(ORG, [], draft=CANCEL_PAYLOAD)
        assert result.coverage == 0.0
        assert result.results == []

    def test_evaluation_error_fails_scenario(self) -> None:
        payload = {"definitions": "oops"}
        result = SimulationEngine(max_workers=1).simulate(
            ORG, [Scenario("s1", {}, {})], draft=payload
        )
        assert not result.results[0].passed
        assert result.results[0].actual is None
        assert "definitions must be a map" in (result.results[0].error or "")

    def test_accepts_dict_scenarios(self) -> None:
        raw = [{"scenarioId": "vip", "context": {"customer_tier": "VIP"}, "expected": VIP}]
        result = SimulationEngine(max_workers=1).simulate(ORG, raw, draft=CANCEL_PAYLOAD)
        assert result.results[0].scenario_id == "vip"
        assert result.results[0].passed

    def test_thread_pool_keeps_order(self) -> None:
        scenarios = [
            Scenario(f"s{i}", {"customer_tier": "VIP" if i % 2 else "REGULAR"}, VIP if i % 2 else STANDARD)
            for i in range(20)
        ]
        result = SimulationEngine(max_workers=4).simulate(ORG, scenarios, draft=CANCEL_PAYLOAD)
        assert [r.scenario_id for r in result.results] == [f"s{i}" for i in range(20)]
        assert result.passed == 20

    def test_requires_rule_or_draft(self) -> None:
        with pytest.raises(ValidationError):
            SimulationEngine(max_workers=1).simulate(ORG, [])

    def test_stored_rule_and_regressions(self, session: Session) -> None:
        store = RuleStore(session)
        baseline: Rule = store.create(ORG, make_draft())
        candidate: Rule = store.create(
            ORG,
            make_draft(minor_version=1, payload={**CANCEL_PAYLOAD, "exceptions": []}),
        )
        engine = SimulationEngine(session, max_workers=1)
        result = engine.simulate(
            ORG, _cancellation_scenarios(), rule_id=candidate.id, baseline_rule_id=baseline.id
        )
        assert result.regressions == ["vip-top-level", "vip-nested"]
        assert result.passed == 1

    def test_unknown_rule(self, session: Session) -> None:
        with pytest.raises(RuleNotFound):
            SimulationEngine(session, max_workers=1).simulate(ORG, [], rule_id="missing")
