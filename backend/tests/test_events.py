"""Tests for the transition event bus and family locks."""

import threading

import pytest

from db.enums import RuleStatus
from ucr.services.events import TransitionEventBus
from ucr.services.locks import KeyedLock
from ucr.services.schemas import TransitionEvent


def _event(status: RuleStatus, rule_id: str = "rule-1") -> TransitionEvent:
    return TransitionEvent(
        organization_id="org-1",
        rule_id=rule_id,
        smart_code="HERA.SALON.APPT.CANCEL.v1",
        status=status,
    )


class TestTransitionEventBus:
    def test_handlers_receive_events(self) -> None:
        bus = TransitionEventBus()
        seen: list[TransitionEvent] = []
        bus.subscribe(seen.append)
        bus.publish(_event(RuleStatus.ACTIVE))
        assert [e.status for e in seen] == [RuleStatus.ACTIVE]

    def test_status_filter(self) -> None:
        bus = TransitionEventBus()
        seen: list[RuleStatus] = []

        @bus.on(RuleStatus.ACTIVE, RuleStatus.ROLLED_BACK)
        def _handler(event: TransitionEvent) -> None:
            seen.append(event.status)

        for status in (RuleStatus.DEPLOYING, RuleStatus.ACTIVE, RuleStatus.SUPERSEDED, RuleStatus.ROLLED_BACK):
            bus.publish(_event(status))
        assert seen == [RuleStatus.ACTIVE, RuleStatus.ROLLED_BACK]

    def test_unsubscribe(self) -> None:
        bus = TransitionEventBus()
        seen: list[TransitionEvent] = []
        handler = bus.subscribe(seen.append)
        bus.unsubscribe(handler)
        bus.publish(_event(RuleStatus.ACTIVE))
        assert seen == []

    def test_failing_handler_does_not_stop_others(self) -> None:
        bus = TransitionEventBus()
        seen: list[str] = []

        def _broken(event: TransitionEvent) -> None:
            raise RuntimeError("subscriber down")

        bus.subscribe(_broken)
        bus.subscribe(lambda e: seen.append(e.rule_id))
        bus.publish(_event(RuleStatus.ACTIVE, rule_id="rule-9"))
        assert seen == ["rule-9"]

    def test_clear(self) -> None:
        bus = TransitionEventBus()
        seen: list[TransitionEvent] = []
        bus.subscribe(seen.append)
        bus.clear()
        bus.publish(_event(RuleStatus.ACTIVE))
        assert seen == []


class TestKeyedLock:
    def test_lock_dropped_after_release(self) -> None:
        locks = KeyedLock()
        with locks.hold(("org-1", "HERA.A")):
            assert len(locks) == 1
        assert len(locks) == 0

    def test_distinct_keys_do_not_block(self) -> None:
        locks = KeyedLock()
        with locks.hold("a"):
            done = threading.Event()

            def _other() -> None:
                with locks.hold("b"):
                    done.set()

            t = threading.Thread(target=_other)
            t.start()
            assert done.wait(timeout=5)
            t.join()

    def test_same_key_serializes(self) -> None:
        locks = KeyedLock()
        order: list[str] = []
        entered = threading.Event()

        def _second() -> None:
            entered.set()
            with locks.hold("fam"):
                order.append("second")

        with locks.hold("fam"):
            t = threading.Thread(target=_second)
            t.start()
            assert entered.wait(timeout=5)
            order.append("first")
        t.join(timeout=5)
        assert order == ["first", "second"]
        assert len(locks) == 0

    def test_released_on_error(self) -> None:
        locks = KeyedLock()
        with pytest.raises(ValueError):
            with locks.hold("fam"):
                raise ValueError("boom")
        assert len(locks) == 0
