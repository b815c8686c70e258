"""In-process publish/subscribe of rule transition events.

Events are published only after the transition has been committed.
"""

import threading
from collections.abc import Callable

import structlog

from db.enums import RuleStatus
from ucr.services.schemas.deployments import TransitionEvent

logger = structlog.get_logger(__name__)

Handler = Callable[[TransitionEvent], None]


class TransitionEventBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: list[tuple[frozenset[RuleStatus] | None, Handler]] = []

    def subscribe(self, handler: Handler, statuses: set[RuleStatus] | None = None) -> Handler:
        """Register ``handler`` for all events, or only for ``statuses``."""
        with self._lock:
            self._handlers.append((frozenset(statuses) if statuses else None, handler))
        return handler

    def unsubscribe(self, handler: Handler) -> None:
        with self._lock:
            self._handlers = [(s, h) for s, h in self._handlers if h is not handler]

    def on(self, *statuses: RuleStatus) -> Callable[[Handler], Handler]:
        """Decorator form of :meth:`subscribe`."""

        def _decorator(fn: Handler) -> Handler:
            return self.subscribe(fn, set(statuses) or None)

        return _decorator

    def publish(self, event: TransitionEvent) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for statuses, handler in handlers:
            if statuses is not None and event.status not in statuses:
                continue
            try:
                handler(event)
            except Exception:
                # the transition is already durable; a subscriber cannot undo it
                logger.exception(
                    "Transition subscriber failed",
                    rule_id=event.rule_id,
                    status=event.status.value,
                )

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()


transition_events = TransitionEventBus()
