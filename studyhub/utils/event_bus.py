# studyhub/utils/event_bus.py
"""
In-process domain event bus.

Handlers are registered explicitly per event class at application start-up.
Publishing never runs a handler inside the publisher's transaction: events
reach the bus only through ``unit_of_work`` after its commit, and the bus
hands each event to the worker pool (or runs it inline in tests), where every
handler subscribed to that event class is executed in turn.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Type

logger = logging.getLogger(__name__)


@dataclass
class DeliveryReport:
    """Outcome of delivering one event instance to its subscribers."""

    event: Any
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class EventBus:
    """
    Fan-out dispatcher keyed by domain event class.

    Delivery of one event instance runs all of its handlers in sequence; a
    failing handler is logged and recorded in the report, and the remaining
    handlers still run.
    """

    def __init__(self):
        self._handlers: Dict[Type, List[Callable[[Any], None]]] = {}
        self._submit: Optional[Callable[..., None]] = None

    def subscribe(self, event_type: Type, handler: Callable[[Any], None]) -> None:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Domain event class
            handler: Callback invoked with the event instance
        """
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Subscribed {handler.__name__} to {event_type.__name__}")

    def unsubscribe(self, event_type: Type, handler: Callable) -> bool:
        try:
            self._handlers.get(event_type, []).remove(handler)
            return True
        except ValueError:
            return False

    def handlers_for(self, event_type: Type) -> List[Callable[[Any], None]]:
        return list(self._handlers.get(event_type, []))

    def describe(self) -> Dict[str, List[str]]:
        return {
            event_type.__name__: [h.__name__ for h in handlers]
            for event_type, handlers in self._handlers.items()
        }

    def use_submitter(self, submit: Callable[..., None]) -> None:
        """Route deliveries through ``submit(func, *args)`` (the worker pool)."""
        self._submit = submit

    def publish(self, event: Any) -> None:
        """
        Hand a committed event over for delivery.

        Fire-and-forget from the caller's point of view: nothing raised by a
        handler reaches the publisher.
        """
        if not self._handlers.get(type(event)):
            logger.debug(f"No handlers registered for {type(event).__name__}")
            return
        if self._submit is None:
            self.deliver(event)
            return
        try:
            self._submit(self.deliver, event)
        except Exception as e:
            logger.error(f"Failed to schedule delivery of {type(event).__name__}: {e}", exc_info=True)

    def deliver(self, event: Any) -> DeliveryReport:
        """Run every handler subscribed to the event's class."""
        report = DeliveryReport(event=event)
        for handler in self.handlers_for(type(event)):
            try:
                handler(event)
                report.succeeded.append(handler.__name__)
            except Exception as e:
                logger.error(
                    f"Handler {handler.__name__} failed for {type(event).__name__}: {e}",
                    exc_info=True,
                )
                report.failed[handler.__name__] = e
        if report.failed:
            logger.warning(
                f"{type(event).__name__} delivered with {len(report.failed)} failed handler(s): "
                f"{', '.join(report.failed)}"
            )
        return report

    def clear(self) -> None:
        """Clear all subscriptions."""
        self._handlers.clear()
