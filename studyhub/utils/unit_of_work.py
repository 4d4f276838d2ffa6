# studyhub/utils/unit_of_work.py
"""Unit of Work: one commit per business operation, events published after it.

Usage:
    with unit_of_work() as uow:
        study.published = True
        uow.collect(StudyCreated(study_id=study.id))
    # committed here, then StudyCreated is handed to the event bus

If the block raises, the session is rolled back and the collected events are
discarded, so no side effect is ever triggered for state that was undone.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, List

from studyhub import db, event_bus

logger = logging.getLogger(__name__)

_SESSION_KEY = "studyhub.unit_of_work"


class UnitOfWork:
    def __init__(self, session):
        self.session = session
        self._pending_events: List[Any] = []

    def collect(self, event: Any) -> None:
        """Collect a domain event for publishing after commit."""
        self._pending_events.append(event)

    def collect_all(self, events) -> None:
        self._pending_events.extend(events)

    @property
    def pending_events(self) -> List[Any]:
        return list(self._pending_events)

    def discard_events(self) -> None:
        if self._pending_events:
            logger.info(f"Discarding {len(self._pending_events)} domain event(s) after rollback")
        self._pending_events.clear()

    def publish_events(self) -> None:
        events, self._pending_events = self._pending_events, []
        for event in events:
            event_bus.publish(event)


@contextmanager
def unit_of_work() -> Iterator[UnitOfWork]:
    """Open a unit of work on ``db.session``; nested use joins the outer one."""
    session = db.session
    outer = session.info.get(_SESSION_KEY)
    if outer is not None:
        yield outer
        return

    uow = UnitOfWork(session)
    session.info[_SESSION_KEY] = uow
    try:
        yield uow
        session.commit()
    except Exception:
        session.rollback()
        uow.discard_events()
        raise
    finally:
        session.info.pop(_SESSION_KEY, None)

    uow.publish_events()
