"""Notifier implementations.

Notifiers receive events after the state change they describe has committed.
The engine never waits on them inside a transaction and never rolls back
because of them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID

    from litestar_fsm.core.events import WorkflowEvent
    from litestar_fsm.core.protocols import Notifier

__all__ = ["CompositeNotifier", "InMemoryNotifier", "LoggingNotifier"]

logger = logging.getLogger(__name__)


class LoggingNotifier:
    """Writes every event to a logger."""

    def __init__(self, logger_name: str = "litestar_fsm.events", level: int = logging.INFO) -> None:
        self.logger = logging.getLogger(logger_name)
        self.level = level

    async def notify(self, event: WorkflowEvent) -> None:
        self.logger.log(self.level, "%s %s", event.event_type, event.to_dict())


class InMemoryNotifier:
    """Collects events in memory.

    Useful in tests and for wiring a process-local consumer through
    :meth:`wait_for`.

    Attributes:
        events: Every event received, in delivery order.
    """

    def __init__(self) -> None:
        self.events: list[WorkflowEvent] = []
        self._received = asyncio.Condition()

    async def notify(self, event: WorkflowEvent) -> None:
        async with self._received:
            self.events.append(event)
            self._received.notify_all()

    def for_entity(self, entity_id: UUID) -> list[WorkflowEvent]:
        """Events received for one entity."""
        return [event for event in self.events if event.entity_id == entity_id]

    async def wait_for(self, count: int, timeout: float | None = 5.0) -> list[WorkflowEvent]:
        """Wait until at least ``count`` events have been received.

        Raises:
            TimeoutError: If the events do not arrive in time.
        """
        async with self._received:
            await asyncio.wait_for(self._received.wait_for(lambda: len(self.events) >= count), timeout)
            return list(self.events)

    def clear(self) -> None:
        self.events.clear()


class CompositeNotifier:
    """Fans events out to several notifiers.

    Every notifier is called even when an earlier one fails; failures are
    logged here so one broken receiver does not starve the others.
    """

    def __init__(self, notifiers: Iterable[Notifier]) -> None:
        self.notifiers = list(notifiers)

    async def notify(self, event: WorkflowEvent) -> None:
        results = await asyncio.gather(
            *(notifier.notify(event) for notifier in self.notifiers),
            return_exceptions=True,
        )
        for notifier, result in zip(self.notifiers, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(
                    "%s failed to deliver %s",
                    type(notifier).__name__,
                    event.event_type,
                    exc_info=result,
                )
