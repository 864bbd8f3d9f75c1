"""Core protocols for litestar-fsm.

This module defines the Protocol-based interfaces at the engine's external
boundaries. Using Protocol allows duck typing while maintaining type safety.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, NamedTuple, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime

    from litestar_fsm.core.events import WorkflowEvent

__all__ = ["Notifier", "Predicate", "Verdict"]


class Verdict(NamedTuple):
    """Outcome of evaluating a transition's conditions.

    Attributes:
        allowed: Whether the transition may fire.
        reason: Why it was denied. Empty when allowed.
    """

    allowed: bool
    reason: str = ""


@runtime_checkable
class Notifier(Protocol):
    """Consumer of engine events.

    The engine calls ``notify`` after a commit without awaiting delivery in the
    caller's path. Implementations own delivery, retries and deduplication;
    consumers should assume at-least-once semantics.

    Example:
        >>> class WebhookNotifier:
        ...     async def notify(self, event: WorkflowEvent) -> None:
        ...         await client.post(url, json=event.to_dict())
    """

    async def notify(self, event: WorkflowEvent) -> None:
        """Deliver an event.

        Args:
            event: The event to deliver.
        """
        ...


class Predicate(Protocol):
    """A named condition check registered with the condition evaluator.

    A predicate receives the parameters stored on the transition's condition
    reference, the caller's context and the evaluation time, and returns a
    verdict. It must be pure: no I/O and no mutation of its arguments.
    """

    def __call__(self, params: Mapping[str, Any], context: Mapping[str, Any], now: datetime) -> Verdict:
        """Evaluate the condition.

        Args:
            params: Parameters stored with the condition reference.
            context: The caller-supplied transition context.
            now: The evaluation time (UTC).

        Returns:
            The verdict for this condition.
        """
        ...
