"""Domain events emitted by the state machine engine.

Events are handed to the notifier after the state change they describe has
been committed. Delivery is best-effort: a failing notifier never rolls back
a transition.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

__all__ = [
    "EntityCreated",
    "EntityTransitioned",
    "TimeoutTransitionMissing",
    "WorkflowEvent",
]


@dataclass(frozen=True)
class WorkflowEvent:
    """Base class for all engine events.

    Attributes:
        entity_id: The entity the event concerns.
        definition_id: The definition the entity runs against.
        occurred_at: When the event happened.
    """

    entity_id: UUID
    definition_id: UUID
    occurred_at: datetime

    @property
    def event_type(self) -> str:
        """Dotted event name, e.g. ``entity.transitioned``."""
        return _EVENT_TYPES[type(self)]

    def to_dict(self) -> dict[str, Any]:
        """Serialize the event to a JSON-compatible dict."""
        data: dict[str, Any] = {"event_type": self.event_type}
        for key, value in asdict(self).items():
            if isinstance(value, UUID):
                value = str(value)
            elif isinstance(value, datetime):
                value = value.isoformat()
            data[key] = value
        return data


@dataclass(frozen=True)
class EntityCreated(WorkflowEvent):
    """Event emitted when an entity is created in its definition's initial state.

    Attributes:
        state: Name of the initial state.
        actor_id: Who created the entity.
        owner_id: Owner assigned at creation, if any.
    """

    state: str
    actor_id: str
    owner_id: str | None = None


@dataclass(frozen=True)
class EntityTransitioned(WorkflowEvent):
    """Event emitted after a transition commits.

    Attributes:
        from_state: Name of the state left.
        to_state: Name of the state entered.
        actor_id: Who fired the transition.
        transition_name: The transition fired.
        record_id: The history record written for the transition.

    Example:
        >>> event = EntityTransitioned(
        ...     entity_id=uuid4(),
        ...     definition_id=uuid4(),
        ...     occurred_at=datetime.now(timezone.utc),
        ...     from_state="draft",
        ...     to_state="review",
        ...     actor_id="alice",
        ...     transition_name="submit",
        ...     record_id=uuid4(),
        ... )
    """

    from_state: str | None
    to_state: str
    actor_id: str
    transition_name: str
    record_id: UUID | None = None


@dataclass(frozen=True)
class TimeoutTransitionMissing(WorkflowEvent):
    """Warning emitted when a timed-out entity's state has no timeout transition.

    The sweeper never forces an undefined transition; it reports the entity
    instead.

    Attributes:
        state: Name of the timed-out state.
        transition_name: The timeout transition that was looked for.
        timeout_at: When the state's timeout elapsed.
    """

    state: str
    transition_name: str
    timeout_at: datetime | None = None


_EVENT_TYPES: dict[type[WorkflowEvent], str] = {
    WorkflowEvent: "entity.event",
    EntityCreated: "entity.created",
    EntityTransitioned: "entity.transitioned",
    TimeoutTransitionMissing: "entity.timeout_transition_missing",
}
