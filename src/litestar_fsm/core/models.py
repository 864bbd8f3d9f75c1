"""Concrete data models for litestar-fsm.

This module provides the dataclasses returned to callers. They are detached
snapshots of persisted rows, safe to use after the session that loaded them
has closed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

__all__ = ["EntityData", "TransitionRecordData"]


@dataclass
class EntityData:
    """Snapshot of a workflow entity.

    Attributes:
        id: Unique identifier of the entity.
        definition_id: The definition version the entity runs against.
        current_state_id: State the entity is in.
        current_state: Name of the current state.
        previous_state_id: State the entity was in before the last transition.
        version: Monotonic version used for optimistic concurrency.
        owner_id: Optional assigned owner.
        state_entered_at: When the entity entered its current state.
        timeout_at: When the current state's timeout elapses, if it has one.
        created_at: When the entity was created.
        updated_at: When the entity was last modified.
    """

    id: UUID
    definition_id: UUID
    current_state_id: UUID
    current_state: str
    version: int
    state_entered_at: datetime
    previous_state_id: UUID | None = None
    owner_id: str | None = None
    timeout_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class TransitionRecordData:
    """Immutable history entry describing one committed transition.

    Attributes:
        id: Unique identifier of the record.
        entity_id: The entity that moved.
        sequence: The entity version this transition produced.
        from_state_id: State left. ``None`` for a creation record.
        to_state_id: State entered.
        transition_name: Name of the transition fired.
        actor_id: Who fired it.
        occurred_at: Commit timestamp, strictly increasing per entity.
        context: Free-form context supplied with the transition.
        duration_seconds: Time since the previous record, if there was one.
    """

    id: UUID
    entity_id: UUID
    sequence: int
    to_state_id: UUID
    transition_name: str
    actor_id: str
    occurred_at: datetime
    from_state_id: UUID | None = None
    context: dict[str, Any] = field(default_factory=dict)
    duration_seconds: float | None = None
