"""SQLAlchemy models for state machine persistence.

This module defines the database models for persisting workflow state:
- WorkflowDefinitionModel: One published, immutable version of a workflow
- StateModel: The states of a definition
- TransitionModel: The legal moves between states of a definition
- WorkflowEntityModel: One in-flight instance of a definition
- TransitionRecordModel: Append-only history of committed transitions
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from advanced_alchemy.base import UUIDAuditBase
from advanced_alchemy.types import DateTimeUTC
from sqlalchemy import JSON, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

__all__ = [
    "StateModel",
    "TransitionModel",
    "TransitionRecordModel",
    "WorkflowDefinitionModel",
    "WorkflowEntityModel",
]


# Cross-database JSON type: uses JSONB for PostgreSQL, JSON for others (SQLite, MySQL, etc.)
JSONType = JSON().with_variant(JSONB, "postgresql")


class WorkflowDefinitionModel(UUIDAuditBase):
    """Persisted workflow definition version.

    Rows are written once, when a blueprint is published, and never changed
    afterwards except for the ``is_active`` flag.

    Attributes:
        name: Workflow name, shared by all versions.
        version: Version number, increasing per name.
        description: Human-readable description of the workflow.
        initial_state_id: The state new entities start in.
        is_active: Whether new entities may be created against this version.
        states: The states of this version.
        transitions: The transitions of this version, in definition order.
    """

    __tablename__ = "fsm_definitions"
    __table_args__ = (
        Index("ix_fsm_definitions_name_version", "name", "version", unique=True),
        Index("ix_fsm_definitions_name_active", "name", "is_active"),
    )

    name: Mapped[str] = mapped_column(String(255), index=True)
    version: Mapped[int] = mapped_column(Integer)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    initial_state_id: Mapped[UUID | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(default=False)

    # Relationships
    states: Mapped[list[StateModel]] = relationship(
        back_populates="definition",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    transitions: Mapped[list[TransitionModel]] = relationship(
        back_populates="definition",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="TransitionModel.position",
    )


class StateModel(UUIDAuditBase):
    """A state of a workflow definition.

    Attributes:
        definition_id: Foreign key to the workflow definition.
        name: State name, unique within the definition.
        is_initial: Whether new entities start here.
        is_terminal: Whether entities here are permanently settled.
        timeout_seconds: Maximum time in the state, if bounded.
        timeout_transition: Transition fired when the timeout elapses.
    """

    __tablename__ = "fsm_states"
    __table_args__ = (UniqueConstraint("definition_id", "name", name="uq_fsm_states_definition_name"),)

    definition_id: Mapped[UUID] = mapped_column(
        ForeignKey("fsm_definitions.id", ondelete="CASCADE"),
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255))
    is_initial: Mapped[bool] = mapped_column(default=False)
    is_terminal: Mapped[bool] = mapped_column(default=False)
    timeout_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    timeout_transition: Mapped[str | None] = mapped_column(String(255), nullable=True)

    definition: Mapped[WorkflowDefinitionModel] = relationship(back_populates="states")


class TransitionModel(UUIDAuditBase):
    """A named, directed edge between two states of the same definition.

    Attributes:
        definition_id: Foreign key to the workflow definition.
        name: Transition name, unique per from-state.
        from_state_id: State the transition leaves.
        to_state_id: State the transition enters.
        is_auto: Whether the engine fires it without an external call.
        requires_approval: Whether an approver must be supplied.
        is_retry: Whether it is an allowed self-loop.
        position: Order within the definition.
        conditions: Serialized condition references, in evaluation order.
    """

    __tablename__ = "fsm_transitions"
    __table_args__ = (
        UniqueConstraint("definition_id", "from_state_id", "name", name="uq_fsm_transitions_from_name"),
        Index("ix_fsm_transitions_from_state_id", "from_state_id"),
    )

    definition_id: Mapped[UUID] = mapped_column(
        ForeignKey("fsm_definitions.id", ondelete="CASCADE"),
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255))
    from_state_id: Mapped[UUID] = mapped_column(ForeignKey("fsm_states.id", ondelete="CASCADE"))
    to_state_id: Mapped[UUID] = mapped_column(ForeignKey("fsm_states.id", ondelete="CASCADE"))
    is_auto: Mapped[bool] = mapped_column(default=False)
    requires_approval: Mapped[bool] = mapped_column(default=False)
    is_retry: Mapped[bool] = mapped_column(default=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    conditions: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list)

    definition: Mapped[WorkflowDefinitionModel] = relationship(back_populates="transitions")


class WorkflowEntityModel(UUIDAuditBase):
    """One in-flight instance of a workflow definition.

    Only the transition engine mutates these rows. Entities are never deleted;
    they settle in a terminal state instead.

    Attributes:
        definition_id: The definition version, fixed at creation.
        current_state_id: State the entity is in.
        previous_state_id: State before the last transition.
        version: Monotonic version, bumped by every write.
        owner_id: Optional assigned owner.
        state_entered_at: When the current state was entered.
        timeout_at: When the current state's timeout elapses, if bounded.
        next_sweep_at: When the sweeper may look at the entity again after its
            timeout transition was missing or denied. Cleared on every state change.
    """

    __tablename__ = "fsm_entities"
    __table_args__ = (
        Index("ix_fsm_entities_timeout_at", "timeout_at"),
        Index("ix_fsm_entities_next_sweep_at", "next_sweep_at"),
        Index("ix_fsm_entities_current_state_id", "current_state_id"),
        Index("ix_fsm_entities_owner_id", "owner_id"),
    )

    definition_id: Mapped[UUID] = mapped_column(ForeignKey("fsm_definitions.id", ondelete="RESTRICT"))
    current_state_id: Mapped[UUID] = mapped_column(ForeignKey("fsm_states.id", ondelete="RESTRICT"))
    previous_state_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("fsm_states.id", ondelete="RESTRICT"),
        nullable=True,
    )
    version: Mapped[int] = mapped_column(Integer, default=1)
    owner_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    state_entered_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))
    timeout_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
    next_sweep_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)


class TransitionRecordModel(UUIDAuditBase):
    """Append-only record of a committed transition.

    The unique ``(entity_id, sequence)`` pair makes a second commit from the
    same entity version impossible even if the version check is bypassed.

    Attributes:
        entity_id: The entity that moved.
        sequence: The entity version the transition produced.
        from_state_id: State left. ``None`` for creation records.
        to_state_id: State entered.
        transition_name: Name of the transition fired.
        actor_id: Who fired it.
        occurred_at: Commit timestamp, strictly increasing per entity.
        context: Context supplied with the transition.
        duration_seconds: Time since the previous record of the entity.
    """

    __tablename__ = "fsm_transition_records"
    __table_args__ = (
        UniqueConstraint("entity_id", "sequence", name="uq_fsm_transition_records_entity_sequence"),
        Index("ix_fsm_transition_records_entity_occurred", "entity_id", "occurred_at"),
    )

    entity_id: Mapped[UUID] = mapped_column(ForeignKey("fsm_entities.id", ondelete="RESTRICT"))
    sequence: Mapped[int] = mapped_column(Integer)
    from_state_id: Mapped[UUID | None] = mapped_column(nullable=True)
    to_state_id: Mapped[UUID] = mapped_column()
    transition_name: Mapped[str] = mapped_column(String(255))
    actor_id: Mapped[str] = mapped_column(String(255))
    occurred_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))
    context: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
