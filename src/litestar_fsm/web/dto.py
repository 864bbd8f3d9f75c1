"""Data Transfer Objects for the state machine web API.

This module defines DTOs for serializing and deserializing entities,
transitions, history records and definitions in REST requests and responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from litestar_fsm.core.definition import WorkflowDefinition
    from litestar_fsm.core.models import EntityData, TransitionRecordData

__all__ = [
    "AssignOwnerDTO",
    "CreateEntityDTO",
    "EntityDTO",
    "ExecuteTransitionDTO",
    "GraphDTO",
    "StateDTO",
    "TransitionDTO",
    "TransitionRecordDTO",
    "WorkflowDefinitionDTO",
]


@dataclass
class CreateEntityDTO:
    """DTO for creating a new entity.

    Attributes:
        definition_id: The definition version to run against. Either this or
            ``definition_name`` is required.
        definition_name: Workflow name; the latest active version is used.
        owner_id: Optional owner to assign.
        actor_id: Who creates the entity.
    """

    definition_id: UUID | None = None
    definition_name: str | None = None
    owner_id: str | None = None
    actor_id: str | None = None


@dataclass
class ExecuteTransitionDTO:
    """DTO for firing a transition.

    Attributes:
        actor_id: Who fires the transition.
        context: Free-form context evaluated by conditions and stored in history.
        expected_version: Fail with 409 unless the entity is at this version.
    """

    actor_id: str
    context: dict[str, Any] = field(default_factory=dict)
    expected_version: int | None = None


@dataclass
class AssignOwnerDTO:
    """DTO for assigning an entity owner."""

    owner_id: str | None
    expected_version: int | None = None


@dataclass
class EntityDTO:
    """DTO for an entity snapshot."""

    id: UUID
    definition_id: UUID
    current_state: str
    version: int
    state_entered_at: datetime
    owner_id: str | None = None
    timeout_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_entity(cls, entity: EntityData) -> EntityDTO:
        return cls(
            id=entity.id,
            definition_id=entity.definition_id,
            current_state=entity.current_state,
            version=entity.version,
            state_entered_at=entity.state_entered_at,
            owner_id=entity.owner_id,
            timeout_at=entity.timeout_at,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )


@dataclass
class TransitionRecordDTO:
    """DTO for a history record.

    State names are resolved against the entity's definition.

    Attributes:
        id: Record id.
        sequence: The entity version the transition produced.
        from_state: State left, ``None`` for creation records.
        to_state: State entered.
        transition_name: Transition fired.
        actor_id: Who fired it.
        occurred_at: Commit timestamp.
        context: Context supplied with the transition.
        duration_seconds: Time since the previous record.
    """

    id: UUID
    sequence: int
    from_state: str | None
    to_state: str
    transition_name: str
    actor_id: str
    occurred_at: datetime
    context: dict[str, Any] = field(default_factory=dict)
    duration_seconds: float | None = None

    @classmethod
    def from_record(cls, record: TransitionRecordData, definition: WorkflowDefinition) -> TransitionRecordDTO:
        from_state = definition.get_state(record.from_state_id).name if record.from_state_id else None
        return cls(
            id=record.id,
            sequence=record.sequence,
            from_state=from_state,
            to_state=definition.get_state(record.to_state_id).name,
            transition_name=record.transition_name,
            actor_id=record.actor_id,
            occurred_at=record.occurred_at,
            context=record.context,
            duration_seconds=record.duration_seconds,
        )


@dataclass
class StateDTO:
    """DTO for a published state."""

    name: str
    is_initial: bool
    is_terminal: bool
    timeout_seconds: float | None = None
    timeout_transition: str | None = None


@dataclass
class TransitionDTO:
    """DTO for a published transition."""

    name: str
    source: str
    target: str
    auto: bool = False
    requires_approval: bool = False
    is_retry: bool = False
    conditions: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class WorkflowDefinitionDTO:
    """DTO for a published workflow definition.

    Attributes:
        id: Definition id.
        name: Workflow name.
        version: Version number.
        is_active: Whether new entities may be created against it.
        initial_state: Name of the initial state.
        states: States, ordered by name.
        transitions: Transitions, in definition order.
        description: Human-readable description.
    """

    id: UUID
    name: str
    version: int
    is_active: bool
    initial_state: str
    states: list[StateDTO]
    transitions: list[TransitionDTO]
    description: str | None = None

    @classmethod
    def from_definition(cls, definition: WorkflowDefinition) -> WorkflowDefinitionDTO:
        states = sorted(definition.states.values(), key=lambda state: state.name)
        return cls(
            id=definition.id,
            name=definition.name,
            version=definition.version,
            is_active=definition.is_active,
            initial_state=definition.initial_state.name,
            states=[
                StateDTO(
                    name=state.name,
                    is_initial=state.is_initial,
                    is_terminal=state.is_terminal,
                    timeout_seconds=state.timeout.total_seconds() if state.timeout else None,
                    timeout_transition=state.timeout_transition,
                )
                for state in states
            ],
            transitions=[
                TransitionDTO(
                    name=transition.name,
                    source=definition.get_state(transition.from_state_id).name,
                    target=definition.get_state(transition.to_state_id).name,
                    auto=transition.auto,
                    requires_approval=transition.requires_approval,
                    is_retry=transition.is_retry,
                    conditions=[condition.to_dict() for condition in transition.conditions],
                )
                for transition in definition.transitions
            ],
            description=definition.description,
        )


@dataclass
class GraphDTO:
    """DTO for a definition's graph.

    Attributes:
        mermaid_source: MermaidJS ``stateDiagram-v2`` source.
        nodes: State nodes.
        edges: Transition edges.
    """

    mermaid_source: str
    nodes: list[dict[str, Any]]
    edges: list[dict[str, Any]]
