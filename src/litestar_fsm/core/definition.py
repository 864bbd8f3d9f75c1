"""Workflow definition structures.

Two layers live here. Blueprints (``State``, ``Transition``,
``WorkflowBlueprint``) are what an author writes: states and transitions
referenced by name. Published definitions (``StateDefinition``,
``TransitionDefinition``, ``WorkflowDefinition``) are the immutable,
id-addressed graphs the engine runs against once a blueprint has been stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID

from litestar_fsm.core.types import RETRY_TRANSITION_NAME

if TYPE_CHECKING:
    from collections.abc import Iterator

__all__ = [
    "ConditionRef",
    "State",
    "StateDefinition",
    "Transition",
    "TransitionDefinition",
    "WorkflowBlueprint",
    "WorkflowDefinition",
]


@dataclass(frozen=True)
class ConditionRef:
    """Reference to a named predicate guarding a transition.

    Attributes:
        type: Name of the predicate in the condition evaluator registry.
        params: Predicate parameters, stored with the transition.
        message: Optional reason returned instead of the predicate's own when
            the condition fails.

    Example:
        >>> ConditionRef(
        ...     type="field",
        ...     params={"field": "reviewerRole", "op": "eq", "value": "editor"},
        ... )
    """

    type: str
    params: dict[str, Any] = field(default_factory=dict)
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {"type": self.type, "params": dict(self.params), "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConditionRef:
        """Build a condition reference from its serialized form."""
        return cls(type=data["type"], params=dict(data.get("params") or {}), message=data.get("message"))


@dataclass
class State:
    """A state in a workflow blueprint.

    Attributes:
        name: Unique name of the state within the workflow.
        initial: Whether new entities start here. Exactly one state must be initial.
        terminal: Whether entities in this state are permanently settled.
        timeout: How long an entity may stay in this state before the
            timeout sweeper acts on it.
        timeout_transition: Transition the sweeper fires on timeout. Falls back
            to the engine's configured default when omitted.
    """

    name: str
    initial: bool = False
    terminal: bool = False
    timeout: timedelta | None = None
    timeout_transition: str | None = None


@dataclass
class Transition:
    """A named, directed edge in a workflow blueprint.

    Attributes:
        name: Transition name, unique among transitions leaving ``source``.
        source: Name of the state the transition leaves.
        target: Name of the state the transition enters.
        auto: Whether the engine fires it by itself once an entity lands in ``source``.
        requires_approval: Whether the caller must supply an approver in the context.
        retry: Whether this transition may loop back to its own state.
        conditions: Ordered predicates that must all pass.

    Example:
        >>> Transition(
        ...     name="approve",
        ...     source="review",
        ...     target="published",
        ...     conditions=[ConditionRef("role", {"field": "reviewerRole", "roles": ["editor"]})],
        ... )
    """

    name: str
    source: str
    target: str
    auto: bool = False
    requires_approval: bool = False
    retry: bool = False
    conditions: list[ConditionRef] = field(default_factory=list)

    @property
    def is_retry(self) -> bool:
        """Whether this transition is allowed to be a self-loop."""
        return self.retry or self.name == RETRY_TRANSITION_NAME


@dataclass
class WorkflowBlueprint:
    """Authoring form of a workflow definition, prior to publishing.

    Attributes:
        name: Workflow name. Publishing the same name again creates a new version.
        states: The states of the workflow.
        transitions: The legal moves between states, in definition order.
        description: Human-readable description.

    Example:
        >>> blueprint = WorkflowBlueprint(
        ...     name="document",
        ...     states=[
        ...         State("draft", initial=True),
        ...         State("review"),
        ...         State("published", terminal=True),
        ...     ],
        ...     transitions=[
        ...         Transition("submit", "draft", "review"),
        ...         Transition("approve", "review", "published"),
        ...     ],
        ... )
    """

    name: str
    states: list[State]
    transitions: list[Transition] = field(default_factory=list)
    description: str | None = None

    def validate(self, *, strict_auto_transitions: bool = True) -> list[str]:
        """Validate the blueprint for structural defects.

        Checks for:
            - Duplicate state names
            - Exactly one initial state
            - Transitions referencing unknown states
            - Duplicate transition names leaving the same state
            - Outgoing transitions from terminal states
            - Self-loops that are not retry transitions
            - More than one unconditional auto transition from a state (strict mode)

        Args:
            strict_auto_transitions: Reject states with several unconditional
                auto transitions, since they can never be resolved at runtime.

        Returns:
            List of validation error messages. Empty if valid.
        """
        errors: list[str] = []

        if not self.name:
            errors.append("Workflow name must not be empty")

        names = [state.name for state in self.states]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        errors.extend(f"Duplicate state '{name}'" for name in duplicates)

        initial = [state.name for state in self.states if state.initial]
        if len(initial) != 1:
            errors.append(f"Expected exactly one initial state, found {len(initial)}")

        states = {state.name: state for state in self.states}
        seen: set[tuple[str, str]] = set()
        unconditional_auto: dict[str, list[str]] = {}

        for transition in self.transitions:
            label = f"Transition '{transition.name}'"
            if transition.source not in states:
                errors.append(f"{label} leaves unknown state '{transition.source}'")
            if transition.target not in states:
                errors.append(f"{label} enters unknown state '{transition.target}'")

            key = (transition.source, transition.name)
            if key in seen:
                errors.append(f"{label} is defined twice from state '{transition.source}'")
            seen.add(key)

            source = states.get(transition.source)
            if source is not None and source.terminal:
                errors.append(f"{label} leaves terminal state '{transition.source}'")

            if transition.source == transition.target and not transition.is_retry:
                errors.append(f"{label} is a self-loop on '{transition.source}' but not a retry transition")

            if transition.auto and not transition.conditions:
                unconditional_auto.setdefault(transition.source, []).append(transition.name)

        if strict_auto_transitions:
            for source, candidates in unconditional_auto.items():
                if len(candidates) > 1:
                    errors.append(
                        f"State '{source}' has {len(candidates)} unconditional auto transitions: "
                        f"{', '.join(candidates)}"
                    )

        return errors


@dataclass(frozen=True)
class StateDefinition:
    """A published state.

    Attributes:
        id: Unique identifier of the state.
        definition_id: The workflow definition this state belongs to.
        name: Name of the state, unique within its definition.
        is_initial: Whether new entities start here.
        is_terminal: Whether entities here are permanently settled.
        timeout: Maximum time an entity may stay in this state.
        timeout_transition: Transition the sweeper fires on timeout, if set.
    """

    id: UUID
    definition_id: UUID
    name: str
    is_initial: bool = False
    is_terminal: bool = False
    timeout: timedelta | None = None
    timeout_transition: str | None = None


@dataclass(frozen=True)
class TransitionDefinition:
    """A published transition.

    Attributes:
        id: Unique identifier of the transition.
        definition_id: The workflow definition this transition belongs to.
        name: Transition name, unique per from-state.
        from_state_id: State the transition leaves.
        to_state_id: State the transition enters.
        auto: Whether the engine fires it without an external call.
        requires_approval: Whether an approver must be supplied in the context.
        is_retry: Whether the transition is an allowed self-loop.
        position: Order of the transition within its definition.
        conditions: Ordered predicates that must all pass.
    """

    id: UUID
    definition_id: UUID
    name: str
    from_state_id: UUID
    to_state_id: UUID
    auto: bool = False
    requires_approval: bool = False
    is_retry: bool = False
    position: int = 0
    conditions: tuple[ConditionRef, ...] = ()


@dataclass(frozen=True)
class WorkflowDefinition:
    """Immutable, published workflow graph.

    Attributes:
        id: Unique identifier of this definition version.
        name: Workflow name.
        version: Version number, increasing per name.
        initial_state_id: State new entities start in.
        is_active: Whether new entities may be created against this version.
        states: Mapping of state id to state.
        transitions: All transitions, in definition order.
        description: Human-readable description.
    """

    id: UUID
    name: str
    version: int
    initial_state_id: UUID
    states: dict[UUID, StateDefinition]
    transitions: tuple[TransitionDefinition, ...]
    is_active: bool = True
    description: str | None = None

    @property
    def initial_state(self) -> StateDefinition:
        """The state new entities start in."""
        return self.states[self.initial_state_id]

    def get_state(self, state_id: UUID) -> StateDefinition:
        """Get a state by id.

        Raises:
            KeyError: If the state does not belong to this definition.
        """
        return self.states[state_id]

    def state_by_name(self, name: str) -> StateDefinition:
        """Get a state by name.

        Raises:
            KeyError: If no state has that name.
        """
        for state in self.states.values():
            if state.name == name:
                return state
        msg = f"State '{name}' not found in workflow '{self.name}' v{self.version}"
        raise KeyError(msg)

    def transitions_from(self, state_id: UUID) -> list[TransitionDefinition]:
        """List transitions leaving a state, in definition order."""
        return [t for t in self.transitions if t.from_state_id == state_id]

    def find_transition(self, state_id: UUID, name: str) -> TransitionDefinition | None:
        """Resolve a transition name among the transitions leaving a state.

        Transition names are only unique per from-state, so the same name may
        resolve to different edges depending on where the entity currently is.
        """
        for transition in self.transitions_from(state_id):
            if transition.name == name:
                return transition
        return None

    def auto_transitions_from(self, state_id: UUID) -> list[TransitionDefinition]:
        """List auto transitions leaving a state, in definition order."""
        return [t for t in self.transitions_from(state_id) if t.auto]

    def iter_edges(self) -> Iterator[tuple[UUID, UUID, str]]:
        """Yield ``(from_state_id, to_state_id, name)`` for every transition."""
        for transition in self.transitions:
            yield transition.from_state_id, transition.to_state_id, transition.name
