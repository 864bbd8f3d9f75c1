"""Exception hierarchy for litestar-fsm.

Every exception carries the structured detail needed to render it to a caller
without re-querying state (entity id, attempted transition, reason). The
``retryable`` class attribute tells callers whether retrying the same call can
succeed without changing its inputs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from litestar_fsm.core.models import TransitionRecordData

__all__ = (
    "AmbiguousAutoTransitionError",
    "AutoTransitionLimitError",
    "ConcurrencyError",
    "ConditionDeniedError",
    "DefinitionError",
    "DefinitionNotFoundError",
    "DefinitionValidationError",
    "EntityNotFoundError",
    "FSMError",
    "LockTimeoutError",
    "NoSuchTransitionError",
    "NotFoundError",
    "StorageError",
    "TerminalStateError",
    "VersionConflictError",
)


class FSMError(Exception):
    """Base exception for all litestar-fsm errors.

    All exceptions raised by litestar-fsm inherit from this class, so callers
    can catch every engine error with a single except clause.
    """

    retryable: bool = False
    """Whether the same call may succeed if simply retried."""

    def to_dict(self) -> dict[str, Any]:
        """Render the structured detail of the error.

        Returns:
            A JSON-serializable mapping with the error type, message and any
            public attributes set by the concrete exception.
        """
        detail: dict[str, Any] = {
            "error": type(self).__name__,
            "message": str(self),
            "retryable": self.retryable,
        }
        for key, value in vars(self).items():
            if key.startswith("_") or key == "committed":
                continue
            detail[key] = str(value) if isinstance(value, UUID) else value
        return detail


class NotFoundError(FSMError):
    """Base class for missing definitions, entities and transitions."""


class DefinitionNotFoundError(NotFoundError):
    """Raised when a workflow definition is not found.

    Attributes:
        definition_id: The id that was looked up, if any.
        name: The definition name that was looked up, if any.
        version: The specific version requested, if any.
    """

    def __init__(
        self,
        definition_id: UUID | None = None,
        *,
        name: str | None = None,
        version: int | None = None,
    ) -> None:
        """Initialize the exception with the lookup details.

        Args:
            definition_id: The id that was looked up.
            name: The definition name that was looked up.
            version: The specific version requested.
        """
        self.definition_id = definition_id
        self.name = name
        self.version = version
        if definition_id is not None:
            msg = f"Workflow definition '{definition_id}' not found"
        else:
            msg = f"Workflow definition '{name}'"
            if version is not None:
                msg += f" version {version}"
            msg += " not found"
        super().__init__(msg)


class EntityNotFoundError(NotFoundError):
    """Raised when a workflow entity does not exist.

    Attributes:
        entity_id: The id of the missing entity.
    """

    def __init__(self, entity_id: UUID) -> None:
        self.entity_id = entity_id
        super().__init__(f"Workflow entity '{entity_id}' not found")


class NoSuchTransitionError(NotFoundError):
    """Raised when no transition with the given name leaves the entity's current state.

    Attributes:
        entity_id: The entity the transition was attempted on.
        transition_name: The transition name that was requested.
        state: Name of the entity's current state.
        available: Transition names that do leave the current state.
    """

    def __init__(
        self,
        entity_id: UUID,
        transition_name: str,
        state: str,
        available: list[str] | None = None,
    ) -> None:
        self.entity_id = entity_id
        self.transition_name = transition_name
        self.state = state
        self.available = sorted(available or [])
        msg = f"No transition '{transition_name}' from state '{state}' for entity '{entity_id}'"
        if self.available:
            msg += f". Available: {', '.join(self.available)}"
        super().__init__(msg)


class TerminalStateError(FSMError):
    """Raised when a transition is attempted on an entity in a terminal state.

    Attributes:
        entity_id: The settled entity.
        state: Name of the terminal state.
        transition_name: The transition that was attempted.
    """

    def __init__(self, entity_id: UUID, state: str, transition_name: str | None = None) -> None:
        self.entity_id = entity_id
        self.state = state
        self.transition_name = transition_name
        super().__init__(f"Entity '{entity_id}' is in terminal state '{state}'")


class ConditionDeniedError(FSMError):
    """Raised when a transition's conditions reject the supplied context.

    The reason is the evaluator's message, surfaced verbatim.

    Attributes:
        entity_id: The entity the transition was attempted on.
        transition_name: The rejected transition.
        reason: Why the transition was denied.
    """

    def __init__(self, entity_id: UUID, transition_name: str, reason: str) -> None:
        self.entity_id = entity_id
        self.transition_name = transition_name
        self.reason = reason
        super().__init__(reason)


class ConcurrencyError(FSMError):
    """Base class for transient conflicts on the same entity."""

    retryable = True


class VersionConflictError(ConcurrencyError):
    """Raised when an entity was modified since it was read.

    Attributes:
        entity_id: The contended entity.
        expected_version: The version the writer read.
        transition_name: The transition being committed, if any.
    """

    def __init__(
        self,
        entity_id: UUID,
        expected_version: int,
        transition_name: str | None = None,
    ) -> None:
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.transition_name = transition_name
        super().__init__(f"Entity '{entity_id}' was modified concurrently (expected version {expected_version})")


class LockTimeoutError(ConcurrencyError):
    """Raised when the entity lock could not be acquired before the deadline.

    Attributes:
        entity_id: The contended entity.
        timeout: The deadline in seconds.
    """

    def __init__(self, entity_id: UUID, timeout: float) -> None:
        self.entity_id = entity_id
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:g}s waiting for the lock on entity '{entity_id}'")


class DefinitionError(FSMError):
    """Base class for workflow-authoring defects.

    These are configuration errors: they are never retryable and are never
    resolved silently by the engine.
    """


class DefinitionValidationError(DefinitionError):
    """Raised when a workflow blueprint fails validation at publish time.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(f"Workflow definition validation failed: {'; '.join(errors)}")


class AmbiguousAutoTransitionError(DefinitionError):
    """Raised when more than one auto transition is eligible from the same state.

    The transition that led into the state has already been committed and is
    available as ``committed``.

    Attributes:
        entity_id: The entity that landed in the ambiguous state.
        state: Name of the ambiguous state.
        candidates: Names of the eligible auto transitions.
        committed: The last record committed before the ambiguity was found.
    """

    def __init__(
        self,
        entity_id: UUID,
        state: str,
        candidates: list[str],
        committed: TransitionRecordData | None = None,
    ) -> None:
        self.entity_id = entity_id
        self.state = state
        self.candidates = candidates
        self.committed = committed
        super().__init__(
            f"State '{state}' has {len(candidates)} eligible auto transitions "
            f"({', '.join(candidates)}) for entity '{entity_id}'"
        )


class AutoTransitionLimitError(DefinitionError):
    """Raised when a chain of auto transitions exceeds the configured hop limit.

    Attributes:
        entity_id: The entity being advanced.
        max_hops: The configured limit.
        state: Name of the state the chain stopped in.
        committed: The last record committed before the limit was hit.
    """

    def __init__(
        self,
        entity_id: UUID,
        max_hops: int,
        state: str,
        committed: TransitionRecordData | None = None,
    ) -> None:
        self.entity_id = entity_id
        self.max_hops = max_hops
        self.state = state
        self.committed = committed
        super().__init__(f"Auto transition chain for entity '{entity_id}' exceeded {max_hops} hops at state '{state}'")


class StorageError(FSMError):
    """Raised when the backing store fails.

    The original database exception is chained as ``__cause__``.

    Attributes:
        operation: What the engine was doing when the store failed.
    """

    retryable = True

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        self.operation = operation
        msg = f"Storage failure during {operation}"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
