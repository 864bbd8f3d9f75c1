"""Litestar FSM - Persistent finite state machine engine for Litestar.

This package moves long-lived business entities (orders, documents, tickets)
through declared states under concurrent access, recording every move in an
append-only history.

Key Features:
    - Versioned, immutable workflow definitions stored in the database
    - Guarded transitions with pluggable conditions
    - Pessimistic or optimistic locking per entity
    - Auto transitions and state timeouts
    - Post-commit event notifications
    - Litestar plugin with REST endpoints

Example:
    >>> from litestar_fsm import DefinitionStore, State, Transition, TransitionEngine, WorkflowBlueprint
    >>>
    >>> blueprint = WorkflowBlueprint(
    ...     name="document",
    ...     states=[State("draft", initial=True), State("review"), State("published", terminal=True)],
    ...     transitions=[Transition("submit", "draft", "review"), Transition("approve", "review", "published")],
    ... )
    >>> definitions = DefinitionStore(session_maker)
    >>> definition = await definitions.publish(blueprint)
    >>> engine = TransitionEngine(session_maker, definitions)
    >>> entity = await engine.create_entity(definition.id)
    >>> await engine.execute(entity.id, "submit", "alice")
"""

from __future__ import annotations

from litestar_fsm.__metadata__ import __project__, __version__
from litestar_fsm.conditions import ConditionEvaluator
from litestar_fsm.config import FSMConfig
from litestar_fsm.core.definition import (
    ConditionRef,
    State,
    Transition,
    WorkflowBlueprint,
    WorkflowDefinition,
)
from litestar_fsm.core.models import EntityData, TransitionRecordData
from litestar_fsm.core.types import LockingMode
from litestar_fsm.db.store import DefinitionStore, EntityStore, TransitionHistory
from litestar_fsm.engine.transition import TransitionEngine
from litestar_fsm.exceptions import (
    AmbiguousAutoTransitionError,
    AutoTransitionLimitError,
    ConcurrencyError,
    ConditionDeniedError,
    DefinitionError,
    DefinitionNotFoundError,
    DefinitionValidationError,
    EntityNotFoundError,
    FSMError,
    LockTimeoutError,
    NoSuchTransitionError,
    NotFoundError,
    StorageError,
    TerminalStateError,
    VersionConflictError,
)
from litestar_fsm.notifiers import CompositeNotifier, InMemoryNotifier, LoggingNotifier
from litestar_fsm.plugin import FSMPlugin, FSMPluginConfig
from litestar_fsm.sweeper import SweepReport, TimeoutSweeper

__all__ = (
    "AmbiguousAutoTransitionError",
    "AutoTransitionLimitError",
    "CompositeNotifier",
    "ConcurrencyError",
    "ConditionDeniedError",
    "ConditionEvaluator",
    "ConditionRef",
    "DefinitionError",
    "DefinitionNotFoundError",
    "DefinitionStore",
    "DefinitionValidationError",
    "EntityData",
    "EntityNotFoundError",
    "EntityStore",
    "FSMConfig",
    "FSMError",
    "FSMPlugin",
    "FSMPluginConfig",
    "InMemoryNotifier",
    "LockTimeoutError",
    "LockingMode",
    "LoggingNotifier",
    "NoSuchTransitionError",
    "NotFoundError",
    "State",
    "StorageError",
    "SweepReport",
    "TerminalStateError",
    "TimeoutSweeper",
    "Transition",
    "TransitionEngine",
    "TransitionHistory",
    "TransitionRecordData",
    "VersionConflictError",
    "WorkflowBlueprint",
    "WorkflowDefinition",
    "__project__",
    "__version__",
)
