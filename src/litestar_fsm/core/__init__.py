"""Core domain module for litestar-fsm.

This module exports the fundamental building blocks for workflow definitions,
including types, protocols, definitions, entity snapshots and events.
"""

from __future__ import annotations

from litestar_fsm.core.definition import (
    ConditionRef,
    State,
    StateDefinition,
    Transition,
    TransitionDefinition,
    WorkflowBlueprint,
    WorkflowDefinition,
)
from litestar_fsm.core.events import (
    EntityCreated,
    EntityTransitioned,
    TimeoutTransitionMissing,
    WorkflowEvent,
)
from litestar_fsm.core.models import EntityData, TransitionRecordData
from litestar_fsm.core.protocols import Notifier, Predicate, Verdict
from litestar_fsm.core.types import (
    DEFAULT_SYSTEM_ACTOR,
    DEFAULT_TIMEOUT_TRANSITION,
    RETRY_TRANSITION_NAME,
    Context,
    LockingMode,
)

__all__ = [
    "DEFAULT_SYSTEM_ACTOR",
    "DEFAULT_TIMEOUT_TRANSITION",
    "RETRY_TRANSITION_NAME",
    "ConditionRef",
    "Context",
    "EntityCreated",
    "EntityData",
    "EntityTransitioned",
    "LockingMode",
    "Notifier",
    "Predicate",
    "State",
    "StateDefinition",
    "TimeoutTransitionMissing",
    "Transition",
    "TransitionDefinition",
    "TransitionRecordData",
    "Verdict",
    "WorkflowBlueprint",
    "WorkflowDefinition",
    "WorkflowEvent",
]
