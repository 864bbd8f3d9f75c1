"""Database persistence layer for litestar-fsm.

This module provides SQLAlchemy models, repositories and the stores the
transition engine works through.
"""

from __future__ import annotations

from litestar_fsm.db.models import (
    StateModel,
    TransitionModel,
    TransitionRecordModel,
    WorkflowDefinitionModel,
    WorkflowEntityModel,
)
from litestar_fsm.db.repositories import (
    TransitionRecordRepository,
    WorkflowDefinitionRepository,
    WorkflowEntityRepository,
)
from litestar_fsm.db.store import DefinitionStore, EntityLease, EntityStore, TransitionHistory

__all__ = [
    "DefinitionStore",
    "EntityLease",
    "EntityStore",
    "StateModel",
    "TransitionHistory",
    "TransitionModel",
    "TransitionRecordModel",
    "TransitionRecordRepository",
    "WorkflowDefinitionModel",
    "WorkflowDefinitionRepository",
    "WorkflowEntityModel",
    "WorkflowEntityRepository",
]
