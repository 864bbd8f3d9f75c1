"""Web layer for litestar-fsm.

This module provides the REST API controllers, DTOs, graph rendering and error
mapping. The API is registered automatically by FSMPlugin with
``enable_api=True`` (the default).

Example:
    With authentication guards::

        from litestar_fsm import FSMPlugin, FSMPluginConfig

        config = FSMPluginConfig(
            session_maker=session_maker,
            api_path_prefix="/api/v1/fsm",
            api_guards=[require_auth_guard],
        )

        app = Litestar(plugins=[FSMPlugin(config=config)])
"""

from __future__ import annotations

from litestar_fsm.web.controllers import WorkflowDefinitionController, WorkflowEntityController
from litestar_fsm.web.dto import (
    AssignOwnerDTO,
    CreateEntityDTO,
    EntityDTO,
    ExecuteTransitionDTO,
    GraphDTO,
    StateDTO,
    TransitionDTO,
    TransitionRecordDTO,
    WorkflowDefinitionDTO,
)
from litestar_fsm.web.exceptions import fsm_error_handler, status_code_for
from litestar_fsm.web.graph import generate_mermaid_graph, parse_graph_to_dict

__all__ = [
    "AssignOwnerDTO",
    "CreateEntityDTO",
    "EntityDTO",
    "ExecuteTransitionDTO",
    "GraphDTO",
    "StateDTO",
    "TransitionDTO",
    "TransitionRecordDTO",
    "WorkflowDefinitionController",
    "WorkflowDefinitionDTO",
    "WorkflowEntityController",
    "fsm_error_handler",
    "generate_mermaid_graph",
    "parse_graph_to_dict",
    "status_code_for",
]
