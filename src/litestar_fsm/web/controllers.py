"""REST API controllers for state machine management.

This module provides two controller classes:
- WorkflowEntityController: Create entities, fire transitions, read history
- WorkflowDefinitionController: Browse published workflow definitions
"""

from __future__ import annotations

from typing import ClassVar
from uuid import UUID

from litestar import Controller, get, post, put
from litestar.exceptions import ValidationException
from litestar.params import Parameter

from litestar_fsm.db.store import DefinitionStore  # noqa: TC001 - needed for DI
from litestar_fsm.engine.transition import TransitionEngine  # noqa: TC001 - needed for DI
from litestar_fsm.web.dto import (
    AssignOwnerDTO,
    CreateEntityDTO,
    EntityDTO,
    ExecuteTransitionDTO,
    GraphDTO,
    TransitionRecordDTO,
    WorkflowDefinitionDTO,
)
from litestar_fsm.web.graph import generate_mermaid_graph, parse_graph_to_dict

__all__ = [
    "WorkflowDefinitionController",
    "WorkflowEntityController",
]


class WorkflowEntityController(Controller):
    """API controller for workflow entities.

    Provides endpoints for creating entities, firing transitions and reading
    the transition history.

    Tags: Workflow Entities
    """

    path = "/entities"
    tags: ClassVar[list[str]] = ["Workflow Entities"]

    @post("/", dto=None, return_dto=None)
    async def create_entity(
        self,
        data: CreateEntityDTO,
        fsm_engine: TransitionEngine,
        fsm_definitions: DefinitionStore,
    ) -> EntityDTO:
        """Create an entity in the initial state of a workflow.

        Args:
            data: Entity creation parameters.
            fsm_engine: Injected transition engine.
            fsm_definitions: Injected definition store.

        Returns:
            The created entity.

        Raises:
            ValidationException: If neither a definition id nor a name is given.
        """
        definition_id = data.definition_id
        if definition_id is None:
            if not data.definition_name:
                raise ValidationException(detail="Either definition_id or definition_name is required")
            definition_id = (await fsm_definitions.get_latest(data.definition_name)).id

        entity = await fsm_engine.create_entity(definition_id, actor_id=data.actor_id, owner_id=data.owner_id)
        return EntityDTO.from_entity(entity)

    @get("/{entity_id:uuid}")
    async def get_entity(self, entity_id: UUID, fsm_engine: TransitionEngine) -> EntityDTO:
        """Get an entity's current state.

        Args:
            entity_id: The entity id.
            fsm_engine: Injected transition engine.

        Returns:
            The entity snapshot.
        """
        return EntityDTO.from_entity(await fsm_engine.get_entity(entity_id))

    @get("/{entity_id:uuid}/transitions")
    async def list_transitions(
        self,
        entity_id: UUID,
        fsm_engine: TransitionEngine,
        role: str | None = Parameter(
            default=None,
            description="Caller role, exposed to conditions as context['role']",
        ),
    ) -> list[str]:
        """List the transitions the entity could fire now.

        Args:
            entity_id: The entity id.
            fsm_engine: Injected transition engine.
            role: Optional caller role for role-guarded transitions.

        Returns:
            Transition names whose conditions currently pass.
        """
        context = {"role": role} if role is not None else {}
        return await fsm_engine.list_available_transitions(entity_id, context)

    @post("/{entity_id:uuid}/transitions/{transition_name:str}", dto=None, return_dto=None)
    async def execute_transition(
        self,
        entity_id: UUID,
        transition_name: str,
        data: ExecuteTransitionDTO,
        fsm_engine: TransitionEngine,
        fsm_definitions: DefinitionStore,
    ) -> TransitionRecordDTO:
        """Fire a transition on an entity.

        Args:
            entity_id: The entity id.
            transition_name: Transition to fire from the current state.
            data: Actor, context and optional expected version.
            fsm_engine: Injected transition engine.
            fsm_definitions: Injected definition store.

        Returns:
            The history record written for the transition.
        """
        record = await fsm_engine.execute(
            entity_id,
            transition_name,
            data.actor_id,
            data.context,
            expected_version=data.expected_version,
        )
        entity = await fsm_engine.get_entity(entity_id)
        definition = await fsm_definitions.get_definition(entity.definition_id)
        return TransitionRecordDTO.from_record(record, definition)

    @put("/{entity_id:uuid}/owner", dto=None, return_dto=None)
    async def assign_owner(
        self,
        entity_id: UUID,
        data: AssignOwnerDTO,
        fsm_engine: TransitionEngine,
    ) -> EntityDTO:
        """Assign or clear an entity's owner.

        Args:
            entity_id: The entity id.
            data: The new owner and optional expected version.
            fsm_engine: Injected transition engine.

        Returns:
            The updated entity.
        """
        entity = await fsm_engine.assign_owner(entity_id, data.owner_id, expected_version=data.expected_version)
        return EntityDTO.from_entity(entity)

    @get("/{entity_id:uuid}/history")
    async def get_history(
        self,
        entity_id: UUID,
        fsm_engine: TransitionEngine,
        fsm_definitions: DefinitionStore,
        after: int = Parameter(
            default=0,
            ge=0,
            description="Only return records after this sequence",
        ),
        limit: int = Parameter(
            default=100,
            ge=1,
            le=1000,
            description="Maximum number of results",
        ),
    ) -> list[TransitionRecordDTO]:
        """Get an entity's transition history in commit order.

        Pass the last ``sequence`` received as ``after`` to fetch the next page.

        Args:
            entity_id: The entity id.
            fsm_engine: Injected transition engine.
            fsm_definitions: Injected definition store.
            after: Sequence to resume after.
            limit: Page size.

        Returns:
            Up to ``limit`` history records.
        """
        entity = await fsm_engine.get_entity(entity_id)
        definition = await fsm_definitions.get_definition(entity.definition_id)

        result: list[TransitionRecordDTO] = []
        async for record in fsm_engine.history.list_for_entity(entity_id, after_sequence=after, page_size=limit):
            result.append(TransitionRecordDTO.from_record(record, definition))
            if len(result) >= limit:
                break
        return result


class WorkflowDefinitionController(Controller):
    """API controller for published workflow definitions.

    Tags: Workflow Definitions
    """

    path = "/definitions"
    tags: ClassVar[list[str]] = ["Workflow Definitions"]

    @get("/")
    async def list_definitions(self, fsm_definitions: DefinitionStore) -> list[WorkflowDefinitionDTO]:
        """List all active workflow definitions.

        Args:
            fsm_definitions: Injected definition store.

        Returns:
            Active definitions, newest version first per name.
        """
        return [WorkflowDefinitionDTO.from_definition(d) for d in await fsm_definitions.list_active()]

    @get("/{definition_id:uuid}")
    async def get_definition(self, definition_id: UUID, fsm_definitions: DefinitionStore) -> WorkflowDefinitionDTO:
        """Get a workflow definition by id.

        Args:
            definition_id: The definition id.
            fsm_definitions: Injected definition store.

        Returns:
            The definition with its states and transitions.
        """
        return WorkflowDefinitionDTO.from_definition(await fsm_definitions.get_definition(definition_id))

    @get("/{definition_id:uuid}/graph")
    async def get_definition_graph(
        self,
        definition_id: UUID,
        fsm_definitions: DefinitionStore,
        fsm_engine: TransitionEngine,
        entity_id: UUID | None = Parameter(
            default=None,
            description="Highlight the current state of this entity",
        ),
    ) -> GraphDTO:
        """Get a definition's state graph.

        Args:
            definition_id: The definition id.
            fsm_definitions: Injected definition store.
            fsm_engine: Injected transition engine.
            entity_id: Optional entity whose current state is highlighted.

        Returns:
            Graph DTO with MermaidJS source and node/edge data.
        """
        definition = await fsm_definitions.get_definition(definition_id)
        current_state = None
        if entity_id is not None:
            current_state = (await fsm_engine.get_entity(entity_id)).current_state

        graph = parse_graph_to_dict(definition)
        return GraphDTO(
            mermaid_source=generate_mermaid_graph(definition, current_state),
            nodes=graph["nodes"],
            edges=graph["edges"],
        )
