"""Minimal example of litestar-fsm integration.

A document review workflow served over the plugin's REST API, plus one
hand-written route that drives the engine directly.

Run with:
    cd examples/minimal
    litestar run

Or:
    uvicorn app:app --reload
"""

from __future__ import annotations

from datetime import timedelta
from uuid import UUID

from litestar import Litestar, get, post
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from litestar_fsm import (
    ConditionRef,
    FSMConfig,
    FSMPlugin,
    FSMPluginConfig,
    LoggingNotifier,
    State,
    Transition,
    TransitionEngine,
    WorkflowBlueprint,
)
from litestar_fsm.db.models import WorkflowDefinitionModel

# =============================================================================
# Workflow
# =============================================================================

DOCUMENT_REVIEW = WorkflowBlueprint(
    name="document_review",
    description="Authors submit drafts, editors publish them",
    states=[
        State("draft", initial=True),
        State("review", timeout=timedelta(days=3), timeout_transition="return_to_author"),
        State("published", terminal=True),
    ],
    transitions=[
        Transition("submit", "draft", "review"),
        Transition(
            "approve",
            "review",
            "published",
            conditions=[ConditionRef("field", {"field": "reviewerRole", "op": "eq", "value": "editor"})],
        ),
        Transition("return_to_author", "review", "draft"),
    ],
)


# =============================================================================
# Routes
# =============================================================================


@get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


@post("/documents/{entity_id:uuid}/submit")
async def submit_document(entity_id: UUID, fsm_engine: TransitionEngine) -> dict[str, str | int]:
    """Submit a draft for review on behalf of its owner."""
    entity = await fsm_engine.get_entity(entity_id)
    record = await fsm_engine.execute(entity_id, "submit", entity.owner_id or "anonymous")
    moved = await fsm_engine.get_entity(entity_id)
    return {"state": moved.current_state, "sequence": record.sequence}


# =============================================================================
# Application
# =============================================================================


def create_app(database_url: str = "sqlite+aiosqlite:///fsm_example.db") -> Litestar:
    """Build the example application.

    Args:
        database_url: SQLAlchemy async database URL.

    Returns:
        The Litestar application.
    """
    db = create_async_engine(database_url)
    session_maker = async_sessionmaker(db, expire_on_commit=False)
    plugin = FSMPlugin(
        FSMPluginConfig(
            session_maker=session_maker,
            fsm_config=FSMConfig(sweep_interval=timedelta(minutes=1)),
            notifier=LoggingNotifier(),
        )
    )

    async def on_startup() -> None:
        async with db.begin() as conn:
            await conn.run_sync(WorkflowDefinitionModel.metadata.create_all)
        definitions = plugin.engine.definitions
        if not [d for d in await definitions.list_active() if d.name == DOCUMENT_REVIEW.name]:
            await definitions.publish(DOCUMENT_REVIEW)

    async def on_shutdown() -> None:
        await db.dispose()

    return Litestar(
        route_handlers=[health_check, submit_document],
        plugins=[plugin],
        on_startup=[on_startup],
        on_shutdown=[on_shutdown],
    )


app = create_app()
