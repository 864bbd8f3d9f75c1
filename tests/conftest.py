"""Shared test fixtures for litestar-fsm test suite."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from litestar_fsm.conditions import ConditionEvaluator
from litestar_fsm.config import FSMConfig
from litestar_fsm.core.definition import ConditionRef, State, Transition, WorkflowBlueprint
from litestar_fsm.db.models import WorkflowDefinitionModel
from litestar_fsm.db.store import DefinitionStore
from litestar_fsm.engine.transition import TransitionEngine
from litestar_fsm.notifiers import InMemoryNotifier

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from litestar_fsm.core.definition import WorkflowDefinition


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def db_engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """Create an async SQLite file engine for testing.

    A file database is used so concurrent sessions see each other's commits.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'fsm.db'}", echo=False)

    # Enable foreign keys for SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(WorkflowDefinitionModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the test database."""
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def definitions(session_maker: async_sessionmaker[AsyncSession]) -> DefinitionStore:
    """Create a definition store."""
    return DefinitionStore(session_maker)


@pytest.fixture
def notifier() -> InMemoryNotifier:
    """Create a notifier that records events."""
    return InMemoryNotifier()


@pytest.fixture
def fsm_config() -> FSMConfig:
    """Default engine configuration for tests."""
    return FSMConfig(lock_timeout=5.0)


@pytest.fixture
def engine(
    session_maker: async_sessionmaker[AsyncSession],
    definitions: DefinitionStore,
    notifier: InMemoryNotifier,
    fsm_config: FSMConfig,
) -> TransitionEngine:
    """Create a transition engine over the test database."""
    return TransitionEngine(
        session_maker,
        definitions,
        evaluator=ConditionEvaluator(),
        notifier=notifier,
        config=fsm_config,
    )


# =============================================================================
# Blueprint Fixtures
# =============================================================================


@pytest.fixture
def document_blueprint() -> WorkflowBlueprint:
    """Draft, review, published document workflow."""
    return WorkflowBlueprint(
        name="document",
        description="Document review",
        states=[
            State("draft", initial=True),
            State("review"),
            State("published", terminal=True),
        ],
        transitions=[
            Transition("submit", "draft", "review"),
            Transition("approve", "review", "published"),
        ],
    )


@pytest.fixture
def guarded_blueprint() -> WorkflowBlueprint:
    """Document workflow whose approval requires an editor."""
    return WorkflowBlueprint(
        name="guarded_document",
        states=[
            State("draft", initial=True),
            State("review"),
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
            Transition("reject", "review", "draft"),
        ],
    )


@pytest.fixture
def order_blueprint() -> WorkflowBlueprint:
    """Order workflow with an auto transition and a payment timeout."""
    return WorkflowBlueprint(
        name="order",
        states=[
            State("new", initial=True),
            State("awaiting_payment", timeout=timedelta(hours=1)),
            State("paid"),
            State("fulfilled", terminal=True),
            State("cancelled", terminal=True),
        ],
        transitions=[
            Transition("checkout", "new", "awaiting_payment"),
            Transition("pay", "awaiting_payment", "paid"),
            Transition("timeout", "awaiting_payment", "cancelled"),
            Transition("fulfil", "paid", "fulfilled", auto=True),
            Transition("cancel", "new", "cancelled"),
        ],
    )


@pytest.fixture
async def document(definitions: DefinitionStore, document_blueprint: WorkflowBlueprint) -> WorkflowDefinition:
    """Published document workflow."""
    return await definitions.publish(document_blueprint)


@pytest.fixture
async def guarded(definitions: DefinitionStore, guarded_blueprint: WorkflowBlueprint) -> WorkflowDefinition:
    """Published guarded document workflow."""
    return await definitions.publish(guarded_blueprint)


@pytest.fixture
async def order(definitions: DefinitionStore, order_blueprint: WorkflowBlueprint) -> WorkflowDefinition:
    """Published order workflow."""
    return await definitions.publish(order_blueprint)
