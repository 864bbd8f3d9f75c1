"""Tests for the transition engine."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from litestar_fsm.conditions import ConditionEvaluator
from litestar_fsm.config import FSMConfig
from litestar_fsm.core.definition import ConditionRef, State, Transition, WorkflowBlueprint
from litestar_fsm.core.events import EntityCreated, EntityTransitioned
from litestar_fsm.core.protocols import Verdict
from litestar_fsm.engine.transition import TransitionEngine
from litestar_fsm.exceptions import (
    AmbiguousAutoTransitionError,
    AutoTransitionLimitError,
    ConditionDeniedError,
    DefinitionNotFoundError,
    EntityNotFoundError,
    NoSuchTransitionError,
    TerminalStateError,
    VersionConflictError,
)
from litestar_fsm.notifiers import InMemoryNotifier

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from litestar_fsm.core.definition import WorkflowDefinition
    from litestar_fsm.core.events import WorkflowEvent
    from litestar_fsm.core.models import TransitionRecordData
    from litestar_fsm.db.store import DefinitionStore


async def _history(engine: TransitionEngine, entity_id) -> list[TransitionRecordData]:
    return [record async for record in engine.iter_history(entity_id)]


# =============================================================================
# Blueprints
# =============================================================================


@pytest.fixture
def scoring_blueprint() -> WorkflowBlueprint:
    """Two conditional auto transitions that can both pass."""
    return WorkflowBlueprint(
        name="scoring",
        states=[
            State("new", initial=True),
            State("scoring"),
            State("approved", terminal=True),
            State("flagged", terminal=True),
        ],
        transitions=[
            Transition("score", "new", "scoring"),
            Transition(
                "accept",
                "scoring",
                "approved",
                auto=True,
                conditions=[ConditionRef("field", {"field": "score", "op": "ge", "value": 50})],
            ),
            Transition(
                "flag",
                "scoring",
                "flagged",
                auto=True,
                conditions=[ConditionRef("field", {"field": "score", "op": "ge", "value": 80})],
            ),
        ],
    )


@pytest.fixture
def ping_pong_blueprint() -> WorkflowBlueprint:
    """Auto transitions that cycle forever."""
    return WorkflowBlueprint(
        name="ping_pong",
        states=[State("idle", initial=True), State("ping"), State("pong")],
        transitions=[
            Transition("start", "idle", "ping"),
            Transition("hit", "ping", "pong", auto=True),
            Transition("return", "pong", "ping", auto=True),
        ],
    )


# =============================================================================
# Basic Transitions
# =============================================================================


@pytest.mark.integration
class TestExecute:
    """Tests for firing transitions."""

    async def test_document_lifecycle(self, engine: TransitionEngine, document: WorkflowDefinition) -> None:
        entity = await engine.create_entity(document.id, actor_id="alice")
        assert entity.current_state == "draft"
        assert entity.version == 1

        record = await engine.execute(entity.id, "submit", "alice")

        entity = await engine.get_entity(entity.id)
        assert entity.current_state == "review"
        assert entity.version == 2
        assert record.sequence == 2
        assert record.from_state_id == document.state_by_name("draft").id
        assert record.to_state_id == document.state_by_name("review").id
        assert record.actor_id == "alice"
        assert entity.state_entered_at == record.occurred_at
        assert len(await _history(engine, entity.id)) == 1

        await engine.execute(entity.id, "approve", "bob")

        entity = await engine.get_entity(entity.id)
        assert entity.current_state == "published"
        assert entity.previous_state_id == document.state_by_name("review").id

        with pytest.raises(TerminalStateError) as exc_info:
            await engine.execute(entity.id, "approve", "bob")
        assert exc_info.value.state == "published"
        assert len(await _history(engine, entity.id)) == 2

    async def test_unknown_transition_changes_nothing(
        self,
        engine: TransitionEngine,
        document: WorkflowDefinition,
    ) -> None:
        entity = await engine.create_entity(document.id)

        with pytest.raises(NoSuchTransitionError) as exc_info:
            await engine.execute(entity.id, "approve", "alice")

        assert exc_info.value.state == "draft"
        assert exc_info.value.available == ["submit"]
        unchanged = await engine.get_entity(entity.id)
        assert (unchanged.current_state, unchanged.version) == ("draft", 1)
        assert await _history(engine, entity.id) == []

    async def test_repeated_invalid_calls_are_harmless(
        self,
        engine: TransitionEngine,
        document: WorkflowDefinition,
    ) -> None:
        entity = await engine.create_entity(document.id)
        await engine.execute(entity.id, "submit", "alice")

        for _ in range(3):
            with pytest.raises(NoSuchTransitionError):
                await engine.execute(entity.id, "submit", "alice")

        assert (await engine.get_entity(entity.id)).version == 2
        assert len(await _history(engine, entity.id)) == 1

    async def test_context_is_stored_on_record(self, engine: TransitionEngine, document: WorkflowDefinition) -> None:
        entity = await engine.create_entity(document.id)
        context = {"comment": "ready", "reviewers": ["bob"]}

        await engine.execute(entity.id, "submit", "alice", context)
        context["comment"] = "changed later"

        (record,) = await _history(engine, entity.id)
        assert record.context == {"comment": "ready", "reviewers": ["bob"]}

    async def test_missing_entity(self, engine: TransitionEngine) -> None:
        with pytest.raises(EntityNotFoundError):
            await engine.execute(uuid4(), "submit", "alice")

    async def test_expected_version(self, engine: TransitionEngine, document: WorkflowDefinition) -> None:
        entity = await engine.create_entity(document.id)

        with pytest.raises(VersionConflictError) as exc_info:
            await engine.execute(entity.id, "submit", "alice", expected_version=7)
        assert exc_info.value.expected_version == 7
        assert exc_info.value.retryable

        record = await engine.execute(entity.id, "submit", "alice", expected_version=1)
        assert record.sequence == 2

    async def test_history_follows_legal_edges(self, engine: TransitionEngine, guarded: WorkflowDefinition) -> None:
        entity = await engine.create_entity(guarded.id)
        await engine.execute(entity.id, "submit", "alice")
        await engine.execute(entity.id, "reject", "bob")
        await engine.execute(entity.id, "submit", "alice")
        await engine.execute(entity.id, "approve", "bob", {"reviewerRole": "editor"})

        records = await _history(engine, entity.id)
        entity = await engine.get_entity(entity.id)
        edges = {(t.from_state_id, t.to_state_id, t.name) for t in guarded.transitions}

        assert [r.transition_name for r in records] == ["submit", "reject", "submit", "approve"]
        assert all((r.from_state_id, r.to_state_id, r.transition_name) in edges for r in records)
        assert all(a.to_state_id == b.from_state_id for a, b in zip(records, records[1:], strict=False))
        assert records[-1].to_state_id == entity.current_state_id
        assert [r.sequence for r in records] == [2, 3, 4, 5]
        assert entity.version == 5


# =============================================================================
# Conditions
# =============================================================================


@pytest.mark.integration
class TestConditions:
    """Tests for guarded transitions."""

    async def test_denied_without_record(self, engine: TransitionEngine, guarded: WorkflowDefinition) -> None:
        entity = await engine.create_entity(guarded.id)
        await engine.execute(entity.id, "submit", "alice")

        with pytest.raises(ConditionDeniedError) as exc_info:
            await engine.execute(entity.id, "approve", "bob", {"reviewerRole": "author"})

        assert exc_info.value.reason == "reviewerRole must be editor"
        assert not exc_info.value.retryable
        assert (await engine.get_entity(entity.id)).current_state == "review"
        assert len(await _history(engine, entity.id)) == 1

    async def test_allowed_with_context(self, engine: TransitionEngine, guarded: WorkflowDefinition) -> None:
        entity = await engine.create_entity(guarded.id)
        await engine.execute(entity.id, "submit", "alice")

        record = await engine.execute(entity.id, "approve", "bob", {"reviewerRole": "editor"})

        assert record.context == {"reviewerRole": "editor"}
        assert (await engine.get_entity(entity.id)).current_state == "published"

    async def test_requires_approval(self, engine: TransitionEngine, definitions: DefinitionStore) -> None:
        definition = await definitions.publish(
            WorkflowBlueprint(
                name="release",
                states=[State("staged", initial=True), State("live", terminal=True)],
                transitions=[Transition("ship", "staged", "live", requires_approval=True)],
            )
        )
        entity = await engine.create_entity(definition.id)

        with pytest.raises(ConditionDeniedError, match="requires approval"):
            await engine.execute(entity.id, "ship", "alice")

        record = await engine.execute(entity.id, "ship", "alice", {"approved_by": "carol"})
        assert record.context["approved_by"] == "carol"

    async def test_custom_predicate(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        definitions: DefinitionStore,
    ) -> None:
        evaluator = ConditionEvaluator()
        evaluator.register("frozen", lambda params, context, now: Verdict(False, "workflow is frozen"))
        engine = TransitionEngine(session_maker, definitions, evaluator=evaluator)
        definition = await definitions.publish(
            WorkflowBlueprint(
                name="frozen",
                states=[State("open", initial=True), State("closed", terminal=True)],
                transitions=[Transition("close", "open", "closed", conditions=[ConditionRef("frozen")])],
            )
        )
        entity = await engine.create_entity(definition.id)

        with pytest.raises(ConditionDeniedError, match="workflow is frozen"):
            await engine.execute(entity.id, "close", "alice")

    async def test_list_available_transitions(self, engine: TransitionEngine, guarded: WorkflowDefinition) -> None:
        entity = await engine.create_entity(guarded.id)
        assert await engine.list_available_transitions(entity.id) == ["submit"]

        await engine.execute(entity.id, "submit", "alice")

        assert await engine.list_available_transitions(entity.id) == ["reject"]
        assert await engine.list_available_transitions(entity.id, {"reviewerRole": "editor"}) == ["approve", "reject"]

        await engine.execute(entity.id, "approve", "bob", {"reviewerRole": "editor"})
        assert await engine.list_available_transitions(entity.id, {"reviewerRole": "editor"}) == []


# =============================================================================
# Auto Transitions
# =============================================================================


@pytest.mark.integration
class TestAutoTransitions:
    """Tests for chasing auto transitions."""

    async def test_auto_transition_after_execute(self, engine: TransitionEngine, order: WorkflowDefinition) -> None:
        entity = await engine.create_entity(order.id)
        await engine.execute(entity.id, "checkout", "alice")

        record = await engine.execute(entity.id, "pay", "alice", {"amount": 42})

        assert record.transition_name == "pay"
        entity = await engine.get_entity(entity.id)
        assert entity.current_state == "fulfilled"
        assert entity.timeout_at is None
        records = await _history(engine, entity.id)
        assert [(r.transition_name, r.actor_id) for r in records] == [
            ("checkout", "alice"),
            ("pay", "alice"),
            ("fulfil", "system"),
        ]
        assert records[-1].context == {"amount": 42}

    async def test_auto_transition_from_initial_state(
        self,
        engine: TransitionEngine,
        definitions: DefinitionStore,
    ) -> None:
        definition = await definitions.publish(
            WorkflowBlueprint(
                name="ticket",
                states=[State("received", initial=True), State("triaged"), State("closed", terminal=True)],
                transitions=[
                    Transition("triage", "received", "triaged", auto=True),
                    Transition("close", "triaged", "closed"),
                ],
            )
        )

        entity = await engine.create_entity(definition.id, actor_id="alice")

        assert entity.current_state == "triaged"
        assert entity.version == 2
        (record,) = await _history(engine, entity.id)
        assert record.actor_id == "system"
        assert record.transition_name == "triage"

    async def test_ambiguous_auto_transition_strict(
        self,
        engine: TransitionEngine,
        definitions: DefinitionStore,
        scoring_blueprint: WorkflowBlueprint,
    ) -> None:
        definition = await definitions.publish(scoring_blueprint)
        entity = await engine.create_entity(definition.id)

        with pytest.raises(AmbiguousAutoTransitionError) as exc_info:
            await engine.execute(entity.id, "score", "alice", {"score": 90})

        error = exc_info.value
        assert error.candidates == ["accept", "flag"]
        assert error.state == "scoring"
        assert error.committed is not None
        assert error.committed.transition_name == "score"
        assert (await engine.get_entity(entity.id)).current_state == "scoring"
        assert len(await _history(engine, entity.id)) == 1

    async def test_single_eligible_conditional_auto(
        self,
        engine: TransitionEngine,
        definitions: DefinitionStore,
        scoring_blueprint: WorkflowBlueprint,
    ) -> None:
        definition = await definitions.publish(scoring_blueprint)
        entity = await engine.create_entity(definition.id)

        await engine.execute(entity.id, "score", "alice", {"score": 60})

        assert (await engine.get_entity(entity.id)).current_state == "approved"

    async def test_no_eligible_auto_stays(
        self,
        engine: TransitionEngine,
        definitions: DefinitionStore,
        scoring_blueprint: WorkflowBlueprint,
    ) -> None:
        definition = await definitions.publish(scoring_blueprint)
        entity = await engine.create_entity(definition.id)

        await engine.execute(entity.id, "score", "alice", {"score": 10})

        assert (await engine.get_entity(entity.id)).current_state == "scoring"

    async def test_ambiguous_auto_transition_lenient(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        definitions: DefinitionStore,
        scoring_blueprint: WorkflowBlueprint,
    ) -> None:
        engine = TransitionEngine(
            session_maker,
            definitions,
            config=FSMConfig(strict_auto_transition_ambiguity=False),
        )
        definition = await definitions.publish(scoring_blueprint)
        entity = await engine.create_entity(definition.id)

        await engine.execute(entity.id, "score", "alice", {"score": 90})

        assert (await engine.get_entity(entity.id)).current_state == "approved"

    async def test_hop_limit(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        definitions: DefinitionStore,
        ping_pong_blueprint: WorkflowBlueprint,
    ) -> None:
        engine = TransitionEngine(session_maker, definitions, config=FSMConfig(max_auto_hops=3))
        definition = await definitions.publish(ping_pong_blueprint)
        entity = await engine.create_entity(definition.id)

        with pytest.raises(AutoTransitionLimitError) as exc_info:
            await engine.execute(entity.id, "start", "alice")

        assert exc_info.value.max_hops == 3
        assert exc_info.value.committed is not None
        records = await _history(engine, entity.id)
        assert [r.transition_name for r in records] == ["start", "hit", "return", "hit"]
        assert exc_info.value.committed.id == records[-1].id
        assert (await engine.get_entity(entity.id)).current_state == "pong"


# =============================================================================
# Entities, Owners and Notifications
# =============================================================================


@pytest.mark.integration
class TestEntities:
    """Tests for entity management."""

    async def test_inactive_definition_rejects_new_entities(
        self,
        engine: TransitionEngine,
        definitions: DefinitionStore,
        document: WorkflowDefinition,
    ) -> None:
        existing = await engine.create_entity(document.id)
        await definitions.deactivate(document.id)

        with pytest.raises(DefinitionNotFoundError):
            await engine.create_entity(document.id)

        await engine.execute(existing.id, "submit", "alice")
        assert (await engine.get_entity(existing.id)).current_state == "review"

    async def test_timeout_deadline_set_on_entry(self, engine: TransitionEngine, order: WorkflowDefinition) -> None:
        entity = await engine.create_entity(order.id)
        assert entity.timeout_at is None

        record = await engine.execute(entity.id, "checkout", "alice")

        entity = await engine.get_entity(entity.id)
        assert entity.timeout_at is not None
        assert (entity.timeout_at - record.occurred_at).total_seconds() == 3600

    async def test_assign_owner(self, engine: TransitionEngine, document: WorkflowDefinition) -> None:
        entity = await engine.create_entity(document.id, owner_id="alice")
        assert entity.owner_id == "alice"

        updated = await engine.assign_owner(entity.id, "bob", expected_version=1)

        assert updated.owner_id == "bob"
        assert updated.version == 2
        assert updated.current_state == "draft"
        assert await _history(engine, entity.id) == []

        with pytest.raises(VersionConflictError):
            await engine.assign_owner(entity.id, None, expected_version=1)

        cleared = await engine.assign_owner(entity.id, None)
        assert cleared.owner_id is None

        record = await engine.execute(entity.id, "submit", "alice")
        assert record.sequence == 4


@pytest.mark.integration
class TestNotifications:
    """Tests for event delivery."""

    async def test_events_emitted_after_commit(
        self,
        engine: TransitionEngine,
        notifier: InMemoryNotifier,
        order: WorkflowDefinition,
    ) -> None:
        entity = await engine.create_entity(order.id, actor_id="alice", owner_id="alice")
        await engine.execute(entity.id, "checkout", "alice")
        await engine.execute(entity.id, "pay", "alice")
        await engine.drain()

        events = notifier.for_entity(entity.id)
        assert [event.event_type for event in events] == [
            "entity.created",
            "entity.transitioned",
            "entity.transitioned",
            "entity.transitioned",
        ]
        created = events[0]
        assert isinstance(created, EntityCreated)
        assert created.state == "new"
        assert created.owner_id == "alice"
        fulfilled = events[-1]
        assert isinstance(fulfilled, EntityTransitioned)
        assert (fulfilled.from_state, fulfilled.to_state, fulfilled.actor_id) == ("paid", "fulfilled", "system")

    async def test_denied_transition_emits_nothing(
        self,
        engine: TransitionEngine,
        notifier: InMemoryNotifier,
        guarded: WorkflowDefinition,
    ) -> None:
        entity = await engine.create_entity(guarded.id)
        await engine.execute(entity.id, "submit", "alice")
        await engine.drain()
        notifier.clear()

        with pytest.raises(ConditionDeniedError):
            await engine.execute(entity.id, "approve", "bob")
        await engine.drain()

        assert notifier.events == []

    async def test_notifier_failure_does_not_undo_transition(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        definitions: DefinitionStore,
        document: WorkflowDefinition,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        class BrokenNotifier:
            async def notify(self, event: WorkflowEvent) -> None:
                raise ConnectionError("broker down")

        engine = TransitionEngine(session_maker, definitions, notifier=BrokenNotifier())
        entity = await engine.create_entity(document.id)

        with caplog.at_level(logging.WARNING, logger="litestar_fsm.engine.transition"):
            await engine.execute(entity.id, "submit", "alice")
            await engine.drain()

        assert (await engine.get_entity(entity.id)).current_state == "review"
        assert "Notifier failed to deliver entity.transitioned" in caplog.text
