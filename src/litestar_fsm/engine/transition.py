"""Transition engine.

This module provides the ``TransitionEngine``, the only component that moves
entities between states. Every move follows the same path: acquire the entity,
resolve the transition from its current state, evaluate the guarding
conditions, then commit the new state and its history record together. Auto
transitions are chased after the commit, each hop in its own transaction.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID

from litestar_fsm.conditions import ConditionEvaluator
from litestar_fsm.config import FSMConfig
from litestar_fsm.core.events import EntityCreated, EntityTransitioned
from litestar_fsm.db.store import DefinitionStore, EntityStore, TransitionHistory
from litestar_fsm.exceptions import (
    AmbiguousAutoTransitionError,
    AutoTransitionLimitError,
    ConditionDeniedError,
    DefinitionNotFoundError,
    NoSuchTransitionError,
    TerminalStateError,
    VersionConflictError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Mapping

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from litestar_fsm.core.definition import TransitionDefinition, WorkflowDefinition
    from litestar_fsm.core.events import WorkflowEvent
    from litestar_fsm.core.models import EntityData, TransitionRecordData
    from litestar_fsm.core.protocols import Notifier
    from litestar_fsm.db.store import EntityLease

__all__ = ["TransitionEngine"]

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransitionEngine:
    """Executes transitions on workflow entities.

    The engine is safe to share between concurrent callers. Transitions on the
    same entity are serialized by the entity store's locking discipline;
    transitions on different entities proceed in parallel.

    Attributes:
        definitions: Store serving published workflow definitions.
        entities: Store owning entity rows and their locks.
        history: Append-only transition log.
        evaluator: Condition evaluator used for every transition.
        notifier: Optional receiver of committed events.
        config: Engine configuration.

    Example:
        >>> definitions = DefinitionStore(session_maker)
        >>> engine = TransitionEngine(session_maker, definitions)
        >>> definition = await definitions.publish(blueprint)
        >>> entity = await engine.create_entity(definition.id, actor_id="alice")
        >>> record = await engine.execute(entity.id, "submit", "alice")
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        definitions: DefinitionStore,
        *,
        evaluator: ConditionEvaluator | None = None,
        notifier: Notifier | None = None,
        config: FSMConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the transition engine.

        Args:
            session_maker: Factory for database sessions.
            definitions: The definition store to resolve entity definitions with.
            evaluator: Condition evaluator. Defaults to one with the built-in predicates.
            notifier: Optional receiver of committed events.
            config: Engine configuration. Defaults to ``FSMConfig()``.
            clock: Source of commit timestamps. Defaults to UTC now.
        """
        self.config = config or FSMConfig()
        self.definitions = definitions
        self._clock = clock or _utcnow
        self.entities = EntityStore(
            session_maker,
            definitions,
            locking_mode=self.config.locking_mode,
            lock_timeout=self.config.lock_timeout,
            clock=self._clock,
        )
        self.history = TransitionHistory(session_maker, page_size=self.config.history_page_size)
        self.evaluator = evaluator or ConditionEvaluator()
        self.notifier = notifier
        self._pending: set[asyncio.Task[None]] = set()

    async def create_entity(
        self,
        definition_id: UUID,
        *,
        actor_id: str | None = None,
        owner_id: str | None = None,
    ) -> EntityData:
        """Create an entity in the initial state of an active definition.

        Auto transitions leaving the initial state are chased immediately.

        Args:
            definition_id: The definition version to run against.
            actor_id: Who creates the entity. Defaults to the system actor.
            owner_id: Optional owner to assign.

        Returns:
            The entity as it stands after any auto transitions.

        Raises:
            DefinitionNotFoundError: If the definition does not exist or is inactive.
        """
        definition = await self.definitions.get_definition(definition_id)
        if not definition.is_active:
            raise DefinitionNotFoundError(definition_id, name=definition.name, version=definition.version)

        actor_id = actor_id or self.config.system_actor
        entity, _ = await self.entities.create(
            definition,
            actor_id=actor_id,
            owner_id=owner_id,
            record_creation=self.config.record_entity_creation,
        )
        logger.info(
            "Created entity %s in state '%s' of workflow '%s' v%d",
            entity.id,
            entity.current_state,
            definition.name,
            definition.version,
        )
        self.emit(
            EntityCreated(
                entity_id=entity.id,
                definition_id=definition.id,
                occurred_at=entity.state_entered_at,
                state=entity.current_state,
                actor_id=actor_id,
                owner_id=owner_id,
            )
        )

        chased = await self._chase_auto_transitions(entity, {}, committed=None)
        return chased or entity

    async def get_entity(self, entity_id: UUID) -> EntityData:
        """Get the current snapshot of an entity.

        Raises:
            EntityNotFoundError: If the entity does not exist.
        """
        return await self.entities.get(entity_id)

    async def execute(
        self,
        entity_id: UUID,
        transition_name: str,
        actor_id: str,
        context: Mapping[str, Any] | None = None,
        *,
        expected_version: int | None = None,
        timeout: float | None = None,
    ) -> TransitionRecordData:
        """Fire a named transition on an entity.

        Either the entity moves and exactly one history record is written, or
        nothing changes and an error is raised. Auto transitions reachable from
        the new state are then fired as the system actor, each in its own
        transaction.

        Args:
            entity_id: The entity to move.
            transition_name: Transition to fire, resolved from the current state.
            actor_id: Who fires the transition.
            context: Free-form context, evaluated by conditions and stored on
                the history record.
            expected_version: Fail unless the entity is still at this version.
            timeout: Seconds to wait for a pessimistic lock. Defaults to the
                configured ``lock_timeout``.

        Returns:
            The history record of the requested transition.

        Raises:
            EntityNotFoundError: If the entity does not exist.
            TerminalStateError: If the entity is in a terminal state.
            NoSuchTransitionError: If no transition of that name leaves the
                current state.
            ConditionDeniedError: If a condition denied the transition.
            VersionConflictError: If the entity changed concurrently or is not
                at ``expected_version``.
            LockTimeoutError: If the entity lock was not acquired in time.
            AmbiguousAutoTransitionError: If a follow-up auto transition is
                ambiguous. The requested transition is already committed and
                available as ``committed`` on the error.
            AutoTransitionLimitError: If the auto transition chain is too long.
                The requested transition is already committed.
        """
        context = dict(context or {})
        entity, record = await self._fire(
            entity_id,
            transition_name,
            actor_id,
            context,
            expected_version=expected_version,
            timeout=timeout,
        )
        await self._chase_auto_transitions(entity, context, committed=record, timeout=timeout)
        return record

    async def list_available_transitions(
        self,
        entity_id: UUID,
        context: Mapping[str, Any] | None = None,
    ) -> list[str]:
        """List the transitions the entity could fire right now.

        Conditions are evaluated against ``context`` without side effects, so
        the result is only advisory; a concurrent caller may move the entity
        first.

        Args:
            entity_id: The entity id.
            context: Context to evaluate conditions against.

        Returns:
            Names of the transitions whose conditions pass, in definition order.
            Empty for entities in a terminal state.
        """
        entity = await self.entities.get(entity_id)
        definition = await self.definitions.get_definition(entity.definition_id)
        state = definition.get_state(entity.current_state_id)
        if state.is_terminal:
            return []
        return [
            transition.name
            for transition in definition.transitions_from(state.id)
            if self.evaluator.evaluate(transition, context).allowed
        ]

    def iter_history(self, entity_id: UUID, *, after_sequence: int = 0) -> AsyncIterator[TransitionRecordData]:
        """Stream an entity's history in commit order.

        Args:
            entity_id: The entity id.
            after_sequence: Resume after this sequence.

        Returns:
            An async iterator over the entity's records.
        """
        return self.history.list_for_entity(entity_id, after_sequence=after_sequence)

    async def assign_owner(
        self,
        entity_id: UUID,
        owner_id: str | None,
        *,
        expected_version: int | None = None,
        timeout: float | None = None,
    ) -> EntityData:
        """Assign or clear an entity's owner.

        The write is version-checked and bumps the entity version like a
        transition, but leaves no history record.

        Raises:
            EntityNotFoundError: If the entity does not exist.
            VersionConflictError: If the entity is not at ``expected_version``.
        """
        async with self.entities.lock_and_get(entity_id, timeout=timeout) as lease:
            self._check_version(lease, expected_version)
            entity = await lease.set_owner(owner_id, now=self._clock())
        logger.info("Assigned entity %s to owner %r", entity_id, owner_id)
        return entity

    def emit(self, event: WorkflowEvent) -> None:
        """Hand an event to the notifier without waiting for delivery.

        Delivery failures are logged and otherwise ignored. Use :meth:`drain`
        to wait for pending deliveries.
        """
        if self.notifier is None:
            return
        task = asyncio.create_task(self._deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait until every pending notification has been delivered or has failed."""
        while self._pending:
            await asyncio.gather(*self._pending)

    async def _deliver(self, event: WorkflowEvent) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.notify(event)
        except Exception:
            logger.warning("Notifier failed to deliver %s for entity %s", event.event_type, event.entity_id, exc_info=True)

    @staticmethod
    def _check_version(lease: EntityLease, expected_version: int | None) -> None:
        if expected_version is not None and lease.entity.version != expected_version:
            raise VersionConflictError(lease.entity.id, expected_version)

    async def _fire(
        self,
        entity_id: UUID,
        transition_name: str,
        actor_id: str,
        context: dict[str, Any],
        *,
        expected_version: int | None = None,
        timeout: float | None = None,
    ) -> tuple[EntityData, TransitionRecordData]:
        async with self.entities.lock_and_get(entity_id, timeout=timeout) as lease:
            self._check_version(lease, expected_version)
            entity, definition = lease.entity, lease.definition
            state = definition.get_state(entity.current_state_id)
            if state.is_terminal:
                raise TerminalStateError(entity.id, state.name, transition_name)

            transition = definition.find_transition(state.id, transition_name)
            if transition is None:
                available = [t.name for t in definition.transitions_from(state.id)]
                raise NoSuchTransitionError(entity.id, transition_name, state.name, available)

            verdict = self.evaluator.evaluate(transition, context)
            if not verdict.allowed:
                logger.info("Transition '%s' on entity %s denied: %s", transition_name, entity.id, verdict.reason)
                raise ConditionDeniedError(entity.id, transition_name, verdict.reason)

            moved, record = await self._commit(lease, transition, actor_id, context)

        self._announce(definition, state.name, moved, record)
        return moved, record

    async def _fire_auto(
        self,
        entity: EntityData,
        context: dict[str, Any],
        *,
        hops: int,
        committed: TransitionRecordData | None,
        timeout: float | None,
    ) -> tuple[EntityData, TransitionRecordData] | None:
        """Fire the single eligible auto transition, if any.

        Returns None when nothing is eligible or another caller moved the
        entity since ``entity`` was read.
        """
        async with self.entities.lock_and_get(entity.id, timeout=timeout) as lease:
            if lease.entity.version != entity.version:
                logger.debug("Entity %s moved concurrently; stopping auto transitions", entity.id)
                return None
            definition = lease.definition
            state = definition.get_state(lease.entity.current_state_id)
            if state.is_terminal:
                return None

            eligible = [
                transition
                for transition in definition.auto_transitions_from(state.id)
                if self.evaluator.evaluate(transition, context).allowed
            ]
            if not eligible:
                return None
            if len(eligible) > 1 and self.config.strict_auto_transition_ambiguity:
                raise AmbiguousAutoTransitionError(
                    entity.id,
                    state.name,
                    [transition.name for transition in eligible],
                    committed=committed,
                )
            if hops >= self.config.max_auto_hops:
                raise AutoTransitionLimitError(entity.id, self.config.max_auto_hops, state.name, committed=committed)

            moved, record = await self._commit(lease, eligible[0], self.config.system_actor, context)

        self._announce(definition, state.name, moved, record)
        return moved, record

    async def _chase_auto_transitions(
        self,
        entity: EntityData,
        context: dict[str, Any],
        *,
        committed: TransitionRecordData | None,
        timeout: float | None = None,
    ) -> EntityData | None:
        hops = 0
        latest = None
        while True:
            fired = await self._fire_auto(entity, context, hops=hops, committed=committed, timeout=timeout)
            if fired is None:
                return latest
            entity, committed = fired
            latest = entity
            hops += 1

    async def _commit(
        self,
        lease: EntityLease,
        transition: TransitionDefinition,
        actor_id: str,
        context: dict[str, Any],
    ) -> tuple[EntityData, TransitionRecordData]:
        source = lease.entity
        target = lease.definition.get_state(transition.to_state_id)

        previous = await self.history.last_for_entity(lease.session, source.id)
        occurred_at = self.history.next_timestamp(previous, self._clock())
        moved = await lease.compare_and_set(target, entered_at=occurred_at, transition_name=transition.name)
        record = await self.history.append(
            lease.session,
            entity_id=source.id,
            sequence=moved.version,
            from_state_id=source.current_state_id,
            to_state_id=target.id,
            transition_name=transition.name,
            actor_id=actor_id,
            occurred_at=occurred_at,
            context=context,
            previous=previous,
        )
        return moved, record

    def _announce(
        self,
        definition: WorkflowDefinition,
        from_state: str,
        entity: EntityData,
        record: TransitionRecordData,
    ) -> None:
        logger.info(
            "Entity %s moved '%s' -> '%s' via '%s' by %s (version %d)",
            entity.id,
            from_state,
            entity.current_state,
            record.transition_name,
            record.actor_id,
            entity.version,
        )
        self.emit(
            EntityTransitioned(
                entity_id=entity.id,
                definition_id=definition.id,
                occurred_at=record.occurred_at,
                from_state=from_state,
                to_state=entity.current_state,
                actor_id=record.actor_id,
                transition_name=record.transition_name,
                record_id=record.id,
            )
        )
