"""Stores composing the repositories into the engine's storage boundary.

This module provides:
- DefinitionStore: publishes and serves immutable workflow definitions, cached
  after first load.
- EntityStore: creates entities and hands out locked or versioned leases on
  them, one transaction per lease.
- TransitionHistory: appends and streams the append-only transition log.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from litestar_fsm.core.definition import (
    ConditionRef,
    StateDefinition,
    TransitionDefinition,
    WorkflowDefinition,
)
from litestar_fsm.core.models import EntityData, TransitionRecordData
from litestar_fsm.core.types import LockingMode
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
from litestar_fsm.exceptions import (
    DefinitionNotFoundError,
    DefinitionValidationError,
    EntityNotFoundError,
    LockTimeoutError,
    StorageError,
    VersionConflictError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from litestar_fsm.core.definition import WorkflowBlueprint

__all__ = ["DefinitionStore", "EntityLease", "EntityStore", "TransitionHistory"]

logger = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_state(model: StateModel) -> StateDefinition:
    return StateDefinition(
        id=model.id,
        definition_id=model.definition_id,
        name=model.name,
        is_initial=model.is_initial,
        is_terminal=model.is_terminal,
        timeout=timedelta(seconds=model.timeout_seconds) if model.timeout_seconds is not None else None,
        timeout_transition=model.timeout_transition,
    )


def _to_transition(model: TransitionModel) -> TransitionDefinition:
    return TransitionDefinition(
        id=model.id,
        definition_id=model.definition_id,
        name=model.name,
        from_state_id=model.from_state_id,
        to_state_id=model.to_state_id,
        auto=model.is_auto,
        requires_approval=model.requires_approval,
        is_retry=model.is_retry,
        position=model.position,
        conditions=tuple(ConditionRef.from_dict(item) for item in model.conditions or []),
    )


def _to_definition(model: WorkflowDefinitionModel) -> WorkflowDefinition:
    states = {state.id: _to_state(state) for state in model.states}
    transitions = tuple(sorted((_to_transition(t) for t in model.transitions), key=lambda t: t.position))
    initial_state_id = model.initial_state_id
    if initial_state_id is None:
        initial_state_id = next(state.id for state in states.values() if state.is_initial)
    return WorkflowDefinition(
        id=model.id,
        name=model.name,
        version=model.version,
        initial_state_id=initial_state_id,
        states=states,
        transitions=transitions,
        is_active=model.is_active,
        description=model.description,
    )


def _to_record(model: TransitionRecordModel) -> TransitionRecordData:
    return TransitionRecordData(
        id=model.id,
        entity_id=model.entity_id,
        sequence=model.sequence,
        from_state_id=model.from_state_id,
        to_state_id=model.to_state_id,
        transition_name=model.transition_name,
        actor_id=model.actor_id,
        occurred_at=model.occurred_at,
        context=dict(model.context or {}),
        duration_seconds=model.duration_seconds,
    )


def _timeout_at(state: StateDefinition, entered_at: datetime) -> datetime | None:
    if state.is_terminal or state.timeout is None:
        return None
    return entered_at + state.timeout


class DefinitionStore:
    """Publishes and serves immutable workflow definitions.

    Published definitions never change, so every definition is loaded from the
    database at most once per store and served from memory afterwards. The only
    write path is :meth:`publish`, which is atomic.

    Attributes:
        session_maker: Factory for database sessions.
        strict_auto_transitions: Reject blueprints with several unconditional
            auto transitions leaving the same state.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        strict_auto_transitions: bool = True,
    ) -> None:
        """Initialize the definition store.

        Args:
            session_maker: Factory for database sessions.
            strict_auto_transitions: Whether blueprint validation rejects
                ambiguous unconditional auto transitions.
        """
        self.session_maker = session_maker
        self.strict_auto_transitions = strict_auto_transitions
        self._cache: dict[UUID, WorkflowDefinition] = {}

    async def publish(self, blueprint: WorkflowBlueprint) -> WorkflowDefinition:
        """Validate and store a blueprint as the next version of its workflow.

        The definition row, all states and all transitions are inserted in one
        transaction; the definition is flagged active last, so a partially
        written version is never visible as active.

        Args:
            blueprint: The workflow to publish.

        Returns:
            The published definition.

        Raises:
            DefinitionValidationError: If the blueprint is structurally invalid.
            StorageError: If the database rejects the write.
        """
        errors = blueprint.validate(strict_auto_transitions=self.strict_auto_transitions)
        if errors:
            raise DefinitionValidationError(errors)

        try:
            async with self.session_maker() as session, session.begin():
                repo = WorkflowDefinitionRepository(session=session)
                version = await repo.get_max_version(blueprint.name) + 1

                state_ids = {state.name: uuid4() for state in blueprint.states}
                initial = next(state for state in blueprint.states if state.initial)
                model = WorkflowDefinitionModel(
                    id=uuid4(),
                    name=blueprint.name,
                    version=version,
                    description=blueprint.description,
                    initial_state_id=state_ids[initial.name],
                    is_active=False,
                )
                model.states = [
                    StateModel(
                        id=state_ids[state.name],
                        name=state.name,
                        is_initial=state.initial,
                        is_terminal=state.terminal,
                        timeout_seconds=state.timeout.total_seconds() if state.timeout is not None else None,
                        timeout_transition=state.timeout_transition,
                    )
                    for state in blueprint.states
                ]
                model.transitions = [
                    TransitionModel(
                        id=uuid4(),
                        name=transition.name,
                        from_state_id=state_ids[transition.source],
                        to_state_id=state_ids[transition.target],
                        is_auto=transition.auto,
                        requires_approval=transition.requires_approval,
                        is_retry=transition.is_retry,
                        position=position,
                        conditions=[condition.to_dict() for condition in transition.conditions],
                    )
                    for position, transition in enumerate(blueprint.transitions)
                ]
                await repo.add(model)

                model.is_active = True
                await session.flush()
                definition = _to_definition(model)
        except SQLAlchemyError as e:
            raise StorageError(f"publishing workflow '{blueprint.name}'", e) from e

        self._cache[definition.id] = definition
        logger.info("Published workflow '%s' version %d (%s)", definition.name, definition.version, definition.id)
        return definition

    async def get_definition(self, definition_id: UUID) -> WorkflowDefinition:
        """Get a definition by id.

        Args:
            definition_id: The definition id.

        Returns:
            The definition, from cache when already loaded.

        Raises:
            DefinitionNotFoundError: If no such definition exists.
        """
        cached = self._cache.get(definition_id)
        if cached is not None:
            return cached

        try:
            async with self.session_maker() as session:
                repo = WorkflowDefinitionRepository(session=session)
                model = await repo.get_one_or_none(id=definition_id)
                if model is None:
                    raise DefinitionNotFoundError(definition_id)
                definition = _to_definition(model)
        except SQLAlchemyError as e:
            raise StorageError("loading workflow definition", e) from e

        self._cache[definition_id] = definition
        return definition

    async def get_latest(self, name: str, version: int | None = None) -> WorkflowDefinition:
        """Get the latest active version of a workflow, or a specific version.

        Args:
            name: The workflow name.
            version: Optional specific version, active or not.

        Returns:
            The definition.

        Raises:
            DefinitionNotFoundError: If no matching definition exists.
        """
        try:
            async with self.session_maker() as session:
                repo = WorkflowDefinitionRepository(session=session)
                model = await repo.get_by_name(name, version, active_only=version is None)
                if model is None:
                    raise DefinitionNotFoundError(name=name, version=version)
                definition_id = model.id
        except SQLAlchemyError as e:
            raise StorageError("loading workflow definition", e) from e
        return await self.get_definition(definition_id)

    async def get_states(self, definition_id: UUID) -> list[StateDefinition]:
        """List the states of a definition, ordered by name."""
        definition = await self.get_definition(definition_id)
        return sorted(definition.states.values(), key=lambda state: state.name)

    async def get_transitions(
        self,
        definition_id: UUID,
        from_state_id: UUID | None = None,
    ) -> list[TransitionDefinition]:
        """List the transitions of a definition, optionally only those leaving a state.

        Args:
            definition_id: The definition id.
            from_state_id: Optional from-state filter.

        Returns:
            Transitions in definition order.
        """
        definition = await self.get_definition(definition_id)
        if from_state_id is None:
            return list(definition.transitions)
        return definition.transitions_from(from_state_id)

    async def list_active(self) -> list[WorkflowDefinition]:
        """List all active definitions, newest version first per name."""
        try:
            async with self.session_maker() as session:
                repo = WorkflowDefinitionRepository(session=session)
                ids = [model.id for model in await repo.list_active()]
        except SQLAlchemyError as e:
            raise StorageError("listing workflow definitions", e) from e
        return [await self.get_definition(definition_id) for definition_id in ids]

    async def deactivate(self, definition_id: UUID) -> WorkflowDefinition:
        """Stop new entities from being created against a definition version.

        Entities already running against the version are unaffected.

        Args:
            definition_id: The definition id.

        Returns:
            The deactivated definition.

        Raises:
            DefinitionNotFoundError: If no such definition exists.
        """
        definition = await self.get_definition(definition_id)
        try:
            async with self.session_maker() as session, session.begin():
                await WorkflowDefinitionRepository(session=session).set_active(definition_id, active=False)
        except SQLAlchemyError as e:
            raise StorageError("deactivating workflow definition", e) from e

        definition = replace(definition, is_active=False)
        self._cache[definition_id] = definition
        logger.info("Deactivated workflow '%s' version %d", definition.name, definition.version)
        return definition


class _EntityLocks:
    """Per-entity asyncio locks, created on demand and dropped when unused."""

    def __init__(self) -> None:
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._holders: dict[UUID, int] = {}

    @asynccontextmanager
    async def hold(self, entity_id: UUID, timeout: float | None) -> AsyncIterator[None]:
        lock = self._locks.setdefault(entity_id, asyncio.Lock())
        self._holders[entity_id] = self._holders.get(entity_id, 0) + 1
        try:
            if timeout is not None and timeout <= 0:
                # wait_for with no budget cancels even an uncontended acquire.
                if lock.locked():
                    raise LockTimeoutError(entity_id, 0.0)
                await lock.acquire()
            else:
                try:
                    await asyncio.wait_for(lock.acquire(), timeout)
                except TimeoutError:
                    raise LockTimeoutError(entity_id, timeout or 0.0) from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._holders[entity_id] -= 1
            if not self._holders[entity_id]:
                del self._holders[entity_id]
                del self._locks[entity_id]

    def is_locked(self, entity_id: UUID) -> bool:
        lock = self._locks.get(entity_id)
        return lock is not None and lock.locked()


@dataclass
class EntityLease:
    """An entity read for one transition attempt, with its open transaction.

    Leases are handed out by :meth:`EntityStore.lock_and_get`. Every write made
    through the lease commits or rolls back together when the lease ends.

    Attributes:
        entity: Snapshot of the entity as read.
        definition: The definition the entity runs against.
        session: The session holding the transaction.
    """

    entity: EntityData
    definition: WorkflowDefinition
    session: AsyncSession

    async def compare_and_set(
        self,
        new_state: StateDefinition,
        *,
        entered_at: datetime,
        transition_name: str | None = None,
    ) -> EntityData:
        """Move the entity to a new state if nobody else has moved it since it was read.

        Args:
            new_state: The state to enter.
            entered_at: When the state is entered.
            transition_name: The transition being committed, for error reporting.

        Returns:
            The updated entity snapshot.

        Raises:
            VersionConflictError: If the entity changed since the lease read it.
        """
        timeout_at = _timeout_at(new_state, entered_at)
        version = await WorkflowEntityRepository(session=self.session).compare_and_set(
            self.entity.id,
            self.entity.version,
            transition_name=transition_name,
            current_state_id=new_state.id,
            previous_state_id=self.entity.current_state_id,
            state_entered_at=entered_at,
            timeout_at=timeout_at,
            next_sweep_at=None,
            updated_at=entered_at,
        )
        self.entity = replace(
            self.entity,
            current_state_id=new_state.id,
            current_state=new_state.name,
            previous_state_id=self.entity.current_state_id,
            version=version,
            state_entered_at=entered_at,
            timeout_at=timeout_at,
            updated_at=entered_at,
        )
        return self.entity

    async def set_owner(self, owner_id: str | None, *, now: datetime) -> EntityData:
        """Assign the entity's owner, version-checked like a state change."""
        version = await WorkflowEntityRepository(session=self.session).compare_and_set(
            self.entity.id,
            self.entity.version,
            owner_id=owner_id,
            updated_at=now,
        )
        self.entity = replace(self.entity, owner_id=owner_id, version=version, updated_at=now)
        return self.entity


class EntityStore:
    """Creates workflow entities and serializes access to them.

    Two locking disciplines are supported:

    - ``PESSIMISTIC``: callers on the same entity queue on an in-process lock
      and the row is read with ``SELECT ... FOR UPDATE``, so concurrent
      processes sharing a PostgreSQL or MySQL database queue on the row lock.
    - ``OPTIMISTIC``: nothing blocks; the version check on write rejects the
      slower of two concurrent writers.

    Attributes:
        session_maker: Factory for database sessions.
        definitions: Store used to resolve entity definitions.
        locking_mode: The configured locking discipline.
        lock_timeout: Default seconds to wait for a pessimistic lock.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        definitions: DefinitionStore,
        *,
        locking_mode: LockingMode = LockingMode.PESSIMISTIC,
        lock_timeout: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the entity store.

        Args:
            session_maker: Factory for database sessions.
            definitions: Store used to resolve entity definitions.
            locking_mode: The locking discipline for transitions.
            lock_timeout: Default seconds to wait for a pessimistic lock, or
                None to wait indefinitely.
            clock: Source of the current time. Defaults to UTC now.
        """
        self.session_maker = session_maker
        self.definitions = definitions
        self.locking_mode = LockingMode(locking_mode)
        self.lock_timeout = lock_timeout
        self._clock = clock or _utcnow
        self._locks = _EntityLocks()

    async def _snapshot(self, model: WorkflowEntityModel) -> tuple[EntityData, WorkflowDefinition]:
        definition = await self.definitions.get_definition(model.definition_id)
        entity = EntityData(
            id=model.id,
            definition_id=model.definition_id,
            current_state_id=model.current_state_id,
            current_state=definition.get_state(model.current_state_id).name,
            previous_state_id=model.previous_state_id,
            version=model.version,
            owner_id=model.owner_id,
            state_entered_at=model.state_entered_at,
            timeout_at=model.timeout_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )
        return entity, definition

    async def create(
        self,
        definition: WorkflowDefinition,
        *,
        actor_id: str,
        owner_id: str | None = None,
        record_creation: bool = False,
    ) -> tuple[EntityData, TransitionRecordData | None]:
        """Create an entity in the definition's initial state.

        Args:
            definition: The definition the entity runs against.
            actor_id: Who created the entity.
            owner_id: Optional owner to assign.
            record_creation: Whether to append a creation record to the history.

        Returns:
            The new entity and its creation record, if one was written.
        """
        now = self._clock()
        initial = definition.initial_state
        model = WorkflowEntityModel(
            id=uuid4(),
            definition_id=definition.id,
            current_state_id=initial.id,
            previous_state_id=None,
            version=1,
            owner_id=owner_id,
            state_entered_at=now,
            timeout_at=_timeout_at(initial, now),
        )
        record = None
        try:
            async with self.session_maker() as session, session.begin():
                await WorkflowEntityRepository(session=session).add(model)
                if record_creation:
                    record = await TransitionHistory.append(
                        session,
                        entity_id=model.id,
                        sequence=1,
                        from_state_id=None,
                        to_state_id=initial.id,
                        transition_name="created",
                        actor_id=actor_id,
                        occurred_at=now,
                        context={},
                    )
                entity, _ = await self._snapshot(model)
        except SQLAlchemyError as e:
            raise StorageError("creating workflow entity", e) from e
        return entity, record

    async def get(self, entity_id: UUID) -> EntityData:
        """Read an entity without locking it.

        Raises:
            EntityNotFoundError: If the entity does not exist.
        """
        try:
            async with self.session_maker() as session:
                model = await WorkflowEntityRepository(session=session).get_one_or_none(id=entity_id)
                if model is None:
                    raise EntityNotFoundError(entity_id)
                entity, _ = await self._snapshot(model)
        except SQLAlchemyError as e:
            raise StorageError("loading workflow entity", e) from e
        return entity

    async def find_timed_out(self, now: datetime, limit: int = 500) -> list[EntityData]:
        """List entities whose current state's timeout has elapsed."""
        try:
            async with self.session_maker() as session:
                models = await WorkflowEntityRepository(session=session).find_timed_out(now, limit)
                return [(await self._snapshot(model))[0] for model in models]
        except SQLAlchemyError as e:
            raise StorageError("scanning for timed out entities", e) from e

    async def defer_sweep(self, entity: EntityData, until: datetime) -> bool:
        """Keep a timed-out entity out of sweeps until ``until``.

        Used when the entity's timeout transition is missing or denied, so it
        stops crowding out other timed-out entities. Nothing is written if the
        entity moved since ``entity`` was read.

        Returns:
            True if the entity was deferred.
        """
        try:
            async with self.session_maker() as session, session.begin():
                return await WorkflowEntityRepository(session=session).defer_sweep(entity.id, entity.version, until)
        except SQLAlchemyError as e:
            raise StorageError("deferring timed out entity", e) from e

    @asynccontextmanager
    async def lock_and_get(self, entity_id: UUID, *, timeout: float | None = None) -> AsyncIterator[EntityLease]:
        """Acquire an entity for one transition attempt.

        The lease's transaction commits when the block exits normally and rolls
        back when it raises. The lock is released on every exit path, after
        the commit or rollback has finished.

        Args:
            entity_id: The entity to acquire.
            timeout: Seconds to wait for the in-process lock under pessimistic
                locking; 0 fails at once if another caller holds it. Defaults to
                the store's ``lock_timeout``. Ignored under optimistic locking.
                Waits on database row locks follow the database's own lock timeout.

        Yields:
            The lease on the entity.

        Raises:
            EntityNotFoundError: If the entity does not exist.
            LockTimeoutError: If the lock was not acquired in time.
            VersionConflictError: If a concurrent writer committed first.
            StorageError: If the database fails.
        """
        pessimistic = self.locking_mode is LockingMode.PESSIMISTIC
        timeout = self.lock_timeout if timeout is None else timeout
        expected_version = 0

        async with AsyncExitStack() as stack:
            if pessimistic:
                await stack.enter_async_context(self._locks.hold(entity_id, timeout))
                logger.debug("Acquired lock on entity %s", entity_id)
                stack.callback(logger.debug, "Released lock on entity %s", entity_id)

            try:
                session = await stack.enter_async_context(self.session_maker())
                async with session.begin():
                    repo = WorkflowEntityRepository(session=session)
                    model = await repo.get_for_update(entity_id, lock=pessimistic)
                    if model is None:
                        raise EntityNotFoundError(entity_id)

                    entity, definition = await self._snapshot(model)
                    expected_version = entity.version
                    yield EntityLease(entity=entity, definition=definition, session=session)
            except IntegrityError as e:
                raise VersionConflictError(entity_id, expected_version) from e
            except SQLAlchemyError as e:
                raise StorageError(f"updating workflow entity '{entity_id}'", e) from e

    def is_locked(self, entity_id: UUID) -> bool:
        """Whether a caller in this process currently holds the entity's lock."""
        return self._locks.is_locked(entity_id)


class TransitionHistory:
    """Append-only log of committed transitions.

    Records are appended inside the transaction that moves the entity and are
    never updated or deleted. Reading streams an entity's history page by page
    so arbitrarily long histories never have to be loaded at once.

    Attributes:
        session_maker: Factory for database sessions.
        page_size: Records fetched per round trip when streaming.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], *, page_size: int = 100) -> None:
        self.session_maker = session_maker
        self.page_size = page_size

    @staticmethod
    def next_timestamp(previous: TransitionRecordData | None, now: datetime) -> datetime:
        """Pick a commit timestamp strictly after the previous record's.

        Args:
            previous: The entity's latest record, if any.
            now: The current time.

        Returns:
            ``now``, nudged forward if the clock has not moved past ``previous``.
        """
        if previous is not None and now <= previous.occurred_at:
            return previous.occurred_at + _TICK
        return now

    @staticmethod
    async def last_for_entity(session: AsyncSession, entity_id: UUID) -> TransitionRecordData | None:
        """Get an entity's latest record within an open session."""
        model = await TransitionRecordRepository(session=session).last_for_entity(entity_id)
        return _to_record(model) if model is not None else None

    @staticmethod
    async def append(
        session: AsyncSession,
        *,
        entity_id: UUID,
        sequence: int,
        from_state_id: UUID | None,
        to_state_id: UUID,
        transition_name: str,
        actor_id: str,
        occurred_at: datetime,
        context: dict[str, Any],
        previous: TransitionRecordData | None = None,
    ) -> TransitionRecordData:
        """Append a record within the caller's transaction.

        Args:
            session: The session holding the entity write.
            entity_id: The entity that moved.
            sequence: The entity version the transition produced.
            from_state_id: State left, ``None`` for creation records.
            to_state_id: State entered.
            transition_name: Transition fired.
            actor_id: Who fired it.
            occurred_at: Commit timestamp.
            context: Context supplied with the transition.
            previous: The entity's prior record, used for the duration.

        Returns:
            The appended record.
        """
        duration = (occurred_at - previous.occurred_at).total_seconds() if previous is not None else None
        model = TransitionRecordModel(
            id=uuid4(),
            entity_id=entity_id,
            sequence=sequence,
            from_state_id=from_state_id,
            to_state_id=to_state_id,
            transition_name=transition_name,
            actor_id=actor_id,
            occurred_at=occurred_at,
            context=dict(context),
            duration_seconds=duration,
        )
        await TransitionRecordRepository(session=session).add(model)
        return _to_record(model)

    async def list_for_entity(
        self,
        entity_id: UUID,
        *,
        after_sequence: int = 0,
        page_size: int | None = None,
    ) -> AsyncIterator[TransitionRecordData]:
        """Stream an entity's history in commit order.

        Each call starts a fresh, forward-only iteration. To resume an
        interrupted iteration, pass the last sequence seen as ``after_sequence``.

        Args:
            entity_id: The entity id.
            after_sequence: Only yield records after this sequence.
            page_size: Records per round trip. Defaults to the store's page size.

        Yields:
            Records ordered by timestamp, then insertion order.
        """
        size = page_size or self.page_size
        cursor = after_sequence
        while True:
            try:
                async with self.session_maker() as session:
                    models = await TransitionRecordRepository(session=session).page_for_entity(
                        entity_id,
                        after_sequence=cursor,
                        limit=size,
                    )
                    page = [_to_record(model) for model in models]
            except SQLAlchemyError as e:
                raise StorageError(f"reading history of entity '{entity_id}'", e) from e

            for record in page:
                yield record
            if len(page) < size:
                return
            cursor = page[-1].sequence

    async def count_for_entity(self, entity_id: UUID) -> int:
        """Count the records of an entity."""
        try:
            async with self.session_maker() as session:
                return await TransitionRecordRepository(session=session).count_for_entity(entity_id)
        except SQLAlchemyError as e:
            raise StorageError(f"counting history of entity '{entity_id}'", e) from e
