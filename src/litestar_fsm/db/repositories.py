"""Repository implementations for state machine persistence.

This module provides async repositories for the state machine models using
advanced-alchemy's repository pattern. Every repository works inside the
session it was created with; transaction boundaries belong to the caller.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from sqlalchemy import and_, func, select, update

from litestar_fsm.db.models import (
    TransitionRecordModel,
    WorkflowDefinitionModel,
    WorkflowEntityModel,
)
from litestar_fsm.exceptions import VersionConflictError

if TYPE_CHECKING:
    from collections.abc import Sequence

__all__ = [
    "TransitionRecordRepository",
    "WorkflowDefinitionRepository",
    "WorkflowEntityRepository",
]


class WorkflowDefinitionRepository(SQLAlchemyAsyncRepository[WorkflowDefinitionModel]):
    """Repository for workflow definition versions.

    Provides methods for version lookup and activation status.
    """

    model_type = WorkflowDefinitionModel

    async def get_by_name(
        self,
        name: str,
        version: int | None = None,
        *,
        active_only: bool = True,
    ) -> WorkflowDefinitionModel | None:
        """Get a workflow definition by name and optional version.

        Args:
            name: The workflow name.
            version: Optional specific version. If None, returns the latest version.
            active_only: If True, only return active definitions.

        Returns:
            The workflow definition or None if not found.
        """
        conditions = [WorkflowDefinitionModel.name == name]

        if version is not None:
            conditions.append(WorkflowDefinitionModel.version == version)

        if active_only:
            conditions.append(WorkflowDefinitionModel.is_active == True)  # noqa: E712

        stmt = (
            select(WorkflowDefinitionModel)
            .where(and_(*conditions))
            .order_by(WorkflowDefinitionModel.version.desc())
            .limit(1)
        )

        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_max_version(self, name: str) -> int:
        """Get the highest version published under a name.

        Args:
            name: The workflow name.

        Returns:
            The highest version, or 0 if the name was never published.
        """
        stmt = select(func.max(WorkflowDefinitionModel.version)).where(WorkflowDefinitionModel.name == name)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() or 0

    async def list_active(self) -> Sequence[WorkflowDefinitionModel]:
        """List all active workflow definitions.

        Returns:
            List of active workflow definitions.
        """
        stmt = (
            select(WorkflowDefinitionModel)
            .where(WorkflowDefinitionModel.is_active == True)  # noqa: E712
            .order_by(WorkflowDefinitionModel.name, WorkflowDefinitionModel.version.desc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def set_active(self, definition_id: UUID, *, active: bool) -> bool:
        """Flip the active flag of a definition version.

        Args:
            definition_id: The definition id.
            active: The new flag value.

        Returns:
            True if a definition was updated.
        """
        stmt = (
            update(WorkflowDefinitionModel)
            .where(WorkflowDefinitionModel.id == definition_id)
            .values(is_active=active)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0


class WorkflowEntityRepository(SQLAlchemyAsyncRepository[WorkflowEntityModel]):
    """Repository for workflow entities.

    Provides locked reads and version-checked writes.
    """

    model_type = WorkflowEntityModel

    async def get_for_update(self, entity_id: UUID, *, lock: bool = True) -> WorkflowEntityModel | None:
        """Read an entity, taking a row lock when the database supports it.

        ``SELECT ... FOR UPDATE`` is honoured by PostgreSQL and MySQL and
        ignored by SQLite, where writers are serialized by the database lock.

        Args:
            entity_id: The entity id.
            lock: Whether to request a row lock.

        Returns:
            The entity or None if not found.
        """
        stmt = select(WorkflowEntityModel).where(WorkflowEntityModel.id == entity_id)
        if lock:
            stmt = stmt.with_for_update()
        stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def compare_and_set(
        self,
        entity_id: UUID,
        expected_version: int,
        *,
        transition_name: str | None = None,
        **values: Any,
    ) -> int:
        """Write an entity only if it is still at the expected version.

        The version is bumped by one as part of the same statement.

        Args:
            entity_id: The entity id.
            expected_version: The version the caller read.
            transition_name: Transition being committed, for error reporting.
            **values: Column values to set.

        Returns:
            The new version.

        Raises:
            VersionConflictError: If the entity is no longer at ``expected_version``.
        """
        new_version = expected_version + 1
        stmt = (
            update(WorkflowEntityModel)
            .where(
                and_(
                    WorkflowEntityModel.id == entity_id,
                    WorkflowEntityModel.version == expected_version,
                )
            )
            .values(version=new_version, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise VersionConflictError(entity_id, expected_version, transition_name)
        return new_version

    async def find_timed_out(self, now: datetime, limit: int = 500) -> Sequence[WorkflowEntityModel]:
        """Find entities due for a timeout sweep.

        An entity is due once its state's timeout has elapsed, or, if an
        earlier sweep deferred it, once ``next_sweep_at`` has passed.

        Args:
            now: The reference time.
            limit: Maximum number of entities to return.

        Returns:
            Entities ordered by how long ago they became due.
        """
        due_at = func.coalesce(WorkflowEntityModel.next_sweep_at, WorkflowEntityModel.timeout_at)
        stmt = (
            select(WorkflowEntityModel)
            .where(
                and_(
                    WorkflowEntityModel.timeout_at.isnot(None),
                    due_at <= now,
                )
            )
            .order_by(due_at, WorkflowEntityModel.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def defer_sweep(self, entity_id: UUID, expected_version: int, until: datetime) -> bool:
        """Hold an entity back from timeout sweeps until ``until``.

        The version is left alone; the write only lands if the entity has not
        moved since the sweeper read it.

        Args:
            entity_id: The entity id.
            expected_version: The version the sweeper read.
            until: When the entity becomes due again.

        Returns:
            True if the entity was deferred.
        """
        stmt = (
            update(WorkflowEntityModel)
            .where(
                and_(
                    WorkflowEntityModel.id == entity_id,
                    WorkflowEntityModel.version == expected_version,
                )
            )
            .values(next_sweep_at=until)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0


class TransitionRecordRepository(SQLAlchemyAsyncRepository[TransitionRecordModel]):
    """Repository for transition history records.

    Records are inserted and read, never updated or deleted.
    """

    model_type = TransitionRecordModel

    async def last_for_entity(self, entity_id: UUID) -> TransitionRecordModel | None:
        """Get the most recent record of an entity.

        Args:
            entity_id: The entity id.

        Returns:
            The latest record, or None if the entity has no history.
        """
        stmt = (
            select(TransitionRecordModel)
            .where(TransitionRecordModel.entity_id == entity_id)
            .order_by(TransitionRecordModel.sequence.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def page_for_entity(
        self,
        entity_id: UUID,
        *,
        after_sequence: int = 0,
        limit: int = 100,
    ) -> Sequence[TransitionRecordModel]:
        """Fetch one page of an entity's history in commit order.

        Pages are keyed by sequence, so each page is a cheap index range scan
        no matter how long the history is.

        Args:
            entity_id: The entity id.
            after_sequence: Only return records with a greater sequence.
            limit: Page size.

        Returns:
            Records ordered by timestamp, then sequence.
        """
        stmt = (
            select(TransitionRecordModel)
            .where(
                and_(
                    TransitionRecordModel.entity_id == entity_id,
                    TransitionRecordModel.sequence > after_sequence,
                )
            )
            .order_by(TransitionRecordModel.sequence)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_for_entity(self, entity_id: UUID) -> int:
        """Count the records of an entity."""
        return await self.count(TransitionRecordModel.entity_id == entity_id)
