"""Timeout sweeper.

The sweeper periodically looks for entities that have outstayed their state's
timeout and fires the state's timeout transition through the engine, so
timeouts obey exactly the same locking, conditions and history rules as any
other transition.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING
from uuid import UUID

from litestar_fsm.core.events import TimeoutTransitionMissing
from litestar_fsm.exceptions import (
    AmbiguousAutoTransitionError,
    AutoTransitionLimitError,
    ConditionDeniedError,
    LockTimeoutError,
    NoSuchTransitionError,
    TerminalStateError,
    VersionConflictError,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import timedelta

    from litestar_fsm.core.models import EntityData, TransitionRecordData
    from litestar_fsm.engine.transition import TransitionEngine

__all__ = ["SweepReport", "TimeoutSweeper"]

logger = logging.getLogger(__name__)

# Another caller moved or locked the entity first; nothing left to do.
_RACE_LOST = (VersionConflictError, NoSuchTransitionError, TerminalStateError, LockTimeoutError)


@dataclass
class SweepReport:
    """Outcome of one sweep.

    Attributes:
        fired: Records of the timeout transitions that committed.
        missing: Entities whose state has no timeout transition.
        skipped: Entities whose timeout transition was denied by a condition.
        lost: Entities another caller moved or held first.
        failed: Entities whose timeout transition committed but whose automatic
            follow-up transitions failed. Their committed records are in ``fired``.
    """

    fired: list[TransitionRecordData] = field(default_factory=list)
    missing: list[UUID] = field(default_factory=list)
    skipped: list[UUID] = field(default_factory=list)
    lost: list[UUID] = field(default_factory=list)
    failed: list[UUID] = field(default_factory=list)

    @property
    def scanned(self) -> int:
        """Number of timed-out entities examined."""
        return len(self.fired) + len(self.missing) + len(self.skipped) + len(self.lost)


class TimeoutSweeper:
    """Fires timeout transitions for entities that stayed too long in a state.

    Attributes:
        engine: The engine timeout transitions are fired through.
        interval: Time between sweeps when running in the background.
        batch_size: Maximum entities handled per sweep.
    """

    def __init__(
        self,
        engine: TransitionEngine,
        *,
        interval: timedelta | None = None,
        batch_size: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.engine = engine
        self.interval = interval or engine.config.sweep_interval
        self.batch_size = batch_size or engine.config.sweep_batch_size
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        """Whether the background sweep task is active."""
        return self._task is not None and not self._task.done()

    async def sweep_once(self, now: datetime | None = None) -> SweepReport:
        """Handle every entity whose timeout has elapsed at ``now``.

        Entities whose timeout transition is missing or denied are held back
        for one ``interval`` so they do not crowd other timed-out entities out
        of the batch.

        Args:
            now: The reference time. Defaults to the sweeper's clock.

        Returns:
            What happened to each timed-out entity.
        """
        now = now or self._clock()
        report = SweepReport()
        for entity in await self.engine.entities.find_timed_out(now, self.batch_size):
            await self._handle(entity, report, now)

        if report.scanned:
            logger.info(
                "Timeout sweep: %d fired, %d missing transition, %d denied, %d lost to concurrent callers, %d failed follow-up",
                len(report.fired),
                len(report.missing),
                len(report.skipped),
                len(report.lost),
                len(report.failed),
            )
        return report

    async def _handle(self, entity: EntityData, report: SweepReport, now: datetime) -> None:
        config = self.engine.config
        definition = await self.engine.definitions.get_definition(entity.definition_id)
        state = definition.get_state(entity.current_state_id)
        if state.is_terminal:
            return

        name = state.timeout_transition or config.timeout_transition_name
        if definition.find_transition(state.id, name) is None:
            logger.warning(
                "Entity %s timed out in state '%s' but the state has no '%s' transition",
                entity.id,
                state.name,
                name,
            )
            report.missing.append(entity.id)
            await self.engine.entities.defer_sweep(entity, now + self.interval)
            self.engine.emit(
                TimeoutTransitionMissing(
                    entity_id=entity.id,
                    definition_id=definition.id,
                    occurred_at=self._clock(),
                    state=state.name,
                    transition_name=name,
                    timeout_at=entity.timeout_at,
                )
            )
            return

        context = {
            "reason": "timeout",
            "timed_out_at": entity.timeout_at.isoformat() if entity.timeout_at else None,
        }
        try:
            record = await self.engine.execute(
                entity.id,
                name,
                config.system_actor,
                context,
                expected_version=entity.version,
            )
        except _RACE_LOST as e:
            logger.debug("Timeout of entity %s superseded: %s", entity.id, e)
            report.lost.append(entity.id)
        except ConditionDeniedError as e:
            logger.info("Timeout transition '%s' on entity %s denied: %s", name, entity.id, e.reason)
            report.skipped.append(entity.id)
            await self.engine.entities.defer_sweep(entity, now + self.interval)
        except (AmbiguousAutoTransitionError, AutoTransitionLimitError) as e:
            logger.exception("Timeout transition '%s' on entity %s committed but its follow-up failed", name, entity.id)
            if e.committed is not None:
                report.fired.append(e.committed)
            report.failed.append(entity.id)
        else:
            report.fired.append(record)

    async def run_forever(self) -> None:
        """Sweep every ``interval`` until cancelled."""
        seconds = self.interval.total_seconds()
        while True:
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Timeout sweep failed")
            await asyncio.sleep(seconds)

    def start(self) -> None:
        """Start sweeping in a background task."""
        if self.running:
            return
        self._task = asyncio.create_task(self.run_forever(), name="litestar-fsm-timeout-sweeper")
        logger.info("Timeout sweeper started (interval %s)", self.interval)

    async def stop(self) -> None:
        """Stop the background task and wait for it to finish."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Timeout sweeper stopped")
