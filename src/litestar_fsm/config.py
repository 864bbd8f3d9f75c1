"""Engine configuration.

This module provides the ``FSMConfig`` dataclass shared by the transition
engine, the entity store and the timeout sweeper.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import timedelta
from typing import Any

from litestar_fsm.core.types import DEFAULT_SYSTEM_ACTOR, DEFAULT_TIMEOUT_TRANSITION, LockingMode

__all__ = ["FSMConfig"]

_ALIASES = {
    "lockingMode": "locking_mode",
    "sweepInterval": "sweep_interval",
    "strictAutoTransitionAmbiguity": "strict_auto_transition_ambiguity",
    "maxAutoHops": "max_auto_hops",
    "lockTimeout": "lock_timeout",
}


@dataclass
class FSMConfig:
    """Configuration for the state machine engine.

    Attributes:
        locking_mode: Concurrency discipline for entity writes.
        sweep_interval: How often the timeout sweeper scans for expired states.
        strict_auto_transition_ambiguity: Fail when more than one auto
            transition is eligible from the same state. When off, the first
            in definition order fires.
        max_auto_hops: Longest chain of auto transitions a single call may
            trigger before failing.
        lock_timeout: Default seconds a pessimistic caller waits for the
            entity lock. ``None`` waits indefinitely.
        system_actor: Actor id recorded for auto and timeout transitions.
        timeout_transition_name: Transition the sweeper fires when a state
            does not name its own timeout transition.
        record_entity_creation: Append a history record, with no from-state,
            when an entity is created.
        sweep_batch_size: Maximum entities handled per sweep.
        history_page_size: Records fetched per round trip when streaming history.

    Example:
        >>> config = FSMConfig(locking_mode=LockingMode.OPTIMISTIC, max_auto_hops=5)
    """

    locking_mode: LockingMode = LockingMode.PESSIMISTIC
    sweep_interval: timedelta = field(default_factory=lambda: timedelta(minutes=5))
    strict_auto_transition_ambiguity: bool = True
    max_auto_hops: int = 10
    lock_timeout: float | None = 30.0
    system_actor: str = DEFAULT_SYSTEM_ACTOR
    timeout_transition_name: str = DEFAULT_TIMEOUT_TRANSITION
    record_entity_creation: bool = False
    sweep_batch_size: int = 500
    history_page_size: int = 100

    def __post_init__(self) -> None:
        self.locking_mode = LockingMode(self.locking_mode)
        if not isinstance(self.sweep_interval, timedelta):
            self.sweep_interval = timedelta(seconds=float(self.sweep_interval))
        if self.max_auto_hops < 0:
            msg = "max_auto_hops must not be negative"
            raise ValueError(msg)
        if self.sweep_interval <= timedelta(0):
            msg = "sweep_interval must be positive"
            raise ValueError(msg)

    @classmethod
    def from_mapping(cls, options: dict[str, Any]) -> FSMConfig:
        """Build a configuration from a plain mapping.

        Accepts both snake_case field names and the camelCase option names
        (``lockingMode``, ``sweepInterval``, ``strictAutoTransitionAmbiguity``).
        ``sweepInterval`` may be a ``timedelta`` or a number of seconds.

        Args:
            options: The configuration options.

        Returns:
            The resolved configuration.

        Raises:
            ValueError: If an option is not recognized.
        """
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in options.items():
            name = _ALIASES.get(key, key)
            if name not in known:
                msg = f"Unknown configuration option '{key}'"
                raise ValueError(msg)
            kwargs[name] = value
        return cls(**kwargs)
