"""Core type definitions for litestar-fsm.

This module defines the fundamental types, enums, constants and type aliases
used throughout the state machine engine.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, TypeAlias

__all__ = [
    "DEFAULT_SYSTEM_ACTOR",
    "DEFAULT_TIMEOUT_TRANSITION",
    "RETRY_TRANSITION_NAME",
    "Context",
    "LockingMode",
]


class LockingMode(StrEnum):
    """Concurrency discipline used when mutating a workflow entity.

    Attributes:
        PESSIMISTIC: Concurrent callers on the same entity wait for the lock
            holder to finish. Suits low-concurrency, high-value entities.
        OPTIMISTIC: Reads never block; the write is version-checked and fails
            fast on conflict, leaving the retry to the caller.
    """

    PESSIMISTIC = "pessimistic"
    OPTIMISTIC = "optimistic"


# Type aliases for transition data
Context: TypeAlias = dict[str, Any]
"""Type alias for the free-form context passed with a transition."""

DEFAULT_SYSTEM_ACTOR = "system"
"""Actor id recorded for auto and timeout transitions."""

DEFAULT_TIMEOUT_TRANSITION = "timeout"
"""Transition name the timeout sweeper fires when a state does not name one."""

RETRY_TRANSITION_NAME = "retry"
"""Transition name that is allowed to loop back to its own state."""
