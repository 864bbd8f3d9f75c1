"""Transition engine.

This module provides the engine that moves workflow entities between states.
"""

from __future__ import annotations

from litestar_fsm.engine.transition import TransitionEngine

__all__ = ["TransitionEngine"]
