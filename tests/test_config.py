"""Tests for engine configuration."""

from __future__ import annotations

from datetime import timedelta

import pytest

from litestar_fsm.config import FSMConfig
from litestar_fsm.core.types import LockingMode


@pytest.mark.unit
class TestFSMConfig:
    def test_defaults(self) -> None:
        config = FSMConfig()

        assert config.locking_mode is LockingMode.PESSIMISTIC
        assert config.sweep_interval == timedelta(minutes=5)
        assert config.strict_auto_transition_ambiguity is True
        assert config.max_auto_hops == 10
        assert config.system_actor == "system"
        assert config.timeout_transition_name == "timeout"
        assert config.record_entity_creation is False

    def test_coerces_locking_mode_and_interval(self) -> None:
        config = FSMConfig(locking_mode="optimistic", sweep_interval=30)  # type: ignore[arg-type]

        assert config.locking_mode is LockingMode.OPTIMISTIC
        assert config.sweep_interval == timedelta(seconds=30)

    def test_rejects_invalid_values(self) -> None:
        with pytest.raises(ValueError):
            FSMConfig(locking_mode="eventual")  # type: ignore[arg-type]
        with pytest.raises(ValueError, match="max_auto_hops"):
            FSMConfig(max_auto_hops=-1)
        with pytest.raises(ValueError, match="sweep_interval"):
            FSMConfig(sweep_interval=timedelta(0))

    def test_from_mapping_accepts_camel_case(self) -> None:
        config = FSMConfig.from_mapping(
            {
                "lockingMode": "optimistic",
                "sweepInterval": timedelta(minutes=1),
                "strictAutoTransitionAmbiguity": False,
                "max_auto_hops": 3,
            }
        )

        assert config.locking_mode is LockingMode.OPTIMISTIC
        assert config.sweep_interval == timedelta(minutes=1)
        assert config.strict_auto_transition_ambiguity is False
        assert config.max_auto_hops == 3

    def test_from_mapping_rejects_unknown_options(self) -> None:
        with pytest.raises(ValueError, match="Unknown configuration option 'lockMode'"):
            FSMConfig.from_mapping({"lockMode": "optimistic"})
