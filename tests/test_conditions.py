"""Tests for condition evaluation."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from litestar_fsm.conditions import (
    ConditionEvaluator,
    field_condition,
    resolve_path,
    role_condition,
    time_window_condition,
)
from litestar_fsm.core.definition import ConditionRef, TransitionDefinition
from litestar_fsm.core.protocols import Verdict

NOON_MONDAY = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _transition(*conditions: ConditionRef, requires_approval: bool = False) -> TransitionDefinition:
    return TransitionDefinition(
        id=uuid4(),
        definition_id=uuid4(),
        name="approve",
        from_state_id=uuid4(),
        to_state_id=uuid4(),
        requires_approval=requires_approval,
        conditions=conditions,
    )


@pytest.mark.unit
class TestResolvePath:
    def test_nested_lookup(self) -> None:
        assert resolve_path({"order": {"total": 5}}, "order.total") == 5

    def test_missing_segment(self) -> None:
        assert resolve_path({"order": {}}, "order.total") is resolve_path({}, "anything")
        assert field_condition({"field": "order.total", "op": "exists"}, {"order": {}}, NOON_MONDAY).allowed is False


@pytest.mark.unit
class TestFieldCondition:
    """Tests for the field predicate."""

    def test_eq_reason(self) -> None:
        verdict = field_condition({"field": "reviewerRole", "value": "editor"}, {"reviewerRole": "guest"}, NOON_MONDAY)

        assert verdict == Verdict(False, "reviewerRole must be editor")

    def test_eq_passes(self) -> None:
        params = {"field": "reviewerRole", "op": "eq", "value": "editor"}

        assert field_condition(params, {"reviewerRole": "editor"}, NOON_MONDAY).allowed

    @pytest.mark.parametrize(
        ("op", "value", "actual", "allowed"),
        [
            ("gt", 10, 11, True),
            ("gt", 10, 10, False),
            ("ge", 10, 10, True),
            ("lt", 10, 9, True),
            ("le", 10, 11, False),
            ("ne", "x", "y", True),
            ("in", ["a", "b"], "b", True),
            ("not_in", ["a", "b"], "b", False),
        ],
    )
    def test_operators(self, op: str, value: object, actual: object, allowed: bool) -> None:
        verdict = field_condition({"field": "v", "op": op, "value": value}, {"v": actual}, NOON_MONDAY)

        assert verdict.allowed is allowed

    def test_missing_field_denies(self) -> None:
        verdict = field_condition({"field": "total", "op": "gt", "value": 1}, {}, NOON_MONDAY)

        assert verdict == Verdict(False, "total must be greater than 1")

    def test_incomparable_types_deny(self) -> None:
        verdict = field_condition({"field": "total", "op": "gt", "value": 1}, {"total": "lots"}, NOON_MONDAY)

        assert not verdict.allowed

    def test_unknown_operator_denies(self) -> None:
        verdict = field_condition({"field": "total", "op": "between"}, {"total": 1}, NOON_MONDAY)

        assert verdict.reason == "unknown comparison operator 'between' for total"


@pytest.mark.unit
class TestRoleCondition:
    def test_single_role(self) -> None:
        assert role_condition({"roles": ["editor", "admin"]}, {"role": "admin"}, NOON_MONDAY).allowed

    def test_role_list(self) -> None:
        assert role_condition({"roles": ["admin"]}, {"role": ["viewer", "admin"]}, NOON_MONDAY).allowed

    def test_denied(self) -> None:
        verdict = role_condition({"roles": ["editor", "admin"], "field": "user.role"}, {"user": {}}, NOON_MONDAY)

        assert verdict == Verdict(False, "user.role must be one of admin, editor")


@pytest.mark.unit
class TestTimeWindowCondition:
    def test_inside_window(self) -> None:
        assert time_window_condition({"start": "09:00", "end": "17:00"}, {}, NOON_MONDAY).allowed

    def test_outside_window(self) -> None:
        verdict = time_window_condition({"start": "13:00", "end": "17:00"}, {}, NOON_MONDAY)

        assert verdict == Verdict(False, "transition is only allowed between 13:00 and 17:00")

    def test_window_spanning_midnight(self) -> None:
        late = datetime(2024, 1, 1, 23, 30, tzinfo=timezone.utc)
        params = {"start": "22:00", "end": "06:00"}

        assert time_window_condition(params, {}, late).allowed
        assert not time_window_condition(params, {}, NOON_MONDAY).allowed

    def test_weekdays(self) -> None:
        params = {"start": "00:00", "end": "23:59", "weekdays": [5, 6]}

        assert time_window_condition(params, {}, NOON_MONDAY).reason == "transition is not allowed on this day"


@pytest.mark.unit
class TestConditionEvaluator:
    """Tests for ConditionEvaluator."""

    def test_no_conditions_allows(self) -> None:
        assert ConditionEvaluator().evaluate(_transition()) == Verdict(True, "")

    def test_builtins_registered(self) -> None:
        evaluator = ConditionEvaluator()

        assert evaluator.condition_types == ["field", "role", "time_window"]
        assert not ConditionEvaluator(include_builtins=False).has_condition("field")

    def test_unknown_condition_type_denies(self) -> None:
        verdict = ConditionEvaluator().evaluate(_transition(ConditionRef("credit_check")), {})

        assert verdict == Verdict(False, "unknown condition type 'credit_check'")

    def test_first_denial_short_circuits(self) -> None:
        calls: list[str] = []

        def tracking(params, context, now):
            calls.append(params["name"])
            return Verdict(params["pass"], f"{params['name']} failed")

        evaluator = ConditionEvaluator({"tracking": tracking})
        transition = _transition(
            ConditionRef("tracking", {"name": "first", "pass": True}),
            ConditionRef("tracking", {"name": "second", "pass": False}),
            ConditionRef("tracking", {"name": "third", "pass": False}),
        )

        assert evaluator.evaluate(transition, {}) == Verdict(False, "second failed")
        assert calls == ["first", "second"]

    def test_custom_message_overrides_reason(self) -> None:
        transition = _transition(ConditionRef("field", {"field": "total", "op": "exists"}, message="Add a total first"))

        assert ConditionEvaluator().evaluate(transition, {}).reason == "Add a total first"

    def test_raising_predicate_denies(self) -> None:
        def broken(params, context, now):
            raise RuntimeError("boom")

        evaluator = ConditionEvaluator()
        evaluator.register("broken", broken)

        verdict = evaluator.evaluate(_transition(ConditionRef("broken")), {})

        assert verdict == Verdict(False, "condition 'broken' could not be evaluated")

    def test_requires_approval(self) -> None:
        transition = _transition(requires_approval=True)
        evaluator = ConditionEvaluator()

        assert evaluator.evaluate(transition, {}) == Verdict(False, "transition 'approve' requires approval")
        assert evaluator.evaluate(transition, {"approved_by": "carol"}).allowed

    def test_clock_is_used(self) -> None:
        evaluator = ConditionEvaluator(clock=lambda: NOON_MONDAY)
        transition = _transition(ConditionRef("time_window", {"start": "11:00", "end": "13:00"}))

        assert evaluator.evaluate(transition).allowed
