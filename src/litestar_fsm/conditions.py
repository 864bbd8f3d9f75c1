"""Condition evaluation for transitions.

The evaluator is a registry of named predicates. Each condition reference
stored on a transition names a predicate and carries its parameters; the
evaluator resolves the name, runs the predicate against the caller's context
and AND-s the results, stopping at the first denial.

Unknown condition types deny. A transition guarded by a condition the engine
does not understand must never fire by accident.
"""

from __future__ import annotations

import logging
import operator
from collections.abc import Callable, Mapping
from datetime import datetime, time, timezone
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from litestar_fsm.core.protocols import Verdict

if TYPE_CHECKING:
    from litestar_fsm.core.definition import ConditionRef, TransitionDefinition
    from litestar_fsm.core.protocols import Predicate

__all__ = [
    "ALLOWED",
    "ConditionEvaluator",
    "field_condition",
    "resolve_path",
    "role_condition",
    "time_window_condition",
]

logger = logging.getLogger(__name__)

ALLOWED = Verdict(True, "")

_MISSING = object()

_OPERATORS: dict[str, tuple[Callable[[Any, Any], bool], str]] = {
    "eq": (operator.eq, "must be"),
    "ne": (operator.ne, "must not be"),
    "gt": (operator.gt, "must be greater than"),
    "ge": (operator.ge, "must be at least"),
    "lt": (operator.lt, "must be less than"),
    "le": (operator.le, "must be at most"),
    "in": (lambda actual, expected: actual in expected, "must be one of"),
    "not_in": (lambda actual, expected: actual not in expected, "must not be one of"),
}


def resolve_path(context: Mapping[str, Any], path: str) -> Any:
    """Look up a dotted path in a nested mapping.

    Args:
        context: The mapping to search.
        path: Dotted key path, e.g. ``"order.total"``.

    Returns:
        The value found, or a private sentinel if any segment is missing.
    """
    current: Any = context
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _describe(value: Any) -> str:
    if isinstance(value, (list, tuple, set, frozenset)):
        return ", ".join(str(item) for item in value)
    return str(value)


def field_condition(params: Mapping[str, Any], context: Mapping[str, Any], now: datetime) -> Verdict:
    """Compare a context field against a value.

    Params:
        field: Dotted path of the context field.
        op: One of ``eq``, ``ne``, ``gt``, ``ge``, ``lt``, ``le``, ``in``,
            ``not_in`` or ``exists``. Defaults to ``eq``.
        value: The value to compare with. Not used by ``exists``.
    """
    field_name = params["field"]
    op = params.get("op", "eq")
    actual = resolve_path(context, field_name)

    if op == "exists":
        if actual is _MISSING or actual is None:
            return Verdict(False, f"{field_name} is required")
        return ALLOWED

    if op not in _OPERATORS:
        return Verdict(False, f"unknown comparison operator '{op}' for {field_name}")

    compare, wording = _OPERATORS[op]
    expected = params.get("value")
    if actual is _MISSING:
        return Verdict(False, f"{field_name} {wording} {_describe(expected)}")
    try:
        passed = compare(actual, expected)
    except TypeError:
        passed = False
    if not passed:
        return Verdict(False, f"{field_name} {wording} {_describe(expected)}")
    return ALLOWED


def role_condition(params: Mapping[str, Any], context: Mapping[str, Any], now: datetime) -> Verdict:
    """Require the caller's role to be one of a set of roles.

    Params:
        roles: Accepted role names.
        field: Dotted path of the role in the context. Defaults to ``role``.
            The value may be a single role or a list of roles.
    """
    field_name = params.get("field", "role")
    roles = set(params.get("roles") or [])
    actual = resolve_path(context, field_name)

    held = set(actual) if isinstance(actual, (list, tuple, set, frozenset)) else {actual}
    if actual is _MISSING or not roles & held:
        return Verdict(False, f"{field_name} must be one of {_describe(sorted(roles))}")
    return ALLOWED


def _parse_time(value: str | time) -> time:
    if isinstance(value, time):
        return value
    return time.fromisoformat(value)


def time_window_condition(params: Mapping[str, Any], context: Mapping[str, Any], now: datetime) -> Verdict:
    """Allow the transition only inside a daily time window.

    Params:
        start: Window start, ``HH:MM`` (inclusive).
        end: Window end, ``HH:MM`` (exclusive). May be earlier than ``start``
            for windows spanning midnight.
        weekdays: Optional list of allowed weekdays, Monday is 0.
        tz: Optional IANA zone the window is expressed in. Defaults to UTC.
    """
    zone = ZoneInfo(params["tz"]) if params.get("tz") else timezone.utc
    local = now.astimezone(zone)
    start = _parse_time(params["start"])
    end = _parse_time(params["end"])
    current = local.time().replace(tzinfo=None)

    weekdays = params.get("weekdays")
    if weekdays is not None and local.weekday() not in weekdays:
        return Verdict(False, "transition is not allowed on this day")

    inside = start <= current < end if start <= end else current >= start or current < end
    if not inside:
        return Verdict(False, f"transition is only allowed between {start:%H:%M} and {end:%H:%M}")
    return ALLOWED


class ConditionEvaluator:
    """Registry of named predicates evaluated against transition context.

    The evaluator is stateless once configured and safe to share between
    concurrent callers.

    Example:
        >>> evaluator = ConditionEvaluator()
        >>> evaluator.register("weekday_only", lambda params, ctx, now: Verdict(now.weekday() < 5, "weekdays only"))
        >>> allowed, reason = evaluator.evaluate(transition, {"reviewerRole": "editor"})
    """

    def __init__(
        self,
        predicates: Mapping[str, Predicate] | None = None,
        *,
        include_builtins: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the evaluator.

        Args:
            predicates: Additional predicates keyed by condition type.
            include_builtins: Whether to register the ``field``, ``role`` and
                ``time_window`` predicates.
            clock: Source of the evaluation time. Defaults to UTC now.
        """
        self._predicates: dict[str, Predicate] = {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        if include_builtins:
            self._predicates.update(
                {
                    "field": field_condition,
                    "role": role_condition,
                    "time_window": time_window_condition,
                }
            )
        if predicates:
            self._predicates.update(predicates)

    def register(self, name: str, predicate: Predicate) -> None:
        """Register a predicate under a condition type name.

        Args:
            name: The condition type referenced by transitions.
            predicate: The predicate to run.
        """
        self._predicates[name] = predicate

    def has_condition(self, name: str) -> bool:
        """Check whether a condition type is registered."""
        return name in self._predicates

    @property
    def condition_types(self) -> list[str]:
        """Registered condition type names."""
        return sorted(self._predicates)

    def check(self, condition: ConditionRef, context: Mapping[str, Any], now: datetime | None = None) -> Verdict:
        """Evaluate a single condition reference.

        Args:
            condition: The condition to evaluate.
            context: The caller's transition context.
            now: Evaluation time. Defaults to the evaluator's clock.

        Returns:
            The verdict. A denial carries the condition's message when set.
        """
        predicate = self._predicates.get(condition.type)
        if predicate is None:
            verdict = Verdict(False, f"unknown condition type '{condition.type}'")
        else:
            try:
                verdict = predicate(condition.params, context, now or self._clock())
            except Exception:
                logger.exception("Condition '%s' raised; denying", condition.type)
                verdict = Verdict(False, f"condition '{condition.type}' could not be evaluated")

        if not verdict.allowed and condition.message:
            return Verdict(False, condition.message)
        return verdict

    def evaluate(self, transition: TransitionDefinition, context: Mapping[str, Any] | None = None) -> Verdict:
        """Evaluate every condition guarding a transition.

        Conditions are AND-ed in order; the first denial short-circuits and its
        reason is returned verbatim.

        Args:
            transition: The transition being attempted.
            context: The caller's transition context.

        Returns:
            ``Verdict(True, "")`` when all conditions pass, else the first denial.
        """
        context = context or {}
        now = self._clock()

        if transition.requires_approval and not context.get("approved_by"):
            return Verdict(False, f"transition '{transition.name}' requires approval")

        for condition in transition.conditions:
            verdict = self.check(condition, context, now)
            if not verdict.allowed:
                logger.debug("Transition '%s' denied: %s", transition.name, verdict.reason)
                return verdict
        return ALLOWED
