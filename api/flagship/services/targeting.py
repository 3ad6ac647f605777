"""Targeting evaluation for feature flags.

Everything here is pure: no I/O, no shared state, inputs are never mutated.
The API goes through :func:`evaluate_flag`, which defers to
:func:`evaluate_targeting` for switched-on flags.
"""
import math
import struct
import uuid
from typing import Any, Callable, Iterable, Optional

from flagship.models import (
    DefaultRule,
    EvaluationResult,
    Flag,
    Targeting,
    TargetingCondition,
    TargetingRule,
    UserContext,
)

IdFactory = Callable[[], str]

_RADIX_PREFIXES = {"0x": 16, "0o": 8, "0b": 2}


def anonymous_id() -> str:
    return f"anon-{uuid.uuid4().hex}"


def _utf16_units(value: str) -> Iterable[int]:
    data = value.encode("utf-16-le", "surrogatepass")
    return struct.unpack(f"<{len(data) // 2}H", data)


def hash_string(value: str) -> int:
    """Map ``value`` to a bucket in 0..99.

    Rolling ``h * 31 + unit`` over UTF-16 code units with signed 32-bit
    wraparound, so buckets match the JavaScript ``hashString`` the dashboard
    shipped with. Changing this reshuffles every rollout in production.
    """
    h = 0
    for unit in _utf16_units(value):
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h) % 100


def is_in_rollout(user_id: str, flag_key: str, percentage: float) -> bool:
    if percentage <= 0:
        return False
    if percentage >= 100:
        return True
    return hash_string(f"{flag_key}:{user_id}") < percentage


def _stringify(value: Any) -> str:
    # JavaScript String() semantics for the scalar shapes attributes take
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join("" if v is None else _stringify(v) for v in value)
    return str(value)


def _to_number(value: Any) -> float:
    # JavaScript Number(): null is 0, arrays go through their string form
    if value is None:
        return 0.0
    if isinstance(value, (list, tuple)):
        return _to_number(_stringify(value))
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        try:
            return float(value)
        except OverflowError:
            return math.inf if value > 0 else -math.inf
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        if "_" in text:
            return math.nan
        prefix, digits = text[:2].lower(), text[2:]
        if prefix in _RADIX_PREFIXES:
            if not digits.isalnum():
                return math.nan
            try:
                return float(int(digits, _RADIX_PREFIXES[prefix]))
            except (ValueError, OverflowError):
                return math.nan
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def _strict_equals(left: Any, right: Any) -> bool:
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _in_values(condition_value: Any) -> list:
    if isinstance(condition_value, (list, tuple, set, frozenset)):
        return list(condition_value)
    return [part.strip() for part in _stringify(condition_value).split(",")]


def evaluate_condition(user_value: Any, operator: str, condition_value: Any) -> bool:
    """Compare one user attribute against a condition operand.

    A missing attribute (``None``) never matches, not even for ``ne``.
    Unknown operators and values that cannot be compared yield ``False``.
    """
    if user_value is None:
        return False

    if operator == "eq":
        return _strict_equals(user_value, condition_value)
    if operator == "ne":
        return not _strict_equals(user_value, condition_value)
    if operator == "contains":
        return _stringify(condition_value) in _stringify(user_value)
    if operator == "in":
        return any(_strict_equals(user_value, v) for v in _in_values(condition_value))
    if operator in ("gt", "lt", "gte", "lte"):
        left, right = _to_number(user_value), _to_number(condition_value)
        if operator == "gt":
            return left > right
        if operator == "lt":
            return left < right
        if operator == "gte":
            return left >= right
        return left <= right
    return False


def _condition_matches(condition: TargetingCondition, user: UserContext) -> bool:
    attributes = user.attributes or {}
    return evaluate_condition(attributes.get(condition.attribute), condition.operator, condition.value)


def _rollout_id(user: UserContext, id_factory: IdFactory) -> str:
    return user.id or id_factory()


def evaluate_rule(rule: TargetingRule, user: UserContext, flag_key: str,
                  id_factory: IdFactory = anonymous_id) -> bool:
    if not rule.enabled:
        return False
    if not all(_condition_matches(c, user) for c in rule.conditions):
        return False
    return is_in_rollout(_rollout_id(user, id_factory), flag_key, rule.rollout_percentage)


def evaluate_targeting(flag_key: str, targeting: Optional[Targeting], user: Optional[UserContext],
                       default_value: Any, id_factory: Optional[IdFactory] = None) -> EvaluationResult:
    """Decide whether ``flag_key`` is on for ``user`` and which value it serves.

    Rules are tried in order; the first one whose conditions all match and
    whose rollout bucket admits the user wins. A rollout miss falls through
    to the next rule. When nothing wins, ``targeting.default_rule`` decides.
    Disabled or absent targeting serves ``default_value`` as enabled, without
    consulting the default rule.

    ``id_factory`` supplies an identifier for users without an ``id``. The
    default one is random per call, so anonymous users are not bucketed
    consistently across requests.
    """
    if targeting is None or not targeting.enabled:
        return EvaluationResult(enabled=True, value=default_value)

    user = user or UserContext()
    id_factory = id_factory or anonymous_id

    for rule in targeting.rules:
        if evaluate_rule(rule, user, flag_key, id_factory):
            return EvaluationResult(enabled=True, value=rule.value)

    default_rule = targeting.default_rule
    in_default = is_in_rollout(_rollout_id(user, id_factory), flag_key, default_rule.rollout_percentage)
    return EvaluationResult(enabled=in_default, value=default_rule.value)


def evaluate_flag(flag: Flag, user: Optional[UserContext], id_factory: Optional[IdFactory] = None) -> EvaluationResult:
    # a switched-off flag serves its stored value without targeting
    if not flag.enabled:
        return EvaluationResult(enabled=False, value=flag.value)
    return evaluate_targeting(flag.key, flag.targeting, user, flag.value, id_factory)


def percentage_rollout(percentage: float, value: Any) -> Targeting:
    return Targeting(enabled=True, rules=[], default_rule=DefaultRule(rollout_percentage=percentage, value=value))


def attribute_targeting(attribute: str, operator: str, value: Any, target_value: Any) -> Targeting:
    rule = TargetingRule(
        id=f"{attribute}-rule",
        description=f"Users where {attribute} {operator} {value}",
        conditions=[TargetingCondition(attribute=attribute, operator=operator, value=value)],
        rollout_percentage=100,
        value=target_value,
        enabled=True,
    )
    return Targeting(enabled=True, rules=[rule], default_rule=DefaultRule(rollout_percentage=0, value=False))
