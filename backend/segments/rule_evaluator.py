"""
Rule evaluation for subscriber segments.

Evaluates a segment rule tree against a single subscriber. Evaluation is total:
it returns a boolean for any well-formed tree and any subscriber, including
subscribers missing the fields a rule refers to.

Absent versus null:
    A tag or metadata key that is not present resolves to MISSING, which is
    distinct from an explicit None value.

    - is_null / is_not_null treat MISSING like None
      ({"field": "tags.vip", "operator": "is_null"} matches tags == {})
    - exists / not_exists only look at presence, so an explicit None exists
      ({"field": "tags.vip", "operator": "exists"} does NOT match tags == {})
"""

import math
from datetime import datetime, timedelta
from typing import Any

from models.segment import Condition, Group, RuleOperator
from models.subscriber import Subscriber
from shared.utils import parse_timestamp, utc_now


class _Missing:
    """Marker for a tag/metadata key that is not present on the subscriber."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()

# Rule field name -> Subscriber attribute. Both spellings are accepted.
DIRECT_FIELDS = {
    "id": "id",
    "endpoint": "endpoint",
    "browser": "browser",
    "os": "os",
    "country": "country",
    "site_id": "site_id",
    "siteId": "site_id",
    "is_active": "is_active",
    "isActive": "is_active",
    "subscribed_at": "subscribed_at",
    "subscribedAt": "subscribed_at",
    "last_seen_at": "last_seen_at",
    "lastSeenAt": "last_seen_at",
}

SUBSCRIBED_DAYS_AGO = "subscribed_days_ago"
MAP_PREFIXES = ("tags.", "metadata.")

_KNOWN_OPERATORS = frozenset(op.value for op in RuleOperator)


class _UnknownField(Exception):
    """Raised internally when a rule names a field subscribers do not have."""


def is_known_field(field: str) -> bool:
    return (
        field in DIRECT_FIELDS
        or field == SUBSCRIBED_DAYS_AGO
        or field.startswith(MAP_PREFIXES)
    )


def resolve_field(subscriber: Subscriber, field: str, now: datetime | None = None) -> Any:
    """
    Look up the value a rule field refers to.

    Returns:
        The value, None for explicit nulls, or MISSING for absent map keys

    Raises:
        _UnknownField: If the field is not part of the subscriber vocabulary
    """
    if field.startswith("tags."):
        return (subscriber.tags or {}).get(field[len("tags."):], MISSING)

    if field.startswith("metadata."):
        return (subscriber.metadata or {}).get(field[len("metadata."):], MISSING)

    if field == SUBSCRIBED_DAYS_AGO:
        subscribed_at = parse_timestamp(subscriber.subscribed_at)
        if subscribed_at is None:
            return None
        reference = parse_timestamp(now) or utc_now()
        return (reference - subscribed_at) // timedelta(days=1)

    attribute = DIRECT_FIELDS.get(field)
    if attribute is None:
        raise _UnknownField(field)
    return getattr(subscriber, attribute, None)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equals(left: Any, right: Any) -> bool:
    """Type-sensitive equality: no str/number or bool/number coercion."""
    if left is MISSING or right is MISSING:
        return False
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, str) or isinstance(right, str):
        return isinstance(left, str) and isinstance(right, str) and left == right
    if left is None or right is None:
        return left is right
    return type(left) is type(right) and left == right


def _to_number(value: Any) -> float:
    """Numeric view of a value; NaN when it has none."""
    if value is None or value is MISSING:
        return math.nan
    if isinstance(value, (bool, int, float)):
        try:
            return float(value)
        except OverflowError:
            return math.nan
    if isinstance(value, datetime):
        return parse_timestamp(value).timestamp()
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return math.nan
        try:
            return float(text)
        except ValueError:
            parsed = parse_timestamp(text)
            return parsed.timestamp() if parsed else math.nan
    return math.nan


def _compare(field_value: Any, value: Any, operator: str) -> bool:
    left = _to_number(field_value)
    right = _to_number(value)
    if math.isnan(left) or math.isnan(right):
        return False
    if operator == RuleOperator.GREATER_THAN.value:
        return left > right
    if operator == RuleOperator.LESS_THAN.value:
        return left < right
    if operator == RuleOperator.GREATER_THAN_OR_EQUAL.value:
        return left >= right
    return left <= right


def _string_op(field_value: Any, value: Any, operator: str) -> bool:
    if not isinstance(field_value, str) or not isinstance(value, str):
        return False
    if operator == RuleOperator.CONTAINS.value:
        return value in field_value
    if operator == RuleOperator.NOT_CONTAINS.value:
        return value not in field_value
    if operator == RuleOperator.STARTS_WITH.value:
        return field_value.startswith(value)
    return field_value.endswith(value)


def evaluate_condition(
    subscriber: Subscriber, condition: Condition, now: datetime | None = None
) -> bool:
    """Evaluate one leaf rule. Unknown fields and operators are non-matches."""
    operator = condition.operator
    if operator not in _KNOWN_OPERATORS:
        return False

    try:
        field_value = resolve_field(subscriber, condition.field, now)
    except _UnknownField:
        return False

    value = condition.value

    if operator == RuleOperator.EQUALS.value:
        return _strict_equals(field_value, value)
    if operator == RuleOperator.NOT_EQUALS.value:
        return not _strict_equals(field_value, value)
    if operator in (
        RuleOperator.CONTAINS.value,
        RuleOperator.NOT_CONTAINS.value,
        RuleOperator.STARTS_WITH.value,
        RuleOperator.ENDS_WITH.value,
    ):
        return _string_op(field_value, value, operator)
    if operator in (
        RuleOperator.GREATER_THAN.value,
        RuleOperator.LESS_THAN.value,
        RuleOperator.GREATER_THAN_OR_EQUAL.value,
        RuleOperator.LESS_THAN_OR_EQUAL.value,
    ):
        return _compare(field_value, value, operator)
    if operator == RuleOperator.IN.value:
        return isinstance(value, (list, tuple)) and any(
            _strict_equals(field_value, item) for item in value
        )
    if operator == RuleOperator.NOT_IN.value:
        return isinstance(value, (list, tuple)) and not any(
            _strict_equals(field_value, item) for item in value
        )
    if operator == RuleOperator.IS_NULL.value:
        return field_value is None or field_value is MISSING
    if operator == RuleOperator.IS_NOT_NULL.value:
        return field_value is not None and field_value is not MISSING
    if operator == RuleOperator.EXISTS.value:
        return field_value is not MISSING
    # not_exists
    return field_value is MISSING


def evaluate(
    subscriber: Subscriber,
    node: Condition | Group | None,
    now: datetime | None = None,
) -> bool:
    """
    Check whether a subscriber matches a rule tree.

    Args:
        subscriber: Subscriber record
        node: Root of the rule tree; None matches everyone
        now: Reference time for derived date fields (defaults to current UTC)

    Returns:
        True if the subscriber matches
    """
    if node is None:
        return True

    if isinstance(node, Condition):
        return evaluate_condition(subscriber, node, now)

    if node.operator == "AND":
        return all(evaluate(subscriber, child, now) for child in node.conditions)
    if node.operator == "OR":
        if not node.conditions:
            return True
        return any(evaluate(subscriber, child, now) for child in node.conditions)
    # NOT
    if len(node.conditions) != 1:
        return False
    return not evaluate(subscriber, node.conditions[0], now)


def filter_subscribers(
    subscribers: list[Subscriber],
    node: Condition | Group | None,
    now: datetime | None = None,
) -> list[Subscriber]:
    """Keep the subscribers that match ``node``, preserving order."""
    if node is None:
        return list(subscribers)
    reference = now or utc_now()
    return [s for s in subscribers if evaluate(s, node, reference)]


def find_rule_problems(node: Condition | Group | None) -> list[str]:
    """List unknown operators and fields in a tree (each evaluates to False)."""
    problems: list[str] = []
    if node is None:
        return problems

    if isinstance(node, Condition):
        if node.operator not in _KNOWN_OPERATORS:
            problems.append(f"Unknown operator '{node.operator}' on field '{node.field}'")
        if not is_known_field(node.field):
            problems.append(f"Unknown field '{node.field}'")
        return problems

    for child in node.conditions:
        problems.extend(find_rule_problems(child))
    return problems
