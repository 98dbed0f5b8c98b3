"""
Split a segment rule tree into a storage filter and an in-memory residual.

The storage filter is an optimization only: it narrows the rows fetched from
the subscribers table. The residual tree is evaluated per subscriber and, when
combined with the filter, selects exactly the subscribers the original tree
would have selected.
"""

from datetime import datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel, Field

from models.segment import Condition, Group, RuleOperator
from shared.utils import parse_timestamp, utc_now

# Indexed, simple-typed columns that support push-down, and the Python type
# their rule values must have for database equality to match strict equality.
PUSHDOWN_COLUMNS: dict[str, tuple[str, type]] = {
    "browser": ("browser", str),
    "os": ("os", str),
    "country": ("country", str),
    "isActive": ("is_active", bool),
    "is_active": ("is_active", bool),
}

SUBSCRIBED_DAYS_AGO = "subscribed_days_ago"


class FieldPredicate(BaseModel):
    """Exact-match or membership predicate on one subscribers column."""

    column: str
    op: Literal["eq", "in"]
    value: Any


class StorageFilter(BaseModel):
    """Conjunction of predicates the subscriber repository applies."""

    predicates: list[FieldPredicate] = Field(default_factory=list)
    # subscribed_at <= subscribed_before
    subscribed_before: datetime | None = None

    def is_empty(self) -> bool:
        return not self.predicates and self.subscribed_before is None

    def with_predicate(self, column: str, op: str, value: Any) -> "StorageFilter":
        """Copy of this filter with one more predicate prepended."""
        return StorageFilter(
            predicates=[FieldPredicate(column=column, op=op, value=value), *self.predicates],
            subscribed_before=self.subscribed_before,
        )


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _days_threshold(value: Any) -> int | None:
    """Whole-day threshold for subscribed_days_ago, if it can be pushed down."""
    if _is_int(value):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _pushdown_condition(
    condition: Condition, now: datetime, storage_filter: StorageFilter
) -> bool:
    """
    Add ``condition`` to ``storage_filter`` if it can be expressed there.

    Returns:
        True when the condition was pushed down (and can leave the residual)
    """
    if condition.field == SUBSCRIBED_DAYS_AGO:
        if condition.operator != RuleOperator.GREATER_THAN_OR_EQUAL.value:
            return False
        days = _days_threshold(condition.value)
        if days is None:
            return False
        # days_ago >= N  <=>  subscribed_at <= now - N days
        try:
            threshold = now - timedelta(days=days)
        except OverflowError:
            return False
        if storage_filter.subscribed_before is None or threshold < storage_filter.subscribed_before:
            storage_filter.subscribed_before = threshold
        return True

    column_info = PUSHDOWN_COLUMNS.get(condition.field)
    if column_info is None:
        return False
    column, value_type = column_info

    if condition.operator == RuleOperator.EQUALS.value:
        if type(condition.value) is not value_type:
            return False
        storage_filter.predicates.append(
            FieldPredicate(column=column, op="eq", value=condition.value)
        )
        return True

    if condition.operator == RuleOperator.IN.value:
        values = condition.value
        if not isinstance(values, list) or not all(type(v) is value_type for v in values):
            return False
        storage_filter.predicates.append(
            FieldPredicate(column=column, op="in", value=list(values))
        )
        return True

    return False


def split(
    node: Condition | Group | None, now: datetime | None = None
) -> tuple[StorageFilter, Condition | Group | None]:
    """
    Split a rule tree for two-stage resolution.

    Only a flat AND group (every child a Condition) is split. Children on
    indexed columns using equals/in, and subscribed_days_ago thresholds, move
    into the storage filter; the remaining children form the residual.
    Any other shape keeps the whole tree as residual with an empty filter.

    Args:
        node: Root of the rule tree (None means no rules)
        now: Reference time for subscribed_days_ago (defaults to current UTC)

    Returns:
        (storage_filter, residual) where residual is None when nothing is left
    """
    storage_filter = StorageFilter()

    if node is None:
        return storage_filter, None

    if not isinstance(node, Group) or node.operator != "AND":
        return storage_filter, node

    if any(not isinstance(child, Condition) for child in node.conditions):
        return storage_filter, node

    reference = parse_timestamp(now) or utc_now()
    residual_children: list[Condition | Group] = []
    for child in node.conditions:
        if not _pushdown_condition(child, reference, storage_filter):
            residual_children.append(child)

    if not residual_children:
        return storage_filter, None
    return storage_filter, Group(operator="AND", conditions=residual_children)
