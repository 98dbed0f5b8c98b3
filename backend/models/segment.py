"""Pydantic models for subscriber segments and their rule trees.

A rule tree is an explicit tagged union of Condition and Group nodes. Groups
are recognised by their ``conditions`` key, conditions by everything else.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    field_validator,
    model_validator,
)

from models.types import RuleTreeData, SegmentID, SiteID


class RuleOperator(str, Enum):
    """Operators a Condition may use. Anything else evaluates to False."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    IN = "in"
    NOT_IN = "not_in"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class Condition(BaseModel):
    """Leaf rule: compare one subscriber field against a value."""

    field: str = Field(..., min_length=1)
    # Kept as a plain string so a single unknown operator cannot reject a
    # whole segment; the evaluator treats it as a non-match.
    operator: str
    value: Any = None


class Group(BaseModel):
    """Boolean combination of child nodes. NOT takes exactly one child."""

    operator: Literal["AND", "OR", "NOT"] = "AND"
    conditions: list["RuleNode"] = Field(default_factory=list)

    @field_validator("operator", mode="before")
    @classmethod
    def _normalize_operator(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @model_validator(mode="after")
    def _check_not_arity(self) -> "Group":
        if self.operator == "NOT" and len(self.conditions) != 1:
            raise ValueError(
                f"NOT group requires exactly one condition, got {len(self.conditions)}"
            )
        return self


def _rule_node_kind(data: Any) -> str:
    if isinstance(data, Group):
        return "group"
    if isinstance(data, dict) and "conditions" in data:
        return "group"
    return "condition"


RuleNode = Annotated[
    Union[
        Annotated[Condition, Tag("condition")],
        Annotated[Group, Tag("group")],
    ],
    Discriminator(_rule_node_kind),
]

Group.model_rebuild()

_rule_node_adapter: TypeAdapter[Any] = TypeAdapter(RuleNode)

# Flat rule dicts saved by the original segment form
LEGACY_RULE_KEYS = frozenset({"browser", "os", "country", "subscribed_days_ago"})


def parse_rule_tree(data: Any) -> Condition | Group | None:
    """
    Build a rule tree from its stored JSON form.

    Args:
        data: Rule tree dict, an already-parsed node, None, or a legacy flat
              dict such as {"browser": "Chrome", "subscribed_days_ago": "7"}

    Returns:
        Parsed root node, or None when there are no rules at all

    Raises:
        ValueError: If the data is not a well-formed rule tree
    """
    if data is None:
        return None
    if isinstance(data, (Condition, Group)):
        return data
    if not isinstance(data, dict):
        raise ValueError(f"Rule tree must be an object, got {type(data).__name__}")
    if not data:
        return None

    if "conditions" in data or "field" in data:
        return _rule_node_adapter.validate_python(data)

    if set(data) <= LEGACY_RULE_KEYS:
        return _from_legacy_rules(data)

    raise ValueError(f"Unrecognized rule tree keys: {sorted(data)}")


def _from_legacy_rules(rules: dict[str, Any]) -> Group:
    """Convert a flat legacy rule dict into an AND group."""
    conditions: list[Condition | Group] = []

    for key in ("browser", "os", "country"):
        value = rules.get(key)
        if value:
            conditions.append(Condition(field=key, operator="equals", value=value))

    days_ago = rules.get("subscribed_days_ago")
    if days_ago not in (None, ""):
        try:
            days = int(days_ago)
        except (TypeError, ValueError):
            days = None
        if days is not None:
            conditions.append(
                Condition(
                    field="subscribed_days_ago",
                    operator="greater_than_or_equal",
                    value=days,
                )
            )

    return Group(operator="AND", conditions=conditions)


def is_universal(node: Condition | Group | None) -> bool:
    """True when the tree matches every subscriber (no rules, or an empty AND/OR)."""
    if node is None:
        return True
    return (
        isinstance(node, Group)
        and node.operator in ("AND", "OR")
        and not node.conditions
    )


def rule_tree_to_data(node: Condition | Group | None) -> RuleTreeData | None:
    """Serialize a rule tree back to its JSON form."""
    if node is None:
        return None
    return node.model_dump(mode="json")


class Segment(BaseModel):
    """Named, reusable subscriber-targeting rule tree."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: SegmentID
    site_id: SiteID
    name: str = Field(..., min_length=1)
    rules: RuleTreeData | None = None
    # Advisory only (UI display); never used to decide who receives a send
    estimated_count: int = Field(0, ge=0)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("rules")
    @classmethod
    def _rules_well_formed(cls, value: RuleTreeData | None) -> RuleTreeData | None:
        parse_rule_tree(value)
        return value

    def rule_tree(self) -> Condition | Group | None:
        return parse_rule_tree(self.rules)
