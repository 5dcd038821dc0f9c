# src/neoquery/core/clauses.py
"""
Clause models accumulated by the query builder.

Each clause is a small frozen pydantic model carrying a ``kind`` tag. The
grammar dispatches on that tag, so a clause of an unknown shape can never be
compiled silently.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


Boolean = Literal["and", "or"]
Direction = Literal["out", "in", "any"]

DIRECTION_ALIASES = {
    "out": "out",
    "outgoing": "out",
    "in": "in",
    "incoming": "in",
    "any": "any",
    "both": "any",
    "in-out": "any",
    "either": "any",
}


class Clause(BaseModel):
    """Base for every clause model."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


# =============================================================================
# COLUMNS
# =============================================================================

class ColumnRef(Clause):
    """
    A reference to a node property or to a node's intrinsic identity.

    ``identity=True`` renders as ``id(alias)``; otherwise the property is
    rendered as ``alias.name`` (or bare ``name`` when no alias is known).
    """

    name: str = Field(..., min_length=1)
    alias: Optional[str] = None
    identity: bool = False

    @property
    def qualified(self) -> str:
        if self.identity:
            return f"id({self.alias})"
        return f"{self.alias}.{self.name}" if self.alias else self.name


def prop(name: str, alias: Optional[str] = None) -> ColumnRef:
    """
    Reference a stored property by name, bypassing identity detection.

    ``where(prop("id"), 5)`` targets a property literally called ``id``
    instead of the node identity.
    """
    return ColumnRef(name=name, alias=alias)


# =============================================================================
# PREDICATES
# =============================================================================

class Predicate(Clause):
    boolean: Boolean = "and"

    @field_validator("boolean", mode="before")
    @classmethod
    def lower_boolean(cls, v):
        return v.lower() if isinstance(v, str) else v


class BasicPredicate(Predicate):
    kind: Literal["basic"] = "basic"
    column: ColumnRef
    operator: str
    binding: str


class InPredicate(Predicate):
    kind: Literal["in"] = "in"
    column: ColumnRef
    binding: str
    negated: bool = False


class BetweenPredicate(Predicate):
    kind: Literal["between"] = "between"
    column: ColumnRef
    binding: str
    negated: bool = False


class NullPredicate(Predicate):
    kind: Literal["null"] = "null"
    column: ColumnRef
    negated: bool = False


class CarriedPredicate(Predicate):
    """Compares identifiers carried over from earlier clauses; nothing is bound."""

    kind: Literal["carried"] = "carried"
    column: str
    operator: str
    value: str


class NestedPredicate(Predicate):
    kind: Literal["nested"] = "nested"
    wheres: List[Any] = Field(default_factory=list)


class SubQueryPredicate(Predicate):
    kind: Literal["sub"] = "sub"
    column: ColumnRef
    operator: str
    query: Any


class InSubQueryPredicate(Predicate):
    kind: Literal["in_sub"] = "in_sub"
    column: ColumnRef
    query: Any
    negated: bool = False


class ExistsPredicate(Predicate):
    kind: Literal["exists"] = "exists"
    query: Any
    negated: bool = False


# =============================================================================
# MATCHES
# =============================================================================

class NodePattern(Clause):
    alias: str = Field(..., min_length=1)
    labels: Tuple[str, ...] = ()


class _Match(Clause):
    parent: NodePattern
    direction: Direction = "out"
    optional: bool = False
    property: Optional[str] = None
    binding: Optional[str] = None

    @field_validator("direction", mode="before")
    @classmethod
    def normalize_direction(cls, v):
        if isinstance(v, str) and v.lower() in DIRECTION_ALIASES:
            return DIRECTION_ALIASES[v.lower()]
        return v


class RelationMatch(_Match):
    """A relationship pattern whose related labels are known when the query is built."""

    kind: Literal["relation"] = "relation"
    related: NodePattern
    relationship: str = Field(..., min_length=1)


class MorphMatch(_Match):
    """
    A relationship pattern whose related node type is unknown up front.

    The related node is matched without labels; its type is read back from
    the labels stored on the returned node.
    """

    kind: Literal["morph"] = "morph"
    related_alias: str = Field(..., min_length=1)
    relationship: Optional[str] = None


# =============================================================================
# PROJECTION
# =============================================================================

class Aggregate(Clause):
    function: str
    columns: Tuple[Any, ...] = ("*",)
    alias: str = "aggregate"
    percentile_binding: Optional[str] = None


class Order(Clause):
    # Raw column names are resolved at compile time so they can refer to
    # placeholders or projected names introduced after the ordering call.
    column: Any
    direction: Literal["ASC", "DESC"] = "ASC"

    @field_validator("direction", mode="before")
    @classmethod
    def upper_direction(cls, v):
        return v.upper() if isinstance(v, str) else v


class Having(Clause):
    column: str
    operator: str
    binding: str
    boolean: Boolean = "and"


class Union(Clause):
    query: Any
    all: bool = False


# =============================================================================
# WRITES
# =============================================================================

class RelatedNodes(BaseModel):
    """
    Related records handed to ``Builder.create_with``.

    ``values`` describes nodes to create, ``ids`` existing nodes to attach.
    """

    labels: List[str] = Field(..., min_length=1)
    relationship: str = Field(..., min_length=1)
    direction: Direction = "out"
    values: List[Dict[str, Any]] = Field(default_factory=list)
    ids: List[int] = Field(default_factory=list)

    @field_validator("labels", mode="before")
    @classmethod
    def coerce_labels(cls, v):
        return [v] if isinstance(v, str) else v

    @field_validator("values", mode="before")
    @classmethod
    def coerce_values(cls, v):
        return [v] if isinstance(v, dict) else v

    @field_validator("ids", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return [v] if isinstance(v, (int, str)) else v

    @field_validator("direction", mode="before")
    @classmethod
    def normalize_direction(cls, v):
        if isinstance(v, str) and v.lower() in DIRECTION_ALIASES:
            return DIRECTION_ALIASES[v.lower()]
        return v


class RelatedCreate(Clause):
    """Compiled form of one ``create_with`` relation: bound property maps per new node."""

    name: str
    alias: str
    labels: Tuple[str, ...]
    relationship: str
    direction: Direction = "out"
    creates: Tuple[Dict[str, str], ...] = ()
    attach_binding: Optional[str] = None
