# src/neoquery/query/builder.py
"""
Fluent query builder.

The builder accumulates clauses and parameter bindings; the grammar turns
them into Cypher and the connection runs the result. Builder methods return
the builder itself so calls chain, and the async terminal methods (``get``,
``first``, ``count``, ``insert`` ...) compile and execute.

Example:
    ```python
    users = await (
        connection.table("User")
        .where("age", ">", 18)
        .or_where("role", "admin")
        .order_by("name")
        .take(10)
        .get()
    )
    ```
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from neoquery.core.bindings import BINDING_BUCKETS, BindingTable
from neoquery.core.clauses import (
    Aggregate,
    BasicPredicate,
    BetweenPredicate,
    CarriedPredicate,
    ColumnRef,
    ExistsPredicate,
    Having,
    InPredicate,
    InSubQueryPredicate,
    MorphMatch,
    NestedPredicate,
    NodePattern,
    NullPredicate,
    Order,
    RelatedCreate,
    RelatedNodes,
    RelationMatch,
    SubQueryPredicate,
    Union as UnionClause,
)
from neoquery.exceptions import QueryBuilderError
from neoquery.orm.results import entity_identity, hydrate, rows_to_records, to_record
from neoquery.query.grammar import CypherGrammar


OPERATORS: Tuple[str, ...] = (
    "+", "-", "*", "/", "%", "^",
    "=", "<>", "!=", "<", ">", "<=", ">=",
    "is null", "is not null",
    "and", "or", "xor", "not",
    "in", "[x]", "[x .. y]",
    "=~", "starts with", "ends with", "contains",
)

_IDENTITY_CALL = re.compile(r"^id\(\s*([A-Za-z_][A-Za-z0-9_]*)\s*\)$")


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


_MISSING: Any = _Missing()

LabelsLike = Union[str, Sequence[str], type]
Deferred = Union["Builder", Callable[["Builder"], Any]]


def _renamed(clause: Any, bindings: BindingTable, renames: Mapping[str, str]) -> Any:
    """Copy of a clause pointing at renamed bindings, nested groups and sub-queries included."""
    update: Dict[str, Any] = {}
    for field in ("binding", "percentile_binding"):
        name = getattr(clause, field, None)
        if name in renames:
            update[field] = renames[name]

    if isinstance(clause, NestedPredicate):
        update["wheres"] = [_renamed(where, bindings, renames) for where in clause.wheres]
    query = getattr(clause, "query", None)
    if isinstance(query, Builder):
        update["query"] = query._rebound(bindings, renames)

    return clause.model_copy(update=update) if update else clause


class Page(BaseModel):
    """One page of results returned by ``Builder.paginate``."""

    items: List[Any] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    per_page: int = Field(..., ge=1)
    current_page: int = Field(..., ge=1)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def last_page(self) -> int:
        return max(1, math.ceil(self.total / self.per_page))

    @property
    def has_more_pages(self) -> bool:
        return self.current_page < self.last_page


class Builder:
    """
    Accumulates a Cypher query and runs it through a connection.

    A builder without a connection can still compile (``to_statement``) and
    is handy for inspecting generated Cypher; the async terminal methods
    require a connection.
    """

    operators = OPERATORS

    def __init__(self, connection=None, grammar: Optional[CypherGrammar] = None, bindings: Optional[BindingTable] = None):
        self.connection = connection
        if grammar is None:
            grammar = connection.get_query_grammar() if connection is not None else CypherGrammar()
        self.grammar = grammar
        self.bindings = bindings if bindings is not None else BindingTable()

        self.labels: Tuple[str, ...] = ()
        self.entity: Optional[type] = None
        self.matches: List[Union[RelationMatch, MorphMatch]] = []
        self.wheres: List[Any] = []
        self.withs: List[str] = []
        self.columns: Optional[List[Any]] = None
        self.groups: List[Any] = []
        self.havings: List[Having] = []
        self.orders: List[Order] = []
        self.unions: List[UnionClause] = []
        self.limit_value: Optional[int] = None
        self.offset_value: Optional[int] = None
        self.is_distinct: bool = False
        self.aggregate_clause: Optional[Aggregate] = None

    def __repr__(self) -> str:
        return f"Builder({self.to_statement() if self.labels or self.matches else '<empty>'})"

    # =============================================================================
    # TARGET
    # =============================================================================

    def from_(self, labels: LabelsLike) -> Builder:
        """
        Set the labels of the primary node.

        Accepts a label, a sequence of labels, or a GraphEntity class, in which
        case fetched nodes are hydrated into that class.
        """
        if isinstance(labels, type) and hasattr(labels, "get_labels"):
            self.entity = labels
        self.labels = self._normalize_labels(labels)
        return self

    def _normalize_labels(self, labels: Any) -> Tuple[str, ...]:
        if isinstance(labels, type) and hasattr(labels, "get_labels"):
            labels = labels.get_labels()
        normalized = self.grammar.normalize_labels(labels)
        if not normalized:
            raise QueryBuilderError("At least one label is required.")
        return normalized

    @property
    def alias(self) -> Optional[str]:
        """Placeholder of the primary node, e.g. ``user`` for ``User``."""
        return self.grammar.model_as_node(self.labels) if self.labels else None

    def model_as_node(self, labels: Optional[LabelsLike] = None) -> str:
        if labels is None:
            if not self.labels:
                raise QueryBuilderError("No labels set; call from_() first.")
            return self.grammar.model_as_node(self.labels)
        return self.grammar.model_as_node(self._normalize_labels(labels))

    def known_aliases(self) -> List[str]:
        """Every node placeholder this query introduces, primary first."""
        aliases: List[str] = []
        if self.labels:
            aliases.append(self.alias)
        for match in self.matches:
            related = match.related.alias if match.kind == "relation" else match.related_alias
            for alias in (match.parent.alias, related):
                if alias not in aliases:
                    aliases.append(alias)
        return aliases

    # =============================================================================
    # COLUMN RESOLUTION
    # =============================================================================

    def resolve_column(self, column: Union[str, ColumnRef]) -> ColumnRef:
        """
        Turn a user supplied column into a reference.

        ``id``, ``Label.id`` and ``id(alias)`` all address the intrinsic
        identity; ``alias.prop`` addresses a property of a specific node;
        anything else is a property of the primary node.
        """
        if isinstance(column, ColumnRef):
            if column.alias is None and self.alias is not None:
                return column.model_copy(update={"alias": self.alias})
            return column

        column = column.strip()
        found = _IDENTITY_CALL.match(column)
        if found:
            return ColumnRef(name="id", alias=found.group(1), identity=True)

        if "." in column:
            owner, name = column.split(".", 1)
            alias = self._resolve_alias(owner)
            return ColumnRef(name=name, alias=alias, identity=name == "id")

        if column == "id":
            if self.alias is None:
                raise QueryBuilderError("Cannot resolve the node identity without labels; call from_() first.")
            return ColumnRef(name="id", alias=self.alias, identity=True)

        return ColumnRef(name=column, alias=self.alias)

    def _resolve_alias(self, owner: str) -> str:
        if owner in self.known_aliases():
            return owner
        return self.grammar.model_as_node(owner)

    def _binding_base(self, ref: ColumnRef) -> str:
        if ref.identity:
            return self.grammar.get_id_replacement(ref.qualified)
        return self._sanitize_binding_name(ref.name)

    @staticmethod
    def _sanitize_binding_name(name: str) -> str:
        name = re.sub(r"\W+", "_", name).strip("_") or "param"
        # Numeric-looking names cannot be used as parameters.
        return f"param_{name}" if name[0].isdigit() else name

    @staticmethod
    def _to_identity(value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise QueryBuilderError(f"Node identity must be an integer, got {value!r}.") from e

    def _bind(self, ref: ColumnRef, value: Any, bucket: str = "where") -> str:
        if ref.identity:
            value = self._to_identity(value)
        return self.bindings.bind(self._binding_base(ref), value, bucket)

    # =============================================================================
    # WHERE
    # =============================================================================

    def _is_operator(self, operator: Any) -> bool:
        return isinstance(operator, str) and operator.lower() in self.operators

    def _invalid_operator_and_value(self, operator: Any, value: Any) -> bool:
        return value is None and self._is_operator(operator) and operator not in ("=", "<>", "!=")

    @staticmethod
    def _normalize_operator(operator: str) -> str:
        operator = operator.lower()
        if operator == "!=":
            return "<>"
        return operator.upper() if operator[0].isalpha() else operator

    @staticmethod
    def _is_deferred(value: Any) -> bool:
        return isinstance(value, Builder) or (callable(value) and not isinstance(value, type))

    def where(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING, boolean: str = "and") -> Builder:
        """
        Add a basic predicate.

        ``where("age", 18)`` is shorthand for ``where("age", "=", 18)``; a
        mapping adds one equality per key inside a nested group; a callable
        column opens a nested group; a callable value compares against a
        sub-select; a ``None`` value becomes a null check.

        Raises:
            QueryBuilderError: If no value is given, or ``None`` is compared
                with an operator other than ``=`` / ``<>``
        """
        if isinstance(operator, str) and operator.lower() == "in" and value is not _MISSING:
            return self.where_in(column, value, boolean)

        if isinstance(column, Mapping):
            pairs = dict(column)

            def add_pairs(query: Builder) -> None:
                for key, item in pairs.items():
                    query.where(key, "=", item)

            return self.where_nested(add_pairs, boolean)

        if self._is_deferred(column) and not isinstance(column, Builder):
            return self.where_nested(column, boolean)

        if value is _MISSING:
            if operator is _MISSING:
                raise QueryBuilderError("Value must be provided.")
            value, operator = operator, "="
        elif self._invalid_operator_and_value(operator, value):
            raise QueryBuilderError("Illegal operator and value combination.")

        if not self._is_operator(operator):
            value, operator = operator, "="

        if self._is_deferred(value):
            return self.where_sub(column, operator, value, boolean)

        if value is None:
            return self.where_null(column, boolean, not_=operator != "=")

        ref = self.resolve_column(column)
        binding = self._bind(ref, value)
        self.wheres.append(
            BasicPredicate(column=ref, operator=self._normalize_operator(operator), binding=binding, boolean=boolean)
        )
        return self

    def or_where(self, column: Any, operator: Any = _MISSING, value: Any = _MISSING) -> Builder:
        return self.where(column, operator, value, "or")

    def where_nested(self, callback: Callable[[Builder], Any], boolean: str = "and") -> Builder:
        """Group predicates added by ``callback`` in parentheses."""
        query = self.for_nested_where()
        callback(query)
        if query.wheres:
            self.wheres.append(NestedPredicate(wheres=query.wheres, boolean=boolean))
        return self

    def where_sub(self, column: Any, operator: str, callback: Deferred, boolean: str = "and") -> Builder:
        """Compare a column with the single value returned by a sub-select."""
        query = self._sub_query(callback)
        self.wheres.append(
            SubQueryPredicate(
                column=self.resolve_column(column),
                operator=self._normalize_operator(operator),
                query=query,
                boolean=boolean,
            )
        )
        return self

    def where_in(self, column: Any, values: Any, boolean: str = "and", not_: bool = False) -> Builder:
        if self._is_deferred(values):
            return self.where_in_sub(column, values, boolean, not_)

        if hasattr(values, "to_list"):
            values = values.to_list()
        if isinstance(values, (str, bytes, Mapping)) or not isinstance(values, Iterable):
            raise QueryBuilderError(f"where_in() expects a list of values, got {type(values).__name__}.")

        ref = self.resolve_column(column)
        values = list(values)
        if ref.identity:
            values = [self._to_identity(value) for value in values]
        binding = self.bindings.bind(self._binding_base(ref), values)
        self.wheres.append(InPredicate(column=ref, binding=binding, negated=not_, boolean=boolean))
        return self

    def or_where_in(self, column: Any, values: Any) -> Builder:
        return self.where_in(column, values, "or")

    def where_not_in(self, column: Any, values: Any, boolean: str = "and") -> Builder:
        return self.where_in(column, values, boolean, True)

    def or_where_not_in(self, column: Any, values: Any) -> Builder:
        return self.where_not_in(column, values, "or")

    def where_in_sub(self, column: Any, callback: Deferred, boolean: str = "and", not_: bool = False) -> Builder:
        query = self._sub_query(callback)
        self.wheres.append(
            InSubQueryPredicate(column=self.resolve_column(column), query=query, negated=not_, boolean=boolean)
        )
        return self

    def where_between(self, column: Any, values: Sequence[Any], boolean: str = "and", not_: bool = False) -> Builder:
        """Inclusive range check; ``values`` must hold exactly a lower and an upper bound."""
        values = list(values)
        if len(values) != 2:
            raise QueryBuilderError("where_between() expects exactly two values.")

        ref = self.resolve_column(column)
        if ref.identity:
            values = [self._to_identity(value) for value in values]
        binding = self.bindings.bind(self._binding_base(ref), values)
        self.wheres.append(BetweenPredicate(column=ref, binding=binding, negated=not_, boolean=boolean))
        return self

    def or_where_between(self, column: Any, values: Sequence[Any]) -> Builder:
        return self.where_between(column, values, "or")

    def where_not_between(self, column: Any, values: Sequence[Any], boolean: str = "and") -> Builder:
        return self.where_between(column, values, boolean, True)

    def or_where_not_between(self, column: Any, values: Sequence[Any]) -> Builder:
        return self.where_not_between(column, values, "or")

    def where_null(self, column: Any, boolean: str = "and", not_: bool = False) -> Builder:
        self.wheres.append(NullPredicate(column=self.resolve_column(column), negated=not_, boolean=boolean))
        return self

    def or_where_null(self, column: Any) -> Builder:
        return self.where_null(column, "or")

    def where_not_null(self, column: Any, boolean: str = "and") -> Builder:
        return self.where_null(column, boolean, True)

    def or_where_not_null(self, column: Any) -> Builder:
        return self.where_not_null(column, "or")

    def where_carried(self, column: str, operator: str, value: str, boolean: str = "and") -> Builder:
        """
        Compare identifiers carried over from an earlier clause.

        Both sides are emitted verbatim and nothing is bound, e.g.
        ``where_carried("post.author", "=", "user.name")``.
        """
        self.wheres.append(CarriedPredicate(column=column, operator=operator, value=value, boolean=boolean))
        return self

    def or_where_carried(self, column: str, operator: str, value: str) -> Builder:
        return self.where_carried(column, operator, value, "or")

    def where_exists(self, callback: Deferred, boolean: str = "and", not_: bool = False) -> Builder:
        query = self._sub_query(callback)
        self.wheres.append(ExistsPredicate(query=query, negated=not_, boolean=boolean))
        return self

    def or_where_exists(self, callback: Deferred) -> Builder:
        return self.where_exists(callback, "or")

    def where_not_exists(self, callback: Deferred, boolean: str = "and") -> Builder:
        return self.where_exists(callback, boolean, True)

    def _sub_query(self, callback: Deferred) -> Builder:
        if isinstance(callback, Builder):
            return self._adopt(callback)
        query = self.for_sub_query()
        callback(query)
        return query

    def _adopt(self, query: Builder) -> Builder:
        """
        Take in a separately built query.

        Its bindings move into this builder's table, suffixed where a name is
        already taken here, and a copy of the query is rewritten to use them.
        The given builder is left untouched.
        """
        if query.bindings is self.bindings:
            return query
        renames = self.bindings.absorb(query.bindings)
        return query._rebound(self.bindings, renames)

    def _rebound(self, bindings: BindingTable, renames: Mapping[str, str]) -> Builder:
        query = self.clone()
        query.bindings = bindings
        query.matches = [_renamed(match, bindings, renames) for match in self.matches]
        query.wheres = [_renamed(where, bindings, renames) for where in self.wheres]
        query.havings = [_renamed(having, bindings, renames) for having in self.havings]
        query.unions = [_renamed(union, bindings, renames) for union in self.unions]
        if self.aggregate_clause is not None:
            query.aggregate_clause = _renamed(self.aggregate_clause, bindings, renames)
        return query

    # =============================================================================
    # RELATIONSHIP MATCHES
    # =============================================================================

    def _match_binding(self, parent_alias: str, property: Optional[str], value: Any) -> Optional[str]:
        if property is None or value is None:
            return None
        if property == "id":
            base = self.grammar.get_id_replacement(f"id({parent_alias})")
            return self.bindings.bind(base, self._to_identity(value), "matches")
        return self.bindings.bind(self._sanitize_binding_name(property), value, "matches")

    def match_relation(
        self,
        parent: LabelsLike,
        related: LabelsLike,
        related_alias: str,
        relationship: str,
        property: Optional[str] = None,
        value: Any = None,
        direction: str = "out",
        boolean: str = "and",
    ) -> Builder:
        """
        Match a relationship between the parent node and a related node.

        ``boolean="or"`` makes the match optional (OPTIONAL MATCH). When
        ``property`` and ``value`` are given, the parent is constrained on them
        (``id`` targets the identity).

        Example:
            ```python
            query.match_relation("User", "Post", "post", "POSTED", "id", 10)
            # MATCH (user:User)-[rel_posted_post:POSTED]->(post:Post) WHERE id(user) = $iduser
            ```
        """
        parent_labels = self._normalize_labels(parent)
        parent_alias = self.grammar.model_as_node(parent_labels)
        self.matches.append(
            RelationMatch(
                parent=NodePattern(alias=parent_alias, labels=parent_labels),
                related=NodePattern(alias=related_alias, labels=self._normalize_labels(related)),
                relationship=relationship,
                direction=direction,
                optional=boolean.lower() == "or",
                property=property,
                binding=self._match_binding(parent_alias, property, value),
            )
        )
        return self

    def match_morph_relation(
        self,
        parent: LabelsLike,
        related_alias: str,
        property: Optional[str] = None,
        value: Any = None,
        direction: str = "out",
        boolean: str = "and",
        relationship: Optional[str] = None,
    ) -> Builder:
        """
        Match a relationship whose related node type is unknown.

        The related node carries no labels in the pattern; returned nodes are
        hydrated according to the labels they actually have.
        """
        parent_labels = self._normalize_labels(parent)
        parent_alias = self.grammar.model_as_node(parent_labels)
        self.matches.append(
            MorphMatch(
                parent=NodePattern(alias=parent_alias, labels=parent_labels),
                related_alias=related_alias,
                relationship=relationship,
                direction=direction,
                optional=boolean.lower() == "or",
                property=property,
                binding=self._match_binding(parent_alias, property, value),
            )
        )
        return self

    # =============================================================================
    # PROJECTION
    # =============================================================================

    @staticmethod
    def _flatten_columns(columns: Sequence[Any]) -> List[Any]:
        flat: List[Any] = []
        for column in columns:
            if isinstance(column, (list, tuple)):
                flat.extend(column)
            else:
                flat.append(column)
        return flat

    def select(self, *columns: Any) -> Builder:
        self.columns = self._flatten_columns(columns) or ["*"]
        return self

    def add_select(self, *columns: Any) -> Builder:
        current = [] if self.columns in (None, ["*"]) else self.columns
        self.columns = current + self._flatten_columns(columns)
        return self

    def distinct(self) -> Builder:
        self.is_distinct = True
        return self

    def with_(self, *parts: str, **aliased: str) -> Builder:
        """
        Add a WITH stage.

        Positional parts are emitted verbatim; keyword parts render as
        ``expression AS name``.
        """
        for part in list(parts) + [f"{expression} AS {name}" for name, expression in aliased.items()]:
            if part not in self.withs:
                self.withs.append(part)
        return self

    def group_by(self, *columns: Any) -> Builder:
        self.groups.extend(self._flatten_columns(columns))
        return self

    def having(self, column: str, operator: Any = _MISSING, value: Any = _MISSING, boolean: str = "and") -> Builder:
        """Filter on grouped or aggregated values (``having("aggregate", ">", 3)``)."""
        if value is _MISSING:
            if operator is _MISSING:
                raise QueryBuilderError("Value must be provided.")
            value, operator = operator, "="
        elif self._invalid_operator_and_value(operator, value):
            raise QueryBuilderError("Illegal operator and value combination.")

        binding = self.bindings.bind(self._sanitize_binding_name(column), value, "having")
        self.havings.append(
            Having(column=column, operator=self._normalize_operator(operator), binding=binding, boolean=boolean)
        )
        return self

    def or_having(self, column: str, operator: Any = _MISSING, value: Any = _MISSING) -> Builder:
        return self.having(column, operator, value, "or")

    def order_by(self, column: Any, direction: str = "asc") -> Builder:
        if not isinstance(direction, str) or direction.lower() not in ("asc", "desc"):
            raise QueryBuilderError(f"Order direction must be 'asc' or 'desc', got {direction!r}.")
        self.orders.append(Order(column=column, direction=direction))
        return self

    def order_by_desc(self, column: Any) -> Builder:
        return self.order_by(column, "desc")

    def latest(self, column: str = "created_at") -> Builder:
        return self.order_by(column, "desc")

    def oldest(self, column: str = "created_at") -> Builder:
        return self.order_by(column, "asc")

    def limit(self, value: Optional[int]) -> Builder:
        if value is not None and int(value) < 0:
            raise QueryBuilderError("Limit cannot be negative.")
        self.limit_value = None if value is None else int(value)
        return self

    def take(self, value: Optional[int]) -> Builder:
        return self.limit(value)

    def offset(self, value: Optional[int]) -> Builder:
        if value is not None and int(value) < 0:
            raise QueryBuilderError("Offset cannot be negative.")
        self.offset_value = None if value is None else int(value)
        return self

    def skip(self, value: Optional[int]) -> Builder:
        return self.offset(value)

    def for_page(self, page: int, per_page: int = 15) -> Builder:
        if page < 1 or per_page < 1:
            raise QueryBuilderError("Page and page size must be positive.")
        return self.skip((page - 1) * per_page).take(per_page)

    def union(self, query: Deferred, all: bool = False) -> Builder:
        self.unions.append(UnionClause(query=self._sub_query(query), all=all))
        return self

    def union_all(self, query: Deferred) -> Builder:
        return self.union(query, True)

    # =============================================================================
    # BINDINGS
    # =============================================================================

    def get_bindings(self) -> Dict[str, Any]:
        """The flattened parameter set for execution."""
        return self.bindings.flatten()

    def get_raw_bindings(self) -> Dict[str, Dict[str, Any]]:
        return {bucket: self.bindings.bucket(bucket) for bucket in BINDING_BUCKETS}

    def add_binding(self, value: Mapping[str, Any], bucket: str = "where") -> Builder:
        """
        Add named values to a bucket.

        Keys qualified with a node alias (``user.name``) are stored under the
        bare property name.
        """
        if not isinstance(value, Mapping):
            raise QueryBuilderError("Bindings must be given as a mapping of names to values.")
        for key, item in value.items():
            name = key.split(".", 1)[1] if "." in key else key
            self.bindings.add(name, item, bucket)
        return self

    # =============================================================================
    # BUILDER FACTORIES
    # =============================================================================

    def new_query(self) -> Builder:
        """A fresh builder on the same connection, with its own bindings."""
        return Builder(self.connection, self.grammar)

    def for_sub_query(self) -> Builder:
        """A fresh builder sharing this one's bindings, for sub-selects."""
        return Builder(self.connection, self.grammar, bindings=self.bindings)

    def for_nested_where(self) -> Builder:
        """A builder for a parenthesized group: same target, same bindings."""
        query = self.for_sub_query()
        query.labels = self.labels
        query.matches = list(self.matches)
        return query

    def clone(self) -> Builder:
        """Copy clause lists and bindings so the copy can diverge freely."""
        query = Builder(self.connection, self.grammar, bindings=self.bindings.copy())
        query.labels = self.labels
        query.entity = self.entity
        query.matches = list(self.matches)
        query.wheres = list(self.wheres)
        query.withs = list(self.withs)
        query.columns = None if self.columns is None else list(self.columns)
        query.groups = list(self.groups)
        query.havings = list(self.havings)
        query.orders = list(self.orders)
        query.unions = list(self.unions)
        query.limit_value = self.limit_value
        query.offset_value = self.offset_value
        query.is_distinct = self.is_distinct
        query.aggregate_clause = self.aggregate_clause
        return query

    # =============================================================================
    # COMPILATION
    # =============================================================================

    def to_statement(self) -> str:
        """Compile the select this builder describes."""
        return self.grammar.compile_select(self)

    def to_cypher(self) -> str:
        return self.to_statement()

    # =============================================================================
    # READS
    # =============================================================================

    def _require_connection(self):
        if self.connection is None:
            raise QueryBuilderError("This builder has no connection to run queries on.")
        return self.connection

    async def _run_select(self) -> List[Dict[str, Any]]:
        connection = self._require_connection()
        return await connection.select(self.to_statement(), self.get_bindings())

    async def get(self, columns: Sequence[Any] = ("*",)) -> List[Any]:
        """
        Run the query and reconstitute the rows.

        Single-node rows come back as records (entities when the builder was
        created from a GraphEntity class); multi-column rows come back as
        dicts keyed by placeholder or property name.
        """
        original = self.columns
        if self.columns is None:
            self.columns = list(columns)
        try:
            rows = await self._run_select()
        finally:
            self.columns = original

        return rows_to_records(rows, alias=self.alias, entity=self.entity)

    async def first(self, columns: Sequence[Any] = ("*",)) -> Optional[Any]:
        results = await self.take(1).get(columns)
        return results[0] if results else None

    async def find(self, id: Any, columns: Sequence[Any] = ("*",)) -> Optional[Any]:
        return await self.where("id", "=", id).first(columns)

    async def value(self, column: str) -> Any:
        """The given column of the first row."""
        result = await self.first([column])
        if result is None:
            return None
        if isinstance(result, Mapping):
            return next(iter(result.values()), None)
        return result

    async def pluck(self, column: str) -> List[Any]:
        results = await self.get([column])
        return [next(iter(row.values()), None) if isinstance(row, Mapping) else row for row in results]

    async def exists(self) -> bool:
        return await self.count() > 0

    async def doesnt_exist(self) -> bool:
        return not await self.exists()

    # =============================================================================
    # AGGREGATES
    # =============================================================================

    async def aggregate(self, function: str, columns: Sequence[Any] = ("*",), percentile: Optional[float] = None) -> Any:
        """
        Run an aggregate over the query.

        Returns a scalar, or one ``{group..., "aggregate": value}`` dict per
        group when the query is grouped.
        """
        snapshot = {"select": self.bindings.bucket("select")}

        percentile_binding = None
        if percentile is not None:
            percentile_binding = self.bindings.bind("percentile", float(percentile), "select")

        self.aggregate_clause = Aggregate(
            function=function,
            columns=self.aggregate_columns(columns),
            percentile_binding=percentile_binding,
        )
        try:
            rows = await self._run_select()
        finally:
            self.aggregate_clause = None
            self.bindings.restore(snapshot)

        if self.groups:
            return rows_to_records(rows, alias=self.alias)
        if not rows:
            return None

        # Node aggregates over the primary node, like collect(*), come back as records.
        entity = self.entity if set(self.aggregate_columns(columns)) <= {"*", self.alias} else None
        value = to_record(rows[0].get("aggregate"))
        if isinstance(value, list):
            return [hydrate(item, entity) for item in value]
        return hydrate(value, entity)

    def aggregate_columns(self, columns: Sequence[Any]) -> Tuple[Any, ...]:
        return tuple(self._flatten_columns(columns)) or ("*",)

    async def count(self, columns: Sequence[Any] = ("*",)) -> Union[int, List[Any]]:
        """The number of matches, or one row per group when the query is grouped."""
        result = await self.aggregate("count", columns)
        return result if self.groups else int(result or 0)

    async def count_distinct(self, columns: Sequence[Any] = ("*",)) -> Union[int, List[Any]]:
        result = await self.aggregate("count_distinct", columns)
        return result if self.groups else int(result or 0)

    async def sum(self, column: str) -> Any:
        result = await self.aggregate("sum", [column])
        return result if result is not None else 0

    async def avg(self, column: str) -> Any:
        return await self.aggregate("avg", [column])

    async def average(self, column: str) -> Any:
        return await self.avg(column)

    async def min(self, column: str) -> Any:
        return await self.aggregate("min", [column])

    async def max(self, column: str) -> Any:
        return await self.aggregate("max", [column])

    async def stdev(self, column: str) -> Any:
        return await self.aggregate("stdev", [column])

    async def stdevp(self, column: str) -> Any:
        return await self.aggregate("stdevp", [column])

    async def percentile_disc(self, column: str, percentile: float = 0.0) -> Any:
        return await self.aggregate("percentile_disc", [column], percentile)

    async def percentile_cont(self, column: str, percentile: float = 0.0) -> Any:
        return await self.aggregate("percentile_cont", [column], percentile)

    async def collect(self, column: str) -> List[Any]:
        result = await self.aggregate("collect", [column])
        return result if result is not None else []

    # =============================================================================
    # PAGINATION
    # =============================================================================

    async def get_count_for_pagination(self, columns: Sequence[Any] = ("*",)) -> int:
        """
        Count total matches, ignoring ordering, paging and projection.

        Those parts are put back afterwards even if the count fails.
        """
        saved = (self.orders, self.limit_value, self.offset_value, self.columns)
        snapshot = self.bindings.backup("order", "select")
        self.orders, self.limit_value, self.offset_value, self.columns = [], None, None, None

        self.aggregate_clause = Aggregate(function="count", columns=tuple(self._flatten_columns(columns)))
        try:
            rows = await self._run_select()
        finally:
            self.aggregate_clause = None
            self.orders, self.limit_value, self.offset_value, self.columns = saved
            self.bindings.restore(snapshot)

        if self.groups:
            return len(rows)
        return int(rows[0].get("aggregate") or 0) if rows else 0

    async def paginate(self, per_page: int = 15, page: int = 1, columns: Sequence[Any] = ("*",)) -> Page:
        total = await self.get_count_for_pagination()
        items = await self.for_page(page, per_page).get(columns) if total else []
        return Page(items=items, total=total, per_page=per_page, current_page=page)

    # =============================================================================
    # WRITES
    # =============================================================================

    def _format_value(self, value: Any) -> Any:
        if hasattr(value, "strftime"):
            return value.strftime(self.grammar.date_format)
        return value

    def _allocate(self, values: Mapping[str, Any], taken: Dict[str, Any]) -> Dict[str, str]:
        """Bind write values under names free in both the query bindings and ``taken``."""
        assignments: Dict[str, str] = {}
        for prop, value in values.items():
            base = self._sanitize_binding_name(prop)
            name, counter = base, 2
            while name in self.bindings or name in taken:
                name = f"{base}_{counter}"
                counter += 1
            taken[name] = self._format_value(value)
            assignments[prop] = name
        return assignments

    def _merged_bindings(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        merged = self.get_bindings()
        merged.update(values)
        return merged

    async def insert(self, values: Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]) -> bool:
        """Create one node per mapping in a single statement."""
        if not values:
            return True
        records = [values] if isinstance(values, Mapping) else list(values)

        bound: Dict[str, Any] = {}
        assignments = [self._allocate(dict(sorted(record.items())), bound) for record in records]
        cypher = self.grammar.compile_insert(self, assignments)

        await self._require_connection().insert(cypher, self._merged_bindings(bound))
        return True

    async def insert_get_id(self, values: Mapping[str, Any]) -> Optional[int]:
        """Create a node and return its identity."""
        bound: Dict[str, Any] = {}
        assignments = self._allocate(values, bound)
        cypher = self.grammar.compile_create(self, assignments)

        rows = await self._require_connection().insert(cypher, self._merged_bindings(bound))
        if not rows:
            return None
        return entity_identity(rows[0].get(self.alias))

    async def update(self, values: Mapping[str, Any]) -> int:
        """Set properties on every matching node and return how many were touched."""
        if "id" in values:
            raise QueryBuilderError("The node identity cannot be updated.")
        if not values:
            return 0

        postfixed = self.grammar.postfix_values(values, updating=True)
        bound: Dict[str, Any] = {}
        names = self._allocate(postfixed, bound)
        assignments = {prop: names[f"{prop}_update"] for prop in values}
        cypher = self.grammar.compile_update(self, assignments)

        return await self._require_connection().update(cypher, self._merged_bindings(bound))

    async def delete(self, id: Any = None) -> int:
        """Detach-delete matching nodes; with ``id`` only that node."""
        if id is not None:
            self.where("id", "=", id)
        cypher = self.grammar.compile_delete(self)
        return await self._require_connection().delete(cypher, self.get_bindings())

    async def update_labels(self, labels: Union[str, Sequence[str]], operation: str = "add") -> bool:
        """Add (``operation="add"``) or remove (``"drop"``) labels on matching nodes."""
        if operation not in ("add", "drop"):
            raise QueryBuilderError(f"Unknown label operation '{operation}', expected 'add' or 'drop'.")
        cypher = self.grammar.compile_update_labels(self, self._normalize_labels(labels), operation)
        affected = await self._require_connection().update(cypher, self.get_bindings())
        return bool(affected)

    async def create_with(self, values: Mapping[str, Any], related: Mapping[str, Any]) -> Optional[Any]:
        """
        Create a node together with related nodes in one statement.

        Example:
            ```python
            post = await connection.table("Post").create_with(
                {"title": "Hello"},
                {
                    "photos": {"labels": "Photo", "relationship": "PHOTO", "values": [{"url": "a.jpg"}]},
                    "tags": {"labels": "Tag", "relationship": "TAGGED", "ids": [3, 4]},
                },
            )
            ```
        """
        bound: Dict[str, Any] = {}
        assignments = self._allocate(values, bound)

        compiled = []
        for name, options in related.items():
            options = options if isinstance(options, RelatedNodes) else RelatedNodes.model_validate(options)
            alias = f"with_{self._sanitize_binding_name(name).lower()}"
            attach_binding = None
            if options.ids:
                attach_binding = self._allocate({f"{alias}_ids": [self._to_identity(i) for i in options.ids]}, bound)[f"{alias}_ids"]
            compiled.append(
                RelatedCreate(
                    name=name,
                    alias=alias,
                    labels=tuple(options.labels),
                    relationship=options.relationship,
                    direction=options.direction,
                    creates=tuple(self._allocate(item, bound) for item in options.values),
                    attach_binding=attach_binding,
                )
            )

        cypher = self.grammar.compile_create_with(self, assignments, compiled)
        rows = await self._require_connection().insert(cypher, self._merged_bindings(bound))
        if not rows:
            return None
        return rows_to_records(rows[:1], alias=self.alias, entity=self.entity)[0]
