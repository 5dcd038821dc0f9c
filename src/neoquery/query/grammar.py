# src/neoquery/query/grammar.py
"""
Cypher grammar.

Translates a populated Builder into Cypher text. The grammar performs no I/O
and keeps no per-query state: every compile method reads the builder it is
given and returns a string. Parameter values never appear in the output;
predicates reference them by binding name (``$name``).

Clause order of a compiled select is fixed because Cypher is order
sensitive:

    MATCH -> WHERE -> OPTIONAL MATCH -> WITH -> RETURN -> ORDER BY -> SKIP -> LIMIT

Predicates reading an alias that only an OPTIONAL MATCH binds are emitted
after it, as ``WITH * WHERE ...``.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from neoquery.core.clauses import (
    Aggregate,
    ColumnRef,
    MorphMatch,
    NodePattern,
    RelationMatch,
)
from neoquery.exceptions import CompilationError

if TYPE_CHECKING:
    from neoquery.query.builder import Builder


IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
IDENTIFIER_TOKEN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# Public aggregate name -> Cypher function
AGGREGATE_FUNCTIONS: Dict[str, str] = {
    "count": "count",
    "count_distinct": "count",
    "sum": "sum",
    "avg": "avg",
    "min": "min",
    "max": "max",
    "stdev": "stDev",
    "stdevp": "stDevP",
    "percentile_disc": "percentileDisc",
    "percentile_cont": "percentileCont",
    "collect": "collect",
}


class CypherGrammar:
    """
    Compiles builders into Cypher statements.

    Example:
        ```python
        grammar = CypherGrammar()
        query = Builder(grammar=grammar).from_("User").where("age", ">", 18)
        grammar.compile_select(query)
        # MATCH (user:User) WHERE user.age > $age RETURN user
        ```
    """

    date_format: str = "%Y-%m-%d %H:%M:%S"

    # =============================================================================
    # IDENTIFIERS
    # =============================================================================

    def quote(self, identifier: str) -> str:
        """Backtick-quote an identifier unless it is a plain Cypher name."""
        if IDENTIFIER.match(identifier):
            return identifier
        return "`" + identifier.replace("`", "``") + "`"

    def model_as_node(self, labels: Union[str, Sequence[str], None]) -> str:
        """
        Turn a label set into its node placeholder.

        ``["User"]`` becomes ``user`` and ``["User", "Admin"]`` becomes
        ``user_admin``. The placeholder is both the pattern variable and the
        result column key, so it has to be deterministic.
        """
        labels = self.normalize_labels(labels)
        if not labels:
            raise CompilationError("Cannot derive a node placeholder without labels.")

        placeholder = "_".join(label.lower() for label in labels)
        placeholder = re.sub(r"[^a-z0-9_]", "_", placeholder)
        if placeholder[0].isdigit():
            placeholder = f"n_{placeholder}"
        return placeholder

    @staticmethod
    def normalize_labels(labels: Union[str, Sequence[str], None]) -> Tuple[str, ...]:
        if labels is None:
            return ()
        if isinstance(labels, str):
            return (labels,) if labels else ()
        return tuple(label for label in labels if label)

    def prepare_labels(self, labels: Union[str, Sequence[str], None]) -> str:
        """``["User", "Admin"]`` -> ``:User:Admin``"""
        return "".join(f":{self.quote(label)}" for label in self.normalize_labels(labels))

    def get_id_replacement(self, column: str) -> str:
        """
        Turn an identity reference into a usable binding name.

        ``id(user)`` becomes ``iduser``; anything without parentheses is
        returned untouched, so applying it twice changes nothing.
        """
        return re.sub(r"[()\s]", "", column)

    def parameter(self, name: str) -> str:
        return f"${self.quote(name)}"

    def wrap(self, column: Union[ColumnRef, str]) -> str:
        """
        Render a column reference.

        Identity references render as ``id(alias)``, aliased properties as
        ``alias.property``. A property is left bare when its alias is unknown,
        and raw strings (``*``, placeholders, expressions) pass through.
        """
        if isinstance(column, str):
            return column
        if column.identity:
            if not column.alias:
                raise CompilationError(f"Identity reference '{column.name}' has no node alias.")
            return f"id({column.alias})"
        if column.alias:
            return f"{column.alias}.{self.quote(column.name)}"
        return self.quote(column.name)

    def postfix_values(self, values: Mapping[str, Any], updating: bool = False) -> Dict[str, Any]:
        """
        Postfix update values with ``_update``.

        Keeps ``SET n.name = $name_update`` apart from a ``WHERE n.name = $name``
        living in the same statement.
        """
        if not updating:
            return dict(values)
        return {f"{key}_update": value for key, value in values.items()}

    # =============================================================================
    # SELECT
    # =============================================================================

    def compile_select(self, query: Builder) -> str:
        """
        Compile a read query, unions included.

        Union branches return their columns under the names of the first
        select, since Cypher only joins selects whose column names agree.
        """
        if query.unions and query.aggregate_clause is not None:
            return self.compile_union_aggregate(query)

        cypher, names = self._compile_single_select(query)

        for union in query.unions:
            keyword = "UNION ALL" if union.all else "UNION"
            branch, _ = self._compile_single_select(union.query, names)
            cypher = f"{cypher} {keyword} {branch}"

        return cypher

    def _compile_single_select(self, query: Builder, names: Optional[List[str]] = None) -> Tuple[str, List[str]]:
        introduced: Dict[str, Tuple[str, ...]] = {}

        items = None
        components = [self.compile_match_stage(query, introduced), self.compile_with(query)]
        if self.stages_projection(query) or query.aggregate_clause is None:
            distinct, items = self.return_items(query, introduced)
            if names is not None:
                items = self.align_return_items(items, names)
            components.append(f"RETURN {distinct}" + ", ".join(items))
        else:
            components.append(self.compile_aggregate(query, query.aggregate_clause))

        components += [
            self.compile_orders(query),
            self.compile_offset(query),
            self.compile_limit(query),
        ]
        cypher = " ".join(component for component in components if component)
        return cypher, [self.column_name(item) for item in items or ()]

    def compile_union_aggregate(self, query: Builder) -> str:
        """``CALL { <select> UNION <select> } RETURN count(*) AS aggregate``"""
        if query.groups or query.havings:
            raise CompilationError("Grouped aggregates over a UNION are not supported.")

        inner = query.clone()
        inner.aggregate_clause = None
        return f"CALL {{ {self.compile_select(inner)} }} {self.compile_aggregate(query, query.aggregate_clause)}"

    def compile_match_stage(self, query: Builder, introduced: Dict[str, Tuple[str, ...]]) -> str:
        """
        MATCH, WHERE and OPTIONAL MATCH.

        A WHERE written right after an OPTIONAL MATCH only constrains that
        pattern, so predicates stay ahead of the optional patterns. When one
        of them reads an alias only an optional pattern binds, the predicates
        filter the rows afterwards as ``WITH * WHERE ...``.
        """
        required = self.compile_matches(query, introduced)
        bound = set(introduced)
        optional = self.compile_optional_matches(query, introduced)

        deferred = bool(self.predicate_aliases(query.wheres) & (set(introduced) - bound))
        components = [required, self.compile_wheres(query, predicates=not deferred), optional]
        if deferred:
            components.append("WITH * WHERE " + self.compile_predicates(query.wheres))
        return " ".join(component for component in components if component)

    # -----------------------------------------------------------------------------
    # MATCH
    # -----------------------------------------------------------------------------

    def compile_matches(self, query: Builder, introduced: Dict[str, Tuple[str, ...]]) -> str:
        """Primary node pattern followed by one MATCH per required relation."""
        clauses = []

        if query.labels:
            node = query.alias
            introduced[node] = tuple(query.labels)
            clauses.append(f"MATCH ({node}{self.prepare_labels(query.labels)})")

        for match in query.matches:
            if not match.optional:
                clauses.append("MATCH " + self.compile_match_pattern(match, introduced))

        return " ".join(clauses)

    def compile_optional_matches(self, query: Builder, introduced: Dict[str, Tuple[str, ...]]) -> str:
        """
        OPTIONAL MATCH patterns, each with its own WHERE.

        They come after the main WHERE so that filter keeps applying to the
        required part of the query rather than to the optional pattern.
        """
        clauses = []
        for match in query.matches:
            if not match.optional:
                continue
            clause = "OPTIONAL MATCH " + self.compile_match_pattern(match, introduced)
            constraint = self.compile_match_constraint(match)
            if constraint:
                clause += f" WHERE {constraint}"
            clauses.append(clause)
        return " ".join(clauses)

    def compile_match_pattern(self, match: Union[RelationMatch, MorphMatch], introduced: Dict[str, Tuple[str, ...]]) -> str:
        kind = getattr(match, "kind", None)
        if kind == "relation":
            related_alias = match.related.alias
        elif kind == "morph":
            related_alias = match.related_alias
        else:
            raise CompilationError(f"Unsupported match clause: {type(match).__name__}")

        if related_alias == match.parent.alias:
            raise CompilationError(f"Related alias '{related_alias}' is the same as its parent alias.")

        parent = self._node(match.parent, introduced)

        if kind == "relation":
            related = self._node(match.related, introduced)
            relationship = self._relationship_variable(match.relationship, related_alias)
            relationship += f":{self.quote(match.relationship)}"
        else:
            if related_alias in introduced:
                raise CompilationError(f"Morph alias '{related_alias}' is already bound in this query.")
            related = f"({related_alias})"
            introduced[related_alias] = ()
            relationship = f"rel_{related_alias}"
            if match.relationship:
                relationship += f":{self.quote(match.relationship)}"

        return self.craft_relation(parent, relationship, related, match.direction)

    def _node(self, pattern: NodePattern, introduced: Dict[str, Tuple[str, ...]]) -> str:
        known = introduced.get(pattern.alias)
        if known is not None:
            if pattern.labels and known and tuple(pattern.labels) != known:
                raise CompilationError(
                    f"Alias '{pattern.alias}' is bound to {list(known)} and cannot also match {list(pattern.labels)}."
                )
            return f"({pattern.alias})"

        introduced[pattern.alias] = tuple(pattern.labels)
        return f"({pattern.alias}{self.prepare_labels(pattern.labels)})"

    def _relationship_variable(self, relationship: str, related_alias: str) -> str:
        name = re.sub(r"[^a-z0-9_]", "_", relationship.lower())
        return f"rel_{name}_{related_alias}"

    def craft_relation(self, parent: str, relationship: str, related: str, direction: str) -> str:
        """Render a relationship pattern in the requested direction."""
        if direction == "out":
            template = "{parent}-[{relationship}]->{related}"
        elif direction == "in":
            template = "{parent}<-[{relationship}]-{related}"
        else:
            template = "{parent}-[{relationship}]-{related}"
        return template.format(parent=parent, relationship=relationship, related=related)

    def compile_match_constraint(self, match: Union[RelationMatch, MorphMatch]) -> str:
        """The parent property constraint recorded with a relation match, if any."""
        if not match.binding or not match.property:
            return ""
        if match.property == "id":
            column = f"id({match.parent.alias})"
        else:
            column = f"{match.parent.alias}.{self.quote(match.property)}"
        return f"{column} = {self.parameter(match.binding)}"

    # -----------------------------------------------------------------------------
    # WHERE
    # -----------------------------------------------------------------------------

    def compile_wheres(self, query: Builder, predicates: bool = True) -> str:
        """Required relation constraints, then the predicates unless ``predicates`` is False."""
        constraints = [
            self.compile_match_constraint(match) for match in query.matches if not match.optional
        ]
        constraints = [constraint for constraint in constraints if constraint]

        predicates = self.compile_predicates(query.wheres) if predicates else ""
        if predicates:
            if constraints and len(query.wheres) > 1:
                predicates = f"({predicates})"
            constraints.append(predicates)

        if not constraints:
            return ""
        return "WHERE " + " AND ".join(constraints)

    def compile_predicates(self, wheres: Iterable[Any]) -> str:
        """Fold predicates into one boolean expression, honoring each connective."""
        parts: List[str] = []
        for where in wheres:
            kind = getattr(where, "kind", None)
            method = getattr(self, f"where_{kind}", None) if kind else None
            if method is None:
                raise CompilationError(f"Unsupported predicate: {where!r}")

            cypher = method(where)
            if not cypher:
                continue
            if parts:
                parts.append(where.boolean.upper())
            parts.append(cypher)
        return " ".join(parts)

    def predicate_aliases(self, wheres: Iterable[Any]) -> Set[str]:
        """Node aliases the predicates read, sub-queries included."""
        aliases: Set[str] = set()
        for where in wheres:
            kind = getattr(where, "kind", None)
            if kind == "nested":
                aliases |= self.predicate_aliases(where.wheres)
            elif kind == "carried":
                # Carried sides are raw text; any identifier in them may be an alias.
                aliases.update(IDENTIFIER_TOKEN.findall(f"{where.column} {where.value}"))

            column = getattr(where, "column", None)
            if isinstance(column, ColumnRef) and column.alias:
                aliases.add(column.alias)

            query = getattr(where, "query", None)
            if query is not None:
                aliases.update(query.known_aliases())
                aliases |= self.predicate_aliases(query.wheres)
        return aliases

    def where_basic(self, where) -> str:
        return f"{self.wrap(where.column)} {where.operator} {self.parameter(where.binding)}"

    def where_in(self, where) -> str:
        cypher = f"{self.wrap(where.column)} IN {self.parameter(where.binding)}"
        return f"NOT {cypher}" if where.negated else cypher

    def where_between(self, where) -> str:
        parameter = self.parameter(where.binding)
        cypher = f"{parameter}[0] <= {self.wrap(where.column)} <= {parameter}[1]"
        return f"NOT ({cypher})" if where.negated else cypher

    def where_null(self, where) -> str:
        return f"{self.wrap(where.column)} IS {'NOT ' if where.negated else ''}NULL"

    def where_carried(self, where) -> str:
        return f"{where.column} {where.operator} {where.value}"

    def where_nested(self, where) -> str:
        inner = self.compile_predicates(where.wheres)
        return f"({inner})" if inner else ""

    def where_sub(self, where) -> str:
        return f"{self.wrap(where.column)} {where.operator} head(COLLECT {{ {self.compile_select(where.query)} }})"

    def where_in_sub(self, where) -> str:
        cypher = f"{self.wrap(where.column)} IN COLLECT {{ {self.compile_select(where.query)} }}"
        return f"NOT {cypher}" if where.negated else cypher

    def where_exists(self, where) -> str:
        cypher = f"EXISTS {{ {self.compile_select(where.query)} }}"
        return f"NOT {cypher}" if where.negated else cypher

    # -----------------------------------------------------------------------------
    # WITH
    # -----------------------------------------------------------------------------

    def stages_projection(self, query: Builder) -> bool:
        """Whether grouping or havings force a WITH stage before RETURN."""
        return bool(query.groups or query.havings)

    def group_name(self, query: Builder, column: Any) -> str:
        if isinstance(column, str) and column in query.known_aliases():
            return column
        ref = query.resolve_column(column)
        return self.quote(ref.name)

    def compile_with(self, query: Builder) -> str:
        if query.withs:
            return "WITH " + ", ".join(query.withs)

        if not self.stages_projection(query):
            return ""

        if query.havings and not (query.groups or query.aggregate_clause):
            raise CompilationError("HAVING needs group_by() or an aggregate to filter on.")

        items = []
        for column in query.groups:
            expression = self.compile_expression(query, column)
            name = self.group_name(query, column)
            items.append(expression if expression == name else f"{expression} AS {name}")

        if query.aggregate_clause is not None:
            aggregate = query.aggregate_clause
            items.append(f"{self.compile_aggregate_expression(query, aggregate)} AS {aggregate.alias}")
            cypher = "WITH " + ", ".join(items)
        else:
            cypher = "WITH DISTINCT " + ", ".join(items)

        if query.havings:
            cypher += " WHERE " + self.compile_havings(query)
        return cypher

    def compile_havings(self, query: Builder) -> str:
        parts: List[str] = []
        for having in query.havings:
            if parts:
                parts.append(having.boolean.upper())
            parts.append(f"{having.column} {having.operator} {self.parameter(having.binding)}")
        return " ".join(parts)

    # -----------------------------------------------------------------------------
    # RETURN
    # -----------------------------------------------------------------------------

    def return_items(self, query: Builder, introduced: Dict[str, Tuple[str, ...]]) -> Tuple[str, List[str]]:
        """The ``DISTINCT`` prefix and the RETURN items of a non-aggregate select."""
        distinct = "DISTINCT " if query.is_distinct else ""

        if self.stages_projection(query):
            names = [self.group_name(query, column) for column in query.groups]
            if query.aggregate_clause is not None:
                names.append(query.aggregate_clause.alias)
            return distinct, names

        columns = list(query.columns or ["*"])

        if columns == ["*"]:
            if query.withs:
                return distinct, ["*"]
            placeholders = list(introduced)
            if not placeholders:
                raise CompilationError("Nothing to return: the query has no labels and no matches.")
            return distinct, placeholders

        return distinct, [self.compile_column(query, column) for column in columns]

    @staticmethod
    def column_name(item: str) -> str:
        """Result column name of a RETURN item: its alias, or the expression text."""
        if " AS " not in item:
            return item
        name = item.rsplit(" AS ", 1)[1]
        if name.startswith("`") and name.endswith("`"):
            name = name[1:-1].replace("``", "`")
        return name

    def align_return_items(self, items: Sequence[str], names: Sequence[str]) -> List[str]:
        """
        Rename union branch items to the column names of the first select.

        Raises:
            CompilationError: If the column counts differ or a ``*`` cannot be renamed
        """
        if len(items) != len(names):
            raise CompilationError(
                f"UNION selects must return the same number of columns, got {len(names)} and {len(items)}."
            )

        aligned = []
        for item, name in zip(items, names):
            if self.column_name(item) == name:
                aligned.append(item)
                continue
            if item == "*" or name == "*":
                raise CompilationError("UNION selects returning '*' must all return '*'.")
            expression = item.rsplit(" AS ", 1)[0]
            aligned.append(f"{expression} AS {self.quote(name)}")
        return aligned

    def compile_expression(self, query: Builder, column: Any) -> str:
        """Render a column as an expression: placeholders stay bare, the rest is resolved."""
        if isinstance(column, str) and (column == "*" or column in query.known_aliases()):
            return column
        return self.wrap(query.resolve_column(column))

    def compile_column(self, query: Builder, column: Any) -> str:
        """Render a RETURN column; a bare ``id`` is named so rows keep the ``id`` key."""
        cypher = self.compile_expression(query, column)
        if column == "id":
            return f"{cypher} AS id"
        return cypher

    def compile_aggregate(self, query: Builder, aggregate: Aggregate) -> str:
        """``RETURN count(user) AS aggregate`` and friends."""
        return f"RETURN {self.compile_aggregate_expression(query, aggregate)} AS {aggregate.alias}"

    def compile_aggregate_expression(self, query: Builder, aggregate: Aggregate) -> str:
        if aggregate.function not in AGGREGATE_FUNCTIONS:
            raise CompilationError(f"Unsupported aggregate function: {aggregate.function}")

        function = AGGREGATE_FUNCTIONS[aggregate.function]
        distinct = ""
        if aggregate.function == "count_distinct" or (aggregate.function == "count" and query.is_distinct):
            distinct = "DISTINCT "

        columns = []
        for column in aggregate.columns:
            if column == "*":
                # count(*) is the only aggregate taking a star; the rest get the node itself.
                columns.append("*" if function == "count" and not distinct else query.alias or "*")
            else:
                columns.append(self.compile_expression(query, column))

        arguments = distinct + ", ".join(columns)
        if aggregate.percentile_binding:
            arguments += f", {self.parameter(aggregate.percentile_binding)}"
        return f"{function}({arguments})"

    # -----------------------------------------------------------------------------
    # ORDER / SKIP / LIMIT
    # -----------------------------------------------------------------------------

    def compile_orders(self, query: Builder) -> str:
        if not query.orders:
            return ""

        carried = set()
        if self.stages_projection(query):
            carried = {self.group_name(query, column) for column in query.groups}
            if query.aggregate_clause is not None:
                carried.add(query.aggregate_clause.alias)

        parts = []
        for order in query.orders:
            if isinstance(order.column, str) and order.column in carried:
                column = order.column
            else:
                column = self.compile_expression(query, order.column)
            parts.append(f"{column} {order.direction}")
        return "ORDER BY " + ", ".join(parts)

    def compile_offset(self, query: Builder) -> str:
        if query.offset_value is None:
            return ""
        return f"SKIP {int(query.offset_value)}"

    def compile_limit(self, query: Builder) -> str:
        if query.limit_value is None:
            return ""
        return f"LIMIT {int(query.limit_value)}"

    # =============================================================================
    # WRITES
    # =============================================================================

    def _properties_map(self, assignments: Mapping[str, str]) -> str:
        if not assignments:
            return ""
        pairs = ", ".join(
            f"{self.quote(prop)}: {self.parameter(binding)}" for prop, binding in assignments.items()
        )
        return f" {{{pairs}}}"

    def _require_alias(self, query: Builder, action: str) -> str:
        if not query.labels:
            raise CompilationError(f"Cannot {action} without target labels; call from_() first.")
        return query.alias

    def compile_create(self, query: Builder, assignments: Mapping[str, str]) -> str:
        """``CREATE (user:User {name: $name}) RETURN user``"""
        node = self._require_alias(query, "create a node")
        return f"CREATE ({node}{self.prepare_labels(query.labels)}{self._properties_map(assignments)}) RETURN {node}"

    def compile_insert(self, query: Builder, records: Sequence[Mapping[str, str]]) -> str:
        """One CREATE holding a node pattern per record (``user``, ``user_2``, ...)."""
        node = self._require_alias(query, "insert")
        labels = self.prepare_labels(query.labels)

        patterns = []
        for index, assignments in enumerate(records, start=1):
            placeholder = node if index == 1 else f"{node}_{index}"
            patterns.append(f"({placeholder}{labels}{self._properties_map(assignments)})")
        return "CREATE " + ", ".join(patterns)

    def _compile_write_target(self, query: Builder) -> str:
        target = self.compile_match_stage(query, {})
        if any(match.optional for match in query.matches):
            # Optional patterns can repeat the target node across rows.
            target += f" WITH DISTINCT {query.alias}"
        return target

    def compile_update(self, query: Builder, assignments: Mapping[str, str]) -> str:
        """``MATCH ... WHERE ... SET user.name = $name_update RETURN count(user) AS affected``"""
        node = self._require_alias(query, "update")
        sets = ", ".join(
            f"{node}.{self.quote(prop)} = {self.parameter(binding)}" for prop, binding in assignments.items()
        )
        return f"{self._compile_write_target(query)} SET {sets} RETURN count({node}) AS affected"

    def compile_delete(self, query: Builder) -> str:
        """Detach-delete matching nodes so attached relationships go with them."""
        node = self._require_alias(query, "delete")
        return f"{self._compile_write_target(query)} DETACH DELETE {node} RETURN count({node}) AS affected"

    def compile_update_labels(self, query: Builder, labels: Sequence[str], operation: str = "add") -> str:
        node = self._require_alias(query, "update labels")
        if operation not in ("add", "drop"):
            raise CompilationError(f"Unknown label operation '{operation}', expected 'add' or 'drop'.")
        keyword = "SET" if operation == "add" else "REMOVE"
        return (
            f"{self._compile_write_target(query)} {keyword} {node}{self.prepare_labels(labels)} "
            f"RETURN count({node}) AS affected"
        )

    def compile_create_with(self, query: Builder, assignments: Mapping[str, str], related: Sequence[Any]) -> str:
        """
        Create a node together with related nodes in a single statement.

        New related nodes are created in the same CREATE as the parent; existing
        nodes given by identity are attached in a unit subquery each, so one
        relation with no matches does not wipe out the whole row.
        """
        node = self._require_alias(query, "create a node")
        patterns = [f"({node}{self.prepare_labels(query.labels)}{self._properties_map(assignments)})"]
        attachments = []

        for relation in related:
            rel = f":{self.quote(relation.relationship)}"
            labels = self.prepare_labels(relation.labels)

            for index, values in enumerate(relation.creates, start=1):
                alias = relation.alias if index == 1 else f"{relation.alias}_{index}"
                target = f"({alias}{labels}{self._properties_map(values)})"
                patterns.append(self.craft_relation(f"({node})", rel, target, self._creation_direction(relation.direction)))

            if relation.attach_binding:
                alias = f"{relation.alias}_attached"
                link = self.craft_relation(f"({node})", rel, f"({alias})", self._creation_direction(relation.direction))
                attachments.append(
                    f"CALL {{ WITH {node} MATCH ({alias}{labels}) "
                    f"WHERE id({alias}) IN {self.parameter(relation.attach_binding)} MERGE {link} }}"
                )

        cypher = "CREATE " + ", ".join(patterns)
        if attachments:
            cypher += f" WITH {node} " + " ".join(attachments)
        return f"{cypher} RETURN {node}"

    @staticmethod
    def _creation_direction(direction: str) -> str:
        # Relationships are always stored with a direction.
        return "in" if direction == "in" else "out"
