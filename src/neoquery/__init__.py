# src/neoquery/__init__.py
r"""
neoquery - Fluent Cypher query builder for Neo4j

neoquery compiles fluent builder calls into parameterized Cypher, runs them
through a transactional connection and maps the results back into records:
- Fluent predicates, relationship matches, grouping, aggregates and paging
- Parameter binding with collision-free names (values never reach the text)
- Nested transactions, dry-run (pretend) mode and an in-memory query log
- Typed GraphEntity records hydrated from nodes, polymorphic relations included

Example:
    ```python
    from neoquery import ConnectionConfig, GraphConnection, GraphEntity

    class User(GraphEntity):
        name: str
        age: int = 0

    connection = GraphConnection(ConnectionConfig(username="neo4j", password="secret"))

    adults = await (
        User.query(connection)
        .where("age", ">=", 18)
        .order_by("name")
        .take(10)
        .get()
    )

    posts_per_city = await (
        connection.table("User")
        .match_relation("User", "Post", "post", "POSTED")
        .group_by("city")
        .count("post")
    )
    ```
"""

# Configuration & errors
from neoquery.config import ConnectionConfig
from neoquery.exceptions import (
    NeoQueryError,
    QueryBuilderError,
    InvalidBindingBucketError,
    CompilationError,
    QueryExecutionError,
    TransactionError,
)

# Core records and bindings
from neoquery.core.bindings import BindingTable
from neoquery.core.clauses import prop
from neoquery.core.graph_node import GraphNode
from neoquery.core.graph_edge import GraphEdge

# Query building
from neoquery.query.builder import Builder, Page
from neoquery.query.grammar import CypherGrammar

# Execution & entities
from neoquery.orm.entities import GraphEntity, graph_entity
from neoquery.orm.engine import GraphEngine, create_graph_engine
from neoquery.orm.connection import GraphConnection

# Version info
__version__ = "0.1.0"

# Main exports
__all__ = [
    # Configuration & errors
    "ConnectionConfig",
    "NeoQueryError",
    "QueryBuilderError",
    "InvalidBindingBucketError",
    "CompilationError",
    "QueryExecutionError",
    "TransactionError",

    # Core
    "BindingTable",
    "prop",
    "GraphNode",
    "GraphEdge",

    # Query building
    "Builder",
    "Page",
    "CypherGrammar",

    # ORM
    "GraphEntity",
    "graph_entity",
    "GraphEngine",
    "create_graph_engine",
    "GraphConnection",

    # Version
    "__version__",
]
