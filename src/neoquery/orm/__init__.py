# src/neoquery/orm/__init__.py
"""
neoquery ORM Module

Execution against Neo4j (engine and connection) and the mapping of results
back into records and typed entities.
"""

from neoquery.orm.entities import (
    GraphEntity,
    graph_entity,
    get_entity_classes,
    get_entity_by_label,
    get_entity_by_labels
)

from neoquery.orm.results import (
    to_record,
    rows_to_records,
    get_records_by_placeholders,
    relation_pairs,
    match_eager
)

from neoquery.orm.engine import (
    GraphEngine,
    create_graph_engine
)

from neoquery.orm.connection import GraphConnection

__all__ = [
    # Entity system
    "GraphEntity",
    "graph_entity",
    "get_entity_classes",
    "get_entity_by_label",
    "get_entity_by_labels",

    # Results
    "to_record",
    "rows_to_records",
    "get_records_by_placeholders",
    "relation_pairs",
    "match_eager",

    # Execution
    "GraphEngine",
    "create_graph_engine",
    "GraphConnection",
]
