# src/neoquery/core/__init__.py
"""
neoquery Core Module

Building blocks shared by the builder and the execution layer: the binding
table, clause models and the records results are reconstituted into.
"""

from neoquery.core.bindings import BindingTable, BINDING_BUCKETS
from neoquery.core.clauses import ColumnRef, prop
from neoquery.core.graph_node import GraphNode
from neoquery.core.graph_edge import GraphEdge

__all__ = [
    "BindingTable",
    "BINDING_BUCKETS",
    "ColumnRef",
    "prop",
    "GraphNode",
    "GraphEdge",
]
