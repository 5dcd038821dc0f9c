# src/neoquery/query/__init__.py
"""
neoquery Query Module

The fluent Builder and the CypherGrammar that compiles it.
"""

from neoquery.query.builder import Builder, Page
from neoquery.query.grammar import CypherGrammar

__all__ = [
    "Builder",
    "Page",
    "CypherGrammar",
]
