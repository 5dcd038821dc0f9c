# src/neoquery/exceptions.py
"""
neoquery exceptions

Every error raised by the query layer derives from NeoQueryError so callers
can catch the whole family, while the concrete classes tell apart mistakes
made while building a query, while compiling it, and while running it.
"""

from typing import Any, Dict, Optional


class NeoQueryError(Exception):
    """Base class for all neoquery errors."""


class QueryBuilderError(NeoQueryError, ValueError):
    """
    Raised when a query is built with an invalid argument combination.

    These are programmer errors detected before anything reaches the database,
    e.g. a comparison operator given without a value.
    """


class InvalidBindingBucketError(QueryBuilderError):
    """Raised when a binding is added to a bucket that does not exist."""

    def __init__(self, bucket: str):
        self.bucket = bucket
        super().__init__(f"Invalid binding type: {bucket}.")


class CompilationError(NeoQueryError):
    """Raised when a query cannot be translated into Cypher."""


class TransactionError(NeoQueryError):
    """Raised on transaction bookkeeping misuse, such as committing with none open."""


class QueryExecutionError(NeoQueryError):
    """
    Wraps any failure surfaced by the graph database while running a statement.

    The original driver error stays reachable as ``__cause__`` (and ``cause``),
    and the statement plus its prepared bindings are attached for debugging.
    """

    def __init__(
        self,
        statement: str,
        bindings: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None
    ):
        self.statement = statement
        self.bindings = bindings or {}
        self.cause = cause
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        reason = f"{type(self.cause).__name__}: {self.cause}" if self.cause else "unknown error"
        return f"{reason} (Cypher: {self.statement}, bindings: {self.bindings})"
