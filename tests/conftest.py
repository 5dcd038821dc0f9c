# tests/conftest.py
"""
Shared fakes standing in for driver objects.

Nodes and relationships are MagicMocks specced on the driver classes so that
isinstance checks in the result layer behave as with real driver values.
"""

from typing import Any, Dict, Iterable, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from neo4j import AsyncSession, AsyncTransaction
from neo4j.graph import Node, Relationship


def fake_node(identity: int, labels: Iterable[str] = (), properties: Optional[Dict[str, Any]] = None) -> MagicMock:
    node = MagicMock(spec=Node)
    node.element_id = f"4:7a1c2f:{identity}"
    node.labels = frozenset(labels)
    node.items.return_value = list((properties or {}).items())
    return node


def fake_relationship(identity: int, rel_type: str, start: MagicMock, end: MagicMock, properties: Optional[Dict[str, Any]] = None) -> MagicMock:
    relationship = MagicMock(spec=Relationship)
    relationship.element_id = f"5:7a1c2f:{identity}"
    relationship.type = rel_type
    relationship.start_node = start
    relationship.end_node = end
    relationship.items.return_value = list((properties or {}).items())
    return relationship


class FakeRecord:
    def __init__(self, data: Dict[str, Any]):
        self._data = data

    def items(self):
        return list(self._data.items())


class FakeResult:
    """Async iterable over records, like the driver's AsyncResult."""

    def __init__(self, rows: List[Dict[str, Any]]):
        self._records = [FakeRecord(row) for row in rows]

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for record in self._records:
            yield record


@pytest.fixture
def node_factory():
    return fake_node


@pytest.fixture
def relationship_factory():
    return fake_relationship


@pytest.fixture
def fake_session():
    """
    An AsyncSession whose run() and execute_write() answer with queued rows.

    Set ``session.rows`` to the rows the next statements should return.
    """
    session = AsyncMock(spec=AsyncSession)
    session.rows = []

    async def run(query, parameters=None, **kwargs):
        return FakeResult(session.rows)

    transaction = AsyncMock(spec=AsyncTransaction)
    transaction.run = AsyncMock(side_effect=run)

    async def execute_write(work, *args, **kwargs):
        return await work(transaction, *args, **kwargs)

    session.run = AsyncMock(side_effect=run)
    session.execute_write = AsyncMock(side_effect=execute_write)
    session.begin_transaction = AsyncMock(return_value=transaction)
    session.close = AsyncMock()
    session.transaction = transaction
    return session
