# src/neoquery/orm/connection.py
"""
GraphConnection - runs compiled Cypher through a Neo4j session.

Adds what the raw driver session does not have: nested transaction
bookkeeping, a dry-run (pretend) mode, an in-memory query log, parameter
preparation and uniform error wrapping.
"""

from __future__ import annotations

import inspect
import logging
import time
from datetime import date
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from neo4j import AsyncSession, AsyncTransaction

from neoquery.config import ConnectionConfig
from neoquery.exceptions import QueryExecutionError, TransactionError
from neoquery.orm.engine import GraphEngine
from neoquery.orm.results import RowSet
from neoquery.query.grammar import CypherGrammar

if TYPE_CHECKING:
    from neoquery.query.builder import Builder

logger = logging.getLogger(__name__)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def _consume(result) -> RowSet:
    return [dict(record.items()) async for record in result]


class GraphConnection:
    """
    Execution bridge between builders and the database.

    Example:
        ```python
        connection = GraphConnection(ConnectionConfig(username="neo4j", password="secret"))

        async def register(conn):
            await conn.table("User").insert({"name": "Alice"})

        await connection.transaction(register)
        users = await connection.table("User").get()
        ```
    """

    def __init__(
        self,
        config: Optional[Union[ConnectionConfig, Mapping[str, Any]]] = None,
        engine: Optional[GraphEngine] = None,
        grammar: Optional[CypherGrammar] = None
    ):
        if not isinstance(config, ConnectionConfig):
            config = ConnectionConfig.from_mapping(config)
        self.config: ConnectionConfig = config
        self.engine: GraphEngine = engine or GraphEngine.from_config(config)
        self.query_grammar: CypherGrammar = grammar or CypherGrammar()

        self._client: Optional[AsyncSession] = None
        self._transaction: Optional[AsyncTransaction] = None
        self._transactions: int = 0
        self._pretending: bool = False
        self._logging_queries: bool = False
        self._query_log: List[Dict[str, Any]] = []
        self._reconnector: Optional[Callable[[GraphConnection], Any]] = None

    # =============================================================================
    # CLIENT
    # =============================================================================

    async def get_client(self) -> AsyncSession:
        """The session statements run on, opened on first use."""
        if self._client is None:
            await self.engine.connect()
            self._client = self.engine.get_session(self.config.database)
        return self._client

    def set_client(self, client: AsyncSession) -> GraphConnection:
        self._client = client
        return self

    def get_query_grammar(self) -> CypherGrammar:
        return self.query_grammar

    def table(self, labels) -> Builder:
        """Start a builder targeting the given labels (or GraphEntity class)."""
        from neoquery.query.builder import Builder

        return Builder(self, self.query_grammar).from_(labels)

    def query(self) -> Builder:
        from neoquery.query.builder import Builder

        return Builder(self, self.query_grammar)

    async def disconnect(self) -> None:
        """Close the session; the next statement opens a fresh one."""
        client, self._client = self._client, None
        self._transaction = None
        self._transactions = 0
        if client is not None:
            await client.close()

    async def reconnect(self) -> Any:
        if self._reconnector is None:
            raise ConnectionError("Lost connection and no reconnector available.")
        return await _maybe_await(self._reconnector(self))

    def set_reconnector(self, reconnector: Callable[[GraphConnection], Any]) -> GraphConnection:
        self._reconnector = reconnector
        return self

    async def __aenter__(self) -> GraphConnection:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.disconnect()

    # =============================================================================
    # STATEMENTS
    # =============================================================================

    async def select(self, query: str, bindings: Optional[Mapping[str, Any]] = None) -> RowSet:
        """Run a read statement and return its rows as dicts."""
        async def run(cypher: str, params: Mapping[str, Any]) -> RowSet:
            if self.pretending():
                return []
            return await self._read(cypher, self.prepare_bindings(params))

        return await self._run(query, bindings or {}, run)

    async def select_one(self, query: str, bindings: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        rows = await self.select(query, bindings)
        return rows[0] if rows else None

    async def insert(self, query: str, bindings: Optional[Mapping[str, Any]] = None) -> RowSet:
        """Run a creating statement and return whatever it returns."""
        return await self.statement(query, bindings, raw_results=True)

    async def update(self, query: str, bindings: Optional[Mapping[str, Any]] = None) -> int:
        return await self.affecting_statement(query, bindings)

    async def delete(self, query: str, bindings: Optional[Mapping[str, Any]] = None) -> int:
        return await self.affecting_statement(query, bindings)

    async def statement(
        self,
        query: str,
        bindings: Optional[Mapping[str, Any]] = None,
        raw_results: bool = False
    ) -> Union[bool, RowSet]:
        """
        Run a write statement.

        Returns:
            The rows when ``raw_results`` is set, otherwise True
        """
        async def run(cypher: str, params: Mapping[str, Any]) -> Union[bool, RowSet]:
            if self.pretending():
                return [] if raw_results else True
            rows = await self._write(cypher, self.prepare_bindings(params))
            return rows if raw_results else True

        return await self._run(query, bindings or {}, run)

    async def affecting_statement(self, query: str, bindings: Optional[Mapping[str, Any]] = None) -> int:
        """
        Run a write statement and return the number of affected nodes.

        Statements returning an ``affected`` column report that count; for
        anything else the row count is used.
        """
        async def run(cypher: str, params: Mapping[str, Any]) -> int:
            if self.pretending():
                return 0
            rows = await self._write(cypher, self.prepare_bindings(params))
            if rows and "affected" in rows[0]:
                return int(rows[0]["affected"] or 0)
            return len(rows)

        return await self._run(query, bindings or {}, run)

    async def unprepared(self, query: str) -> bool:
        """Run a statement with no parameters at all."""
        async def run(cypher: str, params: Mapping[str, Any]) -> bool:
            if self.pretending():
                return True
            await self._write(cypher, {})
            return True

        return await self._run(query, {}, run)

    async def _read(self, cypher: str, params: Dict[str, Any]) -> RowSet:
        if self._transaction is not None:
            return await _consume(await self._transaction.run(cypher, params))

        session = await self.get_client()
        return await _consume(await session.run(cypher, params))

    async def _write(self, cypher: str, params: Dict[str, Any]) -> RowSet:
        if self._transaction is not None:
            return await _consume(await self._transaction.run(cypher, params))

        async def work(tx) -> RowSet:
            return await _consume(await tx.run(cypher, params))

        session = await self.get_client()
        return await session.execute_write(work)

    async def _run(
        self,
        query: str,
        bindings: Mapping[str, Any],
        callback: Callable[[str, Mapping[str, Any]], Awaitable[Any]]
    ) -> Any:
        """Time, log and error-wrap a statement."""
        start = time.perf_counter()
        try:
            return await callback(query, bindings)
        except Exception as e:
            raise QueryExecutionError(query, self.prepare_bindings(bindings), e) from e
        finally:
            self.log_query(query, bindings, self._get_elapsed_time(start))

    @staticmethod
    def _get_elapsed_time(start: float) -> float:
        return round((time.perf_counter() - start) * 1000, 2)

    # =============================================================================
    # BINDINGS
    # =============================================================================

    def prepare_bindings(self, bindings: Any) -> Dict[str, Any]:
        """
        Turn bindings into a parameter dict the driver accepts.

        A list of mappings is merged into one dict, numeric keys are replaced
        by the column names they wrap or by ``param_<n>``, dates become
        strings in the grammar's date format and tuples or sets become lists.

        Example:
            ```python
            connection.prepare_bindings([{"username": "jd"}, {"email": "jd@x.io"}])
            # {"username": "jd", "email": "jd@x.io"}
            ```
        """
        if not bindings:
            return {}

        items = enumerate(bindings) if isinstance(bindings, (list, tuple)) else bindings.items()
        prepared: Dict[str, Any] = {}
        for key, value in items:
            if self._is_numeric(key):
                if isinstance(value, Mapping):
                    for column, item in value.items():
                        prepared[self._binding_key(column)] = self._prepare_value(item)
                else:
                    prepared[f"param_{key}"] = self._prepare_value(value)
            else:
                prepared[self._binding_key(key)] = self._prepare_value(value)
        return prepared

    @staticmethod
    def _is_numeric(key: Any) -> bool:
        return isinstance(key, int) or (isinstance(key, str) and key.isdigit())

    def _binding_key(self, key: Any) -> str:
        key = str(key)
        if key.startswith("id("):
            return self.query_grammar.get_id_replacement(key)
        # ``user.name`` is bound as ``name``
        return key.split(".", 1)[1] if "." in key else key

    def _prepare_value(self, value: Any) -> Any:
        if isinstance(value, date):
            return value.strftime(self.query_grammar.date_format)
        if isinstance(value, (tuple, set, frozenset, list)):
            return [self._prepare_value(item) for item in value]
        if isinstance(value, Mapping):
            return {key: self._prepare_value(item) for key, item in value.items()}
        return value

    def is_binding(self, binding: Any) -> bool:
        """Whether ``binding`` is a non-empty named binding set."""
        if not isinstance(binding, Mapping) or not binding:
            return False
        return not self._is_numeric(next(iter(binding)))

    def get_cypher_query(self, statement: str, bindings: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """The statement/parameters pair as it is sent to the server."""
        return {"statement": statement, "parameters": self.prepare_bindings(bindings)}

    # =============================================================================
    # TRANSACTIONS
    # =============================================================================

    async def begin_transaction(self) -> None:
        """Open a transaction, or just count a nested one."""
        self._transactions += 1
        if self._transactions > 1:
            return

        try:
            session = await self.get_client()
            self._transaction = await session.begin_transaction()
        except Exception as e:
            self._transactions -= 1
            raise QueryExecutionError("BEGIN", None, e) from e
        logger.debug("Transaction started")

    async def commit(self) -> None:
        """
        Commit once the outermost transaction level is reached.

        Raises:
            TransactionError: If no transaction is open
        """
        if self._transactions == 0:
            raise TransactionError("There is no active transaction to commit.")

        self._transactions -= 1
        if self._transactions > 0:
            return

        transaction, self._transaction = self._transaction, None
        if transaction is None:
            return
        try:
            await transaction.commit()
        except Exception as e:
            raise QueryExecutionError("COMMIT", None, e) from e
        logger.debug("Transaction committed")

    async def rollback(self) -> None:
        """Roll back the whole transaction whatever the nesting depth."""
        if self._transactions == 0:
            return

        transaction, self._transaction = self._transaction, None
        self._transactions = 0
        if transaction is None:
            return
        try:
            await transaction.rollback()
        except Exception as e:
            raise QueryExecutionError("ROLLBACK", None, e) from e
        logger.debug("Transaction rolled back")

    async def transaction(self, callback: Callable[[GraphConnection], Any]) -> Any:
        """
        Run ``callback`` inside a transaction.

        Commits when the callback returns and rolls back (then re-raises) when
        it raises. The callback may be a coroutine function.
        """
        await self.begin_transaction()
        try:
            result = await _maybe_await(callback(self))
            await self.commit()
        except Exception:
            await self.rollback()
            raise
        return result

    def transaction_level(self) -> int:
        return self._transactions

    # =============================================================================
    # PRETENDING & QUERY LOG
    # =============================================================================

    async def pretend(self, callback: Callable[[GraphConnection], Any]) -> List[Dict[str, Any]]:
        """
        Run ``callback`` without touching the database.

        Returns:
            The statements that would have been executed
        """
        logging_queries = self._logging_queries
        self.enable_query_log()
        self._pretending = True
        self._query_log = []
        try:
            await _maybe_await(callback(self))
        finally:
            self._pretending = False
            self._logging_queries = logging_queries
        return self._query_log

    def pretending(self) -> bool:
        return self._pretending

    def log_query(self, query: str, bindings: Optional[Mapping[str, Any]] = None, elapsed: Optional[float] = None) -> None:
        logger.debug("Cypher: %s | bindings: %s | %s ms", query, bindings or {}, elapsed)
        if self._logging_queries:
            self._query_log.append({"query": query, "bindings": bindings or {}, "time": elapsed})

    def enable_query_log(self) -> None:
        self._logging_queries = True

    def disable_query_log(self) -> None:
        self._logging_queries = False

    def logging_queries(self) -> bool:
        return self._logging_queries

    def get_query_log(self) -> List[Dict[str, Any]]:
        return self._query_log

    def flush_query_log(self) -> None:
        self._query_log = []

    # =============================================================================
    # CONFIGURATION
    # =============================================================================

    def get_config(self, option: Optional[str] = None) -> Any:
        if option is None:
            return self.config.model_dump()
        return getattr(self.config, option, None)

    def get_scheme(self) -> str:
        return self.config.scheme

    def get_host(self) -> str:
        return self.config.host

    def get_port(self) -> int:
        return self.config.port

    def get_username(self) -> Optional[str]:
        return self.config.username

    def get_password(self) -> Optional[str]:
        return self.config.password

    def get_name(self) -> Optional[str]:
        return self.config.name

    def get_database(self) -> str:
        return self.config.database

    def get_driver_name(self) -> str:
        return "neo4j"
