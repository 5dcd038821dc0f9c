# src/neoquery/orm/engine.py
"""
GraphEngine - driver lifecycle for one Neo4j server.

The engine owns the AsyncDriver: it opens it on demand, verifies the server
answers, and hands out sessions. Statement execution lives one level up in
GraphConnection.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple, cast

from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncSession

from neoquery.config import ConnectionConfig

logger = logging.getLogger(__name__)

DRIVER_DEFAULTS: Dict[str, Any] = {
    "max_connection_lifetime": 3600 * 24 * 30,  # seconds
    "keep_alive": True,
    "user_agent": "neoquery/0.1.0",
}


class GraphEngine:
    """
    Lazily opened AsyncDriver plus a default database for its sessions.

    Example:
        ```python
        async with GraphEngine("bolt://localhost:7687", ("neo4j", "secret")) as engine:
            session = engine.get_session()
        ```
    """

    def __init__(
        self,
        uri: str,
        auth: Optional[Tuple[str, str]] = None,
        database: str = "neo4j",
        driver_config: Optional[Dict[str, Any]] = None
    ):
        """
        Args:
            uri: Server URI, e.g. ``bolt://localhost:7687``
            auth: ``(username, password)``, or None for a server without auth
            database: Database used by sessions that do not name one
            driver_config: Keyword arguments for the driver, merged over DRIVER_DEFAULTS
        """
        self.uri = uri
        self.auth = auth
        self.default_database = database
        self.driver_config: Dict[str, Any] = {**DRIVER_DEFAULTS, **(driver_config or {})}

        self._driver: Optional[AsyncDriver] = None
        self._is_connected = False
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: ConnectionConfig) -> "GraphEngine":
        return cls(
            uri=config.uri,
            auth=config.auth,
            database=config.database,
            driver_config=config.driver_config
        )

    @property
    def connected(self) -> bool:
        return self._is_connected

    @property
    def driver(self) -> AsyncDriver:
        """The open driver; raises ConnectionError before ``connect()``."""
        return self._require_driver()

    def _require_driver(self) -> AsyncDriver:
        if self._driver is None or not self._is_connected:
            raise ConnectionError(f"Engine for {self.uri} is not connected; await connect() first.")
        return self._driver

    async def _open(self) -> AsyncDriver:
        driver = AsyncGraphDatabase.driver(self.uri, auth=self.auth, **self.driver_config)
        await driver.verify_connectivity()
        return driver

    async def connect(self) -> None:
        """
        Open and verify the driver. Calling it again while connected does nothing.

        Raises:
            ConnectionError: If the driver cannot be created or the server does not answer
        """
        async with self._lock:
            if self._is_connected:
                return

            logger.info("Connecting to %s (database '%s')", self.uri, self.default_database)
            try:
                self._driver = await self._open()
            except Exception as e:
                self._driver = None
                logger.error("Connection to %s failed: %s", self.uri, e)
                raise ConnectionError(f"Could not reach Neo4j at {self.uri}: {e}") from e

            self._is_connected = True
            logger.info("Connected to %s", self.uri)

    async def close(self) -> None:
        async with self._lock:
            driver, self._driver = self._driver, None
            was_connected, self._is_connected = self._is_connected, False
            if driver is None:
                return

            if was_connected:
                logger.info("Closing connection to %s", self.uri)
            else:
                logger.warning("Closing driver for %s that never finished connecting", self.uri)
            await driver.close()

    def get_session(self, database: Optional[str] = None) -> AsyncSession:
        """A new session on ``database``, or on the default database."""
        driver = self._require_driver()
        return cast(AsyncSession, driver.session(database=database or self.default_database))

    async def __aenter__(self) -> "GraphEngine":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


def create_graph_engine(
    uri: str,
    auth: Optional[Tuple[str, str]] = None,
    database: str = "neo4j",
    **driver_config: Any
) -> GraphEngine:
    """
    Build an unconnected engine; extra keyword arguments go to the driver.

    GraphConnection connects it on first use, otherwise call ``connect()`` or
    use it with ``async with``.
    """
    logger.debug("Creating engine for %s (database '%s')", uri, database)
    return GraphEngine(uri=uri, auth=auth, database=database, driver_config=driver_config)
