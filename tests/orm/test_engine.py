# tests/orm/test_engine.py

import asyncio
import logging
import re
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from neo4j import AsyncDriver, AsyncSession
from neo4j.exceptions import ServiceUnavailable

from neoquery.config import ConnectionConfig
from neoquery.orm.engine import DRIVER_DEFAULTS, GraphEngine, create_graph_engine

URI = "bolt://enginehost:7687"
AUTH = ("engineuser", "enginepass")
DATABASE = "enginedb"
ENGINE_LOGGER = "neoquery.orm.engine"


# --- Fixtures ---

@pytest_asyncio.fixture
async def engine():
    """An unconnected engine, closed again after the test."""
    engine = GraphEngine(uri=URI, auth=AUTH, database=DATABASE)
    yield engine
    await engine.close()
    assert not engine.connected


@pytest.fixture
def driver():
    """
    Patches the driver factory; yields the factory and the driver it returns.

    ``driver.session()`` answers with ``driver.fake_session``.
    """
    instance = AsyncMock(spec=AsyncDriver)
    instance.fake_session = AsyncMock(spec=AsyncSession)
    instance.session = MagicMock(return_value=instance.fake_session)

    with patch("neo4j.AsyncGraphDatabase.driver", return_value=instance) as factory:
        yield factory, instance


# --- Test Cases ---

class TestConstruction:
    def test_defaults(self):
        engine = GraphEngine(uri=URI)

        assert engine.auth is None
        assert engine.default_database == "neo4j"
        assert engine.driver_config == DRIVER_DEFAULTS
        assert not engine.connected

    def test_driver_config_overrides_defaults(self):
        engine = GraphEngine(uri=URI, driver_config={"user_agent": "reports", "max_connection_pool_size": 10})

        assert engine.driver_config["user_agent"] == "reports"
        assert engine.driver_config["max_connection_pool_size"] == 10
        assert engine.driver_config["keep_alive"] is True

    def test_from_config(self):
        config = ConnectionConfig(
            scheme="neo4j",
            host="graph.local",
            port=7688,
            username="neo4j",
            password="secret",
            database="people",
            driver_config={"max_connection_pool_size": 5}
        )
        engine = GraphEngine.from_config(config)

        assert engine.uri == "neo4j://graph.local:7688"
        assert engine.auth == ("neo4j", "secret")
        assert engine.default_database == "people"
        assert engine.driver_config["max_connection_pool_size"] == 5

    def test_from_config_without_credentials(self):
        engine = GraphEngine.from_config(ConnectionConfig())
        assert engine.auth is None
        assert engine.uri == "bolt://localhost:7687"

    def test_create_graph_engine(self, caplog):
        caplog.set_level(logging.DEBUG, logger=ENGINE_LOGGER)

        engine = create_graph_engine(URI, AUTH, database="other", keep_alive=False)

        assert engine.default_database == "other"
        assert engine.driver_config["keep_alive"] is False
        assert URI in caplog.text


@pytest.mark.asyncio
class TestConnect:
    async def test_connect_opens_and_verifies(self, engine, driver, caplog):
        factory, instance = driver
        caplog.set_level(logging.INFO, logger=ENGINE_LOGGER)

        await engine.connect()

        factory.assert_called_once_with(URI, auth=AUTH, **engine.driver_config)
        instance.verify_connectivity.assert_awaited_once()
        assert engine.connected
        assert engine.driver is instance
        assert f"Connected to {URI}" in caplog.text

    async def test_connect_twice_opens_once(self, engine, driver):
        factory, instance = driver

        await engine.connect()
        await engine.connect()

        factory.assert_called_once()
        instance.verify_connectivity.assert_awaited_once()

    async def test_concurrent_connects_open_once(self, engine, driver):
        factory, _ = driver

        await asyncio.gather(*(engine.connect() for _ in range(5)))

        factory.assert_called_once()
        assert engine.connected

    async def test_factory_failure(self, engine, driver, caplog):
        factory, _ = driver
        factory.side_effect = ServiceUnavailable("no route")
        caplog.set_level(logging.INFO, logger=ENGINE_LOGGER)

        with pytest.raises(ConnectionError, match=re.escape(f"Could not reach Neo4j at {URI}: no route")):
            await engine.connect()

        assert not engine.connected
        assert f"Connection to {URI} failed: no route" in caplog.text

    async def test_verification_failure(self, engine, driver, caplog):
        _, instance = driver
        instance.verify_connectivity.side_effect = ServiceUnavailable("unreachable")
        caplog.set_level(logging.INFO, logger=ENGINE_LOGGER)

        with pytest.raises(ConnectionError) as exc_info:
            await engine.connect()

        assert isinstance(exc_info.value.__cause__, ServiceUnavailable)
        assert not engine.connected
        assert any(record.levelno == logging.ERROR for record in caplog.records)


@pytest.mark.asyncio
class TestClose:
    async def test_close_connected_engine(self, engine, driver, caplog):
        _, instance = driver
        caplog.set_level(logging.INFO, logger=ENGINE_LOGGER)
        await engine.connect()

        await engine.close()

        instance.close.assert_awaited_once()
        assert not engine.connected
        assert f"Closing connection to {URI}" in caplog.text

    async def test_close_unopened_engine(self, engine, caplog):
        caplog.set_level(logging.INFO, logger=ENGINE_LOGGER)

        await engine.close()

        assert "Closing" not in caplog.text
        assert not engine.connected

    async def test_close_half_open_driver(self, engine, driver, caplog):
        _, instance = driver
        caplog.set_level(logging.INFO, logger=ENGINE_LOGGER)
        engine._driver = instance

        await engine.close()

        instance.close.assert_awaited_once()
        assert "never finished connecting" in caplog.text

    async def test_repeated_and_concurrent_close(self, engine, driver):
        _, instance = driver
        await engine.connect()

        await asyncio.gather(*(engine.close() for _ in range(5)))
        await engine.close()

        instance.close.assert_awaited_once()


@pytest.mark.asyncio
class TestSessions:
    async def test_sessions_use_default_or_given_database(self, engine, driver):
        _, instance = driver
        await engine.connect()

        assert engine.get_session() is instance.fake_session
        instance.session.assert_called_with(database=DATABASE)

        engine.get_session("reports")
        instance.session.assert_called_with(database="reports")

    async def test_session_before_connect(self, engine):
        with pytest.raises(ConnectionError, match="is not connected"):
            engine.get_session()

    async def test_driver_before_connect(self, engine):
        with pytest.raises(ConnectionError, match="is not connected"):
            engine.driver


@pytest.mark.asyncio
class TestContextManager:
    async def test_connects_and_closes(self, engine, driver):
        _, instance = driver

        async with engine as entered:
            assert entered is engine
            assert engine.connected

        assert not engine.connected
        instance.close.assert_awaited_once()

    async def test_connect_failure_skips_body(self, engine, driver):
        _, instance = driver
        instance.verify_connectivity.side_effect = ServiceUnavailable("down")
        body_ran = False

        with pytest.raises(ConnectionError, match="down"):
            async with engine:
                body_ran = True

        assert not body_ran
        instance.close.assert_not_awaited()

    async def test_error_in_body_still_closes(self, engine, driver):
        _, instance = driver

        with pytest.raises(KeyError):
            async with engine:
                raise KeyError("boom")

        instance.close.assert_awaited_once()
