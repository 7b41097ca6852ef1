"""
Unit tests for pgndc.router.router module.
Tests the SchemaRouter lifecycle and endpoints.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from pgndc.configuration import IntrospectionOptions
from pgndc.router.router import SchemaRouter
from pgndc.router.watch import WATCH_CHANNEL, WATCH_SQL, watch_schema


@pytest.fixture
def users_snapshot(catalog):
    users = catalog.relation("users", [("id", "int4", {"attnotnull": True}), ("name", "text")])
    catalog.primary_key(users, "users_pkey", [1])
    catalog.operator("=", "int4", "int4")
    return catalog.build()


def make_app(router: SchemaRouter) -> FastAPI:
    app = FastAPI()
    app.include_router(router)
    return app


class TestSchemaRouter:
    """Test the SchemaRouter class functionality."""

    def test_router_initialization(self):
        """Test SchemaRouter initialization."""
        router = SchemaRouter(connection_str="postgres://test")

        assert router.connection_str == "postgres://test"
        assert router.options == IntrospectionOptions()
        assert router.metadata is None
        assert router.watch_changes is True
        assert {route.path for route in router.routes} == {"/schema", "/configuration"}

    @pytest.mark.asyncio
    async def test_lifespan(self, mock_asyncpg_pool):
        """Test that the lifespan opens the pool, introspects and closes the pool."""
        router = SchemaRouter(connection_str="postgres://test", watch=False)

        with patch("asyncpg.create_pool", new=AsyncMock(return_value=mock_asyncpg_pool)) as mock_create_pool:
            with patch.object(router, "start", new_callable=AsyncMock) as mock_start:
                async with router.lifespan(FastAPI()):
                    mock_create_pool.assert_called_once_with(dsn="postgres://test")
                    mock_start.assert_called_once()

        mock_asyncpg_pool.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_lifespan_starts_and_cancels_watcher(self, mock_asyncpg_pool):
        """Test that the schema watcher lives as long as the application."""
        router = SchemaRouter(connection_str="postgres://test")

        with patch("asyncpg.create_pool", new=AsyncMock(return_value=mock_asyncpg_pool)):
            with patch.object(router, "start", new_callable=AsyncMock):
                with patch.object(router, "watch_schema", new_callable=AsyncMock):
                    async with router.lifespan(FastAPI()):
                        watcher = router._watcher
                        assert watcher is not None
                    await asyncio.gather(watcher, return_exceptions=True)

        assert watcher.done()

    @pytest.mark.asyncio
    async def test_start_builds_schema(self, mock_asyncpg_pool, users_snapshot):
        """Test that start introspects and assembles the schema."""
        router = SchemaRouter(connection_str="postgres://test", watch=False)
        router._pool = mock_asyncpg_pool

        with patch("pgndc.router.router.make_introspection_query",
                   new=AsyncMock(return_value=users_snapshot)) as mock_introspect:
            await router.start()

        mock_introspect.assert_called_once()
        assert list(router.metadata.tables) == ["users"]

    @pytest.mark.asyncio
    async def test_restart(self):
        """Test that a change notification introspects again."""
        router = SchemaRouter(connection_str="postgres://test", watch=False)

        with patch.object(router, "start", new_callable=AsyncMock) as mock_start:
            await router.restart(MagicMock(), 1234, WATCH_CHANNEL, '{"type": "ddl"}')

        mock_start.assert_called_once()

    @pytest.mark.asyncio
    async def test_watch_reconnects(self):
        """Test that a lost watch connection is retried."""
        router = SchemaRouter(connection_str="postgres://test")
        router.reconnect_delay = 0
        failing = AsyncMock(side_effect=[ConnectionError("lost"), asyncio.CancelledError()])

        with patch("pgndc.router.router.watch_schema", new=failing):
            with pytest.raises(asyncio.CancelledError):
                await router.watch_schema()

        assert failing.call_count == 2


class TestSchemaRouterEndpoints:
    """Test the HTTP surface of the router."""

    def test_schema_endpoint(self, mock_asyncpg_pool, users_snapshot):
        """Test serving the introspected schema."""
        router = SchemaRouter(connection_str="postgres://test", watch=False)

        with patch("asyncpg.create_pool", new=AsyncMock(return_value=mock_asyncpg_pool)):
            with patch("pgndc.router.router.make_introspection_query",
                       new=AsyncMock(return_value=users_snapshot)):
                with TestClient(make_app(router)) as client:
                    response = client.get("/schema")

        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"Tables", "AggregateFunctions", "ComparisonFunctions"}
        assert data["Tables"]["users"]["uniquenessConstraints"] == {"users_pkey": ["id"]}
        assert data["Tables"]["users"]["columns"]["id"]["nullable"] is False
        assert data["ComparisonFunctions"]["int4"]["_eq"] == {
            "operatorName": "=", "argumentType": "int4", "isInfix": True
        }

    def test_schema_not_ready(self):
        """Test that the schema endpoint is unavailable before introspection."""
        router = SchemaRouter(connection_str="postgres://test", watch=False)
        client = TestClient(make_app(router))

        response = client.get("/schema")

        assert response.status_code == 503

    def test_configuration_endpoint(self):
        """Test serving the introspection options."""
        options = IntrospectionOptions(unqualified_schemas=["app"])
        router = SchemaRouter(connection_str="postgres://test", options=options, watch=False)
        client = TestClient(make_app(router))

        response = client.get("/configuration")

        assert response.status_code == 200
        assert response.json()["unqualifiedSchemas"] == ["app"]
        assert response.json()["comparisonOperatorMapping"][0] == {"operatorName": "=", "exposedName": "_eq"}


class TestWatchSchema:
    """Test the DDL watcher."""

    @pytest.mark.asyncio
    async def test_installs_triggers_and_listens(self, mock_asyncpg_pool, mock_asyncpg_connection):
        """Test that the watcher installs the triggers and subscribes to the channel."""
        mock_asyncpg_connection.add_listener = AsyncMock()
        mock_asyncpg_connection.remove_listener = AsyncMock()
        on_change = AsyncMock()

        with patch("asyncio.sleep", side_effect=[None, asyncio.CancelledError()]):
            with pytest.raises(asyncio.CancelledError):
                await watch_schema(mock_asyncpg_pool, on_change, check_connection_interval=1)

        mock_asyncpg_connection.execute.assert_any_call(WATCH_SQL)
        mock_asyncpg_connection.execute.assert_any_call("SELECT 1")
        mock_asyncpg_connection.add_listener.assert_called_once_with(WATCH_CHANNEL, on_change)
        mock_asyncpg_connection.remove_listener.assert_called_once_with(WATCH_CHANNEL, on_change)

    def test_watch_sql_uses_channel(self):
        """Test that the triggers notify the watched channel."""
        assert f"pg_notify(\n    '{WATCH_CHANNEL}'" in WATCH_SQL
        assert "create event trigger pgndc_watch_ddl" in WATCH_SQL
