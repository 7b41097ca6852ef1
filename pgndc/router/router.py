import asyncio
from asyncio import Task
from contextlib import asynccontextmanager

import asyncpg
from fastapi import APIRouter, FastAPI, HTTPException
from fastapi.responses import JSONResponse

from pgndc.configuration import IntrospectionOptions
from pgndc.introspection.introspection import make_introspection_query
from pgndc.logging_config import get_logger
from pgndc.metadata import Metadata
from pgndc.router.watch import watch_schema
from pgndc.schema import build_schema

logger = get_logger(__name__)


class SchemaRouter(APIRouter):
    """
    Serves the connector schema of one database.

    The schema is introspected when the application starts and again whenever
    the database reports a DDL change, so ``GET /schema`` always reflects the
    last consistent snapshot.
    """

    def __init__(self,
                 connection_str: str | None = None,
                 options: IntrospectionOptions | None = None,
                 watch: bool = True,
                 **kwargs):
        super().__init__(**kwargs, lifespan=self.lifespan)

        self.connection_str = connection_str
        self.options = options or IntrospectionOptions()
        self.watch_changes = watch
        self.check_connection_interval = 5
        self.reconnect_delay = 5

        self.metadata: Metadata | None = None
        self._pool: asyncpg.Pool | None = None
        self._watcher: Task | None = None

        self.add_api_route("/schema", self.get_schema, methods=["GET"])
        self.add_api_route("/configuration", self.get_configuration, methods=["GET"])

    @asynccontextmanager
    async def lifespan(self, app: FastAPI):
        self._pool = await asyncpg.create_pool(dsn=self.connection_str)

        logger.info("Starting SchemaRouter")
        await self.start()
        if self.watch_changes:
            await self.watch()

        yield
        if self._watcher is not None:
            self._watcher.cancel()
        await asyncio.wait_for(self._pool.close(), timeout=10)

    async def get_schema(self):
        if self.metadata is None:
            raise HTTPException(status_code=503, detail="Schema has not been introspected yet")
        return JSONResponse(self.metadata.model_dump(mode="json", by_alias=True))

    async def get_configuration(self):
        return JSONResponse(self.options.model_dump(mode="json", by_alias=True))

    async def watch_schema(self):
        while True:
            try:
                await watch_schema(self._pool, self.restart, self.check_connection_interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Schema watch lost: %s", e)
                await asyncio.sleep(self.reconnect_delay)

    async def watch(self):
        if self._watcher is not None:
            self._watcher.cancel()
        self._watcher = asyncio.create_task(self.watch_schema())

    async def restart(self, connection, pid, channel, payload):
        logger.info("Schema change notified on %s, introspecting again", channel)
        logger.debug("Notification payload: %s", payload)
        await self.start()

    async def start(self):
        async with self._pool.acquire() as conn:
            snapshot = await make_introspection_query(conn)
        self.metadata = build_schema(snapshot, self.options)
