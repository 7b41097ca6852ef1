import asyncio
from typing import Awaitable, Callable

import asyncpg

from pgndc.logging_config import get_logger

logger = get_logger(__name__)

WATCH_CHANNEL = "pgndc_watch"

WATCH_SQL = """
drop schema if exists pgndc_watch cascade;

create schema pgndc_watch;

create function pgndc_watch.notify_watchers_ddl() returns event_trigger as $$
begin
  perform pg_notify(
    'pgndc_watch',
    json_build_object(
      'type',
      'ddl',
      'payload',
      (select json_agg(json_build_object('schema', schema_name, 'command', command_tag)) from pg_event_trigger_ddl_commands() as x)
    )::text
  );
end;
$$ language plpgsql;

create function pgndc_watch.notify_watchers_drop() returns event_trigger as $$
begin
  perform pg_notify(
    'pgndc_watch',
    json_build_object(
      'type',
      'drop',
      'payload',
      (select json_agg(distinct x.schema_name) from pg_event_trigger_dropped_objects() as x)
    )::text
  );
end;
$$ language plpgsql;

create event trigger pgndc_watch_ddl
  on ddl_command_end
  when tag in (
    -- Ref: https://www.postgresql.org/docs/current/event-trigger-matrix.html
    'ALTER AGGREGATE',
    'ALTER DOMAIN',
    'ALTER EXTENSION',
    'ALTER FOREIGN TABLE',
    'ALTER FUNCTION',
    'ALTER MATERIALIZED VIEW',
    'ALTER OPERATOR',
    'ALTER SCHEMA',
    'ALTER TABLE',
    'ALTER TYPE',
    'ALTER VIEW',
    'COMMENT',
    'CREATE AGGREGATE',
    'CREATE CAST',
    'CREATE DOMAIN',
    'CREATE EXTENSION',
    'CREATE FOREIGN TABLE',
    'CREATE FUNCTION',
    'CREATE MATERIALIZED VIEW',
    'CREATE OPERATOR',
    'CREATE SCHEMA',
    'CREATE TABLE',
    'CREATE TABLE AS',
    'CREATE TYPE',
    'CREATE VIEW',
    'DROP AGGREGATE',
    'DROP CAST',
    'DROP DOMAIN',
    'DROP EXTENSION',
    'DROP FOREIGN TABLE',
    'DROP FUNCTION',
    'DROP MATERIALIZED VIEW',
    'DROP OPERATOR',
    'DROP OWNED',
    'DROP SCHEMA',
    'DROP TABLE',
    'DROP TYPE',
    'DROP VIEW',
    'SELECT INTO'
  )
  execute procedure pgndc_watch.notify_watchers_ddl();

create event trigger pgndc_watch_drop
  on sql_drop
  execute procedure pgndc_watch.notify_watchers_drop();
"""

SchemaChangeCallback = Callable[[asyncpg.Connection, int, str, str], Awaitable[None]]


async def watch_schema(
        pool: asyncpg.Pool,
        on_change: SchemaChangeCallback,
        check_connection_interval: int = 5,
):
    """
    Install the DDL event triggers and call ``on_change`` for each notification.

    Holds one pooled connection for as long as it runs and pings it every
    ``check_connection_interval`` seconds, so a lost connection surfaces as
    an exception to the caller. Installing event triggers needs superuser.
    """
    async with pool.acquire() as conn:
        await conn.execute(WATCH_SQL)
        await conn.add_listener(WATCH_CHANNEL, on_change)
        logger.info("Watching schema changes on channel %s", WATCH_CHANNEL)
        try:
            while True:
                await asyncio.sleep(check_connection_interval)
                await conn.execute("SELECT 1")
        finally:
            await conn.remove_listener(WATCH_CHANNEL, on_change)
