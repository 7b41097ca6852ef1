"""Command-line interface for pgndc."""

import asyncio
import os
from pathlib import Path

import asyncpg
import click

from pgndc.configuration import CONFIGURATION_FILENAME, ConnectorConfiguration
from pgndc.logging_config import get_logger
from pgndc.schema import introspect

logger = get_logger(__name__)


def context_path_option(func):
    return click.option(
        "--context-path",
        type=click.Path(file_okay=False, path_type=Path),
        default=Path.cwd,
        show_default="current directory",
        help="Directory holding configuration.json.",
    )(func)


async def update_configuration(context_path: Path) -> ConnectorConfiguration:
    path = context_path / CONFIGURATION_FILENAME
    configuration = ConnectorConfiguration.load(path)

    conn = await asyncpg.connect(dsn=configuration.resolve_connection_uri())
    try:
        configuration = await introspect(conn, configuration)
    finally:
        await conn.close()

    configuration.write(path)
    return configuration


@click.group()
@click.version_option(version="0.1.0", prog_name="pgndc")
def cli():
    """pgndc - PostgreSQL schema introspection for data connectors.

    \b
    Quick start:
        pgndc initialize --context-path ./connector
        CONNECTION_URI=postgres://... pgndc update --context-path ./connector
        pgndc serve --context-path ./connector
    """
    pass


@cli.command()
@context_path_option
def initialize(context_path: Path):
    """Write an empty configuration into an empty directory."""
    context_path.mkdir(parents=True, exist_ok=True)
    if any(context_path.iterdir()):
        raise click.ClickException("directory is not empty")

    ConnectorConfiguration.empty().write(context_path / CONFIGURATION_FILENAME)
    click.echo(f"Wrote {context_path / CONFIGURATION_FILENAME}")


@cli.command()
@context_path_option
def update(context_path: Path):
    """Introspect the database and refresh the configuration metadata."""
    if not (context_path / CONFIGURATION_FILENAME).exists():
        raise click.ClickException(f"{CONFIGURATION_FILENAME} not found in {context_path}")

    try:
        configuration = asyncio.run(update_configuration(context_path))
    except (ValueError, OSError, asyncpg.PostgresError) as e:
        logger.error("Introspection failed: %s", e)
        raise click.ClickException(str(e))

    metadata = configuration.metadata
    click.echo(
        f"Updated {context_path / CONFIGURATION_FILENAME}: "
        f"{len(metadata.tables)} tables, "
        f"{len(metadata.aggregate_functions)} aggregate types, "
        f"{len(metadata.comparison_functions)} comparison types"
    )


@cli.command()
@context_path_option
@click.option("--host", default="0.0.0.0", show_default=True, help="Interface to bind.")
@click.option("--port", default=8000, show_default=True, type=int, help="Port to listen on.")
def serve(context_path: Path, host: str, port: int):
    """Serve the introspected schema over HTTP."""
    import uvicorn

    os.environ["PGNDC_CONTEXT_PATH"] = str(context_path)
    uvicorn.run("pgndc.api:app", host=host, port=port, log_level="info")


if __name__ == "__main__":
    cli()
