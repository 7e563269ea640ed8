"""Command-line interface for the Funding Platform.

This module provides the CLI commands for running and managing
the platform service.
"""

import asyncio
import time
from typing import NoReturn

import click

from funding_platform import __version__
from funding_platform.core.config import get_settings
from funding_platform.core.logging import configure_logging, get_logger


@click.group()
@click.version_option(version=__version__, prog_name="Funding Platform")
def cli() -> None:
    """Funding Platform - database and token lifecycle service.

    Settings are read from FUNDING_* environment variables and .env.
    """


@cli.command()
@click.option("--host", type=str, default=None, help="Host to bind to (overrides config)")
@click.option("--port", type=int, default=None, help="Port to bind to (overrides config)")
@click.option(
    "--workers",
    type=int,
    default=None,
    help="Number of worker processes (overrides config)",
)
@click.option(
    "--reload",
    is_flag=True,
    default=False,
    help="Enable auto-reload for development",
)
def serve(host: str | None, port: int | None, workers: int | None, reload: bool) -> None:
    """Start the API server."""
    import uvicorn

    settings = get_settings()

    bind_host = host or settings.host
    bind_port = port or settings.port
    bind_workers = workers or settings.workers

    if bind_workers > 1 and settings.database_url.startswith("sqlite"):
        click.echo(
            "Error: SQLite does not support multiple worker processes. "
            "Use --workers 1 or switch to PostgreSQL.",
            err=True,
        )
        raise SystemExit(1)

    configure_logging(settings)
    logger = get_logger(__name__)
    logger.info(
        "Starting Funding Platform server",
        host=bind_host,
        port=bind_port,
        workers=bind_workers,
        reload=reload,
        environment=settings.environment,
    )

    uvicorn.run(
        "funding_platform.infrastructure.api.app:create_app",
        factory=True,
        host=bind_host,
        port=bind_port,
        workers=1 if reload else bind_workers,
        reload=reload,
        log_level=settings.log_level.lower(),
        access_log=True,
    )


@cli.command("init-db")
@click.option(
    "--force",
    is_flag=True,
    default=False,
    help="Skip confirmation and allow running in production",
)
def init_db(force: bool) -> None:
    """Create the database tables.

    Use this only in development. In production, manage the schema with
    migrations.
    """
    from funding_platform.infrastructure.persistence.database import (
        DatabaseManager,
        init_database,
    )

    settings = get_settings()
    configure_logging(settings)

    if settings.is_production and not force:
        click.echo(
            "ERROR: Running in production mode. Use migrations instead of init-db.",
            err=True,
        )
        raise SystemExit(1)

    if not force:
        click.confirm(
            "This will create all database tables. Continue?",
            abort=True,
            default=False,
        )

    async def initialize() -> None:
        db = DatabaseManager(settings)
        try:
            await init_database(db, settings)
            if settings.is_production:
                await db.create_tables()
            click.echo("Database initialized successfully.")
        finally:
            await db.close_pool()

    asyncio.run(initialize())


@cli.command("check-db")
def check_db() -> None:
    """Probe database connectivity. Exits with status 1 on failure."""
    from funding_platform.infrastructure.persistence.database import DatabaseManager

    settings = get_settings()
    configure_logging(settings)

    async def check() -> bool:
        db = DatabaseManager(settings)
        try:
            return await db.health_check()
        finally:
            await db.close_pool()

    if asyncio.run(check()):
        click.echo("Database connection OK.")
    else:
        click.echo("Database connection FAILED.", err=True)
        raise SystemExit(1)


@cli.command("purge-tokens")
def purge_tokens() -> None:
    """Delete expired token families, revocations and sessions.

    Only meaningful with the database revocation backend; the in-memory
    store lives inside the server process.
    """
    from funding_platform.infrastructure.persistence.database import DatabaseManager
    from funding_platform.infrastructure.persistence.repositories import (
        SessionRepository,
        SqlRevocationStore,
    )

    settings = get_settings()
    configure_logging(settings)

    if settings.revocation_backend != "database":
        click.echo(
            "ERROR: purge-tokens requires FUNDING_REVOCATION_BACKEND=database.",
            err=True,
        )
        raise SystemExit(1)

    async def purge() -> tuple[int, int]:
        db = DatabaseManager(settings)
        try:
            now = int(time.time())
            revocations = await SqlRevocationStore(db).purge_expired(now)
            sessions = await SessionRepository(db).delete_expired(now)
            return revocations, sessions
        finally:
            await db.close_pool()

    revocations, sessions = asyncio.run(purge())
    click.echo(f"Purged {revocations} token entries and {sessions} sessions.")


@cli.command()
def info() -> None:
    """Display configuration and system information."""
    settings = get_settings()

    click.echo(f"""
{settings.app_name} v{settings.app_version}
{'=' * 40}

Configuration:
  Environment:  {settings.environment}
  Debug:        {settings.debug}
  API Prefix:   {settings.api_prefix}

Server:
  Host:         {settings.host}
  Port:         {settings.port}
  Workers:      {settings.workers}

Database:
  Pool Size:    {settings.db_pool_size}
  Pool Timeout: {settings.db_pool_timeout}s
  SSL:          {settings.db_ssl}

Tokens:
  Access TTL:   {settings.access_token_expire_minutes} minutes
  Refresh TTL:  {settings.refresh_token_expire_days} days
  Rotations:    {settings.refresh_max_rotations}
  Revocation:   {settings.revocation_backend}

Sessions:
  Inactivity:   {settings.session_inactivity_timeout_minutes} minutes
  Absolute:     {settings.session_absolute_timeout_hours} hours

Logging:
  Level:        {settings.log_level}
  Format:       {settings.log_format}
""")


def main() -> NoReturn:
    """Main entry point for the CLI.

    Called by the `funding-platform` command and `python -m funding_platform`.
    """
    cli()


if __name__ == "__main__":
    main()
