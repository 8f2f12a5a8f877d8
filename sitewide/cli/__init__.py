#!/usr/bin/env python3
"""
Sitewide Aggregator CLI
-----------------------

Command-line interface for operating the sitewide mirror.

This module provides the main CLI group and the shared context setup
(configuration, logger, database, sync engine) for all commands.

Command Structure:
    - Lifecycle (init, resync, drop)
    - Incremental sync (sync-post, delete-post, sync-comment)
    - Inspection (tenants, tags, stats, health)

Usage:
    # Create the mirror tables and run the initial resync
    sitewide init

    # Mirror one edited post
    sitewide sync-post blog-a 42

    # Check the tag refcount invariant
    sitewide health
"""
import click
import logging
from pathlib import Path

from sitewide.core.config import AggregationConfig, load_config
from sitewide.core.logging_manager import SitewideLogger
from sitewide.core.paths import CONFIG_PATH
from sitewide.aggregation import MemoryCache, SyncEngine
from sitewide.database import SitewideDB


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(),
    default=str(CONFIG_PATH),
    help="Path to the YAML configuration file",
)
@click.option(
    "--db-path",
    type=click.Path(),
    default=None,
    help="Path to the sitewide database (overrides the config)",
)
@click.option(
    "--log-dir",
    type=click.Path(),
    default=None,
    help="Path to log directory (overrides the config)",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Show detailed errors and tracebacks",
)
@click.pass_context
def cli(ctx, config_path, db_path, log_dir, verbose):
    """Sitewide Aggregator CLI"""

    # Suppress Alembic INFO logging by default
    logging.getLogger("alembic").setLevel(logging.WARNING)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config_path)
    ctx.obj["db_path"] = Path(db_path) if db_path else None
    ctx.obj["log_dir"] = Path(log_dir) if log_dir else None
    ctx.obj["verbose"] = verbose


def get_config(ctx) -> AggregationConfig:
    """Load the configuration once per invocation, applying CLI overrides."""
    if "config" not in ctx.obj:
        config = load_config(ctx.obj["config_path"])
        if ctx.obj.get("db_path"):
            config.database = ctx.obj["db_path"]
        if ctx.obj.get("log_dir"):
            config.log_dir = ctx.obj["log_dir"]
        ctx.obj["config"] = config
        if config.log_dir:
            ctx.obj["logger"] = SitewideLogger(Path(config.log_dir), component_name="cli")
    return ctx.obj["config"]


def get_db(ctx) -> SitewideDB:
    """Get or create database instance from context."""
    if "db" not in ctx.obj:
        config = get_config(ctx)
        ctx.obj["db"] = SitewideDB(config.database, logger=ctx.obj.get("logger"))
    return ctx.obj["db"]


def get_engine(ctx) -> SyncEngine:
    """Get or create the sync engine from context."""
    if "engine" not in ctx.obj:
        config = get_config(ctx)
        ctx.obj["engine"] = SyncEngine.from_config(
            config,
            db=get_db(ctx),
            cache=MemoryCache(config.cache_ttl),
            logger=ctx.obj.get("logger"),
        )
    return ctx.obj["engine"]


# Import and register command modules
# These imports must come after CLI group definition
from .sync import init, resync, sync_post, delete_post, sync_comment  # noqa: E402
from .maintenance import tenants, tags, stats, health, drop  # noqa: E402

cli.add_command(init)
cli.add_command(resync)
cli.add_command(sync_post)
cli.add_command(delete_post)
cli.add_command(sync_comment)
cli.add_command(tenants)
cli.add_command(tags)
cli.add_command(stats)
cli.add_command(health)
cli.add_command(drop)


if __name__ == "__main__":
    cli(obj={})
