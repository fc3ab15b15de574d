"""Shared setup logic for CLI commands."""

from __future__ import annotations

import sys

import click


def load_config(ctx: click.Context):
    """Load config from the ``--config`` file (if any), defaults and env."""
    from bucketeer.core.config import Config
    from bucketeer.core.exceptions import ConfigurationError

    config_file = (ctx.obj or {}).get("config_file")
    try:
        config = Config(config_file=config_file)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    return config


def create_manager(ctx: click.Context):
    """Configure logging and build a BucketManager from config."""
    from bucketeer.buckets.manager import BucketManager
    from bucketeer.core.utils.logging import setup_logging

    config = load_config(ctx)
    setup_logging(config.get("logging.level", "WARNING"), config.get("logging.file") or None)
    config.ensure_directories()
    return BucketManager.from_config(config)


def run(coro):
    """Run a command coroutine, turning storage errors into a clean exit."""
    from bucketeer.core.exceptions import BucketeerError
    from bucketeer.core.utils.async_helpers import run_async_safely

    try:
        return run_async_safely(coro)
    except BucketeerError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
