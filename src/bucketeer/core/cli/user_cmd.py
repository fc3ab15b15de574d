"""bucketeer init-stats / stats / recover: user storage and maintenance."""

from __future__ import annotations

import click

from .common import create_manager, run


@click.command("init-stats")
@click.argument("user")
@click.pass_context
def init_stats(ctx: click.Context, user: str) -> None:
    """Create storage stats for a new USER."""
    manager = create_manager(ctx)
    stats = run(manager.quota.create_user_stats(user))
    click.echo(f"Created storage for '{stats.user}': {stats.memory_allocated} bytes, {stats.api_calls_allocated} API calls")


@click.command()
@click.argument("user")
@click.pass_context
def stats(ctx: click.Context, user: str) -> None:
    """Show USER's storage and API usage."""
    manager = create_manager(ctx)
    s = run(manager.quota.get_user_stats(user))
    click.echo(f"User:      {s.user}")
    click.echo(f"Memory:    {s.memory_used} / {s.memory_allocated} bytes")
    click.echo(f"API calls: {s.api_calls_used} / {s.api_calls_allocated}")


@click.command()
@click.pass_context
def recover(ctx: click.Context) -> None:
    """Settle operations left unfinished by a crash."""
    manager = create_manager(ctx)
    settled = run(manager.recover())
    click.echo(f"Recovered {settled} operations.")
