"""bucketeer mkbucket / buckets / rmbucket."""

from __future__ import annotations

import click

from .common import create_manager, run


@click.command()
@click.argument("user")
@click.argument("name")
@click.pass_context
def mkbucket(ctx: click.Context, user: str, name: str) -> None:
    """Create bucket NAME for USER."""
    manager = create_manager(ctx)
    bucket = run(manager.buckets.create_bucket(name, user))
    click.echo(f"Bucket '{bucket.name}' created ({bucket.identifier})")


@click.command()
@click.argument("user")
@click.option("--search", default=None, help="Case-insensitive regex on the bucket name.")
@click.pass_context
def buckets(ctx: click.Context, user: str, search: str | None) -> None:
    """List USER's buckets."""
    manager = create_manager(ctx)
    entries = run(manager.buckets.get_bucket_entries(user, search))
    if not entries:
        click.echo("No buckets.")
        return
    for entry in entries:
        click.echo(f"{entry.name}\t{entry.identifier}\t{entry.memory_used} bytes")


@click.command()
@click.argument("user")
@click.argument("names", nargs=-1, required=True)
@click.pass_context
def rmbucket(ctx: click.Context, user: str, names: tuple[str, ...]) -> None:
    """Remove USER's buckets NAMES and all their files."""
    manager = create_manager(ctx)
    removed = run(manager.deletion.remove_buckets_by_name(list(names), user))
    click.echo(f"Removed {len(removed)} buckets.")
