"""Bucketeer CLI: administer users, buckets and files from a shell."""

import click

from bucketeer import __version__


@click.group()
@click.version_option(version=__version__, package_name="bucketeer")
@click.option("--config", "config_file", type=click.Path(dir_okay=False), default=None, help="YAML or JSON config file.")
@click.pass_context
def main(ctx: click.Context, config_file: str | None) -> None:
    """Bucketeer: multi-tenant bucket and file storage."""
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file


# Register subcommands
from .bucket_cmd import buckets, mkbucket, rmbucket
from .file_cmd import get, put, rm
from .user_cmd import init_stats, recover, stats

main.add_command(init_stats)
main.add_command(stats)
main.add_command(recover)
main.add_command(mkbucket)
main.add_command(buckets)
main.add_command(rmbucket)
main.add_command(put)
main.add_command(get)
main.add_command(rm)
