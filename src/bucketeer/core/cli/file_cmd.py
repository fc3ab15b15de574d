"""bucketeer put / get / rm: move files in and out of buckets."""

from __future__ import annotations

import mimetypes
import os

import aiofiles
import click

from .common import create_manager, run


async def _read_file(path: str, chunk_size: int = 64 * 1024):
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(chunk_size)
            if not chunk:
                break
            yield chunk


class FileSink:
    """Download sink that writes the body to an open aiofiles handle."""

    def __init__(self, handle):
        self.handle = handle
        self.headers: dict[str, str] = {}

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    async def write(self, chunk: bytes) -> None:
        await self.handle.write(chunk)


async def _put(manager, user, bucket_name, path, content_type, public):
    from bucketeer.buckets.models import UploadPart
    from bucketeer.core.exceptions import NotFoundError

    bucket = await manager.buckets.get_bucket(bucket_name, user)
    if bucket is None:
        raise NotFoundError(f"No bucket exists with the name '{bucket_name}'")
    part = UploadPart(
        name="file",
        content_type=content_type,
        chunks=_read_file(path),
        filename=os.path.basename(path),
        byte_count=os.path.getsize(path),
    )
    return await manager.uploads.upload_stream(part, bucket, user, make_public=public)


async def _get(manager, file_id, dest, accept_encoding):
    entry = await manager.files.get_file(file_id)
    async with aiofiles.open(dest, "wb") as f:
        sink = FileSink(f)
        await manager.downloads.download_file({"Accept-Encoding": accept_encoding}, sink, entry)
    return entry, sink


@click.command()
@click.argument("user")
@click.argument("bucket")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--content-type", default=None, help="Defaults to a guess from the file name.")
@click.option("--private", is_flag=True, help="Don't make the uploaded file public.")
@click.pass_context
def put(ctx: click.Context, user: str, bucket: str, path: str, content_type: str | None, private: bool) -> None:
    """Upload the file at PATH into USER's BUCKET."""
    manager = create_manager(ctx)
    content_type = content_type or mimetypes.guess_type(path)[0] or "application/octet-stream"
    entry = run(_put(manager, user, bucket, path, content_type, not private))
    click.echo(f"Uploaded '{entry.name}' as {entry.identifier} ({entry.size} bytes)")
    if entry.is_public:
        click.echo(entry.public_url)


@click.command()
@click.argument("file_id")
@click.argument("dest", type=click.Path(dir_okay=False, writable=True))
@click.option("--accept-encoding", default="", help="Simulate a client Accept-Encoding header.")
@click.pass_context
def get(ctx: click.Context, file_id: str, dest: str, accept_encoding: str) -> None:
    """Download file FILE_ID to DEST."""
    manager = create_manager(ctx)
    entry, sink = run(_get(manager, file_id, dest, accept_encoding))
    encoding = sink.headers.get("Content-Encoding", "identity")
    click.echo(f"Downloaded '{entry.name}' to {dest} ({encoding})")


@click.command()
@click.argument("user")
@click.argument("file_ids", nargs=-1, required=True)
@click.option("--children", is_flag=True, help="Also remove files whose parent is one of FILE_IDS.")
@click.pass_context
def rm(ctx: click.Context, user: str, file_ids: tuple[str, ...], children: bool) -> None:
    """Remove USER's files FILE_IDS."""
    manager = create_manager(ctx)
    removed = run(manager.deletion.remove_files_by_id(list(file_ids), user, include_children=children))
    click.echo(f"Removed {len(removed)} files.")
