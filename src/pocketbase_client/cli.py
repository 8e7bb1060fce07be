"""PocketBase client CLI.

Usage:
    pocketbase-client health                        # Check server health
    pocketbase-client records list todos            # First page of a collection
    pocketbase-client records list todos --all      # Every record
    pocketbase-client records get todos <id>        # One record
    pocketbase-client watch todos/*                 # Tail realtime events

The server URL comes from --url or POCKETBASE_URL.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sys
from typing import Any

import click

from .auth import AuthStore
from .client import PocketBase
from .config import ClientConfig
from .errors import Result
from .sse import SSEMessage

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"

# Record fields shown in their own columns or not at all
HIDDEN_COLUMNS = frozenset({"id", "created", "updated", "collectionId", "collectionName"})


def create_client(url: str | None, token: str | None) -> PocketBase:
    """Build the client used by every command."""
    config = ClientConfig.from_env(base_url=url)
    return PocketBase(config=config, auth_store=AuthStore(token=token))


def truncate(text: str | None, max_len: int = 40) -> str:
    """Truncate text for display."""
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def _dump(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    return value


def _fail(result: Result[Any]) -> None:
    click.echo(f"Error: {result.error}", err=True)
    sys.exit(1)


@click.group()
@click.option("--url", envvar="POCKETBASE_URL", default=None, help="Server base URL")
@click.option("--token", envvar="POCKETBASE_TOKEN", default=None, help="Auth token")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, url: str | None, token: str | None, verbose: bool) -> None:
    """PocketBase client - query records and tail realtime events."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["url"] = url
    ctx.obj["token"] = token


@main.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check server health."""
    with create_client(ctx.obj["url"], ctx.obj["token"]) as client:
        result = client.health()
        if result.is_failure:
            _fail(result)
        click.echo(f"Server is healthy: {result.value.message if result.value else 'ok'}")


@main.group()
def records() -> None:
    """Record commands."""


@records.command("list")
@click.argument("collection")
@click.option("--page", default=1, help="Page number")
@click.option("--per-page", default=30, help="Records per page")
@click.option("--filter", "filter_", default=None, help="Filter expression")
@click.option("--sort", default=None, help="Sort expression, e.g. -created")
@click.option("--all", "fetch_all", is_flag=True, help="Fetch every page")
@click.option(
    "--format",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
@click.pass_context
def records_list(
    ctx: click.Context,
    collection: str,
    page: int,
    per_page: int,
    filter_: str | None,
    sort: str | None,
    fetch_all: bool,
    output_format: str,
) -> None:
    """List records of a collection.

    Examples:

        pocketbase-client records list todos --sort -created

        pocketbase-client records list todos --all --format json
    """
    with create_client(ctx.obj["url"], ctx.obj["token"]) as client:
        service = client.collection(collection)
        if fetch_all:
            full = service.get_full_list(filter=filter_, sort=sort)
            if full.is_failure:
                _fail(full)
            items = full.value or []
            total = len(items)
        else:
            listing = service.list(page, per_page, filter=filter_, sort=sort)
            if listing.is_failure:
                _fail(listing)
            items = listing.value.items if listing.value else []
            total = listing.value.total_items if listing.value else 0

    rows = [_dump(item) for item in items]
    if output_format == FORMAT_JSON:
        click.echo(json.dumps(rows, indent=2, ensure_ascii=False, default=str))
        return

    if not rows:
        click.echo("No records found.")
        return

    click.echo(f"{'ID':<17} {'Updated':<25} {'Data':<40}")
    click.echo("-" * 84)
    for row in rows:
        data = {k: v for k, v in row.items() if k not in HIDDEN_COLUMNS}
        click.echo(
            f"{row.get('id', '?'):<17} {str(row.get('updated', '')):<25} "
            f"{truncate(json.dumps(data, default=str)):<40}"
        )
    click.echo(f"\nTotal: {total} record(s)")


@records.command("get")
@click.argument("collection")
@click.argument("record_id")
@click.option("--expand", default=None, help="Relations to expand")
@click.pass_context
def records_get(ctx: click.Context, collection: str, record_id: str, expand: str | None) -> None:
    """Show one record as JSON."""
    with create_client(ctx.obj["url"], ctx.obj["token"]) as client:
        result = client.collection(collection).get_one(record_id, expand=expand)
        if result.is_failure:
            _fail(result)
        click.echo(json.dumps(_dump(result.value), indent=2, ensure_ascii=False, default=str))


@main.command()
@click.argument("topics", nargs=-1, required=True)
@click.pass_context
def watch(ctx: click.Context, topics: tuple[str, ...]) -> None:
    """Print realtime events for TOPICS as JSON lines until interrupted.

    Examples:

        pocketbase-client watch todos/*

        pocketbase-client watch todos/RECORD_ID users/*
    """

    async def on_message(message: SSEMessage) -> None:
        try:
            data = message.json()
        except ValueError:
            data = message.data
        click.echo(json.dumps({"topic": message.event, "data": data}, ensure_ascii=False))

    async def run() -> None:
        async with create_client(ctx.obj["url"], ctx.obj["token"]) as client:
            for topic in topics:
                result = await client.realtime.subscribe(topic, on_message)
                if result.is_failure:
                    click.echo(f"Subscribe to {topic} failed: {result.error}", err=True)
            click.echo(f"Watching {', '.join(topics)} (Ctrl+C to stop)", err=True)
            await asyncio.Event().wait()

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run())


if __name__ == "__main__":
    main()
