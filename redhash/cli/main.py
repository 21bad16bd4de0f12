import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click

from redhash.core.config import load_config
from redhash.core.errors import EncodingError, StoreConnectionError
from redhash.core.store import RecordStore


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _store(ctx: click.Context) -> RecordStore:
    return ctx.obj["store"]


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Path to redhash.yaml (defaults to ./redhash.yaml if present)",
)
@click.option("--host", default=None, help="Redis host")
@click.option("--port", default=None, type=int, help="Redis port")
@click.option("--socket", default=None, help="Redis unix socket path")
@click.option("--db", default=None, type=int, help="Redis database index")
@click.option("--prefix", default=None, help="Key prefix")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Optional[Path],
    host: Optional[str],
    port: Optional[int],
    socket: Optional[str],
    db: Optional[int],
    prefix: Optional[str],
    verbose: bool,
) -> None:
    """redhash CLI.

    Save, fetch, search and clear records stored as Redis hashes.
    """
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    overrides: Dict[str, Any] = {}
    redis_overrides = {
        name: value
        for name, value in (("host", host), ("port", port), ("socket", socket), ("db", db))
        if value is not None
    }
    if redis_overrides:
        overrides["redis"] = redis_overrides
    if prefix is not None:
        overrides["prefix"] = prefix

    ctx.ensure_object(dict)
    store = RecordStore(
        load_config(config_path, overrides=overrides),
        client_factory=ctx.obj.get("client_factory"),
    )
    ctx.obj["store"] = store
    ctx.call_on_close(store.close)


@cli.command("info")
@click.pass_context
def info(ctx: click.Context) -> None:
    """Print Redis server information."""
    try:
        _echo_json(_store(ctx).server_info())
    except StoreConnectionError as e:
        raise click.ClickException(str(e))


@cli.command("key")
@click.argument("segments", nargs=-1)
@click.pass_context
def key(ctx: click.Context, segments: Tuple[str, ...]) -> None:
    """Print the key for SEGMENTS (a unique key when none are given)."""
    click.echo(_store(ctx).generate_key(*segments))


@cli.command("save")
@click.argument("record")
@click.option("--collection", default="hash", show_default=True, help="Collection name")
@click.option("--ignore", multiple=True, help="Field name to leave out of the index (repeatable)")
@click.option("--index/--no-index", default=True, help="Index field values for search")
@click.pass_context
def save(
    ctx: click.Context,
    record: str,
    collection: str,
    ignore: Tuple[str, ...],
    index: bool,
) -> None:
    """Save RECORD, a JSON object, and print it with its _id."""
    try:
        data = json.loads(record)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="RECORD")
    if not isinstance(data, dict):
        raise click.BadParameter("must be a JSON object", param_hint="RECORD")

    try:
        saved = _store(ctx).save(data, collection=collection, ignore=list(ignore), index=index)
    except (StoreConnectionError, EncodingError) as e:
        raise click.ClickException(str(e))
    _echo_json(saved)


@cli.command("get")
@click.argument("keys", nargs=-1, required=True)
@click.pass_context
def get(ctx: click.Context, keys: Tuple[str, ...]) -> None:
    """Print the records stored at KEYS."""
    try:
        if len(keys) == 1:
            result = _store(ctx).get(keys[0])
        else:
            result = _store(ctx).get(list(keys))
    except StoreConnectionError as e:
        raise click.ClickException(str(e))
    if result is None:
        raise click.ClickException(f"No record at {keys[0]}")
    _echo_json(result)


@cli.command("search")
@click.argument("query")
@click.option("--collection", default="hash", show_default=True, help="Collection name")
@click.option(
    "--type",
    "mode",
    type=click.Choice(["and", "or"], case_sensitive=False),
    default="or",
    show_default=True,
    help="Match any (or) or all (and) query words",
)
@click.option("--ignore", multiple=True, help="Field name to leave out of the index (repeatable)")
@click.pass_context
def search(
    ctx: click.Context,
    query: str,
    collection: str,
    mode: str,
    ignore: Tuple[str, ...],
) -> None:
    """Search a collection for QUERY.

    The collection's index is rebuilt from Redis first, since indexes
    only live in the process that saved the records.
    """
    store = _store(ctx)
    try:
        store.reindex(collection, ignore=ignore)
        results = store.search({"q": query, "collection": collection, "type": mode})
    except StoreConnectionError as e:
        raise click.ClickException(str(e))
    _echo_json(results)


@cli.command("clear")
@click.argument("pattern", required=False)
@click.confirmation_option(prompt="Delete all matching keys?")
@click.pass_context
def clear(ctx: click.Context, pattern: Optional[str]) -> None:
    """Delete every key under the prefix, optionally narrowed by PATTERN."""
    try:
        deleted = _store(ctx).clear(pattern)
    except StoreConnectionError as e:
        raise click.ClickException(str(e))
    click.echo(f"Deleted {deleted} keys")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
