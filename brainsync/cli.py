"""
CLI for inspecting and driving a brainsync data directory.

Usage:
    brainsync get tasks 42
    brainsync list tasks
    brainsync put tasks 42 --field title="Write report"
    brainsync sync
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from .client import SyncClient, WriteResult
from .config import get_data_dir, load_or_create_config
from .errors import log_exception
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode

# Configure quiet mode by default (suppress verbose library output)
# Set BRAINSYNC_VERBOSE=1 to enable debug mode via environment
if os.environ.get("BRAINSYNC_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _store_callback(value: Optional[Path]):
    global _store_override
    if value is not None:
        _store_override = value


app = typer.Typer(
    name="brainsync",
    help="Local-first document store client.",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="BRAINSYNC_HOME",
        help="Data directory (default: ~/.brainsync)",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Local-first document store client."""


def _get_client() -> SyncClient:
    store_path = _store_override or get_data_dir()
    try:
        config = load_or_create_config(store_path)
        configure_ops_log(store_path)
        return SyncClient.from_config(config)
    except (ValueError, OSError) as e:
        log_exception(e, "init")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _run(command: str, fn) -> Any:
    """Run an async command against a fresh client, closing it afterwards."""
    client = _get_client()

    async def main():
        async with client:
            return await fn(client)

    try:
        return asyncio.run(main())
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    except Exception as e:
        path = log_exception(e, command)
        typer.echo(f"Error: {e} (details in {path})", err=True)
        raise typer.Exit(1)


def _parse_fields(fields: Optional[list[str]]) -> dict[str, Any]:
    """Parse key=value options; values that look like JSON are decoded."""
    data: dict[str, Any] = {}
    for item in fields or []:
        if "=" not in item:
            typer.echo(f"Error: Invalid field format '{item}'. Use key=value", err=True)
            raise typer.Exit(1)
        k, v = item.split("=", 1)
        try:
            data[k] = json.loads(v)
        except json.JSONDecodeError:
            data[k] = v
    return data


def _echo_record(record: Optional[dict]) -> None:
    if record is None:
        typer.echo("Not found", err=True)
        raise typer.Exit(1)
    if _json_output:
        typer.echo(json.dumps(record, ensure_ascii=False, indent=2))
        return
    for k, v in record.items():
        typer.echo(f"{k}: {v}")


def _echo_write(result: WriteResult) -> None:
    if _json_output:
        typer.echo(json.dumps({
            "collection": result.collection,
            "id": result.document_id,
            "synced": result.synced,
            "error": str(result.error) if result.error else None,
        }))
        return
    state = "saved" if result.synced else f"saved locally, not synced ({result.error})"
    typer.echo(f"{result.collection}/{result.document_id}: {state}")


@app.command()
def get(
    collection: Annotated[str, typer.Argument(help="Collection name")],
    id: Annotated[str, typer.Argument(help="Document ID")],
    refresh: Annotated[bool, typer.Option("--refresh", help="Bypass the cache")] = False,
):
    """Show one document."""
    record = _run("get", lambda c: c.get_document(collection, id, force_refresh=refresh))
    _echo_record(record)


@app.command("list")
def list_documents(
    collection: Annotated[str, typer.Argument(help="Collection name")],
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum documents to show")] = 20,
):
    """List a collection, most recently updated first."""
    records = _run("list", lambda c: c.get_collection(collection))[:limit]
    if _json_output:
        typer.echo(json.dumps(records, ensure_ascii=False, indent=2))
        return
    if not records:
        typer.echo("No documents found.")
        return
    id_width = max(len(str(r.get("id", ""))) for r in records)
    for r in records:
        label = r.get("title") or r.get("name") or r.get("description") or ""
        typer.echo(f"{str(r.get('id', '')):<{id_width}}  {r.get('updatedAt', '')[:19]}  {label}")


@app.command()
def put(
    collection: Annotated[str, typer.Argument(help="Collection name")],
    id: Annotated[Optional[str], typer.Argument(help="Document ID (omit to let the store assign one)")] = None,
    field: Annotated[Optional[list[str]], typer.Option(
        "--field", "-f", help="Field as key=value (repeatable)",
    )] = None,
    merge: Annotated[bool, typer.Option(
        "--merge", "-m", help="Merge into the existing document instead of replacing it",
    )] = False,
):
    """Write a document."""
    data = _parse_fields(field)
    if id is None:
        result = _run("put", lambda c: c.add_document(collection, data))
    elif merge:
        result = _run("put", lambda c: c.update_document(collection, id, data))
    else:
        result = _run("put", lambda c: c.set_document(collection, id, data))
    _echo_write(result)


@app.command()
def delete(
    collection: Annotated[str, typer.Argument(help="Collection name")],
    id: Annotated[str, typer.Argument(help="Document ID")],
):
    """Delete a document."""
    _echo_write(_run("delete", lambda c: c.delete_document(collection, id)))


@app.command()
def sync():
    """Push local writes the remote store has not confirmed."""
    report = _run("sync", lambda c: c.sync_pending())
    if _json_output:
        typer.echo(json.dumps({
            "pushed": [f"{c}/{i}" for c, i in report.pushed],
            "failed": [f"{c}/{i}" for c, i in report.failed],
        }))
        return
    typer.echo(f"Pushed {len(report.pushed)}, failed {len(report.failed)}")
    for c, i in report.failed:
        typer.echo(f"  failed: {c}/{i}")
    if report.failed:
        raise typer.Exit(1)


@app.command()
def status():
    """Show connection and sync state."""

    async def collect(client: SyncClient) -> dict:
        await client.monitor.check()
        stats = client.stats()
        stats["unsynced_documents"] = [
            f"{c}/{i} ({op})" for c, i, op in client.fallback.list_unsynced()
        ]
        return stats

    stats = _run("status", collect)
    if _json_output:
        typer.echo(json.dumps(stats, indent=2, default=str))
        return
    typer.echo(f"owner:      {stats['owner_id']}")
    typer.echo(f"connection: {stats['connection']}")
    typer.echo(f"unsynced:   {stats['unsynced']}")
    for line in stats["unsynced_documents"]:
        typer.echo(f"  {line}")


def main():
    app()


if __name__ == "__main__":
    main()
