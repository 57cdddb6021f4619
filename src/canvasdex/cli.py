import asyncio, logging, time
import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from .config import get_settings

console = Console()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
def cli(log_level):
    """canvasdex: canvas event indexer with a stale-while-revalidate cache."""
    configure_logging(log_level or get_settings().log_level)


@cli.command("scan")
@click.option("--full/--incremental", default=False, show_default=True,
              help="Force a full rescan from the deploy block")
def scan_cmd(full):
    """Run one scan cycle (full if nothing is stored yet) and persist it."""
    from .bootstrap import build_runtime

    async def run():
        rt = build_runtime(get_settings())
        try:
            return await rt.coordinator.run_cycle(force_full=full)
        finally:
            await rt.aclose()

    t0 = time.time()
    try:
        result = asyncio.run(run())
    except Exception as e:
        raise click.ClickException(str(e))

    snap = result.snapshot
    console.print(Panel.fit(
        f"[bold]mode[/]: {result.mode}\n"
        f"[bold]block[/]: {snap.latest_scanned_block:,}\n"
        f"[bold]aggregates[/]: {len(snap.aggregates)}\n"
        f"[bold]edited keys[/]: {len(snap.edits_by_key)}   [bold]burn receivers[/]: {len(snap.burns_by_key)}\n"
        f"[bold]refreshed[/]: {len(result.touched)}   "
        f"[{'red' if snap.skipped_ranges else 'green'}]skipped ranges[/]: {len(snap.skipped_ranges)}\n"
        f"[bold]elapsed[/]: {time.time() - t0:.1f}s",
        title="scan cycle",
    ))


@cli.command("history")
@click.argument("key_id", type=click.IntRange(0, 9999))
def history_cmd(key_id):
    """Show the edit and burn history of one key, with block timestamps."""
    from .bootstrap import build_runtime
    from .errors import NotIndexedError

    async def run():
        rt = build_runtime(get_settings())
        try:
            return await rt.coordinator.stored_key_history(key_id)
        finally:
            await rt.aclose()

    try:
        hist = asyncio.run(run())
    except NotIndexedError as e:
        raise click.ClickException(str(e))

    edits = Table(title=f"key {key_id} · edits ({len(hist['edits'])})")
    for col in ("block", "time (UTC)", "changes", "pixels", "transformer", "tx"):
        edits.add_column(col)
    for e in hist["edits"]:
        edits.add_row(f"{e['blockNumber']:,}", time.strftime("%Y-%m-%d %H:%M", time.gmtime(e["timestamp"])),
                      str(e["changeCount"]), str(e["newPixelCount"]), e["transformer"], e["txHash"][:12] + "…")
    console.print(edits)

    burns = Table(title=f"key {key_id} · burns ({len(hist['burns'])})")
    for col in ("block", "time (UTC)", "actions", "owner", "tx"):
        burns.add_column(col)
    for b in hist["burns"]:
        burns.add_row(f"{b['blockNumber']:,}", time.strftime("%Y-%m-%d %H:%M", time.gmtime(b["timestamp"])),
                      str(b["totalActions"]), b["owner"], b["txHash"][:12] + "…")
    console.print(burns)


@cli.command("export")
@click.argument("out_dir", type=click.Path(file_okay=False))
def export_cmd(out_dir):
    """Write the stored per-key event maps to edits.parquet / burns.parquet."""
    from .adapters.blob_local import LocalBlobStore
    from .adapters.parquet_sink import ParquetEventSink
    from .application.snapshot_store import SnapshotStore

    async def run():
        snap = await SnapshotStore(LocalBlobStore(get_settings().blob_dir)).load()
        if snap is None:
            raise click.ClickException("no snapshot stored yet; run `canvasdex scan` first")
        sink = ParquetEventSink(out_dir)
        edits = [e for evs in snap.edits_by_key.values() for e in evs]
        burns = [b for evs in snap.burns_by_key.values() for b in evs]
        return await sink.write_events(edits, burns), len(edits), len(burns)

    paths, n_edits, n_burns = asyncio.run(run())
    console.print(f"[bold]exported[/]: {n_edits} edits, {n_burns} burns")
    for p in paths:
        console.print(f"  → {p}")


@cli.command("failed")
def failed_cmd():
    """List chunks whose last manifest record is a failure."""
    from .adapters.manifest_jsonl import load_failed_ranges

    rows = load_failed_ranges(get_settings().manifest_path)
    if not rows:
        console.print("[green]no failed chunks[/]")
        return
    table = Table(title=f"failed chunks ({len(rows)})")
    table.add_column("kind"); table.add_column("from"); table.add_column("to")
    for fb, tb, kind in rows:
        table.add_row(kind, f"{fb:,}", f"{tb:,}")
    console.print(table)


@cli.command("serve")
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", type=int, default=8000, show_default=True)
def serve_cmd(host, port):
    """Serve the read API and the cron trigger."""
    import uvicorn
    from .bootstrap import build_runtime
    from .presentation.api import create_app

    settings = get_settings()
    rt = build_runtime(settings)
    app = create_app(rt.coordinator, cron_secret=settings.cron_secret, on_shutdown=rt.aclose)
    uvicorn.run(app, host=host, port=port, log_config=None)


if __name__ == "__main__":
    cli()
