from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from meshsync.core.config import DEFAULT_CONFIG_PATH, RUN_HISTORY_PATH, load_config, save_config
from meshsync.core.log_tail import build_log_tail_payload
from meshsync.core.logging_setup import setup_logging
from meshsync.core.run_history import read_run_history
from meshsync.core.service import build_coordinator, build_local_backend, run_sync_and_record
from meshsync.sync.entities import format_timestamp
from meshsync.sync.stores import StoreSet

app = typer.Typer(add_completion=False)
console = Console()


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


@app.command("config-show")
def config_show(path: Path = DEFAULT_CONFIG_PATH):
    """Show current config.yaml."""
    cfg = load_config(path)
    data = cfg.model_dump()
    if data["remote"]["token"]:
        data["remote"]["token"] = "***"
    _print_json(data)


@app.command("config-set-remote")
def config_set_remote(
    url: str = typer.Option(..., "--url", help="Base URL of the hosted library server."),
    token: str = typer.Option("", "--token", help="Bearer token for the server API."),
    timeout: int = typer.Option(30, "--timeout", min=1, help="Request timeout in seconds."),
):
    """Point sync at a hosted server."""
    cfg = load_config()
    cfg.remote.base_url = url.rstrip("/")
    cfg.remote.token = token
    cfg.remote.timeout_sec = timeout
    save_config(cfg)
    _print_json({"ok": True, "base_url": cfg.remote.base_url, "token_set": bool(cfg.remote.token)})


@app.command()
def status():
    """Show configuration, watermark and local library counts."""
    cfg = load_config()
    backend = build_local_backend(cfg)

    async def _collect():
        return await backend.get_last_synced(), await StoreSet.from_backend(backend).library_counts()

    last_synced, counts = asyncio.run(_collect())

    table = Table(title="meshsync status")
    table.add_column("Key")
    table.add_column("Value")
    table.add_row("config", str(DEFAULT_CONFIG_PATH))
    table.add_row("db", cfg.database.path)
    table.add_row("blob_dir", cfg.storage.blob_dir)
    table.add_row("remote", cfg.remote.base_url or "(unset)")
    table.add_row("last_synced", format_timestamp(last_synced) if last_synced else "never")
    for name, count in counts.items():
        table.add_row(name, str(count))
    table.add_row("log", cfg.logging.file)
    table.add_row("web", f"http://{cfg.web_bind_host}:{cfg.web_port}")
    console.print(table)


@app.command()
def sync(
    last_synced: str | None = typer.Option(
        None,
        "--last-synced",
        help="Override the stored watermark (RFC3339 or epoch seconds).",
    ),
    run_type: str = typer.Option("manual_cli", "--run-type", help="Label stored with the run summary."),
):
    """Run one sync against the configured server and print summary JSON."""
    cfg = load_config()
    if not cfg.remote.base_url:
        _print_json({"ok": False, "error": "remote_base_url_missing"})
        raise typer.Exit(2)

    setup_logging(cfg.logging.level, cfg.logging.file)
    coordinator = build_coordinator(cfg)
    try:
        summary = asyncio.run(run_sync_and_record(coordinator, run_type, last_synced=last_synced))
    except Exception as e:
        _print_json({"ok": False, "error": str(e), "error_type": type(e).__name__})
        raise typer.Exit(2)
    _print_json(summary)


@app.command("logs-tail")
def logs_tail(
    n: int = typer.Option(200, "--n", min=1),
    level: str | None = typer.Option(None, "--level", help="Filter by log level (e.g. INFO)."),
    module: str | None = typer.Option(None, "--module", help="Filter by logger name; includes child loggers."),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
):
    """Tail service log file."""
    cfg = load_config()
    payload = build_log_tail_payload(
        cfg.logging.file,
        n=n,
        level=level,
        module=module,
    )
    if json_output:
        _print_json(payload)
        return
    print(payload.get("tail", ""))


@app.command()
def history(limit: int = typer.Option(20, "--limit", min=1, max=500)):
    """Show recent sync runs, newest first."""
    items = read_run_history(limit=limit)
    _print_json({"path": str(RUN_HISTORY_PATH), "count": len(items), "items": items})


def main():
    app()


if __name__ == "__main__":
    main()
