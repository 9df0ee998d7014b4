from __future__ import annotations

import threading
import time

import typer
from rich import print
from rich.markup import escape

from frontdesk.config import get_config_path


def _print_outbox(status: dict, dead: list[dict] | None = None) -> None:
    print(f"- Queued writes: {status['pending']}")
    if status["pending"]:
        print(f"- Oldest queued: {status['oldest']}")
    if status["last_error"]:
        print(
            f"[yellow]- Last error: {escape(str(status['last_error']))} "
            f"(attempts: {status['max_attempts']}, at {status['last_attempt_at']})[/yellow]"
        )
    if status.get("dead"):
        print(f"[red]- Rejected writes (not retried): {status['dead']}[/red]")
        for entry in dead or []:
            print(
                f"  - {entry['op']} {entry['collection']}/{escape(str(entry['doc_key']))} "
                f"at {entry['dead_at']}: {escape(str(entry['last_error']))}"
            )


def sync_status_cmd(*, open_app, db_path: str | None) -> None:
    """Show the configured backend and queued outbound writes."""

    app = open_app(db_path, start_outbox=False, run_retention=False)
    try:
        status = app.status()
        dead = app.outbox.dead() if app.outbox is not None else []
    finally:
        app.close(flush=False)
    print(f"- Config: {get_config_path()}")
    print(f"- Database: {status['db_path']}")
    if app.local_only:
        print("- Sync: local-only (no remote backend available)")
        return
    print(f"- Backend: {status['backend']}")
    _print_outbox(status["outbox"], dead)


def sync_flush_cmd(*, open_app, db_path: str | None) -> None:
    """Send queued writes to the remote once."""

    app = open_app(db_path, start_outbox=False, run_retention=False)
    try:
        if app.outbox is None:
            print("[yellow]Sync is not configured; nothing to flush[/yellow]")
            raise typer.Exit(code=1)
        sent = app.outbox.flush()
        status = app.outbox.status()
    finally:
        app.close(flush=False)
    print(f"- Sent: {sent}")
    _print_outbox(status)
    if status["pending"]:
        raise typer.Exit(code=1)


def sync_run_cmd(
    *,
    open_app,
    db_path: str | None,
    duration_s: float | None,
    stop_event: threading.Event | None = None,
) -> None:
    """Keep the bridge running in the foreground until interrupted."""

    app = open_app(db_path)
    stop = stop_event or threading.Event()
    started = time.monotonic()
    try:
        if app.local_only:
            print("[yellow]No remote backend available; nothing to sync[/yellow]")
            raise typer.Exit(code=1)
        print(f"Syncing with {app.config.remote_backend} (Ctrl-C to stop)")
        while not stop.wait(0.5):
            if duration_s is not None and time.monotonic() - started >= duration_s:
                break
    except KeyboardInterrupt:
        pass
    finally:
        stats = app.bridge.stats()
        app.close()
    print(
        f"- Pushed: {stats['pushed']}, applied: {stats['applied']}, "
        f"skipped (pending): {stats['skipped_pending']}, failed: {stats['failed']}"
    )


def remote_serve_cmd(
    *,
    load_config,
    run_document_server,
    host: str | None,
    port: int | None,
    db_path: str | None,
    token: str | None,
) -> None:
    """Run the HTTP document server other devices sync through."""

    cfg = load_config()
    resolved_host = host or cfg.server_host
    resolved_port = port if port is not None else cfg.server_port
    resolved_token = token or cfg.remote_token
    print(f"Document server on http://{resolved_host}:{resolved_port}")
    if not resolved_token and resolved_host not in {"127.0.0.1", "localhost", "::1"}:
        print("[yellow]Serving without a token on a non-loopback address[/yellow]")
    try:
        run_document_server(
            resolved_host,
            resolved_port,
            db_path=db_path or cfg.server_db_path,
            token=resolved_token,
        )
    except KeyboardInterrupt:
        print("Stopped")
