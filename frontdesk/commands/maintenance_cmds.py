from __future__ import annotations

import json
from pathlib import Path

import typer
from rich import print

from frontdesk.store import Collection
from frontdesk.store.records import MONTH_LABELS
from frontdesk.store.retention import RETAINED_COLLECTIONS, RetentionReport
from frontdesk.store.utils import DAY_MS, now_ms

from .common import read_config_or_exit, write_config_or_exit


def init_cmd(
    *,
    open_app,
    db_path: str | None,
    backend: str | None,
    remote_url: str | None,
    admin_name: str | None,
    admin_pin: str | None,
) -> None:
    """Create the local database, optionally saving sync settings first."""

    updates = {
        "remote_backend": backend,
        "remote_url": remote_url,
        "seed_admin_name": admin_name,
        "seed_admin_pin": admin_pin,
    }
    updates = {key: value for key, value in updates.items() if value is not None}
    if updates:
        config_data = read_config_or_exit()
        config_data.update(updates)
        write_config_or_exit(config_data)
    app = open_app(db_path)
    try:
        print(f"Initialized database at {app.store.db_path}")
        backend_label = "local-only" if app.local_only else app.config.remote_backend
        print(f"- Sync: {backend_label}")
    finally:
        app.close()


def dashboard_cmd(*, open_app, db_path: str | None, monthly: bool = False) -> None:
    app = open_app(db_path)
    try:
        counts = app.store.dashboard_counts()
        months = app.store.monthly_counts() if monthly else None
    finally:
        app.close()
    print("[bold]Today[/bold]")
    print(f"- Calls today: {counts['calls_today']}")
    print(f"- Pending tasks: {counts['pending_tasks']}")
    print(f"- Open tickets: {counts['open_tickets']}")
    if months is None:
        return
    print("[bold]This year[/bold]")
    for label, calls, tickets in zip(MONTH_LABELS, months["calls"], months["tickets"]):
        print(f"- {label}: {calls} call(s), {tickets} ticket(s)")


def print_retention_report(report: RetentionReport) -> None:
    if report.total_deleted:
        for collection, count in report.deleted.items():
            if count:
                print(f"- Deleted {count} old {collection} record(s)")
    else:
        print("- Nothing to clean up")
    if report.backup_warning:
        flagged = sum(report.flagged.values())
        print(
            f"[yellow]{flagged} record(s) are close to the retention limit. "
            "Run `frontdesk backup` to keep a copy.[/yellow]"
        )


def cleanup_cmd(*, open_app, db_path: str | None, dry_run: bool) -> None:
    """Apply the retention window to calls, tasks and tickets."""

    app = open_app(db_path, run_retention=False)
    try:
        cfg = app.config
        if dry_run:
            cutoff = now_ms() - cfg.retention_days * DAY_MS
            for collection, attr in RETAINED_COLLECTIONS.items():
                keys = app.store.keys_at_or_below(collection, attr, cutoff)
                label = collection.value
                if collection is Collection.CALLS:
                    label = "calls (with linked tickets)"
                print(f"- Would delete {len(keys)} {label}")
            return
        report = app.store.cleanup_old_data(
            retention_days=cfg.retention_days, warning_days=cfg.retention_warning_days
        )
    finally:
        app.close()
    print_retention_report(report)


def backup_cmd(*, open_app, db_path: str | None, output: str) -> None:
    """Write calls, tasks and tickets to a JSON backup (audio excluded)."""

    app = open_app(db_path)
    try:
        backup = app.store.full_backup()
    finally:
        app.close()
    output_json = json.dumps(backup, ensure_ascii=False, indent=2)
    if output == "-":
        typer.echo(output_json)
        return
    output_path = Path(output).expanduser()
    output_path.write_text(output_json, encoding="utf-8")
    print(f"[green]✓ Backup written to {output_path}[/green]")
    print(f"  Calls: {len(backup['calls'])}")
    print(f"  Tasks: {len(backup['activities'])}")
    print(f"  Tickets: {len(backup['tickets'])}")
