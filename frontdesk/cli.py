from __future__ import annotations

from typing import Any

import typer
from rich import print

from . import __version__
from .app import Frontdesk
from .commands.common import open_app, parse_key
from .commands.maintenance_cmds import backup_cmd, cleanup_cmd, dashboard_cmd, init_cmd
from .commands.record_cmds import (
    calls_add_cmd,
    calls_delete_cmd,
    calls_download_cmd,
    calls_list_cmd,
    calls_rename_cmd,
    login_cmd,
    notes_delete_cmd,
    notes_list_cmd,
    notes_save_cmd,
    tasks_add_cmd,
    tasks_delete_cmd,
    tasks_list_cmd,
    tasks_rename_cmd,
    tasks_toggle_cmd,
    tickets_add_cmd,
    tickets_delete_cmd,
    tickets_export_cmd,
    tickets_from_call_cmd,
    tickets_list_cmd,
    tickets_move_cmd,
    tickets_update_cmd,
    users_add_cmd,
    users_delete_cmd,
    users_list_cmd,
)
from .commands.sync_cmds import remote_serve_cmd, sync_flush_cmd, sync_run_cmd, sync_status_cmd
from .config import load_config
from .remote.server import run_document_server

app = typer.Typer(help="frontdesk: call-center front office with local-first sync")
users_app = typer.Typer(help="Manage agent and admin accounts")
calls_app = typer.Typer(help="Call recordings")
tasks_app = typer.Typer(help="Personal task list")
tickets_app = typer.Typer(help="Support tickets")
notes_app = typer.Typer(help="Client case notes")
sync_app = typer.Typer(help="Sync with the remote document store")
remote_app = typer.Typer(help="Remote document server")
app.add_typer(users_app, name="users")
app.add_typer(calls_app, name="calls")
app.add_typer(tasks_app, name="tasks")
app.add_typer(tickets_app, name="tickets")
app.add_typer(notes_app, name="notes")
app.add_typer(sync_app, name="sync")
app.add_typer(remote_app, name="remote")

DB_OPTION = typer.Option(None, "--db-path", help="Path to SQLite database")
USER_OPTION = typer.Option(None, "--user", "-u", envvar="FRONTDESK_USER", help="Sign-in name")
PIN_OPTION = typer.Option(None, "--pin", envvar="FRONTDESK_PIN", help="Sign-in PIN")
SEARCH_OPTION = typer.Option(None, "--search", "-s", help="Case-insensitive text filter")


def _open(db_path: str | None, **kwargs: Any) -> Frontdesk:
    return open_app(db_path, **kwargs)


def _key_or_none(value: str | None):
    return parse_key(value) if value else None


@app.command()
def version() -> None:
    """Print the installed version."""

    print(__version__)


@app.command()
def init(
    db_path: str = DB_OPTION,
    backend: str = typer.Option(None, help="Remote backend: none, http or firestore"),
    remote_url: str = typer.Option(None, help="Document server URL for the http backend"),
    admin_name: str = typer.Option(None, help="Name of the admin account to seed"),
    admin_pin: str = typer.Option(None, help="PIN of the admin account to seed"),
) -> None:
    """Create the local database and optionally store sync settings."""

    init_cmd(
        open_app=_open,
        db_path=db_path,
        backend=backend,
        remote_url=remote_url,
        admin_name=admin_name,
        admin_pin=admin_pin,
    )


@app.command()
def login(db_path: str = DB_OPTION, user: str = USER_OPTION, pin: str = PIN_OPTION) -> None:
    """Check credentials."""

    login_cmd(open_app=_open, db_path=db_path, user=user, pin=pin)


@app.command()
def dashboard(
    db_path: str = DB_OPTION,
    monthly: bool = typer.Option(False, "--monthly", help="Add calls and tickets per month"),
) -> None:
    """Show today's call count, pending tasks and open tickets."""

    dashboard_cmd(open_app=_open, db_path=db_path, monthly=monthly)


@app.command()
def cleanup(
    db_path: str = DB_OPTION,
    dry_run: bool = typer.Option(False, "--dry-run", help="Only report what would be deleted"),
) -> None:
    """Delete records past the retention window."""

    cleanup_cmd(open_app=_open, db_path=db_path, dry_run=dry_run)


@app.command()
def backup(
    db_path: str = DB_OPTION,
    output: str = typer.Option("-", "--output", "-o", help="Output file (default stdout)"),
) -> None:
    """Export calls, tasks and tickets as JSON."""

    backup_cmd(open_app=_open, db_path=db_path, output=output)


# -- users ------------------------------------------------------------------


@users_app.command("add")
def users_add(
    name: str = typer.Argument(..., help="Account name"),
    new_pin: str = typer.Option(..., "--new-pin", help="PIN for the new account"),
    role: str = typer.Option("agent", help="agent or admin"),
    db_path: str = DB_OPTION,
    user: str = USER_OPTION,
    pin: str = PIN_OPTION,
) -> None:
    """Create an account (admins only once any account exists)."""

    users_add_cmd(
        open_app=_open,
        db_path=db_path,
        user=user,
        pin=pin,
        name=name,
        new_pin=new_pin,
        role=role,
    )


@users_app.command("list")
def users_list(db_path: str = DB_OPTION) -> None:
    """List accounts."""

    users_list_cmd(open_app=_open, db_path=db_path)


@users_app.command("delete")
def users_delete(
    user_id: str = typer.Argument(..., help="Account id"),
    db_path: str = DB_OPTION,
    user: str = USER_OPTION,
    pin: str = PIN_OPTION,
) -> None:
    """Delete an account (admins only)."""

    users_delete_cmd(
        open_app=_open, db_path=db_path, user=user, pin=pin, user_id=parse_key(user_id)
    )


# -- calls ------------------------------------------------------------------


@calls_app.command("add")
def calls_add(
    client: str = typer.Option(None, help="Client name (default Anonymous Client)"),
    duration: int = typer.Option(0, help="Call length in seconds"),
    audio: str = typer.Option(None, help="Audio file to attach"),
    db_path: str = DB_OPTION,
    user: str = USER_OPTION,
    pin: str = PIN_OPTION,
) -> None:
    """Save a call recording."""

    calls_add_cmd(
        open_app=_open,
        db_path=db_path,
        user=user,
        pin=pin,
        client=client,
        duration=duration,
        audio=audio,
    )


@calls_app.command("list")
def calls_list(
    db_path: str = DB_OPTION,
    limit: int = typer.Option(50, help="Maximum calls to show"),
    search: str = SEARCH_OPTION,
) -> None:
    """List recent calls."""

    calls_list_cmd(open_app=_open, db_path=db_path, limit=limit, search=search)


@calls_app.command("rename")
def calls_rename(
    call_id: str = typer.Argument(..., help="Call id"),
    client: str = typer.Option(..., help="New client name"),
    date: str = typer.Option(None, help="Date label (YYYY-MM-DD)"),
    db_path: str = DB_OPTION,
) -> None:
    """Change the client name on a call."""

    calls_rename_cmd(
        open_app=_open, db_path=db_path, call_id=parse_key(call_id), client=client, date=date
    )


@calls_app.command("download")
def calls_download(
    call_id: str = typer.Argument(..., help="Call id"),
    output: str = typer.Option(None, "--output", "-o", help="Output file"),
    db_path: str = DB_OPTION,
) -> None:
    """Save a call's audio to a file."""

    calls_download_cmd(open_app=_open, db_path=db_path, call_id=parse_key(call_id), output=output)


@calls_app.command("delete")
def calls_delete(
    call_id: str = typer.Argument(..., help="Call id"),
    db_path: str = DB_OPTION,
) -> None:
    """Delete a call and the tickets raised from it."""

    calls_delete_cmd(open_app=_open, db_path=db_path, call_id=parse_key(call_id))


# -- tasks ------------------------------------------------------------------


@tasks_app.command("add")
def tasks_add(
    title: str = typer.Argument(..., help="Task title"),
    db_path: str = DB_OPTION,
    user: str = USER_OPTION,
    pin: str = PIN_OPTION,
) -> None:
    """Add a pending task."""

    tasks_add_cmd(open_app=_open, db_path=db_path, user=user, pin=pin, title=title)


@tasks_app.command("list")
def tasks_list(
    db_path: str = DB_OPTION,
    status: str = typer.Option(None, help="pending or completed"),
    search: str = SEARCH_OPTION,
) -> None:
    """List tasks."""

    tasks_list_cmd(open_app=_open, db_path=db_path, status=status, search=search)


@tasks_app.command("rename")
def tasks_rename(
    task_id: str = typer.Argument(..., help="Task id"),
    title: str = typer.Argument(..., help="New title"),
    db_path: str = DB_OPTION,
) -> None:
    """Rename a task."""

    tasks_rename_cmd(open_app=_open, db_path=db_path, task_id=parse_key(task_id), title=title)


@tasks_app.command("toggle")
def tasks_toggle(
    task_id: str = typer.Argument(..., help="Task id"),
    db_path: str = DB_OPTION,
) -> None:
    """Flip a task between pending and completed."""

    tasks_toggle_cmd(open_app=_open, db_path=db_path, task_id=parse_key(task_id))


@tasks_app.command("delete")
def tasks_delete(
    task_id: str = typer.Argument(..., help="Task id"),
    db_path: str = DB_OPTION,
) -> None:
    """Delete a task."""

    tasks_delete_cmd(open_app=_open, db_path=db_path, task_id=parse_key(task_id))


# -- tickets ----------------------------------------------------------------


@tickets_app.command("add")
def tickets_add(
    description: str = typer.Argument(..., help="Ticket description; one bullet per line"),
    client: str = typer.Option("", help="Client name"),
    priority: str = typer.Option("Medium", help="Low, Medium or High"),
    assignee: str = typer.Option(None, help="Assignee account id"),
    date: str = typer.Option(None, help="Date label (YYYY-MM-DD)"),
    db_path: str = DB_OPTION,
    user: str = USER_OPTION,
    pin: str = PIN_OPTION,
) -> None:
    """Create a ticket."""

    tickets_add_cmd(
        open_app=_open,
        db_path=db_path,
        user=user,
        pin=pin,
        description=description,
        client=client,
        priority=priority,
        assignee=_key_or_none(assignee),
        date=date,
    )


@tickets_app.command("from-call")
def tickets_from_call(
    call_id: str = typer.Argument(..., help="Call id"),
    description: str = typer.Argument(..., help="Ticket description"),
    db_path: str = DB_OPTION,
    user: str = USER_OPTION,
    pin: str = PIN_OPTION,
) -> None:
    """Raise a ticket from a recorded call."""

    tickets_from_call_cmd(
        open_app=_open,
        db_path=db_path,
        user=user,
        pin=pin,
        call_id=parse_key(call_id),
        description=description,
    )


@tickets_app.command("list")
def tickets_list(
    db_path: str = DB_OPTION,
    board: bool = typer.Option(False, "--board", help="Group by client"),
    search: str = SEARCH_OPTION,
) -> None:
    """List tickets, newest first."""

    tickets_list_cmd(open_app=_open, db_path=db_path, board=board, search=search)


@tickets_app.command("update")
def tickets_update(
    ticket_id: str = typer.Argument(..., help="Ticket id"),
    description: str = typer.Option(None, help="New description"),
    client: str = typer.Option(None, help="Client name"),
    priority: str = typer.Option(None, help="Low, Medium or High"),
    status: str = typer.Option(None, help="Open or Closed"),
    date: str = typer.Option(None, help="Date label (YYYY-MM-DD)"),
    assignee: str = typer.Option(None, help="Assignee account id"),
    unassign: bool = typer.Option(False, "--unassign", help="Clear the assignee"),
    db_path: str = DB_OPTION,
) -> None:
    """Edit a ticket."""

    tickets_update_cmd(
        open_app=_open,
        db_path=db_path,
        ticket_id=parse_key(ticket_id),
        description=description,
        client=client,
        priority=priority,
        status=status,
        date=date,
        assignee=_key_or_none(assignee),
        unassign=unassign,
    )


@tickets_app.command("move")
def tickets_move(
    ticket_id: str = typer.Argument(..., help="Ticket id"),
    client: str = typer.Argument(..., help="Target client column (Unassigned clears it)"),
    db_path: str = DB_OPTION,
) -> None:
    """Move a ticket to another client column."""

    tickets_move_cmd(
        open_app=_open, db_path=db_path, ticket_id=parse_key(ticket_id), client=client
    )


@tickets_app.command("delete")
def tickets_delete(
    ticket_id: str = typer.Argument(..., help="Ticket id"),
    db_path: str = DB_OPTION,
) -> None:
    """Delete a ticket."""

    tickets_delete_cmd(open_app=_open, db_path=db_path, ticket_id=parse_key(ticket_id))


@tickets_app.command("export")
def tickets_export(
    output: str = typer.Option("-", "--output", "-o", help="Output CSV file (default stdout)"),
    db_path: str = DB_OPTION,
    user: str = USER_OPTION,
    pin: str = PIN_OPTION,
) -> None:
    """Export tickets as CSV (agents export their own tickets)."""

    tickets_export_cmd(open_app=_open, db_path=db_path, user=user, pin=pin, output=output)


# -- case notes -------------------------------------------------------------


@notes_app.command("save")
def notes_save(
    client: str = typer.Option(..., help="Client name"),
    notes: str = typer.Option(..., help="Note text"),
    case_type: str = typer.Option("General", "--case-type", help="Case category"),
    date: str = typer.Option(..., help="Case date (YYYY-MM-DD)"),
    note_id: str = typer.Option(None, "--id", help="Overwrite an existing note"),
    db_path: str = DB_OPTION,
    user: str = USER_OPTION,
    pin: str = PIN_OPTION,
) -> None:
    """Create or overwrite a case note."""

    notes_save_cmd(
        open_app=_open,
        db_path=db_path,
        user=user,
        pin=pin,
        client=client,
        notes=notes,
        case_type=case_type,
        date=date,
        note_id=_key_or_none(note_id),
    )


@notes_app.command("list")
def notes_list(
    db_path: str = DB_OPTION,
    client: str = typer.Option(None, help="Only notes for this client"),
    search: str = SEARCH_OPTION,
) -> None:
    """List case notes."""

    notes_list_cmd(open_app=_open, db_path=db_path, client=client, search=search)


@notes_app.command("delete")
def notes_delete(
    note_id: str = typer.Argument(..., help="Case note id"),
    db_path: str = DB_OPTION,
) -> None:
    """Delete a case note."""

    notes_delete_cmd(open_app=_open, db_path=db_path, note_id=parse_key(note_id))


# -- sync -------------------------------------------------------------------


@sync_app.command("status")
def sync_status(db_path: str = DB_OPTION) -> None:
    """Show backend and queued writes."""

    sync_status_cmd(open_app=_open, db_path=db_path)


@sync_app.command("flush")
def sync_flush(db_path: str = DB_OPTION) -> None:
    """Send queued writes now."""

    sync_flush_cmd(open_app=_open, db_path=db_path)


@sync_app.command("run")
def sync_run(
    db_path: str = DB_OPTION,
    seconds: float = typer.Option(None, help="Stop after this many seconds"),
) -> None:
    """Run the sync bridge in the foreground."""

    sync_run_cmd(open_app=_open, db_path=db_path, duration_s=seconds)


@remote_app.command("serve")
def remote_serve(
    host: str = typer.Option(None, help="Bind address (default from config)"),
    port: int = typer.Option(None, help="Port (default from config)"),
    db_path: str = typer.Option(None, "--db-path", help="Document database path"),
    token: str = typer.Option(None, envvar="FRONTDESK_REMOTE_TOKEN", help="Shared token"),
) -> None:
    """Serve the HTTP document store."""

    remote_serve_cmd(
        load_config=load_config,
        run_document_server=run_document_server,
        host=host,
        port=port,
        db_path=db_path,
        token=token,
    )


if __name__ == "__main__":
    app()
