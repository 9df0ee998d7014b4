from __future__ import annotations

from pathlib import Path

import typer
from rich import print
from rich.markup import escape

from frontdesk.store import Collection, RecordKey

from .common import display_name, exit_on_error, require_user


def _truncate(text: str | None, limit: int = 60) -> str:
    value = " ".join(str(text or "").split())
    return value if len(value) <= limit else value[: limit - 1] + "…"


# -- users ------------------------------------------------------------------


def login_cmd(*, open_app, db_path: str | None, user: str | None, pin: str | None) -> None:
    app = open_app(db_path)
    try:
        account = require_user(app.store, user, pin)
        print(f"[green]Signed in as {escape(account.name)} ({account.role})[/green]")
    finally:
        app.close()


def users_add_cmd(
    *,
    open_app,
    db_path: str | None,
    user: str | None,
    pin: str | None,
    name: str,
    new_pin: str,
    role: str,
) -> None:
    app = open_app(db_path)
    try:
        with exit_on_error():
            if app.store.count(Collection.USERS) > 0:
                acting = require_user(app.store, user, pin)
                if acting.role != "admin":
                    print("[red]Only admins can add users[/red]")
                    raise typer.Exit(code=1)
            created = app.store.create_user(name, new_pin, role)
        print(f"[green]✓ Created {created.role} {escape(created.name)} (#{created.id})[/green]")
    finally:
        app.close()


def users_list_cmd(*, open_app, db_path: str | None) -> None:
    app = open_app(db_path)
    try:
        users = app.store.list(Collection.USERS, order_by="name")
    finally:
        app.close()
    if not users:
        print("No users")
        return
    for account in users:
        print(f"- #{account.id} {escape(account.name)} ({account.role})")


def users_delete_cmd(
    *, open_app, db_path: str | None, user: str | None, pin: str | None, user_id: RecordKey
) -> None:
    app = open_app(db_path)
    try:
        with exit_on_error():
            acting = require_user(app.store, user, pin)
            deleted = app.store.delete_user(acting, user_id)
        if not deleted:
            print(f"[yellow]No user #{user_id}[/yellow]")
            raise typer.Exit(code=1)
        print(f"[green]✓ Deleted user #{user_id}[/green]")
    finally:
        app.close()


# -- calls ------------------------------------------------------------------


def calls_add_cmd(
    *,
    open_app,
    db_path: str | None,
    user: str | None,
    pin: str | None,
    client: str | None,
    duration: int,
    audio: str | None,
) -> None:
    blob = None
    if audio:
        audio_path = Path(audio).expanduser()
        if not audio_path.exists():
            print(f"[red]Audio file not found: {audio_path}[/red]")
            raise typer.Exit(code=1)
        blob = audio_path.read_bytes()
    app = open_app(db_path)
    try:
        with exit_on_error():
            acting = require_user(app.store, user, pin)
            call = app.store.save_recording(
                user_id=acting.id, duration=duration, recording_blob=blob, client_name=client
            )
        print(f"[green]✓ Saved call #{call.id} for {escape(call.client_name)}[/green]")
    finally:
        app.close()


def calls_list_cmd(
    *, open_app, db_path: str | None, limit: int, search: str | None = None
) -> None:
    app = open_app(db_path)
    try:
        calls = app.store.search(
            Collection.CALLS, search, order_by="timestamp", descending=True, limit=limit
        )
        names = app.store.user_names()
    finally:
        app.close()
    if not calls:
        print("No calls")
        return
    for call in calls:
        audio = "audio" if call.recording_blob else "no audio"
        print(
            f"- #{call.id} {call.date_string or 'No Date'} {escape(call.client_name or '')} "
            f"{call.duration or 0}s by {escape(display_name(names, call.user_id))} ({audio})"
        )


def calls_rename_cmd(
    *, open_app, db_path: str | None, call_id: RecordKey, client: str, date: str | None
) -> None:
    app = open_app(db_path)
    try:
        with exit_on_error():
            changed = app.store.update_recording(call_id, client_name=client, date_string=date)
        print(f"[green]✓ Updated call #{call_id}[/green]" if changed else "No changes")
    finally:
        app.close()


def calls_download_cmd(
    *, open_app, db_path: str | None, call_id: RecordKey, output: str | None
) -> None:
    """Write a call's audio to a file (default name from client and date)."""

    app = open_app(db_path)
    try:
        with exit_on_error():
            audio, filename = app.store.recording_audio(call_id, blob_store=app.blob_store)
    finally:
        app.close()
    output_path = Path(output or filename).expanduser()
    try:
        output_path.write_bytes(audio)
    except OSError as exc:
        print(f"[red]Failed to write {output_path}: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    print(f"[green]✓ Saved recording of call #{call_id} to {output_path}[/green]")


def calls_delete_cmd(*, open_app, db_path: str | None, call_id: RecordKey) -> None:
    app = open_app(db_path)
    try:
        if app.store.get(Collection.CALLS, call_id) is None:
            print(f"[red]No call #{call_id}[/red]")
            raise typer.Exit(code=1)
        removed = app.store.delete_recording(call_id)
        print(f"[green]✓ Deleted call #{call_id} and {removed} linked ticket(s)[/green]")
    finally:
        app.close()


# -- tasks ------------------------------------------------------------------


def tasks_add_cmd(
    *, open_app, db_path: str | None, user: str | None, pin: str | None, title: str
) -> None:
    app = open_app(db_path)
    try:
        with exit_on_error():
            acting = require_user(app.store, user, pin)
            task = app.store.add_task(title=title, user_id=acting.id)
        print(f"[green]✓ Added task #{task.id}[/green]")
    finally:
        app.close()


def tasks_list_cmd(
    *, open_app, db_path: str | None, status: str | None, search: str | None = None
) -> None:
    app = open_app(db_path)
    try:
        with exit_on_error():
            where = {"status": status} if status else None
            tasks = app.store.search(
                Collection.ACTIVITIES, search, where=where, order_by="timestamp", descending=True
            )
    finally:
        app.close()
    if not tasks:
        print("No tasks")
        return
    for task in tasks:
        mark = "x" if task.status == "completed" else " "
        print(f"- {escape('[' + mark + ']')} #{task.id} {escape(task.title or '')}")


def tasks_rename_cmd(*, open_app, db_path: str | None, task_id: RecordKey, title: str) -> None:
    app = open_app(db_path)
    try:
        with exit_on_error():
            app.store.rename_task(task_id, title)
        print(f"[green]✓ Renamed task #{task_id}[/green]")
    finally:
        app.close()


def tasks_toggle_cmd(*, open_app, db_path: str | None, task_id: RecordKey) -> None:
    app = open_app(db_path)
    try:
        with exit_on_error():
            status = app.store.toggle_task(task_id)
        print(f"Task #{task_id} is now {status}")
    finally:
        app.close()


def tasks_delete_cmd(*, open_app, db_path: str | None, task_id: RecordKey) -> None:
    app = open_app(db_path)
    try:
        if not app.store.delete_task(task_id):
            print(f"[red]No task #{task_id}[/red]")
            raise typer.Exit(code=1)
        print(f"[green]✓ Deleted task #{task_id}[/green]")
    finally:
        app.close()


# -- tickets ----------------------------------------------------------------


def tickets_add_cmd(
    *,
    open_app,
    db_path: str | None,
    user: str | None,
    pin: str | None,
    description: str,
    client: str,
    priority: str,
    assignee: RecordKey | None,
    date: str | None,
) -> None:
    app = open_app(db_path)
    try:
        with exit_on_error():
            acting = require_user(app.store, user, pin)
            if assignee is not None:
                app.store.require(Collection.USERS, assignee)
            ticket = app.store.create_ticket(
                description=description,
                user_id=acting.id,
                client_name=client,
                priority=priority,
                assignee_id=assignee,
                date_string=date,
            )
        print(f"[green]✓ Created ticket #{ticket.id}[/green]")
    finally:
        app.close()


def tickets_from_call_cmd(
    *,
    open_app,
    db_path: str | None,
    user: str | None,
    pin: str | None,
    call_id: RecordKey,
    description: str,
) -> None:
    app = open_app(db_path)
    try:
        with exit_on_error():
            acting = require_user(app.store, user, pin)
            ticket = app.store.create_ticket_from_call(
                call_id, description=description, user_id=acting.id
            )
        print(f"[green]✓ Created ticket #{ticket.id} from call #{call_id}[/green]")
    finally:
        app.close()


def tickets_list_cmd(
    *, open_app, db_path: str | None, board: bool, search: str | None = None
) -> None:
    app = open_app(db_path)
    try:
        names = app.store.user_names()
        if board:
            columns = app.store.tickets_by_client(search)
        else:
            columns = {
                "": app.store.search(
                    Collection.TICKETS, search, order_by="created_at", descending=True
                )
            }
    finally:
        app.close()
    if not any(columns.values()):
        print("No tickets")
        return
    for client, tickets in columns.items():
        if client:
            print(f"[bold]{escape(client)}[/bold] ({len(tickets)})")
        for ticket in tickets:
            linked = f" call #{ticket.call_id}" if ticket.call_id else ""
            print(
                f"- #{ticket.id} ({ticket.status}/{ticket.priority}) "
                f"{escape(_truncate(ticket.description))} "
                f"({escape(display_name(names, ticket.assignee_id))}{linked})"
            )


def tickets_update_cmd(
    *,
    open_app,
    db_path: str | None,
    ticket_id: RecordKey,
    description: str | None,
    client: str | None,
    priority: str | None,
    status: str | None,
    date: str | None,
    assignee: RecordKey | None,
    unassign: bool,
) -> None:
    app = open_app(db_path)
    try:
        with exit_on_error():
            current = app.store.require(Collection.TICKETS, ticket_id)
            if assignee is not None:
                app.store.require(Collection.USERS, assignee)
            changed = app.store.update_ticket(
                ticket_id,
                description=description if description is not None else current.description or "",
                client_name=client if client is not None else current.client_name or "",
                priority=priority or current.priority or "Medium",
                status=status or current.status or "Open",
                date_string=date if date is not None else current.date_string,
                assignee_id=None if unassign else (
                    assignee if assignee is not None else current.assignee_id
                ),
            )
        if changed:
            print(f"[green]✓ Updated ticket #{ticket_id}: {', '.join(sorted(changed))}[/green]")
        else:
            print("No changes")
    finally:
        app.close()


def tickets_move_cmd(*, open_app, db_path: str | None, ticket_id: RecordKey, client: str) -> None:
    app = open_app(db_path)
    try:
        with exit_on_error():
            app.store.move_ticket_to_client(ticket_id, client)
        print(f"[green]✓ Moved ticket #{ticket_id} to {escape(client)}[/green]")
    finally:
        app.close()


def tickets_delete_cmd(*, open_app, db_path: str | None, ticket_id: RecordKey) -> None:
    app = open_app(db_path)
    try:
        if not app.store.delete_ticket(ticket_id):
            print(f"[red]No ticket #{ticket_id}[/red]")
            raise typer.Exit(code=1)
        print(f"[green]✓ Deleted ticket #{ticket_id}[/green]")
    finally:
        app.close()


def tickets_export_cmd(
    *, open_app, db_path: str | None, user: str | None, pin: str | None, output: str
) -> None:
    app = open_app(db_path)
    try:
        acting = require_user(app.store, user, pin)
        csv_text = app.store.tickets_csv(acting)
    finally:
        app.close()
    if not csv_text:
        print("[yellow]No tickets to export[/yellow]")
        return
    if output == "-":
        typer.echo(csv_text)
        return
    output_path = Path(output).expanduser()
    output_path.write_text(csv_text, encoding="utf-8")
    print(f"[green]✓ Exported {csv_text.count(chr(10))} ticket(s) to {output_path}[/green]")


# -- case notes -------------------------------------------------------------


def notes_save_cmd(
    *,
    open_app,
    db_path: str | None,
    user: str | None,
    pin: str | None,
    client: str,
    notes: str,
    case_type: str,
    date: str,
    note_id: RecordKey | None,
) -> None:
    app = open_app(db_path)
    try:
        with exit_on_error():
            acting = require_user(app.store, user, pin)
            note = app.store.save_case_note(
                date_string=date,
                case_type=case_type,
                client_name=client,
                notes=notes,
                user_id=acting.id,
                note_id=note_id,
            )
        print(f"[green]✓ Saved case note #{note.id}[/green]")
    finally:
        app.close()


def notes_list_cmd(
    *, open_app, db_path: str | None, client: str | None, search: str | None = None
) -> None:
    app = open_app(db_path)
    try:
        where = {"client_name": client} if client else None
        notes = app.store.search(
            Collection.CASE_NOTES, search, where=where, order_by="timestamp", descending=True
        )
    finally:
        app.close()
    if not notes:
        print("No case notes")
        return
    for note in notes:
        print(
            f"- #{note.id} {note.date_string} {escape(note.case_type or '')} "
            f"{escape(note.client_name or '')}: {escape(_truncate(note.notes))}"
        )


def notes_delete_cmd(*, open_app, db_path: str | None, note_id: RecordKey) -> None:
    app = open_app(db_path)
    try:
        if not app.store.delete_case_note(note_id):
            print(f"[red]No case note #{note_id}[/red]")
            raise typer.Exit(code=1)
        print(f"[green]✓ Deleted case note #{note_id}[/green]")
    finally:
        app.close()