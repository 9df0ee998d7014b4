from __future__ import annotations

import datetime as dt
import re
from typing import TYPE_CHECKING, Any

from .types import (
    TASK_STATUSES,
    TICKET_PRIORITIES,
    TICKET_STATUSES,
    CaseNote,
    Collection,
    RecordKey,
    Recording,
    Task,
    Ticket,
    ValidationError,
)
from .utils import date_label, local_midnight_ms, normalize_description, now_ms

if TYPE_CHECKING:
    from ..blobs import BlobStore
    from ._store import LocalStore

ANONYMOUS_CLIENT = "Anonymous Client"


def _require_text(value: str | None, message: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(message)
    return text


def _check_choice(value: str, choices: tuple[str, ...], label: str) -> str:
    if value not in choices:
        raise ValidationError(f"invalid {label}: {value!r} (expected one of {', '.join(choices)})")
    return value


# -- recordings -------------------------------------------------------------


def save_recording(
    store: LocalStore,
    *,
    user_id: RecordKey,
    duration: int,
    recording_blob: bytes | None = None,
    client_name: str | None = None,
    timestamp: int | None = None,
) -> Recording:
    ts = now_ms() if timestamp is None else int(timestamp)
    record = Recording(
        client_name=(client_name or "").strip() or ANONYMOUS_CLIENT,
        duration=int(duration),
        recording_blob=recording_blob,
        timestamp=ts,
        date_string=date_label(ts),
        user_id=user_id,
    )
    return store.add(record)  # type: ignore[return-value]


def update_recording(
    store: LocalStore, call_id: RecordKey, *, client_name: str, date_string: str | None = None
) -> dict[str, Any]:
    changes: dict[str, Any] = {
        "client_name": _require_text(client_name, "client name is required"),
    }
    if date_string is not None:
        changes["date_string"] = date_string
    return store.update(Collection.CALLS, call_id, changes)


def delete_recording(store: LocalStore, call_id: RecordKey) -> int:
    """Delete a recording and every ticket raised from it.

    Returns the number of tickets removed with it.
    """

    with store._mutation() as events:
        if not store._delete(Collection.CALLS, call_id, events):
            return 0
        rows = store.conn.execute(
            "SELECT id FROM tickets WHERE call_id = ? ORDER BY id", (call_id,)
        ).fetchall()
        removed = 0
        for row in rows:
            if store._delete(Collection.TICKETS, row["id"], events):
                removed += 1
    return removed


def recording_audio(
    store: LocalStore, call_id: RecordKey, *, blob_store: BlobStore | None = None
) -> tuple[bytes, str]:
    """Return the audio of a call and a file name to save it under.

    Audio that only lives in the shared blob store is fetched from there.
    """

    call = store.require(Collection.CALLS, call_id)
    blob = getattr(call, "recording_blob", None)
    ref = getattr(call, "recording_ref", None)
    if not blob and blob_store is not None and ref:
        blob = blob_store.get(ref)
    if not blob:
        raise ValidationError(f"recording file not found for call {call_id!r}")
    client = re.sub(r"[^A-Za-z0-9]", "_", getattr(call, "client_name", None) or "Unknown")
    day = getattr(call, "date_string", None) or date_label(getattr(call, "timestamp", None))
    return blob, f"REC_{client}_{day}.webm"


# -- tasks ------------------------------------------------------------------


def add_task(
    store: LocalStore, *, title: str, user_id: RecordKey, timestamp: int | None = None
) -> Task:
    record = Task(
        title=_require_text(title, "task title is required"),
        status="pending",
        timestamp=now_ms() if timestamp is None else int(timestamp),
        user_id=user_id,
    )
    return store.add(record)  # type: ignore[return-value]


def rename_task(store: LocalStore, task_id: RecordKey, title: str) -> dict[str, Any]:
    return store.update(
        Collection.ACTIVITIES, task_id, {"title": _require_text(title, "task title is required")}
    )


def toggle_task(store: LocalStore, task_id: RecordKey) -> str:
    task = store.require(Collection.ACTIVITIES, task_id)
    status = "completed" if getattr(task, "status", None) == "pending" else "pending"
    _check_choice(status, TASK_STATUSES, "task status")
    store.update(Collection.ACTIVITIES, task_id, {"status": status})
    return status


def delete_task(store: LocalStore, task_id: RecordKey) -> bool:
    return store.delete(Collection.ACTIVITIES, task_id)


# -- tickets ----------------------------------------------------------------


def create_ticket(
    store: LocalStore,
    *,
    description: str,
    user_id: RecordKey,
    client_name: str = "",
    priority: str = "Medium",
    assignee_id: RecordKey | None = None,
    date_string: str | None = None,
    call_id: RecordKey | None = None,
    created_at: int | None = None,
) -> Ticket:
    text = normalize_description(_require_text(description, "description is required"))
    ts = now_ms() if created_at is None else int(created_at)
    record = Ticket(
        description=text,
        status="Open",
        priority=_check_choice(priority, TICKET_PRIORITIES, "priority"),
        created_at=ts,
        date_string=date_string or date_label(ts),
        client_name=client_name.strip(),
        user_id=user_id,
        assignee_id=assignee_id,
        call_id=call_id,
    )
    return store.add(record)  # type: ignore[return-value]


def create_ticket_from_call(
    store: LocalStore,
    call_id: RecordKey,
    *,
    description: str,
    user_id: RecordKey,
    created_at: int | None = None,
) -> Ticket:
    call = store.require(Collection.CALLS, call_id)
    ts = now_ms() if created_at is None else int(created_at)
    record = Ticket(
        description=_require_text(description, "description is required"),
        status="Open",
        priority="Medium",
        created_at=ts,
        date_string=date_label(ts),
        client_name=str(getattr(call, "client_name", None) or ""),
        user_id=user_id,
        call_id=call_id,
        duration=getattr(call, "duration", None),
    )
    return store.add(record)  # type: ignore[return-value]


def update_ticket(
    store: LocalStore,
    ticket_id: RecordKey,
    *,
    description: str,
    client_name: str,
    priority: str,
    status: str,
    date_string: str | None,
    assignee_id: RecordKey | None,
) -> dict[str, Any]:
    """Overwrite the editable ticket fields; returns the fields that changed."""

    changes = {
        "description": normalize_description(
            _require_text(description, "description is required")
        ),
        "client_name": client_name.strip(),
        "priority": _check_choice(priority, TICKET_PRIORITIES, "priority"),
        "status": _check_choice(status, TICKET_STATUSES, "status"),
        "date_string": date_string or "",
        "assignee_id": assignee_id,
    }
    return store.update(Collection.TICKETS, ticket_id, changes)


def set_ticket_status(store: LocalStore, ticket_id: RecordKey, status: str) -> dict[str, Any]:
    return store.update(
        Collection.TICKETS, ticket_id, {"status": _check_choice(status, TICKET_STATUSES, "status")}
    )


def move_ticket_to_client(
    store: LocalStore, ticket_id: RecordKey, client_name: str
) -> dict[str, Any]:
    final = "" if client_name == "Unassigned" else client_name.strip()
    return store.update(Collection.TICKETS, ticket_id, {"client_name": final})


def delete_ticket(store: LocalStore, ticket_id: RecordKey) -> bool:
    return store.delete(Collection.TICKETS, ticket_id)


def tickets_by_client(store: LocalStore, term: str | None = None) -> dict[str, list[Ticket]]:
    """Group tickets into kanban columns keyed by client name, newest first."""

    columns: dict[str, list[Ticket]] = {}
    for ticket in search(
        store, Collection.TICKETS, term, order_by="created_at", descending=True
    ):
        client = str(getattr(ticket, "client_name", None) or "").strip() or "Unassigned"
        columns.setdefault(client, []).append(ticket)  # type: ignore[arg-type]
    return columns


# -- case notes -------------------------------------------------------------


def save_case_note(
    store: LocalStore,
    *,
    date_string: str,
    case_type: str,
    client_name: str,
    notes: str,
    user_id: RecordKey,
    note_id: RecordKey | None = None,
    timestamp: int | None = None,
) -> CaseNote:
    if not date_string or not client_name.strip() or not notes.strip():
        raise ValidationError("date, client and notes are required")
    values = {
        "date_string": date_string,
        "case_type": case_type,
        "client_name": client_name,
        "notes": notes,
        "user_id": user_id,
        "timestamp": now_ms() if timestamp is None else int(timestamp),
    }
    if note_id is None:
        return store.add(CaseNote(**values))  # type: ignore[return-value]
    store.update(Collection.CASE_NOTES, note_id, values)
    return store.require(Collection.CASE_NOTES, note_id)  # type: ignore[return-value]


def delete_case_note(store: LocalStore, note_id: RecordKey) -> bool:
    return store.delete(Collection.CASE_NOTES, note_id)


# -- dashboard --------------------------------------------------------------


def dashboard_counts(store: LocalStore, *, now: int | None = None) -> dict[str, int]:
    return {
        "calls_today": store.count_since(Collection.CALLS, "timestamp", local_midnight_ms(now)),
        "pending_tasks": store.count(Collection.ACTIVITIES, {"status": "pending"}),
        "open_tickets": store.count(Collection.TICKETS, {"status": "Open"}),
    }


MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def monthly_counts(
    store: LocalStore, *, year: int | None = None, now: int | None = None
) -> dict[str, list[int]]:
    """Calls and tickets per local calendar month of `year` (default: this year).

    Tickets without a creation time count as created now.
    """

    current = now_ms() if now is None else int(now)
    if year is None:
        year = dt.datetime.fromtimestamp(current / 1000).year
    counts = {"calls": [0] * 12, "tickets": [0] * 12}
    sources = (
        ("calls", store.column_values(Collection.CALLS, "timestamp"), None),
        ("tickets", store.column_values(Collection.TICKETS, "created_at"), current),
    )
    for label, values, fallback in sources:
        for value in values:
            ts = value if value is not None else fallback
            if ts is None:
                continue
            moment = dt.datetime.fromtimestamp(int(ts) / 1000)
            if moment.year == year:
                counts[label][moment.month - 1] += 1
    return counts


# -- search -----------------------------------------------------------------

SEARCH_FIELDS: dict[Collection, tuple[str, ...]] = {
    Collection.CALLS: ("client_name",),
    Collection.ACTIVITIES: ("title",),
    Collection.TICKETS: ("description", "client_name"),
    Collection.CASE_NOTES: ("client_name", "notes", "case_type"),
}


def search(
    store: LocalStore,
    collection: Collection,
    term: str | None,
    *,
    where: dict[str, Any] | None = None,
    order_by: str | None = None,
    descending: bool = False,
    limit: int | None = None,
) -> list[Any]:
    """List records whose searchable text contains `term`, ignoring case.

    A blank term matches everything.
    """

    if collection not in SEARCH_FIELDS:
        raise ValidationError(f"{collection.value} cannot be searched")
    needle = (term or "").strip().casefold()
    if not needle:
        return store.list(
            collection, where=where, order_by=order_by, descending=descending, limit=limit
        )
    fields = SEARCH_FIELDS[collection]
    records = [
        record
        for record in store.list(collection, where=where, order_by=order_by, descending=descending)
        if any(needle in str(getattr(record, f, None) or "").casefold() for f in fields)
    ]
    return records if limit is None else records[:limit]
