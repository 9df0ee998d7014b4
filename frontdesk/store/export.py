from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .types import Collection, Record, User
from .users import user_names
from .utils import now_iso

if TYPE_CHECKING:
    from ._store import LocalStore

CSV_HEADERS = ["ID", "Date", "Assignee", "Priority", "Related Call", "Description", "Status"]
BACKUP_COLLECTIONS = (Collection.CALLS, Collection.ACTIVITIES, Collection.TICKETS)


def _csv_field(value: object) -> str:
    return '"' + str(value).replace('"', '""') + '"'


def tickets_csv(store: LocalStore, acting_user: User) -> str:
    """Render the ticket board as CSV for spreadsheet tools.

    Admins export every ticket, agents only the tickets they created. Returns
    an empty string when there is nothing to export. The output starts with a
    UTF-8 byte order mark so spreadsheet tools keep the bullet characters.
    """

    where = None if acting_user.role == "admin" else {"user_id": acting_user.id}
    tickets = store.list(Collection.TICKETS, where=where, order_by="created_at", descending=True)
    if not tickets:
        return ""
    names = user_names(store)
    lines = [",".join(CSV_HEADERS)]
    for ticket in tickets:
        assignee_id = getattr(ticket, "assignee_id", None)
        call_id = getattr(ticket, "call_id", None)
        row = [
            ticket.id,
            getattr(ticket, "date_string", None) or "No Date",
            names.get(assignee_id, "Unassigned") if assignee_id is not None else "Unassigned",
            getattr(ticket, "priority", None),
            f"Call #{call_id}" if call_id else "Manual Entry",
            getattr(ticket, "description", None),
            getattr(ticket, "status", None),
        ]
        lines.append(",".join(_csv_field(value) for value in row))
    return "\ufeff" + "\n".join(lines)


def record_dict(record: Record) -> dict[str, Any]:
    data: dict[str, Any] = {"id": record.id}
    local_only = type(record).local_only_fields()
    for attr, doc_field, _kind in type(record).data_fields():
        if attr in local_only:
            continue
        data[doc_field] = getattr(record, attr)
    for key, value in record.extra.items():
        data.setdefault(key, value)
    return data


def full_backup(store: LocalStore, *, exported_at: str | None = None) -> dict[str, Any]:
    backup: dict[str, Any] = {"exportedAt": exported_at or now_iso()}
    for collection in BACKUP_COLLECTIONS:
        backup[collection.value] = [record_dict(r) for r in store.list(collection)]
    return backup
