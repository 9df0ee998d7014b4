from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar

RecordKey = int | str

USER_ROLES = ("admin", "agent")
TASK_STATUSES = ("pending", "completed")
TICKET_STATUSES = ("Open", "Closed")
TICKET_PRIORITIES = ("Low", "Medium", "High")


class Collection(str, Enum):
    USERS = "users"
    CALLS = "calls"
    ACTIVITIES = "activities"
    TICKETS = "tickets"
    CASE_NOTES = "caseNotes"

    @property
    def table(self) -> str:
        return "case_notes" if self is Collection.CASE_NOTES else self.value

    @property
    def record_type(self) -> type[Record]:
        return RECORD_TYPES[self]


class RecordNotFoundError(LookupError):
    def __init__(self, collection: Collection, key: RecordKey) -> None:
        super().__init__(f"{collection.value} record {key!r} not found")
        self.collection = collection
        self.key = key


class ValidationError(ValueError):
    pass


class DuplicateUserError(ValidationError):
    pass


class PermissionDenied(PermissionError):
    pass


def _int(default: int | None = None) -> Any:
    return field(default=default, metadata={"kind": "int"})


def _ref() -> Any:
    return field(default=None, metadata={"kind": "ref"})


def _str(default: str | None = None) -> Any:
    return field(default=default, metadata={"kind": "str"})


def _blob() -> Any:
    return field(default=None, repr=False, metadata={"kind": "blob", "local_only": True})


@dataclass
class Record:
    collection: ClassVar[Collection]

    id: RecordKey | None = None
    # Document fields this version does not know about, kept for write-back.
    extra: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def data_fields(cls) -> list[tuple[str, str, str]]:
        """Return (attribute, document field, kind) for every synced or stored column."""

        out = []
        for f in fields(cls):
            if f.name in {"id", "extra"}:
                continue
            out.append((f.name, camel_case(f.name), str(f.metadata.get("kind", "str"))))
        return out

    @classmethod
    def local_only_fields(cls) -> set[str]:
        return {f.name for f in fields(cls) if f.metadata.get("local_only")}


@dataclass
class User(Record):
    collection: ClassVar[Collection] = Collection.USERS

    name: str = _str("")
    pin: str = _str("")
    role: str = _str("agent")


@dataclass
class Recording(Record):
    collection: ClassVar[Collection] = Collection.CALLS

    client_name: str | None = _str()
    duration: int | None = _int(0)
    recording_blob: bytes | None = _blob()
    recording_ref: str | None = _str()
    timestamp: int | None = _int()
    date_string: str | None = _str()
    user_id: RecordKey | None = _ref()


@dataclass
class Task(Record):
    collection: ClassVar[Collection] = Collection.ACTIVITIES

    title: str | None = _str()
    status: str | None = _str("pending")
    timestamp: int | None = _int()
    user_id: RecordKey | None = _ref()


@dataclass
class Ticket(Record):
    collection: ClassVar[Collection] = Collection.TICKETS

    description: str | None = _str()
    status: str | None = _str("Open")
    priority: str | None = _str("Medium")
    created_at: int | None = _int()
    date_string: str | None = _str()
    client_name: str | None = _str()
    user_id: RecordKey | None = _ref()
    assignee_id: RecordKey | None = _ref()
    call_id: RecordKey | None = _ref()
    duration: int | None = _int()


@dataclass
class CaseNote(Record):
    collection: ClassVar[Collection] = Collection.CASE_NOTES

    date_string: str | None = _str()
    case_type: str | None = _str()
    client_name: str | None = _str()
    notes: str | None = _str()
    user_id: RecordKey | None = _ref()
    timestamp: int | None = _int()


RECORD_TYPES: dict[Collection, type[Record]] = {
    Collection.USERS: User,
    Collection.CALLS: Recording,
    Collection.ACTIVITIES: Task,
    Collection.TICKETS: Ticket,
    Collection.CASE_NOTES: CaseNote,
}


@dataclass(frozen=True)
class MutationEvent:
    """A committed change to the Local Store.

    `record` is set for creates, `changes` (attribute -> new value, only the
    fields whose value actually changed) for updates. `origin` is "remote" when
    the mutation was applied from the remote change feed.
    """

    collection: Collection
    op: str
    key: RecordKey
    record: Record | None = None
    changes: dict[str, Any] | None = None
    origin: str = "local"


_CAMEL_RE = re.compile(r"_([a-z])")


def camel_case(name: str) -> str:
    return _CAMEL_RE.sub(lambda m: m.group(1).upper(), name)
