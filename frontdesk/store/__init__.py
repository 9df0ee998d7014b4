from __future__ import annotations

from ._store import LocalStore
from .types import (
    RECORD_TYPES,
    CaseNote,
    Collection,
    DuplicateUserError,
    MutationEvent,
    PermissionDenied,
    Record,
    RecordKey,
    RecordNotFoundError,
    Recording,
    Task,
    Ticket,
    User,
    ValidationError,
)

__all__ = [
    "RECORD_TYPES",
    "CaseNote",
    "Collection",
    "DuplicateUserError",
    "LocalStore",
    "MutationEvent",
    "PermissionDenied",
    "Record",
    "RecordKey",
    "RecordNotFoundError",
    "Recording",
    "Task",
    "Ticket",
    "User",
    "ValidationError",
]
