from __future__ import annotations

import contextlib
import dataclasses
import logging
import threading
from collections.abc import Callable, Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any

from .. import db
from . import export as store_export
from . import records as store_records
from . import retention as store_retention
from . import users as store_users
from .types import (
    Collection,
    MutationEvent,
    Record,
    RecordKey,
    RecordNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

Observer = Callable[[MutationEvent], None]


class LocalStore:
    """On-device store for the five front-office collections.

    Every committed mutation is reported to the registered observers after the
    transaction commits, outside the store lock.
    """

    def __init__(
        self,
        db_path: Path | str = db.DEFAULT_DB_PATH,
        *,
        check_same_thread: bool = False,
    ):
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path).expanduser()
        self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
        db.initialize_schema(self.conn)
        self._lock = threading.RLock()
        self._observers: list[Observer] = []

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    # -- observers ---------------------------------------------------------

    def add_observer(self, callback: Observer) -> None:
        with self._lock:
            if callback not in self._observers:
                self._observers.append(callback)

    def remove_observer(self, callback: Observer) -> None:
        with self._lock:
            if callback in self._observers:
                self._observers.remove(callback)

    def _emit(self, events: Iterable[MutationEvent]) -> None:
        observers = list(self._observers)
        for event in events:
            for callback in observers:
                try:
                    callback(event)
                except Exception:
                    logger.exception(
                        "mutation observer failed for %s %s/%s",
                        event.op,
                        event.collection.value,
                        event.key,
                    )

    @contextlib.contextmanager
    def _mutation(self) -> Iterator[list[MutationEvent]]:
        events: list[MutationEvent] = []
        with self._lock:
            with self.conn:
                yield events
        self._emit(events)

    # -- row mapping -------------------------------------------------------

    @staticmethod
    def _columns(record_type: type[Record]) -> list[str]:
        return [attr for attr, _doc, _kind in record_type.data_fields()]

    def _check_attrs(self, collection: Collection, attrs: Iterable[str]) -> None:
        allowed = set(self._columns(collection.record_type))
        unknown = sorted(set(attrs) - allowed)
        if unknown:
            raise ValidationError(f"unknown {collection.value} fields: {', '.join(unknown)}")

    def _record_to_row(self, record: Record) -> dict[str, Any]:
        row: dict[str, Any] = {"id": record.id}
        for attr in self._columns(type(record)):
            row[attr] = getattr(record, attr)
        row["extra_json"] = db.to_json(record.extra) if record.extra else None
        return row

    def _record_from_row(self, collection: Collection, row: Mapping[str, Any]) -> Record:
        record_type = collection.record_type
        values = {attr: row[attr] for attr in self._columns(record_type)}
        return record_type(id=row["id"], extra=db.from_json(row["extra_json"]), **values)

    # -- identifiers -------------------------------------------------------

    def _next_id(self, collection: Collection) -> int:
        row = self.conn.execute(
            "SELECT seq FROM id_sequences WHERE collection = ?", (collection.value,)
        ).fetchone()
        seq = int(row["seq"]) if row else 0
        max_row = self.conn.execute(
            f"SELECT MAX(id) AS max_id FROM {collection.table} WHERE typeof(id) = 'integer'"
        ).fetchone()
        next_id = max(seq, int(max_row["max_id"] or 0)) + 1
        self.conn.execute(
            """
            INSERT INTO id_sequences(collection, seq) VALUES (?, ?)
            ON CONFLICT(collection) DO UPDATE SET seq = excluded.seq
            """,
            (collection.value, next_id),
        )
        return next_id

    # -- reads -------------------------------------------------------------

    def _where(
        self, collection: Collection, where: Mapping[str, Any] | None
    ) -> tuple[str, list[Any]]:
        if not where:
            return "", []
        self._check_attrs(collection, where)
        clauses: list[str] = []
        params: list[Any] = []
        for attr, value in where.items():
            if value is None:
                clauses.append(f"{attr} IS NULL")
            elif isinstance(value, list | tuple | set):
                values = list(value)
                if not values:
                    clauses.append("0")
                    continue
                clauses.append(f"{attr} IN ({','.join('?' for _ in values)})")
                params.extend(values)
            else:
                clauses.append(f"{attr} = ?")
                params.append(value)
        return " WHERE " + " AND ".join(clauses), params

    def get(self, collection: Collection, key: RecordKey) -> Record | None:
        with self._lock:
            row = self.conn.execute(
                f"SELECT * FROM {collection.table} WHERE id = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        return self._record_from_row(collection, row)

    def require(self, collection: Collection, key: RecordKey) -> Record:
        record = self.get(collection, key)
        if record is None:
            raise RecordNotFoundError(collection, key)
        return record

    def list(
        self,
        collection: Collection,
        *,
        where: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Record]:
        clause, params = self._where(collection, where)
        sql = f"SELECT * FROM {collection.table}{clause}"
        direction = "DESC" if descending else "ASC"
        if order_by:
            self._check_attrs(collection, [order_by])
            sql += f" ORDER BY {order_by} {direction}, id {direction}"
        else:
            sql += f" ORDER BY id {direction}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        return [self._record_from_row(collection, row) for row in rows]

    def count(self, collection: Collection, where: Mapping[str, Any] | None = None) -> int:
        clause, params = self._where(collection, where)
        with self._lock:
            row = self.conn.execute(
                f"SELECT COUNT(*) AS count FROM {collection.table}{clause}", params
            ).fetchone()
        return int(row["count"] or 0)

    def count_between(
        self, collection: Collection, attr: str, lower: int, upper: int
    ) -> int:
        """Count records with lower < attr < upper."""

        self._check_attrs(collection, [attr])
        with self._lock:
            row = self.conn.execute(
                f"SELECT COUNT(*) AS count FROM {collection.table} "
                f"WHERE {attr} > ? AND {attr} < ?",
                (lower, upper),
            ).fetchone()
        return int(row["count"] or 0)

    def count_since(self, collection: Collection, attr: str, since: int) -> int:
        self._check_attrs(collection, [attr])
        with self._lock:
            row = self.conn.execute(
                f"SELECT COUNT(*) AS count FROM {collection.table} WHERE {attr} >= ?",
                (since,),
            ).fetchone()
        return int(row["count"] or 0)

    def column_values(self, collection: Collection, attr: str) -> list[Any]:
        self._check_attrs(collection, [attr])
        with self._lock:
            rows = self.conn.execute(f"SELECT {attr} AS value FROM {collection.table}").fetchall()
        return [row["value"] for row in rows]

    def keys_at_or_below(self, collection: Collection, attr: str, cutoff: int) -> list[RecordKey]:
        self._check_attrs(collection, [attr])
        with self._lock:
            rows = self.conn.execute(
                f"SELECT id FROM {collection.table} WHERE {attr} <= ? ORDER BY id",
                (cutoff,),
            ).fetchall()
        return [row["id"] for row in rows]

    # -- local mutations ---------------------------------------------------

    def _insert(self, record: Record, events: list[MutationEvent]) -> Record:
        collection = record.collection
        if record.id is None:
            record = dataclasses.replace(record, id=self._next_id(collection))
        else:
            exists = self.conn.execute(
                f"SELECT 1 FROM {collection.table} WHERE id = ?", (record.id,)
            ).fetchone()
            if exists:
                raise ValidationError(f"{collection.value} record {record.id!r} already exists")
        row = self._record_to_row(record)
        columns = list(row)
        self.conn.execute(
            f"INSERT INTO {collection.table}({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})",
            [row[c] for c in columns],
        )
        events.append(MutationEvent(collection, "create", record.id, record=record))
        return record

    def _update(
        self,
        collection: Collection,
        key: RecordKey,
        changes: Mapping[str, Any],
        events: list[MutationEvent],
    ) -> dict[str, Any]:
        self._check_attrs(collection, changes)
        row = self.conn.execute(
            f"SELECT * FROM {collection.table} WHERE id = ?", (key,)
        ).fetchone()
        if row is None:
            raise RecordNotFoundError(collection, key)
        modified = {attr: value for attr, value in changes.items() if row[attr] != value}
        if not modified:
            return {}
        assignments = ", ".join(f"{attr} = ?" for attr in modified)
        self.conn.execute(
            f"UPDATE {collection.table} SET {assignments} WHERE id = ?",
            [*modified.values(), key],
        )
        events.append(MutationEvent(collection, "update", key, changes=dict(modified)))
        return modified

    def _delete(
        self,
        collection: Collection,
        key: RecordKey,
        events: list[MutationEvent],
        *,
        origin: str = "local",
    ) -> bool:
        cur = self.conn.execute(f"DELETE FROM {collection.table} WHERE id = ?", (key,))
        if cur.rowcount <= 0:
            return False
        events.append(MutationEvent(collection, "delete", key, origin=origin))
        return True

    def add(self, record: Record) -> Record:
        with self._mutation() as events:
            return self._insert(record, events)

    def update(
        self, collection: Collection, key: RecordKey, changes: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Apply `changes` and return the subset whose value actually changed."""

        with self._mutation() as events:
            return self._update(collection, key, changes, events)

    def delete(self, collection: Collection, key: RecordKey) -> bool:
        with self._mutation() as events:
            return self._delete(collection, key, events)

    def delete_many(self, collection: Collection, keys: Iterable[RecordKey]) -> int:
        deleted = 0
        with self._mutation() as events:
            for key in keys:
                if self._delete(collection, key, events):
                    deleted += 1
        return deleted

    # -- remote-originated mutations ---------------------------------------

    def apply_remote_upsert(self, record: Record) -> str:
        """Store a record received from the remote feed under its own id.

        Local-only columns (the audio blob) keep their current value when the
        incoming record carries none. Returns "inserted", "updated" or
        "unchanged".
        """

        if record.id is None:
            raise ValidationError("remote record without id")
        collection = record.collection
        with self._mutation() as events:
            existing = self.conn.execute(
                f"SELECT * FROM {collection.table} WHERE id = ?", (record.id,)
            ).fetchone()
            row = self._record_to_row(record)
            if existing is not None:
                for attr in type(record).local_only_fields():
                    if row[attr] is None:
                        row[attr] = existing[attr]
                if all(existing[c] == row[c] for c in row):
                    return "unchanged"
            columns = list(row)
            self.conn.execute(
                f"INSERT OR REPLACE INTO {collection.table}({', '.join(columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)})",
                [row[c] for c in columns],
            )
            events.append(
                MutationEvent(collection, "put", record.id, record=record, origin="remote")
            )
        return "updated" if existing is not None else "inserted"

    def apply_remote_delete(self, collection: Collection, key: RecordKey) -> bool:
        with self._mutation() as events:
            return self._delete(collection, key, events, origin="remote")

    # -- application operations --------------------------------------------

    def create_user(self, name: str, pin: str, role: str = "agent"):
        return store_users.create_user(self, name, pin, role)

    def authenticate(self, name: str, pin: str):
        return store_users.authenticate(self, name, pin)

    def delete_user(self, acting_user, user_id: RecordKey) -> bool:
        return store_users.delete_user(self, acting_user, user_id)

    def seed_admin(self, name: str, pin: str):
        return store_users.seed_admin(self, name, pin)

    def user_names(self) -> dict[RecordKey, str]:
        return store_users.user_names(self)

    def save_recording(self, **kwargs: Any):
        return store_records.save_recording(self, **kwargs)

    def update_recording(self, call_id: RecordKey, **kwargs: Any) -> dict[str, Any]:
        return store_records.update_recording(self, call_id, **kwargs)

    def delete_recording(self, call_id: RecordKey) -> int:
        return store_records.delete_recording(self, call_id)

    def recording_audio(self, call_id: RecordKey, *, blob_store=None) -> tuple[bytes, str]:
        return store_records.recording_audio(self, call_id, blob_store=blob_store)

    def add_task(self, **kwargs: Any):
        return store_records.add_task(self, **kwargs)

    def rename_task(self, task_id: RecordKey, title: str) -> dict[str, Any]:
        return store_records.rename_task(self, task_id, title)

    def toggle_task(self, task_id: RecordKey) -> str:
        return store_records.toggle_task(self, task_id)

    def delete_task(self, task_id: RecordKey) -> bool:
        return store_records.delete_task(self, task_id)

    def create_ticket(self, **kwargs: Any):
        return store_records.create_ticket(self, **kwargs)

    def create_ticket_from_call(self, call_id: RecordKey, **kwargs: Any):
        return store_records.create_ticket_from_call(self, call_id, **kwargs)

    def update_ticket(self, ticket_id: RecordKey, **kwargs: Any) -> dict[str, Any]:
        return store_records.update_ticket(self, ticket_id, **kwargs)

    def set_ticket_status(self, ticket_id: RecordKey, status: str) -> dict[str, Any]:
        return store_records.set_ticket_status(self, ticket_id, status)

    def move_ticket_to_client(self, ticket_id: RecordKey, client_name: str) -> dict[str, Any]:
        return store_records.move_ticket_to_client(self, ticket_id, client_name)

    def delete_ticket(self, ticket_id: RecordKey) -> bool:
        return store_records.delete_ticket(self, ticket_id)

    def tickets_by_client(self, term: str | None = None):
        return store_records.tickets_by_client(self, term)

    def save_case_note(self, **kwargs: Any):
        return store_records.save_case_note(self, **kwargs)

    def delete_case_note(self, note_id: RecordKey) -> bool:
        return store_records.delete_case_note(self, note_id)

    def dashboard_counts(self, *, now: int | None = None) -> dict[str, int]:
        return store_records.dashboard_counts(self, now=now)

    def monthly_counts(self, **kwargs: Any) -> dict[str, list[int]]:
        return store_records.monthly_counts(self, **kwargs)

    def search(self, collection: Collection, term: str | None, **kwargs: Any) -> list[Record]:
        return store_records.search(self, collection, term, **kwargs)

    def cleanup_old_data(self, **kwargs: Any):
        return store_retention.cleanup_old_data(self, **kwargs)

    def tickets_csv(self, acting_user) -> str:
        return store_export.tickets_csv(self, acting_user)

    def full_backup(self, *, exported_at: str | None = None) -> dict[str, Any]:
        return store_export.full_backup(self, exported_at=exported_at)
