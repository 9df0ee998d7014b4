from __future__ import annotations

import datetime as dt
import logging
import threading
from pathlib import Path
from typing import Any

from .. import db
from ..remote import (
    ChangeCallback,
    DocumentChange,
    RemoteStore,
    Subscription,
    is_permanent_error,
)

logger = logging.getLogger(__name__)

OUTBOX_OPS = ("set", "update", "delete")


class QueuedRemoteStore:
    """Remote store wrapper that journals writes and sends them in order.

    Writes land in the `sync_outbox` table and return immediately; `flush()`
    drains the journal against the wrapped store. A write stays journaled until
    the wrapped store accepts it, so changes made offline go out once the
    remote is reachable again. Writes the remote refuses outright (an oversized
    body, a malformed document) are marked dead and kept for inspection.
    """

    def __init__(
        self,
        inner: RemoteStore,
        db_path: Path | str = ":memory:",
        *,
        flush_interval_s: float = 0.5,
    ) -> None:
        self.inner = inner
        self.name = f"queued:{getattr(inner, 'name', type(inner).__name__)}"
        self.conn = db.connect(db_path, check_same_thread=False)
        db.initialize_outbox_schema(self.conn)
        self.flush_interval_s = max(0.05, float(flush_interval_s))
        self._lock = threading.RLock()
        self._flush_lock = threading.Lock()
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # -- writes ------------------------------------------------------------

    def _enqueue(self, op: str, collection: str, key: str, payload: dict[str, Any] | None) -> None:
        if op not in OUTBOX_OPS:
            raise ValueError(f"unknown outbox op: {op}")
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO sync_outbox(collection, doc_key, op, payload_json, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    collection,
                    key,
                    op,
                    db.to_json(payload) if payload is not None else None,
                    dt.datetime.now(dt.UTC).isoformat(),
                ),
            )
            self.conn.commit()
        self._wake.set()

    def set(self, collection: str, key: str, data: dict[str, Any]) -> None:
        self._enqueue("set", collection, key, data)

    def update(self, collection: str, key: str, patch: dict[str, Any]) -> None:
        self._enqueue("update", collection, key, patch)

    def delete(self, collection: str, key: str) -> None:
        self._enqueue("delete", collection, key, None)

    # -- journal -----------------------------------------------------------

    def has_pending(self, collection: str, key: str) -> bool:
        with self._lock:
            row = self.conn.execute(
                """
                SELECT 1 FROM sync_outbox
                WHERE collection = ? AND doc_key = ? AND dead_at IS NULL
                LIMIT 1
                """,
                (collection, key),
            ).fetchone()
        return row is not None

    def pending_count(self) -> int:
        with self._lock:
            row = self.conn.execute(
                "SELECT COUNT(*) AS count FROM sync_outbox WHERE dead_at IS NULL"
            ).fetchone()
        return int(row["count"] or 0)

    def pending(self, limit: int = 50) -> list[dict[str, Any]]:
        with self._lock:
            rows = self.conn.execute(
                """
                SELECT id, collection, doc_key, op, created_at, attempts, last_error,
                       last_attempt_at
                FROM sync_outbox
                WHERE dead_at IS NULL
                ORDER BY id
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return db.rows_to_dicts(rows)

    def dead(self, limit: int = 50) -> list[dict[str, Any]]:
        """Writes the remote rejected for good; they are kept but never resent."""

        with self._lock:
            rows = self.conn.execute(
                """
                SELECT id, collection, doc_key, op, created_at, attempts, last_error, dead_at
                FROM sync_outbox
                WHERE dead_at IS NOT NULL
                ORDER BY id
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return db.rows_to_dicts(rows)

    def status(self) -> dict[str, Any]:
        with self._lock:
            row = self.conn.execute(
                """
                SELECT COUNT(*) AS count, MIN(created_at) AS oldest, MAX(attempts) AS attempts
                FROM sync_outbox
                WHERE dead_at IS NULL
                """
            ).fetchone()
            failing = self.conn.execute(
                """
                SELECT last_error, last_attempt_at FROM sync_outbox
                WHERE last_error IS NOT NULL AND dead_at IS NULL
                ORDER BY id
                LIMIT 1
                """
            ).fetchone()
            dead = self.conn.execute(
                "SELECT COUNT(*) AS count FROM sync_outbox WHERE dead_at IS NOT NULL"
            ).fetchone()
        return {
            "backend": self.name,
            "pending": int(row["count"] or 0),
            "oldest": row["oldest"],
            "max_attempts": int(row["attempts"] or 0),
            "last_error": failing["last_error"] if failing else None,
            "last_attempt_at": failing["last_attempt_at"] if failing else None,
            "dead": int(dead["count"] or 0),
            "running": self._thread is not None and self._thread.is_alive(),
        }

    def _next_entry(self) -> dict[str, Any] | None:
        with self._lock:
            row = self.conn.execute(
                """
                SELECT id, collection, doc_key, op, payload_json
                FROM sync_outbox
                WHERE dead_at IS NULL
                ORDER BY id
                LIMIT 1
                """
            ).fetchone()
        return dict(row) if row else None

    def _send(self, entry: dict[str, Any]) -> None:
        collection = entry["collection"]
        key = entry["doc_key"]
        op = entry["op"]
        if op == "set":
            self.inner.set(collection, key, db.from_json(entry["payload_json"]))
        elif op == "update":
            self.inner.update(collection, key, db.from_json(entry["payload_json"]))
        elif op == "delete":
            self.inner.delete(collection, key)
        else:
            raise ValueError(f"unknown outbox op: {op}")

    def _record_failure(self, entry_id: int, exc: Exception, *, dead: bool) -> None:
        now = dt.datetime.now(dt.UTC).isoformat()
        with self._lock:
            self.conn.execute(
                """
                UPDATE sync_outbox
                SET attempts = attempts + 1, last_error = ?, last_attempt_at = ?, dead_at = ?
                WHERE id = ?
                """,
                (str(exc)[:500], now, now if dead else None, entry_id),
            )
            self.conn.commit()

    def flush(self, *, limit: int | None = None) -> int:
        """Send journaled writes oldest first; returns how many were accepted.

        A transient failure stops the pass so later writes never overtake it.
        A write the remote rejects for good is set aside and the pass goes on.
        """

        sent = 0
        with self._flush_lock:
            while limit is None or sent < limit:
                entry = self._next_entry()
                if entry is None:
                    break
                try:
                    self._send(entry)
                except Exception as exc:
                    if is_permanent_error(exc):
                        self._record_failure(entry["id"], exc, dead=True)
                        logger.warning(
                            "remote rejected %s %s/%s; not retrying: %s",
                            entry["op"],
                            entry["collection"],
                            entry["doc_key"],
                            exc,
                        )
                        continue
                    self._record_failure(entry["id"], exc, dead=False)
                    logger.warning(
                        "remote %s %s/%s failed; will retry: %s",
                        entry["op"],
                        entry["collection"],
                        entry["doc_key"],
                        exc,
                    )
                    break
                with self._lock:
                    self.conn.execute("DELETE FROM sync_outbox WHERE id = ?", (entry["id"],))
                    self.conn.commit()
                sent += 1
        if sent:
            logger.debug("flushed %d queued remote writes", sent)
        return sent

    # -- feed --------------------------------------------------------------

    def watch(self, collection: str, callback: ChangeCallback) -> Subscription:
        def deliver(changes: list[DocumentChange]) -> None:
            marked = []
            for change in changes:
                if not change.pending and self.has_pending(change.collection, change.key):
                    change = DocumentChange(
                        change.collection, change.kind, change.key, change.data, pending=True
                    )
                marked.append(change)
            callback(marked)

        return self.inner.watch(collection, deliver)

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="frontdesk-outbox", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.is_set():
            self._wake.wait(self.flush_interval_s)
            self._wake.clear()
            if self._stop.is_set():
                break
            try:
                self.flush()
            except Exception:
                logger.exception("outbox flush failed")

    def stop(self, timeout_s: float = 5.0) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop.set()
        self._wake.set()
        thread.join(timeout_s)
        self._thread = None

    def close(self) -> None:
        self.stop()
        self.inner.close()
        with self._lock:
            self.conn.close()
