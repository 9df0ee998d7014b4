from __future__ import annotations

import datetime as dt
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any

from .. import db
from ..sync.http_client import (
    RemoteRequestError,
    build_base_url,
    collection_url,
    doc_url,
    request_json,
)
from . import CHANGE_ADDED, CHANGE_KINDS, ChangeCallback, DocumentChange, Subscription

logger = logging.getLogger(__name__)

PAGE_SIZE = 200

__all__ = ["HttpRemoteStore", "RemoteRequestError"]


class _ChangePoller:
    """Follows one collection's change feed from its last applied position.

    Without a saved position the first poll loads the current documents
    instead of replaying the whole history.
    """

    def __init__(
        self,
        remote: HttpRemoteStore,
        collection: str,
        callback: ChangeCallback,
    ) -> None:
        self.remote = remote
        self.collection = collection
        self.callback = callback
        self.cursor: int | None = remote.load_cursor(collection)
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name=f"frontdesk-watch-{collection}", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(self.remote.timeout_s + 1.0)

    def poll_once(self) -> int:
        """Fetch and deliver one page of changes; returns how many arrived."""

        if self.cursor is None:
            changes, cursor = self.remote.snapshot(self.collection)
        else:
            changes, cursor = self.remote.changes_since(self.collection, self.cursor)
        if changes:
            try:
                self.callback(changes)
            except Exception:
                logger.exception("change callback failed for %s", self.collection)
        if cursor != self.cursor:
            self.remote.save_cursor(self.collection, cursor)
        self.cursor = cursor
        return len(changes)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                received = self.poll_once()
            except (OSError, RuntimeError, ValueError, sqlite3.Error) as exc:
                logger.warning("polling %s changes failed: %s", self.collection, exc)
                received = 0
            if received >= PAGE_SIZE:
                continue
            self._stop.wait(self.remote.poll_interval_s)


class HttpRemoteStore:
    """Client for the frontdesk document server.

    `cursor_db_path` keeps the feed position per server and collection so a
    restart resumes where the last run stopped.
    """

    name = "http"

    def __init__(
        self,
        url: str,
        *,
        token: str | None = None,
        timeout_s: float = 5.0,
        poll_interval_s: float = 1.0,
        cursor_db_path: Path | str = ":memory:",
    ) -> None:
        self.base_url = build_base_url(url)
        if not self.base_url:
            raise RuntimeError("remote_url is required for the http backend")
        self.token = token
        self.timeout_s = timeout_s
        self.poll_interval_s = max(0.05, poll_interval_s)
        self._pollers: list[_ChangePoller] = []
        self._lock = threading.Lock()
        self._cursor_lock = threading.Lock()
        self._cursor_conn = db.connect(cursor_db_path, check_same_thread=False)
        db.initialize_cursor_schema(self._cursor_conn)

    def _headers(self) -> dict[str, str]:
        return {"X-Frontdesk-Token": self.token} if self.token else {}

    def _request(
        self, method: str, url: str, body: dict[str, Any] | None = None
    ) -> tuple[int, dict[str, Any] | None]:
        return request_json(
            method,
            url,
            headers=self._headers(),
            body=body,
            timeout_s=self.timeout_s,
            accept_statuses=(404,) if method in {"DELETE", "GET"} else (),
        )

    # -- cursors -----------------------------------------------------------

    def load_cursor(self, collection: str) -> int | None:
        with self._cursor_lock:
            row = self._cursor_conn.execute(
                "SELECT cursor FROM sync_cursors WHERE source = ? AND collection = ?",
                (self.base_url, collection),
            ).fetchone()
        return int(row["cursor"]) if row else None

    def save_cursor(self, collection: str, cursor: int) -> None:
        with self._cursor_lock:
            self._cursor_conn.execute(
                """
                INSERT INTO sync_cursors(source, collection, cursor, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(source, collection) DO UPDATE SET
                    cursor = excluded.cursor,
                    updated_at = excluded.updated_at
                """,
                (self.base_url, collection, int(cursor), dt.datetime.now(dt.UTC).isoformat()),
            )
            self._cursor_conn.commit()

    # -- documents ---------------------------------------------------------

    def set(self, collection: str, key: str, data: dict[str, Any]) -> None:
        self._request("PUT", doc_url(self.base_url, collection, key), data)

    def update(self, collection: str, key: str, patch: dict[str, Any]) -> None:
        self._request("PATCH", doc_url(self.base_url, collection, key), patch)

    def delete(self, collection: str, key: str) -> None:
        self._request("DELETE", doc_url(self.base_url, collection, key))

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        status, payload = self._request("GET", doc_url(self.base_url, collection, key))
        if status == 404 or not payload:
            return None
        data = payload.get("data")
        return data if isinstance(data, dict) else None

    def status(self) -> dict[str, Any]:
        _status, payload = self._request("GET", f"{self.base_url}/v1/status")
        return payload or {}

    def snapshot(self, collection: str) -> tuple[list[DocumentChange], int]:
        """Current documents of a collection plus the feed position they reflect."""

        _status, payload = self._request("GET", collection_url(self.base_url, collection, "docs"))
        payload = payload or {}
        docs = payload.get("docs")
        cursor = payload.get("cursor")
        if not isinstance(docs, list) or not isinstance(cursor, int):
            raise ValueError("invalid snapshot response")
        changes: list[DocumentChange] = []
        for item in docs:
            if not isinstance(item, dict) or not isinstance(item.get("data"), dict):
                logger.warning("skipping malformed document in %s snapshot: %r", collection, item)
                continue
            changes.append(
                DocumentChange(collection, CHANGE_ADDED, str(item.get("key")), item["data"])
            )
        return changes, cursor

    def changes_since(
        self, collection: str, since: int, limit: int = PAGE_SIZE
    ) -> tuple[list[DocumentChange], int]:
        url = collection_url(
            self.base_url, collection, f"changes?since={int(since)}&limit={int(limit)}"
        )
        _status, payload = self._request("GET", url)
        payload = payload or {}
        raw_changes = payload.get("changes")
        if not isinstance(raw_changes, list):
            raise ValueError("invalid change feed response")
        changes: list[DocumentChange] = []
        for item in raw_changes:
            if not isinstance(item, dict) or item.get("kind") not in CHANGE_KINDS:
                logger.warning("skipping malformed change in %s feed: %r", collection, item)
                continue
            data = item.get("data")
            changes.append(
                DocumentChange(
                    collection,
                    str(item["kind"]),
                    str(item.get("key")),
                    data if isinstance(data, dict) else None,
                )
            )
        cursor = payload.get("next_cursor", since)
        return changes, int(cursor) if isinstance(cursor, int) else since

    def watch(self, collection: str, callback: ChangeCallback) -> Subscription:
        poller = _ChangePoller(self, collection, callback)
        with self._lock:
            self._pollers.append(poller)
        poller.start()

        def cancel() -> None:
            poller.stop()
            with self._lock:
                if poller in self._pollers:
                    self._pollers.remove(poller)

        return Subscription(cancel)

    def close(self) -> None:
        with self._lock:
            pollers, self._pollers = self._pollers, []
        for poller in pollers:
            poller.stop()
        with self._cursor_lock:
            self._cursor_conn.close()
