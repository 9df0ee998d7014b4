from __future__ import annotations

import contextlib
import datetime as dt
import hmac
import json
import logging
import os
import socket
import sqlite3
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, unquote, urlparse

from .. import db
from . import CHANGE_ADDED, CHANGE_MODIFIED, CHANGE_REMOVED

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "1"
TOKEN_HEADER = "X-Frontdesk-Token"
DEFAULT_SERVER_DB_PATH = Path.home() / ".frontdesk" / "documents.sqlite"


def _safe_int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


MAX_BODY_BYTES = _safe_int_env("FRONTDESK_SERVER_MAX_BODY_BYTES", 1048576)
DISCARD_LIMIT_BYTES = 8 * 1048576
MAX_CHANGES = 1000


class DocumentDatabase:
    """SQLite-backed document groups with an append-only change log."""

    def __init__(self, db_path: Path | str = DEFAULT_SERVER_DB_PATH) -> None:
        self.conn = db.connect(db_path, check_same_thread=False)
        self._lock = threading.Lock()
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                doc_key TEXT NOT NULL,
                data_json TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (collection, doc_key)
            );
            CREATE TABLE IF NOT EXISTS document_changes (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                collection TEXT NOT NULL,
                doc_key TEXT NOT NULL,
                kind TEXT NOT NULL,
                data_json TEXT,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_document_changes_collection
                ON document_changes(collection, seq);
            """
        )
        self.conn.commit()

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def _log(self, collection: str, key: str, kind: str, data: dict[str, Any] | None) -> int:
        cur = self.conn.execute(
            """
            INSERT INTO document_changes(collection, doc_key, kind, data_json, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                collection,
                key,
                kind,
                db.to_json(data) if data is not None else None,
                dt.datetime.now(dt.UTC).isoformat(),
            ),
        )
        return int(cur.lastrowid or 0)

    def _get(self, collection: str, key: str) -> dict[str, Any] | None:
        row = self.conn.execute(
            "SELECT data_json FROM documents WHERE collection = ? AND doc_key = ?",
            (collection, key),
        ).fetchone()
        return db.from_json(row["data_json"]) if row else None

    def _put(self, collection: str, key: str, data: dict[str, Any], existed: bool) -> int:
        self.conn.execute(
            """
            INSERT INTO documents(collection, doc_key, data_json, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(collection, doc_key) DO UPDATE SET
                data_json = excluded.data_json,
                updated_at = excluded.updated_at
            """,
            (collection, key, db.to_json(data), dt.datetime.now(dt.UTC).isoformat()),
        )
        return self._log(collection, key, CHANGE_MODIFIED if existed else CHANGE_ADDED, data)

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        with self._lock:
            return self._get(collection, key)

    def set(self, collection: str, key: str, data: dict[str, Any]) -> int:
        with self._lock, self.conn:
            existed = self._get(collection, key) is not None
            return self._put(collection, key, data, existed)

    def merge(self, collection: str, key: str, patch: dict[str, Any]) -> int:
        with self._lock, self.conn:
            current = self._get(collection, key)
            merged = dict(current or {})
            merged.update(patch)
            return self._put(collection, key, merged, current is not None)

    def delete(self, collection: str, key: str) -> int | None:
        with self._lock, self.conn:
            cur = self.conn.execute(
                "DELETE FROM documents WHERE collection = ? AND doc_key = ?", (collection, key)
            )
            if cur.rowcount <= 0:
                return None
            return self._log(collection, key, CHANGE_REMOVED, None)

    def changes_since(
        self, collection: str, since: int = 0, limit: int = 200
    ) -> tuple[list[dict[str, Any]], int]:
        with self._lock:
            rows = self.conn.execute(
                """
                SELECT seq, doc_key, kind, data_json FROM document_changes
                WHERE collection = ? AND seq > ?
                ORDER BY seq
                LIMIT ?
                """,
                (collection, since, limit),
            ).fetchall()
        changes = [
            {
                "seq": int(row["seq"]),
                "key": row["doc_key"],
                "kind": row["kind"],
                "data": db.from_json(row["data_json"]) if row["data_json"] else None,
            }
            for row in rows
        ]
        cursor = changes[-1]["seq"] if changes else since
        return changes, cursor

    def snapshot(self, collection: str) -> tuple[list[dict[str, Any]], int]:
        """Current documents and the last change sequence they include."""

        with self._lock:
            rows = self.conn.execute(
                "SELECT doc_key, data_json FROM documents WHERE collection = ? ORDER BY doc_key",
                (collection,),
            ).fetchall()
            row = self.conn.execute(
                "SELECT MAX(seq) AS seq FROM document_changes WHERE collection = ?",
                (collection,),
            ).fetchone()
        docs = [{"key": r["doc_key"], "data": db.from_json(r["data_json"])} for r in rows]
        return docs, int(row["seq"] or 0)

    def counts(self) -> dict[str, int]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT collection, COUNT(*) AS count FROM documents GROUP BY collection"
            ).fetchall()
        return {row["collection"]: int(row["count"]) for row in rows}


def _read_body(handler: BaseHTTPRequestHandler) -> bytes:
    length = int(handler.headers.get("Content-Length", "0") or 0)
    if length <= 0:
        return b""
    if length > MAX_BODY_BYTES:
        # Read what was sent so the client sees the 413 instead of a reset.
        remaining = min(length, DISCARD_LIMIT_BYTES)
        while remaining > 0:
            chunk = handler.rfile.read(min(remaining, 65536))
            if not chunk:
                break
            remaining -= len(chunk)
        raise ValueError("payload_too_large")
    return handler.rfile.read(length)


def _parse_json_body(raw: bytes) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        data = json.loads(raw.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _send_json(handler: BaseHTTPRequestHandler, payload: dict[str, Any], status: int = 200) -> None:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def _route(path: str) -> tuple[str, str | None, str | None]:
    """Split a request path into (route, collection, key)."""

    parts = [unquote(p) for p in path.strip("/").split("/")]
    if parts == ["v1", "status"]:
        return "status", None, None
    if len(parts) == 5 and parts[:2] == ["v1", "collections"] and parts[3] == "docs":
        return "doc", parts[2], parts[4]
    if len(parts) == 4 and parts[:2] == ["v1", "collections"] and parts[3] == "changes":
        return "changes", parts[2], None
    if len(parts) == 4 and parts[:2] == ["v1", "collections"] and parts[3] == "docs":
        return "docs", parts[2], None
    return "unknown", None, None


def build_document_handler(database: DocumentDatabase, *, token: str | None = None):
    class DocumentHandler(BaseHTTPRequestHandler):
        def log_message(self, format: str, *args: object) -> None:  # noqa: A003
            logger.debug("%s - %s", self.address_string(), format % args)

        def _authorized(self) -> bool:
            if not token:
                return True
            supplied = self.headers.get(TOKEN_HEADER) or ""
            if hmac.compare_digest(supplied.encode("utf-8"), token.encode("utf-8")):
                return True
            _send_json(self, {"error": "unauthorized"}, status=401)
            return False

        def do_GET(self) -> None:  # noqa: N802
            parsed = urlparse(self.path)
            route, collection, key = _route(parsed.path)
            if not self._authorized():
                return
            try:
                if route == "status":
                    _send_json(
                        self,
                        {"protocol_version": PROTOCOL_VERSION, "documents": database.counts()},
                    )
                elif route == "doc" and collection and key:
                    doc = database.get(collection, key)
                    if doc is None:
                        _send_json(self, {"error": "not_found"}, status=404)
                    else:
                        _send_json(self, {"key": key, "data": doc})
                elif route == "docs" and collection:
                    docs, cursor = database.snapshot(collection)
                    _send_json(self, {"docs": docs, "cursor": cursor})
                elif route == "changes" and collection:
                    params = parse_qs(parsed.query)
                    try:
                        since = max(0, int(params.get("since", ["0"])[0]))
                        limit = max(1, min(int(params.get("limit", ["200"])[0]), MAX_CHANGES))
                    except (TypeError, ValueError):
                        _send_json(self, {"error": "invalid_cursor"}, status=400)
                        return
                    changes, cursor = database.changes_since(collection, since, limit)
                    _send_json(self, {"changes": changes, "next_cursor": cursor})
                else:
                    _send_json(self, {"error": "not_found"}, status=404)
            except sqlite3.Error:
                logger.exception("document read failed")
                _send_json(self, {"error": "internal_error"}, status=500)

        def _write(self, method: str) -> None:
            parsed = urlparse(self.path)
            route, collection, key = _route(parsed.path)
            if route != "doc" or not collection or not key:
                _send_json(self, {"error": "not_found"}, status=404)
                return
            try:
                raw = _read_body(self)
            except ValueError:
                _send_json(self, {"error": "payload_too_large"}, status=413)
                return
            if not self._authorized():
                return
            try:
                if method == "DELETE":
                    seq = database.delete(collection, key)
                    _send_json(self, {"ok": True, "seq": seq, "deleted": seq is not None})
                    return
                data = _parse_json_body(raw)
                if data is None:
                    _send_json(self, {"error": "invalid_json"}, status=400)
                    return
                if method == "PUT":
                    seq = database.set(collection, key, data)
                else:
                    seq = database.merge(collection, key, data)
                _send_json(self, {"ok": True, "seq": seq})
            except sqlite3.Error:
                logger.exception("document write failed")
                _send_json(self, {"error": "internal_error"}, status=500)

        def do_PUT(self) -> None:  # noqa: N802
            self._write("PUT")

        def do_PATCH(self) -> None:  # noqa: N802
            self._write("PATCH")

        def do_DELETE(self) -> None:  # noqa: N802
            self._write("DELETE")

    return DocumentHandler


def make_server(
    host: str, port: int, database: DocumentDatabase, *, token: str | None = None
) -> ThreadingHTTPServer:
    handler = build_document_handler(database, token=token)

    class Server(ThreadingHTTPServer):
        address_family = socket.AF_INET6 if ":" in host else socket.AF_INET
        daemon_threads = True

        def server_bind(self) -> None:
            if self.address_family == socket.AF_INET6:
                with contextlib.suppress(OSError):
                    self.socket.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            super().server_bind()

    return Server((host, port), handler)


def run_document_server(
    host: str,
    port: int,
    *,
    db_path: Path | str = DEFAULT_SERVER_DB_PATH,
    token: str | None = None,
    stop_event: threading.Event | None = None,
) -> None:
    database = DocumentDatabase(db_path)
    server = make_server(host, port, database, token=token)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    logger.info("document server listening on %s:%s", host, server.server_address[1])
    stop = stop_event or threading.Event()
    try:
        while not stop.wait(1.0):
            pass
    finally:
        server.shutdown()
        server.server_close()
        database.close()
