from __future__ import annotations

import http.client
import json
import threading
from pathlib import Path

import pytest

from frontdesk.remote import server as server_module
from frontdesk.remote.http_store import HttpRemoteStore, RemoteRequestError, _ChangePoller
from frontdesk.remote.server import DocumentDatabase, make_server
from frontdesk.store import Collection, LocalStore
from frontdesk.sync.bridge import SyncBridge
from frontdesk.sync.outbox import QueuedRemoteStore


def _start_server(tmp_path: Path, token: str | None = None):
    database = DocumentDatabase(tmp_path / "documents.sqlite")
    server = make_server("127.0.0.1", 0, database, token=token)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server, database, int(server.server_address[1])


@pytest.fixture
def served(tmp_path: Path):
    server, database, port = _start_server(tmp_path)
    yield database, port
    server.shutdown()
    server.server_close()
    database.close()


def _request(port: int, method: str, path: str, body: dict | None = None, headers=None):
    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=2)
    try:
        payload = json.dumps(body).encode("utf-8") if body is not None else None
        request_headers = {"Content-Type": "application/json"}
        request_headers.update(headers or {})
        conn.request(method, path, body=payload, headers=request_headers)
        resp = conn.getresponse()
        return resp.status, json.loads(resp.read().decode("utf-8"))
    finally:
        conn.close()


def test_document_database_logs_every_change(tmp_path: Path) -> None:
    database = DocumentDatabase(tmp_path / "documents.sqlite")
    try:
        database.set("tickets", "1", {"status": "Open", "priority": "High"})
        database.merge("tickets", "1", {"status": "Closed"})
        assert database.delete("tickets", "1") is not None
        assert database.delete("tickets", "1") is None

        changes, cursor = database.changes_since("tickets")
        assert [c["kind"] for c in changes] == ["added", "modified", "removed"]
        assert changes[1]["data"] == {"status": "Closed", "priority": "High"}
        assert changes[2]["data"] is None
        assert cursor == changes[-1]["seq"]
        assert database.changes_since("tickets", cursor) == ([], cursor)
        assert database.changes_since("calls") == ([], 0)
    finally:
        database.close()


def test_server_document_routes(served) -> None:
    _database, port = served

    status, body = _request(port, "PUT", "/v1/collections/tickets/docs/1", {"status": "Open"})
    assert status == 200
    assert body["ok"] is True

    status, _ = _request(port, "PATCH", "/v1/collections/tickets/docs/1", {"priority": "Low"})
    assert status == 200

    status, body = _request(port, "GET", "/v1/collections/tickets/docs/1")
    assert status == 200
    assert body == {"key": "1", "data": {"status": "Open", "priority": "Low"}}

    status, body = _request(port, "GET", "/v1/status")
    assert body["documents"] == {"tickets": 1}
    assert body["protocol_version"] == "1"

    status, body = _request(port, "DELETE", "/v1/collections/tickets/docs/1")
    assert status == 200
    assert body["deleted"] is True

    status, body = _request(port, "GET", "/v1/collections/tickets/docs/1")
    assert status == 404
    assert body == {"error": "not_found"}


def test_server_rejects_bad_requests(served) -> None:
    _database, port = served

    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=2)
    try:
        conn.request(
            "PUT",
            "/v1/collections/tickets/docs/1",
            body=b"[1, 2]",
            headers={"Content-Type": "application/json"},
        )
        resp = conn.getresponse()
        assert resp.status == 400
        assert json.loads(resp.read()) == {"error": "invalid_json"}
    finally:
        conn.close()

    status, body = _request(port, "GET", "/v1/collections/tickets/changes?since=abc")
    assert status == 400
    assert body == {"error": "invalid_cursor"}

    status, _ = _request(port, "PUT", "/v1/elsewhere", {"x": 1})
    assert status == 404


def test_server_requires_token_when_configured(tmp_path: Path) -> None:
    server, database, port = _start_server(tmp_path, token="s3cret")
    try:
        status, body = _request(port, "GET", "/v1/status")
        assert status == 401
        assert body == {"error": "unauthorized"}

        status, _ = _request(
            port, "PUT", "/v1/collections/tickets/docs/1", {"a": 1}, {"X-Frontdesk-Token": "nope"}
        )
        assert status == 401
        assert database.get("tickets", "1") is None

        status, _ = _request(port, "GET", "/v1/status", headers={"X-Frontdesk-Token": "s3cret"})
        assert status == 200
    finally:
        server.shutdown()
        server.server_close()
        database.close()


def test_http_remote_store_round_trip(served) -> None:
    database, port = served
    remote = HttpRemoteStore(f"127.0.0.1:{port}", timeout_s=2.0)

    remote.set("tickets", "client-abc", {"description": "• a", "status": "Open"})
    remote.update("tickets", "client-abc", {"status": "Closed"})
    assert remote.get("tickets", "client-abc") == {"description": "• a", "status": "Closed"}
    assert database.get("tickets", "client-abc")["status"] == "Closed"

    remote.delete("tickets", "client-abc")
    remote.delete("tickets", "client-abc")
    assert remote.get("tickets", "client-abc") is None

    changes, cursor = remote.changes_since("tickets", 0)
    assert [(c.kind, c.key) for c in changes] == [
        ("added", "client-abc"),
        ("modified", "client-abc"),
        ("removed", "client-abc"),
    ]
    assert changes[-1].data is None
    assert cursor > 0
    assert remote.status()["documents"] == {}


def test_http_remote_store_raises_on_auth_failure(tmp_path: Path) -> None:
    server, database, port = _start_server(tmp_path, token="s3cret")
    try:
        remote = HttpRemoteStore(f"http://127.0.0.1:{port}", token="wrong", timeout_s=2.0)
        with pytest.raises(RemoteRequestError) as excinfo:
            remote.set("tickets", "1", {"status": "Open"})
        assert excinfo.value.status == 401

        remote = HttpRemoteStore(f"http://127.0.0.1:{port}", token="s3cret", timeout_s=2.0)
        remote.set("tickets", "1", {"status": "Open"})
        assert database.get("tickets", "1") == {"status": "Open"}
    finally:
        server.shutdown()
        server.server_close()
        database.close()


def test_http_remote_store_requires_url() -> None:
    with pytest.raises(RuntimeError):
        HttpRemoteStore("  ")


def test_poller_advances_cursor_and_survives_callback_errors(served) -> None:
    database, port = served
    remote = HttpRemoteStore(f"127.0.0.1:{port}", timeout_s=2.0)
    database.set("activities", "1", {"title": "one"})
    database.set("activities", "2", {"title": "two"})

    batches: list[list] = []

    def callback(changes) -> None:
        batches.append(changes)
        raise RuntimeError("refresh failed")

    poller = _ChangePoller(remote, "activities", callback)
    assert poller.poll_once() == 2
    assert poller.poll_once() == 0
    database.delete("activities", "1")
    assert poller.poll_once() == 1
    assert [[c.key for c in batch] for batch in batches] == [["1", "2"], ["1"]]
    assert batches[1][0].kind == "removed"


def test_bridge_over_http(tmp_path: Path, served) -> None:
    database, port = served
    remote = HttpRemoteStore(f"127.0.0.1:{port}", timeout_s=2.0, poll_interval_s=0.05)
    store = LocalStore(tmp_path / "device.sqlite")
    bridge = SyncBridge(store, remote, collections=[Collection.TICKETS])
    bridge.start()
    try:
        ticket = store.create_ticket(description="over the wire", user_id=1)
        assert database.get("tickets", str(ticket.id))["description"] == "• over the wire"

        arrived = threading.Event()
        bridge.on_change(Collection.TICKETS, arrived.set)
        database.set("tickets", "99", {"description": "• from another desk"})
        assert arrived.wait(3.0)
        assert store.get(Collection.TICKETS, 99).description == "• from another desk"
    finally:
        bridge.stop()
        remote.close()
        store.close()


def test_server_lists_current_documents_with_cursor(served) -> None:
    database, port = served
    database.set("tickets", "2", {"status": "Open"})
    database.set("tickets", "1", {"status": "Open"})
    database.delete("tickets", "2")

    status, body = _request(port, "GET", "/v1/collections/tickets/docs")
    assert status == 200
    assert body["docs"] == [{"key": "1", "data": {"status": "Open"}}]
    assert body["cursor"] == database.changes_since("tickets")[1]

    status, body = _request(port, "GET", "/v1/collections/calls/docs")
    assert body == {"docs": [], "cursor": 0}


def test_feed_position_survives_restart(tmp_path: Path, served) -> None:
    database, port = served
    state = tmp_path / "device.sqlite"
    for n in range(250):
        database.set("tickets", "1", {"description": f"• edit {n}"})

    first = HttpRemoteStore(f"127.0.0.1:{port}", timeout_s=2.0, cursor_db_path=state)
    batches: list[list] = []
    poller = _ChangePoller(first, "tickets", batches.append)
    assert poller.cursor is None
    assert poller.poll_once() == 1
    assert batches[0][0].data == {"description": "• edit 249"}
    first.close()

    second = HttpRemoteStore(f"127.0.0.1:{port}", timeout_s=2.0, cursor_db_path=state)
    try:
        resumed = _ChangePoller(second, "tickets", batches.append)
        assert resumed.cursor == poller.cursor
        assert resumed.poll_once() == 0

        database.set("tickets", "1", {"description": "• latest"})
        assert resumed.poll_once() == 1
        assert batches[-1][0].data == {"description": "• latest"}
        assert second.load_cursor("tickets") == resumed.cursor
    finally:
        second.close()


def test_feed_position_is_kept_per_server(tmp_path: Path, served) -> None:
    _database, port = served
    state = tmp_path / "device.sqlite"
    remote = HttpRemoteStore(f"127.0.0.1:{port}", cursor_db_path=state)
    remote.save_cursor("tickets", 41)
    remote.close()

    same = HttpRemoteStore(f"http://127.0.0.1:{port}/", cursor_db_path=state)
    other = HttpRemoteStore("http://10.0.0.9:7440", cursor_db_path=state)
    try:
        assert same.load_cursor("tickets") == 41
        assert same.load_cursor("calls") is None
        assert other.load_cursor("tickets") is None
    finally:
        same.close()
        other.close()


def test_oversized_write_does_not_hold_back_later_writes(
    tmp_path: Path, served, monkeypatch
) -> None:
    database, port = served
    monkeypatch.setattr(server_module, "MAX_BODY_BYTES", 256)
    outbox = QueuedRemoteStore(
        HttpRemoteStore(f"127.0.0.1:{port}", timeout_s=2.0), tmp_path / "outbox.sqlite"
    )
    try:
        outbox.set("calls", "1", {"clientName": "x" * 1024})
        outbox.set("activities", "2", {"title": "call back"})

        assert outbox.flush() == 1
        assert database.get("activities", "2") == {"title": "call back"}
        assert database.get("calls", "1") is None
        status = outbox.status()
        assert (status["pending"], status["dead"]) == (0, 1)
        assert "413" in outbox.dead()[0]["last_error"]
    finally:
        outbox.close()
