from __future__ import annotations

import csv
import io
from pathlib import Path

from frontdesk.store import Collection, LocalStore, Recording, Ticket
from frontdesk.store.export import CSV_HEADERS


def _store(tmp_path: Path) -> LocalStore:
    return LocalStore(tmp_path / "frontdesk.sqlite")


def test_tickets_csv_empty_is_empty_string(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        admin = store.create_user("boss", "0000", role="admin")
        assert store.tickets_csv(admin) == ""
    finally:
        store.close()


def test_tickets_csv_formats_rows(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        admin = store.create_user("boss", "0000", role="admin")
        agent = store.create_user("Ana", "1111")
        store.add(
            Ticket(
                id=1,
                description='• says "hi"',
                priority="High",
                status="Open",
                created_at=1,
                date_string="2026-03-01",
                assignee_id=agent.id,
                call_id=7,
                user_id=agent.id,
            )
        )
        store.add(Ticket(id=2, description="• manual", created_at=2, user_id=admin.id))

        text = store.tickets_csv(admin)
    finally:
        store.close()

    assert text.startswith("\ufeff")
    rows = list(csv.reader(io.StringIO(text[1:])))
    assert text[1:].splitlines()[0] == "ID,Date,Assignee,Priority,Related Call,Description,Status"
    assert rows[0] == CSV_HEADERS
    assert rows[1] == ["2", "No Date", "Unassigned", "Medium", "Manual Entry", "• manual", "Open"]
    assert rows[2] == ["1", "2026-03-01", "Ana", "High", "Call #7", '• says "hi"', "Open"]
    assert '"• says ""hi"""' in text


def test_agents_export_only_their_tickets(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        store.create_user("boss", "0000", role="admin")
        ana = store.create_user("Ana", "1111")
        bo = store.create_user("Bo", "2222")
        store.create_ticket(description="mine", user_id=ana.id)
        store.create_ticket(description="theirs", user_id=bo.id)
        text = store.tickets_csv(ana)
    finally:
        store.close()
    assert "mine" in text
    assert "theirs" not in text


def test_full_backup_excludes_blobs(tmp_path: Path) -> None:
    store = _store(tmp_path)
    try:
        store.add(Recording(client_name="Acme", recording_blob=b"\x00audio", timestamp=5))
        store.add_task(title="t", user_id=1)
        store.create_ticket(description="x", user_id=1)
        store.save_case_note(
            date_string="2026-01-01", case_type="x", client_name="Acme", notes="n", user_id=1
        )
        backup = store.full_backup(exported_at="2026-01-01T00:00:00+00:00")
    finally:
        store.close()

    assert backup["exportedAt"] == "2026-01-01T00:00:00+00:00"
    assert set(backup) == {"exportedAt", "calls", "activities", "tickets"}
    call = backup["calls"][0]
    assert call["clientName"] == "Acme"
    assert call["id"] == 1
    assert "recordingBlob" not in call
    assert len(backup[Collection.ACTIVITIES.value]) == 1
