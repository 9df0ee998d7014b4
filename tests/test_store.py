from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest

from frontdesk.blobs import FileBlobStore
from frontdesk.store import (
    CaseNote,
    Collection,
    DuplicateUserError,
    LocalStore,
    MutationEvent,
    PermissionDenied,
    RecordNotFoundError,
    Recording,
    Task,
    Ticket,
    ValidationError,
)
from frontdesk.store.utils import DAY_MS, local_midnight_ms, normalize_description


@pytest.fixture
def store(tmp_path: Path) -> LocalStore:
    s = LocalStore(tmp_path / "frontdesk.sqlite")
    yield s
    s.close()


def _events(store: LocalStore) -> list[MutationEvent]:
    seen: list[MutationEvent] = []
    store.add_observer(seen.append)
    return seen


def test_add_assigns_increasing_ids(store: LocalStore) -> None:
    first = store.add(Task(title="call back", timestamp=1))
    second = store.add(Task(title="send invoice", timestamp=2))
    assert first.id == 1
    assert second.id == 2
    loaded = store.get(Collection.ACTIVITIES, 2)
    assert isinstance(loaded, Task)
    assert loaded.title == "send invoice"
    assert loaded.status == "pending"


def test_ids_are_not_reused_after_delete(store: LocalStore) -> None:
    task = store.add(Task(title="one"))
    assert store.delete(Collection.ACTIVITIES, task.id)
    again = store.add(Task(title="two"))
    assert again.id == task.id + 1


def test_add_with_existing_id_is_rejected(store: LocalStore) -> None:
    store.add(Task(id=5, title="one"))
    with pytest.raises(ValidationError):
        store.add(Task(id=5, title="dup"))


def test_next_id_skips_past_remote_numeric_ids(store: LocalStore) -> None:
    store.apply_remote_upsert(Ticket(id=40, description="• remote"))
    created = store.add(Ticket(description="• local"))
    assert created.id == 41


def test_opaque_string_keys_live_beside_numeric_ids(store: LocalStore) -> None:
    assert store.apply_remote_upsert(Ticket(id="client-abc", description="• x")) == "inserted"
    store.add(Ticket(description="• y"))
    keys = [t.id for t in store.list(Collection.TICKETS)]
    assert 1 in keys
    assert "client-abc" in keys
    assert store.get(Collection.TICKETS, "client-abc") is not None


def test_update_reports_only_changed_fields(store: LocalStore) -> None:
    ticket = store.add(Ticket(description="• a", priority="Low", status="Open"))
    seen = _events(store)
    changed = store.update(
        Collection.TICKETS, ticket.id, {"status": "Closed", "priority": "Low"}
    )
    assert changed == {"status": "Closed"}
    assert len(seen) == 1
    assert seen[0].op == "update"
    assert seen[0].changes == {"status": "Closed"}


def test_noop_update_emits_nothing(store: LocalStore) -> None:
    ticket = store.add(Ticket(description="• a", status="Open"))
    seen = _events(store)
    assert store.update(Collection.TICKETS, ticket.id, {"status": "Open"}) == {}
    assert seen == []


def test_update_missing_record_raises(store: LocalStore) -> None:
    with pytest.raises(RecordNotFoundError):
        store.update(Collection.TICKETS, 99, {"status": "Closed"})


def test_update_unknown_field_raises(store: LocalStore) -> None:
    ticket = store.add(Ticket(description="• a"))
    with pytest.raises(ValidationError, match="unknown tickets fields"):
        store.update(Collection.TICKETS, ticket.id, {"colour": "red"})


def test_observers_run_after_commit(store: LocalStore) -> None:
    visible: list[bool] = []

    def observer(event: MutationEvent) -> None:
        other = LocalStore(store.db_path)
        try:
            visible.append(other.get(event.collection, event.key) is not None)
        finally:
            other.close()

    store.add_observer(observer)
    store.add(Task(title="committed"))
    assert visible == [True]


def test_failing_observer_does_not_break_writes(store: LocalStore) -> None:
    def broken(_event: MutationEvent) -> None:
        raise RuntimeError("boom")

    seen: list[MutationEvent] = []
    store.add_observer(broken)
    store.add_observer(seen.append)
    task = store.add(Task(title="still saved"))
    assert store.get(Collection.ACTIVITIES, task.id) is not None
    assert [e.op for e in seen] == ["create"]


def test_failed_transaction_emits_nothing(store: LocalStore) -> None:
    seen = _events(store)
    store.add(Task(id=1, title="one"))
    seen.clear()
    with pytest.raises(ValidationError):
        store.add(Task(id=1, title="dup"))
    assert seen == []


def test_remote_upsert_preserves_local_blob(store: LocalStore) -> None:
    call = store.add(Recording(client_name="Acme", duration=30, recording_blob=b"RIFF"))
    result = store.apply_remote_upsert(
        Recording(id=call.id, client_name="Acme Ltd", duration=30, recording_blob=None)
    )
    assert result == "updated"
    loaded = store.get(Collection.CALLS, call.id)
    assert loaded.client_name == "Acme Ltd"
    assert loaded.recording_blob == b"RIFF"


def test_remote_upsert_unchanged_emits_nothing(store: LocalStore) -> None:
    task = store.add(Task(title="same", timestamp=5, status="pending"))
    seen = _events(store)
    assert store.apply_remote_upsert(Task(id=task.id, title="same", timestamp=5)) == "unchanged"
    assert seen == []


def test_remote_mutations_are_tagged(store: LocalStore) -> None:
    seen = _events(store)
    store.apply_remote_upsert(Task(id=3, title="from elsewhere"))
    store.apply_remote_delete(Collection.ACTIVITIES, 3)
    assert [(e.op, e.origin) for e in seen] == [("put", "remote"), ("delete", "remote")]


def test_extra_document_fields_round_trip(store: LocalStore) -> None:
    store.apply_remote_upsert(Task(id=1, title="x", extra={"color": "blue"}))
    assert store.get(Collection.ACTIVITIES, 1).extra == {"color": "blue"}


def test_list_where_order_and_limit(store: LocalStore) -> None:
    for ts, status in [(10, "pending"), (30, "completed"), (20, "pending")]:
        store.add(Task(title=f"t{ts}", timestamp=ts, status=status))
    pending = store.list(
        Collection.ACTIVITIES, where={"status": "pending"}, order_by="timestamp", descending=True
    )
    assert [t.timestamp for t in pending] == [20, 10]
    assert len(store.list(Collection.ACTIVITIES, limit=2)) == 2
    assert store.count(Collection.ACTIVITIES, {"status": ["pending", "completed"]}) == 3
    assert store.count(Collection.ACTIVITIES, {"user_id": None}) == 3


# -- users -----------------------------------------------------------------


def test_create_user_rejects_duplicates_case_insensitively(store: LocalStore) -> None:
    store.create_user("Maria", "1234")
    with pytest.raises(DuplicateUserError):
        store.create_user("maria", "9999")


def test_create_user_requires_name_and_pin(store: LocalStore) -> None:
    with pytest.raises(ValidationError):
        store.create_user("  ", "1234")
    with pytest.raises(ValidationError):
        store.create_user("Ana", "")
    with pytest.raises(ValidationError):
        store.create_user("Ana", "1", role="owner")


def test_authenticate_matches_name_case_insensitively(store: LocalStore) -> None:
    created = store.create_user("Maria", "1234")
    assert store.authenticate("MARIA", "1234").id == created.id
    assert store.authenticate("maria", "12345") is None
    assert store.authenticate("nobody", "1234") is None


def test_delete_user_requires_admin(store: LocalStore) -> None:
    admin = store.create_user("boss", "0000", role="admin")
    agent = store.create_user("agent", "1111")
    with pytest.raises(PermissionDenied):
        store.delete_user(agent, admin.id)
    with pytest.raises(ValidationError):
        store.delete_user(admin, admin.id)
    assert store.delete_user(admin, agent.id) is True
    assert store.get(Collection.USERS, agent.id) is None


def test_seed_admin_only_once(store: LocalStore) -> None:
    first = store.seed_admin("admin", "4321")
    assert first is not None
    assert first.role == "admin"
    assert store.seed_admin("ADMIN", "4321") is None
    assert store.count(Collection.USERS) == 1


# -- records ---------------------------------------------------------------


def test_normalize_description_bullets_lines() -> None:
    assert normalize_description("  first \n\n• second\n   third  ") == (
        "• first\n• second\n• third"
    )


def test_save_recording_defaults_client(store: LocalStore) -> None:
    call = store.save_recording(user_id=1, duration=42, client_name="  ", timestamp=0)
    assert call.client_name == "Anonymous Client"
    assert call.date_string == "1970-01-01"
    assert call.duration == 42


def test_create_ticket_normalizes_and_validates(store: LocalStore) -> None:
    ticket = store.create_ticket(description="fix login\n\n reset pin ", user_id=1)
    assert ticket.description == "• fix login\n• reset pin"
    assert ticket.status == "Open"
    assert ticket.priority == "Medium"
    with pytest.raises(ValidationError):
        store.create_ticket(description="   ", user_id=1)
    with pytest.raises(ValidationError):
        store.create_ticket(description="x", user_id=1, priority="Urgent")


def test_create_ticket_from_call_copies_call_fields(store: LocalStore) -> None:
    call = store.save_recording(user_id=1, duration=95, client_name="Acme")
    ticket = store.create_ticket_from_call(call.id, description="follow up", user_id=2)
    assert ticket.call_id == call.id
    assert ticket.client_name == "Acme"
    assert ticket.duration == 95
    assert ticket.priority == "Medium"
    with pytest.raises(RecordNotFoundError):
        store.create_ticket_from_call(999, description="x", user_id=2)


def test_move_ticket_to_unassigned_clears_client(store: LocalStore) -> None:
    ticket = store.create_ticket(description="x", user_id=1, client_name="Acme")
    assert store.move_ticket_to_client(ticket.id, "Unassigned") == {"client_name": ""}
    columns = store.tickets_by_client()
    assert list(columns) == ["Unassigned"]


def test_update_ticket_overwrites_fields(store: LocalStore) -> None:
    ticket = store.create_ticket(description="x", user_id=1, client_name="Acme")
    changed = store.update_ticket(
        ticket.id,
        description="x",
        client_name="Acme",
        priority="High",
        status="Closed",
        date_string=ticket.date_string,
        assignee_id=None,
    )
    assert changed == {"priority": "High", "status": "Closed"}


def test_toggle_task_flips_status(store: LocalStore) -> None:
    task = store.add_task(title="call back", user_id=1)
    assert store.toggle_task(task.id) == "completed"
    assert store.toggle_task(task.id) == "pending"
    with pytest.raises(ValidationError):
        store.rename_task(task.id, " ")


def test_save_case_note_creates_then_overwrites(store: LocalStore) -> None:
    note = store.save_case_note(
        date_string="2026-01-02", case_type="Billing", client_name="Acme", notes="n1", user_id=1
    )
    assert isinstance(note, CaseNote)
    updated = store.save_case_note(
        date_string="2026-01-03",
        case_type="Billing",
        client_name="Acme",
        notes="n2",
        user_id=1,
        note_id=note.id,
    )
    assert updated.id == note.id
    assert updated.notes == "n2"
    assert store.count(Collection.CASE_NOTES) == 1
    with pytest.raises(ValidationError):
        store.save_case_note(
            date_string="", case_type="x", client_name="Acme", notes="n", user_id=1
        )


def test_delete_recording_cascades_to_tickets(store: LocalStore) -> None:
    call = store.add(Recording(id=7, client_name="Acme"))
    store.add(Ticket(description="• a", call_id=call.id))
    store.add(Ticket(description="• b", call_id=call.id))
    keep = store.add(Ticket(description="• c"))
    seen = _events(store)
    assert store.delete_recording(7) == 2
    assert [t.id for t in store.list(Collection.TICKETS)] == [keep.id]
    assert [(e.collection, e.op) for e in seen] == [
        (Collection.CALLS, "delete"),
        (Collection.TICKETS, "delete"),
        (Collection.TICKETS, "delete"),
    ]


def test_delete_recording_missing_is_noop(store: LocalStore) -> None:
    assert store.delete_recording(123) == 0


def test_dashboard_counts(store: LocalStore) -> None:
    now = local_midnight_ms() + 60_000
    store.save_recording(user_id=1, duration=1, timestamp=now)
    store.save_recording(user_id=1, duration=1, timestamp=now - 2 * DAY_MS)
    store.add_task(title="a", user_id=1)
    done = store.add_task(title="b", user_id=1)
    store.toggle_task(done.id)
    store.create_ticket(description="x", user_id=1)
    closed = store.create_ticket(description="y", user_id=1)
    store.set_ticket_status(closed.id, "Closed")
    assert store.dashboard_counts(now=now) == {
        "calls_today": 1,
        "pending_tasks": 1,
        "open_tickets": 1,
    }


def _local_ms(year: int, month: int, day: int = 15) -> int:
    return int(dt.datetime(year, month, day, 12).timestamp() * 1000)


def test_search_ignores_case_and_looks_at_each_collections_text(store: LocalStore) -> None:
    store.add(Recording(id=1, client_name="ACME Corp", timestamp=2))
    store.add(Recording(id=2, client_name="Globex", timestamp=1))
    store.add(Task(id=1, title="Call back Acme", timestamp=1))
    store.add(Ticket(id=1, description="• printer jam", client_name="Initech", created_at=1))
    store.add(Ticket(id=2, description="• acme invoice", client_name="", created_at=2))
    store.add(CaseNote(id=1, client_name="Globex", notes="renewal", case_type="Billing"))

    assert [c.id for c in store.search(Collection.CALLS, "acme")] == [1]
    assert [t.id for t in store.search(Collection.ACTIVITIES, "ACME")] == [1]
    assert [t.id for t in store.search(Collection.TICKETS, "initech")] == [1]
    assert [t.id for t in store.search(Collection.TICKETS, "Acme")] == [2]
    assert [n.id for n in store.search(Collection.CASE_NOTES, "billing")] == [1]
    assert [n.id for n in store.search(Collection.CASE_NOTES, "RENEW")] == [1]
    assert store.search(Collection.CALLS, "nobody") == []


def test_blank_search_lists_everything_in_order(store: LocalStore) -> None:
    for n in range(1, 4):
        store.add(Recording(id=n, client_name=f"Client {n}", timestamp=n))

    newest = store.search(Collection.CALLS, "  ", order_by="timestamp", descending=True, limit=2)
    assert [c.id for c in newest] == [3, 2]
    limited = store.search(Collection.CALLS, "client", order_by="timestamp", limit=2)
    assert [c.id for c in limited] == [1, 2]


def test_users_cannot_be_searched(store: LocalStore) -> None:
    with pytest.raises(ValidationError):
        store.search(Collection.USERS, "boss")


def test_monthly_counts_cover_the_requested_year(store: LocalStore) -> None:
    store.add(Recording(id=1, client_name="a", timestamp=_local_ms(2026, 1)))
    store.add(Recording(id=2, client_name="b", timestamp=_local_ms(2026, 1, 20)))
    store.add(Recording(id=3, client_name="c", timestamp=_local_ms(2026, 12)))
    store.add(Recording(id=4, client_name="d", timestamp=_local_ms(2025, 6)))
    store.add(Ticket(id=1, description="• a", created_at=_local_ms(2026, 3)))
    store.add(Ticket(id=2, description="• b", created_at=None))

    now = _local_ms(2026, 10)
    counts = store.monthly_counts(now=now)
    assert counts["calls"] == [2, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1]
    assert counts["tickets"] == [0, 0, 1, 0, 0, 0, 0, 0, 0, 1, 0, 0]

    last_year = store.monthly_counts(year=2025, now=now)
    assert sum(last_year["calls"]) == 1
    assert last_year["calls"][5] == 1
    assert sum(last_year["tickets"]) == 0


def test_recording_audio_names_the_file_after_client_and_date(store: LocalStore) -> None:
    store.add(
        Recording(
            id=1,
            client_name="Acme & Sons",
            date_string="2026-03-01",
            recording_blob=b"RIFF",
            timestamp=1,
        )
    )
    audio, filename = store.recording_audio(1)
    assert audio == b"RIFF"
    assert filename == "REC_Acme___Sons_2026-03-01.webm"


def test_recording_audio_falls_back_to_the_blob_store(store: LocalStore, tmp_path: Path) -> None:
    blobs = FileBlobStore(tmp_path / "blobs")
    ref = blobs.put("calls", "2", b"shared-audio")
    store.add(Recording(id=2, client_name="", recording_ref=ref, timestamp=0))

    audio, filename = store.recording_audio(2, blob_store=blobs)
    assert audio == b"shared-audio"
    assert filename == "REC_Unknown_1970-01-01.webm"

    with pytest.raises(ValidationError, match="recording file not found"):
        store.recording_audio(2)


def test_recording_audio_requires_the_call(store: LocalStore) -> None:
    with pytest.raises(RecordNotFoundError):
        store.recording_audio(99)
