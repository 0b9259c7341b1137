from __future__ import annotations

import dataclasses
import json

import pytest

from academy_core.store import AcademyStore


@pytest.fixture
def store(tmp_path, monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_KEY", raising=False)
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)
    return AcademyStore(data_dir=tmp_path)


def _seed(store: AcademyStore):
    client = store.upsert_client({"id": "c1", "name": "Parent"})
    player = store.upsert_player({"id": "p1", "name": "Sam", "clientId": "c1"})
    return client, player


def _session_payload(**overrides):
    payload = {
        "id": "s1",
        "date": "2026-02-02",
        "startTime": "16:00",
        "endTime": "17:00",
        "location": "Court 1",
        "type": "Private",
        "price": 350,
        "participantIds": ["p1"],
        "maxCapacity": 2,
    }
    payload.update(overrides)
    return payload


def test_records_are_persisted_and_reloaded(store, tmp_path):
    _seed(store)
    store.upsert_session(_session_payload())

    assert not store.remote_enabled
    saved = json.loads((tmp_path / "training_sessions_local.json").read_text())
    assert saved[0]["participant_ids"] == ["p1"]

    reloaded = AcademyStore(data_dir=tmp_path)
    assert [client.id for client in reloaded.list_records("clients")] == ["c1"]
    assert reloaded.get("sessions", "s1").price == 350


def test_invalid_local_rows_are_skipped(tmp_path, monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    (tmp_path / "clients_local.json").write_text(json.dumps([{"id": "ok", "name": "Fine"}, {"id": "bad"}, "junk"]))
    (tmp_path / "players_local.json").write_text("{not json")

    store = AcademyStore(data_dir=tmp_path)

    assert [client.id for client in store.list_records("clients")] == ["ok"]
    assert store.list_records("players") == []


def test_upsert_keeps_created_at_and_bumps_updated_at(store):
    first = store.upsert_client({"id": "c1", "name": "Parent", "createdAt": 1000, "updatedAt": 1000})
    second = store.upsert_client({"id": "c1", "name": "Parent Renamed"})

    assert first.created_at == 1000
    assert second.created_at == 1000
    assert second.updated_at >= second.created_at
    assert store.get("clients", "c1").name == "Parent Renamed"


def test_snapshot_is_detached_from_the_store(store):
    _seed(store)
    snap = store.snapshot()

    snap.clients[0].name = "Changed"

    assert store.get("clients", "c1").name == "Parent"
    with pytest.raises(dataclasses.FrozenInstanceError):
        snap.clients = ()


def test_missing_records_raise_not_found(store):
    with pytest.raises(ValueError, match="Client not found"):
        store.get("clients", "nope")
    with pytest.raises(ValueError, match="Session not found"):
        store.delete_session("nope")


def test_player_requires_known_client(store):
    with pytest.raises(ValueError, match="Unknown client"):
        store.upsert_player({"name": "Orphan", "clientId": "missing"})


def test_session_validation_against_players_and_capacity(store):
    _seed(store)
    store.upsert_player({"id": "p2", "name": "Sibling", "clientId": "c1"})

    with pytest.raises(ValueError, match="Unknown participant"):
        store.upsert_session(_session_payload(participantIds=["ghost"]))
    with pytest.raises(ValueError, match="capacity"):
        store.upsert_session(_session_payload(participantIds=["p1", "p2"], maxCapacity=1))


def test_payments_are_recorded_and_removed(store):
    _seed(store)

    payment = store.record_payment("c1", {"id": "pay1", "date": "2026-01-20", "amount": 100, "playerId": "p1"})

    assert payment.player_id == "p1"
    assert [item.id for item in store.get("clients", "c1").payments] == ["pay1"]
    with pytest.raises(ValueError, match="already recorded"):
        store.record_payment("c1", {"id": "pay1", "date": "2026-01-20", "amount": 100})
    with pytest.raises(ValueError, match="must belong"):
        store.record_payment("c1", {"date": "2026-01-20", "amount": 10, "playerId": "ghost"})

    store.delete_payment("c1", "pay1")
    assert store.get("clients", "c1").payments == []
    with pytest.raises(ValueError, match="Payment not found"):
        store.delete_payment("c1", "pay1")


def test_deleting_a_client_unlinks_players(store):
    _seed(store)

    store.delete_client("c1")

    assert store.get("players", "p1").client_id is None


def test_deleting_a_player_removes_their_logs(store):
    _seed(store)
    store.upsert_log({"id": "log1", "playerId": "p1", "date": "2026-01-15", "tech": 2})

    store.delete_player("p1")

    assert store.list_records("logs") == []
    with pytest.raises(ValueError, match="Unknown player"):
        store.upsert_log({"playerId": "p1", "date": "2026-01-15"})


def test_statement_reads_current_records(store):
    _seed(store)
    store.upsert_session(_session_payload(date="2026-01-15", price=200))
    store.record_payment("c1", {"date": "2026-01-20", "amount": 100})
    store.upsert_day_event({"date": "2026-01-15", "type": "Coach Cancelled"})

    statement = store.statement("c1", "2026-01")

    assert statement.monthly_fees == -200
    assert statement.closing_balance == -300
    assert store.accounts_summary("2026-01").outstanding_count == 0


def test_repeat_session_for_the_month(store):
    _seed(store)
    store.upsert_session(_session_payload())

    created = store.repeat_session("s1", "Month")

    assert [session.date for session in created] == ["2026-02-09", "2026-02-16", "2026-02-23"]
    assert store.get("sessions", "s1").series_id == "s1"
    assert {session.series_id for session in store.list_records("sessions")} == {"s1"}
    assert len(store.list_records("sessions")) == 4

    # repeating again books nothing new
    assert store.repeat_session("s1", "Month") == []
    assert len(store.list_records("sessions")) == 4


def test_repeat_session_for_a_term(store):
    _seed(store)
    store.upsert_session(_session_payload())
    store.upsert_term({"id": "t1", "name": "Term 1", "startDate": "2026-01-12", "endDate": "2026-03-09"})

    created = store.repeat_session("s1", "Term", term_id="t1")

    assert created[-1].date == "2026-03-09"
    assert len(created) == 5
    with pytest.raises(ValueError, match="Term not found"):
        store.repeat_session("s1", "Term", term_id="missing")
    with pytest.raises(ValueError, match="Session not found"):
        store.repeat_session("missing", "Month")


def test_write_failures_raise_runtime_error(store, monkeypatch):
    def _boom(self, path, data):
        raise RuntimeError(f"Failed to write local data store {path}")

    monkeypatch.setattr(AcademyStore, "_write_json_file", _boom)

    with pytest.raises(RuntimeError):
        store.upsert_client({"name": "Parent"})


def test_sync_requires_remote_configuration(store):
    with pytest.raises(RuntimeError, match="Supabase configuration"):
        store.sync()


def test_statement_for_one_player(store):
    _seed(store)
    store.upsert_player({"id": "p2", "name": "Kim", "clientId": "c1", "age": 14})
    store.upsert_session(_session_payload(date="2026-02-02", price=100, participantIds=["p1", "p2"]))
    store.record_payment("c1", {"date": "2026-02-10", "amount": 60})

    household = store.statement("c1", "2026-02")
    assert [section.player_id for section in household.sections] == ["p2", "p1"]
    assert [section.subtotal for section in household.sections] == [70, 70]

    scoped = store.statement("c1", "2026-02", player_id="p1")
    assert scoped.player_id == "p1"
    assert (scoped.monthly_fees, scoped.monthly_payments, scoped.closing_balance) == (100, 60, 40)

    store.upsert_client({"id": "c2", "name": "Other Parent"})
    store.upsert_player({"id": "p3", "name": "Lee", "clientId": "c2"})
    with pytest.raises(ValueError, match="Player not found"):
        store.statement("c1", "2026-02", player_id="p3")


def test_client_edit_without_payments_keeps_the_ledger(store):
    _seed(store)
    store.record_payment("c1", {"date": "2026-01-20", "amount": 100})

    renamed = store.upsert_client({"id": "c1", "name": "Renamed Parent"})

    assert renamed.name == "Renamed Parent"
    assert [payment.amount for payment in store.get("clients", "c1").payments] == [100]

    cleared = store.upsert_client({"id": "c1", "name": "Renamed Parent", "payments": []})
    assert cleared.payments == []
