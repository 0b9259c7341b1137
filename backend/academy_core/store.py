from __future__ import annotations

import copy
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx

from .billing import AccountsSummary, ClientStatement, compute_accounts_summary, compute_client_statement
from .models import (
    Client,
    DayEvent,
    Drill,
    Expense,
    Payment,
    Player,
    SessionLog,
    Term,
    TrainingSession,
    now_ms,
)
from .recurrence import REPEAT_TERM, generate_recurring_series
from .sync_health import SyncHealth, classify_schema_issue

logger = logging.getLogger(__name__)

# collection name -> (record type, default Supabase table, label used in errors)
COLLECTIONS: Dict[str, Tuple[type, str, str]] = {
    "clients": (Client, "clients", "Client"),
    "players": (Player, "players", "Player"),
    "sessions": (TrainingSession, "training_sessions", "Session"),
    "day_events": (DayEvent, "day_events", "Day event"),
    "terms": (Term, "terms", "Term"),
    "logs": (SessionLog, "session_logs", "Session log"),
    "expenses": (Expense, "expenses", "Expense"),
    "drills": (Drill, "drills", "Drill"),
}

# players reference clients, logs reference players
SYNC_ORDER = ["clients", "drills", "sessions", "terms", "day_events", "expenses", "players", "logs"]

TABLE_COLUMN_ALLOWLIST: Dict[str, List[str]] = {
    "clients": ["id", "name", "email", "phone", "notes", "status", "payments", "created_at", "updated_at"],
    "players": [
        "id", "client_id", "name", "dob", "age", "level", "notes", "schedule", "created_at", "updated_at",
    ],
    "training_sessions": [
        "id", "date", "start_time", "end_time", "location", "type", "price", "coach_id",
        "participant_ids", "max_capacity", "notes", "series_id", "created_at", "updated_at",
    ],
    "day_events": ["id", "date", "type", "note", "created_at", "updated_at"],
    "terms": ["id", "name", "start_date", "end_date", "created_at", "updated_at"],
    "session_logs": [
        "id", "player_id", "term_id", "date", "duration_min", "tech", "consistency", "tactics",
        "movement", "coachability", "total_score", "note", "next_focus", "created_at", "updated_at",
    ],
    "expenses": ["id", "date", "category", "description", "amount", "created_at", "updated_at"],
    "drills": [
        "id", "name", "session", "format", "intensity", "duration_mins", "description", "tags",
        "starred", "diagram", "category_id", "created_at", "updated_at",
    ],
}


@dataclass(frozen=True)
class StoreSnapshot:
    """Point-in-time copy of every collection, safe to hand to pure functions."""

    clients: Tuple[Client, ...] = ()
    players: Tuple[Player, ...] = ()
    sessions: Tuple[TrainingSession, ...] = ()
    day_events: Tuple[DayEvent, ...] = ()
    terms: Tuple[Term, ...] = ()
    logs: Tuple[SessionLog, ...] = ()
    expenses: Tuple[Expense, ...] = ()
    drills: Tuple[Drill, ...] = ()


class AcademyStore:
    """Owns the academy collections, persisted locally and mirrored to Supabase."""

    def __init__(self, data_dir: Path | None = None) -> None:
        """Initialise the store and load any local data.

        Args:
            data_dir: Directory holding the ``<table>_local.json`` files.
        """
        env_dir = os.getenv("ACADEMY_DATA_DIR")
        self.data_dir = data_dir or (Path(env_dir) if env_dir else Path(__file__).parent.parent / "data")

        # Supabase configuration
        self.supabase_url = os.getenv("SUPABASE_URL", "")
        self.supabase_key = (
            os.getenv("SUPABASE_SERVICE_ROLE_KEY")
            or os.getenv("SUPABASE_SERVICE_KEY")
            or os.getenv("SUPABASE_ANON_KEY")
            or ""
        )
        self.supabase_schema = os.getenv("SUPABASE_SCHEMA", "public")
        self.tables: Dict[str, str] = {
            name: os.getenv(f"SUPABASE_{name.upper()}_TABLE", default_table)
            for name, (_, default_table, _) in COLLECTIONS.items()
        }
        try:
            self.sync_min_interval = float(os.getenv("ACADEMY_SYNC_MIN_INTERVAL", "5"))
        except ValueError:
            self.sync_min_interval = 5.0

        self._last_sync: float | None = None
        self._health = SyncHealth()
        self._collections: Dict[str, Dict[str, Any]] = {name: self._load_collection(name) for name in COLLECTIONS}

    @property
    def remote_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    def local_path(self, name: str) -> Path:
        return self.data_dir / f"{COLLECTIONS[name][1]}_local.json"

    # ------------------------------------------------------------------
    # Reads

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            **{name: tuple(copy.deepcopy(list(records.values()))) for name, records in self._collections.items()}
        )

    def list_records(self, name: str) -> List[Any]:
        return copy.deepcopy(list(self._collections[name].values()))

    def get(self, name: str, record_id: str) -> Any:
        record = self._collections[name].get(str(record_id))
        if record is None:
            raise ValueError(f"{COLLECTIONS[name][2]} not found")
        return copy.deepcopy(record)

    def statement(self, client_id: str, month: Any, player_id: Optional[str] = None) -> ClientStatement:
        snap = self.snapshot()
        client = self.get("clients", client_id)
        if player_id is not None:
            player = self._collections["players"].get(str(player_id))
            if player is None or player.client_id != client.id:
                raise ValueError("Player not found")
        return compute_client_statement(
            client, snap.players, snap.sessions, snap.day_events, month, roster=snap.players, player_id=player_id
        )

    def accounts_summary(self, month: Any) -> AccountsSummary:
        snap = self.snapshot()
        return compute_accounts_summary(snap.clients, snap.players, snap.sessions, snap.day_events, month)

    def sync_health(self) -> SyncHealth:
        return copy.deepcopy(self._health)

    # ------------------------------------------------------------------
    # Commands

    def upsert_client(self, payload: Mapping[str, Any] | Client) -> Client:
        data = self._as_mapping(payload)
        client = Client.from_record(data)
        existing = self._collections["clients"].get(client.id)
        # a profile edit without a payments list keeps the ledger
        if existing is not None and "payments" not in data:
            client.payments = copy.deepcopy(existing.payments)
        return self._store("clients", client)

    def delete_client(self, client_id: str) -> None:
        self._delete("clients", client_id)
        # players keep existing without an account, like ON DELETE SET NULL
        for player in self._collections["players"].values():
            if player.client_id == client_id:
                player.client_id = None
                player.updated_at = now_ms()
        self._persist("players")

    def record_payment(self, client_id: str, payload: Mapping[str, Any]) -> Payment:
        client = self._collections["clients"].get(str(client_id))
        if client is None:
            raise ValueError("Client not found")

        payment = Payment.from_record(payload)
        if payment.player_id:
            player = self._collections["players"].get(payment.player_id)
            if player is None or player.client_id != client.id:
                raise ValueError("Payment playerId must belong to the client")
        if any(existing.id == payment.id for existing in client.payments):
            raise ValueError("Payment already recorded")

        client.payments.append(payment)
        client.updated_at = now_ms()
        self._persist("clients")
        self._mirror_upsert("clients", client)
        return copy.deepcopy(payment)

    def delete_payment(self, client_id: str, payment_id: str) -> None:
        client = self._collections["clients"].get(str(client_id))
        if client is None:
            raise ValueError("Client not found")
        remaining = [payment for payment in client.payments if payment.id != payment_id]
        if len(remaining) == len(client.payments):
            raise ValueError("Payment not found")
        client.payments = remaining
        client.updated_at = now_ms()
        self._persist("clients")
        self._mirror_upsert("clients", client)

    def upsert_player(self, payload: Mapping[str, Any] | Player) -> Player:
        player = Player.from_record(self._as_mapping(payload))
        if player.client_id and player.client_id not in self._collections["clients"]:
            raise ValueError(f"Unknown client '{player.client_id}'")
        return self._store("players", player)

    def delete_player(self, player_id: str) -> None:
        self._delete("players", player_id)
        # session logs cascade with their player; sessions keep the stale id
        logs = self._collections["logs"]
        orphaned = [log_id for log_id, log in logs.items() if log.player_id == player_id]
        for log_id in orphaned:
            del logs[log_id]
        if orphaned:
            self._persist("logs")

    def upsert_session(self, payload: Mapping[str, Any] | TrainingSession) -> TrainingSession:
        session = TrainingSession.from_record(self._as_mapping(payload))
        self._validate_session(session)
        return self._store("sessions", session)

    def delete_session(self, session_id: str) -> None:
        self._delete("sessions", session_id)

    def repeat_session(self, session_id: str, mode: str, term_id: Optional[str] = None) -> List[TrainingSession]:
        """Fill the rest of the month/term with weekly copies of a session."""

        template = self._collections["sessions"].get(str(session_id))
        if template is None:
            raise ValueError("Session not found")

        term = None
        if mode == REPEAT_TERM:
            term = self._collections["terms"].get(str(term_id)) if term_id else None
            if term is None:
                raise ValueError("Term not found")

        instances = generate_recurring_series(
            template, mode, term=term, existing=self._collections["sessions"].values()
        )
        if not instances:
            return []

        if template.series_id is None:
            template.series_id = template.id
            template.updated_at = now_ms()
            self._mirror_upsert("sessions", template)

        for instance in instances:
            self._collections["sessions"][instance.id] = instance
        self._persist("sessions")
        for instance in instances:
            self._mirror_upsert("sessions", instance)

        logger.info("Repeated session %s (%s): %d new sessions", session_id, mode, len(instances))
        return copy.deepcopy(instances)

    def upsert_day_event(self, payload: Mapping[str, Any] | DayEvent) -> DayEvent:
        return self._upsert("day_events", payload)

    def delete_day_event(self, event_id: str) -> None:
        self._delete("day_events", event_id)

    def upsert_term(self, payload: Mapping[str, Any] | Term) -> Term:
        return self._upsert("terms", payload)

    def delete_term(self, term_id: str) -> None:
        self._delete("terms", term_id)

    def upsert_log(self, payload: Mapping[str, Any] | SessionLog) -> SessionLog:
        log = SessionLog.from_record(self._as_mapping(payload))
        if log.player_id not in self._collections["players"]:
            raise ValueError(f"Unknown player '{log.player_id}'")
        return self._store("logs", log)

    def delete_log(self, log_id: str) -> None:
        self._delete("logs", log_id)

    def upsert_expense(self, payload: Mapping[str, Any] | Expense) -> Expense:
        return self._upsert("expenses", payload)

    def delete_expense(self, expense_id: str) -> None:
        self._delete("expenses", expense_id)

    def upsert_drill(self, payload: Mapping[str, Any] | Drill) -> Drill:
        return self._upsert("drills", payload)

    def delete_drill(self, drill_id: str) -> None:
        self._delete("drills", drill_id)

    # ---- internal command helpers -------------------------------------------------

    @staticmethod
    def _as_mapping(payload: Any) -> Mapping[str, Any]:
        if isinstance(payload, Mapping):
            return payload
        to_row = getattr(payload, "to_row", None)
        if callable(to_row):
            return to_row()
        raise ValueError("Expected a mapping or record")

    def _upsert(self, name: str, payload: Any) -> Any:
        record_type = COLLECTIONS[name][0]
        return self._store(name, record_type.from_record(self._as_mapping(payload)))

    def _store(self, name: str, record: Any) -> Any:
        records = self._collections[name]
        existing = records.get(record.id)
        if existing is not None:
            record.created_at = existing.created_at
        record.updated_at = now_ms()
        records[record.id] = record
        self._persist(name)
        self._mirror_upsert(name, record)
        return copy.deepcopy(record)

    def _delete(self, name: str, record_id: str) -> None:
        records = self._collections[name]
        if str(record_id) not in records:
            raise ValueError(f"{COLLECTIONS[name][2]} not found")
        del records[str(record_id)]
        self._persist(name)
        self._mirror_delete(name, str(record_id))

    def _validate_session(self, session: TrainingSession) -> None:
        unknown = [pid for pid in session.participant_ids if pid not in self._collections["players"]]
        if unknown:
            raise ValueError(f"Unknown participant(s): {', '.join(unknown)}")
        if len(session.participant_ids) > session.max_capacity:
            raise ValueError(
                f"Session has {len(session.participant_ids)} participants but capacity {session.max_capacity}"
            )

    # ------------------------------------------------------------------
    # Local persistence

    def _load_collection(self, name: str) -> Dict[str, Any]:
        record_type, _, label = COLLECTIONS[name]
        data = self._read_json_file(self.local_path(name), [])
        records: Dict[str, Any] = {}
        if not isinstance(data, list):
            logger.warning("Ignoring malformed local data store %s", self.local_path(name))
            return records
        for row in data:
            if not isinstance(row, dict):
                continue
            try:
                record = record_type.from_record(row)
            except ValueError as exc:
                logger.warning("Skipping invalid %s in %s: %s", label.lower(), self.local_path(name), exc)
                continue
            records[record.id] = record
        return records

    def _persist(self, name: str) -> None:
        rows = [record.to_row() for record in self._collections[name].values()]
        self._write_json_file(self.local_path(name), rows)

    def _read_json_file(self, path: Path, default: Any) -> Any:
        try:
            if not path.exists():
                return default
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Falling back to default for %s due to read error: %s", path, exc)
            return default

    def _write_json_file(self, path: Path, data: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True)
        except OSError as exc:
            raise RuntimeError(f"Failed to write local data store {path}") from exc

    # ------------------------------------------------------------------
    # Supabase mirror

    def _supabase_endpoint(self, table: str) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1/{table}"

    def _supabase_headers(self, prefer: str | None = None, include_content_profile: bool = True) -> Dict[str, str]:
        headers = {
            "apikey": self.supabase_key,
            "Authorization": f"Bearer {self.supabase_key}",
            "Accept": "application/json",
        }
        if include_content_profile and self.supabase_schema and self.supabase_schema != "public":
            headers["Content-Profile"] = self.supabase_schema
        if self.supabase_schema and self.supabase_schema != "public":
            headers["Accept-Profile"] = self.supabase_schema
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _sanitise_row(self, name: str, row: Dict[str, Any]) -> Dict[str, Any]:
        if name == "players" and row.get("client_id") and row["client_id"] not in self._collections["clients"]:
            row = {**row, "client_id": None}
        allow = TABLE_COLUMN_ALLOWLIST.get(COLLECTIONS[name][1])
        if not allow:
            return row
        return {key: value for key, value in row.items() if key in allow}

    def _mirror_upsert(self, name: str, record: Any) -> None:
        if not self.remote_enabled:
            return

        table = self.tables[name]
        headers = self._supabase_headers("resolution=merge-duplicates,return=minimal")
        headers["Content-Type"] = "application/json"
        payload = [self._sanitise_row(name, record.to_row())]

        try:
            with httpx.Client(timeout=10.0) as client:
                response = client.post(
                    self._supabase_endpoint(table), params={"on_conflict": "id"}, json=payload, headers=headers
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = self._extract_supabase_detail(exc.response)
            self._note_schema_issue(detail)
            logger.warning("Supabase upsert to %s failed (%s); kept local copy", table, detail or exc)
        except httpx.HTTPError as exc:
            logger.warning("Supabase upsert to %s unavailable (%s); kept local copy", table, exc)

    def _mirror_delete(self, name: str, record_id: str) -> None:
        if not self.remote_enabled:
            return

        table = self.tables[name]
        headers = self._supabase_headers()
        try:
            with httpx.Client(timeout=10.0) as client:
                response = client.delete(
                    self._supabase_endpoint(table), params={"id": f"eq.{record_id}"}, headers=headers
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = self._extract_supabase_detail(exc.response)
            self._note_schema_issue(detail)
            logger.warning("Supabase delete from %s failed (%s)", table, detail or exc)
        except httpx.HTTPError as exc:
            logger.warning("Supabase delete from %s unavailable (%s)", table, exc)

    def _note_schema_issue(self, detail: str | None) -> None:
        issue = classify_schema_issue(detail)
        if issue is not None:
            self._health = self._health.merge(issue)

    # ------------------------------------------------------------------
    # Whole-table synchronisation

    def sync(self) -> Dict[str, Any]:
        """Last-write-wins sync of every collection with Supabase.

        A table with remote rows replaces the local copy; an empty remote table
        is seeded from local data. Returns a per-collection summary.
        """

        if not self.remote_enabled:
            raise RuntimeError("Supabase configuration is required to sync")

        now = time.monotonic()
        if self._last_sync is not None and now - self._last_sync < self.sync_min_interval:
            logger.info("Skipping sync requested %.1fs after the previous one", now - self._last_sync)
            return {}
        self._last_sync = now

        summary: Dict[str, Any] = {}
        with httpx.Client(timeout=10.0) as client:
            for name in SYNC_ORDER:
                summary[name] = self._sync_collection(client, name)
        return summary

    def _sync_collection(self, client: httpx.Client, name: str) -> Dict[str, Any]:
        result: Dict[str, Any] = {"action": "skip", "count": 0, "errors": []}
        record_type, _, label = COLLECTIONS[name]
        table = self.tables[name]
        endpoint = self._supabase_endpoint(table)
        headers = self._supabase_headers(include_content_profile=False)

        try:
            response = client.get(endpoint, params={"select": "*"}, headers=headers)
            response.raise_for_status()
            rows = response.json()
        except httpx.HTTPStatusError as exc:
            detail = self._extract_supabase_detail(exc.response)
            self._note_schema_issue(detail)
            result["action"] = "error"
            result["errors"].append(detail or f"Supabase rejected {table} fetch: {exc}")
            return result
        except httpx.HTTPError as exc:
            result["action"] = "error"
            result["errors"].append(f"{table} fetch failed: {exc}")
            return result

        if not isinstance(rows, list):
            result["action"] = "error"
            result["errors"].append(f"Unexpected payload for {table}: {type(rows).__name__}")
            return result

        if rows:
            records: Dict[str, Any] = {}
            for row in rows:
                if not isinstance(row, dict):
                    continue
                try:
                    record = record_type.from_record(row)
                except ValueError as exc:
                    result["errors"].append(f"Skipped remote {label.lower()} {row.get('id')}: {exc}")
                    continue
                records[record.id] = record
            if not records:
                result["action"] = "error"
                result["errors"].append(f"No valid rows in remote {table}; kept the local copy")
                logger.warning("Remote %s returned %d unusable rows; local copy kept", table, len(rows))
                return result
            self._collections[name] = records
            self._persist(name)
            result["action"] = "download"
            result["count"] = len(records)
            return result

        local = list(self._collections[name].values())
        if not local:
            return result

        headers = self._supabase_headers("resolution=merge-duplicates,return=minimal")
        headers["Content-Type"] = "application/json"
        payload = [self._sanitise_row(name, record.to_row()) for record in local]
        try:
            response = client.post(endpoint, params={"on_conflict": "id"}, json=payload, headers=headers)
            if response.status_code != 409:
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = self._extract_supabase_detail(exc.response)
            self._note_schema_issue(detail)
            result["action"] = "error"
            result["errors"].append(detail or f"Supabase rejected {table} seed: {exc}")
            return result
        except httpx.HTTPError as exc:
            result["action"] = "error"
            result["errors"].append(f"{table} seed failed: {exc}")
            return result

        result["action"] = "upload"
        result["count"] = len(payload)
        return result

    def _extract_supabase_detail(self, response: httpx.Response | None) -> str | None:
        if response is None:
            return None
        try:
            payload = response.json()
        except ValueError:
            text = (response.text or "").strip()
            return text or None

        if isinstance(payload, list) and payload:
            payload = payload[0]
        if isinstance(payload, dict):
            for key in ("message", "detail", "error", "hint", "code"):
                value = payload.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        return None
