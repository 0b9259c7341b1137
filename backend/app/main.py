from __future__ import annotations

import datetime as dt
import logging
from dataclasses import asdict
from functools import lru_cache
from typing import Any, Dict, List, Literal, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from academy_core import AcademyStore
from academy_core.analytics import calculate_attendance_streak, calculate_dashboard_stats, drill_stats
from academy_core.billing import month_bounds

app = FastAPI(title="Tennis Academy Office API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = logging.getLogger(__name__)


class PaymentModel(BaseModel):
    id: Optional[str] = None
    date: dt.date
    amount: float = Field(ge=0)
    reference: Optional[str] = None
    note: Optional[str] = None
    player_id: Optional[str] = Field(default=None, alias="playerId")
    proof_url: Optional[str] = Field(default=None, alias="proofUrl")

    model_config = ConfigDict(populate_by_name=True)


class ClientModel(BaseModel):
    id: Optional[str] = None
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    status: Literal["Active", "Inactive", "Lead"] = "Active"
    notes: Optional[str] = None
    payments: Optional[List[PaymentModel]] = None
    created_at: Optional[int] = Field(default=None, alias="createdAt")
    updated_at: Optional[int] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class ScheduleSlotModel(BaseModel):
    date: dt.date
    start_time: str = Field(alias="startTime")
    end_time: Optional[str] = Field(default=None, alias="endTime")
    location: Optional[str] = None
    session_type: Optional[str] = Field(default=None, alias="sessionType")
    fee: Optional[float] = None

    model_config = ConfigDict(populate_by_name=True)


class PlayerModel(BaseModel):
    id: Optional[str] = None
    name: str
    client_id: Optional[str] = Field(default=None, alias="clientId")
    level: Optional[str] = None
    dob: Optional[dt.date] = None
    age: Optional[int] = None
    notes: Optional[str] = None
    schedule: List[ScheduleSlotModel] = Field(default_factory=list)
    created_at: Optional[int] = Field(default=None, alias="createdAt")
    updated_at: Optional[int] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class SessionModel(BaseModel):
    id: Optional[str] = None
    date: dt.date
    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")
    location: str
    type: Literal["Private", "Semi", "Group"]
    price: float = Field(default=0, ge=0)
    participant_ids: List[str] = Field(default_factory=list, alias="participantIds")
    max_capacity: int = Field(default=1, ge=1, alias="maxCapacity")
    coach_id: Optional[str] = Field(default=None, alias="coachId")
    notes: Optional[str] = None
    series_id: Optional[str] = Field(default=None, alias="seriesId")
    created_at: Optional[int] = Field(default=None, alias="createdAt")
    updated_at: Optional[int] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class SessionListResponse(BaseModel):
    sessions: List[SessionModel]


class RepeatRequest(BaseModel):
    mode: Literal["Month", "Term"]
    term_id: Optional[str] = Field(default=None, alias="termId")

    model_config = ConfigDict(populate_by_name=True)


class DayEventModel(BaseModel):
    id: Optional[str] = None
    date: dt.date
    type: Literal["Rain", "Coach Cancelled", "Tournament", "Holiday"]
    note: Optional[str] = None
    created_at: Optional[int] = Field(default=None, alias="createdAt")
    updated_at: Optional[int] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class TermModel(BaseModel):
    id: Optional[str] = None
    name: str
    start_date: dt.date = Field(alias="startDate")
    end_date: dt.date = Field(alias="endDate")

    model_config = ConfigDict(populate_by_name=True)


class SessionLogModel(BaseModel):
    id: Optional[str] = None
    player_id: str = Field(alias="playerId")
    date: dt.date
    tech: int = Field(default=0, ge=0, le=2)
    consistency: int = Field(default=0, ge=0, le=2)
    tactics: int = Field(default=0, ge=0, le=2)
    movement: int = Field(default=0, ge=0, le=2)
    coachability: int = Field(default=0, ge=0, le=2)
    total_score: Optional[int] = Field(default=None, alias="totalScore")
    term_id: Optional[str] = Field(default=None, alias="termId")
    duration_min: Optional[int] = Field(default=None, alias="durationMin")
    note: Optional[str] = None
    next_focus: Optional[str] = Field(default=None, alias="nextFocus")

    model_config = ConfigDict(populate_by_name=True)


class ExpenseModel(BaseModel):
    id: Optional[str] = None
    date: dt.date
    category: str
    description: str
    amount: float = Field(ge=0)

    model_config = ConfigDict(populate_by_name=True)


class StatementLineModel(BaseModel):
    date: str
    description: str
    debit: float
    credit: float
    kind: str
    player_id: Optional[str] = Field(default=None, alias="playerId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")

    model_config = ConfigDict(populate_by_name=True)


class StatementSectionModel(BaseModel):
    player_id: str = Field(alias="playerId")
    player_name: str = Field(alias="playerName")
    opening_balance: float = Field(alias="openingBalance")
    lines: List[StatementLineModel]
    subtotal: float

    model_config = ConfigDict(populate_by_name=True)


class StatementResponse(BaseModel):
    client_id: str = Field(alias="clientId")
    player_id: Optional[str] = Field(default=None, alias="playerId")
    month: str
    opening_balance: float = Field(alias="openingBalance")
    monthly_fees: float = Field(alias="monthlyFees")
    monthly_payments: float = Field(alias="monthlyPayments")
    closing_balance: float = Field(alias="closingBalance")
    lines: List[StatementLineModel]
    sections: List[StatementSectionModel] = Field(default_factory=list)
    notes: List[str]

    model_config = ConfigDict(populate_by_name=True)


class AccountsResponse(BaseModel):
    month: str
    statements: List[StatementResponse]
    opening_balance: float = Field(alias="openingBalance")
    monthly_fees: float = Field(alias="monthlyFees")
    monthly_payments: float = Field(alias="monthlyPayments")
    closing_balance: float = Field(alias="closingBalance")
    outstanding_count: int = Field(alias="outstandingCount")

    model_config = ConfigDict(populate_by_name=True)


class DashboardResponse(BaseModel):
    total_revenue: float = Field(alias="totalRevenue")
    total_sessions: int = Field(alias="totalSessions")
    active_clients: int = Field(alias="activeClients")
    avg_per_session: int = Field(alias="avgPerSession")
    most_popular_type: str = Field(alias="mostPopularType")

    model_config = ConfigDict(populate_by_name=True)


class SyncHealthResponse(BaseModel):
    missing_tables: List[str] = Field(alias="missingTables")
    missing_columns: Dict[str, List[str]] = Field(alias="missingColumns")
    issues: List[str]
    has_issues: bool = Field(alias="hasIssues")

    model_config = ConfigDict(populate_by_name=True)


@lru_cache(maxsize=1)
def store() -> AcademyStore:
    return AcademyStore()


def _client_error(exc: ValueError) -> HTTPException:
    message = str(exc)
    if message.endswith("not found"):
        return HTTPException(status_code=404, detail=message)
    return HTTPException(status_code=400, detail=message)


def _report_month(month: Optional[str]) -> str:
    value = month or dt.date.today().strftime("%Y-%m")
    if month_bounds(value) is None:
        raise HTTPException(status_code=400, detail=f"Invalid month '{value}', expected YYYY-MM")
    return value


def _dump(payload: BaseModel) -> Dict[str, Any]:
    return payload.model_dump(by_alias=True, exclude_none=True)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/clients", response_model=List[ClientModel])
def list_clients():
    return [ClientModel(**client.to_payload()) for client in store().list_records("clients")]


@app.put("/clients", response_model=ClientModel)
def upsert_client(payload: ClientModel):
    try:
        record = store().upsert_client(_dump(payload))
    except ValueError as exc:
        raise _client_error(exc) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return ClientModel(**record.to_payload())


@app.delete("/clients/{client_id}", status_code=204)
def delete_client(client_id: str):
    try:
        store().delete_client(client_id)
    except ValueError as exc:
        raise _client_error(exc) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.post("/clients/{client_id}/payments", response_model=PaymentModel, status_code=201)
def record_payment(client_id: str, payload: PaymentModel):
    try:
        payment = store().record_payment(client_id, _dump(payload))
    except ValueError as exc:
        raise _client_error(exc) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return PaymentModel(**payment.to_payload())


@app.delete("/clients/{client_id}/payments/{payment_id}", status_code=204)
def delete_payment(client_id: str, payment_id: str):
    try:
        store().delete_payment(client_id, payment_id)
    except ValueError as exc:
        raise _client_error(exc) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.get("/clients/{client_id}/statement", response_model=StatementResponse)
def client_statement(
    client_id: str,
    month: Optional[str] = Query(default=None),
    player_id: Optional[str] = Query(default=None, alias="playerId"),
):
    report_month = _report_month(month)
    try:
        statement = store().statement(client_id, report_month, player_id=player_id)
    except ValueError as exc:
        raise _client_error(exc) from exc
    return StatementResponse(**asdict(statement))


@app.get("/accounts", response_model=AccountsResponse)
def accounts(month: Optional[str] = Query(default=None)):
    summary = store().accounts_summary(_report_month(month))
    return AccountsResponse(**asdict(summary))


@app.get("/players", response_model=List[PlayerModel])
def list_players():
    return [PlayerModel(**player.to_payload()) for player in store().list_records("players")]


@app.put("/players", response_model=PlayerModel)
def upsert_player(payload: PlayerModel):
    try:
        record = store().upsert_player(_dump(payload))
    except ValueError as exc:
        raise _client_error(exc) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return PlayerModel(**record.to_payload())


@app.delete("/players/{player_id}", status_code=204)
def delete_player(player_id: str):
    try:
        store().delete_player(player_id)
    except ValueError as exc:
        raise _client_error(exc) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.get("/players/{player_id}/streak")
def player_streak(player_id: str) -> dict[str, Any]:
    try:
        store().get("players", player_id)
    except ValueError as exc:
        raise _client_error(exc) from exc
    streak = calculate_attendance_streak(player_id, store().snapshot().sessions)
    return {"playerId": player_id, "streak": streak}


@app.get("/sessions", response_model=SessionListResponse)
def list_sessions(
    start: Optional[dt.date] = Query(default=None),
    end: Optional[dt.date] = Query(default=None),
):
    sessions = store().list_records("sessions")
    if start:
        sessions = [session for session in sessions if session.date >= start.isoformat()]
    if end:
        sessions = [session for session in sessions if session.date <= end.isoformat()]
    sessions.sort(key=lambda session: (session.date, session.start_time, session.location))
    return SessionListResponse(sessions=[SessionModel(**session.to_payload()) for session in sessions])


@app.put("/sessions", response_model=SessionModel)
def upsert_session(payload: SessionModel):
    try:
        record = store().upsert_session(_dump(payload))
    except ValueError as exc:
        raise _client_error(exc) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return SessionModel(**record.to_payload())


@app.delete("/sessions/{session_id}", status_code=204)
def delete_session(session_id: str):
    try:
        store().delete_session(session_id)
    except ValueError as exc:
        raise _client_error(exc) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.post("/sessions/{session_id}/repeat", response_model=SessionListResponse, status_code=201)
def repeat_session(session_id: str, payload: RepeatRequest):
    try:
        created = store().repeat_session(session_id, payload.mode, term_id=payload.term_id)
    except ValueError as exc:
        raise _client_error(exc) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return SessionListResponse(sessions=[SessionModel(**session.to_payload()) for session in created])


@app.get("/day-events", response_model=List[DayEventModel])
def list_day_events():
    return [DayEventModel(**event.to_payload()) for event in store().list_records("day_events")]


@app.put("/day-events", response_model=DayEventModel)
def upsert_day_event(payload: DayEventModel):
    try:
        record = store().upsert_day_event(_dump(payload))
    except ValueError as exc:
        raise _client_error(exc) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return DayEventModel(**record.to_payload())


@app.delete("/day-events/{event_id}", status_code=204)
def delete_day_event(event_id: str):
    try:
        store().delete_day_event(event_id)
    except ValueError as exc:
        raise _client_error(exc) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.get("/terms", response_model=List[TermModel])
def list_terms():
    return [TermModel(**term.to_payload()) for term in store().list_records("terms")]


@app.put("/terms", response_model=TermModel)
def upsert_term(payload: TermModel):
    try:
        record = store().upsert_term(_dump(payload))
    except ValueError as exc:
        raise _client_error(exc) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return TermModel(**record.to_payload())


@app.get("/logs", response_model=List[SessionLogModel])
def list_logs(player_id: Optional[str] = Query(default=None, alias="playerId")):
    logs = store().list_records("logs")
    if player_id:
        logs = [log for log in logs if log.player_id == player_id]
    return [SessionLogModel(**log.to_payload()) for log in logs]


@app.put("/logs", response_model=SessionLogModel)
def upsert_log(payload: SessionLogModel):
    try:
        record = store().upsert_log(_dump(payload))
    except ValueError as exc:
        raise _client_error(exc) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return SessionLogModel(**record.to_payload())


@app.get("/expenses", response_model=List[ExpenseModel])
def list_expenses():
    return [ExpenseModel(**expense.to_payload()) for expense in store().list_records("expenses")]


@app.put("/expenses", response_model=ExpenseModel)
def upsert_expense(payload: ExpenseModel):
    try:
        record = store().upsert_expense(_dump(payload))
    except ValueError as exc:
        raise _client_error(exc) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return ExpenseModel(**record.to_payload())


@app.get("/analytics/dashboard", response_model=DashboardResponse)
def dashboard():
    snap = store().snapshot()
    return DashboardResponse(**asdict(calculate_dashboard_stats(snap.players, snap.sessions)))


@app.get("/analytics/drills")
def drill_library_stats() -> dict[str, Any]:
    return drill_stats(store().snapshot().drills)


@app.post("/sync")
def sync() -> dict[str, Any]:
    try:
        summary = store().sync()
    except RuntimeError as exc:
        logger.warning("Sync request failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"skipped": not summary, "tables": summary}


@app.get("/sync/health", response_model=SyncHealthResponse)
def sync_health():
    health = store().sync_health()
    return SyncHealthResponse(
        missingTables=health.missing_tables,
        missingColumns=health.missing_columns,
        issues=health.issues,
        hasIssues=health.has_issues,
    )
