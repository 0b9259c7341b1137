from __future__ import annotations

import datetime as dt
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

CLIENT_STATUSES = ("Active", "Inactive", "Lead")
SESSION_TYPES = ("Private", "Semi", "Group")
DAY_EVENT_TYPES = ("Rain", "Coach Cancelled", "Tournament", "Holiday")
PROGRESS_METRICS = ("tech", "consistency", "tactics", "movement", "coachability")

_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def new_id() -> str:
    return str(uuid.uuid4())


def now_ms() -> int:
    return int(time.time() * 1000)


def to_camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def to_snake(key: str) -> str:
    return re.sub(r"[A-Z]", lambda match: f"_{match.group(0).lower()}", key)


def parse_iso_date(value: Any) -> dt.date | None:
    """Return a calendar day for ``value`` or ``None`` when it cannot be read."""

    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if len(stripped) < 10:
            return None
        try:
            return dt.date.fromisoformat(stripped[:10])
        except ValueError:
            return None
    return None


def parse_clock(value: Any) -> int | None:
    """Minutes after midnight for an ``HH:MM`` string."""

    if not isinstance(value, str):
        return None
    match = _TIME_RE.match(value.strip()[:5])
    if not match:
        return None
    return int(match.group(1)) * 60 + int(match.group(2))


def coerce_amount(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        amount = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            amount = float(value.strip().replace(",", ""))
        except ValueError:
            return None
    else:
        return None
    if amount != amount or amount in (float("inf"), float("-inf")):
        return None
    return amount


# ---- boundary helpers used by from_record ------------------------------------


def _pick(data: Mapping[str, Any], key: str, default: Any = None) -> Any:
    """Read ``key`` accepting either snake_case or camelCase spellings."""

    if key in data:
        return data[key]
    camel = to_camel(key)
    if camel in data:
        return data[camel]
    return default


def _require_text(data: Mapping[str, Any], key: str, kind: str) -> str:
    value = _pick(data, key)
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValueError(f"{kind} requires a {to_camel(key)} value")
    return text


def _optional_text(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = _pick(data, key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _require_date(data: Mapping[str, Any], key: str, kind: str) -> str:
    value = _pick(data, key)
    parsed = parse_iso_date(value)
    if parsed is None:
        raise ValueError(f"{kind} {to_camel(key)} must be a YYYY-MM-DD date (got {value!r})")
    return parsed.isoformat()


def _optional_date(data: Mapping[str, Any], key: str, kind: str) -> Optional[str]:
    value = _pick(data, key)
    if value in (None, ""):
        return None
    return _require_date(data, key, kind)


def _require_time(data: Mapping[str, Any], key: str, kind: str) -> str:
    value = _pick(data, key)
    minutes = parse_clock(value)
    if minutes is None:
        raise ValueError(f"{kind} {to_camel(key)} must be an HH:MM time (got {value!r})")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _amount(data: Mapping[str, Any], key: str, kind: str, default: float | None = 0.0) -> float:
    value = _pick(data, key)
    if value in (None, ""):
        if default is None:
            raise ValueError(f"{kind} requires a {to_camel(key)} value")
        return default
    amount = coerce_amount(value)
    if amount is None:
        raise ValueError(f"{kind} {to_camel(key)} must be numeric (got {value!r})")
    if amount < 0:
        raise ValueError(f"{kind} {to_camel(key)} cannot be negative")
    return amount


def _choice(data: Mapping[str, Any], key: str, options: tuple, kind: str, default: str | None = None) -> str:
    value = _pick(data, key)
    if value in (None, "") and default is not None:
        return default
    text = str(value or "").strip()
    for option in options:
        if option.lower() == text.lower():
            return option
    raise ValueError(f"{kind} {to_camel(key)} must be one of {', '.join(options)} (got {value!r})")


def _int(data: Mapping[str, Any], key: str, default: int | None) -> int | None:
    value = _pick(data, key)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _timestamps(data: Mapping[str, Any]) -> Dict[str, int]:
    created = _int(data, "created_at", None) or now_ms()
    updated = _int(data, "updated_at", None) or created
    return {"created_at": created, "updated_at": updated}


def _id(data: Mapping[str, Any]) -> str:
    value = _pick(data, "id")
    return str(value).strip() if value not in (None, "") else new_id()


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item).strip() for item in value if item not in (None, "") and str(item).strip()]


class _Record:
    """Shared row/payload serialisation for the dataclass records."""

    def to_row(self) -> Dict[str, Any]:
        row: Dict[str, Any] = {}
        for key, value in self.__dict__.items():
            if isinstance(value, list):
                value = [item.to_row() if isinstance(item, _Record) else item for item in value]
            row[key] = value
        return row

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for key, value in self.__dict__.items():
            if isinstance(value, list):
                value = [item.to_payload() if isinstance(item, _Record) else item for item in value]
            payload[to_camel(key)] = value
        return payload


# ---- records -----------------------------------------------------------------


@dataclass
class Payment(_Record):
    """Money received from a client. Owned by exactly one Client."""

    id: str
    date: str  # YYYY-MM-DD
    amount: float
    reference: Optional[str] = None  # e.g. "EFT - Oct/Nov"
    note: Optional[str] = None
    player_id: Optional[str] = None
    proof_url: Optional[str] = None

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "Payment":
        return cls(
            id=_id(data),
            date=_require_date(data, "date", "Payment"),
            amount=_amount(data, "amount", "Payment", default=None),
            reference=_optional_text(data, "reference"),
            note=_optional_text(data, "note"),
            player_id=_optional_text(data, "player_id"),
            proof_url=_optional_text(data, "proof_url"),
        )


@dataclass
class Client(_Record):
    """A billing account, usually a parent holding the payment ledger."""

    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    status: str = "Active"
    notes: Optional[str] = None
    payments: List[Payment] = field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "Client":
        payments_raw = _pick(data, "payments") or []
        if not isinstance(payments_raw, list):
            raise ValueError("Client payments must be a list")
        return cls(
            id=_id(data),
            name=_require_text(data, "name", "Client"),
            email=_optional_text(data, "email"),
            phone=_optional_text(data, "phone"),
            status=_choice(data, "status", CLIENT_STATUSES, "Client", default="Active"),
            notes=_optional_text(data, "notes"),
            payments=[Payment.from_record(item) for item in payments_raw if isinstance(item, Mapping)],
            **_timestamps(data),
        )


@dataclass
class ScheduleSlot(_Record):
    """A slot recorded on the player's own schedule."""

    date: str
    start_time: str
    end_time: Optional[str] = None
    location: Optional[str] = None
    session_type: Optional[str] = None
    fee: Optional[float] = None

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "ScheduleSlot":
        fee = _pick(data, "fee")
        return cls(
            date=_require_date(data, "date", "Schedule slot"),
            start_time=_require_time(data, "start_time", "Schedule slot"),
            end_time=_optional_text(data, "end_time"),
            location=_optional_text(data, "location"),
            session_type=_optional_text(data, "session_type"),
            fee=coerce_amount(fee) if fee is not None else None,
        )


@dataclass
class Player(_Record):
    id: str
    name: str
    client_id: Optional[str] = None
    level: Optional[str] = None
    dob: Optional[str] = None
    age: Optional[int] = None
    notes: Optional[str] = None
    schedule: List[ScheduleSlot] = field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "Player":
        schedule_raw = _pick(data, "schedule") or []
        return cls(
            id=_id(data),
            name=_require_text(data, "name", "Player"),
            client_id=_optional_text(data, "client_id"),
            level=_optional_text(data, "level"),
            dob=_optional_date(data, "dob", "Player"),
            age=_int(data, "age", None),
            notes=_optional_text(data, "notes"),
            schedule=[
                ScheduleSlot.from_record(item)
                for item in (schedule_raw if isinstance(schedule_raw, list) else [])
                if isinstance(item, Mapping)
            ],
            **_timestamps(data),
        )


@dataclass
class TrainingSession(_Record):
    """One dated, timed academy session.

    ``price`` is per participant, so nominal revenue is
    ``price * len(participant_ids)`` before any day-event adjustment.
    """

    id: str
    date: str  # YYYY-MM-DD
    start_time: str  # HH:MM, 24-hour
    end_time: str
    location: str
    type: str  # Private, Semi, Group
    price: float = 0.0
    participant_ids: List[str] = field(default_factory=list)
    max_capacity: int = 1
    coach_id: Optional[str] = None
    notes: Optional[str] = None
    series_id: Optional[str] = None  # links sessions from one repeat request
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "TrainingSession":
        participants = _str_list(_pick(data, "participant_ids"))
        start = _require_time(data, "start_time", "Session")
        end = _require_time(data, "end_time", "Session")
        if parse_clock(end) <= parse_clock(start):
            raise ValueError("Session endTime must be after startTime")
        capacity = _int(data, "max_capacity", 1)
        if capacity is None or capacity < 1:
            raise ValueError("Session maxCapacity must be at least 1")
        return cls(
            id=_id(data),
            date=_require_date(data, "date", "Session"),
            start_time=start,
            end_time=end,
            location=_require_text(data, "location", "Session"),
            type=_choice(data, "type", SESSION_TYPES, "Session"),
            price=_amount(data, "price", "Session"),
            # order preserved, duplicates dropped
            participant_ids=list(dict.fromkeys(participants)),
            max_capacity=capacity,
            coach_id=_optional_text(data, "coach_id"),
            notes=_optional_text(data, "notes"),
            series_id=_optional_text(data, "series_id"),
            **_timestamps(data),
        )

    def nominal_revenue(self) -> float:
        return (self.price or 0) * len(self.participant_ids or [])


@dataclass
class DayEvent(_Record):
    """A calendar-day exception that changes billing for sessions on that date."""

    id: str
    date: str
    type: str  # Rain, Coach Cancelled, Tournament, Holiday
    note: Optional[str] = None
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "DayEvent":
        return cls(
            id=_id(data),
            date=_require_date(data, "date", "Day event"),
            type=_choice(data, "type", DAY_EVENT_TYPES, "Day event"),
            note=_optional_text(data, "note"),
            **_timestamps(data),
        )


@dataclass
class Term(_Record):
    id: str
    name: str
    start_date: str
    end_date: str
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "Term":
        start = _require_date(data, "start_date", "Term")
        end = _require_date(data, "end_date", "Term")
        if end < start:
            raise ValueError("Term endDate must not be before startDate")
        return cls(
            id=_id(data),
            name=_require_text(data, "name", "Term"),
            start_date=start,
            end_date=end,
            **_timestamps(data),
        )


@dataclass
class SessionLog(_Record):
    """Per-session evaluation of a player: five 0-2 metrics, total 0-10."""

    id: str
    player_id: str
    date: str
    tech: int = 0
    consistency: int = 0
    tactics: int = 0
    movement: int = 0
    coachability: int = 0
    total_score: int = 0
    term_id: Optional[str] = None
    duration_min: Optional[int] = None
    note: Optional[str] = None
    next_focus: Optional[str] = None
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "SessionLog":
        scores: Dict[str, int] = {}
        for metric in PROGRESS_METRICS:
            value = _int(data, metric, 0)
            if value is None or not 0 <= value <= 2:
                raise ValueError(f"Session log {metric} must be between 0 and 2")
            scores[metric] = value
        return cls(
            id=_id(data),
            player_id=_require_text(data, "player_id", "Session log"),
            date=_require_date(data, "date", "Session log"),
            total_score=sum(scores.values()),
            term_id=_optional_text(data, "term_id"),
            duration_min=_int(data, "duration_min", None),
            note=_optional_text(data, "note"),
            next_focus=_optional_text(data, "next_focus"),
            **scores,
            **_timestamps(data),
        )


@dataclass
class Expense(_Record):
    id: str
    date: str
    category: str
    description: str
    amount: float
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "Expense":
        return cls(
            id=_id(data),
            date=_require_date(data, "date", "Expense"),
            category=_require_text(data, "category", "Expense"),
            description=_require_text(data, "description", "Expense"),
            amount=_amount(data, "amount", "Expense", default=None),
            **_timestamps(data),
        )


@dataclass
class Drill(_Record):
    """Library drill. The diagram itself is stored opaquely by the editor."""

    id: str
    name: str
    session: Optional[str] = None  # Private, Semi, Group
    format: Optional[str] = None  # Beginner, Intermediate, Advanced
    intensity: Optional[str] = None
    duration_mins: int = 10
    description: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    starred: bool = False
    category_id: Optional[str] = None
    diagram: Dict[str, Any] = field(default_factory=dict)
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "Drill":
        diagram = _pick(data, "diagram")
        return cls(
            id=_id(data),
            name=_require_text(data, "name", "Drill"),
            session=_optional_text(data, "session"),
            format=_optional_text(data, "format"),
            intensity=_optional_text(data, "intensity"),
            duration_mins=_int(data, "duration_mins", 10) or 10,
            description=_optional_text(data, "description"),
            tags=_str_list(_pick(data, "tags")),
            starred=bool(_pick(data, "starred", False)),
            category_id=_optional_text(data, "category_id"),
            diagram=dict(diagram) if isinstance(diagram, Mapping) else {"nodes": [], "paths": []},
            **_timestamps(data),
        )
