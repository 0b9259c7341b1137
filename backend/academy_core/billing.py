"""Billing rules for client statements.

Everything here is a pure function over already-loaded records. Malformed
values never raise: they contribute zero and, where the caller would want to
know, leave a note on the statement.
"""

from __future__ import annotations

import calendar
import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from .models import DayEvent, coerce_amount, parse_clock, parse_iso_date

logger = logging.getLogger(__name__)

STATUS_NORMAL = "normal"
STATUS_RAIN = "rain"
STATUS_CANCELLED = "cancelled"

DAY_RAIN = "Rain"
DAY_COACH_CANCELLED = "Coach Cancelled"

DayEvents = Union[Iterable[DayEvent], Mapping[str, DayEvent]]


@dataclass(frozen=True)
class SessionBillingEffect:
    status: str
    charge: float
    credit: float
    net: float
    involved_count: int


@dataclass
class StatementLine:
    date: str
    description: str
    debit: float
    credit: float
    kind: str  # fee, credit, payment
    player_id: Optional[str] = None
    session_id: Optional[str] = None
    start_time: str = ""


@dataclass
class StatementSection:
    """One child's part of a household statement."""

    player_id: str
    player_name: str
    opening_balance: float = 0.0
    lines: List[StatementLine] = field(default_factory=list)
    subtotal: float = 0.0


@dataclass
class ClientStatement:
    client_id: str
    month: str  # YYYY-MM
    opening_balance: float = 0.0
    monthly_fees: float = 0.0
    monthly_payments: float = 0.0
    closing_balance: float = 0.0
    lines: List[StatementLine] = field(default_factory=list)
    sections: List[StatementSection] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    player_id: Optional[str] = None  # set when scoped to one child


@dataclass
class AccountsSummary:
    month: str
    statements: List[ClientStatement] = field(default_factory=list)
    opening_balance: float = 0.0
    monthly_fees: float = 0.0
    monthly_payments: float = 0.0
    closing_balance: float = 0.0
    outstanding_count: int = 0


# ---- day events ----------------------------------------------------------------


def resolve_day_event(day_events: Iterable[DayEvent], date: Any) -> DayEvent | None:
    """Return the governing event for ``date``.

    When several events share a date the first one in list order wins.
    """

    target = parse_iso_date(date)
    if target is None:
        return None
    key = target.isoformat()
    for event in day_events or []:
        event_date = parse_iso_date(getattr(event, "date", None))
        if event_date is not None and event_date.isoformat() == key:
            return event
    return None


def day_event_type_for_date(day_events: DayEvents, date: Any) -> str | None:
    if isinstance(day_events, Mapping):
        target = parse_iso_date(date)
        event = day_events.get(target.isoformat()) if target else None
    else:
        event = resolve_day_event(day_events, date)
    return getattr(event, "type", None) if event is not None else None


def index_day_events(day_events: Iterable[DayEvent]) -> Dict[str, DayEvent]:
    index: Dict[str, DayEvent] = {}
    for event in day_events or []:
        event_date = parse_iso_date(getattr(event, "date", None))
        if event_date is None:
            continue
        index.setdefault(event_date.isoformat(), event)
    return index


def duplicate_day_event_dates(day_events: Iterable[DayEvent]) -> Dict[str, List[DayEvent]]:
    grouped: Dict[str, List[DayEvent]] = {}
    for event in day_events or []:
        event_date = parse_iso_date(getattr(event, "date", None))
        if event_date is not None:
            grouped.setdefault(event_date.isoformat(), []).append(event)
    return {date: events for date, events in grouped.items() if len(events) > 1}


# ---- per-session effect --------------------------------------------------------


def compute_session_effect(session: Any, client_player_ids: Set[str], day_events: DayEvents = ()) -> SessionBillingEffect:
    participants = getattr(session, "participant_ids", None) or []
    involved_count = sum(1 for pid in participants if pid in client_player_ids)
    if involved_count == 0:
        return SessionBillingEffect(STATUS_NORMAL, 0.0, 0.0, 0.0, 0)

    price = coerce_amount(getattr(session, "price", None)) or 0.0
    base_charge = price * involved_count
    day_type = day_event_type_for_date(day_events, getattr(session, "date", None))

    if day_type == DAY_RAIN:
        return SessionBillingEffect(STATUS_RAIN, 0.0, 0.0, 0.0, involved_count)
    if day_type == DAY_COACH_CANCELLED:
        return SessionBillingEffect(STATUS_CANCELLED, 0.0, base_charge, -base_charge, involved_count)
    return SessionBillingEffect(STATUS_NORMAL, base_charge, 0.0, base_charge, involved_count)


# ---- attendance attribution -----------------------------------------------------


def match_session_for_slot(slot_start: Any, candidates: Sequence[Any]) -> Any | None:
    """Pick the candidate whose start time is closest to ``slot_start``."""

    target = parse_clock(slot_start)
    if target is None or not candidates:
        return None

    def distance(item: Tuple[int, Any]) -> Tuple[float, float, int]:
        position, session = item
        start = parse_clock(getattr(session, "start_time", None))
        if start is None:
            return (float("inf"), float("inf"), position)
        return (abs(start - target), start, position)

    _, best = min(enumerate(candidates), key=distance)
    return best


def attribute_sessions(player: Any, sessions: Iterable[Any]) -> Set[str]:
    """Session ids ``player`` is billable for.

    A player with several sessions on one date and a recorded schedule for that
    date is only billed for the sessions their schedule slots match.
    """

    player_id = getattr(player, "id", None)
    by_date: Dict[str, List[Any]] = {}
    for session in sessions:
        if player_id not in (getattr(session, "participant_ids", None) or []):
            continue
        session_date = parse_iso_date(getattr(session, "date", None))
        if session_date is None:
            continue
        by_date.setdefault(session_date.isoformat(), []).append(session)

    slots_by_date: Dict[str, List[int]] = {}
    for slot in getattr(player, "schedule", None) or []:
        slot_date = parse_iso_date(getattr(slot, "date", None))
        slot_start = parse_clock(getattr(slot, "start_time", None))
        if slot_date is not None and slot_start is not None:
            slots_by_date.setdefault(slot_date.isoformat(), []).append(slot_start)

    billable: Set[str] = set()
    for date, candidates in by_date.items():
        slots = slots_by_date.get(date)
        if len(candidates) < 2 or not slots:
            billable.update(session.id for session in candidates)
            continue
        remaining = list(candidates)
        for slot_start in sorted(slots):
            if not remaining:
                break
            match = match_session_for_slot(f"{slot_start // 60:02d}:{slot_start % 60:02d}", remaining)
            billable.add(match.id)
            remaining.remove(match)
    return billable


# ---- statements ----------------------------------------------------------------


def month_bounds(report_month: Any) -> Tuple[dt.date, dt.date] | None:
    if isinstance(report_month, dt.datetime):
        anchor = report_month.date()
    elif isinstance(report_month, dt.date):
        anchor = report_month
    elif isinstance(report_month, str) and len(report_month.strip()) == 7:
        anchor = parse_iso_date(f"{report_month.strip()}-01")
    else:
        anchor = parse_iso_date(report_month)
    if anchor is None:
        return None
    last_day = calendar.monthrange(anchor.year, anchor.month)[1]
    return anchor.replace(day=1), anchor.replace(day=last_day)


def _first_name(name: Any) -> str:
    parts = str(name or "").split()
    return parts[0] if parts else "Player"


def _session_line(session: Any, effect_status: str, player_id: str, names: Mapping[str, str]) -> StatementLine:
    price = coerce_amount(getattr(session, "price", None)) or 0.0
    start = getattr(session, "start_time", "") or ""
    end = getattr(session, "end_time", "") or ""
    others = [
        _first_name(names[pid])
        for pid in getattr(session, "participant_ids", None) or []
        if pid != player_id and pid in names
    ]
    with_others = f" (with {', '.join(others)})" if others else ""
    time_range = f"{start} - {end}"
    session_date = parse_iso_date(session.date).isoformat()

    if effect_status == STATUS_CANCELLED:
        return StatementLine(
            date=session_date,
            description=f"Credit - Coach Cancelled ({time_range}){with_others}",
            debit=0.0,
            credit=price,
            kind="credit",
            player_id=player_id,
            session_id=session.id,
            start_time=start,
        )

    session_type = str(getattr(session, "type", "") or "Training")
    label = session_type if "Session" in session_type else f"{session_type} Session"
    return StatementLine(
        date=session_date,
        description=f"{label} ({time_range}){with_others}",
        debit=price,
        credit=0.0,
        kind="fee",
        player_id=player_id,
        session_id=session.id,
        start_time=start,
    )


def _payment_line(payment: Any, date_key: str, amount: float, player_id: Optional[str]) -> StatementLine:
    reference = getattr(payment, "reference", None) or "Thank you"
    return StatementLine(
        date=date_key,
        description=f"Payment Received - {reference}",
        debit=0.0,
        credit=amount,
        kind="payment",
        player_id=player_id,
    )


def _line_order(line: StatementLine) -> Tuple[str, str, bool]:
    return (line.date, line.start_time, line.kind == "payment")


def _section_order(player: Any) -> Tuple[bool, int, str]:
    # oldest child first, children without an age after those with one
    age = getattr(player, "age", None)
    has_age = isinstance(age, int)
    return (not has_age, -age if has_age else 0, str(getattr(player, "name", "") or ""))


def split_payment(amount: float, player_ids: Sequence[str]) -> List[Tuple[str, float]]:
    """Share a household payment evenly; the last child takes the rounding remainder."""

    if not player_ids:
        return []
    share = round(amount / len(player_ids), 2)
    portions: List[Tuple[str, float]] = []
    remaining = amount
    for index, pid in enumerate(player_ids):
        portion = round(remaining, 2) if index == len(player_ids) - 1 else share
        remaining -= portion
        portions.append((pid, portion))
    return portions


def compute_client_statement(
    client: Any,
    client_players: Iterable[Any],
    all_sessions: Iterable[Any],
    all_day_events: Iterable[DayEvent],
    report_month: Any,
    roster: Iterable[Any] = (),
    player_id: Optional[str] = None,
) -> ClientStatement:
    """Monthly statement with a full-history brought-forward balance.

    Household totals and lines come with one section per child, each carrying
    its own opening balance and subtotal. Payments without a player are split
    evenly across the children. With ``player_id`` set the whole statement is
    scoped to that child, and unassigned payments are credited to them in full.

    ``roster`` is only used to name the other participants on fee lines.
    """

    client_id = str(getattr(client, "id", "") or "")
    bounds = month_bounds(report_month)
    if bounds is None:
        logger.warning("Unreadable report month %r for client %s", report_month, client_id)
        return ClientStatement(
            client_id=client_id,
            month="",
            notes=[f"Unreadable report month {report_month!r}"],
            player_id=player_id,
        )

    month_start, month_end = bounds
    start_key, end_key = month_start.isoformat(), month_end.isoformat()
    statement = ClientStatement(client_id=client_id, month=start_key[:7], player_id=player_id)

    players = [player for player in client_players if getattr(player, "client_id", None) == client_id]
    if player_id is not None:
        players = [player for player in players if player.id == player_id]
        if not players:
            statement.notes.append(f"Player {player_id} is not linked to this client")
            return statement
    players.sort(key=_section_order)
    player_ids = {player.id for player in players}
    names = {player.id: player.name for player in roster}
    names.update({player.id: player.name for player in players})
    sections = {
        player.id: StatementSection(player_id=player.id, player_name=_first_name(player.name)) for player in players
    }
    month_deltas = {player.id: 0.0 for player in players}

    sessions = list(all_sessions)
    events = list(all_day_events or [])
    event_index = index_day_events(events)
    duplicates = duplicate_day_event_dates(events)
    attributed = {player.id: attribute_sessions(player, sessions) for player in players}

    opening = 0.0
    fees = 0.0
    noted_dates: Set[str] = set()
    for session in sessions:
        participants = getattr(session, "participant_ids", None) or []
        if not any(pid in player_ids for pid in participants):
            continue

        session_date = parse_iso_date(getattr(session, "date", None))
        if session_date is None:
            statement.notes.append(f"Skipped session {getattr(session, 'id', '?')}: unreadable date")
            continue
        date_key = session_date.isoformat()

        billable = {pid for pid in participants if pid in player_ids and session.id in attributed[pid]}
        if not billable:
            continue

        effect = compute_session_effect(session, billable, event_index)
        if date_key in duplicates and date_key not in noted_dates:
            noted_dates.add(date_key)
            kept = event_index[date_key].type
            statement.notes.append(
                f"{len(duplicates[date_key])} day events on {date_key}; using the first ({kept})"
            )

        if date_key > end_key:
            continue
        before = date_key < start_key
        if before:
            opening += effect.net
        else:
            fees += effect.net

        for pid in participants:
            if pid not in billable:
                continue
            share = compute_session_effect(session, {pid}, event_index).net
            if before:
                sections[pid].opening_balance += share
                continue
            month_deltas[pid] += share
            if effect.status != STATUS_RAIN:
                line = _session_line(session, effect.status, pid, names)
                statement.lines.append(line)
                sections[pid].lines.append(line)

    household = [player.id for player in players]
    payments_in = 0.0
    for payment in getattr(client, "payments", None) or []:
        payment_date = parse_iso_date(getattr(payment, "date", None))
        amount = coerce_amount(getattr(payment, "amount", None))
        if payment_date is None or amount is None or amount < 0:
            statement.notes.append(f"Skipped payment {getattr(payment, 'id', '?')}: unreadable date or amount")
            continue
        owner = getattr(payment, "player_id", None)
        if player_id is not None and owner and owner != player_id:
            continue
        date_key = payment_date.isoformat()
        if date_key > end_key:
            continue

        before = date_key < start_key
        if before:
            opening -= amount
        else:
            payments_in += amount
            statement.lines.append(_payment_line(payment, date_key, amount, owner))

        if owner in sections:
            portions = [(owner, amount)]
        elif owner:
            # paid against a player outside this household
            portions = []
        else:
            portions = split_payment(amount, household)
        for pid, portion in portions:
            if before:
                sections[pid].opening_balance -= portion
            else:
                month_deltas[pid] -= portion
                sections[pid].lines.append(_payment_line(payment, date_key, portion, pid))

    for pid, section in sections.items():
        section.lines.sort(key=_line_order)
        section.subtotal = section.opening_balance + month_deltas[pid]
    statement.sections = [
        section for section in sections.values() if section.lines or section.opening_balance != 0
    ]

    statement.lines.sort(key=_line_order)
    statement.opening_balance = opening
    statement.monthly_fees = fees
    statement.monthly_payments = payments_in
    statement.closing_balance = opening + fees - payments_in
    return statement


def compute_accounts_summary(
    clients: Iterable[Any],
    players: Iterable[Any],
    sessions: Iterable[Any],
    day_events: Iterable[DayEvent],
    report_month: Any,
) -> AccountsSummary:
    players = list(players)
    sessions = list(sessions)
    day_events = list(day_events or [])
    bounds = month_bounds(report_month)
    summary = AccountsSummary(month=bounds[0].isoformat()[:7] if bounds else "")

    for client in clients:
        statement = compute_client_statement(client, players, sessions, day_events, report_month, roster=players)
        summary.statements.append(statement)
        summary.opening_balance += statement.opening_balance
        summary.monthly_fees += statement.monthly_fees
        summary.monthly_payments += statement.monthly_payments
        summary.closing_balance += statement.closing_balance
        if statement.closing_balance > 0:
            summary.outstanding_count += 1

    return summary
