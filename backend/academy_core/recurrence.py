from __future__ import annotations

import dataclasses
import datetime as dt
import logging
from typing import Any, Iterable, List, Optional, Set, Tuple

from .models import TrainingSession, new_id, now_ms, parse_clock, parse_iso_date

logger = logging.getLogger(__name__)

REPEAT_MONTH = "Month"
REPEAT_TERM = "Term"
REPEAT_MODES = (REPEAT_MONTH, REPEAT_TERM)

WEEK = dt.timedelta(days=7)


def session_slot_key(session: Any) -> Tuple[str, str, str] | None:
    """(date, start time, location) identifying a booked slot."""

    session_date = parse_iso_date(getattr(session, "date", None))
    start = parse_clock(getattr(session, "start_time", None))
    if session_date is None or start is None:
        return None
    location = str(getattr(session, "location", "") or "").strip().casefold()
    return session_date.isoformat(), f"{start // 60:02d}:{start % 60:02d}", location


def _series_end(template_date: dt.date, mode: str, term: Any) -> dt.date | None:
    if mode == REPEAT_MONTH:
        next_month = (template_date.replace(day=28) + dt.timedelta(days=4)).replace(day=1)
        return next_month - dt.timedelta(days=1)
    if term is None:
        logger.warning("Term repeat requested without a term")
        return None
    end = parse_iso_date(getattr(term, "end_date", None))
    if end is None:
        logger.warning("Term %s has an unreadable end date", getattr(term, "id", "?"))
    return end


def generate_recurring_series(
    template: TrainingSession,
    mode: str,
    term: Optional[Any] = None,
    existing: Iterable[Any] = (),
) -> List[TrainingSession]:
    """Expand ``template`` into weekly sessions on the same weekday.

    Month mode stays inside the template's calendar month. Term mode runs up to
    and including the term end date. Slots already booked in ``existing`` are
    not emitted again, so repeating twice over the same range is harmless.
    """

    if mode not in REPEAT_MODES:
        logger.warning("Unknown repeat mode %r", mode)
        return []

    start = parse_iso_date(getattr(template, "date", None))
    if start is None:
        logger.warning("Cannot repeat session %s: unreadable date", getattr(template, "id", "?"))
        return []
    if parse_clock(getattr(template, "start_time", None)) is None:
        logger.warning("Cannot repeat session %s: unreadable start time", getattr(template, "id", "?"))
        return []

    end = _series_end(start, mode, term)
    if end is None:
        return []

    series_id = template.series_id or template.id
    taken: Set[Tuple[str, str, str]] = {key for key in map(session_slot_key, existing) if key is not None}
    stamp = now_ms()

    instances: List[TrainingSession] = []
    current = start
    while current <= end:
        instance = dataclasses.replace(
            template,
            id=new_id(),
            date=current.isoformat(),
            series_id=series_id,
            participant_ids=list(template.participant_ids or []),
            created_at=stamp,
            updated_at=stamp,
        )
        key = session_slot_key(instance)
        if key is not None and key not in taken:
            taken.add(key)
            instances.append(instance)
        current += WEEK

    return instances
