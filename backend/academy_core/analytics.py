"""Read-only dashboard and progress aggregations."""

from __future__ import annotations

import calendar
import datetime as dt
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .models import PROGRESS_METRICS, SESSION_TYPES, coerce_amount, parse_clock, parse_iso_date

TREND_THRESHOLD = 0.5


@dataclass
class TrendData:
    direction: str  # improving, stable, declining
    change: float
    percent_change: int
    data_points: List[float] = field(default_factory=list)


@dataclass
class DashboardStats:
    total_revenue: float
    total_sessions: int
    active_clients: int
    avg_per_session: int
    most_popular_type: str


@dataclass
class ChartPoint:
    label: str
    value: float


def compute_total_score(scores: Mapping[str, Any]) -> int:
    return sum(int(scores.get(metric) or 0) for metric in PROGRESS_METRICS)


def player_progress_history(player_id: str, logs: Iterable[Any]) -> List[Dict[str, Any]]:
    player_logs = [log for log in logs if log.player_id == player_id and parse_iso_date(log.date)]
    player_logs.sort(key=lambda log: parse_iso_date(log.date))
    history = []
    for log in player_logs:
        row = {"date": log.date}
        row.update({metric: getattr(log, metric, 0) for metric in PROGRESS_METRICS})
        row["total"] = log.total_score
        history.append(row)
    return history


def calculate_metric_trend(logs: Iterable[Any], metric: str) -> TrendData:
    values = [getattr(log, metric) for log in logs if getattr(log, metric, None) is not None]
    if len(values) < 2:
        return TrendData(direction="stable", change=0, percent_change=0, data_points=values)

    first, last = values[0], values[-1]
    change = last - first
    percent = (change / first) * 100 if first else 0

    direction = "stable"
    if change > TREND_THRESHOLD:
        direction = "improving"
    elif change < -TREND_THRESHOLD:
        direction = "declining"
    return TrendData(direction=direction, change=change, percent_change=round(percent), data_points=values)


def session_comparison(previous: Any, current: Any) -> Dict[str, Any]:
    metrics = []
    for metric in PROGRESS_METRICS:
        before = getattr(previous, metric, 0)
        after = getattr(current, metric, 0)
        diff = after - before
        metrics.append(
            {
                "metric": metric,
                "previous": before,
                "current": after,
                "change": diff,
                "improved": diff > 0,
                "declined": diff < 0,
            }
        )
    total_change = current.total_score - previous.total_score
    return {
        "metrics": metrics,
        "totalChange": total_change,
        "improvedCount": sum(1 for item in metrics if item["improved"]),
        "declinedCount": sum(1 for item in metrics if item["declined"]),
        "overallImproved": total_change > 0,
    }


def _monday(day: dt.date) -> dt.date:
    return day - dt.timedelta(days=day.weekday())


def calculate_attendance_streak(player_id: str, sessions: Iterable[Any], now: Optional[dt.datetime] = None) -> int:
    """Consecutive weeks, counting back from this week, with an attended session.

    The current week may still be empty as long as last week was attended.
    """

    now = now or dt.datetime.now()
    weeks = set()
    for session in sessions:
        if player_id not in (session.participant_ids or []):
            continue
        day = parse_iso_date(session.date)
        start = parse_clock(session.start_time)
        if day is None or start is None:
            continue
        if dt.datetime.combine(day, dt.time(start // 60, start % 60)) < now:
            weeks.add(_monday(day))

    if not weeks:
        return 0

    cursor = _monday(now.date())
    if cursor not in weeks:
        cursor -= dt.timedelta(days=7)
        if cursor not in weeks:
            return 0

    streak = 0
    while cursor in weeks:
        streak += 1
        cursor -= dt.timedelta(days=7)
    return streak


def calculate_dashboard_stats(players: Iterable[Any], sessions: Iterable[Any]) -> DashboardStats:
    client_by_player = {player.id: player.client_id for player in players}
    sessions = list(sessions)
    type_counts = {session_type: 0 for session_type in SESSION_TYPES}
    active_clients = set()
    revenue = 0.0

    for session in sessions:
        revenue += (coerce_amount(session.price) or 0) * len(session.participant_ids or [])
        type_counts[session.type] = type_counts.get(session.type, 0) + 1
        for pid in session.participant_ids or []:
            client_id = client_by_player.get(pid)
            if client_id:
                active_clients.add(client_id)

    # first type wins a tie, Private before Semi before Group
    most_popular = max(type_counts, key=lambda key: type_counts[key])
    return DashboardStats(
        total_revenue=revenue,
        total_sessions=len(sessions),
        active_clients=len(active_clients),
        avg_per_session=round(revenue / len(sessions)) if sessions else 0,
        most_popular_type=most_popular,
    )


def revenue_chart_data(sessions: Iterable[Any], period: str, today: Optional[dt.date] = None) -> List[ChartPoint]:
    today = today or dt.date.today()
    revenue_by_day: Dict[dt.date, float] = {}
    for session in sessions:
        day = parse_iso_date(session.date)
        if day is None:
            continue
        revenue = (coerce_amount(session.price) or 0) * len(session.participant_ids or [])
        revenue_by_day[day] = revenue_by_day.get(day, 0.0) + revenue

    points: List[ChartPoint] = []
    if period == "week":
        monday = _monday(today)
        for offset in range(7):
            day = monday + dt.timedelta(days=offset)
            points.append(ChartPoint(label=day.strftime("%a"), value=revenue_by_day.get(day, 0.0)))
    elif period == "month":
        first = today.replace(day=1)
        last = today.replace(day=calendar.monthrange(today.year, today.month)[1])
        week_start, week_number = first, 1
        while week_start <= last:
            week_end = min(week_start + dt.timedelta(days=6), last)
            value = sum(amount for day, amount in revenue_by_day.items() if week_start <= day <= week_end)
            points.append(ChartPoint(label=f"Week {week_number}", value=value))
            week_start += dt.timedelta(days=7)
            week_number += 1
    elif period == "year":
        for month in range(1, 13):
            value = sum(
                amount for day, amount in revenue_by_day.items() if day.year == today.year and day.month == month
            )
            points.append(ChartPoint(label=calendar.month_abbr[month], value=value))
    else:
        raise ValueError(f"Unknown revenue period '{period}'")
    return points


def heatmap_data(sessions: Iterable[Any]) -> Dict[str, int]:
    heatmap: Dict[str, int] = {}
    for session in sessions:
        day = parse_iso_date(session.date)
        if day is None or parse_clock(session.start_time) is None:
            continue
        key = f"{day.strftime('%A')}-{session.start_time}:00"
        heatmap[key] = heatmap.get(key, 0) + 1
    return heatmap


def client_health(players: Iterable[Any], sessions: Iterable[Any], today: Optional[dt.date] = None) -> List[Dict[str, Any]]:
    today = today or dt.date.today()
    sessions = list(sessions)
    rows = []
    for player in players:
        dates = [
            parse_iso_date(session.date)
            for session in sessions
            if player.id in (session.participant_ids or []) and parse_iso_date(session.date)
        ]
        days_since = (today - max(dates)).days if dates else 999

        score = 80 if dates else 20
        if days_since > 30:
            score -= 40
        if days_since < 7:
            score += 20
        score = min(100, max(0, score))
        rows.append(
            {
                "playerId": player.id,
                "name": player.name,
                "healthScore": score,
                "healthStatus": "Healthy" if score > 50 else "Risk",
                "daysSinceLastSession": days_since,
            }
        )
    rows.sort(key=lambda row: row["healthScore"])
    return rows


GOAL_STATUS_ORDER = {"completed": 0, "on-track": 1, "at-risk": 2, "overdue": 3}


def goal_progress(
    goals: Iterable[Mapping[str, Any]],
    current_scores: Mapping[str, Any],
    now: Optional[dt.datetime] = None,
) -> List[Dict[str, Any]]:
    """Progress of each goal towards its target, completed goals first and overdue ones last."""

    now = now or dt.datetime.now()
    rows = []
    for goal in goals:
        current = coerce_amount(current_scores.get(goal.get("metric"))) or 0.0
        target = coerce_amount(goal.get("targetValue")) or 0.0
        progress = min(100.0, max(0.0, current / target * 100)) if target else 0.0

        deadline = parse_iso_date(goal.get("deadline"))
        days_remaining = None
        overdue = False
        if deadline is not None:
            # deadlines fall due at the start of their day
            delta = dt.datetime.combine(deadline, dt.time()) - now
            days_remaining = math.ceil(delta.total_seconds() / 86400)
            overdue = delta.total_seconds() < 0

        status = "on-track"
        if progress >= 100:
            status = "completed"
        elif overdue:
            status = "overdue"
        elif progress < 50 and days_remaining and days_remaining < 30:
            status = "at-risk"

        rows.append(
            {
                **goal,
                "currentValue": current,
                "progress": round(progress),
                "status": status,
                "daysRemaining": days_remaining,
            }
        )
    rows.sort(key=lambda row: GOAL_STATUS_ORDER[row["status"]])
    return rows


def top_improvers(
    players: Iterable[Any],
    logs: Iterable[Any],
    metric: str,
    weeks: int = 4,
    now: Optional[dt.datetime] = None,
    limit: int = 10,
) -> List[Dict[str, Any]]:
    """Players whose recent average on ``metric`` rose most against their older logs."""

    now = now or dt.datetime.now()
    cutoff = (now - dt.timedelta(weeks=weeks)).date()
    recent: Dict[str, List[float]] = {}
    older: Dict[str, List[float]] = {}
    for log in logs:
        day = parse_iso_date(log.date)
        if day is None:
            continue
        bucket = recent if day >= cutoff else older
        bucket.setdefault(log.player_id, []).append(getattr(log, metric, 0) or 0)

    rows = []
    for player in players:
        if not recent.get(player.id) or not older.get(player.id):
            continue
        recent_avg = sum(recent[player.id]) / len(recent[player.id])
        old_avg = sum(older[player.id]) / len(older[player.id])
        rows.append(
            {
                "player": player,
                "improvement": recent_avg - old_avg,
                "recentAvg": recent_avg,
                "oldAvg": old_avg,
            }
        )
    rows.sort(key=lambda row: row["improvement"], reverse=True)
    return rows[:limit]


def drill_stats(drills: Iterable[Any]) -> Dict[str, Any]:
    drills = list(drills)
    by_category: Dict[str, int] = {}
    by_level: Dict[str, int] = {}
    by_intensity: Dict[str, int] = {}
    tag_counts: Dict[str, int] = {}

    for drill in drills:
        if drill.category_id:
            by_category[drill.category_id] = by_category.get(drill.category_id, 0) + 1
        if drill.format:
            by_level[drill.format] = by_level.get(drill.format, 0) + 1
        if drill.intensity:
            by_intensity[drill.intensity] = by_intensity.get(drill.intensity, 0) + 1
        for tag in drill.tags or []:
            tag_counts[tag] = tag_counts.get(tag, 0) + 1

    # most used first; ties keep first-seen order
    tags = sorted(tag_counts.items(), key=lambda item: item[1], reverse=True)[:10]
    return {
        "totalDrills": len(drills),
        "byCategory": by_category,
        "byLevel": by_level,
        "byIntensity": by_intensity,
        "mostUsedTags": [{"name": name, "count": count} for name, count in tags],
    }
