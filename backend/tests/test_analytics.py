from __future__ import annotations

import datetime as dt

import pytest

from academy_core.analytics import (
    calculate_attendance_streak,
    calculate_dashboard_stats,
    calculate_metric_trend,
    client_health,
    compute_total_score,
    drill_stats,
    goal_progress,
    heatmap_data,
    player_progress_history,
    revenue_chart_data,
    session_comparison,
    top_improvers,
)
from academy_core.models import Drill, Player, SessionLog, TrainingSession


def _session(date: str, participants=("p1",), price=100.0, session_type="Private", start="10:00"):
    return TrainingSession(
        id=f"s-{date}-{start}",
        date=date,
        start_time=start,
        end_time="23:00",
        location="Court 1",
        type=session_type,
        price=price,
        participant_ids=list(participants),
        max_capacity=4,
    )


def _log(date: str, **scores):
    return SessionLog(id=f"log-{date}", player_id="p1", date=date, total_score=sum(scores.values()), **scores)


def test_streak_counts_consecutive_weeks():
    # Wednesday 2026-01-21; previous two weeks attended, current week not yet
    now = dt.datetime(2026, 1, 21, 12, 0)
    sessions = [_session("2026-01-13"), _session("2026-01-06"), _session("2025-12-22")]

    assert calculate_attendance_streak("p1", sessions, now=now) == 2


def test_streak_includes_current_week_and_ignores_future_sessions():
    now = dt.datetime(2026, 1, 21, 12, 0)
    sessions = [_session("2026-01-19"), _session("2026-01-13"), _session("2026-01-28")]

    assert calculate_attendance_streak("p1", sessions, now=now) == 2


def test_streak_is_zero_after_a_missed_week():
    now = dt.datetime(2026, 1, 21, 12, 0)

    assert calculate_attendance_streak("p1", [_session("2026-01-06")], now=now) == 0
    assert calculate_attendance_streak("p2", [_session("2026-01-19")], now=now) == 0


def test_metric_trend_directions():
    improving = calculate_metric_trend([_log("2026-01-01", tech=0), _log("2026-01-08", tech=2)], "tech")
    stable = calculate_metric_trend([_log("2026-01-01", tech=1)], "tech")
    declining = calculate_metric_trend([_log("2026-01-01", tech=2), _log("2026-01-08", tech=1)], "tech")

    assert improving.direction == "improving"
    assert improving.percent_change == 0
    assert stable.direction == "stable"
    assert declining.direction == "declining"
    assert declining.percent_change == -50


def test_session_comparison_counts_changes():
    result = session_comparison(_log("2026-01-01", tech=1, movement=2), _log("2026-01-08", tech=2, movement=1))

    assert result["improvedCount"] == 1
    assert result["declinedCount"] == 1
    assert result["totalChange"] == 0
    assert result["overallImproved"] is False


def test_total_score_ignores_missing_metrics():
    assert compute_total_score({"tech": 2, "tactics": 1, "unknown": 5}) == 3


def test_dashboard_stats():
    players = [
        Player(id="p1", name="A", client_id="c1"),
        Player(id="p2", name="B", client_id="c2"),
        Player(id="p3", name="C"),
    ]
    sessions = [
        _session("2026-01-05", participants=("p1", "p2"), price=150, session_type="Group"),
        _session("2026-01-06", participants=("p3",), price=300, session_type="Group"),
        _session("2026-01-07", participants=("p1",), price=400),
    ]

    stats = calculate_dashboard_stats(players, sessions)

    assert stats.total_revenue == 1000
    assert stats.total_sessions == 3
    assert stats.active_clients == 2
    assert stats.avg_per_session == 333
    assert stats.most_popular_type == "Group"


def test_dashboard_stats_empty():
    stats = calculate_dashboard_stats([], [])

    assert stats.total_revenue == 0
    assert stats.avg_per_session == 0
    assert stats.most_popular_type == "Private"


def test_revenue_chart_periods():
    sessions = [_session("2026-01-05", price=100), _session("2026-01-12", participants=("p1", "p2"), price=50)]
    today = dt.date(2026, 1, 7)

    week = revenue_chart_data(sessions, "week", today=today)
    month = revenue_chart_data(sessions, "month", today=today)
    year = revenue_chart_data(sessions, "year", today=today)

    assert [point.label for point in week][:2] == ["Mon", "Tue"]
    assert week[0].value == 100
    assert [point.value for point in month[:2]] == [100, 100]
    assert len(month) == 5
    assert year[0].label == "Jan"
    assert year[0].value == 200

    with pytest.raises(ValueError):
        revenue_chart_data(sessions, "decade", today=today)


def test_heatmap_and_client_health():
    sessions = [_session("2026-01-05", start="16:00"), _session("2026-01-12", start="16:00")]
    players = [Player(id="p1", name="Active"), Player(id="p9", name="Lapsed")]

    assert heatmap_data(sessions) == {"Monday-16:00:00": 2}

    rows = client_health(players, sessions, today=dt.date(2026, 1, 14))
    assert rows[0]["playerId"] == "p9"
    assert rows[0]["healthStatus"] == "Risk"
    assert rows[1]["healthScore"] == 100
    assert rows[1]["daysSinceLastSession"] == 2


def test_progress_history_is_sorted_by_date():
    logs = [_log("2026-01-08", tech=2), _log("2026-01-01", tech=1, movement=1), _log("not-a-date", tech=2)]

    history = player_progress_history("p1", logs)

    assert [row["date"] for row in history] == ["2026-01-01", "2026-01-08"]
    assert history[0]["total"] == 2
    assert history[1]["tech"] == 2


def test_goal_progress_statuses_and_order():
    goals = [
        {"id": "late", "metric": "consistency", "targetValue": 2, "deadline": "2026-01-05"},
        {"id": "risk", "metric": "tactics", "targetValue": 2, "deadline": "2026-01-20"},
        {"id": "open", "metric": "movement", "targetValue": 2},
        {"id": "done", "metric": "tech", "targetValue": 2, "deadline": "2026-03-01"},
    ]
    scores = {"tech": 2, "consistency": 1, "tactics": 0, "movement": 1}

    rows = goal_progress(goals, scores, now=dt.datetime(2026, 1, 10, 12))

    assert [row["id"] for row in rows] == ["done", "open", "risk", "late"]
    assert [row["status"] for row in rows] == ["completed", "on-track", "at-risk", "overdue"]
    assert [row["progress"] for row in rows] == [100, 50, 0, 50]
    assert rows[1]["daysRemaining"] is None
    assert rows[2]["daysRemaining"] == 10


def test_goal_without_target_has_no_progress():
    rows = goal_progress([{"metric": "tech", "targetValue": 0}], {"tech": 2})

    assert rows[0]["progress"] == 0
    assert rows[0]["status"] == "on-track"


def test_top_improvers_compare_recent_and_older_logs():
    players = [Player(id=pid, name=pid.upper()) for pid in ("p1", "p2", "p3")]
    logs = [
        SessionLog(id="a", player_id="p1", date="2025-12-01", tech=0),
        SessionLog(id="b", player_id="p1", date="2026-01-20", tech=2),
        SessionLog(id="c", player_id="p2", date="2025-12-01", tech=1),
        SessionLog(id="d", player_id="p2", date="2026-01-25", tech=1),
        SessionLog(id="e", player_id="p3", date="2026-01-25", tech=2),
    ]

    rows = top_improvers(players, logs, "tech", now=dt.datetime(2026, 2, 1))

    assert [row["player"].id for row in rows] == ["p1", "p2"]
    assert [row["improvement"] for row in rows] == [2, 0]
    assert rows[0]["recentAvg"] == 2
    assert top_improvers(players, logs, "tech", now=dt.datetime(2026, 2, 1), limit=1)[0]["player"].id == "p1"


def test_drill_stats_counts_levels_and_tags():
    drills = [
        Drill(id="d1", name="Rally", format="Beginner", intensity="High", category_id="cat", tags=["rally", "footwork"]),
        Drill(id="d2", name="Serve", format="Beginner", tags=["rally"]),
    ]

    stats = drill_stats(drills)

    assert stats["totalDrills"] == 2
    assert stats["byLevel"] == {"Beginner": 2}
    assert stats["byIntensity"] == {"High": 1}
    assert stats["byCategory"] == {"cat": 1}
    assert stats["mostUsedTags"] == [{"name": "rally", "count": 2}, {"name": "footwork", "count": 1}]
    assert drill_stats([])["mostUsedTags"] == []
