from __future__ import annotations

from academy_core.models import Term, TrainingSession
from academy_core.recurrence import REPEAT_MONTH, REPEAT_TERM, generate_recurring_series, session_slot_key


def _template(date: str = "2026-02-02", **overrides) -> TrainingSession:
    fields = dict(
        id="tmpl",
        date=date,
        start_time="16:00",
        end_time="17:00",
        location="Court 1",
        type="Group",
        price=350,
        participant_ids=["p1"],
        max_capacity=4,
    )
    fields.update(overrides)
    return TrainingSession(**fields)


def test_month_mode_covers_remaining_weekdays_of_the_month():
    instances = generate_recurring_series(_template(), REPEAT_MONTH)

    assert [item.date for item in instances] == ["2026-02-02", "2026-02-09", "2026-02-16", "2026-02-23"]
    assert {item.series_id for item in instances} == {"tmpl"}
    assert len({item.id for item in instances}) == 4
    assert all(item.id != "tmpl" for item in instances)
    assert all(item.price == 350 and item.location == "Court 1" for item in instances)


def test_month_mode_from_mid_month_template():
    instances = generate_recurring_series(_template("2026-03-18"), REPEAT_MONTH)

    assert [item.date for item in instances] == ["2026-03-18", "2026-03-25"]


def test_instances_do_not_share_participant_lists():
    template = _template()
    instances = generate_recurring_series(template, REPEAT_MONTH)

    instances[0].participant_ids.append("p2")

    assert template.participant_ids == ["p1"]
    assert instances[1].participant_ids == ["p1"]


def test_term_mode_includes_the_end_date():
    term = Term(id="t1", name="Term 1", start_date="2026-01-12", end_date="2026-02-23")

    instances = generate_recurring_series(_template("2026-02-02"), REPEAT_TERM, term=term)

    assert [item.date for item in instances][-1] == "2026-02-23"
    assert len(instances) == 4


def test_term_mode_stops_after_the_end_date():
    term = Term(id="t1", name="Term 1", start_date="2026-01-12", end_date="2026-02-22")

    instances = generate_recurring_series(_template("2026-02-02"), REPEAT_TERM, term=term)

    assert [item.date for item in instances] == ["2026-02-02", "2026-02-09", "2026-02-16"]


def test_existing_slots_are_not_booked_twice():
    template = _template()
    first = generate_recurring_series(template, REPEAT_MONTH)

    second = generate_recurring_series(template, REPEAT_MONTH, existing=[template, *first])

    assert second == []


def test_duplicate_guard_matches_location_loosely():
    booked = _template("2026-02-09", id="other", location="  court 1 ")

    instances = generate_recurring_series(_template(), REPEAT_MONTH, existing=[booked])

    assert [item.date for item in instances] == ["2026-02-02", "2026-02-16", "2026-02-23"]


def test_existing_series_id_is_reused():
    instances = generate_recurring_series(_template(series_id="series-9"), REPEAT_MONTH)

    assert {item.series_id for item in instances} == {"series-9"}


def test_unusable_input_produces_no_instances():
    assert generate_recurring_series(_template("02/02/2026"), REPEAT_MONTH) == []
    assert generate_recurring_series(_template(), REPEAT_TERM) == []
    assert generate_recurring_series(_template(), "Fortnight") == []


def test_session_slot_key_normalises_values():
    assert session_slot_key(_template(location=" Court 1 ")) == ("2026-02-02", "16:00", "court 1")
    assert session_slot_key(_template(start_time="late")) is None


def test_unreadable_start_time_is_refused(caplog):
    instances = generate_recurring_series(_template(start_time="late"), REPEAT_MONTH)

    assert instances == []
    assert "unreadable start time" in caplog.text
