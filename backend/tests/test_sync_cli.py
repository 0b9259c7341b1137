from __future__ import annotations

from scripts import sync_academy
from academy_core.sync_health import SyncHealth


class _FakeStore:
    summary: dict = {}
    error: str | None = None

    def sync(self):
        if _FakeStore.error:
            raise RuntimeError(_FakeStore.error)
        return _FakeStore.summary

    def sync_health(self):
        return SyncHealth(missing_tables=["terms"], issues=["Missing table: terms"])


def test_format_section_lists_errors():
    text = sync_academy._format_section("Day events", {"action": "error", "count": 0, "errors": ["boom"]})

    assert text == "Day events: error (0 rows)\n  - boom"


def test_main_reports_errors(monkeypatch, capsys):
    _FakeStore.error = None
    _FakeStore.summary = {
        "clients": {"action": "download", "count": 3, "errors": []},
        "terms": {"action": "error", "count": 0, "errors": ["Missing table"]},
    }
    monkeypatch.setattr(sync_academy, "AcademyStore", _FakeStore)

    assert sync_academy.main() == 1
    output = capsys.readouterr().out
    assert "Clients: download (3 rows)" in output
    assert "Missing table: terms" in output


def test_main_without_configuration(monkeypatch, capsys):
    _FakeStore.error = "Supabase configuration is required to sync"
    monkeypatch.setattr(sync_academy, "AcademyStore", _FakeStore)

    assert sync_academy.main() == 1
    assert "Supabase configuration" in capsys.readouterr().err


def test_main_when_throttled(monkeypatch):
    _FakeStore.error = None
    _FakeStore.summary = {}
    monkeypatch.setattr(sync_academy, "AcademyStore", _FakeStore)

    assert sync_academy.main() == 0
