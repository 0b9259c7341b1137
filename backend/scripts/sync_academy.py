"""CLI helper for syncing the local academy data files with Supabase."""

from __future__ import annotations

import sys
from typing import Dict, List

from academy_core.store import SYNC_ORDER, AcademyStore


def _format_section(name: str, stats: Dict[str, object]) -> str:
    action = stats.get("action", "skip")
    count = stats.get("count", 0)
    errors = stats.get("errors", [])
    lines = [f"{name}: {action} ({count} rows)"]
    if isinstance(errors, list):
        for item in errors:
            lines.append(f"  - {item}")
    return "\n".join(lines)


def main() -> int:
    store = AcademyStore()
    try:
        summary = store.sync()
    except RuntimeError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    if not summary:
        print("Sync skipped: the previous sync ran moments ago")
        return 0

    for name in SYNC_ORDER:
        print(_format_section(name.replace("_", " ").capitalize(), summary.get(name, {})))

    errors: List[str] = []
    for stats in summary.values():
        if isinstance(stats, dict):
            for item in stats.get("errors", []) or []:
                errors.append(str(item))

    health = store.sync_health()
    if health.has_issues:
        print()
        print("Schema issues:")
        for issue in health.issues:
            print(f"  - {issue}")

    return 1 if errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
