"""Classify Supabase schema errors so missing tables/columns can be reported."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Dict, List

_MISSING_COLUMN_PATTERNS = [
    r"could not find the '([^']+)' column of '([^']+)'",
    r"column\s+([\w\.]+)\s+of relation\s+\"?([\w\.]+)\"?\s+does not exist",
]
_MISSING_TABLE_PATTERNS = [
    r"could not find the table '([^']+)'",
    r"relation\s+\"?([\w\.]+)\"?\s+does not exist",
]


@dataclass(frozen=True)
class SchemaIssue:
    kind: str  # missing_table, missing_column
    table: str
    raw_message: str
    column: str | None = None


def _normalise_table(name: str) -> str:
    return name.split(".")[-1]


def classify_schema_issue(message: str | None) -> SchemaIssue | None:
    raw = (message or "").strip()
    if not raw:
        return None

    for pattern in _MISSING_COLUMN_PATTERNS:
        match = re.search(pattern, raw, flags=re.IGNORECASE)
        if match:
            return SchemaIssue(
                kind="missing_column",
                column=match.group(1).split(".")[-1],
                table=_normalise_table(match.group(2)),
                raw_message=raw,
            )

    for pattern in _MISSING_TABLE_PATTERNS:
        match = re.search(pattern, raw, flags=re.IGNORECASE)
        if match:
            return SchemaIssue(kind="missing_table", table=_normalise_table(match.group(1)), raw_message=raw)

    return None


@dataclass
class SyncHealth:
    missing_tables: List[str] = field(default_factory=list)
    missing_columns: Dict[str, List[str]] = field(default_factory=dict)
    issues: List[str] = field(default_factory=list)
    last_updated_at: int = 0

    @property
    def has_issues(self) -> bool:
        return bool(self.issues)

    def merge(self, issue: SchemaIssue) -> "SyncHealth":
        tables = set(self.missing_tables)
        columns = {table: list(cols) for table, cols in self.missing_columns.items()}

        if issue.kind == "missing_table":
            tables.add(issue.table)
        elif issue.column:
            current = set(columns.get(issue.table, []))
            current.add(issue.column)
            columns[issue.table] = sorted(current)

        issues = [f"Missing table: {table}" for table in sorted(tables)]
        for table in sorted(columns):
            if columns[table]:
                issues.append(f"Missing column(s) in {table}: {', '.join(columns[table])}")

        return SyncHealth(
            missing_tables=sorted(tables),
            missing_columns=columns,
            issues=issues,
            last_updated_at=int(time.time() * 1000),
        )
