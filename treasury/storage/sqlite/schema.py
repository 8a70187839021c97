"""Schema loading for the embedded store."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Iterator

SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"


def iter_sql_statements(sql: str) -> Iterator[str]:
    """Yield the statements of a SQL script, one per `;`-terminated block.

    Whole-line `--` comments are dropped. SQLite's own tokenizer
    (`sqlite3.complete_statement`) decides where a statement ends, so
    semicolons inside literals or trailing comments do not split it.
    """
    pending: list[str] = []
    for line in sql.splitlines():
        if not pending and (not line.strip() or line.lstrip().startswith("--")):
            continue
        pending.append(line)
        text = "\n".join(pending)
        if sqlite3.complete_statement(text):
            pending = []
            yield text.strip()
    if pending:
        yield "\n".join(pending).strip()


def apply_schema(engine: Any) -> int:
    """Create missing tables. Returns the number of statements executed."""
    from sqlalchemy import text

    statements = list(iter_sql_statements(SCHEMA_PATH.read_text(encoding="utf-8")))
    with engine.begin() as conn:
        for stmt in statements:
            conn.execute(text(stmt))
    return len(statements)
