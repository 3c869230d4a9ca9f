"""
Append-only operation ledger.

Each row records that (subject, row_id, flag) ran at a given time. There is
no "done" column: the absence of a row means the operation never ran or was
reset.
"""

from __future__ import annotations

import json
from typing import Any

from .catalogue import ISO_NOW, Catalogue


class RunLedger:
    """Ledger stored in the catalogue's `runs` table."""

    def __init__(self, catalogue: Catalogue):
        self.catalogue = catalogue

    def log_run(
        self,
        subject: str,
        row_id: str | int | None,
        flag: str,
        meta: Any = None,
    ) -> None:
        payload = None if meta is None else json.dumps(meta)
        with self.catalogue.connect() as conn:
            conn.execute(
                f"""
                INSERT INTO runs (subject, row_id, flag, run_at, meta)
                VALUES (?, ?, ?, {ISO_NOW}, ?)
                """,
                (subject, row_id, flag, payload)
            )

    def reset_run(self, subject: str, row_id: str | int | None, flag: str) -> int:
        """Delete every matching row; returns how many were removed."""
        with self.catalogue.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM runs WHERE subject = ? AND row_id IS ? AND flag = ?",
                (subject, row_id, flag)
            )
            return cursor.rowcount

    def latest_run_at(self, subject: str, row_id: str | int | None, flag: str) -> str | None:
        with self.catalogue.connect() as conn:
            row = conn.execute(
                """
                SELECT MAX(run_at) FROM runs
                WHERE subject = ? AND row_id IS ? AND flag = ?
                """,
                (subject, row_id, flag)
            ).fetchone()
            return row[0] if row else None

    def has_run_since(
        self,
        subject: str,
        row_id: str | int | None,
        flag: str,
        since: str,
    ) -> bool:
        """
        Whether a matching run happened at or after `since`.

        `since` may be a model run's `created_at` or any SQLite time value
        ("YYYY-MM-DD HH:MM:SS"); it is normalised to the stored ISO form.
        """
        with self.catalogue.connect() as conn:
            row = conn.execute(
                """
                SELECT 1 FROM runs
                WHERE subject = ? AND row_id IS ? AND flag = ?
                  AND run_at >= strftime('%Y-%m-%dT%H:%M:%fZ', ?)
                LIMIT 1
                """,
                (subject, row_id, flag, since)
            ).fetchone()
            return row is not None

    def entries(self, subject: str, flag: str | None = None) -> list[dict[str, Any]]:
        """Ledger rows for a subject, newest first."""
        query = "SELECT subject, row_id, flag, run_at, meta FROM runs WHERE subject = ?"
        params: list[Any] = [subject]
        if flag is not None:
            query += " AND flag = ?"
            params.append(flag)
        query += " ORDER BY id DESC"
        with self.catalogue.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        out = []
        for row in rows:
            data = dict(row)
            data["meta"] = json.loads(data["meta"]) if data["meta"] else None
            out.append(data)
        return out
