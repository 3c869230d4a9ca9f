"""CSV export of repositories that a plan would leave in no list."""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from .scorer import ScoreItem

LISTLESS_FILENAME = "listless.csv"
HEADER = ("name_with_owner", "url", "current_slugs", "scores_json", "note")


@dataclass
class ListlessRow:
    name_with_owner: str
    url: str
    current: list[str]
    scores_json: str
    note: str

    @classmethod
    def build(
        cls,
        name_with_owner: str,
        url: str,
        current: Sequence[str],
        scores: Sequence[ScoreItem],
        note: str,
    ) -> "ListlessRow":
        payload = [
            {"list": s.list, "score": s.score, **({"why": s.why} if s.why else {})}
            for s in scores
        ]
        return cls(name_with_owner, url, list(current), json.dumps(payload), note)


def write_listless_row(out_dir: Path, row: ListlessRow) -> Path:
    """Append one row to listless.csv in `out_dir`, writing the header first if new."""
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / LISTLESS_FILENAME
    new_file = not path.exists() or path.stat().st_size == 0
    with open(path, "a", newline="", encoding="utf-8") as f:
        writer = csv.writer(f, quoting=csv.QUOTE_ALL)
        if new_file:
            writer.writerow(HEADER)
        writer.writerow([
            row.name_with_owner,
            row.url,
            "|".join(row.current),
            row.scores_json,
            row.note,
        ])
    return path
