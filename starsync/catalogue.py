"""
SQLite catalogue for Starsync.

Schema:
- list: Star lists (slug derived from the name, unique)
- repo: Repositories with metrics and upstream-derived scores
- list_repo: Membership edges (cascade with their list or repo)
- model_run: Scoring runs
- repo_list_score: Per-run, per-list scores
- runs: Append-only ledger of executed operations (see ledger.py)
"""

from __future__ import annotations

import json
import re
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Generator, Iterable, Sequence

from .config import get_starsync_dir
from .github import RepositoryFacts
from .scorer import ListDef, RepoFacts, ScoreItem


DB_FILENAME = "starsync.db"
CURRENT_SCHEMA_VERSION = 3

# UTC timestamps shared by model_run.created_at and runs.run_at
ISO_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

-- Star lists
CREATE TABLE IF NOT EXISTS list (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_id TEXT,
    name TEXT NOT NULL,
    description TEXT,
    is_private INTEGER NOT NULL DEFAULT 0,
    slug TEXT UNIQUE NOT NULL
);

-- Repositories
CREATE TABLE IF NOT EXISTS repo (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_id TEXT,
    name_with_owner TEXT UNIQUE NOT NULL,
    url TEXT NOT NULL,
    description TEXT,
    homepage_url TEXT,
    stars INTEGER DEFAULT 0,
    forks INTEGER DEFAULT 0,
    watchers INTEGER DEFAULT 0,
    open_issues INTEGER DEFAULT 0,
    open_prs INTEGER DEFAULT 0,
    default_branch TEXT,
    last_commit_iso TEXT,
    topics_json TEXT,
    primary_language TEXT,
    license TEXT,
    is_archived INTEGER DEFAULT 0,
    is_disabled INTEGER DEFAULT 0,
    is_fork INTEGER DEFAULT 0,
    is_mirror INTEGER DEFAULT 0,
    has_issues_enabled INTEGER DEFAULT 1,
    pushed_at TEXT,
    updated_at TEXT,
    created_at TEXT,
    disk_usage INTEGER,
    summary TEXT,
    popularity REAL,
    freshness REAL,
    activeness REAL
);

-- Membership edges
CREATE TABLE IF NOT EXISTS list_repo (
    list_id INTEGER NOT NULL REFERENCES list(id) ON DELETE CASCADE,
    repo_id INTEGER NOT NULL REFERENCES repo(id) ON DELETE CASCADE,
    PRIMARY KEY (list_id, repo_id)
);

-- Scoring runs
CREATE TABLE IF NOT EXISTS model_run (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    notes TEXT
);

-- Per-list scores, only ever written inside a run
CREATE TABLE IF NOT EXISTS repo_list_score (
    run_id INTEGER NOT NULL REFERENCES model_run(id) ON DELETE CASCADE,
    repo_id INTEGER NOT NULL REFERENCES repo(id) ON DELETE CASCADE,
    list_slug TEXT NOT NULL,
    score REAL NOT NULL CHECK (score >= 0 AND score <= 1),
    rationale TEXT,
    PRIMARY KEY (run_id, repo_id, list_slug)
);

-- Operation ledger; a missing row means "never run" (or reset)
CREATE TABLE IF NOT EXISTS runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    subject TEXT NOT NULL,
    row_id TEXT,
    flag TEXT NOT NULL,
    run_at TEXT NOT NULL,
    meta TEXT
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_repo_remote ON repo(remote_id);
CREATE INDEX IF NOT EXISTS idx_listrepo_repo ON list_repo(repo_id);
CREATE INDEX IF NOT EXISTS idx_score_repo ON repo_list_score(repo_id);
CREATE INDEX IF NOT EXISTS idx_runs_lookup ON runs(subject, flag, row_id);
"""


def slugify(name: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to '-', trim dashes."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


@dataclass
class ListRow:
    """Stored star list."""
    id: int
    remote_id: str | None
    name: str
    description: str | None
    is_private: int
    slug: str

    def to_list_def(self) -> ListDef:
        return ListDef(slug=self.slug, name=self.name, description=self.description)


@dataclass
class RepoRow:
    """Stored repository."""
    id: int
    remote_id: str | None
    name_with_owner: str
    url: str
    description: str | None = None
    homepage_url: str | None = None
    stars: int = 0
    forks: int = 0
    watchers: int = 0
    open_issues: int = 0
    open_prs: int = 0
    default_branch: str | None = None
    last_commit_iso: str | None = None
    topics_json: str | None = None
    primary_language: str | None = None
    license: str | None = None
    is_archived: int = 0
    is_disabled: int = 0
    is_fork: int = 0
    is_mirror: int = 0
    has_issues_enabled: int = 1
    pushed_at: str | None = None
    updated_at: str | None = None
    created_at: str | None = None
    disk_usage: int | None = None
    summary: str | None = None
    popularity: float | None = None
    freshness: float | None = None
    activeness: float | None = None

    @property
    def topics(self) -> list[str]:
        if self.topics_json:
            return json.loads(self.topics_json)
        return []

    def to_facts(self) -> RepoFacts:
        return RepoFacts(
            name_with_owner=self.name_with_owner,
            url=self.url,
            summary=self.summary,
            description=self.description,
            primary_language=self.primary_language,
            topics=self.topics,
        )


@dataclass
class ModelRun:
    """Stored scoring run."""
    id: int
    created_at: str
    notes: str | None


def _placeholders(items: Sequence) -> str:
    return ", ".join("?" for _ in items)


class Catalogue:
    """SQLite catalogue of lists, repositories, membership and scores."""

    def __init__(self, db_path: Path | None = None):
        if db_path is None:
            db_path = get_starsync_dir() / DB_FILENAME
        self.db_path = Path(db_path)
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """Ensure database schema exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as conn:
            conn.executescript(SCHEMA)
            self._run_migrations(conn)

    def _get_schema_version(self, conn: sqlite3.Connection) -> int:
        row = conn.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1").fetchone()
        if row is None:
            return 0
        return int(row[0]) if row[0] is not None else 0

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute("DELETE FROM schema_version")
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))

    def _column_exists(self, conn: sqlite3.Connection, table: str, column: str) -> bool:
        rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
        return any(str(row[1]) == column for row in rows)

    def _run_migrations(self, conn: sqlite3.Connection) -> None:
        current = self._get_schema_version(conn)
        if current >= CURRENT_SCHEMA_VERSION:
            return

        # v1 -> v2: derived activity score next to popularity/freshness
        if current < 2:
            if not self._column_exists(conn, "repo", "activeness"):
                conn.execute("ALTER TABLE repo ADD COLUMN activeness REAL")
            current = 2

        # v2 -> v3: ledger timestamps in the same ISO form as model_run.created_at
        if current < 3:
            conn.execute(
                "UPDATE runs SET run_at = strftime('%Y-%m-%dT%H:%M:%fZ', run_at)"
                " WHERE run_at NOT LIKE '%T%'"
            )
            current = 3

        self._set_schema_version(conn, current)

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connection (commits on success)."""
        conn = self._open()
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Explicit write transaction.

        Runs BEGIN IMMEDIATE up front so the write lock is taken before the
        first statement; any exception rolls every statement back.
        """
        conn = self._open()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    # =========================================================================
    # Lists
    # =========================================================================

    def upsert_list(
        self,
        name: str,
        remote_id: str | None = None,
        description: str | None = None,
        is_private: bool = False,
    ) -> ListRow:
        """Insert or update a list keyed by its slug."""
        slug = slugify(name)
        if not slug:
            raise ValueError(f"List name {name!r} has no usable slug")
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO list (remote_id, name, description, is_private, slug)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(slug) DO UPDATE SET
                    remote_id = COALESCE(excluded.remote_id, list.remote_id),
                    name = excluded.name,
                    description = excluded.description,
                    is_private = excluded.is_private
                """,
                (remote_id, name, description, int(is_private), slug)
            )
            row = conn.execute("SELECT * FROM list WHERE slug = ?", (slug,)).fetchone()
            return ListRow(**dict(row))

    def set_list_remote_id(self, list_id: int, remote_id: str) -> None:
        with self.connect() as conn:
            conn.execute("UPDATE list SET remote_id = ? WHERE id = ?", (remote_id, list_id))

    def get_list(self, slug: str) -> ListRow | None:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM list WHERE slug = ?", (slug,)).fetchone()
            return ListRow(**dict(row)) if row else None

    def all_lists(self) -> list[ListRow]:
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM list ORDER BY name").fetchall()
            return [ListRow(**dict(row)) for row in rows]

    def list_counts(self) -> list[tuple[ListRow, int]]:
        """Every list with its member count."""
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT l.*, COUNT(lr.repo_id) AS members
                FROM list l LEFT JOIN list_repo lr ON lr.list_id = l.id
                GROUP BY l.id
                ORDER BY l.name
                """
            ).fetchall()
            out = []
            for row in rows:
                data = dict(row)
                members = data.pop("members")
                out.append((ListRow(**data), members))
            return out

    def list_defs(self, exclude: Iterable[str] = ()) -> list[ListDef]:
        """Lists the scorer rates against, minus the excluded slugs."""
        skip = set(exclude)
        return [row.to_list_def() for row in self.all_lists() if row.slug not in skip]

    def managed_slugs(self) -> set[str]:
        with self.connect() as conn:
            return {row[0] for row in conn.execute("SELECT slug FROM list").fetchall()}

    def delete_list(self, slug: str) -> bool:
        """Delete a list; its membership edges go with it."""
        with self.connect() as conn:
            cursor = conn.execute("DELETE FROM list WHERE slug = ?", (slug,))
            return cursor.rowcount > 0

    def prune_lists(self, keep_slugs: Iterable[str]) -> list[str]:
        """Delete every list whose slug is not in `keep_slugs`; returns the deleted slugs."""
        stale = sorted(self.managed_slugs() - set(keep_slugs))
        for slug in stale:
            self.delete_list(slug)
        return stale

    # =========================================================================
    # Repositories
    # =========================================================================

    def upsert_repo(self, facts: RepositoryFacts) -> RepoRow:
        """Insert or update a repository keyed by name_with_owner."""
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO repo
                    (remote_id, name_with_owner, url, description, homepage_url,
                     stars, forks, watchers, open_issues, open_prs,
                     default_branch, last_commit_iso, topics_json, primary_language, license,
                     is_archived, is_disabled, is_fork, is_mirror, has_issues_enabled,
                     pushed_at, updated_at, created_at, disk_usage)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(name_with_owner) DO UPDATE SET
                    remote_id = COALESCE(excluded.remote_id, repo.remote_id),
                    url = excluded.url,
                    description = excluded.description,
                    homepage_url = excluded.homepage_url,
                    stars = excluded.stars,
                    forks = excluded.forks,
                    watchers = excluded.watchers,
                    open_issues = excluded.open_issues,
                    open_prs = excluded.open_prs,
                    default_branch = excluded.default_branch,
                    last_commit_iso = excluded.last_commit_iso,
                    topics_json = excluded.topics_json,
                    primary_language = excluded.primary_language,
                    license = excluded.license,
                    is_archived = excluded.is_archived,
                    is_disabled = excluded.is_disabled,
                    is_fork = excluded.is_fork,
                    is_mirror = excluded.is_mirror,
                    has_issues_enabled = excluded.has_issues_enabled,
                    pushed_at = excluded.pushed_at,
                    updated_at = excluded.updated_at,
                    created_at = excluded.created_at,
                    disk_usage = excluded.disk_usage
                """,
                (facts.remote_id or None, facts.name_with_owner, facts.url, facts.description,
                 facts.homepage_url, facts.stars, facts.forks, facts.watchers,
                 facts.open_issues, facts.open_prs, facts.default_branch,
                 facts.last_commit_iso, json.dumps(facts.topics), facts.primary_language,
                 facts.license, int(facts.is_archived), int(facts.is_disabled),
                 int(facts.is_fork), int(facts.is_mirror), int(facts.has_issues_enabled),
                 facts.pushed_at, facts.updated_at, facts.created_at, facts.disk_usage)
            )
            row = conn.execute(
                "SELECT * FROM repo WHERE name_with_owner = ?", (facts.name_with_owner,)
            ).fetchone()
            return RepoRow(**dict(row))

    def set_repo_remote_id(self, repo_id: int, remote_id: str) -> None:
        with self.connect() as conn:
            conn.execute("UPDATE repo SET remote_id = ? WHERE id = ?", (remote_id, repo_id))

    def set_repo_enrichment(
        self,
        repo_id: int,
        summary: str | None = None,
        popularity: float | None = None,
        freshness: float | None = None,
        activeness: float | None = None,
    ) -> None:
        """Store values produced upstream (summaries and ranking scores)."""
        with self.connect() as conn:
            conn.execute(
                """
                UPDATE repo SET
                    summary = COALESCE(?, summary),
                    popularity = COALESCE(?, popularity),
                    freshness = COALESCE(?, freshness),
                    activeness = COALESCE(?, activeness)
                WHERE id = ?
                """,
                (summary, popularity, freshness, activeness, repo_id)
            )

    def get_repo(self, repo_id: int) -> RepoRow | None:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM repo WHERE id = ?", (repo_id,)).fetchone()
            return RepoRow(**dict(row)) if row else None

    def get_repo_by_name(self, name_with_owner: str) -> RepoRow | None:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM repo WHERE name_with_owner = ? COLLATE NOCASE",
                (name_with_owner,)
            ).fetchone()
            return RepoRow(**dict(row)) if row else None

    def delete_repo(self, repo_id: int) -> bool:
        """Delete a repository; its edges and scores go with it."""
        with self.connect() as conn:
            cursor = conn.execute("DELETE FROM repo WHERE id = ?", (repo_id,))
            return cursor.rowcount > 0

    def unlisted_repos(self) -> list[RepoRow]:
        """Repositories with a remote id that are linked to no list."""
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT r.* FROM repo r
                WHERE r.remote_id IS NOT NULL
                  AND NOT EXISTS (SELECT 1 FROM list_repo lr WHERE lr.repo_id = r.id)
                ORDER BY r.id
                """
            ).fetchall()
            return [RepoRow(**dict(row)) for row in rows]

    def select_repos_to_score(
        self,
        limit: int,
        list_slug: str | None = None,
        skip_run_id: int | None = None,
    ) -> list[RepoRow]:
        """
        Pick the next repositories to score.

        Ordered by popularity then freshness, missing values last.

        Args:
            limit: Maximum number of repositories
            list_slug: Only repositories in this list
            skip_run_id: Skip repositories already scored in this run
        """
        query = "SELECT r.* FROM repo r"
        params: list = []
        if list_slug:
            query += (
                " JOIN list_repo lr ON lr.repo_id = r.id"
                " JOIN list l ON l.id = lr.list_id AND l.slug = ?"
            )
            params.append(list_slug)
        if skip_run_id is not None:
            query += (
                " WHERE NOT EXISTS (SELECT 1 FROM repo_list_score s"
                " WHERE s.run_id = ? AND s.repo_id = r.id)"
            )
            params.append(skip_run_id)
        query += " ORDER BY r.popularity DESC NULLS LAST, r.freshness DESC NULLS LAST, r.id LIMIT ?"
        params.append(limit)

        with self.connect() as conn:
            rows = conn.execute(query, params).fetchall()
            return [RepoRow(**dict(row)) for row in rows]

    # =========================================================================
    # Membership
    # =========================================================================

    def link_list_repo(self, list_id: int, repo_id: int) -> bool:
        with self.connect() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO list_repo (list_id, repo_id) VALUES (?, ?)",
                (list_id, repo_id)
            )
            return cursor.rowcount > 0

    def current_membership(self, repo_id: int) -> list[str]:
        """Slugs of the lists the repository is in."""
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT l.slug FROM list l
                JOIN list_repo lr ON lr.list_id = l.id
                WHERE lr.repo_id = ?
                ORDER BY l.slug
                """,
                (repo_id,)
            ).fetchall()
            return [row[0] for row in rows]

    def map_slugs_to_remote_ids(self, slugs: Sequence[str]) -> dict[str, str]:
        """Remote ids of the given lists; lists without an id are left out."""
        if not slugs:
            return {}
        with self.connect() as conn:
            rows = conn.execute(
                f"SELECT slug, remote_id FROM list WHERE slug IN ({_placeholders(slugs)})"
                " AND remote_id IS NOT NULL",
                list(slugs)
            ).fetchall()
            return {row["slug"]: row["remote_id"] for row in rows}

    def listed_remote_ids(self) -> set[str]:
        """Remote ids of every repository linked to at least one list."""
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT DISTINCT r.remote_id FROM repo r
                JOIN list_repo lr ON lr.repo_id = r.id
                WHERE r.remote_id IS NOT NULL
                """
            ).fetchall()
            return {row[0] for row in rows}

    def reconcile_membership(self, repo_id: int, slugs: Iterable[str]) -> tuple[int, int]:
        """
        Make the repository's edges match `slugs` exactly, atomically.

        Slugs with no catalogue list are ignored.

        Returns:
            Tuple of (inserted, deleted) edge counts
        """
        target = sorted(set(slugs))
        with self.transaction() as conn:
            inserted = 0
            if target:
                cursor = conn.execute(
                    f"""
                    INSERT OR IGNORE INTO list_repo (list_id, repo_id)
                    SELECT l.id, ? FROM list l WHERE l.slug IN ({_placeholders(target)})
                    """,
                    [repo_id, *target]
                )
                inserted = cursor.rowcount
                cursor = conn.execute(
                    f"""
                    DELETE FROM list_repo
                    WHERE repo_id = ?
                      AND list_id IN (SELECT id FROM list WHERE slug NOT IN ({_placeholders(target)}))
                    """,
                    [repo_id, *target]
                )
            else:
                cursor = conn.execute("DELETE FROM list_repo WHERE repo_id = ?", (repo_id,))
            deleted = cursor.rowcount
        return inserted, deleted

    def reconcile_list_members(self, list_id: int, repo_ids: Iterable[int]) -> int:
        """Drop edges of a list whose repository is not in `repo_ids`."""
        keep = sorted(set(repo_ids))
        with self.transaction() as conn:
            if keep:
                cursor = conn.execute(
                    f"DELETE FROM list_repo WHERE list_id = ? AND repo_id NOT IN ({_placeholders(keep)})",
                    [list_id, *keep]
                )
            else:
                cursor = conn.execute("DELETE FROM list_repo WHERE list_id = ?", (list_id,))
            return cursor.rowcount

    # =========================================================================
    # Runs & Scores
    # =========================================================================

    def create_run(self, notes: str | None = None) -> int:
        with self.connect() as conn:
            cursor = conn.execute(
                f"INSERT INTO model_run (created_at, notes) VALUES ({ISO_NOW}, ?)",
                (notes,)
            )
            return int(cursor.lastrowid)

    def get_run(self, run_id: int) -> ModelRun | None:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM model_run WHERE id = ?", (run_id,)).fetchone()
            return ModelRun(**dict(row)) if row else None

    def run_exists(self, run_id: int) -> bool:
        return self.get_run(run_id) is not None

    def last_run_id(self) -> int | None:
        with self.connect() as conn:
            row = conn.execute("SELECT id FROM model_run ORDER BY id DESC LIMIT 1").fetchone()
            return int(row[0]) if row else None

    def save_scores(self, run_id: int, repo_id: int, scores: Sequence[ScoreItem]) -> int:
        """Upsert one score per (run, repo, list); scores are clamped to [0, 1]."""
        with self.connect() as conn:
            for item in scores:
                conn.execute(
                    """
                    INSERT INTO repo_list_score (run_id, repo_id, list_slug, score, rationale)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(run_id, repo_id, list_slug) DO UPDATE SET
                        score = excluded.score,
                        rationale = excluded.rationale
                    """,
                    (run_id, repo_id, item.list, min(max(item.score, 0.0), 1.0), item.why)
                )
        return len(scores)

    def count_scores(self, run_id: int | None = None) -> int:
        with self.connect() as conn:
            if run_id is None:
                row = conn.execute("SELECT COUNT(*) FROM repo_list_score").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM repo_list_score WHERE run_id = ?", (run_id,)
                ).fetchone()
            return int(row[0])
