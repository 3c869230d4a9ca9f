"""
Ingestion of remote lists and stars into the catalogue.

Also derives the ranking inputs used to order batch scoring:
- popularity: log10(1 + stars + 2*forks + 0.5*watchers)
- freshness: 1 at the last activity date, decaying linearly to 0 over a year
- activeness: open issue/PR load blended with push freshness
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .catalogue import Catalogue
from .github import RepositoryFacts
from .ledger import RunLedger
from .reconcile import Reconciler
from .walkers import CancelToken, RemoteListWalker, RemoteStarWalker

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365


def score_popularity(stars: int = 0, forks: int = 0, watchers: int = 0) -> float:
    return round(math.log10(1 + stars + 2 * forks + 0.5 * watchers), 4)


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def score_freshness(iso: str | None, now: datetime | None = None) -> float:
    when = _parse_iso(iso)
    if when is None:
        return 0.0
    now = now or datetime.now(timezone.utc)
    days = (now - when).total_seconds() / 86400
    return round(max(0.0, min(1.0, 1 - days / DAYS_PER_YEAR)), 4)


def score_activeness(
    open_issues: int = 0,
    open_prs: int = 0,
    pushed_at: str | None = None,
    now: datetime | None = None,
) -> float:
    load = math.log10(1 + open_issues + 2 * open_prs)
    # Weights sum to 1 so the result stays in [0, 1]
    return round(min(1.0, load / 2) * 0.4 + score_freshness(pushed_at, now) * 0.6, 4)


def freshness_source(facts: RepositoryFacts) -> str | None:
    """Most recent activity timestamp available for a repository."""
    best: tuple[datetime, str] | None = None
    for raw in (facts.last_commit_iso, facts.pushed_at, facts.updated_at):
        parsed = _parse_iso(raw)
        if parsed is not None and (best is None or parsed > best[0]):
            best = (parsed, raw)
    return best[1] if best else None


@dataclass
class IngestTotals:
    lists: int = 0
    repos: int = 0
    removed: list[str] = field(default_factory=list)


def store_repo(catalogue: Catalogue, facts: RepositoryFacts) -> int:
    """Upsert a repository with its ranking inputs; returns the local id."""
    row = catalogue.upsert_repo(facts)
    catalogue.set_repo_enrichment(
        row.id,
        popularity=score_popularity(facts.stars, facts.forks, facts.watchers),
        freshness=score_freshness(freshness_source(facts)),
        activeness=score_activeness(facts.open_issues, facts.open_prs, facts.pushed_at),
    )
    return row.id


def sync_lists(
    walker: RemoteListWalker,
    catalogue: Catalogue,
    ledger: RunLedger | None = None,
) -> IngestTotals:
    """
    Mirror every remote list and its repositories into the catalogue.

    Each list's edges end up matching the remote items exactly. Once the
    walk has finished, lists that no longer exist remotely are deleted
    together with their edges.
    """
    totals = IngestTotals()
    seen: set[str] = set()
    for star_list in walker.iter_lists():
        row = catalogue.upsert_list(
            star_list.name,
            remote_id=star_list.list_id,
            description=star_list.description,
            is_private=star_list.is_private,
        )
        repo_ids = []
        for facts in star_list.repos:
            repo_id = store_repo(catalogue, facts)
            catalogue.link_list_repo(row.id, repo_id)
            repo_ids.append(repo_id)
        dropped = catalogue.reconcile_list_members(row.id, repo_ids)
        logger.info(
            "lists: synced %s (%d repos, %d stale edges dropped)",
            row.slug, len(repo_ids), dropped,
        )
        seen.add(row.slug)
        totals.lists += 1
        totals.repos += len(repo_ids)

    totals.removed = catalogue.prune_lists(seen)
    for slug in totals.removed:
        logger.info("lists: removed %s (gone from GitHub)", slug)

    if ledger is not None:
        ledger.log_run("list", None, "sync", {
            "lists": totals.lists, "repos": totals.repos, "removed": totals.removed,
        })
    return totals


def sync_unlisted(
    reconciler: Reconciler,
    catalogue: Catalogue,
    cancel: CancelToken | None = None,
    ledger: RunLedger | None = None,
) -> int:
    """Store starred repositories that are in no list so they can be scored."""
    count = 0
    for facts in reconciler.iter_unlisted_stars(cancel):
        store_repo(catalogue, facts)
        count += 1
    logger.info("stars: stored %d unlisted repos", count)
    if ledger is not None:
        ledger.log_run("repo", None, "unlisted", {"repos": count})
    return count


def prune_unstarred(
    star_walker: RemoteStarWalker,
    catalogue: Catalogue,
    cancel: CancelToken | None = None,
    ledger: RunLedger | None = None,
) -> list[str]:
    """
    Delete catalogued repositories that are no longer starred.

    Only repositories in no list are candidates; list members are kept in
    step by sync_lists. Nothing is deleted unless the star walk completes.
    """
    starred = star_walker.collect_ids(cancel)
    removed = []
    for repo in catalogue.unlisted_repos():
        if repo.remote_id not in starred:
            catalogue.delete_repo(repo.id)
            removed.append(repo.name_with_owner)
    logger.info("stars: pruned %d unstarred repos", len(removed))
    if ledger is not None:
        ledger.log_run("repo", None, "prune", {"removed": removed})
    return removed
