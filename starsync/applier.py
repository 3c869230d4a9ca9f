"""
Applies a membership plan to GitHub and the local catalogue.

Steps, each reported as an ApplyError naming the step on failure:
1. resolve the repository's global id (stored, else looked up and stored)
2. map the planned slugs to list global ids
3. set the repository's remote list membership to exactly those ids
4. reconcile local membership edges in one transaction
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence, TypeVar

from .catalogue import Catalogue, RepoRow
from .errors import ApplyError
from .walkers import RemoteListWalker

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MembershipClient(Protocol):
    def repository_id(self, name_with_owner: str) -> str:
        ...

    def update_lists_for_item(self, item_id: str, list_ids: list[str]) -> list[str]:
        ...


@dataclass
class ApplyOutcome:
    """What an apply changed."""
    remote_id: str
    list_ids: list[str]
    inserted: int
    deleted: int

    @property
    def local_changes(self) -> int:
        return self.inserted + self.deleted


class Applier:
    """Pushes a repository's planned membership to GitHub, then mirrors it locally."""

    def __init__(self, catalogue: Catalogue, client: MembershipClient):
        self.catalogue = catalogue
        self.client = client

    def _step(self, repo: RepoRow, step: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except Exception as e:
            logger.debug("apply: %s step %r failed: %s", repo.name_with_owner, step, e)
            raise ApplyError(repo.name_with_owner, step, e) from e

    def resolve_remote_id(self, repo: RepoRow) -> str:
        if repo.remote_id:
            return repo.remote_id
        remote_id = self.client.repository_id(repo.name_with_owner)
        self.catalogue.set_repo_remote_id(repo.id, remote_id)
        repo.remote_id = remote_id
        return remote_id

    def map_list_ids(self, slugs: Sequence[str]) -> list[str]:
        mapping = self.catalogue.map_slugs_to_remote_ids(slugs)
        missing = [slug for slug in slugs if slug not in mapping]
        if missing:
            raise LookupError(f"no GitHub id for: {', '.join(missing)}")
        return [mapping[slug] for slug in slugs]

    def apply(self, repo: RepoRow, final_planned: Sequence[str]) -> ApplyOutcome:
        """
        Make the repository's membership equal `final_planned`, remotely and locally.

        Raises:
            ApplyError: naming the step that failed
        """
        slugs = list(dict.fromkeys(final_planned))
        remote_id = self._step(repo, "resolve repository id", lambda: self.resolve_remote_id(repo))
        list_ids = self._step(repo, "map list ids", lambda: self.map_list_ids(slugs))
        self._step(
            repo, "update remote membership",
            lambda: self.client.update_lists_for_item(remote_id, list_ids),
        )
        inserted, deleted = self._step(
            repo, "reconcile local edges",
            lambda: self.catalogue.reconcile_membership(repo.id, slugs),
        )
        logger.info(
            "apply: %s -> %s (+%d/-%d local edges)",
            repo.name_with_owner, ", ".join(slugs), inserted, deleted,
        )
        return ApplyOutcome(remote_id=remote_id, list_ids=list_ids, inserted=inserted, deleted=deleted)

    def ensure_list_remote_ids(self, walker: RemoteListWalker) -> int:
        """Fill missing list global ids by case-insensitive name; returns how many."""
        missing = [row for row in self.catalogue.all_lists() if not row.remote_id]
        if not missing:
            return 0
        by_name = walker.list_remote_ids_by_name()
        filled = 0
        for row in missing:
            remote_id = by_name.get(row.name.lower())
            if remote_id:
                self.catalogue.set_list_remote_id(row.id, remote_id)
                filled += 1
            else:
                logger.warning("lists: no GitHub list named %r", row.name)
        return filled
