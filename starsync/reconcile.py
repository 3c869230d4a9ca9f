"""Set differences between the remote stars and the local catalogue."""

from __future__ import annotations

import logging
from typing import Iterator

from .catalogue import Catalogue
from .github import RepositoryFacts
from .walkers import CancelToken, RemoteStarWalker

logger = logging.getLogger(__name__)


class Reconciler:
    """Compares starred repositories against the lists in the catalogue."""

    def __init__(self, catalogue: Catalogue, star_walker: RemoteStarWalker):
        self.catalogue = catalogue
        self.star_walker = star_walker

    def iter_unlisted_stars(self, cancel: CancelToken | None = None) -> Iterator[RepositoryFacts]:
        """
        Yield starred repositories that are in no local list.

        Repositories without a remote id cannot be diffed and are skipped.
        Raises AbortedError if `cancel` is set between pages.
        """
        listed = self.catalogue.listed_remote_ids()
        logger.debug("reconcile: %d listed ids in catalogue", len(listed))
        for page in self.star_walker.iter_pages(cancel):
            for repo in page:
                if not repo.remote_id:
                    logger.debug("reconcile: skipping %s without remote id", repo.name_with_owner)
                    continue
                if repo.remote_id not in listed:
                    yield repo

    def get_unlisted_stars(self, cancel: CancelToken | None = None) -> list[RepositoryFacts]:
        return list(self.iter_unlisted_stars(cancel))
