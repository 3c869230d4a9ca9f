"""
Cursor-paginated walkers over the viewer's star lists and starred repos.

Lists are walked with two independent cursors:
- the list cursor pages viewer.lists (edges of list metadata)
- the item cursor pages the repositories inside one list

Items for a list are fetched by asking for `lists(first: 1, after: X)`
where X is the edge cursor of the list *before* it (None for the first
list). The walkers are lazy and restart from the beginning on every call;
they never resume mid-stream.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Iterator, Protocol

from .errors import AbortedError, ResponseShapeError
from .github import (
    LIST_ITEMS_AT_EDGE,
    LISTS_EDGES_PAGE,
    VIEWER_STARS_PAGE,
    RepositoryFacts,
    map_repo_node,
)

logger = logging.getLogger(__name__)


class GraphQLExecutor(Protocol):
    def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        ...


class CancelToken:
    """Cooperative cancellation flag checked between pages."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, what: str = "walk") -> None:
        if self.cancelled:
            raise AbortedError(f"Aborted: {what} cancelled")


@dataclass
class PageInfo:
    end_cursor: str | None
    has_next_page: bool


@dataclass
class ListMeta:
    """List metadata plus the edge cursor preceding it."""
    edge_before: str | None
    list_id: str
    name: str
    description: str | None
    is_private: bool


@dataclass
class ListEdge:
    cursor: str
    list_id: str
    name: str
    description: str | None
    is_private: bool

    def meta(self, edge_before: str | None) -> ListMeta:
        return ListMeta(
            edge_before=edge_before,
            list_id=self.list_id,
            name=self.name,
            description=self.description,
            is_private=self.is_private,
        )


@dataclass
class ListsPage:
    page_info: PageInfo
    edges: list[ListEdge]


@dataclass
class StarList:
    """A remote star list with all of its repositories."""
    list_id: str
    name: str
    description: str | None
    is_private: bool
    repos: list[RepositoryFacts] = field(default_factory=list)


@dataclass
class ListWalkState:
    """
    Cursor state of the outer list walk.

    after: cursor passed to the next lists page request
    previous_edge_cursor: cursor of the last list edge consumed, which
        addresses the items of the list that follows it
    """
    after: str | None = None
    previous_edge_cursor: str | None = None
    exhausted: bool = False


def _require(data: Any, *path: str) -> Any:
    current = data
    walked: list[str] = []
    for key in path:
        walked.append(key)
        if not isinstance(current, dict) or key not in current:
            raise ResponseShapeError.missing(".".join(walked))
        current = current[key]
    return current


def _page_info(connection: dict[str, Any], field_name: str) -> PageInfo:
    info = _require(connection, "pageInfo")
    if not isinstance(info, dict):
        raise ResponseShapeError.missing(f"{field_name}.pageInfo")
    return PageInfo(
        end_cursor=info.get("endCursor"),
        has_next_page=bool(info.get("hasNextPage")),
    )


def parse_lists_page(data: dict[str, Any]) -> ListsPage:
    connection = _require(data, "viewer", "lists")
    edges = []
    for edge in _require(connection, "edges") or []:
        node = edge.get("node") or {}
        edges.append(ListEdge(
            cursor=edge.get("cursor"),
            list_id=node.get("listId") or node.get("id"),
            name=node.get("name", ""),
            description=node.get("description"),
            is_private=bool(node.get("isPrivate")),
        ))
    return ListsPage(page_info=_page_info(connection, "viewer.lists"), edges=edges)


class RemoteListWalker:
    """Walks the viewer's star lists and the repositories inside them."""

    def __init__(
        self,
        client: GraphQLExecutor,
        lists_page_size: int = 20,
        items_page_size: int = 25,
    ):
        self.client = client
        self.lists_page_size = lists_page_size
        self.items_page_size = items_page_size

    def fetch_lists_page(self, after: str | None) -> ListsPage:
        logger.debug("lists: query page after=%r", after)
        data = self.client.execute(
            LISTS_EDGES_PAGE, {"after": after, "pageSize": self.lists_page_size}
        )
        page = parse_lists_page(data)
        logger.debug(
            "lists: edges=%d hasNext=%s endCursor=%r",
            len(page.edges), page.page_info.has_next_page, page.page_info.end_cursor,
        )
        return page

    def fetch_items_at_edge(
        self,
        edge_before: str | None,
        list_name: str = "",
    ) -> list[RepositoryFacts]:
        """
        Fetch every repository of the list that follows `edge_before`.

        Args:
            edge_before: Edge cursor of the preceding list (None for the first)
            list_name: Used in logs and error messages only

        Returns:
            Repositories in the list, in remote order
        """
        repos: list[RepositoryFacts] = []
        items_after: str | None = None
        page_no = 0

        while True:
            page_no += 1
            logger.debug(
                "items: query page #%d list=%r itemsAfter=%r", page_no, list_name, items_after
            )
            data = self.client.execute(LIST_ITEMS_AT_EDGE, {
                "listAfter": edge_before,
                "itemsAfter": items_after,
                "pageSize": self.items_page_size,
            })
            nodes = _require(data, "viewer", "lists", "nodes") or []
            if not nodes:
                raise ResponseShapeError(
                    f"List node not found at edge={edge_before!r} (hint: {list_name})"
                )
            items = _require(nodes[0], "items")
            for node in items.get("nodes") or []:
                repo = map_repo_node(node)
                if repo is not None:
                    repos.append(repo)

            info = _page_info(items, "items")
            if not info.has_next_page:
                break
            items_after = info.end_cursor

        logger.debug("items: done list=%r total=%d", list_name, len(repos))
        return repos

    def _advance(self, state: ListWalkState, page: ListsPage) -> ListWalkState:
        if not page.page_info.has_next_page:
            return ListWalkState(state.after, state.previous_edge_cursor, exhausted=True)
        return ListWalkState(page.page_info.end_cursor, state.previous_edge_cursor)

    def iter_list_metas(self) -> Iterator[ListMeta]:
        """Yield list metadata in page order without fetching items."""
        state = ListWalkState()
        while not state.exhausted:
            page = self.fetch_lists_page(state.after)
            for edge in page.edges:
                yield edge.meta(state.previous_edge_cursor)
                state.previous_edge_cursor = edge.cursor
            state = self._advance(state, page)

    def iter_lists(self) -> Iterator[StarList]:
        """Lazily yield every list with its repositories, in page order."""
        for meta in self.iter_list_metas():
            repos = self.fetch_items_at_edge(meta.edge_before, meta.name)
            yield StarList(
                list_id=meta.list_id,
                name=meta.name,
                description=meta.description,
                is_private=meta.is_private,
                repos=repos,
            )

    def list_remote_ids_by_name(self) -> dict[str, str]:
        """Map lower-cased list name to global id."""
        return {meta.name.lower(): meta.list_id for meta in self.iter_list_metas()}


class RemoteStarWalker:
    """Walks the viewer's starred repositories one page at a time."""

    def __init__(self, client: GraphQLExecutor, page_size: int = 25):
        self.client = client
        self.page_size = page_size

    def iter_pages(self, cancel: CancelToken | None = None) -> Iterator[list[RepositoryFacts]]:
        """
        Yield starred repositories page by page.

        Raises:
            AbortedError: if `cancel` is set before a page request
        """
        after: str | None = None
        page_no = 0
        while True:
            if cancel is not None:
                cancel.raise_if_cancelled("stars walk")
            page_no += 1
            logger.debug("stars: query page #%d after=%r size=%d", page_no, after, self.page_size)
            data = self.client.execute(
                VIEWER_STARS_PAGE, {"after": after, "pageSize": self.page_size}
            )
            connection = _require(data, "viewer", "starredRepositories")
            batch = []
            for edge in _require(connection, "edges") or []:
                repo = map_repo_node((edge or {}).get("node"))
                if repo is not None:
                    batch.append(repo)
            info = _page_info(connection, "viewer.starredRepositories")
            logger.debug(
                "stars: page #%d batch=%d hasNext=%s", page_no, len(batch), info.has_next_page
            )
            yield batch

            if not info.has_next_page:
                break
            after = info.end_cursor

    def iter_repos(self, cancel: CancelToken | None = None) -> Iterator[RepositoryFacts]:
        for page in self.iter_pages(cancel):
            yield from page

    def collect_ids(self, cancel: CancelToken | None = None) -> set[str]:
        """Global ids of all starred repositories (entries without an id are skipped)."""
        return {r.remote_id for r in self.iter_repos(cancel) if r.remote_id}
