from __future__ import annotations

from typing import Any

import pytest

from starsync.catalogue import Catalogue
from starsync.errors import TransportError
from starsync.github import LIST_ITEMS_AT_EDGE, LISTS_EDGES_PAGE, VIEWER_STARS_PAGE, RepositoryFacts
from starsync.scorer import ParsedReply, RawText


def repo_node(name_with_owner: str, remote_id: str | None = None, stars: int = 100, **extra) -> dict:
    node = {
        "__typename": "Repository",
        "id": remote_id if remote_id is not None else f"R_{name_with_owner}",
        "nameWithOwner": name_with_owner,
        "url": f"https://github.com/{name_with_owner}",
        "description": f"{name_with_owner} description",
        "stargazerCount": stars,
        "forkCount": 3,
        "watchers": {"totalCount": 5},
        "issues": {"totalCount": 2},
        "pullRequests": {"totalCount": 1},
        "primaryLanguage": {"name": "Python"},
        "repositoryTopics": {"nodes": [{"topic": {"name": "cli"}}]},
    }
    node.update(extra)
    return node


def facts(name_with_owner: str, remote_id: str | None = None, stars: int = 100) -> RepositoryFacts:
    return RepositoryFacts(
        remote_id=remote_id if remote_id is not None else f"R_{name_with_owner}",
        name_with_owner=name_with_owner,
        url=f"https://github.com/{name_with_owner}",
        description=f"{name_with_owner} description",
        stars=stars,
    )


def _page(items: list, after: str | None, prefix: str, size: int) -> tuple[list, int, bool]:
    start = int(after[len(prefix):]) if after else 0
    chunk = items[start:start + size]
    end = start + len(chunk)
    return chunk, end, end < len(items)


class FakeGraphQL:
    """In-memory stand-in for GitHubGraphQLClient.execute."""

    def __init__(
        self,
        lists: list[dict] | None = None,
        stars: list[dict] | None = None,
        fail_on_call: int | None = None,
    ):
        # lists: [{"name", "description", "isPrivate", "items": [repo nodes]}]
        self.lists = lists or []
        self.stars = stars or []
        self.fail_on_call = fail_on_call
        self.calls: list[tuple[str, dict]] = []

    def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        variables = variables or {}
        self.calls.append((query, dict(variables)))
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise TransportError.http_error(502, "Bad Gateway")

        if query == LISTS_EDGES_PAGE:
            chunk, end, has_next = _page(self.lists, variables.get("after"), "L", variables["pageSize"])
            start = end - len(chunk)
            edges = [
                {
                    "cursor": f"L{start + i + 1}",
                    "node": {
                        "listId": f"UL_{l['name']}",
                        "name": l["name"],
                        "description": l.get("description"),
                        "isPrivate": l.get("isPrivate", False),
                    },
                }
                for i, l in enumerate(chunk)
            ]
            return {"viewer": {"lists": {
                "pageInfo": {"endCursor": f"L{end}" if chunk else None, "hasNextPage": has_next},
                "edges": edges,
            }}}

        if query == LIST_ITEMS_AT_EDGE:
            after = variables.get("listAfter")
            index = int(after[1:]) if after else 0
            if index >= len(self.lists):
                return {"viewer": {"lists": {"nodes": []}}}
            target = self.lists[index]
            chunk, end, has_next = _page(
                target["items"], variables.get("itemsAfter"), "I", variables["pageSize"]
            )
            return {"viewer": {"lists": {"nodes": [{
                "name": target["name"],
                "items": {
                    "pageInfo": {"endCursor": f"I{end}", "hasNextPage": has_next},
                    "nodes": chunk,
                },
            }]}}}

        if query == VIEWER_STARS_PAGE:
            chunk, end, has_next = _page(self.stars, variables.get("after"), "S", variables["pageSize"])
            return {"viewer": {"starredRepositories": {
                "pageInfo": {"endCursor": f"S{end}", "hasNextPage": has_next},
                "edges": [{"starredAt": "2024-01-01T00:00:00Z", "node": n} for n in chunk],
            }}}

        raise AssertionError(f"unexpected query: {query[:40]}")

    def calls_for(self, query: str) -> list[dict]:
        return [v for q, v in self.calls if q == query]


class FakeMembershipClient:
    """Records membership mutations made by the Applier."""

    def __init__(self, fail_update: bool = False, unknown: set[str] | None = None):
        self.fail_update = fail_update
        self.unknown = unknown or set()
        self.updates: list[tuple[str, list[str]]] = []
        self.lookups: list[str] = []

    def repository_id(self, name_with_owner: str) -> str:
        self.lookups.append(name_with_owner)
        if name_with_owner in self.unknown:
            raise TransportError(f"GitHub GraphQL error: Could not resolve to a Repository '{name_with_owner}'")
        return f"R_{name_with_owner}"

    def update_lists_for_item(self, item_id: str, list_ids: list[str]) -> list[str]:
        if self.fail_update:
            raise TransportError.http_error(500, "boom")
        self.updates.append((item_id, list(list_ids)))
        return list(list_ids)


class StubLLM:
    """Scoring client returning canned replies keyed by repository name."""

    def __init__(self, replies: dict[str, Any], enabled: bool = True):
        # value: list of score dicts, raw string, or an exception to raise
        self.replies = replies
        self._enabled = enabled
        self.prompts: list[str] = []

    @property
    def enabled(self) -> bool:
        return self._enabled

    def score(self, system_prompt, user_prompt, schema=None, auth_header=None):
        self.prompts.append(user_prompt)
        for name, reply in self.replies.items():
            if f"Name: {name}\n" in user_prompt:
                if isinstance(reply, Exception):
                    raise reply
                if isinstance(reply, str):
                    return RawText(reply)
                return ParsedReply({"scores": reply})
        return RawText("")


@pytest.fixture
def catalogue(tmp_path):
    return Catalogue(db_path=tmp_path / "starsync.db")
