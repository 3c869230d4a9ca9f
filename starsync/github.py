"""
GitHub GraphQL client for Starsync.

Executes the list, star and membership queries used by the walkers and the
applier. Uses GITHUB_TOKEN for authentication.

Transport failures surface immediately as TransportError; retrying is left
to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import requests

from . import __version__
from .config import GITHUB_GRAPHQL_ENDPOINT
from .errors import ConfigError, ResponseShapeError, TransportError

logger = logging.getLogger(__name__)

HTTP_ERROR_THRESHOLD = 400


# Fields shared by list items and starred repositories
REPO_FIELDS = """
    __typename
    id
    nameWithOwner
    url
    description
    homepageUrl
    stargazerCount
    forkCount
    watchers { totalCount }
    issues(states: OPEN) { totalCount }
    pullRequests(states: OPEN) { totalCount }
    defaultBranchRef {
      name
      target { ... on Commit { committedDate } }
    }
    primaryLanguage { name }
    licenseInfo { spdxId }
    isArchived
    isDisabled
    isFork
    isMirror
    hasIssuesEnabled
    pushedAt
    updatedAt
    createdAt
    diskUsage
    repositoryTopics(first: 50) { nodes { topic { name } } }
"""

LISTS_EDGES_PAGE = """
query ListsEdgesPage($after: String, $pageSize: Int!) {
  viewer {
    lists(first: $pageSize, after: $after) {
      pageInfo { endCursor hasNextPage }
      edges {
        cursor
        node { listId: id name description isPrivate }
      }
    }
  }
}
"""

# Selects exactly one list: the one right after $listAfter
LIST_ITEMS_AT_EDGE = """
query ListItemsAtEdge($listAfter: String, $itemsAfter: String, $pageSize: Int!) {
  viewer {
    lists(first: 1, after: $listAfter) {
      nodes {
        name
        items(first: $pageSize, after: $itemsAfter) {
          pageInfo { endCursor hasNextPage }
          nodes {
            ... on Repository {%s}
          }
        }
      }
    }
  }
}
""" % REPO_FIELDS

VIEWER_STARS_PAGE = """
query ViewerStarsPage($after: String, $pageSize: Int!) {
  viewer {
    starredRepositories(
      first: $pageSize
      after: $after
      orderBy: {field: STARRED_AT, direction: DESC}
    ) {
      pageInfo { endCursor hasNextPage }
      edges {
        starredAt
        node {%s}
      }
    }
  }
}
""" % REPO_FIELDS

REPO_ID_QUERY = """
query RepoId($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) { id }
}
"""

UPDATE_LISTS_FOR_ITEM = """
mutation UpdateUserListsForItem($itemId: ID!, $listIds: [ID!]!) {
  updateUserListsForItem(input: {itemId: $itemId, listIds: $listIds}) {
    lists { id name }
  }
}
"""


@dataclass
class RepositoryFacts:
    """Parsed GitHub repository data."""
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
    primary_language: str | None = None
    license: str | None = None
    is_archived: bool = False
    is_disabled: bool = False
    is_fork: bool = False
    is_mirror: bool = False
    has_issues_enabled: bool = True
    pushed_at: str | None = None
    updated_at: str | None = None
    created_at: str | None = None
    disk_usage: int | None = None
    topics: list[str] = field(default_factory=list)


def _total(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    if isinstance(value, dict):
        return int(value.get("totalCount") or 0)
    return 0


def _name(data: dict[str, Any], key: str, inner: str = "name") -> str | None:
    value = data.get(key)
    if isinstance(value, dict) and isinstance(value.get(inner), str):
        return value[inner]
    return None


def map_repo_node(node: dict[str, Any] | None) -> RepositoryFacts | None:
    """
    Map a GraphQL repository node into RepositoryFacts.

    Returns None for empty nodes and for list items that are not
    repositories (lists can also hold other item types).
    """
    if not isinstance(node, dict) or not node:
        return None
    typename = node.get("__typename")
    if typename is not None and typename != "Repository":
        return None

    branch = node.get("defaultBranchRef") or {}
    target = branch.get("target") or {}
    topic_nodes = (node.get("repositoryTopics") or {}).get("nodes") or []
    topics = [
        t["topic"]["name"] for t in topic_nodes
        if isinstance(t, dict) and isinstance(t.get("topic"), dict) and t["topic"].get("name")
    ]

    return RepositoryFacts(
        remote_id=node.get("id") or node.get("repoId"),
        name_with_owner=node.get("nameWithOwner") or "",
        url=node.get("url") or "",
        description=node.get("description"),
        homepage_url=node.get("homepageUrl"),
        stars=node.get("stargazerCount") or 0,
        forks=node.get("forkCount") or 0,
        watchers=_total(node, "watchers"),
        open_issues=_total(node, "issues"),
        open_prs=_total(node, "pullRequests"),
        default_branch=branch.get("name"),
        last_commit_iso=target.get("committedDate") if isinstance(target, dict) else None,
        primary_language=_name(node, "primaryLanguage"),
        license=_name(node, "licenseInfo", "spdxId"),
        is_archived=bool(node.get("isArchived")),
        is_disabled=bool(node.get("isDisabled")),
        is_fork=bool(node.get("isFork")),
        is_mirror=bool(node.get("isMirror")),
        has_issues_enabled=bool(node.get("hasIssuesEnabled", True)),
        pushed_at=node.get("pushedAt"),
        updated_at=node.get("updatedAt"),
        created_at=node.get("createdAt"),
        disk_usage=node.get("diskUsage"),
        topics=topics,
    )


def split_name_with_owner(name_with_owner: str) -> tuple[str, str]:
    owner, _, name = name_with_owner.partition("/")
    if not owner or not name or "/" in name:
        raise ValueError(f"Invalid repository name: expected 'owner/name', got {name_with_owner!r}")
    return owner, name


class GitHubGraphQLClient:
    """GitHub GraphQL API client."""

    def __init__(
        self,
        token: str,
        endpoint: str = GITHUB_GRAPHQL_ENDPOINT,
        timeout: float = 30.0,
    ):
        if not token:
            raise ConfigError.missing_token()
        self.endpoint = endpoint
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers["Authorization"] = f"Bearer {token}"
        self.session.headers["Accept"] = "application/vnd.github+json"
        self.session.headers["User-Agent"] = f"starsync/{__version__}"

    def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a query or mutation and return its `data` payload."""
        try:
            response = self.session.post(
                self.endpoint,
                json={"query": query, "variables": variables or {}},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransportError.request_failed(e) from e

        if response.status_code >= HTTP_ERROR_THRESHOLD:
            raise TransportError.http_error(response.status_code, response.text)

        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(f"GitHub GraphQL: invalid JSON response: {e}") from e

        errors = payload.get("errors") if isinstance(payload, dict) else None
        if errors:
            raise TransportError.graphql_errors(errors)
        data = payload.get("data") if isinstance(payload, dict) else None
        if not data:
            raise TransportError.empty_data()
        return data

    def repository_id(self, name_with_owner: str) -> str:
        """Resolve a repository's global id by owner/name."""
        owner, name = split_name_with_owner(name_with_owner)
        data = self.execute(REPO_ID_QUERY, {"owner": owner, "name": name})
        repository = data.get("repository")
        if not isinstance(repository, dict) or not repository.get("id"):
            raise ResponseShapeError.missing("repository.id")
        return repository["id"]

    def update_lists_for_item(self, item_id: str, list_ids: list[str]) -> list[str]:
        """
        Set the exact list membership of a repository.

        Returns:
            Global ids of the lists GitHub reports after the update
        """
        data = self.execute(UPDATE_LISTS_FOR_ITEM, {"itemId": item_id, "listIds": list_ids})
        result = data.get("updateUserListsForItem") or {}
        lists = result.get("lists") or []
        return [l["id"] for l in lists if isinstance(l, dict) and l.get("id")]
