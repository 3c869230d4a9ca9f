from __future__ import annotations

from unittest.mock import Mock, patch

import pytest
import requests

from conftest import repo_node
from starsync.errors import ConfigError, ResponseShapeError, TransportError
from starsync.github import (
    REPO_ID_QUERY,
    UPDATE_LISTS_FOR_ITEM,
    GitHubGraphQLClient,
    map_repo_node,
    split_name_with_owner,
)


def _response(status_code=200, payload=None, text=""):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.json.return_value = payload
    return response


def test_map_repo_node_full():
    node = {
        "__typename": "Repository",
        "id": "R_1",
        "nameWithOwner": "octo/tool",
        "url": "https://github.com/octo/tool",
        "stargazerCount": 42,
        "forkCount": 3,
        "watchers": {"totalCount": 5},
        "issues": {"totalCount": 7},
        "pullRequests": {"totalCount": 1},
        "defaultBranchRef": {"name": "main", "target": {"committedDate": "2024-05-01T00:00:00Z"}},
        "primaryLanguage": {"name": "Python"},
        "licenseInfo": {"spdxId": "MIT"},
        "isArchived": True,
        "repositoryTopics": {"nodes": [{"topic": {"name": "cli"}}, {"topic": None}]},
    }

    facts = map_repo_node(node)

    assert facts.remote_id == "R_1"
    assert facts.stars == 42
    assert facts.watchers == 5
    assert facts.open_issues == 7
    assert facts.open_prs == 1
    assert facts.default_branch == "main"
    assert facts.last_commit_iso == "2024-05-01T00:00:00Z"
    assert facts.primary_language == "Python"
    assert facts.license == "MIT"
    assert facts.is_archived is True
    assert facts.has_issues_enabled is True
    assert facts.topics == ["cli"]


def test_map_repo_node_tolerates_missing_fields():
    facts = map_repo_node({"nameWithOwner": "o/r", "defaultBranchRef": None, "primaryLanguage": None})

    assert facts.remote_id is None
    assert facts.stars == 0
    assert facts.default_branch is None
    assert facts.primary_language is None
    assert facts.topics == []


def test_map_repo_node_skips_empty_and_non_repository():
    assert map_repo_node(None) is None
    assert map_repo_node({}) is None
    assert map_repo_node({"__typename": "Gist", "id": "G_1"}) is None


def test_split_name_with_owner():
    assert split_name_with_owner("octo/tool") == ("octo", "tool")
    for bad in ("tool", "/tool", "octo/", "a/b/c"):
        with pytest.raises(ValueError):
            split_name_with_owner(bad)


def test_client_requires_token():
    with pytest.raises(ConfigError, match="GITHUB_TOKEN not set"):
        GitHubGraphQLClient(token="")


def test_client_sets_auth_header():
    client = GitHubGraphQLClient(token="test-token")
    assert client.session.headers["Authorization"] == "Bearer test-token"


def test_execute_returns_data():
    client = GitHubGraphQLClient(token="t", endpoint="https://example.test/graphql")

    with patch.object(client.session, "post", return_value=_response(payload={"data": {"viewer": {}}})) as post:
        data = client.execute("query { viewer { login } }", {"a": 1})

    assert data == {"viewer": {}}
    args, kwargs = post.call_args
    assert args[0] == "https://example.test/graphql"
    assert kwargs["json"] == {"query": "query { viewer { login } }", "variables": {"a": 1}}


def test_execute_http_error_keeps_status():
    client = GitHubGraphQLClient(token="t")

    with patch.object(client.session, "post", return_value=_response(502, text="Bad Gateway")):
        with pytest.raises(TransportError) as exc_info:
            client.execute("query {}")

    assert exc_info.value.status_code == 502
    assert "502" in str(exc_info.value)


def test_execute_graphql_errors():
    client = GitHubGraphQLClient(token="t")
    payload = {"errors": [{"message": "Field 'x' doesn't exist"}, {"message": "rate limited"}]}

    with patch.object(client.session, "post", return_value=_response(payload=payload)):
        with pytest.raises(TransportError, match="Field 'x' doesn't exist; rate limited"):
            client.execute("query {}")


def test_execute_empty_data():
    client = GitHubGraphQLClient(token="t")

    with patch.object(client.session, "post", return_value=_response(payload={"data": None})):
        with pytest.raises(TransportError, match="empty data"):
            client.execute("query {}")


def test_execute_network_failure():
    client = GitHubGraphQLClient(token="t")

    with patch.object(client.session, "post", side_effect=requests.ConnectionError("boom")):
        with pytest.raises(TransportError, match="Request failed"):
            client.execute("query {}")


def test_repository_id():
    client = GitHubGraphQLClient(token="t")

    with patch.object(client, "execute", return_value={"repository": {"id": "R_42"}}) as execute:
        assert client.repository_id("octo/tool") == "R_42"

    execute.assert_called_once_with(REPO_ID_QUERY, {"owner": "octo", "name": "tool"})


def test_repository_id_missing():
    client = GitHubGraphQLClient(token="t")

    with patch.object(client, "execute", return_value={"repository": None}):
        with pytest.raises(ResponseShapeError):
            client.repository_id("octo/gone")


def test_update_lists_for_item():
    client = GitHubGraphQLClient(token="t")
    data = {"updateUserListsForItem": {"lists": [{"id": "UL_1", "name": "AI"}, {"id": "UL_2", "name": "Learning"}]}}

    with patch.object(client, "execute", return_value=data) as execute:
        assert client.update_lists_for_item("R_1", ["UL_1", "UL_2"]) == ["UL_1", "UL_2"]

    execute.assert_called_once_with(UPDATE_LISTS_FOR_ITEM, {"itemId": "R_1", "listIds": ["UL_1", "UL_2"]})


def test_conftest_node_maps():
    facts = map_repo_node(repo_node("o/r", stars=9))
    assert facts.name_with_owner == "o/r"
    assert facts.stars == 9
