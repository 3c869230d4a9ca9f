from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from conftest import facts
from starsync.catalogue import Catalogue
from starsync.cli import main
from starsync.github import GitHubGraphQLClient
from starsync.ledger import RunLedger


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    (tmp_path / ".git").mkdir()
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    return tmp_path


def test_cli_help_shows_command_groups():
    runner = CliRunner()
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    for group in ("init", "lists", "stars", "score", "runs"):
        assert group in result.output


def test_init_creates_config_and_database(workspace):
    runner = CliRunner()

    result = runner.invoke(main, ["init"])

    assert result.exit_code == 0
    assert (workspace / "starsync.yml").exists()
    assert (workspace / ".starsync" / "starsync.db").exists()
    assert ".starsync/" in (workspace / ".gitignore").read_text()

    again = runner.invoke(main, ["init"])
    assert "Skipped" in again.output


def test_lists_show_json(workspace):
    catalogue = Catalogue(workspace / ".starsync" / "starsync.db")
    ai = catalogue.upsert_list("AI", remote_id="UL_ai")
    catalogue.link_list_repo(ai.id, catalogue.upsert_repo(facts("o/a")).id)

    result = CliRunner().invoke(main, ["lists", "show", "--json"])

    assert result.exit_code == 0
    assert json.loads(result.output) == [
        {"slug": "ai", "name": "AI", "remote_id": "UL_ai", "members": 1}
    ]


def test_lists_sync_without_token_fails(workspace):
    result = CliRunner().invoke(main, ["lists", "sync"])

    assert result.exit_code == 1
    assert "GITHUB_TOKEN not set" in result.output


def test_score_batch_without_llm_fails(workspace, monkeypatch):
    Catalogue(workspace / ".starsync" / "starsync.db").upsert_list("AI")

    result = CliRunner().invoke(main, ["score", "batch"])

    assert result.exit_code == 1
    assert "Configuration error" in result.output

    # With --apply the local checks still come before any GitHub call
    monkeypatch.setenv("GITHUB_TOKEN", "t")
    with patch.object(GitHubGraphQLClient, "execute") as execute:
        applied = CliRunner().invoke(main, ["score", "batch", "--apply"])

    assert applied.exit_code == 1
    assert "Configuration error" in applied.output
    execute.assert_not_called()


def test_score_one_unknown_repo_is_reported(workspace):
    Catalogue(workspace / ".starsync" / "starsync.db").upsert_list("AI")

    result = CliRunner().invoke(main, ["score", "one", "o/missing"])

    assert result.exit_code == 0
    assert "repo not found: o/missing" in result.output


def test_stars_prune_without_token_fails(workspace):
    result = CliRunner().invoke(main, ["stars", "prune"])

    assert result.exit_code == 1
    assert "GITHUB_TOKEN not set" in result.output


def test_score_batch_rejects_bad_resume(workspace):
    result = CliRunner().invoke(main, ["score", "batch", "--resume", "soon"])

    assert result.exit_code == 1
    assert "--resume" in result.output


def test_runs_last_and_reset(workspace):
    catalogue = Catalogue(workspace / ".starsync" / "starsync.db")
    RunLedger(catalogue).log_run("list", None, "sync")

    runner = CliRunner()
    last = runner.invoke(main, ["runs", "last"])
    assert "No scoring runs yet" in last.output
    assert "Last list sync: never" not in last.output

    reset = runner.invoke(main, ["runs", "reset", "list", "sync"])
    assert reset.exit_code == 0
    assert "Removed 1 ledger entries" in reset.output
    assert "Last list sync: never" in runner.invoke(main, ["runs", "last"]).output
