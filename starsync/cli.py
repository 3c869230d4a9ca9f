"""
Starsync CLI - Keep GitHub star lists in sync with a local catalogue.

Commands:
    init            - Initialize Starsync in current repository
    lists sync      - Mirror GitHub star lists into the catalogue
    lists show      - Show catalogued lists
    stars unlisted  - Starred repositories that are in no list
    stars prune     - Drop catalogued repositories that are no longer starred
    score batch     - Score top repositories and plan membership
    score one       - Score a single repository
    runs last       - Show the latest scoring run
    runs reset      - Forget ledger entries so an operation runs again
"""

from __future__ import annotations

import functools
import json
import logging
import sys

import click
from dotenv import load_dotenv

from .config import get_repo_root

# Load .env from current directory, then repo root
load_dotenv()
load_dotenv(get_repo_root() / ".env")

from . import __version__
from .applier import Applier
from .catalogue import Catalogue
from .config import CONFIG_FILENAME, StarsyncConfig, ensure_starsync_dir
from .errors import ConfigError, StarsyncError
from .github import GitHubGraphQLClient
from .ingest import prune_unstarred, sync_lists, sync_unlisted
from .ledger import RunLedger
from .reconcile import Reconciler
from .runner import BatchReport, BatchRunner, parse_resume
from .scorer import get_llm_client
from .walkers import RemoteListWalker, RemoteStarWalker


SAMPLE_CONFIG = """\
# Starsync Configuration

# GitHub GraphQL settings (token is read from GITHUB_TOKEN)
github:
  lists_page_size: 20
  items_page_size: 25   # 10-100
  stars_page_size: 25   # 10-100

# LLM configuration for list scoring
# API keys are read from environment (OPENAI_API_KEY, ANTHROPIC_API_KEY, etc.)
# See: https://docs.litellm.ai/docs/providers
llm:
  enabled: true
  model: gpt-4o          # LiteLLM model string
  # model: ollama/llama3 # Local Ollama
  temperature: 0.2
  max_tokens: 1500

# Membership planning
policy:
  default_add_threshold: 0.7
  add_by_slug:
    ai: 0.8
    learning: 0.75
  remove_threshold: 0.3            # used when respect_curation is false
  curation_remove_threshold: 0.1   # used when respect_curation is true
  respect_curation: true
  review_band_width: 0.4
  listless_fallback: true          # promote best review list instead of blocking
  preserve:
    - valuable-resources
    - interesting-to-explore
  # min_stars: 50

scoring:
  batch_limit: 10

paths:
  # db_path: .starsync/starsync.db
  listless_dir: exports   # overridden by LISTLESS_OUT_DIR
"""


def handle_errors(fn):
    """Report Starsync errors and exit non-zero."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ConfigError as e:
            click.echo(f"Configuration error: {e}", err=True)
            sys.exit(1)
        except StarsyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    return wrapper


def _load() -> tuple[StarsyncConfig, Catalogue]:
    config = StarsyncConfig.load(get_repo_root())
    return config, Catalogue(config.get_db_path())


def _client(config: StarsyncConfig) -> GitHubGraphQLClient:
    return GitHubGraphQLClient(
        config.github.require_token(),
        endpoint=config.github.endpoint,
        timeout=config.github.timeout,
    )


def _list_walker(config: StarsyncConfig, client) -> RemoteListWalker:
    return RemoteListWalker(
        client,
        lists_page_size=config.github.lists_page_size,
        items_page_size=config.github.items_page_size,
    )


def _echo_report(report: BatchReport) -> None:
    for outcome in report.outcomes:
        line = f"  {outcome.status:<8} {outcome.name_with_owner}"
        plan = outcome.plan
        if plan is not None:
            bits = []
            if plan.add:
                bits.append("+" + ",".join(plan.add))
            if plan.remove:
                bits.append("-" + ",".join(plan.remove))
            if plan.review:
                bits.append("?" + ",".join(plan.review))
            if plan.fallback_used:
                bits.append(f"fallback={plan.fallback_used.slug}")
            if plan.block_reason:
                bits.append(f"({plan.block_reason})")
            if bits:
                line += "  " + " ".join(bits)
        if outcome.error:
            line += f"  error: {outcome.error}"
        click.echo(line)

    counts = ", ".join(f"{n} {status}" for status, n in report.counts().items() if n)
    mode = "dry run" if report.dry else f"run {report.run_id}"
    click.echo(f"\n{mode}: {counts or 'nothing to do'}")


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def main(verbose: bool):
    """Starsync - Keep GitHub star lists in sync with a local catalogue."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize Starsync in the current repository."""
    repo_root = get_repo_root()
    click.echo(f"Initializing Starsync in: {repo_root}")

    starsync_dir = ensure_starsync_dir(repo_root)
    click.echo(f"  Created: {starsync_dir}")

    catalogue = Catalogue(StarsyncConfig.load(repo_root).get_db_path())
    click.echo(f"  Database: {catalogue.db_path}")

    config_path = repo_root / CONFIG_FILENAME
    if not config_path.exists() or force:
        config_path.write_text(SAMPLE_CONFIG)
        click.echo(f"  Created: {config_path}")
    else:
        click.echo(f"  Skipped: {config_path} (already exists)")

    gitignore_path = repo_root / ".gitignore"
    gitignore_entry = "\n# Starsync\n.starsync/\n.env\n"
    if gitignore_path.exists():
        content = gitignore_path.read_text()
        if ".starsync" not in content:
            with open(gitignore_path, "a") as f:
                f.write(gitignore_entry)
            click.echo(f"  Updated: {gitignore_path}")
    else:
        gitignore_path.write_text(gitignore_entry)
        click.echo(f"  Created: {gitignore_path}")

    click.echo("\nStarsync initialized! Next steps:")
    click.echo("  1. Set GITHUB_TOKEN and your LLM provider key")
    click.echo("  2. Run: starsync lists sync")
    click.echo("  3. Run: starsync score batch")


@main.group()
def lists():
    """Star list commands."""


@lists.command("sync")
@handle_errors
def lists_sync():
    """Mirror GitHub star lists and their repositories into the catalogue."""
    config, catalogue = _load()
    walker = _list_walker(config, _client(config))
    totals = sync_lists(walker, catalogue, RunLedger(catalogue))
    click.echo(f"Synced {totals.lists} lists ({totals.repos} memberships)")
    if totals.removed:
        click.echo(f"Removed {len(totals.removed)} lists gone from GitHub: {', '.join(totals.removed)}")


@lists.command("show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def lists_show(as_json: bool):
    """Show catalogued lists with member counts."""
    _, catalogue = _load()
    rows = catalogue.list_counts()
    if as_json:
        click.echo(json.dumps([
            {"slug": row.slug, "name": row.name, "remote_id": row.remote_id, "members": members}
            for row, members in rows
        ], indent=2))
        return
    if not rows:
        click.echo("No lists yet. Run: starsync lists sync")
        return
    for row, members in rows:
        marker = "" if row.remote_id else "  (no GitHub id)"
        click.echo(f"  {row.slug:<28} {members:>5}  {row.name}{marker}")


@main.group()
def stars():
    """Starred repository commands."""


@stars.command("unlisted")
@click.option("--store", is_flag=True, help="Save unlisted repos to the catalogue for scoring")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@handle_errors
def stars_unlisted(store: bool, as_json: bool):
    """List starred repositories that are in no star list."""
    config, catalogue = _load()
    walker = RemoteStarWalker(_client(config), page_size=config.github.stars_page_size)
    reconciler = Reconciler(catalogue, walker)

    if store:
        count = sync_unlisted(reconciler, catalogue, ledger=RunLedger(catalogue))
        click.echo(f"Stored {count} unlisted repositories")
        return

    unlisted = reconciler.get_unlisted_stars()
    if as_json:
        click.echo(json.dumps([
            {"name_with_owner": r.name_with_owner, "url": r.url, "stars": r.stars}
            for r in unlisted
        ], indent=2))
        return
    for repo in unlisted:
        click.echo(f"  {repo.name_with_owner}  ★{repo.stars}")
    click.echo(f"\n{len(unlisted)} unlisted")


@stars.command("prune")
@handle_errors
def stars_prune():
    """Delete catalogued repositories that are no longer starred and in no list."""
    config, catalogue = _load()
    walker = RemoteStarWalker(_client(config), page_size=config.github.stars_page_size)
    removed = prune_unstarred(walker, catalogue, ledger=RunLedger(catalogue))
    for name in removed:
        click.echo(f"  {name}")
    click.echo(f"Pruned {len(removed)} unstarred repositories")


@main.group()
def score():
    """Score repositories against lists."""


def _runner(config: StarsyncConfig, catalogue: Catalogue, apply: bool) -> BatchRunner:
    runner = BatchRunner(
        catalogue,
        get_llm_client(config.llm),
        config.policy,
        config.get_listless_dir(),
        ledger=RunLedger(catalogue),
    )
    if apply:
        # Local configuration must be usable before GitHub is contacted
        runner.preflight()
        client = _client(config)
        applier = Applier(catalogue, client)
        filled = applier.ensure_list_remote_ids(_list_walker(config, client))
        if filled:
            click.echo(f"Resolved {filled} GitHub list ids")
        runner.applier = applier
    return runner


@score.command("batch")
@click.option("--limit", default=None, type=int, help="Max repos to score")
@click.option("--list", "list_slug", default=None, help="Only repos in this list (slug)")
@click.option("--apply", is_flag=True, help="Save scores and apply changes to GitHub")
@click.option("--resume", default=None, help="'last' or a run id to continue")
@click.option("--notes", default=None, help="Notes stored on a new run")
@handle_errors
def score_batch(limit: int | None, list_slug: str | None, apply: bool, resume: str | None, notes: str | None):
    """Score the top repositories and plan their list membership.

    Without --apply this is a dry run: nothing is saved and GitHub is untouched.
    """
    config, catalogue = _load()
    resume_value = parse_resume(resume)
    runner = _runner(config, catalogue, apply)
    report = runner.run(
        limit or config.scoring.batch_limit,
        list_slug=list_slug,
        resume=resume_value,
        notes=notes,
    )
    _echo_report(report)


@score.command("one")
@click.argument("name")
@click.option("--apply", is_flag=True, help="Save scores and apply changes to GitHub")
@handle_errors
def score_one(name: str, apply: bool):
    """Score one repository (owner/name)."""
    config, catalogue = _load()
    if catalogue.get_repo_by_name(name) is None:
        click.echo(f"repo not found: {name}", err=True)
        return
    runner = _runner(config, catalogue, apply)
    try:
        report = runner.score_one(name)
    except LookupError as e:
        click.echo(str(e), err=True)
        return
    _echo_report(report)


@main.group()
def runs():
    """Scoring runs and the operation ledger."""


@runs.command("last")
def runs_last():
    """Show the latest scoring run and list sync."""
    _, catalogue = _load()
    run_id = catalogue.last_run_id()
    if run_id is None:
        click.echo("No scoring runs yet")
    else:
        run = catalogue.get_run(run_id)
        click.echo(f"Run {run.id} at {run.created_at}: {catalogue.count_scores(run.id)} scores")
        if run.notes:
            click.echo(f"  Notes: {run.notes}")
    synced = RunLedger(catalogue).latest_run_at("list", None, "sync")
    click.echo(f"Last list sync: {synced or 'never'}")


@runs.command("reset")
@click.argument("subject")
@click.argument("flag")
@click.option("--row-id", default=None, help="Row id (omit for subject-wide entries)")
def runs_reset(subject: str, flag: str, row_id: str | None):
    """Forget ledger entries for SUBJECT/FLAG so the operation runs again."""
    _, catalogue = _load()
    removed = RunLedger(catalogue).reset_run(subject, row_id, flag)
    click.echo(f"Removed {removed} ledger entries")


if __name__ == "__main__":
    main()
