"""
Batch scoring loop.

For each selected repository, strictly one after another:
score -> save scores (unless dry) -> plan -> apply (when enabled and changed).

A failure on one repository is recorded in its RepoOutcome and the loop
moves on; only configuration problems abort the batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from .applier import Applier, ApplyOutcome
from .catalogue import Catalogue, RepoRow
from .errors import ConfigError
from .ledger import RunLedger
from .listless import ListlessRow, write_listless_row
from .planner import MembershipPlan, Policy, plan_membership
from .scorer import ListDef, RawText, ScoreItem, score_repo_against_lists

logger = logging.getLogger(__name__)

Resume = Union[None, str, int]

STATUSES = ("scored", "blocked", "applied", "skipped", "failed")


def parse_resume(value: str | None) -> Resume:
    """Parse a --resume value: empty, "last" or a run id."""
    if value is None or value == "":
        return None
    if value == "last":
        return "last"
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"--resume expects 'last' or a run id, got {value!r}")


def resolve_run_context(
    catalogue: Catalogue,
    dry: bool,
    notes: str | None = None,
    resume: Resume = None,
) -> tuple[int | None, int | None]:
    """
    Decide which run scores are saved under and which run filters selection.

    Returns:
        Tuple of (run_id, filter_run_id); run_id is None for dry runs and
        no run row is ever created for them.
    """
    if resume == "last":
        last = catalogue.last_run_id()
        if dry:
            return None, last
        if last is not None:
            return last, last
        created = catalogue.create_run(notes)
        return created, created

    if isinstance(resume, int):
        if not catalogue.run_exists(resume):
            raise ConfigError(f"--resume {resume} does not exist")
        return (None, resume) if dry else (resume, resume)

    if dry:
        return None, None
    created = catalogue.create_run(notes)
    return created, created


@dataclass
class RepoOutcome:
    """Result of processing one repository."""
    name_with_owner: str
    status: str
    scores: list[ScoreItem] = field(default_factory=list)
    plan: MembershipPlan | None = None
    applied: ApplyOutcome | None = None
    error: str | None = None
    raw_text: str | None = None


@dataclass
class BatchReport:
    run_id: int | None
    outcomes: list[RepoOutcome] = field(default_factory=list)

    @property
    def dry(self) -> bool:
        return self.run_id is None

    def add(self, outcome: RepoOutcome) -> None:
        self.outcomes.append(outcome)

    def counts(self) -> dict[str, int]:
        counts = {status: 0 for status in STATUSES}
        for outcome in self.outcomes:
            counts[outcome.status] = counts.get(outcome.status, 0) + 1
        return counts


class BatchRunner:
    """Scores repositories and plans (optionally applies) their membership."""

    def __init__(
        self,
        catalogue: Catalogue,
        llm,
        policy: Policy,
        listless_dir: Path,
        applier: Applier | None = None,
        ledger: RunLedger | None = None,
        auth_header: str | None = None,
    ):
        self.catalogue = catalogue
        self.llm = llm
        self.policy = policy
        self.listless_dir = listless_dir
        self.applier = applier
        self.ledger = ledger
        self.auth_header = auth_header

    @property
    def dry(self) -> bool:
        return self.applier is None

    def preflight(self) -> list[ListDef]:
        """
        Check the local configuration a batch needs and return the lists to score.

        Raises:
            ConfigError: scoring is disabled or the catalogue has no lists
        """
        if not self.llm.enabled:
            raise ConfigError("LLM scoring is not configured (set llm.enabled and the provider API key)")
        lists = self.catalogue.list_defs(exclude=self.policy.preserve)
        if not lists:
            raise ConfigError("No lists to score against; run `starsync lists sync` first")
        return lists

    def run(
        self,
        limit: int,
        list_slug: str | None = None,
        resume: Resume = None,
        notes: str | None = None,
    ) -> BatchReport:
        """Score the top `limit` repositories, optionally within one list."""
        lists = self.preflight()
        run_id, filter_run_id = resolve_run_context(self.catalogue, self.dry, notes, resume)
        if run_id is not None:
            logger.info("model_run id=%d", run_id)
        else:
            logger.info("dry run (no model_run row created)")

        report = BatchReport(run_id=run_id)
        repos = self.catalogue.select_repos_to_score(limit, list_slug, filter_run_id)
        if not repos:
            logger.info("No repos matched the criteria.")
        for idx, repo in enumerate(repos, 1):
            logger.info("[%d/%d] %s", idx, len(repos), repo.name_with_owner)
            report.add(self.process(repo, lists, run_id))
        return report

    def score_one(self, name_with_owner: str, notes: str | None = None) -> BatchReport:
        repo = self.catalogue.get_repo_by_name(name_with_owner)
        if repo is None:
            raise LookupError(f"repo not found: {name_with_owner}")
        lists = self.preflight()
        run_id, _ = resolve_run_context(self.catalogue, self.dry, notes)
        report = BatchReport(run_id=run_id)
        report.add(self.process(repo, lists, run_id))
        return report

    def process(self, repo: RepoRow, lists: list[ListDef], run_id: int | None) -> RepoOutcome:
        """Score, plan and maybe apply one repository; never raises."""
        name = repo.name_with_owner
        try:
            result = score_repo_against_lists(self.llm, lists, repo.to_facts(), self.auth_header)
        except Exception as e:
            logger.warning("Scoring failed for %s: %s", name, e)
            return RepoOutcome(name, "failed", error=str(e))

        if isinstance(result, RawText):
            logger.warning("No usable scores for %s", name)
            return RepoOutcome(name, "skipped", raw_text=result.text)

        scores = result.scores
        plan: MembershipPlan | None = None
        try:
            if run_id is not None:
                self.catalogue.save_scores(run_id, repo.id, scores)
                if self.ledger is not None:
                    self.ledger.log_run("repo", repo.id, "score", {"run_id": run_id})

            current = self.catalogue.current_membership(repo.id)
            plan = plan_membership(current, scores, self.policy, stars=repo.stars)
            if plan.fallback_used:
                logger.warning(
                    "fallback: using review '%s' (%.2f) to avoid listless",
                    plan.fallback_used.slug, plan.fallback_used.score,
                )

            if plan.blocked:
                if plan.is_listless:
                    write_listless_row(self.listless_dir, ListlessRow.build(
                        name, repo.url, current, scores, plan.block_reason or "blocked",
                    ))
                    logger.warning("%s would become listless; logged and skipped apply", name)
                else:
                    logger.info("%s: %s; not applying", name, plan.block_reason)
                return RepoOutcome(name, "blocked", scores=scores, plan=plan)

            if self.applier is None or run_id is None or not plan.changed:
                return RepoOutcome(name, "scored", scores=scores, plan=plan)

            applied = self.applier.apply(repo, plan.final_planned)
            if self.ledger is not None:
                self.ledger.log_run("repo", repo.id, "apply", {"run_id": run_id, "lists": plan.final_planned})
            return RepoOutcome(name, "applied", scores=scores, plan=plan, applied=applied)
        except Exception as e:
            logger.warning("Processing failed for %s: %s", name, e)
            return RepoOutcome(name, "failed", scores=scores, plan=plan, error=str(e))
