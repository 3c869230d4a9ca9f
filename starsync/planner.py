"""
Membership planning for Starsync.

Turns fresh per-list scores plus a repository's current membership into a
plan of additions, removals and review candidates:

1. Add: lists the repo is not in, scored at or above the add threshold
2. Remove: lists the repo is in, scored below the removal threshold
3. Review: lists scored just below the add threshold (never auto-applied)
4. Final: (current | add) - remove
5. Listless guard: an empty final set blocks the plan unless the best
   review candidate can be promoted as a fallback

Planning is a pure function of its inputs. Plans are recomputed on every
scoring run and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .scorer import ScoreItem


LISTLESS_REASON = "would become listless (no review candidate)"


@dataclass
class Policy:
    """Thresholds and safety switches for membership planning."""

    default_add_threshold: float = 0.7
    add_by_slug: dict[str, float] = field(default_factory=dict)
    # Strict bar used when curation is not respected
    remove_threshold: float = 0.3
    # Lenient bar protecting manual curation from one weak run
    curation_remove_threshold: float = 0.1
    respect_curation: bool = True
    review_band_width: float = 0.4
    # Promote the best review candidate instead of blocking a listless repo
    listless_fallback: bool = True
    preserve: frozenset[str] = frozenset()
    min_stars: int | None = None

    def add_threshold(self, slug: str) -> float:
        return self.add_by_slug.get(slug, self.default_add_threshold)

    @property
    def effective_remove_threshold(self) -> float:
        if self.respect_curation:
            return self.curation_remove_threshold
        return self.remove_threshold


@dataclass(frozen=True)
class FallbackChoice:
    """Review candidate promoted to avoid a listless repository."""
    slug: str
    score: float


@dataclass
class MembershipPlan:
    """Outcome of planning one repository's list membership."""
    add: list[str]
    remove: list[str]
    review: list[str]
    final_planned: list[str]
    changed: bool
    blocked: bool = False
    block_reason: str | None = None
    fallback_used: FallbackChoice | None = None

    @property
    def is_listless(self) -> bool:
        return self.blocked and "listless" in (self.block_reason or "")

    def to_dict(self) -> dict:
        return {
            "add": self.add,
            "remove": self.remove,
            "review": self.review,
            "final_planned": self.final_planned,
            "changed": self.changed,
            "blocked": self.blocked,
            "block_reason": self.block_reason,
            "fallback_used": (
                {"slug": self.fallback_used.slug, "score": self.fallback_used.score}
                if self.fallback_used else None
            ),
        }


def _unique(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def _score_map(scores: Sequence[ScoreItem]) -> dict[str, float]:
    # Last score wins if the model repeated a list
    return {s.list: s.score for s in scores}


def plan_targets(
    current: Sequence[str],
    scores: Sequence[ScoreItem],
    policy: Policy,
) -> tuple[list[str], list[str], list[str], list[str]]:
    """
    Compute the threshold-only part of a plan.

    Returns:
        Tuple of (add, remove, review, planned) where planned is
        (current | add) - remove, before any listless handling.
    """
    score_by_slug = _score_map(scores)
    current_list = _unique(current)
    current_set = set(current_list)
    remove_th = policy.effective_remove_threshold

    add = _unique(
        s.list for s in scores
        if s.list not in current_set and s.score >= policy.add_threshold(s.list)
    )

    # Unscored lists carry no evidence for removal and are kept
    remove = [
        slug for slug in current_list
        if slug not in policy.preserve
        and slug in score_by_slug
        and score_by_slug[slug] < remove_th
    ]

    remove_set = set(remove)
    planned = [slug for slug in current_list if slug not in remove_set]
    planned += [slug for slug in add if slug not in remove_set]
    planned_set = set(planned)

    review = []
    for slug, score in score_by_slug.items():
        if slug in planned_set:
            continue
        add_th = policy.add_threshold(slug)
        lower = max(add_th - policy.review_band_width, 0.0)
        if score > 0 and lower <= score < add_th:
            review.append(slug)

    return add, remove, review, planned


def pick_fallback(
    review: Sequence[str],
    scores: Sequence[ScoreItem],
) -> FallbackChoice | None:
    """
    Choose the review candidate to promote for a listless repository.

    Highest score wins; ties keep the order the model reported the lists in.
    """
    if not review:
        return None
    review_set = set(review)
    score_by_slug = _score_map(scores)
    ordered = _unique(s.list for s in scores if s.list in review_set)
    best = max(ordered, key=lambda slug: score_by_slug[slug])
    return FallbackChoice(slug=best, score=score_by_slug[best])


def plan_membership(
    current: Sequence[str],
    scores: Sequence[ScoreItem],
    policy: Policy | None = None,
    stars: int | None = None,
) -> MembershipPlan:
    """
    Plan list membership for one repository.

    Args:
        current: Slugs of the lists the repository is in now
        scores: Per-list scores from the scorer
        policy: Thresholds and safety switches (defaults to Policy())
        stars: Stargazer count, checked against policy.min_stars

    Returns:
        MembershipPlan; a blocked plan must not be applied
    """
    policy = policy or Policy()
    add, remove, review, planned = plan_targets(current, scores, policy)

    final_planned = list(planned)
    blocked = False
    block_reason: str | None = None
    fallback: FallbackChoice | None = None

    if policy.min_stars is not None and (stars or 0) < policy.min_stars:
        blocked = True
        block_reason = f"safety: stars {stars or 0} < {policy.min_stars}"

    if not blocked and not final_planned:
        if policy.listless_fallback:
            fallback = pick_fallback(review, scores)
        if fallback:
            final_planned = [fallback.slug]
        else:
            blocked = True
            block_reason = LISTLESS_REASON

    changed = set(final_planned) != set(current)

    return MembershipPlan(
        add=add,
        remove=remove,
        review=review,
        final_planned=final_planned,
        changed=changed,
        blocked=blocked,
        block_reason=block_reason,
        fallback_used=fallback,
    )
