from __future__ import annotations

import itertools

from starsync.planner import LISTLESS_REASON, Policy, pick_fallback, plan_membership, plan_targets
from starsync.scorer import ScoreItem


def _scores(**values: float) -> list[ScoreItem]:
    return [ScoreItem(slug.replace("_", "-"), score) for slug, score in values.items()]


def test_curation_threshold_is_strict_less_than():
    plan = plan_membership(["beta"], _scores(alpha=0.9, beta=0.1), Policy(curation_remove_threshold=0.1))

    assert plan.add == ["alpha"]
    assert plan.remove == []
    assert set(plan.final_planned) == {"alpha", "beta"}
    assert plan.changed is True
    assert plan.blocked is False


def test_higher_curation_threshold_removes():
    plan = plan_membership(["beta"], _scores(alpha=0.9, beta=0.1), Policy(curation_remove_threshold=0.2))

    assert plan.remove == ["beta"]
    assert plan.final_planned == ["alpha"]


def test_listless_without_review_candidate_is_blocked():
    # alpha misses the add threshold and sits below the review band
    plan = plan_membership(["beta"], _scores(alpha=0.2, beta=0.1), Policy(curation_remove_threshold=0.2))

    assert plan.final_planned == []
    assert plan.blocked is True
    assert "listless" in plan.block_reason
    assert plan.block_reason == LISTLESS_REASON
    assert plan.is_listless
    assert plan.fallback_used is None


def test_listless_fallback_promotes_best_review_candidate():
    policy = Policy(curation_remove_threshold=0.2)
    plan = plan_membership(["beta"], _scores(alpha=0.5, gamma=0.6, beta=0.1), policy)

    assert plan.review == ["alpha", "gamma"]
    assert plan.fallback_used is not None
    assert plan.fallback_used.slug == "gamma"
    assert plan.final_planned == ["gamma"]
    assert plan.blocked is False
    assert plan.changed is True


def test_listless_fallback_can_be_disabled():
    policy = Policy(curation_remove_threshold=0.2, listless_fallback=False)
    plan = plan_membership(["beta"], _scores(alpha=0.5, beta=0.1), policy)

    assert plan.review == ["alpha"]
    assert plan.blocked is True
    assert plan.final_planned == []


def test_fallback_tie_keeps_model_order():
    # Documented assumption: equal scores resolve to the list the model reported first
    scores = _scores(zeta=0.6, alpha=0.6)
    choice = pick_fallback(["alpha", "zeta"], scores)
    assert choice.slug == "zeta"
    assert choice.score == 0.6
    assert pick_fallback([], scores) is None


def test_empty_scores_and_membership_is_blocked():
    plan = plan_membership([], [])
    assert plan.blocked is True
    assert plan.changed is False


def test_review_band_bounds():
    policy = Policy(default_add_threshold=0.7, review_band_width=0.4)
    _, _, review, _ = plan_targets(["keep"], _scores(a=0.3, b=0.29, c=0.69, d=0.7, e=0.0), policy)

    assert review == ["a", "c"]


def test_review_band_zero_score_excluded_even_when_band_reaches_zero():
    policy = Policy(default_add_threshold=0.3, review_band_width=0.5)
    _, _, review, _ = plan_targets(["keep"], _scores(a=0.0, b=0.1), policy)

    assert review == ["b"]


def test_review_is_never_auto_applied():
    plan = plan_membership(["keep"], _scores(keep=0.9, near=0.65), Policy())

    assert plan.review == ["near"]
    assert "near" not in plan.final_planned
    assert plan.changed is False


def test_per_slug_add_threshold():
    policy = Policy(add_by_slug={"ai": 0.8})
    plan = plan_membership(["keep"], _scores(ai=0.75, learning=0.75), policy)

    assert plan.add == ["learning"]
    assert plan.review == ["ai"]


def test_non_curation_mode_uses_strict_threshold():
    scores = _scores(a=0.25, b=0.9)
    lenient = plan_membership(["a", "b"], scores, Policy(respect_curation=True))
    strict = plan_membership(["a", "b"], scores, Policy(respect_curation=False, remove_threshold=0.3))

    assert lenient.remove == []
    assert strict.remove == ["a"]


def test_preserved_lists_are_never_removed():
    policy = Policy(preserve=frozenset({"valuable-resources"}), curation_remove_threshold=0.5)
    plan = plan_membership(["valuable-resources", "ai"], _scores(valuable_resources=0.0, ai=0.1), policy)

    assert plan.remove == ["ai"]
    assert plan.final_planned == ["valuable-resources"]
    assert plan.blocked is False


def test_unscored_current_lists_are_kept():
    plan = plan_membership(["manual", "ai"], _scores(ai=0.0), Policy(curation_remove_threshold=0.1))

    assert plan.remove == ["ai"]
    assert plan.final_planned == ["manual"]


def test_min_stars_blocks():
    policy = Policy(min_stars=50)
    plan = plan_membership([], _scores(ai=0.95), policy, stars=10)

    assert plan.blocked is True
    assert plan.block_reason == "safety: stars 10 < 50"
    assert not plan.is_listless

    assert plan_membership([], _scores(ai=0.95), policy, stars=50).blocked is False


def test_unchanged_plan():
    plan = plan_membership(["ai"], _scores(ai=0.9), Policy())
    assert plan.add == []
    assert plan.changed is False
    assert plan.to_dict()["final_planned"] == ["ai"]


def test_empty_final_plan_is_always_blocked():
    values = [0.0, 0.05, 0.1, 0.3, 0.5, 0.69, 0.7, 1.0]
    policies = [
        Policy(curation_remove_threshold=c, listless_fallback=f, respect_curation=r)
        for c, f, r in itertools.product([0.0, 0.1, 0.5, 1.0], [True, False], [True, False])
    ]
    for policy in policies:
        for a, b in itertools.product(values, repeat=2):
            for current in ([], ["a"], ["a", "b"]):
                plan = plan_membership(current, _scores(a=a, b=b), policy)
                if not plan.final_planned:
                    assert plan.blocked, (policy, a, b, current)


def test_raising_curation_threshold_never_shrinks_remove_set():
    scores = _scores(a=0.05, b=0.15, c=0.35, d=0.6, e=0.95)
    current = ["a", "b", "c", "d", "e"]
    previous: set[str] = set()
    for threshold in [0.0, 0.05, 0.1, 0.2, 0.4, 0.7, 1.0]:
        plan = plan_membership(current, scores, Policy(curation_remove_threshold=threshold))
        assert previous <= set(plan.remove)
        previous = set(plan.remove)
    assert previous == set(current)
