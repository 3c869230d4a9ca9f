"""
LLM scoring adapter for Starsync using LiteLLM.

Asks a language model to rate how well one repository fits each star list:
- Scores are independent floats in [0, 1], one per list
- Model output is repaired where possible (slug spelling, clamping)
- Unparsable output falls back to the verbatim text for diagnosis

LiteLLM supports 100+ providers (OpenAI, Anthropic, Gemini, Ollama, ...).
See: https://docs.litellm.ai/docs/providers
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Sequence, Union

logger = logging.getLogger(__name__)

# Suppress LiteLLM's verbose logging
logging.getLogger("LiteLLM").setLevel(logging.WARNING)


@dataclass(frozen=True)
class ListDef:
    """A list the model can score against."""
    slug: str
    name: str
    description: str | None = None


@dataclass(frozen=True)
class RepoFacts:
    """Repository facts shown to the model."""
    name_with_owner: str
    url: str
    summary: str | None = None
    description: str | None = None
    primary_language: str | None = None
    topics: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ScoreItem:
    """Model's score for one list."""
    list: str
    score: float
    why: str | None = None


# Adapter-level reply: parsed JSON or the raw text

@dataclass(frozen=True)
class ParsedReply:
    data: Any


@dataclass(frozen=True)
class RawText:
    """Model output that could not be used; kept verbatim for diagnosis."""
    text: str


ModelReply = Union[ParsedReply, RawText]


@dataclass(frozen=True)
class Structured:
    """Usable per-list scores."""
    scores: list[ScoreItem]


ScoreResult = Union[Structured, RawText]


SYSTEM_PROMPT = "You are a neutral curator for GitHub repositories."

FEWSHOT = """\
Examples (format matches schema):

Repo:
"CLI that cross-posts your blog posts to Dev.to, Hashnode and Medium; manages canonical URLs; adds UTM; syncs updates."

Expected JSON:
{
  "scores": [
    { "list": "self-marketing", "score": 0.8, "why": "Publishing & cross-posting are personal promotion workflows." },
    { "list": "productivity", "score": 0.4, "why": "CLI automation helps, but promotion is the primary goal." },
    { "list": "learning", "score": 0.0 }
  ]
}

Repo:
"Task-runner that automates image optimisation and builds; speeds up local dev commands; no publishing features."

Expected JSON:
{
  "scores": [
    { "list": "productivity", "score": 0.9, "why": "Developer time-saver for day-to-day workflows." },
    { "list": "self-marketing", "score": 0.1, "why": "Not focused on promoting an individual." },
    { "list": "learning", "score": 0.0 }
  ]
}"""


def build_schema(slugs: Sequence[str]) -> dict[str, Any]:
    """JSON schema hint describing the expected reply."""
    return {
        "type": "object",
        "required": ["scores"],
        "properties": {
            "scores": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["list", "score"],
                    "properties": {
                        "list": {"type": "string", "enum": list(slugs)},
                        "score": {"type": "number", "minimum": 0, "maximum": 1},
                        "why": {"type": "string"},
                    },
                },
            },
        },
    }


def _lists_block(lists: Sequence[ListDef]) -> str:
    return "\n".join(
        f"- {l.name} ({l.slug}) - {l.description or ''}".strip() for l in lists
    )


def _repo_block(facts: RepoFacts) -> str:
    bits = [
        f"Name: {facts.name_with_owner}",
        f"URL: {facts.url}",
        f"Primary language: {facts.primary_language}" if facts.primary_language else "",
        f"Topics: {', '.join(facts.topics)}" if facts.topics else "",
        f"Description: {facts.description}" if facts.description else "",
        f"Summary: {facts.summary}" if facts.summary else "",
    ]
    return "\n".join(b for b in bits if b)


def build_scoring_prompt(lists: Sequence[ListDef], facts: RepoFacts) -> str:
    """Build the user prompt asking for one score per list."""
    return f"""\
Your task is to score the repository against EACH list from 0 to 1, where 1 = perfect fit. \
Multiple lists may apply. Provide a reason why for repos that meet the criteria.
If the repo does not or barely meets a list's criteria, its score MUST be < 0.5.

Lists:
{_lists_block(lists)}

{FEWSHOT}

Repository to score:
{_repo_block(facts)}
"""


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def validate_scores(data: Any, slugs: Sequence[str]) -> list[ScoreItem]:
    """
    Keep the usable items of a model reply.

    Unknown lists and non-numeric scores are dropped, "Some Name" style
    list names are repaired to "some-name", scores are clamped to [0, 1].
    """
    valid = set(slugs)
    items = data.get("scores") if isinstance(data, dict) else None
    if not isinstance(items, list):
        return []

    out: list[ScoreItem] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        slug = item.get("list").strip() if isinstance(item.get("list"), str) else ""
        if slug not in valid:
            guess = re.sub(r"\s+", "-", slug.lower())
            if guess in valid:
                slug = guess
        if slug not in valid:
            continue
        score = _to_float(item.get("score"))
        if score is None:
            continue
        why = item.get("why")
        why = re.sub(r"\s+", " ", why.strip()) if isinstance(why, str) else None
        out.append(ScoreItem(list=slug, score=min(max(score, 0.0), 1.0), why=why or None))
    return out


def parse_reply(content: str) -> ModelReply:
    """Parse model output as JSON, unwrapping ``` fences; RawText on failure."""
    text = content or ""
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0]
    elif "```" in text:
        text = text.split("```")[1].split("```")[0]
    try:
        return ParsedReply(json.loads(text.strip()))
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning(f"Failed to parse LLM response: {e}")
        return RawText(content or "")


class LLMClient:
    """LiteLLM-based scoring client."""

    def __init__(
        self,
        model: str = "gpt-4o",
        temperature: float = 0.2,
        max_tokens: int = 1500,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._litellm = None

    def _get_litellm(self):
        """Lazy import LiteLLM."""
        if self._litellm is None:
            import litellm
            self._litellm = litellm
        return self._litellm

    @property
    def enabled(self) -> bool:
        """Check the API key for the configured provider is present."""
        model_lower = self.model.lower()
        if model_lower.startswith(("gpt-", "o1", "o3", "openai/")):
            return bool(os.environ.get("OPENAI_API_KEY"))
        if model_lower.startswith(("claude-", "anthropic/")):
            return bool(os.environ.get("ANTHROPIC_API_KEY"))
        if model_lower.startswith(("gemini-", "gemini/")):
            return bool(os.environ.get("GOOGLE_API_KEY") or os.environ.get("GEMINI_API_KEY"))
        return True

    def score(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: dict[str, Any] | None = None,
        auth_header: str | None = None,
    ) -> ModelReply:
        """
        Send one prompt pair and parse the reply.

        Args:
            system_prompt: System message
            user_prompt: User message
            schema: Optional JSON schema hint (dropped by providers without support)
            auth_header: Optional Authorization header for self-hosted gateways

        Returns:
            ParsedReply with the decoded JSON, or RawText with the verbatim output
        """
        litellm = self._get_litellm()
        kwargs: dict[str, Any] = {}
        if schema is not None:
            kwargs["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "list_scores", "schema": schema},
            }
        if auth_header:
            kwargs["extra_headers"] = {"Authorization": auth_header}

        response = litellm.completion(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            drop_params=True,
            **kwargs,
        )
        content = response.choices[0].message.content or ""
        return parse_reply(content)


class NoOpLLM:
    """No-op LLM for when scoring is disabled."""

    @property
    def enabled(self) -> bool:
        return False

    def score(self, *args, **kwargs) -> ModelReply:
        return RawText("")


def get_llm_client(config: "LLMConfig" = None) -> LLMClient | NoOpLLM:  # type: ignore
    """Get the configured LLM client."""
    if config is None or not config.enabled:
        return NoOpLLM()

    return LLMClient(
        model=config.model,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
    )


def score_repo_against_lists(
    llm: LLMClient | NoOpLLM,
    lists: Sequence[ListDef],
    facts: RepoFacts,
    auth_header: str | None = None,
) -> ScoreResult:
    """
    Score one repository against every list.

    Returns:
        Structured with the usable scores, or RawText when the model
        reply could not be parsed or held no usable score
    """
    slugs = [l.slug for l in lists]
    reply = llm.score(
        SYSTEM_PROMPT,
        build_scoring_prompt(lists, facts),
        schema=build_schema(slugs),
        auth_header=auth_header,
    )
    if isinstance(reply, RawText):
        return reply

    scores = validate_scores(reply.data, slugs)
    if not scores:
        logger.warning("LLM reply for %s held no usable scores", facts.name_with_owner)
        return RawText(json.dumps(reply.data))
    return Structured(scores)
