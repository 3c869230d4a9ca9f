"""
Configuration management for Starsync.

Loads and validates starsync.yml:
- github: GraphQL endpoint and page sizes
- llm: LiteLLM model settings for list scoring
- policy: membership planning thresholds
- scoring: batch size
- paths: catalogue database and listless export directory

Secrets come from the environment (GITHUB_TOKEN, OPENAI_API_KEY, ...).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .planner import Policy


CONFIG_FILENAME = "starsync.yml"
GITHUB_GRAPHQL_ENDPOINT = "https://api.github.com/graphql"
MIN_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

# Personal lists that are never scored or pruned
DEFAULT_PRESERVE = ("valuable-resources", "interesting-to-explore")


def clamp_page_size(value: Any, default: int) -> int:
    try:
        size = int(value)
    except (TypeError, ValueError):
        size = default
    return max(MIN_PAGE_SIZE, min(MAX_PAGE_SIZE, size))


@dataclass
class GitHubConfig:
    """GitHub GraphQL settings."""

    endpoint: str = GITHUB_GRAPHQL_ENDPOINT
    lists_page_size: int = 20
    items_page_size: int = 25
    stars_page_size: int = 25
    timeout: float = 30.0

    @property
    def token(self) -> str:
        return os.environ.get("GITHUB_TOKEN", "").strip()

    def require_token(self) -> str:
        """Return the token or raise ConfigError before any remote call."""
        token = self.token
        if not token:
            raise ConfigError.missing_token()
        return token


@dataclass
class LLMConfig:
    """LLM configuration using LiteLLM."""

    enabled: bool = False
    model: str = "gpt-4o"
    temperature: float = 0.2
    max_tokens: int = 1500


@dataclass
class ScoringConfig:
    """Batch scoring settings."""

    batch_limit: int = 10


@dataclass
class PathsConfig:
    """Local file locations (relative paths resolve against the repo root)."""

    db_path: str | None = None
    listless_dir: str = "exports"


@dataclass
class StarsyncConfig:
    """Complete Starsync configuration."""

    github: GitHubConfig = field(default_factory=GitHubConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    policy: Policy = field(default_factory=lambda: Policy(preserve=frozenset(DEFAULT_PRESERVE)))
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    repo_root: Path | None = None

    def _resolve(self, raw: str) -> Path:
        path = Path(raw).expanduser()
        if not path.is_absolute():
            path = (self.repo_root or get_repo_root()) / path
        return path.resolve()

    def get_db_path(self) -> Path:
        if self.paths.db_path:
            return self._resolve(self.paths.db_path)
        return get_starsync_dir(self.repo_root) / "starsync.db"

    def get_listless_dir(self) -> Path:
        return self._resolve(os.environ.get("LISTLESS_OUT_DIR") or self.paths.listless_dir)

    @classmethod
    def load(cls, repo_root: Path) -> "StarsyncConfig":
        """Load configuration from repo root directory."""
        config = cls(repo_root=repo_root.resolve())

        config_path = repo_root / CONFIG_FILENAME
        if config_path.exists():
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ConfigError(f"{config_path}: expected a mapping at top level")
            config = cls._parse_main_config(data, repo_root=repo_root.resolve())

        return config

    @staticmethod
    def _parse_policy(data: dict[str, Any]) -> Policy:
        defaults = Policy()
        add_by_slug = data.get("add_by_slug", {}) or {}
        if not isinstance(add_by_slug, dict):
            raise ConfigError("policy.add_by_slug must be a mapping of slug -> threshold")
        min_stars = data.get("min_stars")
        return Policy(
            default_add_threshold=float(data.get("default_add_threshold", defaults.default_add_threshold)),
            add_by_slug={str(k): float(v) for k, v in add_by_slug.items()},
            remove_threshold=float(data.get("remove_threshold", defaults.remove_threshold)),
            curation_remove_threshold=float(
                data.get("curation_remove_threshold", defaults.curation_remove_threshold)
            ),
            respect_curation=bool(data.get("respect_curation", defaults.respect_curation)),
            review_band_width=float(data.get("review_band_width", defaults.review_band_width)),
            listless_fallback=bool(data.get("listless_fallback", defaults.listless_fallback)),
            preserve=frozenset(data.get("preserve", DEFAULT_PRESERVE) or ()),
            min_stars=int(min_stars) if min_stars is not None else None,
        )

    @classmethod
    def _parse_main_config(cls, data: dict[str, Any], repo_root: Path) -> "StarsyncConfig":
        config = cls(repo_root=repo_root)

        github_data = data.get("github", {}) or {}
        config.github = GitHubConfig(
            endpoint=github_data.get("endpoint", GITHUB_GRAPHQL_ENDPOINT),
            lists_page_size=clamp_page_size(github_data.get("lists_page_size", 20), 20),
            items_page_size=clamp_page_size(github_data.get("items_page_size", 25), 25),
            stars_page_size=clamp_page_size(github_data.get("stars_page_size", 25), 25),
            timeout=float(github_data.get("timeout", 30.0)),
        )

        llm_data = data.get("llm", {}) or {}
        config.llm = LLMConfig(
            enabled=llm_data.get("enabled", False),
            model=llm_data.get("model", "gpt-4o"),
            temperature=llm_data.get("temperature", 0.2),
            max_tokens=llm_data.get("max_tokens", 1500),
        )

        config.policy = cls._parse_policy(data.get("policy", {}) or {})

        scoring_data = data.get("scoring", {}) or {}
        config.scoring = ScoringConfig(
            batch_limit=max(1, int(scoring_data.get("batch_limit", 10))),
        )

        paths_data = data.get("paths", {}) or {}
        config.paths = PathsConfig(
            db_path=paths_data.get("db_path"),
            listless_dir=paths_data.get("listless_dir", "exports"),
        )

        return config


def get_repo_root() -> Path:
    """Find the repository root (directory containing .git)."""

    current = Path.cwd()
    while current != current.parent:
        if (current / ".git").exists():
            return current
        current = current.parent
    return Path.cwd()


def get_starsync_dir(repo_root: Path | None = None) -> Path:
    """Get the .starsync directory path."""

    if repo_root is None:
        repo_root = get_repo_root()
    return repo_root / ".starsync"


def ensure_starsync_dir(repo_root: Path | None = None) -> Path:
    """Ensure .starsync directory exists and return its path."""

    starsync_dir = get_starsync_dir(repo_root)
    starsync_dir.mkdir(parents=True, exist_ok=True)
    return starsync_dir
