"""
Error taxonomy for Starsync.

- TransportError: a remote call failed (no retry at this layer)
- ConfigError: missing credentials or model configuration
- ApplyError: applying a plan to one repository failed
- AbortedError: a paginated walk was cancelled between pages

Model output that cannot be parsed is not an error; see scorer.RawText.
"""

from __future__ import annotations


class StarsyncError(Exception):
    """Base class for Starsync errors."""


class TransportError(StarsyncError):
    """Error talking to the GitHub GraphQL API."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @classmethod
    def http_error(cls, status_code: int, body: str = "") -> TransportError:
        return cls(f"GitHub GraphQL HTTP {status_code}: {body}".rstrip(": "), status_code)

    @classmethod
    def graphql_errors(cls, errors: list[dict]) -> TransportError:
        messages = "; ".join(str(e.get("message", e)) for e in errors)
        return cls(f"GitHub GraphQL error: {messages}")

    @classmethod
    def empty_data(cls) -> TransportError:
        return cls("GitHub GraphQL: empty data")

    @classmethod
    def request_failed(cls, exc: Exception) -> TransportError:
        return cls(f"Request failed: {exc}")


class ResponseShapeError(TransportError):
    """Response is missing a field the walker depends on."""

    @classmethod
    def missing(cls, field: str) -> ResponseShapeError:
        return cls(f"GitHub GraphQL response missing expected field: {field}")


class ConfigError(StarsyncError):
    """Configuration required for an operation is missing or invalid."""

    @classmethod
    def missing_token(cls) -> ConfigError:
        return cls("GITHUB_TOKEN not set")


class ApplyError(StarsyncError):
    """Applying a membership plan to a single repository failed."""

    def __init__(self, repo: str, step: str, cause: Exception | str):
        super().__init__(f"{repo}: {step} failed: {cause}")
        self.repo = repo
        self.step = step
        self.cause = cause


class AbortedError(StarsyncError):
    """A paginated walk was cancelled before it finished."""

    def __init__(self, message: str = "Aborted"):
        super().__init__(message)
