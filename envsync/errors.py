"""Error taxonomy for envsync.

Local configuration problems (``ConfigError``) are raised before any network
call. Remote failures (``RemoteAPIError``) carry the HTTP status where one
exists so callers can report it.
"""

from __future__ import annotations

from dataclasses import dataclass


class EnvSyncError(Exception):
    """Base class for every error raised by envsync."""


# ── Local config ─────────────────────────────────────────────────────


class ConfigError(EnvSyncError):
    """The local declarative file cannot be used."""


class ParseError(ConfigError):
    """The config file is missing, unreadable, or syntactically malformed."""


@dataclass
class ConfigIssue:
    """A single validation problem found in a config file."""

    path: str  # Dotted location, e.g. "production.secrets.API_KEY"
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


class ValidationError(ConfigError):
    """The config file parsed but violates one or more rules."""

    def __init__(self, issues: list[ConfigIssue]):
        self.issues = list(issues)
        lines = "\n".join(f"  - {issue}" for issue in self.issues)
        super().__init__(f"Invalid config ({len(self.issues)} issue(s)):\n{lines}")


# ── Remote API ───────────────────────────────────────────────────────


class RemoteAPIError(EnvSyncError):
    """An error reported by (or while talking to) the remote API."""

    def __init__(self, message: str, status_code: int | None = None, url: str = ""):
        self.message = message
        self.status_code = status_code
        self.url = url
        super().__init__(self._format())

    def _format(self) -> str:
        if self.status_code is None:
            return self.message
        return f"HTTP {self.status_code}: {self.message}"


class AuthError(RemoteAPIError):
    """Credentials are missing, invalid, expired, or lack permission. Fatal."""


class NotFoundError(RemoteAPIError):
    """The repository, environment, or entry does not exist."""


class RemoteError(RemoteAPIError):
    """Transient or unexpected API failure (rate limit, 5xx, network)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str = "",
        retryable: bool = True,
    ):
        self.retryable = retryable
        super().__init__(message, status_code=status_code, url=url)
