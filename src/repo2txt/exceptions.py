from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ErrorKind(StrEnum):
    """Classification applied to every failure surfaced by a repository source."""

    INVALID_URL = "InvalidUrl"
    AUTH_REQUIRED = "AuthRequired"
    AUTH_FAILED = "AuthFailed"
    NOT_FOUND = "NotFound"
    RATE_LIMITED = "RateLimited"
    NETWORK_ERROR = "NetworkError"
    PARSE_ERROR = "ParseError"
    UNKNOWN = "Unknown"


ERROR_HINTS: dict[ErrorKind, str] = {
    ErrorKind.INVALID_URL: "Check the repository URL or path and try again.",
    ErrorKind.AUTH_REQUIRED: "This repository requires authentication. Provide an access token.",
    ErrorKind.AUTH_FAILED: "Access denied. Check that your token is valid and has read access.",
    ErrorKind.NOT_FOUND: "Resource not found. Please check the URL, branch and path.",
    ErrorKind.RATE_LIMITED: "Rate limit exceeded. Wait a moment and retry, or provide a token.",
    ErrorKind.NETWORK_ERROR: "Network error. Check your connection and retry.",
    ErrorKind.PARSE_ERROR: "The response could not be parsed. Retry, or report the repository layout.",
    ErrorKind.UNKNOWN: "An unexpected error occurred. Please try again.",
}


@dataclass(frozen=True)
class Repo2TxtError(Exception):
    """Base exception for errors in the repo2txt package."""


@dataclass(frozen=True)
class ProviderError(Repo2TxtError):
    """Raised by a repository source once a raw failure has been classified.

    Attributes:
        kind: the classified error kind.
        message: technical description (status line, exception text).
        user_message: provider-specific remediation text; falls back to the kind's hint.
        recovery_url: page where the user can obtain or refresh a credential.
        status_code: HTTP status that caused the error, when there was one.
    """

    kind: ErrorKind
    message: str
    user_message: str = ""
    recovery_url: str | None = None
    status_code: int | None = None

    @property
    def hint(self) -> str:
        """Human-readable remediation for this error."""
        return self.user_message or ERROR_HINTS[self.kind]

    @property
    def transient(self) -> bool:
        """Whether retrying the same operation may succeed."""
        if self.kind is ErrorKind.NETWORK_ERROR:
            return True
        return self.status_code is not None and self.status_code >= 500  # noqa: PLR2004

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"


@dataclass(frozen=True)
class DuplicatePathError(Repo2TxtError):
    """Raised when two entries normalize to the same path, or a file path is reused as a directory."""

    path: str
    message: str = "Duplicate or conflicting path in repository listing."

    def __str__(self) -> str:
        return f"{self.message} ({self.path})"
