from __future__ import annotations

import re
from datetime import UTC, datetime
from pathlib import PurePath
from urllib.parse import urlsplit

from repo2txt.config import ProviderType

_INVALID_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def sanitize_filename(name: str) -> str:
    """Make `name` safe as a file name: invalid characters and whitespace become single dashes.

    Args:
        name (str): the raw name (repository name, archive stem...)

    Returns:
        str: the sanitized name, without leading or trailing dashes
    """
    name = _INVALID_CHARS.sub("-", name)
    name = re.sub(r"\s+", "-", name)
    name = re.sub(r"-+", "-", name)
    return name.strip("-")


def _url_parts(url: str) -> list[str] | None:
    parts = urlsplit(url.strip())
    if not parts.scheme or not parts.netloc:
        return None
    return [p for p in parts.path.split("/") if p]


def extract_github_repo_name(url: str) -> str:
    parts = _url_parts(url)
    if parts and len(parts) >= 2:  # noqa: PLR2004
        return sanitize_filename(parts[1]) or "github-repo"
    return "github-repo"


def extract_gitlab_repo_name(url: str) -> str:
    """Last project path segment, i.e. the part right before `/-/` when there is one."""
    parts = _url_parts(url)
    if parts:
        index = parts.index("-") - 1 if "-" in parts[1:] else len(parts) - 1
        return sanitize_filename(parts[index]) or "gitlab-repo"
    return "gitlab-repo"


def extract_azure_repo_name(url: str) -> str:
    parts = _url_parts(url)
    if parts and "_git" in parts:
        index = parts.index("_git") + 1
        if index < len(parts):
            return sanitize_filename(parts[index]) or "azure-repo"
    return "azure-repo"


def extract_local_name(path: str) -> str:
    """Directory name, or archive name without its `.zip` suffix."""
    name = PurePath(path.strip().removeprefix("file://").rstrip("/\\")).name
    name = re.sub(r"\.zip$", "", name, flags=re.IGNORECASE)
    return sanitize_filename(name) or "local-files"


def extract_repo_name(provider_type: ProviderType, identifier: str) -> str:
    """Dispatch to the per-provider extraction."""
    extractors = {
        ProviderType.GITHUB: extract_github_repo_name,
        ProviderType.GITLAB: extract_gitlab_repo_name,
        ProviderType.AZURE: extract_azure_repo_name,
        ProviderType.LOCAL: extract_local_name,
        ProviderType.ARCHIVE: extract_local_name,
    }
    return extractors[ProviderType(provider_type)](identifier)


def default_filename(prefix: str = "repo") -> str:
    """Return `<sanitized prefix>-<YYYY-MM-DD>` using today's UTC date."""
    return f"{sanitize_filename(prefix) or 'repo'}-{datetime.now(UTC).date().isoformat()}"
