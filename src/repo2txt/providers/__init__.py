"""Repository backends and the static registry used to pick one."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from repo2txt.config import ProviderType
from repo2txt.providers.azure import AzureDevOpsSource
from repo2txt.providers.base import HttpRepositorySource, RepositorySource, resolve_ref_and_path
from repo2txt.providers.github import GitHubSource
from repo2txt.providers.gitlab import GitLabSource
from repo2txt.providers.local import ArchiveSource, FilesystemSource

if TYPE_CHECKING:
    from repo2txt.models import Credentials

SOURCES: dict[ProviderType, type[RepositorySource]] = {
    ProviderType.GITHUB: GitHubSource,
    ProviderType.GITLAB: GitLabSource,
    ProviderType.AZURE: AzureDevOpsSource,
    ProviderType.LOCAL: FilesystemSource,
    ProviderType.ARCHIVE: ArchiveSource,
}

_HTTP_URL = re.compile(r"^https?://", re.IGNORECASE)


def detect_provider_type(identifier: str) -> ProviderType:
    """Guess the backend from an identifier.

    github.com goes to GitHub and dev.azure.com / *.visualstudio.com to Azure
    DevOps; any other http(s) URL is assumed to be a GitLab instance. Non-URL
    identifiers are local: `.zip` files are archives, anything else a directory.
    """
    raw = identifier.strip()
    lowered = raw.lower()
    if _HTTP_URL.match(raw):
        host = lowered.split("://", 1)[1].split("/", 1)[0]
        if host in {"github.com", "www.github.com"}:
            return ProviderType.GITHUB
        if host == "dev.azure.com" or host.endswith(".visualstudio.com"):
            return ProviderType.AZURE
        return ProviderType.GITLAB
    if lowered.endswith(".zip"):
        return ProviderType.ARCHIVE
    return ProviderType.LOCAL


def create_source(
    provider_type: ProviderType | str,
    *,
    credentials: Credentials | None = None,
    **kwargs: Any,  # noqa: ANN401
) -> RepositorySource:
    """Instantiate the backend registered for `provider_type`.

    Keyword arguments are forwarded to the backend (`fetch_config`, and for HTTP
    backends `client` and `timeout`); HTTP-only arguments are dropped for local ones.

    Raises:
        ValueError: if `provider_type` is not a known backend.
    """
    source_cls = SOURCES[ProviderType(provider_type)]
    if not issubclass(source_cls, HttpRepositorySource):
        kwargs = {k: v for k, v in kwargs.items() if k not in {"client", "timeout"}}
    return source_cls(credentials=credentials, **kwargs)


def source_for(identifier: str, **kwargs: Any) -> RepositorySource:  # noqa: ANN401
    """Create the backend matching `identifier` (see `detect_provider_type`)."""
    return create_source(detect_provider_type(identifier), **kwargs)


__all__ = [
    "SOURCES",
    "ArchiveSource",
    "AzureDevOpsSource",
    "FilesystemSource",
    "GitHubSource",
    "GitLabSource",
    "HttpRepositorySource",
    "RepositorySource",
    "create_source",
    "detect_provider_type",
    "resolve_ref_and_path",
    "source_for",
]
