"""GitHub backend (REST v3)."""

from __future__ import annotations

import asyncio
import base64
import binascii
import re
from typing import TYPE_CHECKING, Any, ClassVar
from urllib.parse import quote

import httpx

from repo2txt.config import GITHUB_API_BASE, TOKEN_PAGES, ProviderType
from repo2txt.exceptions import ErrorKind, ProviderError
from repo2txt.logging import logger
from repo2txt.models import EntryKind, FetchOptions, ParsedRepoInfo, PathEntry, RepoMetadata
from repo2txt.providers.base import (
    HttpRepositorySource,
    malformed_payload_error,
    resolve_ref_and_path,
)

URL_PATTERN = re.compile(r"^https://github\.com/([^/]+)/([^/]+)(?:/tree/(.+))?$")
_OBJECT_ACCEPT = "application/vnd.github.object+json"


class GitHubSource(HttpRepositorySource):
    """Public or private GitHub repositories; the token is optional."""

    provider_type: ClassVar[ProviderType] = ProviderType.GITHUB
    display_name: ClassVar[str] = "GitHub"
    token_page: ClassVar[str | None] = TOKEN_PAGES[ProviderType.GITHUB]

    def __init__(self, *, api_base: str = GITHUB_API_BASE, **kwargs: Any) -> None:  # noqa: ANN401
        super().__init__(**kwargs)
        self.api_base = api_base.rstrip("/")

    def _auth_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if self._credentials.token:
            headers["Authorization"] = f"token {self._credentials.token}"
        return headers

    def validate_url(self, identifier: str) -> bool:
        return URL_PATTERN.match(identifier.strip().rstrip("/")) is not None

    def parse_url(self, identifier: str) -> ParsedRepoInfo:
        """Split a GitHub URL into owner, repository and the raw `ref/path` segment.

        The segment after `/tree/` is kept whole in `ref`: only the list of
        existing branches and tags can tell where the ref ends, so the split
        happens during discovery.
        """
        url = identifier.strip().rstrip("/")
        match = URL_PATTERN.match(url)
        if match is None:
            return ParsedRepoInfo(
                url=identifier,
                valid=False,
                error="Invalid GitHub URL. Expected https://github.com/owner/repo[/tree/ref/path]",
            )
        owner, repo, rest = match.groups()
        repo = repo.removesuffix(".git")
        return ParsedRepoInfo(url=identifier, valid=True, owner=owner, repo=repo, ref=rest)

    async def discover_tree(self, identifier: str, options: FetchOptions | None = None) -> list[PathEntry]:
        parsed = self.parse_url(identifier)
        if not parsed.valid or parsed.owner is None or parsed.repo is None:
            raise self.invalid_url_error(parsed)
        options = options or FetchOptions()
        owner, repo = parsed.owner, parsed.repo
        ref = options.ref or ""
        path = (options.path or "").strip("/")
        self._repo_info = RepoMetadata(provider=self.provider_type, name=repo, owner=owner, url=identifier)

        if parsed.ref and not options.ref:
            refs = await self.fetch_references(owner, repo)
            ref, url_path = resolve_ref_and_path(parsed.ref, refs)
            path = path or url_path

        self._repo_info = RepoMetadata(
            provider=self.provider_type,
            name=repo,
            owner=owner,
            ref=ref or None,
            path=path or None,
            url=identifier,
        )
        sha = await self._fetch_tree_sha(owner, repo, ref, path)
        entries = await self._fetch_tree(owner, repo, sha)
        logger.info("github_tree_discovered", owner=owner, repo=repo, ref=ref, path=path, entries=len(entries))
        return entries

    async def fetch_references(self, owner: str, repo: str) -> list[str]:
        """List branch and tag names (heads and tags are requested concurrently)."""
        base = f"{self.api_base}/repos/{owner}/{repo}/git/matching-refs"
        heads, tags = await asyncio.gather(
            self._api_json(f"{base}/heads/", context="fetching branches"),
            self._api_json(f"{base}/tags/", context="fetching tags"),
        )
        try:
            return ["/".join(item["ref"].split("/")[2:]) for item in [*heads, *tags]]
        except (KeyError, TypeError, AttributeError) as exc:
            raise malformed_payload_error("references", exc) from exc

    async def _fetch_tree_sha(self, owner: str, repo: str, ref: str, path: str) -> str:
        url = f"{self.api_base}/repos/{owner}/{repo}/contents/{quote(path)}"
        data = await self._api_json(
            url,
            headers={"Accept": _OBJECT_ACCEPT},
            params={"ref": ref} if ref else None,
            context="fetching tree SHA",
        )
        if isinstance(data, list):
            raise ProviderError(
                kind=ErrorKind.PARSE_ERROR,
                message=f"Expected a single object for {path or '/'}, got a listing",
            )
        try:
            return data["sha"]
        except (KeyError, TypeError) as exc:
            raise malformed_payload_error("contents", exc) from exc

    async def _fetch_tree(self, owner: str, repo: str, sha: str) -> list[PathEntry]:
        data = await self._api_json(
            f"{self.api_base}/repos/{owner}/{repo}/git/trees/{sha}",
            params={"recursive": "1"},
            context="fetching repository tree",
        )
        try:
            if data.get("truncated"):
                logger.warning("github_tree_truncated", owner=owner, repo=repo, sha=sha)
            return [
                PathEntry(
                    path=item["path"],
                    kind=EntryKind.DIRECTORY if item["type"] == "tree" else EntryKind.FILE,
                    size=item.get("size"),
                    sha=item.get("sha"),
                    fetch_ref=item.get("url"),
                )
                for item in data["tree"]
                if item.get("type") in {"blob", "tree"}
            ]
        except (KeyError, TypeError, AttributeError) as exc:
            raise malformed_payload_error("tree", exc) from exc

    async def _read_text(self, entry: PathEntry) -> str:
        if not entry.fetch_ref:
            raise ProviderError(kind=ErrorKind.NOT_FOUND, message=f"No blob URL for {entry.path}")
        data = await self._request_json(entry.fetch_ref, context=f"fetching {entry.path}")
        return decode_blob(data, entry.path)

    def classify_error(self, exc: httpx.HTTPError, context: str | None = None) -> ProviderError:
        """GitHub answers 403 when the anonymous rate limit is exhausted."""
        if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in {403, 429}:
            ctx = f" ({context})" if context else ""
            return ProviderError(
                kind=ErrorKind.RATE_LIMITED,
                message=f"HTTP {exc.response.status_code}: {exc.response.reason_phrase}",
                user_message=(
                    f"GitHub API rate limit exceeded{ctx}. Wait a while or provide a personal access token."
                ),
                recovery_url=self.token_page,
                status_code=exc.response.status_code,
            )
        return super().classify_error(exc, context)


def decode_blob(data: dict[str, Any], path: str) -> str:
    """Decode a blob payload; base64 content may be wrapped across lines.

    Raises:
        ProviderError: when the payload is not decodable base64.
    """
    content = data.get("content") or ""
    if data.get("encoding", "base64") != "base64":
        return content
    try:
        raw = base64.b64decode(re.sub(r"\s", "", content), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProviderError(kind=ErrorKind.PARSE_ERROR, message=f"Undecodable blob for {path}: {exc}") from exc
    return raw.decode("utf-8", errors="replace")
