"""GitLab backend (REST v4), for gitlab.com and self-hosted instances."""

from __future__ import annotations

import asyncio
import re
from typing import TYPE_CHECKING, Any, ClassVar
from urllib.parse import quote

import httpx

from repo2txt.config import GITLAB_API_BASE, TOKEN_PAGES, ProviderType
from repo2txt.exceptions import ErrorKind, ProviderError
from repo2txt.logging import logger
from repo2txt.models import EntryKind, FetchOptions, ParsedRepoInfo, PathEntry, RepoMetadata
from repo2txt.providers.base import (
    HttpRepositorySource,
    malformed_payload_error,
    resolve_ref_and_path,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

URL_PATTERN = re.compile(r"^https://((?!github\.com)[^/]+)/([^/]+(?:/[^/]+)*?)(?:/-/tree/(.+))?$")
PER_PAGE = 100


class GitLabSource(HttpRepositorySource):
    """Projects addressed as `https://<host>/<group>[/<subgroup>...]/<project>`."""

    provider_type: ClassVar[ProviderType] = ProviderType.GITLAB
    display_name: ClassVar[str] = "GitLab"
    token_page: ClassVar[str | None] = TOKEN_PAGES[ProviderType.GITLAB]

    def _auth_headers(self) -> dict[str, str]:
        if self._credentials.token:
            return {"Private-Token": self._credentials.token}
        return {}

    def validate_url(self, identifier: str) -> bool:
        return self.parse_url(identifier).valid

    def parse_url(self, identifier: str) -> ParsedRepoInfo:
        url = identifier.strip().rstrip("/").removesuffix(".git")
        match = URL_PATTERN.match(url)
        if match is None:
            return ParsedRepoInfo(
                url=identifier,
                valid=False,
                error="Invalid GitLab URL. Expected https://gitlab.com/group/project[/-/tree/ref/path]",
            )
        _host, project_path, rest = match.groups()
        owner, _, repo = project_path.rpartition("/")
        if not owner:
            return ParsedRepoInfo(
                url=identifier,
                valid=False,
                error="Invalid GitLab URL. The project path needs a group and a project name",
            )
        return ParsedRepoInfo(url=identifier, valid=True, owner=owner, repo=repo, ref=rest)

    def api_base_for(self, identifier: str) -> str:
        """API root for the instance hosting `identifier`; an explicit instance URL wins."""
        if self._credentials.instance_url:
            return f"{self._credentials.instance_url.rstrip('/')}/api/v4"
        host = httpx.URL(identifier.strip()).host
        if host in {"gitlab.com", "www.gitlab.com"}:
            return GITLAB_API_BASE
        return f"https://{host}/api/v4"

    async def discover_tree(self, identifier: str, options: FetchOptions | None = None) -> list[PathEntry]:
        parsed = self.parse_url(identifier)
        if not parsed.valid or parsed.owner is None or parsed.repo is None:
            raise self.invalid_url_error(parsed)
        options = options or FetchOptions()
        project = quote(f"{parsed.owner}/{parsed.repo}", safe="")
        base = f"{self.api_base_for(identifier)}/projects/{project}"
        ref = options.ref or ""
        path = (options.path or "").strip("/")
        self._repo_info = RepoMetadata(
            provider=self.provider_type,
            name=parsed.repo,
            owner=parsed.owner,
            url=identifier,
        )

        if parsed.ref and not ref:
            refs = await self.fetch_references(base)
            ref, url_path = resolve_ref_and_path(parsed.ref, refs)
            path = path or url_path
        if not ref:
            project_info = await self._api_json(base, context="fetching project")
            if not isinstance(project_info, dict):
                raise ProviderError(kind=ErrorKind.PARSE_ERROR, message="Unexpected project payload")
            ref = project_info.get("default_branch") or "main"

        self._repo_info = RepoMetadata(
            provider=self.provider_type,
            name=parsed.repo,
            owner=parsed.owner,
            ref=ref,
            path=path or None,
            url=identifier,
        )
        entries = await self._fetch_tree(base, ref, path)
        logger.info(
            "gitlab_tree_discovered",
            project=f"{parsed.owner}/{parsed.repo}",
            ref=ref,
            path=path,
            entries=len(entries),
        )
        return entries

    async def fetch_references(self, base: str) -> list[str]:
        branches, tags = await asyncio.gather(
            self._paginate(f"{base}/repository/branches", {}, context="fetching branches"),
            self._paginate(f"{base}/repository/tags", {}, context="fetching tags"),
        )
        try:
            return [item["name"] for item in [*branches, *tags]]
        except (KeyError, TypeError) as exc:
            raise malformed_payload_error("references", exc) from exc

    async def _paginate(self, url: str, params: Mapping[str, Any], *, context: str) -> list[Any]:
        """Collect every page of a listing, following the `X-Next-Page` header."""
        items: list[Any] = []
        page = "1"
        while page:
            query = {**params, "per_page": PER_PAGE, "page": page}
            response = await self.fetcher.run(
                lambda query=query: self._request(url, params=query, context=context),
            )
            try:
                chunk = response.json()
            except ValueError as exc:
                raise malformed_payload_error(context, exc) from exc
            if not isinstance(chunk, list):
                raise ProviderError(kind=ErrorKind.PARSE_ERROR, message=f"Expected a list while {context}")
            items.extend(chunk)
            page = response.headers.get("x-next-page", "").strip()
        return items

    async def _fetch_tree(self, base: str, ref: str, path: str) -> list[PathEntry]:
        params: dict[str, Any] = {"recursive": "true", "ref": ref}
        if path:
            params["path"] = path
        items = await self._paginate(f"{base}/repository/tree", params, context="fetching repository tree")
        prefix = f"{path}/" if path else ""
        raw_query = quote(ref, safe="")
        entries = []
        try:
            for item in items:
                full_path = item["path"]
                if full_path == path:
                    continue
                entries.append(
                    PathEntry(
                        path=full_path.removeprefix(prefix),
                        kind=EntryKind.DIRECTORY if item["type"] == "tree" else EntryKind.FILE,
                        sha=item.get("id"),
                        fetch_ref=f"{base}/repository/files/{quote(full_path, safe='')}/raw?ref={raw_query}",
                    ),
                )
        except (KeyError, TypeError) as exc:
            raise malformed_payload_error("tree", exc) from exc
        return entries

    async def _read_text(self, entry: PathEntry) -> str:
        response = await self._request(entry.fetch_ref, context=f"fetching {entry.path}")
        return response.content.decode("utf-8", errors="replace")

    def classify_error(self, exc: httpx.HTTPError, context: str | None = None) -> ProviderError:
        if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in {401, 403}:
            status = exc.response.status_code
            ctx = f" ({context})" if context else ""
            if status == 401:  # noqa: PLR2004
                kind = ErrorKind.AUTH_FAILED if self._credentials.token else ErrorKind.AUTH_REQUIRED
                user_message = (
                    f"GitLab authentication failed{ctx}. Create a personal access token with the "
                    "read_api and read_repository scopes."
                )
            else:
                kind = ErrorKind.AUTH_FAILED
                user_message = (
                    f"Access denied by GitLab{ctx}. Your token may lack the read_api or read_repository scope."
                )
            return ProviderError(
                kind=kind,
                message=f"HTTP {status}: {exc.response.reason_phrase}",
                user_message=user_message,
                recovery_url=self.token_page,
                status_code=status,
            )
        return super().classify_error(exc, context)
