"""Azure DevOps Repos backend. A personal access token is always required."""

from __future__ import annotations

import base64
import re
from typing import Any, ClassVar

import httpx

from repo2txt.config import AZURE_API_VERSION, TOKEN_PAGES, ProviderType
from repo2txt.exceptions import ErrorKind, ProviderError
from repo2txt.logging import logger
from repo2txt.models import EntryKind, FetchOptions, ParsedRepoInfo, PathEntry, RepoMetadata
from repo2txt.providers.base import HttpRepositorySource, malformed_payload_error

URL_PATTERN = re.compile(
    r"^https://(?:dev\.azure\.com/([^/]+)/([^/]+)|([^.]+)\.visualstudio\.com/([^/]+))"
    r"/_git/([^/?]+)(?:/?\?.*)?$",
)


class AzureDevOpsSource(HttpRepositorySource):
    """Repositories addressed as `https://dev.azure.com/{org}/{project}/_git/{repo}`.

    Legacy `https://{org}.visualstudio.com/{project}/_git/{repo}` URLs are accepted
    and routed to the same API host.
    """

    provider_type: ClassVar[ProviderType] = ProviderType.AZURE
    display_name: ClassVar[str] = "Azure DevOps"
    token_page: ClassVar[str | None] = TOKEN_PAGES[ProviderType.AZURE]

    def requires_auth(self) -> bool:
        return True

    def _auth_headers(self) -> dict[str, str]:
        if not self._credentials.token:
            return {}
        encoded = base64.b64encode(f":{self._credentials.token}".encode()).decode("ascii")
        return {"Authorization": f"Basic {encoded}"}

    def validate_url(self, identifier: str) -> bool:
        return URL_PATTERN.match(identifier.strip().rstrip("/")) is not None

    def parse_url(self, identifier: str) -> ParsedRepoInfo:
        match = URL_PATTERN.match(identifier.strip().rstrip("/"))
        if match is None:
            return ParsedRepoInfo(
                url=identifier,
                valid=False,
                error="Invalid Azure DevOps URL. Expected https://dev.azure.com/{org}/{project}/_git/{repo}",
            )
        organization = match.group(1) or match.group(3)
        project = match.group(2) or match.group(4)
        return ParsedRepoInfo(url=identifier, valid=True, owner=f"{organization}/{project}", repo=match.group(5))

    async def discover_tree(self, identifier: str, options: FetchOptions | None = None) -> list[PathEntry]:
        parsed = self.parse_url(identifier)
        if not parsed.valid or parsed.owner is None or parsed.repo is None:
            raise self.invalid_url_error(parsed)
        if not self._credentials.token:
            raise ProviderError(
                kind=ErrorKind.AUTH_REQUIRED,
                message="Authentication required",
                user_message="Azure DevOps requires a personal access token with Code (Read) scope.",
                recovery_url=self.token_page,
            )
        options = options or FetchOptions()
        path = (options.path or "").strip("/")
        self._repo_info = RepoMetadata(
            provider=self.provider_type,
            name=parsed.repo,
            owner=parsed.owner,
            ref=options.ref,
            path=path or None,
            url=identifier,
        )
        api_base = f"https://dev.azure.com/{parsed.owner}/_apis/git/repositories/{parsed.repo}"
        params: dict[str, Any] = {
            "recursionLevel": "Full",
            "includeContentMetadata": "true",
            "api-version": AZURE_API_VERSION,
        }
        if options.ref:
            params["versionDescriptor.version"] = options.ref
            params["versionDescriptor.versionType"] = "branch"
        if path:
            params["scopePath"] = f"/{path}"
        data = await self._api_json(f"{api_base}/items", params=params, context=f"{parsed.owner}/{parsed.repo}")
        entries = items_to_entries(data, path)
        logger.info(
            "azure_tree_discovered",
            owner=parsed.owner,
            repo=parsed.repo,
            ref=options.ref,
            entries=len(entries),
        )
        return entries

    async def _read_text(self, entry: PathEntry) -> str:
        if not entry.fetch_ref:
            raise ProviderError(kind=ErrorKind.NOT_FOUND, message=f"No item URL for {entry.path}")
        url = httpx.URL(entry.fetch_ref).copy_merge_params({"$format": "text"})
        response = await self._request(str(url), context=entry.path)
        return response.content.decode("utf-8", errors="replace")

    def classify_error(self, exc: httpx.HTTPError, context: str | None = None) -> ProviderError:
        """Azure answers 401 for an invalid or expired token and 403 for a missing scope."""
        if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in {401, 403, 404}:
            status = exc.response.status_code
            ctx = f" ({context})" if context else ""
            messages = {
                401: f"Azure DevOps authentication failed{ctx}. The token may be invalid or expired.",
                403: f"Azure DevOps access denied{ctx}. The token needs the Code (Read) scope.",
                404: f"Repository not found{ctx}. Check the organization, project and repository names.",
            }
            return ProviderError(
                kind=ErrorKind.NOT_FOUND if status == 404 else ErrorKind.AUTH_FAILED,  # noqa: PLR2004
                message=f"HTTP {status}: {exc.response.reason_phrase}",
                user_message=messages[status],
                recovery_url=None if status == 404 else self.token_page,  # noqa: PLR2004
                status_code=status,
            )
        return super().classify_error(exc, context)


def items_to_entries(data: Any, scope: str = "") -> list[PathEntry]:  # noqa: ANN401
    """Convert an items listing to entries relative to `scope`, dropping the scope root itself."""
    prefix = f"{scope}/" if scope else ""
    entries = []
    try:
        for item in data.get("value", []):
            path = item["path"].strip("/")
            if not path or path == scope:
                continue
            is_file = item.get("gitObjectType") == "blob" and not item.get("isFolder", False)
            entries.append(
                PathEntry(
                    path=path.removeprefix(prefix),
                    kind=EntryKind.FILE if is_file else EntryKind.DIRECTORY,
                    size=item.get("size"),
                    sha=item.get("objectId"),
                    fetch_ref=item.get("url"),
                ),
            )
    except (KeyError, TypeError, AttributeError) as exc:
        raise malformed_payload_error("items", exc) from exc
    return entries
