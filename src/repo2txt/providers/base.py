"""Contract shared by every repository backend, plus the HTTP plumbing of remote ones."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar, Self

import httpx

from repo2txt.exceptions import ErrorKind, ProviderError
from repo2txt.fetcher import BoundedFetcher, FetchConfig, FetchOutcome
from repo2txt.models import Credentials, FetchOptions, FileContent, ParsedRepoInfo, PathEntry, RepoMetadata

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable
    from types import TracebackType

    from repo2txt.config import ProviderType


def resolve_ref_and_path(segment: str, refs: Iterable[str]) -> tuple[str, str]:
    """Split a `<ref>/<path>` URL segment where the ref itself may contain slashes.

    The longest known ref that equals the segment, or prefixes it followed by a
    `/`, wins. When nothing matches, the whole segment is taken as the ref.

    Args:
        segment (str): trailing URL segment, e.g. `feature/test/sub/dir`.
        refs (Iterable[str]): every branch and tag name of the repository.

    Returns:
        tuple[str, str]: the resolved ref and the remaining path (possibly empty).
    """
    for ref in sorted({r for r in refs if r}, key=len, reverse=True):
        if segment == ref:
            return ref, ""
        if segment.startswith(f"{ref}/"):
            return ref, segment[len(ref) + 1 :].strip("/")
    return segment, ""


class RepositorySource(ABC):
    """One backend able to list a repository snapshot and return file texts.

    Subclasses implement URL handling, `discover_tree` and `_read_text`; the base
    class turns `_read_text` into `fetch_file` and `fetch_many`, both running
    under the source's `BoundedFetcher`.
    """

    provider_type: ClassVar[ProviderType]
    display_name: ClassVar[str]

    def __init__(
        self,
        *,
        credentials: Credentials | None = None,
        fetch_config: FetchConfig | None = None,
        fetcher: BoundedFetcher | None = None,
    ) -> None:
        self._credentials = credentials or Credentials()
        self.fetcher = fetcher or BoundedFetcher(fetch_config)
        self._repo_info: RepoMetadata | None = None

    def requires_auth(self) -> bool:
        return False

    def set_credentials(self, credentials: Credentials) -> None:
        self._credentials = credentials

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    @property
    def repo_info(self) -> RepoMetadata | None:
        """Metadata stored by the last `discover_tree` call."""
        return self._repo_info

    @abstractmethod
    def validate_url(self, identifier: str) -> bool:
        """Cheap, format-only check of an identifier."""

    @abstractmethod
    def parse_url(self, identifier: str) -> ParsedRepoInfo:
        """Parse an identifier without any I/O; invalid input is reported, never raised."""

    @abstractmethod
    async def discover_tree(self, identifier: str, options: FetchOptions | None = None) -> list[PathEntry]:
        """Return the complete flat listing for the requested scope.

        Raises:
            ProviderError: when the repository, ref or path cannot be listed.
        """

    @abstractmethod
    async def _read_text(self, entry: PathEntry) -> str:
        """Retrieve and decode the text of one file entry."""

    async def _fetch_content(self, entry: PathEntry) -> FileContent:
        return FileContent.from_text(entry.path, await self._read_text(entry))

    async def fetch_file(self, entry: PathEntry) -> FileContent:
        """Fetch one file (under the concurrency ceiling, with retry)."""
        return await self.fetcher.run(lambda: self._fetch_content(entry))

    def fetch_many(self, entries: Iterable[PathEntry]) -> AsyncIterator[FetchOutcome[PathEntry, FileContent]]:
        """Stream file contents in completion order; directory entries are skipped."""
        return self.fetcher.stream([e for e in entries if e.is_file], self._fetch_content)

    def invalid_url_error(self, parsed: ParsedRepoInfo) -> ProviderError:
        """Build the error raised by `discover_tree` for an identifier that failed to parse."""
        return ProviderError(
            kind=ErrorKind.INVALID_URL,
            message=parsed.error or f"Invalid {self.display_name} identifier: {parsed.url}",
            user_message=parsed.error or f"Invalid {self.display_name} identifier.",
        )

    def reset(self) -> None:
        self._credentials = Credentials()
        self._repo_info = None

    async def aclose(self) -> None:
        """Release backend resources."""

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


class HttpRepositorySource(RepositorySource):
    """Remote hosting backend talking to a JSON API over `httpx`."""

    token_page: ClassVar[str | None] = None

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        **kwargs: Any,  # noqa: ANN401
    ) -> None:
        super().__init__(**kwargs)
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout), follow_redirects=True)
        return self._client

    def _auth_headers(self) -> dict[str, str]:
        if self._credentials.token:
            return {"Authorization": f"Bearer {self._credentials.token}"}
        return {}

    async def _request(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        context: str | None = None,
    ) -> httpx.Response:
        """Issue one GET and classify any failure into a `ProviderError`."""
        try:
            response = await self.client.get(url, headers={**self._auth_headers(), **(headers or {})}, params=params)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise self.classify_error(exc, context) from exc
        return response

    async def _request_json(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        context: str | None = None,
    ) -> Any:  # noqa: ANN401
        response = await self._request(url, headers=headers, params=params, context=context)
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(
                kind=ErrorKind.PARSE_ERROR,
                message=f"Invalid JSON from {url}: {exc}",
            ) from exc

    async def _api_json(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        context: str | None = None,
    ) -> Any:  # noqa: ANN401
        """Discovery request: JSON body, under the concurrency ceiling, with retry."""
        return await self.fetcher.run(
            lambda: self._request_json(url, headers=headers, params=params, context=context),
        )

    def classify_error(self, exc: httpx.HTTPError, context: str | None = None) -> ProviderError:
        """Map a raw transport failure to the error taxonomy.

        Subclasses override this to adjust messages for backend-specific status
        semantics and fall back to this implementation for the rest.
        """
        ctx = f" ({context})" if context else ""
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            message = f"HTTP {status}: {exc.response.reason_phrase}"
            if status == 401:  # noqa: PLR2004
                kind = ErrorKind.AUTH_FAILED if self._credentials.token else ErrorKind.AUTH_REQUIRED
                return ProviderError(
                    kind=kind,
                    message=message,
                    user_message=(
                        f"{self.display_name} authentication required or rejected{ctx}. "
                        "Please check your credentials or token."
                    ),
                    recovery_url=self.token_page,
                    status_code=status,
                )
            if status == 403:  # noqa: PLR2004
                return ProviderError(
                    kind=ErrorKind.AUTH_FAILED,
                    message=message,
                    user_message=f"Access denied by {self.display_name}{ctx}. Please check your credentials or token.",
                    recovery_url=self.token_page,
                    status_code=status,
                )
            if status == 404:  # noqa: PLR2004
                return ProviderError(
                    kind=ErrorKind.NOT_FOUND,
                    message=message,
                    user_message=f"Resource not found on {self.display_name}{ctx}. Please check the URL and try again.",
                    status_code=status,
                )
            if status == 429:  # noqa: PLR2004
                return ProviderError(
                    kind=ErrorKind.RATE_LIMITED,
                    message=message,
                    user_message=f"{self.display_name} rate limit exceeded{ctx}. Please wait a moment and try again.",
                    status_code=status,
                )
            if status >= 500:  # noqa: PLR2004
                return ProviderError(
                    kind=ErrorKind.NETWORK_ERROR,
                    message=message,
                    user_message=f"{self.display_name} failed to answer{ctx}. Please try again.",
                    status_code=status,
                )
            return ProviderError(
                kind=ErrorKind.UNKNOWN,
                message=message,
                user_message=f"An unexpected error occurred{ctx}. Please try again.",
                status_code=status,
            )
        if isinstance(exc, httpx.TransportError):
            return ProviderError(
                kind=ErrorKind.NETWORK_ERROR,
                message=str(exc) or type(exc).__name__,
                user_message=f"Network error{ctx}. Please check your connection and try again.",
            )
        return ProviderError(
            kind=ErrorKind.UNKNOWN,
            message=str(exc),
            user_message=f"An unexpected error occurred{ctx}. Please try again.",
        )

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


def malformed_payload_error(what: str, exc: Exception) -> ProviderError:
    return ProviderError(
        kind=ErrorKind.PARSE_ERROR,
        message=f"Unexpected {what} payload: {exc!r}",
    )
