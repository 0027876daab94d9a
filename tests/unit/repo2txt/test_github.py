from __future__ import annotations

import base64
from typing import TYPE_CHECKING

import httpx
import pytest

from repo2txt.exceptions import ErrorKind, ProviderError
from repo2txt.fetcher import FetchConfig
from repo2txt.models import Credentials, EntryKind, FetchOptions, PathEntry
from repo2txt.providers.github import GitHubSource, decode_blob

if TYPE_CHECKING:
    from collections.abc import Callable

API = "https://api.github.com"
BLOB_URL = f"{API}/repos/octo/demo/git/blobs/b1"

TREE = {
    "sha": "tree-sha",
    "truncated": False,
    "tree": [
        {"path": "README.md", "type": "blob", "sha": "b1", "size": 12, "url": BLOB_URL},
        {"path": "src", "type": "tree", "sha": "t2", "url": f"{API}/repos/octo/demo/git/trees/t2"},
        {"path": "src/index.ts", "type": "blob", "sha": "b3", "size": 30, "url": f"{API}/repos/octo/demo/git/blobs/b3"},
        {"path": "vendor/lib", "type": "commit", "sha": "c4"},
    ],
}


def _encode(text: str) -> str:
    raw = base64.b64encode(text.encode()).decode()
    # the API wraps base64 payloads every 60 characters
    return "\n".join(raw[i : i + 60] for i in range(0, len(raw), 60)) + "\n"


def _source(handler: Callable[[httpx.Request], httpx.Response], **kwargs: object) -> GitHubSource:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GitHubSource(client=client, fetch_config=FetchConfig(retries=1, retry_delay=0), **kwargs)


def _repo_handler(seen: list[httpx.Request]) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        path = request.url.path
        if path == "/repos/octo/demo/git/matching-refs/heads/":
            return httpx.Response(200, json=[{"ref": "refs/heads/main"}, {"ref": "refs/heads/feature/test"}])
        if path == "/repos/octo/demo/git/matching-refs/tags/":
            return httpx.Response(200, json=[{"ref": "refs/tags/v1.0"}])
        if path.startswith("/repos/octo/demo/contents"):
            return httpx.Response(200, json={"sha": "tree-sha", "type": "dir"})
        if path == "/repos/octo/demo/git/trees/tree-sha":
            return httpx.Response(200, json=TREE)
        if path == "/repos/octo/demo/git/blobs/b1":
            return httpx.Response(200, json={"content": _encode("# Demo\nhello\n"), "encoding": "base64"})
        return httpx.Response(404, json={"message": "Not Found"})

    return handler


@pytest.mark.unit
def test_parse_url_keeps_ref_and_path_segment_whole() -> None:
    parsed = GitHubSource().parse_url("https://github.com/octo/demo/tree/feature/test/src/")

    assert parsed.valid
    assert parsed.owner == "octo"
    assert parsed.repo == "demo"
    assert parsed.ref == "feature/test/src"


@pytest.mark.unit
def test_parse_url_strips_git_suffix() -> None:
    assert GitHubSource().parse_url("https://github.com/octo/demo.git").repo == "demo"


@pytest.mark.unit
@pytest.mark.parametrize(
    "url",
    ["https://gitlab.com/octo/demo", "http://github.com/octo/demo", "https://github.com/octo", "not a url"],
)
def test_invalid_urls_are_reported_not_raised(url: str) -> None:
    source = GitHubSource()

    parsed = source.parse_url(url)

    assert not parsed.valid
    assert parsed.error
    assert not source.validate_url(url)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_discover_resolves_slashed_ref_and_path() -> None:
    seen: list[httpx.Request] = []
    async with _source(_repo_handler(seen)) as source:
        entries = await source.discover_tree("https://github.com/octo/demo/tree/feature/test/src")

    contents = next(r for r in seen if "/contents/" in r.url.path)
    assert contents.url.path == "/repos/octo/demo/contents/src"
    assert contents.url.params["ref"] == "feature/test"
    assert contents.headers["accept"] == "application/vnd.github.object+json"
    assert source.repo_info is not None
    assert source.repo_info.ref == "feature/test"
    assert source.repo_info.path == "src"
    assert source.repo_info.name == "demo"
    assert [e.path for e in entries] == ["README.md", "src", "src/index.ts"]
    assert entries[1].kind is EntryKind.DIRECTORY
    assert entries[0].size == 12  # noqa: PLR2004


@pytest.mark.unit
@pytest.mark.asyncio
async def test_discover_without_ref_skips_reference_listing() -> None:
    seen: list[httpx.Request] = []
    async with _source(_repo_handler(seen)) as source:
        await source.discover_tree("https://github.com/octo/demo")

    assert not any("matching-refs" in r.url.path for r in seen)
    contents = next(r for r in seen if "/contents" in r.url.path)
    assert "ref" not in contents.url.params


@pytest.mark.unit
@pytest.mark.asyncio
async def test_explicit_ref_option_wins_over_url() -> None:
    seen: list[httpx.Request] = []
    async with _source(_repo_handler(seen)) as source:
        await source.discover_tree("https://github.com/octo/demo/tree/main", FetchOptions(ref="v1.0", path="docs"))

    contents = next(r for r in seen if "/contents" in r.url.path)
    assert contents.url.params["ref"] == "v1.0"
    assert contents.url.path == "/repos/octo/demo/contents/docs"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_fetch_file_decodes_wrapped_base64() -> None:
    seen: list[httpx.Request] = []
    entry = PathEntry(path="README.md", kind=EntryKind.FILE, fetch_ref=BLOB_URL)
    async with _source(_repo_handler(seen)) as source:
        content = await source.fetch_file(entry)

    assert content.text == "# Demo\nhello\n"
    assert content.line_count == 3  # noqa: PLR2004
    assert content.token_count is None


@pytest.mark.unit
def test_decode_blob_rejects_garbage() -> None:
    with pytest.raises(ProviderError) as exc_info:
        decode_blob({"content": "@@not base64@@", "encoding": "base64"}, "x")

    assert exc_info.value.kind is ErrorKind.PARSE_ERROR


@pytest.mark.unit
@pytest.mark.asyncio
async def test_token_is_sent_with_github_scheme() -> None:
    seen: list[httpx.Request] = []
    async with _source(_repo_handler(seen), credentials=Credentials(token="ghp_x")) as source:
        await source.discover_tree("https://github.com/octo/demo")

    assert all(r.headers["authorization"] == "token ghp_x" for r in seen)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_forbidden_is_rate_limited_with_token_page() -> None:
    async with _source(lambda request: httpx.Response(403)) as source:
        with pytest.raises(ProviderError) as exc_info:
            await source.discover_tree("https://github.com/octo/demo")

    error = exc_info.value
    assert error.kind is ErrorKind.RATE_LIMITED
    assert error.status_code == 403  # noqa: PLR2004
    assert error.recovery_url is not None
    assert "github.com/settings/tokens" in error.recovery_url
    assert "rate limit" in error.hint


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_repository_is_not_found() -> None:
    async with _source(lambda request: httpx.Response(404)) as source:
        with pytest.raises(ProviderError) as exc_info:
            await source.discover_tree("https://github.com/octo/missing")

    assert exc_info.value.kind is ErrorKind.NOT_FOUND
    assert source.repo_info is not None
    assert source.repo_info.name == "missing"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unauthorized_without_token_requires_auth() -> None:
    async with _source(lambda request: httpx.Response(401)) as source:
        with pytest.raises(ProviderError) as exc_info:
            await source.discover_tree("https://github.com/octo/private")

    assert exc_info.value.kind is ErrorKind.AUTH_REQUIRED


@pytest.mark.unit
@pytest.mark.asyncio
async def test_server_errors_are_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            return httpx.Response(502)
        return httpx.Response(200, json={"content": _encode("ok"), "encoding": "base64"})

    entry = PathEntry(path="a.txt", kind=EntryKind.FILE, fetch_ref=BLOB_URL)
    async with _source(handler) as source:
        content = await source.fetch_file(entry)

    assert content.text == "ok"
    assert calls == 2  # noqa: PLR2004


@pytest.mark.unit
@pytest.mark.asyncio
async def test_transport_errors_become_network_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _source(handler) as source:
        with pytest.raises(ProviderError) as exc_info:
            await source.discover_tree("https://github.com/octo/demo")

    assert exc_info.value.kind is ErrorKind.NETWORK_ERROR
    assert exc_info.value.transient


@pytest.mark.unit
@pytest.mark.asyncio
async def test_fetch_many_reports_failures_per_file() -> None:
    seen: list[httpx.Request] = []
    entries = [
        PathEntry(path="README.md", kind=EntryKind.FILE, fetch_ref=BLOB_URL),
        PathEntry(path="gone.txt", kind=EntryKind.FILE, fetch_ref=f"{API}/repos/octo/demo/git/blobs/missing"),
        PathEntry(path="src", kind=EntryKind.DIRECTORY),
    ]
    async with _source(_repo_handler(seen)) as source:
        outcomes = {o.item.path: o async for o in source.fetch_many(entries)}

    assert set(outcomes) == {"README.md", "gone.txt"}
    assert outcomes["README.md"].result is not None
    assert isinstance(outcomes["gone.txt"].error, ProviderError)
    assert outcomes["gone.txt"].error.kind is ErrorKind.NOT_FOUND
