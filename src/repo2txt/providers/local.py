"""Local backends: a directory on disk or a `.zip` archive."""

from __future__ import annotations

import asyncio
import os
import re
import zipfile
from pathlib import Path
from typing import Any, ClassVar

from repo2txt.config import VCS_DIRS, ProviderType
from repo2txt.exceptions import ErrorKind, ProviderError
from repo2txt.logging import logger
from repo2txt.models import EntryKind, FetchOptions, LocalRef, ParsedRepoInfo, PathEntry, RepoMetadata, normalize_path
from repo2txt.providers.base import RepositorySource

_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


def _strip_file_scheme(identifier: str) -> str:
    return identifier.strip().removeprefix("file://")


class FilesystemSource(RepositorySource):
    """A directory tree on the local filesystem; VCS metadata directories are skipped."""

    provider_type: ClassVar[ProviderType] = ProviderType.LOCAL
    display_name: ClassVar[str] = "Local directory"

    def validate_url(self, identifier: str) -> bool:
        raw = identifier.strip()
        return bool(raw) and (raw.startswith("file://") or _SCHEME.match(raw) is None)

    def parse_url(self, identifier: str) -> ParsedRepoInfo:
        if not self.validate_url(identifier):
            return ParsedRepoInfo(url=identifier, valid=False, error="Expected a local directory path")
        path = Path(_strip_file_scheme(identifier)).expanduser()
        return ParsedRepoInfo(url=identifier, valid=True, repo=path.absolute().name, path=str(path))

    async def discover_tree(self, identifier: str, options: FetchOptions | None = None) -> list[PathEntry]:
        parsed = self.parse_url(identifier)
        if not parsed.valid or parsed.path is None:
            raise self.invalid_url_error(parsed)
        options = options or FetchOptions()
        root = Path(parsed.path).resolve()
        scope = normalize_path(options.path or "")
        start = root.joinpath(*scope.split("/")) if scope else root
        if not start.is_dir():
            raise ProviderError(
                kind=ErrorKind.NOT_FOUND,
                message=f"Not a directory: {start}",
                user_message=f"Directory not found: {start}",
            )
        self._repo_info = RepoMetadata(
            provider=self.provider_type,
            name=root.name,
            path=scope or None,
            url=str(root),
        )
        entries = await asyncio.to_thread(walk_directory, start)
        logger.info("local_tree_discovered", root=str(start), entries=len(entries))
        return entries

    async def _read_text(self, entry: PathEntry) -> str:
        ref: LocalRef = entry.fetch_ref
        try:
            raw = await asyncio.to_thread(ref.absolute.read_bytes)
        except FileNotFoundError as exc:
            raise ProviderError(kind=ErrorKind.NOT_FOUND, message=f"File not found: {ref.absolute}") from exc
        except OSError as exc:
            raise ProviderError(kind=ErrorKind.UNKNOWN, message=f"Cannot read {ref.absolute}: {exc}") from exc
        return raw.decode("utf-8", errors="replace")


def walk_directory(root: Path) -> list[PathEntry]:
    """List every directory and file under `root`, relative to it, in a stable order."""
    entries: list[PathEntry] = []
    for current, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in VCS_DIRS)
        base = Path(current).relative_to(root).as_posix()
        prefix = "" if base == "." else f"{base}/"
        for name in dirnames:
            relative = f"{prefix}{name}"
            entries.append(
                PathEntry(path=relative, kind=EntryKind.DIRECTORY, fetch_ref=LocalRef(root=root, relative=relative)),
            )
        for name in sorted(filenames):
            relative = f"{prefix}{name}"
            full = Path(current) / name
            try:
                size = full.stat().st_size
            except OSError:
                size = None
            entries.append(
                PathEntry(
                    path=relative,
                    kind=EntryKind.FILE,
                    size=size,
                    fetch_ref=LocalRef(root=root, relative=relative),
                ),
            )
    return entries


class ArchiveSource(RepositorySource):
    """The members of a `.zip` archive; the archive stays open until `reset` or `aclose`."""

    provider_type: ClassVar[ProviderType] = ProviderType.ARCHIVE
    display_name: ClassVar[str] = "Zip archive"

    def __init__(self, **kwargs: Any) -> None:  # noqa: ANN401
        super().__init__(**kwargs)
        self._archive: zipfile.ZipFile | None = None

    def validate_url(self, identifier: str) -> bool:
        return _strip_file_scheme(identifier).lower().endswith(".zip")

    def parse_url(self, identifier: str) -> ParsedRepoInfo:
        if not self.validate_url(identifier):
            return ParsedRepoInfo(url=identifier, valid=False, error="Expected a path to a .zip archive")
        path = Path(_strip_file_scheme(identifier)).expanduser()
        name = re.sub(r"\.zip$", "", path.name, flags=re.IGNORECASE)
        return ParsedRepoInfo(url=identifier, valid=True, repo=name, path=str(path))

    async def discover_tree(self, identifier: str, options: FetchOptions | None = None) -> list[PathEntry]:
        parsed = self.parse_url(identifier)
        if not parsed.valid or parsed.path is None or parsed.repo is None:
            raise self.invalid_url_error(parsed)
        options = options or FetchOptions()
        path = Path(parsed.path)
        if not path.is_file():
            raise ProviderError(
                kind=ErrorKind.NOT_FOUND,
                message=f"Archive not found: {path}",
                user_message=f"Archive not found: {path}",
            )
        self._close_archive()
        try:
            self._archive = await asyncio.to_thread(zipfile.ZipFile, path)
        except zipfile.BadZipFile as exc:
            raise ProviderError(
                kind=ErrorKind.PARSE_ERROR,
                message=f"Bad zip archive {path}: {exc}",
                user_message="Failed to read the zip file. Please make sure it is a valid zip archive.",
            ) from exc
        scope = normalize_path(options.path or "")
        self._repo_info = RepoMetadata(
            provider=self.provider_type,
            name=parsed.repo,
            path=scope or None,
            url=str(path),
        )
        entries = archive_entries(self._archive, scope)
        logger.info("archive_tree_discovered", archive=str(path), entries=len(entries))
        return entries

    async def _read_text(self, entry: PathEntry) -> str:
        if self._archive is None:
            raise ProviderError(kind=ErrorKind.UNKNOWN, message="Archive is not open; call discover_tree first")
        try:
            raw = await asyncio.to_thread(self._archive.read, entry.fetch_ref)
        except KeyError as exc:
            raise ProviderError(kind=ErrorKind.NOT_FOUND, message=f"File not found in archive: {entry.path}") from exc
        return raw.decode("utf-8", errors="replace")

    def _close_archive(self) -> None:
        if self._archive is not None:
            self._archive.close()
            self._archive = None

    def reset(self) -> None:
        super().reset()
        self._close_archive()

    async def aclose(self) -> None:
        self._close_archive()


def archive_entries(archive: zipfile.ZipFile, scope: str = "") -> list[PathEntry]:
    """List archive members under `scope`, relative to it."""
    prefix = f"{scope}/" if scope else ""
    entries = []
    for info in archive.infolist():
        path = normalize_path(info.filename)
        if not path or (prefix and not path.startswith(prefix)):
            continue
        entries.append(
            PathEntry(
                path=path.removeprefix(prefix),
                kind=EntryKind.DIRECTORY if info.is_dir() else EntryKind.FILE,
                size=None if info.is_dir() else info.file_size,
                fetch_ref=info,
            ),
        )
    return entries
