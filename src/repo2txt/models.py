from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


def normalize_path(raw: str) -> str:
    """Normalize a repository path to forward slashes without leading `/` or `./`.

    Args:
        raw (str): path as reported by a backend.

    Returns:
        str: the normalized repository-relative path (may be empty).
    """
    path = raw.strip().replace("\\", "/")
    while path.startswith(("./", "/")):
        path = path[2:] if path.startswith("./") else path[1:]
    return path.rstrip("/")


def extension_of(path: str) -> str:
    """Return the extension of the last path segment, including the leading dot.

    `.gitignore` yields `.gitignore` and `Makefile` yields an empty string.
    """
    name = path.rsplit("/", 1)[-1]
    parts = name.split(".")
    return f".{parts[-1]}" if len(parts) > 1 else ""


def count_lines(text: str) -> int:
    """Count lines the way the output header reports them (a trailing newline opens a new line)."""
    return len(text.split("\n"))


class EntryKind(StrEnum):
    """Kind of a repository entry."""

    FILE = "file"
    DIRECTORY = "directory"


class LocalRef(BaseModel):
    """Fetch coordinates of a file inside a local directory."""

    model_config = ConfigDict(frozen=True)

    root: Path
    relative: str

    @property
    def absolute(self) -> Path:
        return self.root.joinpath(*self.relative.split("/"))


class PathEntry(BaseModel):
    """One file or directory as reported by a repository source.

    Attributes:
        path: repository-relative, forward-slash separated path.
        kind: file or directory.
        size: size in bytes, when the backend reports it.
        sha: object id, when the backend reports it.
        fetch_ref: provider-opaque token used to retrieve the content (URL,
            archive member, local path pair).
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    path: str = Field(..., description="Repository-relative path")
    kind: EntryKind = Field(..., description="File or directory")
    size: int | None = Field(default=None, ge=0, description="Size in bytes")
    sha: str | None = Field(default=None, description="Backend object id")
    fetch_ref: Any = Field(default=None, description="Provider-opaque fetch token")

    @field_validator("path")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_path(value)

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def is_file(self) -> bool:
        return self.kind is EntryKind.FILE

    @property
    def extension(self) -> str:
        return extension_of(self.path)

    @property
    def depth(self) -> int:
        return self.path.count("/")


class FileContent(BaseModel):
    """Text of one fetched file; `token_count` is filled in by the formatter."""

    model_config = ConfigDict(frozen=True)

    path: str
    text: str
    line_count: int = Field(..., ge=0)
    token_count: int | None = None

    @classmethod
    def from_text(cls, path: str, text: str) -> FileContent:
        return cls(path=path, text=text, line_count=count_lines(text))


class FormattedOutput(BaseModel):
    """Immutable result of one assembly run."""

    model_config = ConfigDict(frozen=True)

    directory_tree: str
    file_contents: str
    token_count: int = Field(..., ge=0)
    line_count: int = Field(..., ge=0)
    files: tuple[FileContent, ...] = ()

    @computed_field
    @property
    def text(self) -> str:
        """The full artifact as written to disk."""
        if not self.directory_tree:
            return self.file_contents
        return f"{self.directory_tree}\n\n{self.file_contents}"


class ExtensionFilter(BaseModel):
    """Per-extension file count and filter state."""

    model_config = ConfigDict(frozen=True)

    extension: str
    count: int = Field(..., ge=0)
    selected: bool


class RepoMetadata(BaseModel):
    """Metadata stored by a source after discovery, used for naming and error context."""

    model_config = ConfigDict(frozen=True)

    provider: str
    name: str
    owner: str | None = None
    ref: str | None = None
    path: str | None = None
    url: str | None = None


class ParsedRepoInfo(BaseModel):
    """Result of parsing a repository identifier; invalid input is reported, not raised."""

    model_config = ConfigDict(frozen=True)

    url: str
    valid: bool
    owner: str | None = None
    repo: str | None = None
    ref: str | None = None
    path: str | None = None
    error: str | None = None


class Credentials(BaseModel):
    """Credential store entry for one provider."""

    model_config = ConfigDict(frozen=True)

    token: str | None = None
    username: str | None = None
    instance_url: str | None = None


class FetchOptions(BaseModel):
    """Caller overrides for discovery."""

    model_config = ConfigDict(frozen=True)

    ref: str | None = None
    path: str | None = None
