"""Compile `.gitignore`-style patterns into path predicates.

Matching is purely additive: a path is excluded as soon as any pattern matches
it. Negated patterns (`!foo`) are not evaluated as re-inclusions.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

_NEVER = re.compile(r"(?!)")


@dataclass(frozen=True)
class GitignorePattern:
    """One compiled pattern line."""

    raw: str
    regex: re.Pattern[str] = field(repr=False)
    is_directory_pattern: bool = False

    def matches(self, path: str) -> bool:
        return self.regex.search(path) is not None


def _glob_to_regex(glob: str) -> str:
    out: list[str] = []
    for ch in glob:
        if ch == "*":
            out.append(".*")
        elif ch == "?":
            out.append(".")
        else:
            out.append(re.escape(ch))
    return "".join(out)


def compile_pattern(raw: str) -> GitignorePattern:
    """Compile a single gitignore line.

    - blank lines and `#` comments never match;
    - a trailing `/` makes a directory pattern that also matches everything below it;
    - a leading `/` anchors the pattern at the repository root, otherwise it may
      start at any path segment boundary;
    - `*` matches any run of characters and `?` exactly one.

    Args:
        raw (str): the pattern line as written by the user.

    Returns:
        GitignorePattern: the compiled pattern; unusable input compiles to a
            pattern that never matches.
    """
    pattern = raw.strip()
    if not pattern or pattern.startswith("#"):
        return GitignorePattern(raw=raw, regex=_NEVER)

    is_dir = pattern.endswith("/")
    if is_dir:
        pattern = pattern.rstrip("/")
    anchored = pattern.startswith("/")
    if anchored:
        pattern = pattern.lstrip("/")
    if not pattern:
        return GitignorePattern(raw=raw, regex=_NEVER, is_directory_pattern=is_dir)

    body = _glob_to_regex(pattern)
    prefix = "^" if anchored else "(^|/)"
    suffix = "($|/.*)" if is_dir else "$"
    try:
        regex = re.compile(prefix + body + suffix)
    except re.error:
        regex = _NEVER
    return GitignorePattern(raw=raw, regex=regex, is_directory_pattern=is_dir)


class GitignoreMatcher:
    """A set of compiled patterns; a path is excluded if any of them matches."""

    def __init__(self, patterns: Iterable[str] = ()) -> None:
        self._patterns: tuple[GitignorePattern, ...] = tuple(compile_pattern(p) for p in patterns)

    @classmethod
    def from_text(cls, text: str) -> GitignoreMatcher:
        """Build a matcher from the body of a `.gitignore` file."""
        return cls(text.splitlines())

    @property
    def patterns(self) -> Sequence[GitignorePattern]:
        return self._patterns

    def excludes(self, path: str) -> bool:
        return any(p.matches(path) for p in self._patterns)

    def __bool__(self) -> bool:
        return bool(self._patterns)
