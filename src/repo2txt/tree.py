"""Hierarchical, tri-state selectable view over a flat repository listing."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TYPE_CHECKING

from repo2txt.config import COMMON_EXTENSIONS
from repo2txt.exceptions import DuplicatePathError
from repo2txt.gitignore import GitignoreMatcher
from repo2txt.models import EntryKind, ExtensionFilter, PathEntry, extension_of

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence


class SelectionState(StrEnum):
    """Checkbox state of a node."""

    CHECKED = "checked"
    UNCHECKED = "unchecked"
    INDETERMINATE = "indeterminate"


@dataclass
class TreeNode:
    """A node of the selection tree. Only directories carry `children`."""

    name: str
    path: str
    kind: EntryKind
    selected: SelectionState = SelectionState.UNCHECKED
    visible: bool = True
    excluded: bool = False
    children: list[TreeNode] | None = None
    entry: PathEntry | None = field(default=None, repr=False, compare=False)

    @property
    def is_directory(self) -> bool:
        return self.kind is EntryKind.DIRECTORY

    @property
    def extension(self) -> str:
        return extension_of(self.name)

    def walk(self) -> Iterator[TreeNode]:
        """Yield this node and its descendants in pre-order."""
        yield self
        for child in self.children or ():
            yield from child.walk()

    def iter_files(self) -> Iterator[TreeNode]:
        return (n for n in self.walk() if not n.is_directory)

    def clone(self) -> TreeNode:
        """Copy the node structure; the immutable `entry` is shared."""
        children = None if self.children is None else [c.clone() for c in self.children]
        return replace(self, children=children)


def sort_key(node: TreeNode) -> tuple[bool, str, str]:
    """Directories first, then case-insensitive name, then exact name as tie-break."""
    return (not node.is_directory, node.name.lower(), node.name)


def aggregate(states: Iterable[SelectionState]) -> SelectionState:
    """Combine child states: all checked, all unchecked, otherwise indeterminate.

    An empty sequence aggregates to unchecked.
    """
    seen = set(states)
    if not seen or seen == {SelectionState.UNCHECKED}:
        return SelectionState.UNCHECKED
    if seen == {SelectionState.CHECKED}:
        return SelectionState.CHECKED
    return SelectionState.INDETERMINATE


def _normalize_extension(ext: str) -> str:
    ext = ext.strip()
    if not ext or ext.startswith("."):
        return ext
    return f".{ext}"


class SelectionTree:
    """Canonical hierarchical view and selection state over a set of path entries.

    Directory selection is never stored independently: it is recomputed bottom-up
    from the leaves after every change. Filters (`filter_by_extension`,
    `apply_gitignore`) return new trees so callers can keep previous views.
    """

    def __init__(
        self,
        roots: list[TreeNode] | None = None,
        *,
        extension_filter: frozenset[str] = frozenset(),
        patterns: tuple[str, ...] = (),
    ) -> None:
        self._roots: list[TreeNode] = roots or []
        self._index: dict[str, TreeNode] = {n.path: n for root in self._roots for n in root.walk()}
        self._extension_filter = extension_filter
        self._patterns = patterns

    @classmethod
    def build(cls, entries: Iterable[PathEntry]) -> SelectionTree:
        """Build a tree from a flat listing.

        Entries are attached shallowest first so parents exist before their
        children; missing intermediate directories are created on the way.

        Args:
            entries (Iterable[PathEntry]): the complete listing of a source.

        Raises:
            DuplicatePathError: if two entries share a normalized path, or a file
                path also appears as a parent directory.

        Returns:
            SelectionTree: the new tree, with every node unchecked.
        """
        ordered = sorted((e for e in entries if e.path), key=lambda e: (e.depth, e.path))
        roots: list[TreeNode] = []
        index: dict[str, TreeNode] = {}

        for entry in ordered:
            if entry.path in index:
                raise DuplicatePathError(path=entry.path)
            parts = entry.path.split("/")
            siblings = roots
            for depth, part in enumerate(parts[:-1]):
                dir_path = "/".join(parts[: depth + 1])
                node = index.get(dir_path)
                if node is None:
                    node = TreeNode(name=part, path=dir_path, kind=EntryKind.DIRECTORY, children=[])
                    index[dir_path] = node
                    siblings.append(node)
                elif node.children is None:
                    raise DuplicatePathError(path=dir_path, message="File path is also used as a directory.")
                siblings = node.children
            leaf = TreeNode(
                name=parts[-1],
                path=entry.path,
                kind=entry.kind,
                children=[] if entry.kind is EntryKind.DIRECTORY else None,
                entry=entry,
            )
            index[entry.path] = leaf
            siblings.append(leaf)

        _sort_children(roots)
        tree = cls(roots)
        tree.recompute()
        return tree

    # ------------------------------ Structure -------------------------------

    @property
    def roots(self) -> Sequence[TreeNode]:
        return self._roots

    @property
    def extension_filter(self) -> frozenset[str]:
        return self._extension_filter

    @property
    def patterns(self) -> tuple[str, ...]:
        return self._patterns

    def get(self, path: str) -> TreeNode | None:
        return self._index.get(path)

    def __contains__(self, path: object) -> bool:
        return path in self._index

    def __len__(self) -> int:
        return len(self._index)

    def flatten(self) -> list[TreeNode]:
        """All nodes in pre-order, following the display ordering."""
        return [n for root in self._roots for n in root.walk()]

    def files(self) -> list[TreeNode]:
        return [n for n in self.flatten() if not n.is_directory]

    def _copy(self) -> SelectionTree:
        return SelectionTree(
            [r.clone() for r in self._roots],
            extension_filter=self._extension_filter,
            patterns=self._patterns,
        )

    # ------------------------------ Selection -------------------------------

    def recompute(self) -> None:
        """Recompute every directory state from its children, bottom-up."""
        for root in self._roots:
            _recompute_node(root)

    def toggle(self, path: str) -> None:
        """Toggle a file, or set every file below a directory.

        A checked directory unchecks all its files; an unchecked or
        indeterminate directory checks them all. Unknown paths are ignored.
        """
        node = self._index.get(path)
        if node is None:
            return
        if node.is_directory:
            self._set_leaves(node, selected=node.selected is not SelectionState.CHECKED)
        else:
            node.selected = (
                SelectionState.UNCHECKED if node.selected is SelectionState.CHECKED else SelectionState.CHECKED
            )
        self.recompute()

    def set_selected(self, path: str, *, selected: bool) -> None:
        node = self._index.get(path)
        if node is None:
            return
        self._set_leaves(node, selected=selected)
        self.recompute()

    def select_all(self, *, selected: bool = True) -> None:
        for root in self._roots:
            self._set_leaves(root, selected=selected)
        self.recompute()

    def toggle_extension(self, extension: str, *, selected: bool) -> None:
        """Check or uncheck every file with the given extension."""
        ext = _normalize_extension(extension)
        state = SelectionState.CHECKED if selected else SelectionState.UNCHECKED
        for node in self.files():
            if node.extension == ext:
                node.selected = state
        self.recompute()

    def select_extensions(self, extensions: Iterable[str]) -> None:
        """Check exactly the files whose extension is in `extensions`; uncheck every other file."""
        wanted = {_normalize_extension(e) for e in extensions}
        for node in self.files():
            node.selected = SelectionState.CHECKED if node.extension in wanted else SelectionState.UNCHECKED
        self.recompute()

    def select_common_extensions(self) -> None:
        """Preselect the usual source-code files (`COMMON_EXTENSIONS`)."""
        self.select_extensions(COMMON_EXTENSIONS)

    def extension_state(self, extension: str) -> SelectionState:
        ext = _normalize_extension(extension)
        return aggregate(n.selected for n in self.files() if n.extension == ext)

    def global_state(self) -> SelectionState:
        return aggregate(r.selected for r in self._roots)

    @staticmethod
    def _set_leaves(node: TreeNode, *, selected: bool) -> None:
        state = SelectionState.CHECKED if selected else SelectionState.UNCHECKED
        for leaf in node.iter_files():
            leaf.selected = state

    def selected_entries(self) -> list[PathEntry]:
        """Checked, non-excluded files in display order."""
        return [
            n.entry
            for n in self.files()
            if n.selected is SelectionState.CHECKED and not n.excluded and n.entry is not None
        ]

    # ------------------------------ Filtering -------------------------------

    def filter_by_extension(self, extensions: Iterable[str]) -> SelectionTree:
        """Return a new tree where only files with the given extensions are visible.

        An empty collection shows everything. Use `""` for extensionless files.
        """
        wanted = frozenset(_normalize_extension(e) for e in extensions)
        tree = self._copy()
        tree._extension_filter = wanted  # noqa: SLF001
        for root in tree._roots:  # noqa: SLF001
            _apply_visibility(root, wanted)
        return tree

    def apply_gitignore(self, patterns: Iterable[str]) -> SelectionTree:
        """Return a new tree whose `excluded` flags reflect `patterns`.

        Flags are recomputed from scratch, so applying the same list twice is a
        no-op. Descendants of an excluded directory are excluded as well.
        """
        pattern_list = tuple(patterns)
        matcher = GitignoreMatcher(pattern_list)
        tree = self._copy()
        tree._patterns = pattern_list  # noqa: SLF001
        for root in tree._roots:  # noqa: SLF001
            _apply_exclusion(root, matcher, inherited=False)
        return tree

    def extension_filters(self) -> list[ExtensionFilter]:
        """Count files per extension; `selected` reflects the current extension filter."""
        counts: dict[str, int] = {}
        for node in self.files():
            counts[node.extension] = counts.get(node.extension, 0) + 1
        return [
            ExtensionFilter(
                extension=ext,
                count=count,
                selected=not self._extension_filter or ext in self._extension_filter,
            )
            for ext, count in sorted(counts.items())
        ]


def _sort_children(nodes: list[TreeNode]) -> None:
    nodes.sort(key=sort_key)
    for node in nodes:
        if node.children:
            _sort_children(node.children)


def _recompute_node(node: TreeNode) -> SelectionState:
    if node.children is None:
        return node.selected
    node.selected = aggregate([_recompute_node(c) for c in node.children])
    return node.selected


def _apply_visibility(node: TreeNode, wanted: frozenset[str]) -> bool:
    if node.children is None:
        node.visible = not wanted or node.extension in wanted
        return node.visible
    child_flags = [_apply_visibility(c, wanted) for c in node.children]
    node.visible = not wanted or any(child_flags)
    return node.visible


def _apply_exclusion(node: TreeNode, matcher: GitignoreMatcher, *, inherited: bool) -> None:
    node.excluded = inherited or matcher.excludes(node.path)
    for child in node.children or ():
        _apply_exclusion(child, matcher, inherited=node.excluded)
