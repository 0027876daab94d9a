"""Rendering of the directory tree and fetched files into the exported artifact."""

from __future__ import annotations

from typing import TYPE_CHECKING

from repo2txt.config import guess_language
from repo2txt.models import FileContent, FormattedOutput, count_lines

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from repo2txt.tokenizer import ProgressCallback, TokenizerPipeline
    from repo2txt.tree import SelectionTree, TreeNode

TREE_HEADER = ("Directory Structure:", "---")
CONTENTS_HEADER = ("File Contents:", "---")
NO_FILES = "No files selected."


def _renderable(node: TreeNode, *, include_excluded: bool) -> bool:
    return node.visible and (include_excluded or not node.excluded)


def build_tree_lines(nodes: Sequence[TreeNode], *, include_excluded: bool = False, prefix: str = "") -> list[str]:
    """Draw `nodes` and their descendants with box-drawing connectors.

    Args:
        nodes (Sequence[TreeNode]): siblings, already in display order.
        include_excluded (bool): also draw gitignore-excluded nodes, marked as such.
        prefix (str): indentation inherited from the ancestors.

    Returns:
        list[str]: one line per drawn node.
    """
    shown = [n for n in nodes if _renderable(n, include_excluded=include_excluded)]
    lines: list[str] = []
    for i, node in enumerate(shown):
        last = i == len(shown) - 1
        connector = "└── " if last else "├── "
        icon = "📁" if node.is_directory else "📄"
        marker = " (excluded)" if node.excluded else ""
        lines.append(f"{prefix}{connector}{icon} {node.name}{marker}")
        if node.children:
            lines.extend(
                build_tree_lines(
                    node.children,
                    include_excluded=include_excluded,
                    prefix=prefix + ("    " if last else "│   "),
                ),
            )
    return lines


def render_directory_tree(tree: SelectionTree, *, include_excluded: bool = False) -> str:
    """Render the visible part of `tree` under a `Directory Structure:` header."""
    return "\n".join([*TREE_HEADER, *build_tree_lines(tree.roots, include_excluded=include_excluded)])


def render_file_contents(contents: Sequence[FileContent]) -> str:
    """Render one block per file; `Tokens:` only appears once a file has a count."""
    if not contents:
        return NO_FILES
    sections = list(CONTENTS_HEADER)
    for file in contents:
        sections.extend(["", f"File: {file.path}", f"Lines: {file.line_count}"])
        if file.token_count:
            sections.append(f"Tokens: {file.token_count}")
        sections.extend(["---", file.text, ""])
    return "\n".join(sections)


def order_contents(contents: Iterable[FileContent]) -> list[FileContent]:
    """Sort fetched files by path (case-insensitive first), the order of a flat repository listing."""
    return sorted(contents, key=lambda c: (c.path.lower(), c.path))


async def build_output(
    tree: SelectionTree,
    contents: Iterable[FileContent],
    *,
    pipeline: TokenizerPipeline,
    on_progress: ProgressCallback | None = None,
    include_excluded: bool = False,
) -> FormattedOutput:
    """Assemble the text artifact, counting tokens on the pipeline.

    Files arrive in fetch-completion order; they are sorted by path before
    rendering, so the output does not depend on network timing.

    Args:
        tree (SelectionTree): the tree the contents were selected from.
        contents (Iterable[FileContent]): fetched files.
        pipeline (TokenizerPipeline): pipeline counting file and tree tokens.
        on_progress (ProgressCallback | None): per-file progress callback.
        include_excluded (bool): draw excluded nodes in the directory tree.

    Returns:
        FormattedOutput: the artifact with its token and line totals.
    """
    ordered = order_contents(contents)
    response = await pipeline.tokenize_batch(ordered, on_progress=on_progress)
    counts = {f.path: f for f in response.files}
    counted = [
        file.model_copy(update={"token_count": counts[file.path].token_count}) if file.path in counts else file
        for file in ordered
    ]
    directory_tree = render_directory_tree(tree, include_excluded=include_excluded)
    file_contents = render_file_contents(counted)
    tree_tokens = await pipeline.tokenize(directory_tree)
    return FormattedOutput(
        directory_tree=directory_tree,
        file_contents=file_contents,
        token_count=tree_tokens + response.token_count,
        line_count=count_lines(f"{directory_tree}\n\n{file_contents}"),
        files=tuple(counted),
    )


def build_markdown(tree: SelectionTree, contents: Iterable[FileContent], *, include_excluded: bool = False) -> str:
    """Render the same selection as a markdown document with fenced code blocks."""
    sections = ["# Repository Contents", "", "## Directory Structure", "", "```"]
    sections.append("\n".join(build_tree_lines(tree.roots, include_excluded=include_excluded)))
    sections.extend(["```", "", "## File Contents", ""])
    for file in order_contents(contents):
        sections.extend([f"### {file.path}", "", f"```{guess_language(file.path)}", file.text, "```", ""])
    return "\n".join(sections)
