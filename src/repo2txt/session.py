"""One export run: discover, select, fetch and render, with explicit teardown."""

from __future__ import annotations

from typing import TYPE_CHECKING, Self

from repo2txt.logging import logger
from repo2txt.models import FormattedOutput, count_lines
from repo2txt.naming import default_filename, extract_repo_name, sanitize_filename
from repo2txt.output_construction import build_markdown, build_output, order_contents
from repo2txt.tokenizer import TokenizerPipeline
from repo2txt.tree import SelectionTree

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from types import TracebackType

    from repo2txt.models import FetchOptions, FileContent, PathEntry
    from repo2txt.providers import RepositorySource
    from repo2txt.tokenizer import ProgressCallback


class ExportSession:
    """Owns one repository source, its selection tree and one tokenizer pipeline.

    The pipeline is created by the session when none is passed in; only the
    resources the session created are closed on exit, the source always is.
    """

    def __init__(self, source: RepositorySource, *, pipeline: TokenizerPipeline | None = None) -> None:
        self.source = source
        self._owns_pipeline = pipeline is None
        self.pipeline = pipeline or TokenizerPipeline()
        self._tree: SelectionTree | None = None
        self._identifier: str | None = None
        self.include_excluded = False

    @property
    def tree(self) -> SelectionTree:
        if self._tree is None:
            msg = "No repository loaded; call load() first"
            raise RuntimeError(msg)
        return self._tree

    @property
    def loaded(self) -> bool:
        return self._tree is not None

    async def load(self, identifier: str, options: FetchOptions | None = None) -> SelectionTree:
        """Discover the repository and build a fresh, fully unchecked tree.

        Raises:
            ProviderError: if discovery fails; the previous tree is kept.
            DuplicatePathError: if the listing contains conflicting paths.
        """
        entries = await self.source.discover_tree(identifier, options)
        tree = SelectionTree.build(entries)
        self._tree = tree
        self._identifier = identifier
        logger.info(
            "tree_loaded",
            provider=self.source.provider_type,
            entries=len(entries),
            files=len(tree.files()),
        )
        return tree

    def apply_gitignore(self, patterns: Iterable[str]) -> SelectionTree:
        self._tree = self.tree.apply_gitignore(patterns)
        return self._tree

    def filter_by_extension(self, extensions: Iterable[str]) -> SelectionTree:
        self._tree = self.tree.filter_by_extension(extensions)
        return self._tree

    async def fetch_selected(self) -> tuple[list[FileContent], list[tuple[PathEntry, BaseException]]]:
        """Fetch every selected file; failures are collected per file.

        Returns:
            tuple: fetched contents in completion order, and `(entry, error)` pairs.
        """
        contents: list[FileContent] = []
        failures: list[tuple[PathEntry, BaseException]] = []
        async for outcome in self.source.fetch_many(self.tree.selected_entries()):
            if outcome.error is not None:
                logger.warning("file_fetch_failed", path=outcome.item.path, error=str(outcome.error))
                failures.append((outcome.item, outcome.error))
            elif outcome.result is not None:
                contents.append(outcome.result)
        logger.info("files_fetched", fetched=len(contents), failed=len(failures))
        return contents, failures

    async def render(
        self,
        contents: Sequence[FileContent],
        *,
        markdown: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> FormattedOutput:
        """Render the fetched files.

        Markdown mode stores the whole document in `file_contents` and leaves
        `directory_tree` empty, so `FormattedOutput.text` is the document.
        """
        if not markdown:
            return await build_output(
                self.tree,
                contents,
                pipeline=self.pipeline,
                on_progress=on_progress,
                include_excluded=self.include_excluded,
            )
        ordered = order_contents(contents)
        response = await self.pipeline.tokenize_batch(ordered, on_progress=on_progress)
        counts = response.counts()
        counted = tuple(c.model_copy(update={"token_count": counts.get(c.path)}) for c in ordered)
        body = build_markdown(self.tree, counted, include_excluded=self.include_excluded)
        return FormattedOutput(
            directory_tree="",
            file_contents=body,
            token_count=await self.pipeline.tokenize(body),
            line_count=count_lines(body),
            files=counted,
        )

    def suggested_filename(self, suffix: str = ".txt") -> str:
        """`<repo name>-<YYYY-MM-DD><suffix>` for the loaded repository."""
        info = self.source.repo_info
        if info is not None and info.name:
            name = sanitize_filename(info.name)
        elif self._identifier is not None:
            name = extract_repo_name(self.source.provider_type, self._identifier)
        else:
            name = "repo"
        return f"{default_filename(name)}{suffix}"

    async def aclose(self) -> None:
        await self.source.aclose()
        if self._owns_pipeline:
            self.pipeline.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
