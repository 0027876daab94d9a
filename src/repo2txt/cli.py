from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from repo2txt import __version__
from repo2txt.config import ProviderType
from repo2txt.exceptions import ProviderError, Repo2TxtError
from repo2txt.logging import logger, setup_logging
from repo2txt.models import FetchOptions
from repo2txt.providers import create_source, detect_provider_type
from repo2txt.session import ExportSession
from repo2txt.settings import Settings, credentials_from_env, load_env
from repo2txt.tokenizer import TokenCounter, TokenizerPipeline

if TYPE_CHECKING:
    from collections.abc import Sequence

    from repo2txt.tree import SelectionTree

NO_SELECTION = "No files selected. Please select at least one file to export."


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="repo2txt",
        description="Export a repository (GitHub, GitLab, Azure DevOps, directory or zip) as one text file.",
    )
    p.add_argument("source", help="Repository URL, local directory or .zip archive.")
    p.add_argument("-o", "--output", type=Path, default=None, help="Output file (.txt or .md).")
    p.add_argument(
        "--format",
        choices=["text", "markdown"],
        default="",
        help="Force format (default: from the output suffix).",
    )
    p.add_argument(
        "--provider",
        choices=[t.value for t in ProviderType],
        default="",
        help="Force the provider type (default: detected from SOURCE).",
    )
    p.add_argument("--ref", default="", help="Branch or tag to export.")
    p.add_argument("--path", default="", help="Sub-directory to export.")
    p.add_argument("--token", default="", help="Access token (default: from the environment).")

    p.add_argument(
        "--gitignore",
        action="append",
        default=[],
        help="Gitignore-style exclusion pattern (repeatable).",
    )
    p.add_argument("--gitignore-file", type=Path, default=None, help="File holding exclusion patterns.")
    p.add_argument(
        "--ext",
        action="append",
        default=[],
        help="Only export files with this extension (repeatable).",
    )
    p.add_argument(
        "--common-only",
        action="store_true",
        help="Without --ext, select only common source-code files (.py, .js, .ts, ...).",
    )
    p.add_argument("--show-excluded", action="store_true", help="Show excluded nodes in the tree.")

    p.add_argument("--max-concurrent", type=int, default=10, help="Concurrent requests.")
    p.add_argument("--retries", type=int, default=3, help="Retries after a transient failure.")
    p.add_argument("--retry-delay", type=float, default=1.0, help="Seconds between retries.")
    p.add_argument("--min-delay", type=float, default=0.1, help="Minimum seconds between request starts.")
    p.add_argument("--timeout", type=float, default=30.0, help="HTTP timeout in seconds.")

    p.add_argument("--encoding", default="cl100k_base", help="tiktoken encoding.")
    p.add_argument("--no-worker", action="store_true", help="Count tokens inline.")
    p.add_argument("--log-file", type=str, default="", help="Log file path.")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return Settings(**vars(args))
    except ValidationError as exc:
        parser.error(str(exc))
        raise  # parser.error exits


def output_format(settings: Settings) -> str:
    if settings.format:
        return settings.format
    if settings.output is not None and settings.output.suffix.lower() == ".md":
        return "markdown"
    return "text"


def apply_selection(tree: SelectionTree, extensions: Sequence[str], *, common_only: bool = False) -> None:
    """Select the files with the given extensions, the common code files, or everything."""
    if extensions:
        tree.select_extensions(extensions)
    elif common_only:
        tree.select_common_extensions()
    else:
        tree.select_all()


async def export(settings: Settings) -> int:
    """Run one export; returns the process exit code.

    Raises:
        Repo2TxtError: when discovery fails.
    """
    provider = ProviderType(settings.provider) if settings.provider else detect_provider_type(settings.source)
    source = create_source(
        provider,
        credentials=credentials_from_env(provider, settings.token or None),
        fetch_config=settings.fetch_config(),
        timeout=settings.timeout,
    )
    markdown = output_format(settings) == "markdown"
    with TokenizerPipeline(TokenCounter(settings.encoding), use_worker=not settings.no_worker) as pipeline:
        async with ExportSession(source, pipeline=pipeline) as session:
            session.include_excluded = settings.show_excluded
            await session.load(settings.source, FetchOptions(ref=settings.ref or None, path=settings.path or None))
            patterns = settings.patterns()
            if patterns:
                session.apply_gitignore(patterns)
            if settings.ext:
                session.filter_by_extension(settings.ext)
            apply_selection(session.tree, settings.ext, common_only=settings.common_only)
            if not session.tree.selected_entries():
                print(NO_SELECTION, file=sys.stderr)
                return 1

            contents, failures = await session.fetch_selected()
            for entry, error in failures:
                print(f"Failed to fetch {entry.path}: {error}", file=sys.stderr)
            if failures and not contents:
                print("Error: no file could be fetched.", file=sys.stderr)
                return 1

            result = await session.render(contents, markdown=markdown)
            output = settings.output or Path(session.suggested_filename(".md" if markdown else ".txt"))
            output.write_text(result.text, encoding="utf-8")

    logger.info("output_written", path=str(output), files=len(contents), tokens=result.token_count)
    print(f"Wrote {output} files={len(contents)} tokens={result.token_count}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    settings = parse_args(argv)
    if settings.log_file:
        setup_logging(settings.log_file)
    load_env()

    try:
        return asyncio.run(export(settings))
    except ProviderError as exc:
        logger.error("export_failed", kind=exc.kind, error=exc.message)
        print(f"Error: {exc.hint}", file=sys.stderr)
        if exc.recovery_url:
            print(f"See: {exc.recovery_url}", file=sys.stderr)
        return 1
    except Repo2TxtError as exc:
        logger.error("export_failed", error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except OSError as exc:
        logger.error("export_failed", error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
