from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from repo2txt.tokenizer import TokenCounter, TokenizerPipeline

if TYPE_CHECKING:
    from collections.abc import Iterator


class WordCounter(TokenCounter):
    """Deterministic counter: one token per whitespace-separated word."""

    def count(self, text: str) -> int:
        return len(text.split())


@pytest.fixture
def word_counter() -> WordCounter:
    return WordCounter()


@pytest.fixture
def inline_pipeline(word_counter: WordCounter) -> Iterator[TokenizerPipeline]:
    pipeline = TokenizerPipeline(word_counter, use_worker=False)
    yield pipeline
    pipeline.close()


@pytest.fixture
def worker_pipeline(word_counter: WordCounter) -> Iterator[TokenizerPipeline]:
    pipeline = TokenizerPipeline(word_counter, use_worker=True)
    yield pipeline
    pipeline.close()
