"""Token counting, run off the event loop on a single worker thread.

The pipeline speaks in envelopes: one `TokenizeRequest` in, any number of
`TokenizeProgress` messages and exactly one `TokenizeResponse` out. The worker
thread posts them onto an `asyncio.Queue`; the inline fallback runs the very
same processor on the calling thread, so both paths produce identical output.
"""

from __future__ import annotations

import asyncio
import itertools
import math
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Self

import tiktoken
from pydantic import BaseModel, ConfigDict, Field

from repo2txt.logging import logger
from repo2txt.models import count_lines

if TYPE_CHECKING:
    from collections.abc import Iterable
    from types import TracebackType

    from repo2txt.models import FileContent

DEFAULT_ENCODING = "cl100k_base"


class TokenCounter:
    """Count tokens with a `tiktoken` encoding, loaded on first use.

    When the encoding cannot be loaded (unknown name, no network to fetch the
    BPE file) a warning is logged once and counts fall back to `ceil(len / 4)`.
    """

    def __init__(self, encoding_name: str = DEFAULT_ENCODING) -> None:
        self.encoding_name = encoding_name
        self._encoding: tiktoken.Encoding | None = None
        self._unavailable = False

    def _load(self) -> tiktoken.Encoding | None:
        if self._encoding is None and not self._unavailable:
            try:
                self._encoding = tiktoken.get_encoding(self.encoding_name)
            except (ValueError, OSError) as exc:
                self._unavailable = True
                logger.warning("tokenizer_encoding_unavailable", encoding=self.encoding_name, error=str(exc))
        return self._encoding

    @property
    def estimated(self) -> bool:
        """Whether counts come from the length estimate instead of the encoding."""
        return self._load() is None

    def count(self, text: str) -> int:
        if not text:
            return 0
        encoding = self._load()
        if encoding is None:
            return math.ceil(len(text) / 4)
        # special-token markers inside source files are plain text here
        return len(encoding.encode(text, disallowed_special=()))


class TokenizeItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    text: str


class TokenizeRequest(BaseModel):
    """A batch of texts to count."""

    model_config = ConfigDict(frozen=True)

    id: int
    files: tuple[TokenizeItem, ...] = ()


class TokenizeProgress(BaseModel):
    """Posted after each file of a request."""

    model_config = ConfigDict(frozen=True)

    id: int
    current: int = Field(..., ge=0)
    total: int = Field(..., ge=0)

    @property
    def fraction(self) -> float:
        return 1.0 if self.total == 0 else self.current / self.total


class TokenizedFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    token_count: int = Field(..., ge=0)
    line_count: int = Field(..., ge=0)


class TokenizeResponse(BaseModel):
    """Final envelope of a request; `error` is set when the batch could not complete."""

    model_config = ConfigDict(frozen=True)

    id: int
    token_count: int = Field(..., ge=0)
    files: tuple[TokenizedFile, ...] = ()
    error: str | None = None

    def counts(self) -> dict[str, int]:
        return {f.path: f.token_count for f in self.files}


Message = TokenizeProgress | TokenizeResponse
ProgressCallback = Callable[[TokenizeProgress], Any]


class TokenizerPipeline:
    """Owns a `TokenCounter` and the worker thread that runs it.

    Args:
        counter: counter to use; a `cl100k_base` counter by default.
        use_worker: run requests on a background thread. When False, or when the
            worker cannot take the request, the processor runs inline.
    """

    def __init__(self, counter: TokenCounter | None = None, *, use_worker: bool = True) -> None:
        self.counter = counter or TokenCounter()
        self.use_worker = use_worker
        self._executor: ThreadPoolExecutor | None = None
        self._ids = itertools.count(1)

    def process(self, request: TokenizeRequest, post: Callable[[Message], Any]) -> None:
        """Count every file of `request`, posting progress then the response through `post`."""
        files: list[TokenizedFile] = []
        total = 0
        try:
            for index, item in enumerate(request.files, start=1):
                try:
                    count = self.counter.count(item.text)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("tokenization_failed", path=item.path, error=str(exc))
                    count = 0
                files.append(TokenizedFile(path=item.path, token_count=count, line_count=count_lines(item.text)))
                total += count
                post(TokenizeProgress(id=request.id, current=index, total=len(request.files)))
        except Exception as exc:  # noqa: BLE001
            logger.warning("tokenization_batch_failed", request_id=request.id, error=str(exc))
            post(TokenizeResponse(id=request.id, token_count=total, files=tuple(files), error=str(exc)))
            return
        post(TokenizeResponse(id=request.id, token_count=total, files=tuple(files)))

    def _worker(self) -> ThreadPoolExecutor | None:
        if not self.use_worker:
            return None
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="repo2txt-tokenizer")
        return self._executor

    async def tokenize_batch(
        self,
        files: Iterable[FileContent | TokenizeItem],
        on_progress: ProgressCallback | None = None,
    ) -> TokenizeResponse:
        """Count tokens of every file, reporting progress after each one.

        Args:
            files: texts to count, keyed by path.
            on_progress: called on the event loop with each `TokenizeProgress`.

        Returns:
            TokenizeResponse: per-file counts (zero for files that failed) and the total.
        """
        request = TokenizeRequest(
            id=next(self._ids),
            files=tuple(TokenizeItem(path=f.path, text=f.text) for f in files),
        )
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Message] = asyncio.Queue()
        worker_done: asyncio.Future[None] | None = None

        executor = self._worker()
        if executor is not None:
            try:
                worker_done = loop.run_in_executor(
                    executor,
                    self.process,
                    request,
                    lambda message: loop.call_soon_threadsafe(queue.put_nowait, message),
                )
            except RuntimeError as exc:
                logger.warning("tokenizer_worker_unavailable", error=str(exc))
                self.use_worker = False
        if worker_done is None:
            self.process(request, queue.put_nowait)

        while True:
            message = await queue.get()
            if isinstance(message, TokenizeProgress):
                if on_progress is not None:
                    on_progress(message)
                continue
            if worker_done is not None:
                await worker_done
            return _complete(request, message)

    async def tokenize(self, text: str) -> int:
        response = await self.tokenize_batch([TokenizeItem(path="", text=text)])
        return response.token_count

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def _complete(request: TokenizeRequest, response: TokenizeResponse) -> TokenizeResponse:
    """Give files a failed batch never reached a zero count."""
    if response.error is None:
        return response
    done = {f.path for f in response.files}
    missing = tuple(
        TokenizedFile(path=item.path, token_count=0, line_count=count_lines(item.text))
        for item in request.files
        if item.path not in done
    )
    return response.model_copy(update={"files": response.files + missing})
