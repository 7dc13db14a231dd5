"""
Streaming log ingestion: split a line-oriented file into bounded batches and
feed them, one at a time and in file order, through the conversation.

The line source is a pull-based iterator that is only advanced after the
previous batch's call has settled, so no lines are read while a call is
pending.  Ingestion is not atomic: when a batch fails, the turns appended by
earlier batches stay in the conversation.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Iterator, List, Tuple, Union

from .caller import ResilientCaller
from .errors import FilesystemError
from .memory import Conversation

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
Batch = Tuple[str, ...]
BatchProcessor = Callable[[Batch], Awaitable[object]]

_BOM = "\ufeff"


def iter_lines(path: PathLike, encoding: str = "utf-16-le") -> Iterator[str]:
    """Yield the lines of ``path`` without terminators, reading lazily.

    Raises FilesystemError when the file cannot be opened, read or decoded.
    """
    p = Path(path)
    try:
        with p.open("r", encoding=encoding) as f:
            for line_no, line in enumerate(f, 1):
                if line_no == 1 and line.startswith(_BOM):
                    line = line[1:]
                yield line.rstrip("\r\n")
    except (OSError, UnicodeDecodeError, LookupError) as e:
        raise FilesystemError(f"Could not read {p.name}: {e}") from e


def iter_batches(lines: Iterable[str], batch_size: int) -> Iterator[Batch]:
    """Group ``lines`` into tuples of ``batch_size``; the last may be shorter."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    current: List[str] = []
    for line in lines:
        current.append(line)
        if len(current) >= batch_size:
            yield tuple(current)
            current = []
    if current:
        yield tuple(current)


def batch_prompt(batch: Batch) -> str:
    return "\n".join(batch)


def make_batch_processor(caller: ResilientCaller, conversation: Conversation) -> BatchProcessor:
    """Return the default callback: one ``caller.call`` per batch."""

    async def process_batch(batch: Batch) -> None:
        logger.info("Processing batch of %d lines", len(batch))
        snapshot = await caller.call(conversation, batch_prompt(batch))
        logger.debug("Conversation holds %d messages after batch", len(snapshot))

    return process_batch


@dataclass
class PipelineReport:
    batches: int = 0
    lines: int = 0
    skipped: int = 0


def is_blank(batch: Batch) -> bool:
    return not any(line.strip() for line in batch)


class BatchPipeline:
    """Feeds a file through ``process_batch`` one bounded batch at a time."""

    def __init__(self, batch_size: int = 20000, encoding: str = "utf-16-le") -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.batch_size = batch_size
        self.encoding = encoding

    async def run(self, path: PathLike, process_batch: BatchProcessor) -> PipelineReport:
        """Process every batch of ``path`` in order; the first failure aborts the run.

        Batches holding only blank lines are skipped and not counted. Each
        batch is read in a worker thread so disk reads do not stall the loop.
        """
        report = PipelineReport()
        with closing(iter_lines(path, self.encoding)) as lines:
            batches = iter_batches(lines, self.batch_size)
            while True:
                batch = await asyncio.to_thread(next, batches, None)
                if batch is None:
                    break
                if is_blank(batch):
                    logger.info("Skipping batch of %d blank lines", len(batch))
                    report.skipped += 1
                    continue
                try:
                    await process_batch(batch)
                except Exception:
                    logger.error(
                        "Batch %d failed after %d lines processed; stopping ingestion",
                        report.batches + 1, report.lines,
                    )
                    raise
                report.batches += 1
                report.lines += len(batch)

        logger.info(
            "Finished processing %s: %d batches, %d lines, %d blank batches skipped",
            Path(path).name, report.batches, report.lines, report.skipped,
        )
        return report
