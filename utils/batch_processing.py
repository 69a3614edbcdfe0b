"""
Chunked batch persistence.

Large record sets are written in fixed-size chunks, one chunk at a time.
A failed chunk marks its own records failed and the next chunk still runs;
chunks already written stay written.
"""

import inspect
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar, Union

import structlog

from models.catalog import BatchResult, FailedItem
from utils.concurrency import ProgressCallback, describe_error, notify_progress

logger = structlog.get_logger(__name__)

R = TypeVar("R")

PersistFn = Callable[[list[R]], Union[Awaitable[Any], Any]]

DEFAULT_CHUNK_SIZE = 500


def chunk_list(items: Sequence[R], size: int) -> list[list[R]]:
    """
    Split items into contiguous chunks of at most `size`.

    chunk_list([1, 2, 3, 4, 5], 2) → [[1, 2], [3, 4], [5]]
    """
    if size < 1:
        raise ValueError(f"Chunk size must be at least 1, got {size}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


async def write_in_chunks(
    records: Sequence[R],
    chunk_size: int,
    persist: PersistFn,
    on_progress: Optional[ProgressCallback] = None,
) -> BatchResult[R]:
    """
    Persist records chunk by chunk, sequentially.

    Args:
        records: Validated records to write
        chunk_size: Maximum records per persist call
        persist: Writes one chunk; may be sync or async; raising marks the chunk failed
        on_progress: Called as (records_processed, total) after each chunk

    Returns:
        BatchResult where successful + failed reproduces `records` exactly once

    Raises:
        ValueError: If chunk_size < 1
    """
    chunks = chunk_list(records, chunk_size)
    result: BatchResult[R] = BatchResult()
    total = len(records)
    processed = 0

    logger.info(
        "chunked_write_start",
        records=total,
        chunks=len(chunks),
        chunk_size=chunk_size
    )

    for number, chunk in enumerate(chunks, start=1):
        try:
            outcome = persist(chunk)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            error = describe_error(e)
            logger.error(
                "chunk_write_failed",
                chunk=number,
                size=len(chunk),
                error=error,
                error_type=type(e).__name__
            )
            result.failed.extend(FailedItem(item=record, error=error) for record in chunk)
        else:
            result.successful.extend(chunk)
            logger.debug("chunk_written", chunk=number, size=len(chunk))

        processed += len(chunk)
        notify_progress(on_progress, processed, total)

    logger.info(
        "chunked_write_complete",
        successful=len(result.successful),
        failed=len(result.failed)
    )
    return result
