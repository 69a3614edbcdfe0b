"""
Bounded-parallelism runner for async tasks.

Used for the image upload phase: at most `limit` uploads are in flight,
and one failed upload never cancels its siblings.
"""

import asyncio
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

import structlog

from exceptions import AppError
from models.catalog import BatchResult, FailedItem

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[int, int], None]

DEFAULT_CONCURRENCY_LIMIT = 3


def describe_error(error: BaseException) -> str:
    """Readable one-line reason for a failed item."""
    if isinstance(error, AppError):
        return error.message
    message = str(error)
    return message if message else type(error).__name__


def notify_progress(
    on_progress: Optional[ProgressCallback],
    completed: int,
    total: int,
) -> None:
    """Call a progress observer; a broken observer must not break the batch."""
    if on_progress is None:
        return
    try:
        on_progress(completed, total)
    except Exception as e:
        logger.warning(
            "progress_callback_failed",
            completed=completed,
            total=total,
            error=str(e),
            error_type=type(e).__name__
        )


async def run_with_concurrency(
    items: Iterable[T],
    task: Callable[[T], Awaitable[R]],
    limit: int = DEFAULT_CONCURRENCY_LIMIT,
    on_progress: Optional[ProgressCallback] = None,
) -> BatchResult[R]:
    """
    Run `task` over every item with at most `limit` running at once.

    As each task settles the next queued item starts. A raised exception
    is recorded in `failed` against its input item and the run continues.
    Completion order is not input order.

    Args:
        items: Inputs to process
        task: Async function applied to each item
        limit: Maximum tasks in flight
        on_progress: Called as (completed, total) after every settlement

    Returns:
        BatchResult with task results in `successful` and failed inputs in `failed`

    Raises:
        ValueError: If limit < 1
    """
    if limit < 1:
        raise ValueError(f"Concurrency limit must be at least 1, got {limit}")

    pending = list(items)
    result: BatchResult[R] = BatchResult()
    total = len(pending)
    if total == 0:
        return result

    semaphore = asyncio.Semaphore(limit)
    completed = 0

    async def run_one(index: int, item: T) -> None:
        nonlocal completed
        async with semaphore:
            try:
                value = await task(item)
            except Exception as e:
                logger.warning(
                    "concurrent_task_failed",
                    index=index,
                    error=str(e),
                    error_type=type(e).__name__
                )
                result.failed.append(FailedItem(item=item, error=describe_error(e)))
            else:
                result.successful.append(value)
        completed += 1
        notify_progress(on_progress, completed, total)

    logger.debug("concurrent_run_start", total=total, limit=limit)

    await asyncio.gather(*(run_one(i, item) for i, item in enumerate(pending)))

    logger.info(
        "concurrent_run_complete",
        total=total,
        successful=len(result.successful),
        failed=len(result.failed)
    )
    return result
