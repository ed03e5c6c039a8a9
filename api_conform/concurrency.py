"""Bounded asyncio worker pool with cooperative cancellation."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_MAX_WORKERS = 8


class RunCancelled(Exception):
    """Raised at an await point once cancellation has been requested."""


def checkpoint(cancel_event: asyncio.Event | None) -> None:
    """Raise ``RunCancelled`` if the run was asked to stop."""
    if cancel_event is not None and cancel_event.is_set():
        raise RunCancelled()


async def run_bounded(
    units: Sequence[T],
    worker: Callable[[T], R],
    *,
    max_workers: int = DEFAULT_MAX_WORKERS,
    cancel_event: asyncio.Event | None = None,
) -> list[R]:
    """Run ``worker`` over ``units`` in threads, at most ``max_workers`` at a time.

    Results keep the order of ``units``. Workers must not share mutable state;
    each returns its own value and the caller merges them.
    """
    if max_workers < 1:
        raise ValueError(f"max_workers must be >= 1, got {max_workers}")

    semaphore = asyncio.Semaphore(max_workers)

    async def _run(unit: T) -> R:
        async with semaphore:
            checkpoint(cancel_event)
            result = await asyncio.to_thread(worker, unit)
            checkpoint(cancel_event)
            return result

    tasks = [asyncio.create_task(_run(unit)) for unit in units]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


__all__ = ["DEFAULT_MAX_WORKERS", "RunCancelled", "checkpoint", "run_bounded"]
