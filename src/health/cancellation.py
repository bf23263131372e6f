"""Join-all barrier that gives up on unfinished tasks once a cancel event fires."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

logger = logging.getLogger(__name__)

CANCEL_GRACE_SECONDS = 1.0


async def join_until_cancelled(
    tasks: Sequence[asyncio.Task[Any]],
    cancel: asyncio.Event | None = None,
) -> set[asyncio.Task[Any]]:
    """Wait for every task, or until ``cancel`` is set.

    Returns the set of tasks that were cancelled because they had not finished
    when the event fired. Tasks that completed before that keep their results.
    """
    if not tasks:
        return set()
    if cancel is None:
        await asyncio.wait(tasks)
        return set()

    pending: set[asyncio.Task[Any]] = set(tasks)
    waiter = asyncio.create_task(cancel.wait())
    try:
        while pending and not cancel.is_set():
            done, _ = await asyncio.wait(pending | {waiter}, return_when=asyncio.FIRST_COMPLETED)
            pending -= done
    finally:
        waiter.cancel()

    if not pending:
        return set()

    logger.info("Cancellation requested — abandoning %d unfinished task(s)", len(pending))
    for task in pending:
        task.cancel()
    # Tasks that swallow the cancellation are left behind after the grace period.
    await asyncio.wait(pending, timeout=CANCEL_GRACE_SECONDS)
    return {t for t in pending if not t.done() or t.cancelled()}
