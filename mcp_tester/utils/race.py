"""Timeout races that abandon the losing operation instead of cancelling it.

``asyncio.wait_for`` cancels the awaited operation when the deadline passes.
Tool calls may mutate server-side state, so a timed-out call is left running:
the caller stops waiting and its eventual result is discarded. The call may
therefore still complete on the server after it has been reported as timed out.
"""

import asyncio
import logging
from typing import Awaitable, TypeVar

from ..exceptions import OperationTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TimeoutRace:
    """Runs awaitables against a deadline and keeps the losers referenced until they settle."""

    def __init__(self) -> None:
        self._abandoned: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of abandoned operations that have not settled yet."""
        return len(self._abandoned)

    async def run(self, operation: Awaitable[T], timeout_seconds: float, name: str = "operation") -> T:
        """Await ``operation`` until it settles or ``timeout_seconds`` elapse.

        Raises:
            OperationTimeout: the timer won; the operation keeps running unobserved.
        """
        task = asyncio.ensure_future(operation)
        task.set_name(name)

        done, _ = await asyncio.wait({task}, timeout=timeout_seconds)
        if task in done:
            return task.result()

        self._abandoned.add(task)
        task.add_done_callback(self._settled)
        logger.warning(f"{name} did not settle within {timeout_seconds * 1000:g} ms; abandoning it")
        raise OperationTimeout(name, timeout_seconds * 1000)

    def _settled(self, task: asyncio.Task) -> None:
        self._abandoned.discard(task)
        if task.cancelled():
            return
        # Retrieving the exception keeps asyncio from reporting it as never retrieved.
        exc = task.exception()
        if exc is not None:
            logger.debug(f"Abandoned {task.get_name()} finished with error: {exc!r}")
        else:
            logger.debug(f"Abandoned {task.get_name()} finished; result discarded")
