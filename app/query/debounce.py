"""Debouncer — run an async callback once input has been stable for a delay."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class Debouncer:
    """Coalesces bursts of triggers into one call with the latest arguments.

    Each trigger cancels the pending timer. Once the delay elapses the
    callback runs to completion; later triggers start a fresh timer
    instead of interrupting it. The returned task resolves to the
    callback's result, or False when the callback raised.
    """

    def __init__(self, delay_seconds: float, callback: Callable[..., Awaitable[Any]]):
        self.delay = delay_seconds
        self.callback = callback
        self._timer: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def trigger(self, *args: Any, **kwargs: Any) -> asyncio.Task:
        self.cancel()
        self._timer = asyncio.create_task(self._run(args, kwargs))
        return self._timer

    def cancel(self):
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _run(self, args: tuple, kwargs: dict) -> Any:
        await asyncio.sleep(self.delay)
        # Detach so a new trigger starts a new timer rather than cancelling this call
        self._timer = None
        try:
            return await self.callback(*args, **kwargs)
        except Exception as e:
            logger.error("Debounced callback failed | %s", str(e)[:200])
            return False
