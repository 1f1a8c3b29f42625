"""Cancellation tokens — "latest request wins" for re-issued fetches."""

import asyncio


class QueryCancelled(Exception):
    """Raised when a fetch was superseded before its result could be applied."""


class CancellationToken:
    """Checked before every state mutation of the fetch it was handed to."""

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        self._cancelled = True

    def raise_if_cancelled(self):
        if self._cancelled:
            raise QueryCancelled("request superseded")


class RequestTracker:
    """Tracks the single in-flight request of one logical query.

    Starting a new request cancels the previous token and its task, so a
    stale response can never overwrite a newer one.
    """

    def __init__(self):
        self._token: CancellationToken | None = None
        self._task: asyncio.Task | None = None

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    def begin(self) -> CancellationToken:
        self.cancel()
        self._token = CancellationToken()
        return self._token

    def attach(self, task: asyncio.Task):
        self._task = task

    def cancel(self):
        if self._token is not None:
            self._token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._token = None
        self._task = None
