"""
Cooperative cancellation for workflow runs
"""

import asyncio
import logging

from workflow_engine.utils.error_handler import RunCancelledError

logger = logging.getLogger(__name__)


class CancelToken:
    """
    Per-run cancellation signal.

    The run loop polls `raise_if_cancelled()` at step boundaries; every
    pre-wait, post-delay and poll interval goes through `sleep()` so a stop
    request never waits out a full delay.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise RunCancelledError()

    async def sleep(self, duration_ms: int):
        """Sleep for duration_ms, raising RunCancelledError as soon as cancelled"""
        self.raise_if_cancelled()
        if duration_ms <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=duration_ms / 1000.0)
        except asyncio.TimeoutError:
            return
        raise RunCancelledError()
