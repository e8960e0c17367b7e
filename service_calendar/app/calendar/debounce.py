"""
Cancellable debounce timer.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from shared.logging import get_logger


class DebounceHandle:
    """A scheduled call that may still be superseded.

    Awaiting the handle yields True once the call has run and False if it was
    cancelled before its timer fired.
    """

    def __init__(self, future: asyncio.Future):
        self._future = future
        self._task: Optional[asyncio.Task] = None
        self.fired = False

    def cancel(self) -> bool:
        """Cancel the call if its timer has not fired yet."""
        if self.fired:
            return False
        if self._task is not None:
            self._task.cancel()
        if not self._future.done():
            self._future.set_result(False)
        return True

    @property
    def cancelled(self) -> bool:
        return self._future.done() and not self.fired

    def done(self) -> bool:
        return self._future.done()

    def __await__(self):
        # A cancelled waiter must not cancel the shared result.
        return asyncio.shield(self._future).__await__()


class Debouncer:
    """Runs only the most recent of a burst of calls.

    Each ``schedule`` cancels the pending handle and arms a new timer. Once a
    timer fires its call runs to completion; later schedules do not abort it.
    """

    def __init__(self, delay: float = 0.3):
        self.delay = delay
        self.logger = get_logger("calendar.debounce")
        self._pending: Optional[DebounceHandle] = None

    @property
    def pending(self) -> Optional[DebounceHandle]:
        return self._pending

    def schedule(self, func: Callable[[], Awaitable[Any]]) -> DebounceHandle:
        if self._pending is not None and self._pending.cancel():
            self.logger.debug("Debounced call superseded")

        loop = asyncio.get_running_loop()
        handle = DebounceHandle(loop.create_future())
        handle._task = loop.create_task(self._fire(handle, func))
        self._pending = handle
        return handle

    async def _fire(self, handle: DebounceHandle, func: Callable[[], Awaitable[Any]]):
        await asyncio.sleep(self.delay)

        handle.fired = True
        if self._pending is handle:
            self._pending = None

        try:
            await func()
        except Exception as e:
            if not handle._future.done():
                handle._future.set_exception(e)
        else:
            if not handle._future.done():
                handle._future.set_result(True)

    def cancel(self) -> bool:
        """Cancel the pending call, if any."""
        handle, self._pending = self._pending, None
        return handle.cancel() if handle is not None else False
