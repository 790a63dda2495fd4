"""
Debouncer — one restartable timer per field being written.

Every `trigger(value)` replaces the pending value and restarts the quiet
period. When the period passes with no new trigger, the callback runs
once with the latest value. `flush()` runs it now; `cancel()` drops it.

Pure asyncio. The caller owns what the callback writes.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger("Debouncer")

Callback = Callable[[Any], Union[None, Awaitable[None]]]

_EMPTY = object()


class Debouncer:
    """Coalesces rapid updates into a single delayed call.

    Usage:
        writer = Debouncer(0.75, lambda text: store.set(path, text))
        writer.trigger("O")
        writer.trigger("On")     # restarts the 750 ms window
        ...                      # one write of "On"
    """

    def __init__(self, delay: float, callback: Callback, name: str = "debounce"):
        self.delay = delay
        self.name = name
        self._callback = callback
        self._value: Any = _EMPTY
        self._timer: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        """True while a value is waiting for its quiet period."""
        return self._value is not _EMPTY

    @property
    def pending_value(self) -> Any:
        """The value waiting to be written, or None."""
        return None if self._value is _EMPTY else self._value

    def trigger(self, value: Any) -> None:
        self._value = value
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._wait())

    async def _wait(self) -> None:
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            return  # restarted, flushed or cancelled
        self._timer = None
        await self._fire()

    async def _fire(self) -> None:
        if self._value is _EMPTY:
            return
        value, self._value = self._value, _EMPTY
        try:
            result = self._callback(value)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"[{self.name}] Debounced write failed: {e}", exc_info=True)

    async def flush(self) -> None:
        """Run the pending call immediately (if any)."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        await self._fire()

    def cancel(self) -> None:
        """Drop the pending call without running it."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        self._value = _EMPTY
