"""Trailing debounce for buffered writes."""

import asyncio
from typing import Callable, Optional


class DebouncedFlusher:
    """Coalesces repeated flush requests into one trailing flush.

    Each schedule() re-arms a timer on the running event loop; the flush
    function runs once the requests stop for ``wait_s`` seconds. The flush
    function reads current state when it runs, so the last write wins.
    Without a running loop the flush happens synchronously.
    """

    def __init__(self, flush_fn: Callable[[], None], wait_s: float = 1.0):
        self._flush_fn = flush_fn
        self.wait_s = wait_s
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self) -> None:
        self.cancel()
        if self.wait_s <= 0:
            self._flush_fn()
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._flush_fn()
            return
        self._handle = loop.call_later(self.wait_s, self._fire)

    def flush(self) -> None:
        """Run the flush now, dropping any pending timer."""
        self.cancel()
        self._flush_fn()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._flush_fn()
