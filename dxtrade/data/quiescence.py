"""
Quiescence window for snapshot-style collections.

Some pushes (instruments, symbol limits, chart bars) arrive as an unknown
number of batches with no end marker. A collection is considered complete
once ``settle`` seconds pass without a new batch, or immediately when the
producer flags the snapshot as complete.
"""
import asyncio
from typing import Any, Iterable, List, Optional


class QuiescentCollector:
    """Accumulates batches until the stream goes quiet."""

    def __init__(self, settle: float):
        self.settle = max(0.0, settle)
        self._items: List[Any] = []
        self._activity = asyncio.Event()
        self._started = asyncio.Event()
        self._complete = False
        self._error: Optional[BaseException] = None

    @property
    def items(self) -> List[Any]:
        return list(self._items)

    @property
    def started(self) -> bool:
        return self._started.is_set()

    def add(self, batch: Iterable[Any] = (), snapshot_end: bool = False) -> None:
        """Record a batch; every call (even an empty batch) resets the window."""
        self._items.extend(batch)
        if snapshot_end:
            self._complete = True
        self._started.set()
        self._activity.set()

    def complete(self) -> None:
        self._complete = True
        self._started.set()
        self._activity.set()

    def fail(self, error: BaseException) -> None:
        """Abort the collection; wait() raises ``error``."""
        if self._error is None:
            self._error = error
        self._started.set()
        self._activity.set()

    async def wait(self, timeout: float) -> List[Any]:
        """
        Wait for the first batch, then for quiescence.

        Raises asyncio.TimeoutError when nothing settles within ``timeout``.
        """
        return await asyncio.wait_for(self._run(), timeout)

    async def _run(self) -> List[Any]:
        await self._started.wait()
        while not self._complete and self._error is None:
            self._activity.clear()
            try:
                await asyncio.wait_for(self._activity.wait(), self.settle)
            except asyncio.TimeoutError:
                break
        if self._error is not None:
            raise self._error
        return self.items
