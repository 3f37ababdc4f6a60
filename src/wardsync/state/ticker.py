"""The single shared mutation clock.

Every ``interval`` seconds the ticker runs one store pass (only while at
least one scheduler listens) and hands the resulting batch to every
subscriber queue. Schedulers never mutate the store themselves, so N
connections cost one pass per tick, not N.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass

from wardsync.models.changes import ChangeRecord
from wardsync.state.store import EntityStore

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeBatch:
    """Changes of one tick, stamped with the store generation they belong to."""

    seq: int
    generation: int
    changes: tuple[ChangeRecord, ...]


class MutationTicker:
    def __init__(self, store: EntityStore, interval: float) -> None:
        self.store = store
        self.interval = interval
        self._subscribers: list[asyncio.Queue[ChangeBatch]] = []
        self._task: asyncio.Task[None] | None = None
        self._seq = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[ChangeBatch]:
        queue: asyncio.Queue[ChangeBatch] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[ChangeBatch]) -> None:
        with contextlib.suppress(ValueError):
            self._subscribers.remove(queue)

    def tick(self) -> ChangeBatch | None:
        """Run one pass and fan it out. Returns ``None`` when nobody listens."""
        if not self._subscribers:
            return None
        changes = self.store.mutate()
        self._seq += 1
        batch = ChangeBatch(seq=self._seq, generation=self.store.generation, changes=tuple(changes))
        for queue in list(self._subscribers):
            queue.put_nowait(batch)
        return batch

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="wardsync-ticker")
        _logger.debug("Mutation ticker started (interval %.2fs)", self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        _logger.debug("Mutation ticker stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.tick()
            except Exception:
                _logger.exception("Mutation pass failed; retrying on next tick")
