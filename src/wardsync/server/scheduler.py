"""Per-connection update scheduling.

A :class:`ModeScheduler` turns the shared change batches into the wire
messages of one synchronization mode. Each connection owns exactly one
scheduler; switching modes stops it and starts a fresh one, which also
restarts the hybrid cycle at its "all changes" phase.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Collection

from wardsync._constants import CRITICAL_FIELD_PATHS, CYCLE_NEXT_CRITICAL, CYCLE_NEXT_FULL
from wardsync.models import (
    DeltaUpdate,
    FullDataUpdate,
    HybridUpdate,
    HybridUpdateType,
    ServerMessage,
    UpdateMode,
    group_changes,
)
from wardsync.state.ticker import ChangeBatch, MutationTicker

_logger = logging.getLogger(__name__)

SendFn = Callable[[ServerMessage, int], Awaitable[bool]]


class ModeScheduler:
    """Renders every tick for one connection in one mode.

    Parameters
    ----------
    mode : UpdateMode
        Strategy used to render batches.
    ticker : MutationTicker
        Shared clock the scheduler subscribes to on :meth:`start`.
    send : callable
        Coroutine delivering a message together with the store generation
        it was rendered from; returns ``False`` when the connection is gone.
    critical_paths : collection of str
        Paths kept on the hybrid "critical only" phase.
    name : str
        Used in log lines and as the task name.
    """

    def __init__(
        self,
        mode: UpdateMode,
        ticker: MutationTicker,
        send: SendFn,
        *,
        critical_paths: Collection[str] = CRITICAL_FIELD_PATHS,
        name: str = "",
    ) -> None:
        self.mode = UpdateMode(mode)
        self.name = name
        self._ticker = ticker
        self._send = send
        self._critical_paths = frozenset(critical_paths)
        self._queue: asyncio.Queue[ChangeBatch] | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopped = False
        self.phase = 0
        """Hybrid phase: 0 ships every change, 1 only critical paths."""

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stopped(self) -> bool:
        return self._stopped

    def start(self) -> None:
        if self._task is not None or self._stopped:
            return
        self._queue = self._ticker.subscribe()
        self._task = asyncio.create_task(self._run(), name=f"wardsync-scheduler-{self.name}")
        _logger.debug("[%s] %s scheduler started", self.name, self.mode)

    def stop(self) -> None:
        """Stop for good: no message is sent after this returns."""
        if self._stopped:
            return
        self._stopped = True
        if self._queue is not None:
            self._ticker.unsubscribe(self._queue)
        if self._task is not None:
            self._task.cancel()
        _logger.debug("[%s] %s scheduler stopped", self.name, self.mode)

    async def wait_stopped(self) -> None:
        if self._task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

    async def _run(self) -> None:
        assert self._queue is not None
        while not self._stopped:
            batch = await self._queue.get()
            await self.deliver(batch)

    async def deliver(self, batch: ChangeBatch) -> bool:
        """Render *batch* and send the result. Returns whether anything was sent."""
        if self._stopped:
            return False
        message = self.render(batch)
        if message is None:
            return False
        return await self._send(message, batch.generation)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, batch: ChangeBatch) -> ServerMessage | None:
        """Turn one batch into the message of the current mode, if any.

        Batches from an earlier store generation describe content that no
        longer exists and are dropped without advancing the hybrid phase.
        """
        store = self._ticker.store
        if batch.generation != store.generation:
            _logger.debug("[%s] Dropping batch %d from generation %d", self.name, batch.seq, batch.generation)
            return None

        if self.mode is UpdateMode.FULL:
            return FullDataUpdate(data=store.realtime_snapshot())

        if self.mode is UpdateMode.DELTA:
            patch = group_changes(batch.changes)
            return DeltaUpdate(changes=patch) if patch else None

        if self.phase == 0:
            update_type = HybridUpdateType.FULL_CYCLE
            changes = batch.changes
        else:
            update_type = HybridUpdateType.CRITICAL_ONLY
            changes = tuple(c for c in batch.changes if c.field_path in self._critical_paths)
        self.phase = 1 - self.phase

        patch = group_changes(changes)
        if not patch:
            return None
        return HybridUpdate(
            update_type=update_type,
            changes=patch,
            cycle=CYCLE_NEXT_FULL if self.phase == 0 else CYCLE_NEXT_CRITICAL,
            data_reduction=update_type is HybridUpdateType.CRITICAL_ONLY,
        )
