"""Server-side connection lifecycle.

The manager owns one :class:`ConnectionState` per accepted channel:
its current mode and scheduler, its transfer accounting and a send lock.
Control frames from the peer are dispatched here.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from wardsync._constants import SERVER_SHUTDOWN_REASON, is_meta_message
from wardsync.config import SyncConfig
from wardsync.exceptions import SyncProtocolError
from wardsync.metrics import TransferMetrics
from wardsync.models import (
    ConnectionMetricsReport,
    FullDataUpdate,
    GetPerformanceMetrics,
    InitialData,
    ModeChanged,
    PerformanceMetrics,
    PerformanceReport,
    RequestFullData,
    RequestInitialData,
    ServerMessage,
    ServerMetricsReport,
    SetUpdateMode,
    UpdateMode,
    decode_frame,
    parse_control_message,
)
from wardsync.server.scheduler import ModeScheduler
from wardsync.state.store import EntityStore
from wardsync.state.ticker import MutationTicker

_logger = logging.getLogger(__name__)

#: WebSocket close code "going away".
GOING_AWAY = 1001


class Channel(Protocol):
    """Structural interface of a server-side WebSocket.

    ``aiohttp.web.WebSocketResponse`` satisfies it; tests pass doubles.
    """

    async def send_str(self, data: str) -> None: ...

    async def close(self, *, code: int = ..., message: bytes = ...) -> Any: ...


def new_connection_id() -> str:
    return f"client_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


@dataclass
class ConnectionState:
    id: str
    channel: Channel
    connected_at: float
    mode: UpdateMode = UpdateMode.FULL
    active: bool = True
    scheduler: ModeScheduler | None = None
    transfer: TransferMetrics = field(default_factory=TransferMetrics)
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def hybrid_phase(self) -> int:
        return self.scheduler.phase if self.scheduler is not None else 0


class ConnectionManager:
    """Tracks accepted channels and serves their control requests.

    Parameters
    ----------
    ticker : MutationTicker
        Shared mutation clock; its store is the one served to peers.
    config : SyncConfig
        Supplies critical paths and the frequency window.
    clock : callable
        Monotonic seconds, used for uptime and frequency accounting.
    """

    def __init__(
        self,
        ticker: MutationTicker,
        config: SyncConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or SyncConfig()
        self._ticker = ticker
        self._clock = clock
        self._connections: dict[str, ConnectionState] = {}
        self._started_at = clock()
        self.total_connections = 0
        self.transfer = self._new_transfer()

    @property
    def store(self) -> EntityStore:
        return self._ticker.store

    @property
    def connections(self) -> dict[str, ConnectionState]:
        return dict(self._connections)

    def get(self, connection_id: str) -> ConnectionState | None:
        return self._connections.get(connection_id)

    def _new_transfer(self) -> TransferMetrics:
        return TransferMetrics(self._config.frequency_window, clock=self._clock)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def accept(self, channel: Channel) -> str:
        """Register *channel* in ``full`` mode and send it the initial snapshot."""
        connection_id = new_connection_id()
        state = ConnectionState(
            id=connection_id,
            channel=channel,
            connected_at=self._clock(),
            transfer=self._new_transfer(),
        )
        self._connections[connection_id] = state
        self.total_connections += 1
        _logger.info("Client connected: %s (%d active)", connection_id, len(self._connections))

        generation = self.store.generation
        snapshot = self.store.snapshot()
        self._start_scheduler(state)
        # a regeneration racing the accept already sent the newer snapshot
        await self.send(connection_id, InitialData(data=snapshot), generation=generation)
        return connection_id

    def cleanup(self, connection_id: str) -> None:
        """Stop the connection's scheduler and forget it. Safe to repeat."""
        state = self._connections.pop(connection_id, None)
        if state is None:
            return
        state.active = False
        if state.scheduler is not None:
            state.scheduler.stop()
        _logger.info("Client disconnected: %s (%d active)", connection_id, len(self._connections))

    async def shutdown(self) -> None:
        """Stop every scheduler and close every channel as "going away"."""
        states = list(self._connections.values())
        for state in states:
            self.cleanup(state.id)
        for state in states:
            try:
                await state.channel.close(code=GOING_AWAY, message=SERVER_SHUTDOWN_REASON.encode())
            except (ConnectionError, RuntimeError):
                _logger.debug("Closing %s failed", state.id, exc_info=True)
        await self._ticker.stop()
        _logger.info("Connection manager shut down (%d connection(s) closed)", len(states))

    def _start_scheduler(self, state: ConnectionState) -> None:
        connection_id = state.id

        async def _send(message: ServerMessage, generation: int) -> bool:
            return await self.send(connection_id, message, generation=generation)

        state.scheduler = ModeScheduler(
            state.mode,
            self._ticker,
            _send,
            critical_paths=self._config.critical_paths,
            name=connection_id,
        )
        state.scheduler.start()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send(self, connection_id: str, message: ServerMessage, *, generation: int | None = None) -> bool:
        """Serialize and send *message*; returns ``False`` if the peer is gone.

        A *generation* other than the store's marks a message rendered
        before a regeneration; it is dropped instead of sent. A failed
        send cleans the connection up; it never propagates.
        """
        state = self._connections.get(connection_id)
        if state is None or not state.active:
            return False
        async with state.send_lock:
            if generation is not None and generation != self.store.generation:
                _logger.debug("[%s] Dropping %s from generation %d", connection_id, message.type, generation)
                return False
            return await self._transmit(state, message)

    async def _transmit(self, state: ConnectionState, message: ServerMessage) -> bool:
        """Send with ``state.send_lock`` already held."""
        if not state.active:
            return False
        text = message.to_json()
        size = len(text.encode("utf-8"))
        try:
            await state.channel.send_str(text)
        except (ConnectionError, RuntimeError) as exc:
            _logger.warning("Send to %s failed: %s", state.id, exc)
            self.cleanup(state.id)
            return False

        meta = is_meta_message(message.type)
        if not meta:
            state.transfer.record(size)
            self.transfer.record(size)
        _logger.debug(
            "%s [%s] %s sent - %.2fKB",
            "[meta]" if meta else "[data]",
            state.id,
            message.type,
            size / 1024,
        )
        return True

    # ------------------------------------------------------------------
    # Control messages
    # ------------------------------------------------------------------

    async def handle_frame(self, connection_id: str, raw: str | bytes) -> None:
        """Dispatch one inbound frame. Malformed or unknown frames are logged and ignored."""
        if connection_id not in self._connections:
            return
        try:
            payload = decode_frame(raw)
            message = parse_control_message(payload)
        except SyncProtocolError as exc:
            _logger.warning("Malformed frame from %s: %s", connection_id, exc)
            return
        if message is None:
            _logger.warning("Unknown message type from %s: %s", connection_id, payload["type"])
            return

        if isinstance(message, SetUpdateMode):
            await self.set_mode(connection_id, message.mode)
        elif isinstance(message, RequestFullData):
            await self.send(connection_id, FullDataUpdate(data=self.store.realtime_snapshot()))
        elif isinstance(message, RequestInitialData):
            _logger.info("Initial data requested by %s", connection_id)
            await self.regenerate()
        elif isinstance(message, GetPerformanceMetrics):
            await self.send(connection_id, PerformanceMetrics(data=self.performance_report(connection_id)))

    async def set_mode(self, connection_id: str, mode: UpdateMode) -> None:
        """Replace the connection's scheduler and acknowledge with ``mode_changed``."""
        state = self._connections.get(connection_id)
        if state is None:
            return
        if state.scheduler is not None:
            state.scheduler.stop()
        previous, state.mode = state.mode, UpdateMode(mode)
        self._start_scheduler(state)
        _logger.info("Client %s switched mode: %s -> %s", connection_id, previous, state.mode)
        await self.send(connection_id, ModeChanged(mode=state.mode))

    async def regenerate(self) -> int:
        """Regenerate the store and send the new ``initial_data`` to every connection.

        Every connection's send lock is held from the regeneration until its
        snapshot has gone out, so no tick of the new generation can overtake it.
        """
        async with contextlib.AsyncExitStack() as stack:
            locked: dict[str, ConnectionState] = {}
            # connections accepted while we wait for a lock are picked up too
            while True:
                pending = [s for cid, s in self._connections.items() if cid not in locked]
                if not pending:
                    break
                for state in pending:
                    await stack.enter_async_context(state.send_lock)
                    locked[state.id] = state
            message = InitialData(data=self.store.regenerate())
            sent = 0
            for state in locked.values():
                if await self._transmit(state, message):
                    sent += 1
        return sent

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    @property
    def uptime(self) -> float:
        """Seconds since the manager was created."""
        return self._clock() - self._started_at

    def server_report(self) -> ServerMetricsReport:
        uptime = self.uptime
        return ServerMetricsReport(
            total_connections=self.total_connections,
            active_connections=len(self._connections),
            total_data_sent=self.transfer.total_bytes,
            total_messages_sent=self.transfer.messages,
            uptime=uptime * 1000,
            average_data_per_second=self.transfer.throughput(uptime),
            update_frequency=self.transfer.update_frequency,
        )

    def connection_report(self, connection_id: str) -> ConnectionMetricsReport:
        state = self._connections.get(connection_id)
        if state is None:
            raise KeyError(connection_id)
        elapsed = self._clock() - state.connected_at
        return ConnectionMetricsReport(
            data_sent=state.transfer.total_bytes,
            messages_sent=state.transfer.messages,
            connection_time=elapsed * 1000,
            average_data_per_second=state.transfer.throughput(elapsed),
            update_frequency=state.transfer.update_frequency,
            current_mode=state.mode,
        )

    def performance_report(self, connection_id: str) -> PerformanceReport:
        return PerformanceReport(server=self.server_report(), client=self.connection_report(connection_id))
