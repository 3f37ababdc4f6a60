"""WebSocket client keeping a local mirror of the ward in sync.

The client starts *paused* after every (re)connect: frames keep arriving
and are counted, but nothing is applied, recorded or measured until
:meth:`SyncClient.resume` is called. This lets a caller pick a mode
before the measurement window opens.

Usage::

    async with SyncClient(SyncConfig(url="ws://localhost:8080")) as client:
        await client.set_update_mode(UpdateMode.DELTA)
        client.resume()
        ...
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import aiohttp

from wardsync._constants import CLIENT_CLOSE_REASON, is_meta_message
from wardsync.config import SyncConfig
from wardsync.exceptions import SyncProtocolError, SyncReconnectExhaustedError, SyncTransportError
from wardsync.metrics import RuntimeClock, TransferMetrics
from wardsync.mirror import ClientMirror
from wardsync.models import (
    ClientMetricsReport,
    DeltaUpdate,
    FullDataUpdate,
    GetPerformanceMetrics,
    HybridUpdate,
    InitialData,
    ModeChanged,
    PerformanceMetrics,
    PerformanceReport,
    RequestFullData,
    RequestInitialData,
    ServerMessage,
    SetUpdateMode,
    SyncBaseModel,
    UpdateMode,
    decode_frame,
    parse_server_message,
)

_logger = logging.getLogger(__name__)

#: Normal closure; anything else from the peer triggers a reconnect.
NORMAL_CLOSURE = 1000

Listener = Callable[[Any], Any]


class ClientEvent(StrEnum):
    """Lifecycle events. Server message types are emitted as events as well."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    PAUSED = "paused"
    RESUMED = "resumed"
    RECONNECTING = "reconnecting"
    MAX_RECONNECT_REACHED = "max_reconnect_reached"
    DATA_RESET = "data_reset"
    MESSAGE = "message"
    ERROR = "error"


@dataclass(frozen=True)
class HistoryEntry:
    """One applied message, kept for inspection."""

    type: str
    size: int
    received_at: float
    """Epoch seconds."""
    message: ServerMessage
    raw: str
    is_meta: bool


class SyncClient:
    """Connects to a wardsync server and mirrors what it sends.

    Parameters
    ----------
    config : SyncConfig or None
        Endpoint, reconnect policy and bookkeeping limits.
    session : aiohttp.ClientSession or None
        Reused when given (and then not closed by the client).
    clock : callable
        Monotonic seconds; drives runtime, uptime and frequency.
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or SyncConfig()
        self._session = session
        self._owns_session = session is None
        self._clock = clock
        self._url = self._config.url

        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._closing = False
        self._paused = True
        self._mode = UpdateMode.FULL
        self._reconnect_attempts = 0
        self._listeners: dict[str, list[Listener]] = {}

        self.mirror = ClientMirror()
        self.server_metrics: PerformanceReport | None = None
        self._transfer = TransferMetrics(self._config.frequency_window, clock=clock)
        self._runtime = RuntimeClock(clock=clock)
        self._connected_since: float | None = None
        self._last_update_time: float | None = None
        self._history: deque[HistoryEntry] = deque(maxlen=self._config.history_limit)
        self._frames_received = 0
        self._frames_discarded = 0
        self._malformed_frames = 0

    async def __aenter__(self) -> SyncClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def current_mode(self) -> UpdateMode:
        return self._mode

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: str, listener: Listener) -> None:
        """Register a synchronous *listener* for a :class:`ClientEvent` or message type."""
        self._listeners.setdefault(str(event), []).append(listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(str(event))
        if listeners is None:
            return
        with contextlib.suppress(ValueError):
            listeners.remove(listener)

    def _emit(self, event: str, payload: Any = None) -> None:
        for listener in list(self._listeners.get(str(event), ())):
            try:
                listener(payload)
            except Exception:
                _logger.exception("Listener for %r failed", str(event))

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, url: str | None = None) -> None:
        """Open the WebSocket and return once it is open.

        Raises
        ------
        SyncTransportError
            If the connection cannot be established.
        """
        if url is not None:
            self._url = url
        if self.is_connected:
            return
        self._cancel_reconnect()
        self._closing = False
        await self._open()

    async def _open(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        _logger.info("Connecting to %s", self._url)
        try:
            ws = await self._session.ws_connect(self._url, heartbeat=self._config.heartbeat)
        except (aiohttp.ClientError, OSError) as exc:
            error = SyncTransportError(f"Cannot connect to {self._url}: {exc}", url=self._url)
            self._emit(ClientEvent.ERROR, error)
            raise error from exc

        self._ws = ws
        self._reconnect_attempts = 0
        if self._connected_since is None:
            self._connected_since = self._clock()
            self._runtime.reset()
        self._paused = True
        self._runtime.stop()
        self._reader = asyncio.create_task(self._read_loop(ws), name="wardsync-client-reader")
        _logger.info("Connected to %s (paused until resumed)", self._url)
        self._emit(ClientEvent.CONNECTED)
        self._emit(ClientEvent.PAUSED)
        if self._config.auto_resume:
            self.resume()

    async def disconnect(self) -> None:
        """Close cleanly. Never triggers a reconnect."""
        self._closing = True
        self._cancel_reconnect()
        ws = self._ws
        if ws is not None and not ws.closed:
            await ws.close(code=NORMAL_CLOSURE, message=CLIENT_CLOSE_REASON.encode())
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        self._ws = None
        self._runtime.stop()
        self._paused = True
        self._connected_since = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                self._handle_frame(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                _logger.warning("WebSocket error: %s", ws.exception())
                self._emit(ClientEvent.ERROR, ws.exception())
        self._on_closed(ws)

    def _on_closed(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        if ws is not self._ws:
            return
        self._ws = None
        self._runtime.stop()
        self._paused = True
        code = ws.close_code
        clean = self._closing or code == NORMAL_CLOSURE
        _logger.info("Disconnected from %s (code=%s, clean=%s)", self._url, code, clean)
        self._emit(ClientEvent.DISCONNECTED, {"code": code, "clean": clean})
        if not clean and (self._reconnect_task is None or self._reconnect_task.done()):
            self._reconnect_task = asyncio.create_task(self._reconnect_loop(), name="wardsync-client-reconnect")

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _reconnect_loop(self) -> None:
        limit = self._config.max_reconnect_attempts
        while not self._closing:
            if self._reconnect_attempts >= limit:
                error = SyncReconnectExhaustedError(
                    f"Gave up reconnecting to {self._url} after {self._reconnect_attempts} attempt(s)",
                    attempts=self._reconnect_attempts,
                    url=self._url,
                )
                _logger.error("%s", error)
                self._emit(ClientEvent.MAX_RECONNECT_REACHED, error)
                return

            self._reconnect_attempts += 1
            attempt = self._reconnect_attempts
            delay = self._config.reconnect_delay * 2 ** (attempt - 1)
            _logger.info("Reconnect attempt %d/%d in %.1fs", attempt, limit, delay)
            self._emit(ClientEvent.RECONNECTING, {"attempt": attempt, "delay": delay})
            await asyncio.sleep(delay)
            if self._closing:
                return
            try:
                await self._open()
            except SyncTransportError as exc:
                _logger.warning("Reconnect attempt %d failed: %s", attempt, exc)
                continue
            # a close during the mode resend must be able to start a new loop
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None
            if self._mode is not UpdateMode.FULL:
                await self._send(SetUpdateMode(mode=self._mode))
            return

    # ------------------------------------------------------------------
    # Pause / resume
    # ------------------------------------------------------------------

    def pause(self) -> None:
        if self._paused:
            return
        self._paused = True
        self._runtime.stop()
        _logger.debug("Paused: inbound frames are discarded")
        self._emit(ClientEvent.PAUSED)

    def resume(self) -> None:
        if not self._paused:
            return
        self._paused = False
        if self.is_connected:
            self._runtime.start()
        _logger.debug("Resumed: inbound frames are applied")
        self._emit(ClientEvent.RESUMED)

    # ------------------------------------------------------------------
    # Control messages
    # ------------------------------------------------------------------

    async def _send(self, message: SyncBaseModel) -> bool:
        ws = self._ws
        if ws is None or ws.closed:
            _logger.warning("Not connected; dropping %s", type(message).__name__)
            return False
        try:
            await ws.send_str(message.to_json())
        except (ConnectionError, RuntimeError) as exc:
            _logger.warning("Send failed: %s", exc)
            return False
        return True

    async def set_update_mode(self, mode: UpdateMode | str) -> bool:
        """Ask the server to switch modes; the local mode follows immediately."""
        if not self.is_connected:
            _logger.warning("Not connected; cannot switch to %s", mode)
            return False
        self._mode = UpdateMode(mode)
        return await self._send(SetUpdateMode(mode=self._mode))

    async def request_full_data(self) -> bool:
        return await self._send(RequestFullData())

    async def request_initial_data(self) -> bool:
        return await self._send(RequestInitialData())

    async def request_performance_metrics(self) -> bool:
        return await self._send(GetPerformanceMetrics())

    async def reset(self) -> None:
        """Forget all local data, then fetch a fresh snapshot.

        Exactly one follow-up happens: connect and resume when
        disconnected; resume and request initial data when paused;
        request initial data when active.
        """
        self.mirror.clear()
        self._transfer.reset()
        self._runtime.reset()
        self._history.clear()
        self._last_update_time = None
        self._frames_received = self._frames_discarded = self._malformed_frames = 0
        _logger.info("Local data reset")
        self._emit(ClientEvent.DATA_RESET)

        if not self.is_connected:
            await self.connect()
            self.resume()
        elif self._paused:
            self.resume()
            await self.request_initial_data()
        else:
            await self.request_initial_data()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _handle_frame(self, data: str | bytes) -> None:
        self._frames_received += 1
        raw = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
        try:
            payload = decode_frame(data)
            message = parse_server_message(payload)
        except SyncProtocolError as exc:
            self._malformed_frames += 1
            _logger.warning("Malformed frame: %s", exc)
            return
        if message is None:
            _logger.warning("Unknown message type: %s", payload["type"])
            return
        if self._paused:
            self._frames_discarded += 1
            _logger.debug("Paused; discarding %s", message.type)
            return

        size = len(data) if isinstance(data, bytes) else len(data.encode("utf-8"))
        meta = is_meta_message(message.type)
        if not meta:
            self._transfer.record(size)
            self._last_update_time = time.time()
        self._history.appendleft(
            HistoryEntry(type=message.type, size=size, received_at=time.time(), message=message, raw=raw, is_meta=meta)
        )
        self._apply(message)
        _logger.debug("%s %s received - %.2fKB", "[meta]" if meta else "[data]", message.type, size / 1024)
        self._emit(message.type, message)
        self._emit(ClientEvent.MESSAGE, message)

    def _apply(self, message: ServerMessage) -> None:
        if isinstance(message, InitialData | FullDataUpdate):
            self.mirror.replace(message.data)
        elif isinstance(message, DeltaUpdate | HybridUpdate):
            self.mirror.apply(message.changes)
        elif isinstance(message, ModeChanged):
            self._mode = message.mode
        elif isinstance(message, PerformanceMetrics):
            self.server_metrics = message.data

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def get_message_history(self, limit: int = 50, *, data_only: bool = False) -> list[HistoryEntry]:
        """Newest first; ``data_only`` drops meta messages."""
        entries = (e for e in self._history if not (data_only and e.is_meta))
        return [entry for _, entry in zip(range(limit), entries)]

    def metrics(self) -> ClientMetricsReport:
        runtime = self._runtime.elapsed
        uptime = self._clock() - self._connected_since if self._connected_since is not None else 0.0
        received = self._transfer.total_bytes
        return ClientMetricsReport(
            data_received=received,
            messages_received=self._transfer.messages,
            average_message_size=self._transfer.average_size,
            update_frequency=self._transfer.update_frequency,
            last_update_time=self._last_update_time * 1000 if self._last_update_time is not None else None,
            uptime=uptime * 1000,
            runtime=runtime * 1000,
            average_data_per_second=self._transfer.throughput(runtime),
            average_data_per_second_uptime=self._transfer.throughput(uptime),
            current_mode=self._mode,
            is_connected=self.is_connected,
            is_paused=self._paused,
            reconnect_attempts=self._reconnect_attempts,
            frames_received=self._frames_received,
            frames_discarded=self._frames_discarded,
            malformed_frames=self._malformed_frames,
        )
