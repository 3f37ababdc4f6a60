"""aiohttp WebSocket endpoint."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from aiohttp import WSMsgType, web

from wardsync.config import SyncConfig
from wardsync.server.manager import ConnectionManager
from wardsync.state.store import EntityStore
from wardsync.state.ticker import MutationTicker

_logger = logging.getLogger(__name__)

MANAGER_KEY = web.AppKey("wardsync_manager", ConnectionManager)
TICKER_KEY = web.AppKey("wardsync_ticker", MutationTicker)


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    manager = request.app[MANAGER_KEY]
    ws = web.WebSocketResponse()
    await ws.prepare(request)

    connection_id = await manager.accept(ws)
    try:
        async for msg in ws:
            if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                await manager.handle_frame(connection_id, msg.data)
            elif msg.type == WSMsgType.ERROR:
                _logger.warning("WebSocket error on %s: %s", connection_id, ws.exception())
    finally:
        manager.cleanup(connection_id)
    return ws


async def _start_ticker(app: web.Application) -> None:
    app[TICKER_KEY].start()


async def _shutdown_manager(app: web.Application) -> None:
    await app[MANAGER_KEY].shutdown()


def create_app(config: SyncConfig | None = None, *, store: EntityStore | None = None) -> web.Application:
    """Build the application serving *store* (a fresh ward by default) at ``config.path``."""
    config = config or SyncConfig()
    store = store or EntityStore.from_config(config)
    ticker = MutationTicker(store, config.tick_interval)

    app = web.Application()
    app[TICKER_KEY] = ticker
    app[MANAGER_KEY] = ConnectionManager(ticker, config)
    app.router.add_get(config.path, websocket_handler)
    app.on_startup.append(_start_ticker)
    app.on_shutdown.append(_shutdown_manager)
    return app


class SyncServer:
    """Runs :func:`create_app` on a TCP site.

    Usable as an async context manager; ``port=0`` in the config binds an
    ephemeral port, readable from :attr:`port` once started.
    """

    def __init__(self, config: SyncConfig | None = None, *, store: EntityStore | None = None) -> None:
        self.config = config or SyncConfig()
        self.app = create_app(self.config, store=store)
        self._runner: web.AppRunner | None = None

    @property
    def manager(self) -> ConnectionManager:
        return self.app[MANAGER_KEY]

    @property
    def store(self) -> EntityStore:
        return self.app[TICKER_KEY].store

    @property
    def port(self) -> int:
        if self._runner is None or not self._runner.addresses:
            return self.config.port
        return int(self._runner.addresses[0][1])

    @property
    def url(self) -> str:
        return f"ws://{self.config.host}:{self.port}{self.config.path}"

    async def start(self) -> None:
        if self._runner is not None:
            return
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()
        _logger.info("wardsync server listening on %s", self.url)

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is None:
            return
        await runner.cleanup()
        _logger.info("wardsync server stopped")

    async def __aenter__(self) -> SyncServer:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()


async def run_server(config: SyncConfig | None = None) -> None:
    """Serve until cancelled."""
    async with SyncServer(config):
        await asyncio.Event().wait()
