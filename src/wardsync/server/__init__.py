"""WebSocket server: connection management, per-mode scheduling and the aiohttp app."""

from wardsync.server.app import SyncServer, create_app, run_server
from wardsync.server.manager import Channel, ConnectionManager, ConnectionState
from wardsync.server.scheduler import ModeScheduler

__all__ = [
    "Channel",
    "ConnectionManager",
    "ConnectionState",
    "ModeScheduler",
    "SyncServer",
    "create_app",
    "run_server",
]
