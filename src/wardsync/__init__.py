"""wardsync - Compare full, delta and hybrid state synchronization over WebSockets."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("wardsync")
except PackageNotFoundError:
    __version__ = "0+local"
from wardsync.client import ClientEvent, HistoryEntry, SyncClient
from wardsync.config import MutationProfile, SyncConfig
from wardsync.exceptions import (
    SyncConfigError,
    SyncError,
    SyncProtocolError,
    SyncReconnectExhaustedError,
    SyncTransportError,
)
from wardsync.mirror import ClientMirror
from wardsync.models import (
    ChangeRecord,
    ClientMetricsReport,
    HybridUpdateType,
    PerformanceReport,
    UpdateMode,
)
from wardsync.server import ConnectionManager, SyncServer, create_app, run_server
from wardsync.state import EntityStore, MutationTicker, WardGenerator

__all__ = [
    "__version__",
    "ChangeRecord",
    "ClientEvent",
    "ClientMetricsReport",
    "ClientMirror",
    "ConnectionManager",
    "EntityStore",
    "HistoryEntry",
    "HybridUpdateType",
    "MutationProfile",
    "MutationTicker",
    "PerformanceReport",
    "SyncClient",
    "SyncConfig",
    "SyncConfigError",
    "SyncError",
    "SyncProtocolError",
    "SyncReconnectExhaustedError",
    "SyncServer",
    "SyncTransportError",
    "UpdateMode",
    "WardGenerator",
    "create_app",
    "run_server",
]
