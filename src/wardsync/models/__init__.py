"""Wire models for wardsync."""

from wardsync.models._base import HybridUpdateType, SyncBaseModel, UpdateMode, utc_timestamp
from wardsync.models.changes import ChangeRecord, Patch, count_patch_fields, group_changes, patch_paths
from wardsync.models.messages import (
    ControlMessage,
    DeltaUpdate,
    FullDataUpdate,
    GetPerformanceMetrics,
    HybridUpdate,
    InitialData,
    ModeChanged,
    PerformanceMetrics,
    RequestFullData,
    RequestInitialData,
    ServerMessage,
    SetUpdateMode,
    decode_frame,
    parse_control_message,
    parse_server_message,
)
from wardsync.models.metrics import (
    ClientMetricsReport,
    ConnectionMetricsReport,
    PerformanceReport,
    ServerMetricsReport,
)

__all__ = [
    "ChangeRecord",
    "ClientMetricsReport",
    "ConnectionMetricsReport",
    "ControlMessage",
    "DeltaUpdate",
    "FullDataUpdate",
    "GetPerformanceMetrics",
    "HybridUpdate",
    "HybridUpdateType",
    "InitialData",
    "ModeChanged",
    "Patch",
    "PerformanceMetrics",
    "PerformanceReport",
    "RequestFullData",
    "RequestInitialData",
    "ServerMessage",
    "ServerMetricsReport",
    "SetUpdateMode",
    "SyncBaseModel",
    "UpdateMode",
    "count_patch_fields",
    "decode_frame",
    "group_changes",
    "parse_control_message",
    "parse_server_message",
    "patch_paths",
    "utc_timestamp",
]
