"""Performance metric reports exchanged with or exposed to consumers."""

from __future__ import annotations

from wardsync.models._base import SyncBaseModel, UpdateMode


class ServerMetricsReport(SyncBaseModel):
    """Server-wide transfer accounting (meta messages excluded)."""

    total_connections: int = 0
    active_connections: int = 0
    total_data_sent: int = 0
    total_messages_sent: int = 0
    uptime: float = 0.0
    """Milliseconds since the manager started."""
    average_data_per_second: float = 0.0
    update_frequency: float = 0.0


class ConnectionMetricsReport(SyncBaseModel):
    """Transfer accounting of one server-side connection."""

    data_sent: int = 0
    messages_sent: int = 0
    connection_time: float = 0.0
    """Milliseconds since the connection was accepted."""
    average_data_per_second: float = 0.0
    update_frequency: float = 0.0
    current_mode: UpdateMode = UpdateMode.FULL


class PerformanceReport(SyncBaseModel):
    """Payload of a ``performance_metrics`` message."""

    server: ServerMetricsReport
    client: ConnectionMetricsReport


class ClientMetricsReport(SyncBaseModel):
    """Client-side view of the synchronization traffic.

    ``uptime`` is wall-clock time since the first successful connect;
    ``runtime`` only accumulates while the client is resumed, so
    ``runtime <= uptime`` always holds.
    """

    data_received: int = 0
    messages_received: int = 0
    average_message_size: float = 0.0
    update_frequency: float = 0.0
    last_update_time: float | None = None
    uptime: float = 0.0
    """Milliseconds."""
    runtime: float = 0.0
    """Milliseconds."""
    average_data_per_second: float = 0.0
    """Bytes per second of runtime."""
    average_data_per_second_uptime: float = 0.0
    """Bytes per second of uptime."""
    current_mode: UpdateMode = UpdateMode.FULL
    is_connected: bool = False
    is_paused: bool = True
    reconnect_attempts: int = 0
    frames_received: int = 0
    frames_discarded: int = 0
    malformed_frames: int = 0
