"""Internal constants shared across the library."""

DEFAULT_URL = "ws://localhost:8080"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
DEFAULT_PATH = "/"

#: Seconds between mutation passes / scheduler ticks.
DEFAULT_TICK_INTERVAL = 5.0

# ------------------------------------------------------------------
# Wire message types
# ------------------------------------------------------------------

INITIAL_DATA = "initial_data"
FULL_DATA_UPDATE = "full_data_update"
DELTA_UPDATE = "delta_update"
HYBRID_UPDATE = "hybrid_update"
MODE_CHANGED = "mode_changed"
PERFORMANCE_METRICS = "performance_metrics"

SET_UPDATE_MODE = "set_update_mode"
REQUEST_FULL_DATA = "request_full_data"
REQUEST_INITIAL_DATA = "request_initial_data"
GET_PERFORMANCE_METRICS = "get_performance_metrics"

#: Control/diagnostic messages that never count as synchronization payload.
META_MESSAGE_TYPES: frozenset[str] = frozenset({MODE_CHANGED, PERFORMANCE_METRICS})

# ------------------------------------------------------------------
# Hybrid mode
# ------------------------------------------------------------------

#: Field paths still shipped on a hybrid "critical only" tick.
CRITICAL_FIELD_PATHS: tuple[str, ...] = ("vitals.heartRate", "vitals.spo2")

CYCLE_NEXT_FULL = "next_full"
CYCLE_NEXT_CRITICAL = "next_critical"

# ------------------------------------------------------------------
# Client
# ------------------------------------------------------------------

DEFAULT_MAX_RECONNECT_ATTEMPTS = 5
DEFAULT_RECONNECT_DELAY = 1.0
DEFAULT_HISTORY_LIMIT = 100
DEFAULT_FREQUENCY_WINDOW = 10

CLIENT_CLOSE_REASON = "Client disconnect"
SERVER_SHUTDOWN_REASON = "Server shutdown"


def is_meta_message(message_type: str) -> bool:
    """Return ``True`` for message types excluded from transfer accounting."""
    return message_type in META_MESSAGE_TYPES
