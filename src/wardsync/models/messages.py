"""Wire messages.

Server → client messages all carry ``type`` and an ISO-8601 ``timestamp``.
Client → server control messages only carry ``type`` plus their argument.
Both directions are decoded through a discriminated union on ``type``;
unknown types decode to ``None`` so callers can log and ignore them.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, TypeAlias

from pydantic import Field, TypeAdapter, ValidationError

from wardsync._constants import (
    CYCLE_NEXT_CRITICAL,
    DELTA_UPDATE,
    FULL_DATA_UPDATE,
    GET_PERFORMANCE_METRICS,
    HYBRID_UPDATE,
    INITIAL_DATA,
    MODE_CHANGED,
    PERFORMANCE_METRICS,
    REQUEST_FULL_DATA,
    REQUEST_INITIAL_DATA,
    SET_UPDATE_MODE,
)
from wardsync.exceptions import SyncProtocolError
from wardsync.models._base import HybridUpdateType, SyncBaseModel, UpdateMode, utc_timestamp
from wardsync.models.changes import Patch
from wardsync.models.metrics import PerformanceReport

# ------------------------------------------------------------------
# Server → client
# ------------------------------------------------------------------


class _ServerMessage(SyncBaseModel):
    timestamp: str = Field(default_factory=lambda: utc_timestamp())


class InitialData(_ServerMessage):
    """Complete snapshot; sent once per connect and per regeneration."""

    type: Literal["initial_data"] = "initial_data"
    data: dict[str, Any]


class FullDataUpdate(_ServerMessage):
    """Realtime (volatile-only) snapshot pushed in ``full`` mode."""

    type: Literal["full_data_update"] = "full_data_update"
    data: dict[str, Any]


class DeltaUpdate(_ServerMessage):
    type: Literal["delta_update"] = "delta_update"
    update_type: Literal["all"] = "all"
    changes: Patch


class HybridUpdate(_ServerMessage):
    """One hybrid tick.

    ``cycle`` previews the phase of the *next* tick so consumers can
    anticipate its payload size.
    """

    type: Literal["hybrid_update"] = "hybrid_update"
    update_type: HybridUpdateType
    changes: Patch
    cycle: Literal["next_full", "next_critical"] = CYCLE_NEXT_CRITICAL
    data_reduction: bool = False


class ModeChanged(_ServerMessage):
    type: Literal["mode_changed"] = "mode_changed"
    mode: UpdateMode


class PerformanceMetrics(_ServerMessage):
    type: Literal["performance_metrics"] = "performance_metrics"
    data: PerformanceReport


ServerMessage: TypeAlias = Annotated[
    InitialData | FullDataUpdate | DeltaUpdate | HybridUpdate | ModeChanged | PerformanceMetrics,
    Field(discriminator="type"),
]

# ------------------------------------------------------------------
# Client → server
# ------------------------------------------------------------------


class SetUpdateMode(SyncBaseModel):
    type: Literal["set_update_mode"] = "set_update_mode"
    mode: UpdateMode


class RequestFullData(SyncBaseModel):
    type: Literal["request_full_data"] = "request_full_data"


class RequestInitialData(SyncBaseModel):
    """Ask for a fresh ``initial_data``; also regenerates the ward."""

    type: Literal["request_initial_data"] = "request_initial_data"


class GetPerformanceMetrics(SyncBaseModel):
    type: Literal["get_performance_metrics"] = "get_performance_metrics"


ControlMessage: TypeAlias = Annotated[
    SetUpdateMode | RequestFullData | RequestInitialData | GetPerformanceMetrics,
    Field(discriminator="type"),
]

_SERVER_ADAPTER: TypeAdapter[Any] = TypeAdapter(ServerMessage)
_CONTROL_ADAPTER: TypeAdapter[Any] = TypeAdapter(ControlMessage)

SERVER_MESSAGE_TYPES: frozenset[str] = frozenset(
    {INITIAL_DATA, FULL_DATA_UPDATE, DELTA_UPDATE, HYBRID_UPDATE, MODE_CHANGED, PERFORMANCE_METRICS}
)
CONTROL_MESSAGE_TYPES: frozenset[str] = frozenset(
    {SET_UPDATE_MODE, REQUEST_FULL_DATA, REQUEST_INITIAL_DATA, GET_PERFORMANCE_METRICS}
)

__all__ = [
    "ControlMessage",
    "DeltaUpdate",
    "FullDataUpdate",
    "GetPerformanceMetrics",
    "HybridUpdate",
    "InitialData",
    "ModeChanged",
    "PerformanceMetrics",
    "RequestFullData",
    "RequestInitialData",
    "ServerMessage",
    "SetUpdateMode",
    "decode_frame",
    "parse_control_message",
    "parse_server_message",
]


def decode_frame(raw: str | bytes) -> dict[str, Any]:
    """Decode a text frame into a JSON object carrying a string ``type``.

    Raises
    ------
    SyncProtocolError
        If the frame is not UTF-8 JSON, not an object, or has no ``type``.
    """
    try:
        text = raw.decode("utf-8") if isinstance(raw, bytes | bytearray) else raw
        payload = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise SyncProtocolError(f"Undecodable frame: {exc}", frame=str(raw)[:200]) from exc
    if not isinstance(payload, dict):
        raise SyncProtocolError("Frame is not a JSON object", frame=str(text)[:200])
    if not isinstance(payload.get("type"), str):
        raise SyncProtocolError("Frame has no message type", frame=str(text)[:200])
    return payload


def _parse(payload: dict[str, Any], adapter: TypeAdapter[Any], known: frozenset[str]) -> Any:
    if payload.get("type") not in known:
        return None
    try:
        return adapter.validate_python(payload)
    except ValidationError as exc:
        raise SyncProtocolError(
            f"Invalid {payload['type']} message: {exc.error_count()} error(s)",
            frame=json.dumps(payload)[:200],
        ) from exc


def parse_server_message(raw: str | bytes | dict[str, Any]) -> ServerMessage | None:
    """Decode a server → client frame. Unknown types return ``None``."""
    payload = raw if isinstance(raw, dict) else decode_frame(raw)
    return _parse(payload, _SERVER_ADAPTER, SERVER_MESSAGE_TYPES)  # type: ignore[no-any-return]


def parse_control_message(raw: str | bytes | dict[str, Any]) -> ControlMessage | None:
    """Decode a client → server frame. Unknown types return ``None``."""
    payload = raw if isinstance(raw, dict) else decode_frame(raw)
    return _parse(payload, _CONTROL_ADAPTER, CONTROL_MESSAGE_TYPES)  # type: ignore[no-any-return]
