"""Base model and enums for wardsync wire payloads.

Every wire model inherits from :class:`SyncBaseModel` which provides
``alias_generator=to_camel`` so the camelCase keys used on the wire map
to snake_case attributes, and serializes back by alias.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def utc_timestamp(now: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    value = now if now is not None else datetime.now(UTC)
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class UpdateMode(StrEnum):
    """Synchronization strategy of one connection."""

    FULL = "full"
    DELTA = "delta"
    HYBRID = "hybrid"


class HybridUpdateType(StrEnum):
    FULL_CYCLE = "full_cycle"
    CRITICAL_ONLY = "critical_only"


class SyncBaseModel(BaseModel):
    """Base for all wardsync wire models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_wire(self) -> dict[str, Any]:
        """Dump using wire (camelCase) keys."""
        return self.model_dump(by_alias=True, mode="json")

    def to_json(self) -> str:
        """Serialize to the compact JSON text sent over the socket."""
        return self.model_dump_json(by_alias=True)
