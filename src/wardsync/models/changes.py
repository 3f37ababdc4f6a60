"""Field-level change records and the patches built from them."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, TypeAlias

from pydantic import model_validator

from wardsync.models._base import SyncBaseModel

#: ``collection -> entity id -> field path -> new value``
Patch: TypeAlias = dict[str, dict[str, dict[str, Any]]]


class ChangeRecord(SyncBaseModel):
    """One leaf value that changed during a mutation pass.

    ``field_path`` is dot separated; list items are addressed by their
    decimal index (``medications.0.lastGiven``).
    """

    collection: str
    entity_id: str
    field_path: str
    old_value: Any = None
    new_value: Any = None

    @model_validator(mode="after")
    def _reject_noop(self) -> ChangeRecord:
        if self.old_value == self.new_value:
            raise ValueError(f"no-op change for {self.collection}/{self.entity_id}/{self.field_path}")
        return self


def group_changes(changes: Iterable[ChangeRecord]) -> Patch:
    """Group change records into a patch.

    A later record for the same field path overwrites an earlier one.
    """
    patch: Patch = {}
    for change in changes:
        entity = patch.setdefault(change.collection, {}).setdefault(change.entity_id, {})
        entity[change.field_path] = change.new_value
    return patch


def patch_paths(patch: Patch) -> set[str]:
    """Return every distinct field path appearing in *patch*."""
    return {path for entities in patch.values() for fields in entities.values() for path in fields}


def count_patch_fields(patch: Patch) -> int:
    return sum(len(fields) for entities in patch.values() for fields in entities.values())
