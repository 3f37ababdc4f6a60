"""Client-side replica of the server state."""

from __future__ import annotations

import copy
import logging
from typing import Any

from wardsync.models._base import utc_timestamp
from wardsync.models.changes import Patch, count_patch_fields

_logger = logging.getLogger(__name__)


def set_path(tree: dict[str, Any], path: str, value: Any) -> bool:
    """Assign *value* at a dot path, creating missing mapping containers.

    Numeric segments index into lists; an index outside the list (or a
    non-numeric segment against a list) leaves the tree untouched and
    returns ``False``.
    """
    *parents, leaf = path.split(".")
    current: Any = tree
    for key in parents:
        if isinstance(current, list):
            if not key.isdigit() or int(key) >= len(current):
                return False
            current = current[int(key)]
            continue
        child = current.get(key)
        if not isinstance(child, dict | list):
            child = {}
            current[key] = child
        current = child
    if isinstance(current, list):
        if not leaf.isdigit() or int(leaf) >= len(current):
            return False
        current[int(leaf)] = value
    else:
        current[leaf] = value
    return True


def apply_patch(target: dict[str, Any], patch: Patch) -> int:
    """Merge *patch* into *target* in place and return the number of fields set.

    Collections and entities missing from *target* are created empty.
    """
    applied = 0
    for collection, entities in patch.items():
        bucket = target.get(collection)
        if not isinstance(bucket, dict):
            bucket = target[collection] = {}
        for entity_id, fields in entities.items():
            entity = bucket.get(entity_id)
            if not isinstance(entity, dict):
                entity = bucket[entity_id] = {}
            for path, value in fields.items():
                if set_path(entity, path, copy.deepcopy(value)):
                    applied += 1
                else:
                    _logger.debug("Skipping unaddressable path %s/%s/%s", collection, entity_id, path)
    return applied


class ClientMirror:
    """Local copy of the last snapshot, kept current by patches.

    The mirror is empty until the first snapshot arrives; patches received
    before that are ignored since there is nothing to merge them into.
    """

    def __init__(self) -> None:
        self._data: dict[str, Any] | None = None

    @property
    def data(self) -> dict[str, Any] | None:
        return self._data

    @property
    def is_empty(self) -> bool:
        return self._data is None

    def replace(self, snapshot: dict[str, Any]) -> None:
        self._data = copy.deepcopy(snapshot)
        self._refresh()

    def apply(self, patch: Patch) -> int:
        if self._data is None:
            _logger.debug("Ignoring patch of %d field(s): no snapshot yet", count_patch_fields(patch))
            return 0
        applied = apply_patch(self._data, patch)
        self._refresh()
        return applied

    def clear(self) -> None:
        self._data = None

    def collection(self, name: str) -> dict[str, Any]:
        if self._data is None:
            return {}
        value = self._data.get(name)
        return value if isinstance(value, dict) else {}

    def _refresh(self) -> None:
        assert self._data is not None
        self._data["timestamp"] = utc_timestamp()
