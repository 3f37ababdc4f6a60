"""Field-level change detection.

Value trees are flattened to dot-separated leaf paths: mapping keys by
name, list items by decimal index. Composite values (a blood pressure
reading with systolic/diastolic parts) therefore yield one record per
changed component. The same addressing is understood by
:func:`wardsync.mirror.set_path`.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from wardsync.models.changes import ChangeRecord

_MISSING: Any = object()


def flatten(tree: Any, prefix: str = "") -> Iterator[tuple[str, Any]]:
    """Yield ``(path, leaf)`` pairs in declaration order.

    Empty containers are leaves so that their appearance/disappearance is
    still observable.
    """
    if isinstance(tree, Mapping) and tree:
        for key, value in tree.items():
            yield from flatten(value, f"{prefix}.{key}" if prefix else str(key))
    elif isinstance(tree, list) and tree:
        for index, value in enumerate(tree):
            yield from flatten(value, f"{prefix}.{index}" if prefix else str(index))
    else:
        yield prefix, tree


def diff_trees(before: Any, after: Any, prefix: str = "") -> Iterator[tuple[str, Any, Any]]:
    """Yield ``(path, old, new)`` for every leaf whose value differs.

    Paths are ordered by *after*; leaves only present in *before* follow,
    reported with a ``None`` new value.
    """
    old_leaves = dict(flatten(before, prefix))
    seen: set[str] = set()
    for path, new in flatten(after, prefix):
        seen.add(path)
        old = old_leaves.get(path, _MISSING)
        if old is _MISSING:
            old = None
        if old != new:
            yield path, old, new
    for path, old in old_leaves.items():
        if path not in seen and old is not None:
            yield path, old, None


def diff_entities(
    collection: str,
    before: Mapping[str, Any],
    after: Mapping[str, Any],
) -> list[ChangeRecord]:
    """Diff two ``entity id -> value tree`` mappings of one collection.

    Records are ordered by the iteration order of *after*, then by field
    declaration order. Entities absent from *before* diff against nothing.
    """
    changes: list[ChangeRecord] = []
    for entity_id, tree in after.items():
        for path, old, new in diff_trees(before.get(entity_id), tree):
            changes.append(
                ChangeRecord(
                    collection=collection,
                    entity_id=entity_id,
                    field_path=path,
                    old_value=old,
                    new_value=new,
                )
            )
    return changes


class ChangeTracker:
    """Records the changes made to a collection during one mutation pass.

    Call :meth:`watch` on an entity *before* mutating it; :meth:`collect`
    then diffs only the watched entities (and only their *roots*), which
    keeps a pass proportional to what it touched rather than to the whole
    store.
    """

    def __init__(self, collection: str, *, roots: Iterable[str] | None = None) -> None:
        self.collection = collection
        self._roots: tuple[str, ...] | None = tuple(roots) if roots is not None else None
        self._before: dict[str, dict[str, Any]] = {}
        self._entities: dict[str, Mapping[str, Any]] = {}

    def _project(self, entity: Mapping[str, Any]) -> dict[str, Any]:
        if self._roots is None:
            return dict(entity)
        return {root: entity[root] for root in self._roots if root in entity}

    def watch(self, entity_id: str, entity: Mapping[str, Any]) -> None:
        if entity_id in self._before:
            return
        self._before[entity_id] = copy.deepcopy(self._project(entity))
        self._entities[entity_id] = entity

    def collect(self, order: Iterable[str] | None = None) -> list[ChangeRecord]:
        """Diff watched entities, in *order* when given (unwatched ids skipped)."""
        ids = [eid for eid in order if eid in self._entities] if order is not None else list(self._entities)
        after = {eid: self._project(self._entities[eid]) for eid in ids}
        before = {eid: self._before[eid] for eid in ids}
        return diff_entities(self.collection, before, after)
