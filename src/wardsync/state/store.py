"""In-memory entity store and mutation engine.

The store owns every collection. Mutation, diffing, snapshotting and
regeneration all run under one lock, so a pass and the ChangeRecords it
reports are atomic with respect to any snapshot taken concurrently.
"""

from __future__ import annotations

import copy
import logging
import math
import random
import threading
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from wardsync.config import MutationProfile, SyncConfig
from wardsync.models._base import utc_timestamp
from wardsync.models.changes import ChangeRecord
from wardsync.state.generator import Collections, EntityGenerator, WardGenerator
from wardsync.state.rules import (
    CollectionRules,
    apply_numeric_rules,
    apply_schedule_rules,
    apply_status_rules,
    project_volatile,
)
from wardsync.state.tracker import ChangeTracker
from wardsync.state.ward import WARD_RULES, ward_metrics

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class EntityStore:
    """Named collections of entities plus the passes that mutate them.

    Parameters
    ----------
    generator : EntityGenerator
        Source of the initial (and regenerated) content.
    rules : mapping of str to CollectionRules
        Mutation rules per collection. Collections without rules are
        carried in snapshots but never mutated.
    ward : str
        Label shipped in every snapshot.
    profile : MutationProfile
        Selection fractions and status pass cadence.
    metrics : callable
        Aggregate metrics derived from the collections after every pass.
    rng : random.Random or None
        Source of every mutation draw.
    clock : callable
        Returns the current UTC time (used for timestamps).
    """

    def __init__(
        self,
        generator: EntityGenerator,
        *,
        rules: Mapping[str, CollectionRules] = WARD_RULES,
        ward: str = "ICU-A",
        profile: MutationProfile | None = None,
        metrics: Callable[[Mapping[str, Any]], dict[str, Any]] = ward_metrics,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.ward = ward
        self._generator = generator
        self._rules = dict(rules)
        self._profile = profile or MutationProfile()
        self._metrics_fn = metrics
        self._rng = rng if rng is not None else random.Random()
        self._clock = clock
        self._lock = threading.RLock()
        self._generation = 0
        self._passes = 0
        self._collections: Collections = generator.generate(self._clock())
        self._timestamp = ""
        self._metrics: dict[str, Any] = {}
        self._touch()

    @classmethod
    def from_config(cls, config: SyncConfig, *, clock: Callable[[], datetime] = _utcnow) -> EntityStore:
        """Build the ICU ward store described by *config*."""
        rng = random.Random(config.seed)
        return cls(
            WardGenerator(config.patient_count, rng=rng),
            ward=config.ward,
            profile=config.mutation,
            rng=rng,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def generation(self) -> int:
        """Bumped on every :meth:`regenerate`."""
        return self._generation

    @property
    def collection_names(self) -> tuple[str, ...]:
        return tuple(self._collections)

    @property
    def metrics(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._metrics)

    def get_entity(self, collection: str, entity_id: str) -> dict[str, Any] | None:
        """Deep copy of one entity, or ``None`` when it does not exist."""
        with self._lock:
            entity = self._collections.get(collection, {}).get(entity_id)
            return copy.deepcopy(entity) if entity is not None else None

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def mutate(self, collection: str | None = None) -> list[ChangeRecord]:
        """Run one pass: numeric pass, then (every Nth pass) the status pass.

        Returns the ChangeRecords of every value that actually changed,
        numeric records first.
        """
        with self._lock:
            names = self._target(collection)
            changes: list[ChangeRecord] = []
            for name in names:
                changes.extend(self._numeric_pass(name))
            self._passes += 1
            if self._passes % self._profile.status_interval == 0:
                for name in names:
                    changes.extend(self._status_pass(name))
            self._touch()
        _logger.debug("Mutation pass %d produced %d change(s)", self._passes, len(changes))
        return changes

    def mutate_numeric(self, collection: str) -> list[ChangeRecord]:
        with self._lock:
            (name,) = self._target(collection)
            changes = self._numeric_pass(name)
            self._touch()
            return changes

    def mutate_status(self, collection: str) -> list[ChangeRecord]:
        with self._lock:
            (name,) = self._target(collection)
            changes = self._status_pass(name)
            self._touch()
            return changes

    def _target(self, collection: str | None) -> list[str]:
        if collection is None:
            return [name for name in self._collections if name in self._rules]
        if collection not in self._collections:
            raise KeyError(f"Unknown collection: {collection!r}")
        return [collection] if collection in self._rules else []

    def _numeric_pass(self, collection: str) -> list[ChangeRecord]:
        rules = self._rules[collection]
        if not rules.numeric and not rules.schedules:
            return []
        entities = self._collections[collection]
        ids = list(entities)
        fraction = self._rng.uniform(self._profile.selection_min, self._profile.selection_max)
        selected = self._rng.sample(ids, math.floor(len(ids) * fraction))

        now = self._clock()
        tracker = ChangeTracker(collection, roots=rules.numeric_roots)
        for entity_id in selected:
            entity = entities[entity_id]
            tracker.watch(entity_id, entity)
            apply_numeric_rules(self._rng, entity, rules.numeric)
            apply_schedule_rules(self._rng, entity, rules.schedules, now)
            if rules.derive is not None:
                rules.derive(entity)
        return tracker.collect(order=ids)

    def _status_pass(self, collection: str) -> list[ChangeRecord]:
        rules = self._rules[collection]
        if not rules.status:
            return []
        entities = self._collections[collection]
        tracker = ChangeTracker(collection, roots=rules.status_roots)
        for entity_id, entity in entities.items():
            tracker.watch(entity_id, entity)
            apply_status_rules(self._rng, entity, rules.status)
        return tracker.collect()

    def _touch(self) -> None:
        self._timestamp = utc_timestamp(self._clock())
        self._metrics = self._metrics_fn(self._collections)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """Complete deep copy: ``{ward, <collections...>, timestamp, metrics}``."""
        with self._lock:
            return self._envelope(copy.deepcopy(self._collections))

    def realtime_snapshot(self) -> dict[str, Any]:
        """Like :meth:`snapshot` but restricted to each collection's volatile fields."""
        with self._lock:
            projected: dict[str, Any] = {}
            for name, entities in self._collections.items():
                rules = self._rules.get(name)
                if rules is None or not rules.volatile:
                    projected[name] = entities
                    continue
                projected[name] = {eid: project_volatile(entity, rules.volatile) for eid, entity in entities.items()}
            return self._envelope(copy.deepcopy(projected))

    def _envelope(self, collections: dict[str, Any]) -> dict[str, Any]:
        return {"ward": self.ward, **collections, "timestamp": self._timestamp, "metrics": dict(self._metrics)}

    def regenerate(self) -> dict[str, Any]:
        """Replace all content, bump :attr:`generation` and return the new snapshot."""
        with self._lock:
            self._collections = self._generator.generate(self._clock())
            self._generation += 1
            self._passes = 0
            self._touch()
            _logger.info("Store regenerated (generation %d)", self._generation)
            return self.snapshot()
