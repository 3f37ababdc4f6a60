from __future__ import annotations

import random
from datetime import UTC, datetime
from typing import Any

import pytest

from wardsync.config import MutationProfile, SyncConfig
from wardsync.mirror import apply_patch
from wardsync.models import group_changes
from wardsync.state.rules import CollectionRules, NumericRule
from wardsync.state.store import EntityStore
from wardsync.state.tracker import diff_entities
from wardsync.state.ward import EQUIPMENT, PATIENTS, mean_arterial_pressure, ward_metrics


def _dt() -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC)


def _ward(seed: int = 7, **kwargs: Any) -> EntityStore:
    return EntityStore.from_config(SyncConfig(seed=seed, **kwargs), clock=_dt)


def _as_set(changes: list) -> set[tuple[str, str, str, Any, Any]]:
    return {(c.collection, c.entity_id, c.field_path, c.old_value, c.new_value) for c in changes}


class _Sensors:
    def generate(self, now: datetime) -> dict[str, dict[str, dict[str, Any]]]:
        return {"sensors": {f"S{i}": {"reading": 5.0, "label": f"sensor {i}"} for i in range(4)}}


def test_seeded_stores_generate_identical_content() -> None:
    assert _ward(seed=3).snapshot() == _ward(seed=3).snapshot()


def test_snapshot_shape() -> None:
    snapshot = _ward(patient_count=4).snapshot()

    assert list(snapshot) == ["ward", PATIENTS, EQUIPMENT, "timestamp", "metrics"]
    assert snapshot["ward"] == "ICU-A"
    assert list(snapshot[PATIENTS]) == ["P001", "P002", "P003", "P004"]
    assert snapshot[EQUIPMENT]["EQ002"]["patient"] == "P002"
    assert snapshot["timestamp"] == "2026-01-01T00:00:00.000Z"
    assert snapshot["metrics"]["totalPatients"] == 4


def test_mutate_reports_exactly_what_changed() -> None:
    store = _ward()
    before = store.snapshot()

    changes = store.mutate()
    after = store.snapshot()

    expected: set = set()
    for collection in (PATIENTS, EQUIPMENT):
        expected |= _as_set(diff_entities(collection, before[collection], after[collection]))
    assert changes
    assert _as_set(changes) == expected


def test_grouped_changes_replay_each_pass_onto_the_previous_snapshot() -> None:
    store = _ward()
    for _ in range(5):
        replica = store.snapshot()
        apply_patch(replica, group_changes(store.mutate()))
        after = store.snapshot()
        for collection in store.collection_names:
            assert replica[collection] == after[collection]


def test_changes_respect_bounds_and_are_never_noops() -> None:
    store = _ward()
    for _ in range(5):
        for change in store.mutate():
            assert change.old_value != change.new_value
            if change.field_path == "vitals.heartRate":
                assert 60 <= change.new_value <= 100
            if change.field_path == "vitals.spo2":
                assert 95 <= change.new_value <= 100
            if change.field_path == "batteryLevel":
                assert round(change.new_value, 1) == change.new_value
                assert 0 <= change.new_value <= 100


def test_mean_arterial_pressure_follows_blood_pressure() -> None:
    store = _ward()
    for _ in range(5):
        store.mutate()

    for patient in store.snapshot()[PATIENTS].values():
        pressure = patient["vitals"]["bloodPressure"]
        assert pressure["meanArterialPressure"] == mean_arterial_pressure(pressure["systolic"], pressure["diastolic"])


def test_metrics_are_recomputed_each_pass() -> None:
    store = _ward()
    for _ in range(10):
        store.mutate()
    snapshot = store.snapshot()
    assert snapshot["metrics"] == ward_metrics(snapshot)


def test_status_pass_runs_every_nth_pass() -> None:
    store = _ward(mutation=MutationProfile(status_interval=3))
    status_paths = {"status", "batteryLevel"}

    for _ in range(2):
        assert not [c for c in store.mutate() if c.field_path in status_paths]


def test_empty_selection_changes_nothing() -> None:
    store = _ward(mutation=MutationProfile(selection_min=0.0, selection_max=0.0))
    assert store.mutate_numeric(PATIENTS) == []


def test_unknown_collection_raises() -> None:
    with pytest.raises(KeyError):
        _ward().mutate("beds")


def test_realtime_snapshot_only_carries_volatile_fields() -> None:
    realtime = _ward(patient_count=3).realtime_snapshot()

    assert realtime["ward"] == "ICU-A"
    assert "metrics" in realtime
    for patient in realtime[PATIENTS].values():
        assert set(patient) == {"status", "vitals", "medications"}
        for medication in patient["medications"]:
            assert set(medication) == {"id", "name", "dosage", "lastGiven", "nextDue"}
    for device in realtime[EQUIPMENT].values():
        assert set(device) == {"type", "status", "patient", "batteryLevel"}


def test_snapshots_are_detached_from_the_store() -> None:
    store = _ward(patient_count=2)
    snapshot = store.snapshot()
    snapshot[PATIENTS]["P001"]["status"] = "discharged"

    assert store.get_entity(PATIENTS, "P001")["status"] != "discharged"


def test_regenerate_bumps_generation() -> None:
    store = _ward(patient_count=2)
    assert store.generation == 0

    snapshot = store.regenerate()

    assert store.generation == 1
    assert snapshot == store.snapshot()


def test_custom_collection_rules() -> None:
    store = EntityStore(
        _Sensors(),
        rules={"sensors": CollectionRules(numeric=(NumericRule("reading", 0, 10, 1, probability=1.0),))},
        profile=MutationProfile(selection_min=1.0, selection_max=1.0),
        metrics=lambda collections: {"sensors": len(collections["sensors"])},
        rng=random.Random(1),
        clock=_dt,
    )

    changes = store.mutate()

    assert {c.field_path for c in changes} <= {"reading"}
    for change in changes:
        assert store.get_entity("sensors", change.entity_id)["reading"] == change.new_value
    assert store.snapshot()["metrics"] == {"sensors": 4}
