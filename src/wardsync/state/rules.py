"""Mutation rules.

Rules are plain declarations; the functions below apply them to one
entity in place. They never report changes themselves: the
:class:`~wardsync.state.tracker.ChangeTracker` diffs what they did.
"""

from __future__ import annotations

import random
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from wardsync.models._base import utc_timestamp


@dataclass(frozen=True)
class NumericRule:
    """Bounded random walk of one numeric leaf.

    Rules sharing a ``group`` roll their probability once and move together.
    """

    path: str
    minimum: float
    maximum: float
    max_step: float
    probability: float
    precision: int = 1
    group: str | None = None


@dataclass(frozen=True)
class StatusRule:
    """Weighted discrete transition of a coarse status field.

    ``companions`` are numeric rules applied (unconditionally) whenever the
    transition fires.
    """

    path: str
    choices: tuple[str, ...]
    weights: tuple[float, ...]
    probability: float
    companions: tuple[NumericRule, ...] = ()


@dataclass(frozen=True)
class ScheduleRule:
    """Refresh of timestamp pairs inside list items (e.g. medication rounds).

    With ``probability`` the list is visited; each item is then refreshed
    with ``item_probability``: ``last_field`` becomes *now* and
    ``next_field`` lands ``next_after`` later.
    """

    list_path: str
    probability: float
    item_probability: float
    last_field: str
    next_field: str
    next_after: tuple[timedelta, timedelta]


@dataclass(frozen=True)
class CollectionRules:
    """Everything the mutation engine knows about one collection."""

    numeric: tuple[NumericRule, ...] = ()
    status: tuple[StatusRule, ...] = ()
    schedules: tuple[ScheduleRule, ...] = ()
    derive: Callable[[dict[str, Any]], None] | None = None
    volatile: Mapping[str, tuple[str, ...] | None] = field(default_factory=dict)
    """Fields shipped in realtime snapshots; a tuple projects list items."""

    @property
    def numeric_roots(self) -> tuple[str, ...]:
        paths = [r.path for r in self.numeric] + [s.list_path for s in self.schedules]
        return _roots(paths)

    @property
    def status_roots(self) -> tuple[str, ...]:
        paths = [r.path for r in self.status] + [c.path for r in self.status for c in r.companions]
        return _roots(paths)


def _roots(paths: Sequence[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(path.split(".", 1)[0] for path in paths))


# ------------------------------------------------------------------
# Path helpers
# ------------------------------------------------------------------


def get_path(tree: Any, path: str, default: Any = None) -> Any:
    current = tree
    for key in path.split("."):
        if isinstance(current, Mapping) and key in current:
            current = current[key]
        elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            return default
    return current


def assign_path(tree: dict[str, Any], path: str, value: Any) -> None:
    """Assign an existing leaf of a store-owned tree (no container creation)."""
    *parents, leaf = path.split(".")
    current: Any = tree
    for key in parents:
        current = current[int(key)] if isinstance(current, list) else current[key]
    if isinstance(current, list):
        current[int(leaf)] = value
    else:
        current[leaf] = value


# ------------------------------------------------------------------
# Primitive draws
# ------------------------------------------------------------------


def clamp(value: float, minimum: float, maximum: float) -> float:
    return max(minimum, min(maximum, value))


def adjust_value(rng: random.Random, current: float, rule: NumericRule) -> float | int:
    """``clamp(round(current + uniform(-step, step)), min, max)``."""
    moved = round(current + rng.uniform(-rule.max_step, rule.max_step), rule.precision)
    value = clamp(moved, rule.minimum, rule.maximum)
    if rule.precision <= 0:
        return int(round(value))
    return value


def weighted_choice(rng: random.Random, choices: Sequence[str], weights: Sequence[float]) -> str:
    return rng.choices(list(choices), weights=list(weights), k=1)[0]


# ------------------------------------------------------------------
# Rule application
# ------------------------------------------------------------------


def apply_numeric_rules(rng: random.Random, entity: dict[str, Any], rules: Sequence[NumericRule]) -> None:
    rolled: dict[str, bool] = {}
    for rule in rules:
        if rule.group is not None:
            if rule.group not in rolled:
                rolled[rule.group] = rng.random() < rule.probability
            fire = rolled[rule.group]
        else:
            fire = rng.random() < rule.probability
        if not fire:
            continue
        current = get_path(entity, rule.path)
        if not isinstance(current, int | float) or isinstance(current, bool):
            continue
        assign_path(entity, rule.path, adjust_value(rng, current, rule))


def apply_status_rules(rng: random.Random, entity: dict[str, Any], rules: Sequence[StatusRule]) -> None:
    for rule in rules:
        if rng.random() >= rule.probability:
            continue
        assign_path(entity, rule.path, weighted_choice(rng, rule.choices, rule.weights))
        for companion in rule.companions:
            current = get_path(entity, companion.path)
            if isinstance(current, int | float) and not isinstance(current, bool):
                assign_path(entity, companion.path, adjust_value(rng, current, companion))


def apply_schedule_rules(
    rng: random.Random,
    entity: dict[str, Any],
    rules: Sequence[ScheduleRule],
    now: datetime,
) -> None:
    for rule in rules:
        if rng.random() >= rule.probability:
            continue
        items = get_path(entity, rule.list_path)
        if not isinstance(items, list):
            continue
        low, high = rule.next_after
        for item in items:
            if not isinstance(item, dict) or rng.random() >= rule.item_probability:
                continue
            item[rule.last_field] = utc_timestamp(now)
            span = rng.uniform(low.total_seconds(), high.total_seconds())
            item[rule.next_field] = utc_timestamp(now + timedelta(seconds=span))


def project_volatile(entity: Mapping[str, Any], volatile: Mapping[str, tuple[str, ...] | None]) -> dict[str, Any]:
    """Project the volatile fields of an entity. Values are shared, callers copy."""
    projected: dict[str, Any] = {}
    for key, subfields in volatile.items():
        if key not in entity:
            continue
        value = entity[key]
        if subfields is not None and isinstance(value, list):
            projected[key] = [
                {name: item[name] for name in subfields if name in item} for item in value if isinstance(item, dict)
            ]
        else:
            projected[key] = value
    return projected
