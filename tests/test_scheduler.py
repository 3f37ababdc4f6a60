from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any

import pytest

from wardsync.models import (
    ChangeRecord,
    DeltaUpdate,
    FullDataUpdate,
    HybridUpdate,
    HybridUpdateType,
    ServerMessage,
    UpdateMode,
)
from wardsync.server.scheduler import ModeScheduler
from wardsync.state.store import EntityStore
from wardsync.state.ticker import ChangeBatch, MutationTicker


class _OnePatient:
    def generate(self, now: datetime) -> dict[str, dict[str, dict[str, Any]]]:
        return {
            "patients": {
                "P001": {
                    "name": "Patient 1",
                    "status": "stable",
                    "vitals": {"heartRate": 70.0, "spo2": 97.0, "temperature": 36.6},
                    "medications": [],
                }
            }
        }


def _ticker() -> MutationTicker:
    store = EntityStore(_OnePatient(), clock=lambda: datetime(2026, 1, 1, tzinfo=UTC))
    return MutationTicker(store, interval=60.0)


def _change(path: str, old: Any, new: Any) -> ChangeRecord:
    return ChangeRecord(collection="patients", entity_id="P001", field_path=path, old_value=old, new_value=new)


def _batch(ticker: MutationTicker, *changes: ChangeRecord, seq: int = 1) -> ChangeBatch:
    return ChangeBatch(seq=seq, generation=ticker.store.generation, changes=changes)


async def _never_send(message: ServerMessage, generation: int) -> bool:  # pragma: no cover
    raise AssertionError("render-only test")


MIXED = (
    _change("vitals.heartRate", 70.0, 74.0),
    _change("vitals.temperature", 36.6, 36.8),
)


class TestRender:
    def test_full_mode_ships_realtime_snapshot(self) -> None:
        ticker = _ticker()
        message = ModeScheduler(UpdateMode.FULL, ticker, _never_send).render(_batch(ticker))

        assert isinstance(message, FullDataUpdate)
        assert set(message.data["patients"]["P001"]) == {"status", "vitals", "medications"}

    def test_delta_groups_every_change(self) -> None:
        ticker = _ticker()
        message = ModeScheduler(UpdateMode.DELTA, ticker, _never_send).render(_batch(ticker, *MIXED))

        assert isinstance(message, DeltaUpdate)
        assert message.update_type == "all"
        assert message.changes == {"patients": {"P001": {"vitals.heartRate": 74.0, "vitals.temperature": 36.8}}}

    def test_delta_skips_empty_ticks(self) -> None:
        ticker = _ticker()
        assert ModeScheduler(UpdateMode.DELTA, ticker, _never_send).render(_batch(ticker)) is None

    def test_hybrid_alternates_full_and_critical(self) -> None:
        ticker = _ticker()
        scheduler = ModeScheduler(UpdateMode.HYBRID, ticker, _never_send)

        first = scheduler.render(_batch(ticker, *MIXED, seq=1))
        second = scheduler.render(_batch(ticker, *MIXED, seq=2))
        third = scheduler.render(_batch(ticker, *MIXED, seq=3))

        assert isinstance(first, HybridUpdate)
        assert first.update_type is HybridUpdateType.FULL_CYCLE
        assert first.cycle == "next_critical"
        assert first.data_reduction is False
        assert set(first.changes["patients"]["P001"]) == {"vitals.heartRate", "vitals.temperature"}

        assert isinstance(second, HybridUpdate)
        assert second.update_type is HybridUpdateType.CRITICAL_ONLY
        assert second.cycle == "next_full"
        assert second.data_reduction is True
        assert second.changes == {"patients": {"P001": {"vitals.heartRate": 74.0}}}

        assert isinstance(third, HybridUpdate)
        assert third.update_type is HybridUpdateType.FULL_CYCLE

    def test_hybrid_phase_advances_on_empty_ticks(self) -> None:
        ticker = _ticker()
        scheduler = ModeScheduler(UpdateMode.HYBRID, ticker, _never_send)
        only_temperature = _change("vitals.temperature", 36.6, 36.9)

        assert scheduler.render(_batch(ticker)) is None
        assert scheduler.phase == 1
        assert scheduler.render(_batch(ticker, only_temperature)) is None
        assert scheduler.phase == 0
        message = scheduler.render(_batch(ticker, only_temperature))
        assert isinstance(message, HybridUpdate)
        assert message.update_type is HybridUpdateType.FULL_CYCLE

    def test_custom_critical_paths(self) -> None:
        ticker = _ticker()
        scheduler = ModeScheduler(UpdateMode.HYBRID, ticker, _never_send, critical_paths=("vitals.temperature",))
        scheduler.phase = 1

        message = scheduler.render(_batch(ticker, *MIXED))

        assert isinstance(message, HybridUpdate)
        assert message.changes == {"patients": {"P001": {"vitals.temperature": 36.8}}}

    def test_stale_generation_is_dropped_without_advancing(self) -> None:
        ticker = _ticker()
        scheduler = ModeScheduler(UpdateMode.HYBRID, ticker, _never_send)
        stale = _batch(ticker, *MIXED)
        ticker.store.regenerate()

        assert scheduler.render(stale) is None
        assert scheduler.phase == 0


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_scheduler_consumes_ticks_until_stopped(self) -> None:
        ticker = _ticker()
        sent: list[ServerMessage] = []

        async def send(message: ServerMessage, generation: int) -> bool:
            assert generation == ticker.store.generation
            sent.append(message)
            return True

        scheduler = ModeScheduler(UpdateMode.FULL, ticker, send, name="test")
        scheduler.start()
        assert ticker.subscriber_count == 1

        ticker.tick()
        for _ in range(5):
            await asyncio.sleep(0)
        assert len(sent) == 1
        assert isinstance(sent[0], FullDataUpdate)

        scheduler.stop()
        await scheduler.wait_stopped()
        assert ticker.subscriber_count == 0
        assert ticker.tick() is None
        assert await scheduler.deliver(_batch(ticker)) is False
        assert len(sent) == 1

    @pytest.mark.asyncio
    async def test_stop_is_idempotent_and_final(self) -> None:
        ticker = _ticker()
        scheduler = ModeScheduler(UpdateMode.DELTA, ticker, _never_send)
        scheduler.start()
        scheduler.stop()
        scheduler.stop()
        scheduler.start()

        await scheduler.wait_stopped()
        assert scheduler.stopped
        assert not scheduler.running
        assert ticker.subscriber_count == 0


class TestTicker:
    def test_tick_without_subscribers_does_not_mutate(self) -> None:
        ticker = _ticker()
        before = ticker.store.snapshot()

        assert ticker.tick() is None
        assert ticker.store.snapshot() == before

    @pytest.mark.asyncio
    async def test_tick_fans_out_one_batch(self) -> None:
        ticker = _ticker()
        first, second = ticker.subscribe(), ticker.subscribe()

        batch = ticker.tick()

        assert batch is not None
        assert batch.seq == 1
        assert batch.generation == 0
        assert first.get_nowait() is batch
        assert second.get_nowait() is batch

    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        ticker = MutationTicker(_ticker().store, interval=0.01)
        queue = ticker.subscribe()
        ticker.start()
        assert ticker.running

        batch = await asyncio.wait_for(queue.get(), timeout=1.0)

        await ticker.stop()
        assert batch.seq >= 1
        assert not ticker.running
