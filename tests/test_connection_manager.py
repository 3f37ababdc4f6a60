from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest

from wardsync.config import SyncConfig
from wardsync.mirror import ClientMirror
from wardsync.models import ChangeRecord, DeltaUpdate, InitialData, UpdateMode, parse_server_message
from wardsync.server.manager import GOING_AWAY, ConnectionManager
from wardsync.state.store import EntityStore
from wardsync.state.ticker import ChangeBatch, MutationTicker


class FakeChannel:
    def __init__(self, *, fail: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed_with: tuple[int, bytes] | None = None
        self.fail = fail

    async def send_str(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(json.loads(data))

    async def close(self, *, code: int = 1000, message: bytes = b"") -> bool:
        self.closed_with = (code, message)
        return True

    @property
    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]


class YieldingChannel(FakeChannel):
    """Yields to the loop on every send, running ``during_send`` first."""

    def __init__(self) -> None:
        super().__init__()
        self.during_send: Callable[[], None] | None = None

    async def send_str(self, data: str) -> None:
        if self.during_send is not None:
            self.during_send()
        for _ in range(5):
            await asyncio.sleep(0)
        await super().send_str(data)


def _manager(**config: Any) -> ConnectionManager:
    cfg = SyncConfig(seed=11, patient_count=4, **config)
    store = EntityStore.from_config(cfg, clock=lambda: datetime(2026, 1, 1, tzinfo=UTC))
    return ConnectionManager(MutationTicker(store, cfg.tick_interval), cfg)


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def _replay(messages: list[dict[str, Any]]) -> ClientMirror:
    mirror = ClientMirror()
    for payload in messages:
        message = parse_server_message(payload)
        if isinstance(message, InitialData):
            mirror.replace(message.data)
        elif isinstance(message, DeltaUpdate):
            mirror.apply(message.changes)
    return mirror


def _assert_in_step(mirror: ClientMirror, manager: ConnectionManager) -> None:
    expected = manager.store.snapshot()
    for name in manager.store.collection_names:
        assert mirror.collection(name) == expected[name]


@pytest.mark.asyncio
async def test_accept_registers_full_mode_and_sends_snapshot() -> None:
    manager = _manager()
    channel = FakeChannel()

    connection_id = await manager.accept(channel)

    assert re.fullmatch(r"client_\d+_[0-9a-f]{12}", connection_id)
    assert channel.types == ["initial_data"]
    assert channel.sent[0]["data"] == manager.store.snapshot()
    state = manager.get(connection_id)
    assert state is not None
    assert state.mode is UpdateMode.FULL
    assert state.hybrid_phase == 0
    assert manager.total_connections == 1
    manager.cleanup(connection_id)


@pytest.mark.asyncio
async def test_set_update_mode_replaces_scheduler_and_acks() -> None:
    manager = _manager()
    channel = FakeChannel()
    connection_id = await manager.accept(channel)
    first = manager.get(connection_id).scheduler

    await manager.handle_frame(connection_id, '{"type": "set_update_mode", "mode": "delta"}')

    state = manager.get(connection_id)
    assert state.mode is UpdateMode.DELTA
    assert state.scheduler is not first
    assert first.stopped
    assert channel.sent[-1]["type"] == "mode_changed"
    assert channel.sent[-1]["mode"] == "delta"
    manager.cleanup(connection_id)


@pytest.mark.asyncio
async def test_mode_switch_resets_hybrid_phase() -> None:
    manager = _manager()
    channel = FakeChannel()
    connection_id = await manager.accept(channel)
    await manager.set_mode(connection_id, UpdateMode.HYBRID)
    state = manager.get(connection_id)
    state.scheduler.phase = 1

    await manager.set_mode(connection_id, UpdateMode.HYBRID)

    assert manager.get(connection_id).hybrid_phase == 0
    manager.cleanup(connection_id)


@pytest.mark.asyncio
async def test_delta_tick_is_sent_to_the_connection() -> None:
    manager = _manager()
    channel = FakeChannel()
    connection_id = await manager.accept(channel)
    await manager.set_mode(connection_id, UpdateMode.DELTA)
    record = ChangeRecord(
        collection="patients", entity_id="P001", field_path="vitals.heartRate", old_value=70.0, new_value=72.5
    )

    state = manager.get(connection_id)
    await state.scheduler.deliver(ChangeBatch(seq=1, generation=manager.store.generation, changes=(record,)))

    assert channel.sent[-1]["type"] == "delta_update"
    assert channel.sent[-1]["changes"] == {"patients": {"P001": {"vitals.heartRate": 72.5}}}
    manager.cleanup(connection_id)


@pytest.mark.asyncio
async def test_meta_messages_are_not_counted() -> None:
    manager = _manager()
    channel = FakeChannel()
    connection_id = await manager.accept(channel)

    await manager.handle_frame(connection_id, '{"type": "set_update_mode", "mode": "hybrid"}')
    await manager.handle_frame(connection_id, '{"type": "get_performance_metrics"}')

    assert channel.types == ["initial_data", "mode_changed", "performance_metrics"]
    report = channel.sent[-1]["data"]
    assert report["client"]["messagesSent"] == 1
    assert report["client"]["currentMode"] == "hybrid"
    assert report["server"]["totalMessagesSent"] == 1
    assert report["server"]["activeConnections"] == 1
    assert manager.get(connection_id).transfer.messages == 1
    manager.cleanup(connection_id)


@pytest.mark.asyncio
async def test_request_full_data_replies_with_realtime_snapshot() -> None:
    manager = _manager()
    channel = FakeChannel()
    connection_id = await manager.accept(channel)

    await manager.handle_frame(connection_id, '{"type": "request_full_data"}')

    assert channel.sent[-1]["type"] == "full_data_update"
    assert set(channel.sent[-1]["data"]["patients"]["P001"]) == {"status", "vitals", "medications"}
    manager.cleanup(connection_id)


@pytest.mark.asyncio
async def test_request_initial_data_regenerates_for_everyone() -> None:
    manager = _manager()
    first, second = FakeChannel(), FakeChannel()
    first_id = await manager.accept(first)
    second_id = await manager.accept(second)

    await manager.handle_frame(first_id, '{"type": "request_initial_data"}')

    assert manager.store.generation == 1
    assert first.types == ["initial_data", "initial_data"]
    assert second.types == ["initial_data", "initial_data"]
    assert second.sent[-1]["data"] == manager.store.snapshot()
    manager.cleanup(first_id)
    manager.cleanup(second_id)


@pytest.mark.asyncio
@pytest.mark.parametrize("frame", ["{not json", '{"type": "subscribe"}', '{"type": "set_update_mode", "mode": "x"}'])
async def test_bad_frames_are_ignored(frame: str) -> None:
    manager = _manager()
    channel = FakeChannel()
    connection_id = await manager.accept(channel)

    await manager.handle_frame(connection_id, frame)

    assert channel.types == ["initial_data"]
    assert manager.get(connection_id) is not None
    manager.cleanup(connection_id)


@pytest.mark.asyncio
async def test_send_failure_cleans_up_only_that_connection() -> None:
    manager = _manager()
    healthy = FakeChannel()
    healthy_id = await manager.accept(healthy)

    broken_id = await manager.accept(FakeChannel(fail=True))

    assert manager.get(broken_id) is None
    assert manager.get(healthy_id) is not None
    assert manager._ticker.subscriber_count == 1
    manager.cleanup(healthy_id)


@pytest.mark.asyncio
async def test_cleanup_is_idempotent_and_stops_scheduler() -> None:
    manager = _manager()
    connection_id = await manager.accept(FakeChannel())
    scheduler = manager.get(connection_id).scheduler

    manager.cleanup(connection_id)
    manager.cleanup(connection_id)

    assert scheduler.stopped
    assert manager.connections == {}
    assert await manager.send(connection_id, InitialData(data={})) is False


@pytest.mark.asyncio
async def test_shutdown_closes_every_channel_going_away() -> None:
    manager = _manager()
    channels = [FakeChannel(), FakeChannel()]
    for channel in channels:
        await manager.accept(channel)

    await manager.shutdown()

    assert manager.connections == {}
    assert [c.closed_with[0] for c in channels] == [GOING_AWAY, GOING_AWAY]
    assert manager._ticker.subscriber_count == 0


@pytest.mark.asyncio
async def test_server_report_tracks_totals() -> None:
    manager = _manager()
    channel = FakeChannel()
    connection_id = await manager.accept(channel)
    manager.cleanup(connection_id)

    report = manager.server_report()

    assert report.total_connections == 1
    assert report.active_connections == 0
    assert report.total_messages_sent == 1
    assert report.total_data_sent > 0


@pytest.mark.asyncio
async def test_consecutive_delta_ticks_keep_a_replica_in_step() -> None:
    manager = _manager()
    channel = FakeChannel()
    connection_id = await manager.accept(channel)
    await manager.set_mode(connection_id, UpdateMode.DELTA)

    for _ in range(5):
        manager._ticker.tick()
        await _settle()
        _assert_in_step(_replay(channel.sent), manager)

    assert "delta_update" in channel.types
    manager.cleanup(connection_id)


@pytest.mark.asyncio
async def test_regenerated_snapshot_is_not_overtaken_by_new_ticks() -> None:
    manager = _manager()
    slow = YieldingChannel()
    watcher = FakeChannel()
    slow_id = await manager.accept(slow)
    watcher_id = await manager.accept(watcher)
    await manager.set_mode(watcher_id, UpdateMode.DELTA)

    def tick_three_times() -> None:
        for _ in range(3):
            manager._ticker.tick()

    slow.during_send = tick_three_times
    await manager.regenerate()
    slow.during_send = None
    await _settle()

    after_ack = watcher.types[watcher.types.index("mode_changed") + 1 :]
    assert after_ack[0] == "initial_data"
    assert "delta_update" in after_ack
    _assert_in_step(_replay(watcher.sent), manager)
    manager.cleanup(slow_id)
    manager.cleanup(watcher_id)


@pytest.mark.asyncio
async def test_messages_rendered_before_regeneration_are_dropped() -> None:
    manager = _manager()
    channel = FakeChannel()
    connection_id = await manager.accept(channel)
    stale = manager.store.generation

    await manager.regenerate()

    assert await manager.send(connection_id, InitialData(data={}), generation=stale) is False
    assert channel.types == ["initial_data", "initial_data"]
    manager.cleanup(connection_id)
