from __future__ import annotations

import pytest

from wardsync.metrics import RuntimeClock, TransferMetrics


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _record_at(metrics: TransferMetrics, clock: FakeClock, *times: float, size: int = 100) -> None:
    for at in times:
        clock.now = at
        metrics.record(size)


class TestTransferMetrics:
    def test_frequency_over_regular_samples(self) -> None:
        clock = FakeClock()
        metrics = TransferMetrics(clock=clock)
        _record_at(metrics, clock, 0.0, 1.0, 2.0)
        assert metrics.update_frequency == pytest.approx(1.0)

    def test_frequency_needs_two_samples(self) -> None:
        clock = FakeClock()
        metrics = TransferMetrics(clock=clock)
        assert metrics.update_frequency == 0.0
        _record_at(metrics, clock, 5.0)
        assert metrics.update_frequency == 0.0

    def test_frequency_with_zero_span(self) -> None:
        clock = FakeClock()
        metrics = TransferMetrics(clock=clock)
        _record_at(metrics, clock, 3.0, 3.0, 3.0)
        assert metrics.update_frequency == 0.0

    def test_frequency_uses_sliding_window(self) -> None:
        clock = FakeClock()
        metrics = TransferMetrics(3, clock=clock)
        _record_at(metrics, clock, 0.0, 1.0, 2.0, 10.0)
        assert metrics.update_frequency == pytest.approx(2 / 9)
        assert metrics.last_update == 10.0
        assert metrics.messages == 4

    def test_sizes_and_throughput(self) -> None:
        clock = FakeClock()
        metrics = TransferMetrics(clock=clock)
        metrics.record(100)
        metrics.record(300)
        assert metrics.total_bytes == 400
        assert metrics.average_size == 200
        assert metrics.throughput(4.0) == 100
        assert metrics.throughput(0.0) == 0.0

    def test_reset(self) -> None:
        metrics = TransferMetrics(clock=FakeClock())
        metrics.record(10)
        metrics.reset()
        assert metrics.average_size == 0.0
        assert metrics.last_update is None

    def test_window_must_hold_two_samples(self) -> None:
        with pytest.raises(ValueError):
            TransferMetrics(1)


class TestRuntimeClock:
    def test_accumulates_only_while_running(self) -> None:
        clock = FakeClock()
        runtime = RuntimeClock(clock=clock)
        runtime.start()
        clock.now = 2.0
        runtime.stop()
        clock.now = 10.0
        runtime.start()
        clock.now = 11.5
        assert runtime.running
        assert runtime.elapsed == pytest.approx(3.5)

    def test_start_and_stop_are_idempotent(self) -> None:
        clock = FakeClock()
        runtime = RuntimeClock(clock=clock)
        runtime.start()
        clock.now = 1.0
        runtime.start()
        clock.now = 2.0
        runtime.stop()
        runtime.stop()
        assert runtime.elapsed == pytest.approx(2.0)
        assert not runtime.running

    def test_reset_keeps_running_clock_running(self) -> None:
        clock = FakeClock()
        runtime = RuntimeClock(clock=clock)
        runtime.start()
        clock.now = 5.0
        runtime.reset()
        clock.now = 6.0
        assert runtime.running
        assert runtime.elapsed == pytest.approx(1.0)
