"""Tests for bgorch.background.monitor.

Covers sampling with patched probes, the throttle/restore rules for the
effective ceiling, the tick cycle and the circuit breaker of the loop.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from bgorch.background.config import ResourceLimitConfig
from bgorch.background.event_bus import EventBus, JobEvent
from bgorch.background.monitor import ResourceMonitor, ResourceSnapshot
from bgorch.background.registry import JobRegistry


@pytest.fixture
def limits() -> ResourceLimitConfig:
    return ResourceLimitConfig(
        memory_high_percent=85,
        memory_low_percent=60,
        cpu_high_percent=90,
        cpu_low_percent=60,
        pressure_samples=2,
        throttle_factor=0.5,
    )


@pytest.fixture
def monitor(limits: ResourceLimitConfig) -> ResourceMonitor:
    return ResourceMonitor(limits, max_concurrent_jobs=5)


def _snap(memory_percent: float, cpu_percent: float, failed: bool = False) -> ResourceSnapshot:
    return ResourceSnapshot(
        memory_bytes=1024,
        memory_percent=memory_percent,
        cpu_percent=cpu_percent,
        active_jobs=0,
        queued_jobs=0,
        total_jobs=0,
        effective_ceiling=0,
        probe_failed=failed,
    )


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


class TestSample:
    @pytest.mark.usefixtures("calm_probes")
    def test_sample_reads_probes_and_registry(self, limits: ResourceLimitConfig):
        registry = JobRegistry()
        running = registry.create_job("store").job_id
        registry.mark_running(running, pid=1)
        registry.create_job("store")
        monitor = ResourceMonitor(limits, 3, registry=registry)

        snap = monitor.sample()

        assert snap.memory_bytes == 64 * 1024 * 1024
        assert snap.memory_mb == 64.0
        assert snap.memory_percent == 20.0
        assert snap.cpu_percent == 10.0
        assert (snap.active_jobs, snap.queued_jobs, snap.total_jobs) == (1, 1, 2)
        assert snap.effective_ceiling == 3
        assert snap.probe_failed is False

    def test_failed_probe_reads_as_zero(self, monitor: ResourceMonitor):
        with (
            patch.object(ResourceMonitor, "_get_memory_bytes", return_value=None),
            patch.object(ResourceMonitor, "_get_memory_percent", return_value=None),
            patch.object(ResourceMonitor, "_get_cpu_percent", return_value=5.0),
        ):
            snap = monitor.sample()
        assert snap.memory_bytes == 0
        assert snap.memory_percent == 0.0
        assert snap.probe_failed is True

    def test_real_probes_return_numbers(self, monitor: ResourceMonitor):
        snap = monitor.sample()
        assert isinstance(snap.memory_bytes, int)
        assert snap.memory_bytes > 0


class TestThrottling:
    def test_throttles_after_consecutive_pressure(self, monitor: ResourceMonitor):
        assert monitor.evaluate(_snap(90, 10)) == 5
        assert monitor.evaluate(_snap(50, 95)) == 2

    def test_non_consecutive_pressure_does_not_throttle(self, monitor: ResourceMonitor):
        monitor.evaluate(_snap(90, 10))
        monitor.evaluate(_snap(70, 70))
        assert monitor.evaluate(_snap(90, 10)) == 5

    def test_restores_one_step_per_calm_sample(self, monitor: ResourceMonitor):
        monitor.evaluate(_snap(90, 10))
        monitor.evaluate(_snap(90, 10))
        assert monitor.effective_ceiling == 2
        assert monitor.evaluate(_snap(70, 10)) == 2
        assert [monitor.evaluate(_snap(10, 10)) for _ in range(4)] == [3, 4, 5, 5]

    def test_ceiling_never_below_one(self, limits: ResourceLimitConfig):
        monitor = ResourceMonitor(limits, max_concurrent_jobs=1)
        for _ in range(6):
            monitor.evaluate(_snap(99, 99))
        assert monitor.effective_ceiling == 1

    def test_default_factor_floors(self):
        monitor = ResourceMonitor(ResourceLimitConfig(pressure_samples=1), max_concurrent_jobs=5)
        assert monitor.evaluate(_snap(95, 10)) == 3

    def test_failed_probe_leaves_ceiling(self, monitor: ResourceMonitor):
        monitor.evaluate(_snap(90, 10))
        assert monitor.evaluate(_snap(0, 0, failed=True)) == 5
        assert monitor.evaluate(_snap(90, 10)) == 2

    def test_rejects_non_positive_max(self, limits: ResourceLimitConfig):
        with pytest.raises(ValueError):
            ResourceMonitor(limits, max_concurrent_jobs=0)


class TestTick:
    @pytest.mark.asyncio
    @pytest.mark.usefixtures("calm_probes")
    async def test_tick_emits_and_promotes(self, monitor: ResourceMonitor):
        bus = EventBus()
        received = MagicMock()
        bus.on(JobEvent.RESOURCE_UPDATE, received)
        on_tick = AsyncMock()
        ticking = ResourceMonitor(
            ResourceLimitConfig(), max_concurrent_jobs=4, events=bus, on_tick=on_tick,
        )

        snap = await ticking.tick()

        on_tick.assert_awaited_once()
        received.assert_called_once_with(snap)
        assert ticking.last_snapshot is snap
        assert snap.effective_ceiling == 4


class TestLoop:
    @pytest.mark.asyncio
    @pytest.mark.usefixtures("calm_probes")
    async def test_start_is_idempotent(self, monitor: ResourceMonitor):
        await monitor.start(10.0)
        task = monitor._task
        await monitor.start(10.0)
        assert monitor._task is task
        assert monitor.is_running
        await monitor.stop()
        assert not monitor.is_running

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("calm_probes")
    async def test_degraded_after_repeated_failures_and_recovers(
        self, limits: ResourceLimitConfig,
    ):
        on_tick = AsyncMock(side_effect=RuntimeError("promotion broke"))
        monitor = ResourceMonitor(limits, 2, on_tick=on_tick)
        await monitor.start(0.001)
        try:
            await _wait_until(lambda: monitor.is_degraded)
            assert on_tick.await_count >= ResourceMonitor._CIRCUIT_BREAKER_THRESHOLD

            on_tick.side_effect = None
            await _wait_until(lambda: not monitor.is_degraded)
            assert monitor.is_running
        finally:
            await monitor.stop()
