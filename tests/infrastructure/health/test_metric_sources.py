"""Tests for health metric sources."""

import random

import pytest

from studybuddy.infrastructure.health.metric_sources import ProbeMetricSource, SimulatedMetricSource
from studybuddy.models.health import HealthMetric, MetricThreshold


def metric(name="Memory Usage", value=60.0, unit="%"):
    return HealthMetric(
        name=name,
        value=value,
        unit=unit,
        threshold=MetricThreshold(warning=70, critical=85),
        description="",
    )


class TestSimulatedMetricSource:

    @pytest.mark.asyncio
    async def test_values_stay_within_variation(self):
        source = SimulatedMetricSource(variation_percent=5, rng=random.Random(3))
        for _ in range(50):
            value = await source.sample(2, metric(value=60.0))
            assert 57.0 <= value <= 63.0

    @pytest.mark.asyncio
    async def test_percentages_are_capped(self):
        source = SimulatedMetricSource(rng=random.Random(1))
        values = [await source.sample(1, metric(value=100.0)) for _ in range(20)]
        assert max(values) <= 100.0

    @pytest.mark.asyncio
    async def test_seeded_sources_agree(self):
        first = SimulatedMetricSource(rng=random.Random(11))
        second = SimulatedMetricSource(rng=random.Random(11))
        assert await first.sample(5, metric("System Response Time", 200, "ms")) == \
            await second.sample(5, metric("System Response Time", 200, "ms"))


class TestProbeMetricSource:

    @pytest.mark.asyncio
    async def test_sync_probe(self):
        source = ProbeMetricSource()
        source.register_probe(2, "Memory Usage", lambda: 71)
        assert await source.sample(2, metric()) == 71.0

    @pytest.mark.asyncio
    async def test_async_probe(self):
        async def probe():
            return 33.5

        source = ProbeMetricSource()
        source.register_probe(2, "Memory Usage", probe)
        assert await source.sample(2, metric()) == 33.5

    @pytest.mark.asyncio
    async def test_failing_probe_keeps_previous_value(self):
        def probe():
            raise OSError("cgroup not mounted")

        source = ProbeMetricSource()
        source.register_probe(2, "Memory Usage", probe)
        assert await source.sample(2, metric()) is None

    @pytest.mark.asyncio
    async def test_unprobed_metric_uses_fallback(self):
        source = ProbeMetricSource(fallback=SimulatedMetricSource(variation_percent=0))
        assert await source.sample(2, metric(value=60.0)) == 60.0
        assert await ProbeMetricSource().sample(2, metric()) is None

    @pytest.mark.asyncio
    async def test_unregister(self):
        source = ProbeMetricSource()
        source.register_probe(2, "Memory Usage", lambda: 71)
        assert source.unregister_probe(2, "Memory Usage")
        assert not source.unregister_probe(2, "Memory Usage")
        assert await source.sample(2, metric()) is None

    @pytest.mark.asyncio
    async def test_failing_probe_resampled(self):
        calls = []

        def probe():
            calls.append(1)
            if len(calls) < 3:
                raise OSError("stat busy")
            return 64

        source = ProbeMetricSource(retries=2)
        source.register_probe(2, "Memory Usage", probe)
        assert await source.sample(2, metric()) == 64.0
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        calls = []

        def probe():
            calls.append(1)
            raise OSError("cgroup not mounted")

        source = ProbeMetricSource(retries=1)
        source.register_probe(2, "Memory Usage", probe)
        assert await source.sample(2, metric()) is None
        assert len(calls) == 2
