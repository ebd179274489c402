"""
Metric sources for the system health monitor.

``SimulatedMetricSource`` perturbs the previous value by a bounded random
percentage each cycle and is used until real instrumentation is wired in.
``ProbeMetricSource`` reads registered probes (sync or async callables),
re-sampling a failing probe up to ``retries`` more times, and falls back to
another source for metrics without a probe.
"""

import asyncio
import inspect
import logging
import random
from typing import Dict, Optional, Tuple

from studybuddy.models.health import HealthMetric
from studybuddy.models.interfaces import IMetricSource, MetricProbe


class SimulatedMetricSource(IMetricSource):
    """Random walk around the current value, within +/- ``variation_percent``."""

    def __init__(self, variation_percent: float = 5.0, rng: Optional[random.Random] = None):
        self.variation_percent = variation_percent
        self.rng = rng or random.Random()

    async def sample(self, layer: int, metric: HealthMetric) -> Optional[float]:
        factor = 1 + self.rng.uniform(-self.variation_percent, self.variation_percent) / 100
        value = max(0.0, metric.value * factor)
        if metric.unit == "%":
            value = min(100.0, value)
        return round(value, 2)


class ProbeMetricSource(IMetricSource):
    """Reads metric values from registered probes."""

    def __init__(
        self,
        fallback: Optional[IMetricSource] = None,
        timeout_seconds: float = 10.0,
        retries: int = 0,
    ):
        self.logger = logging.getLogger(__name__)
        self.fallback = fallback
        self.timeout_seconds = timeout_seconds
        self.retries = retries
        self.probes: Dict[Tuple[int, str], MetricProbe] = {}

    def register_probe(self, layer: int, metric_name: str, probe: MetricProbe) -> None:
        self.probes[(layer, metric_name)] = probe
        self.logger.info(f"Registered probe for layer {layer} metric '{metric_name}'")

    def unregister_probe(self, layer: int, metric_name: str) -> bool:
        return self.probes.pop((layer, metric_name), None) is not None

    async def sample(self, layer: int, metric: HealthMetric) -> Optional[float]:
        probe = self.probes.get((layer, metric.name))
        if probe is None:
            if self.fallback is None:
                return None
            return await self.fallback.sample(layer, metric)

        for attempt in range(1, self.retries + 2):
            try:
                value = probe()
                if inspect.isawaitable(value):
                    value = await asyncio.wait_for(value, timeout=self.timeout_seconds)
                return None if value is None else float(value)
            except Exception as e:
                self.logger.warning(
                    f"Probe for layer {layer} metric '{metric.name}' failed "
                    f"(attempt {attempt}/{self.retries + 1}): {e}"
                )
        # Keep the previous value; a broken probe must not stop the check cycle
        return None
