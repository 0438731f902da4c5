import asyncio
import itertools
from abc import ABC, abstractmethod
from typing import List

from ..core.models import UsageMetric


class MetricsStore(ABC):
    """Persists per-turn usage and cost records."""

    @abstractmethod
    async def record(self, metric: UsageMetric) -> UsageMetric:
        pass


class InMemoryMetricsStore(MetricsStore):

    def __init__(self):
        self.metrics: List[UsageMetric] = []
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    async def record(self, metric: UsageMetric) -> UsageMetric:
        async with self._lock:
            metric.id = next(self._ids)
            self.metrics.append(metric)
        return metric

    def for_user(self, user_id: str) -> List[UsageMetric]:
        return [m for m in self.metrics if m.user_id == user_id]
