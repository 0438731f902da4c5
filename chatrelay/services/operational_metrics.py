"""
Operational Metrics

In-process counters for the chat pipeline: completed turns, provider errors
and provider response time, each keyed by provider and model.
"""

import threading
from collections import defaultdict, deque
from typing import Any, Dict, Tuple

from ..core.logging import logger

MAX_SAMPLES = 1000


class OperationalMetrics:
    """Thread-safe counters shared by all turns."""

    def __init__(self):
        self._lock = threading.Lock()
        self._chat_completions: Dict[Tuple[str, str, bool], int] = defaultdict(int)
        self._provider_errors: Dict[Tuple[str, str], int] = defaultdict(int)
        self._response_times: Dict[Tuple[str, str], deque] = defaultdict(lambda: deque(maxlen=MAX_SAMPLES))

    def record_chat_completion(self, provider: str, model: str, streaming: bool):
        with self._lock:
            self._chat_completions[(provider, model, streaming)] += 1

    def record_provider_error(self, provider: str, model: str, error_type: str):
        with self._lock:
            self._provider_errors[(provider, model)] += 1
        logger.debug(
            "Provider error recorded",
            provider_name=provider,
            model_id=model,
            error_type=error_type
        )

    def record_provider_response_time(self, provider: str, model: str, duration_ms: int):
        with self._lock:
            self._response_times[(provider, model)].append(duration_ms)

    def chat_completions(self, provider: str, model: str, streaming: bool) -> int:
        return self._chat_completions.get((provider, model, streaming), 0)

    def provider_errors(self, provider: str, model: str) -> int:
        return self._provider_errors.get((provider, model), 0)

    def snapshot(self) -> Dict[str, Any]:
        """Aggregated view for health output and debugging."""
        with self._lock:
            response_times = {
                f"{provider}/{model}": {
                    "count": len(samples),
                    "avg_ms": round(sum(samples) / len(samples), 2) if samples else 0,
                    "max_ms": max(samples) if samples else 0,
                }
                for (provider, model), samples in self._response_times.items()
            }
            return {
                "chat_completions": {
                    f"{provider}/{model}/{'stream' if streaming else 'sync'}": count
                    for (provider, model, streaming), count in self._chat_completions.items()
                },
                "provider_errors": {
                    f"{provider}/{model}": count
                    for (provider, model), count in self._provider_errors.items()
                },
                "provider_response_time": response_times,
            }
