"""
Statistics Collector Module

Timing for one chat turn: time to first chunk from the provider, total
provider response time and token throughput. The orchestrator uses it for
the usage metric's `duration_ms` and for the provider response-time counter.
"""

import time
from typing import Any, Dict, Optional


class StatisticsCollector:
    """
    Collector for timing and token statistics during a chat turn.

    Attributes:
        start_time (float): Monotonic timestamp of dispatch to the provider
        first_chunk_time (float): Monotonic timestamp of the first provider chunk
        completion_end_time (float): Monotonic timestamp when the stream ended
        prompt_tokens (int): Prompt tokens reported or estimated by the provider
        completion_tokens (int): Completion tokens reported or estimated by the provider
    """

    def __init__(self, clock=None):
        self._clock = clock or time.monotonic
        self.start_time: Optional[float] = None
        self.first_chunk_time: Optional[float] = None
        self.completion_end_time: Optional[float] = None
        self.prompt_tokens = 0
        self.completion_tokens = 0

    def start_timing(self):
        """Must be called right before the provider stream is opened."""
        self.start_time = self._clock()
        self.first_chunk_time = None
        self.completion_end_time = None

    def mark_first_chunk(self):
        if self.first_chunk_time is None:
            self.first_chunk_time = self._clock()

    def mark_completion_complete(self, prompt_tokens: int = 0, completion_tokens: int = 0):
        self.completion_end_time = self._clock()
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens

    @property
    def duration_ms(self) -> int:
        """Milliseconds from dispatch to stream end (or to now while still streaming)."""
        if self.start_time is None:
            return 0
        end = self.completion_end_time if self.completion_end_time is not None else self._clock()
        return int((end - self.start_time) * 1000)

    @property
    def time_to_first_chunk_ms(self) -> Optional[int]:
        if self.start_time is None or self.first_chunk_time is None:
            return None
        return int((self.first_chunk_time - self.start_time) * 1000)

    def get_statistics(self) -> Dict[str, Any]:
        """
        Returns:
            Dict[str, Any]: prompt/completion/total tokens, time to first
                chunk, total time (seconds, 2 decimals) and completion tokens
                per second. Empty dict if timing hasn't been started.
        """
        if self.start_time is None:
            return {}

        total_time = self.duration_ms / 1000
        generation_start = self.first_chunk_time or self.start_time
        generation_end = self.completion_end_time or self._clock()
        generation_time = generation_end - generation_start
        completion_tokens_per_sec = self.completion_tokens / generation_time if generation_time > 0 else 0

        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.prompt_tokens + self.completion_tokens,
            "time_to_first_chunk_ms": self.time_to_first_chunk_ms,
            "completion_tokens_per_sec": round(completion_tokens_per_sec, 2),
            "total_time": round(total_time, 2)
        }
