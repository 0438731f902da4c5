"""
Тесты StreamPacer: перечанковка и темп выдачи
"""
import time

import pytest

from chatrelay.services.chat.stream_pacer import PacerSettings, StreamPacer, adaptive_delay_ms


class FakeClock:
    """Монотонные часы, которые двигает только fake sleep"""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        # scheduling overhead on top of the requested delay
        self.now += seconds + 0.0001


async def fragments_of(*parts):
    for part in parts:
        yield part


async def paced(pacer, *parts, **kwargs):
    return [chunk async for chunk in pacer.pace(fragments_of(*parts), **kwargs)]


class TestAdaptiveDelay:

    def test_sentence_end_triples_delay(self):
        assert adaptive_delay_ms("ok.", 5) == 15
        assert adaptive_delay_ms("a\n", 5) == 15

    def test_minor_punctuation(self):
        assert adaptive_delay_ms("a,b", 5) == 7.5

    def test_plain_text(self):
        assert adaptive_delay_ms("abc", 5) == 5


class TestPacerSettings:

    def test_from_config(self):
        settings = PacerSettings.from_config({"target_chunk_size": 4})
        assert settings.target_chunk_size == 4
        assert settings.target_interval_ms == 5


class TestStreamPacer:

    @pytest.mark.asyncio
    async def test_concatenation_is_preserved(self):
        clock = FakeClock()
        pacer = StreamPacer(PacerSettings(3, 5), sleep=clock.sleep, clock=clock)
        text = "The quick brown fox jumps over the lazy dog."

        chunks = await paced(pacer, text)

        assert "".join(chunks) == text
        assert len(chunks) >= 2
        assert all(0 < len(chunk) <= 3 for chunk in chunks)

    @pytest.mark.asyncio
    async def test_order_across_fragments(self):
        clock = FakeClock()
        pacer = StreamPacer(PacerSettings(3, 5), sleep=clock.sleep, clock=clock)
        parts = ["Привет", ", ", "мир", "! Как ", "дела?"]

        chunks = await paced(pacer, *parts)

        assert "".join(chunks) == "".join(parts)

    @pytest.mark.asyncio
    async def test_elapsed_time_covers_intervals(self):
        clock = FakeClock()
        pacer = StreamPacer(PacerSettings(3, 5), sleep=clock.sleep, clock=clock)
        text = "Hello, world. Pacing keeps rendering smooth"

        chunks = await paced(pacer, text)

        assert len(chunks) >= 2
        assert clock.now * 1000 >= (len(chunks) - 1) * 5

    @pytest.mark.asyncio
    async def test_real_clock_pacing(self):
        pacer = StreamPacer(PacerSettings(3, 4))
        text = "abcdefghijklmnopqrstuvwx"

        started = time.monotonic()
        chunks = await paced(pacer, text)
        elapsed_ms = (time.monotonic() - started) * 1000

        assert "".join(chunks) == text
        # every chunk is followed by at least a quarter of the interval
        assert elapsed_ms >= (len(chunks) - 1) * 1

    @pytest.mark.asyncio
    async def test_short_tail_uses_shortened_delay(self):
        clock = FakeClock()
        pacer = StreamPacer(PacerSettings(3, 5), sleep=clock.sleep, clock=clock)

        chunks = await paced(pacer, "Hi")

        assert chunks == ["Hi"]
        assert clock.sleeps == [pytest.approx(0.00125)]

    @pytest.mark.asyncio
    async def test_per_call_chunk_size(self):
        clock = FakeClock()
        pacer = StreamPacer(PacerSettings(3, 5), sleep=clock.sleep, clock=clock)
        text = "abcdefghijklmnopqrstuvwxyz"

        chunks = await paced(pacer, text, chunk_size=5)

        assert "".join(chunks) == text
        assert max(len(chunk) for chunk in chunks) == 5

    @pytest.mark.asyncio
    async def test_empty_fragments_are_skipped(self):
        clock = FakeClock()
        pacer = StreamPacer(PacerSettings(3, 5), sleep=clock.sleep, clock=clock)

        assert await paced(pacer, "", "") == []
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_closing_pacer_closes_upstream(self):
        closed = []

        async def upstream():
            try:
                yield "abcdefghijkl"
                yield "never"
            finally:
                closed.append(True)

        clock = FakeClock()
        pacer = StreamPacer(PacerSettings(3, 5), sleep=clock.sleep, clock=clock)
        stream = pacer.pace(upstream())

        first = await stream.__anext__()
        await stream.aclose()

        assert first == "abc"
        assert closed == [True]
