"""
Сглаживание стрима

Провайдеры отдают текст неравномерными сетевыми чанками. Пейсер
перекладывает символы в FIFO-буфер и выпускает их небольшими порциями с
адаптивной задержкой, чтобы клиент рендерил текст равномерно.
"""
import asyncio
import time
from collections import deque
from dataclasses import dataclass
from typing import AsyncGenerator, AsyncIterator, Awaitable, Callable, Optional

from ...core.logging import logger

SENTENCE_PUNCTUATION = ".!?\n"
MINOR_PUNCTUATION = ",;:"


@dataclass
class PacerSettings:
    target_chunk_size: int = 3
    target_interval_ms: float = 5

    @classmethod
    def from_config(cls, streaming_defaults: dict) -> "PacerSettings":
        return cls(
            target_chunk_size=int(streaming_defaults.get("target_chunk_size", 3)),
            target_interval_ms=float(streaming_defaults.get("target_interval_ms", 5)),
        )


def adaptive_delay_ms(chunk: str, interval_ms: float) -> float:
    """Пауза после чанка: длиннее на концах предложений, чуть длиннее на запятых"""
    if not chunk or interval_ms <= 0:
        return interval_ms
    if any(ch in chunk for ch in SENTENCE_PUNCTUATION):
        return interval_ms * 3
    if any(ch in chunk for ch in MINOR_PUNCTUATION):
        return interval_ms * 1.5
    return interval_ms


class StreamPacer:
    """
    Перечанковка текстового потока с равномерным темпом выдачи

    Работает внутри задачи-потребителя: задержка это кооперативная точка
    приостановки, отмена прерывает генератор и закрывает upstream.
    """

    def __init__(
        self,
        settings: Optional[PacerSettings] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        self.settings = settings or PacerSettings()
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic

    def _elapsed_ms(self, since: float) -> float:
        return (self._clock() - since) * 1000

    def _should_emit(self, buffered: int, chunk_size: int, last_emit: float, interval_ms: float) -> bool:
        if buffered >= chunk_size * 2:
            return True
        return self._elapsed_ms(last_emit) > interval_ms

    async def pace(
        self,
        fragments: AsyncIterator[str],
        chunk_size: Optional[int] = None,
        interval_ms: Optional[float] = None
    ) -> AsyncGenerator[str, None]:
        """
        Выдает текст порциями по chunk_size символов

        Args:
            fragments: Upstream фрагменты текста
            chunk_size: Целевой размер порции (по умолчанию из настроек)
            interval_ms: Базовый интервал между порциями (по умолчанию из настроек)
        """
        chunk_size = chunk_size if chunk_size and chunk_size > 0 else self.settings.target_chunk_size
        interval_ms = interval_ms if interval_ms and interval_ms > 0 else self.settings.target_interval_ms

        logger.debug(
            f"Starting paced stream with chunk size: {chunk_size}, interval: {interval_ms}ms",
            component="stream_pacer"
        )

        buffer = deque()
        pending = []
        last_emit = self._clock()

        try:
            async for fragment in fragments:
                if not fragment:
                    continue
                buffer.extend(fragment)

                while buffer and self._should_emit(len(buffer), chunk_size, last_emit, interval_ms):
                    pending.append(buffer.popleft())
                    if len(pending) >= chunk_size or self._elapsed_ms(last_emit) > interval_ms * 2:
                        chunk = "".join(pending)
                        pending.clear()
                        yield chunk
                        last_emit = self._clock()

                        delay = adaptive_delay_ms(chunk, interval_ms)
                        if delay > 0:
                            await self._sleep(delay / 1000)

            # Хвост: короткими порциями с укороченной паузой
            while buffer or pending:
                if not pending:
                    while buffer and len(pending) < chunk_size:
                        pending.append(buffer.popleft())
                chunk = "".join(pending)
                pending.clear()
                yield chunk
                last_emit = self._clock()
                if interval_ms > 0:
                    await self._sleep(max(1, interval_ms / 4) / 1000)
        finally:
            aclose = getattr(fragments, "aclose", None)
            if aclose is not None:
                await aclose()
