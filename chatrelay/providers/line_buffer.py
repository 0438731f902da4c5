"""
Буферизация байтового потока провайдера в текстовые строки.
"""
import codecs
from typing import List


class LineBuffer:
    """
    Incremental bytes -> lines splitter for provider streams.

    Multi-byte UTF-8 sequences split across network chunks are held back by the
    incremental decoder until complete; invalid bytes are replaced rather than
    aborting the stream.
    """

    def __init__(self, max_buffer_size: int = 1024 * 1024):
        """
        Args:
            max_buffer_size: Максимальный размер незавершённой строки в символах
        """
        self.max_buffer_size = max_buffer_size
        self.utf8_decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        self.buffer = ""

    def process_chunk(self, chunk: bytes) -> List[str]:
        """
        Обрабатывает чанк и возвращает завершённые строки (без перевода строки).
        """
        decoded_chunk = self.utf8_decoder.decode(chunk, final=False)
        if not decoded_chunk:
            return []

        self.buffer += decoded_chunk

        if len(self.buffer) > self.max_buffer_size and '\n' not in self.buffer:
            raise ValueError(f"Unterminated line exceeds {self.max_buffer_size} characters")

        lines = self.buffer.split('\n')
        self.buffer = lines[-1]
        return [line.rstrip('\r') for line in lines[:-1]]

    def flush(self) -> List[str]:
        """Возвращает остаток буфера после завершения потока."""
        remaining = self.buffer + self.utf8_decoder.decode(b"", final=True)
        self.clear_buffers()
        remaining = remaining.rstrip('\r')
        return [remaining] if remaining.strip() else []

    def clear_buffers(self):
        self.buffer = ""
        self.utf8_decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
