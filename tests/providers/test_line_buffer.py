"""
Тесты LineBuffer: разбиение байтового потока на строки
"""
import pytest

from chatrelay.providers.line_buffer import LineBuffer


class TestLineBuffer:

    def test_lines_across_chunks(self):
        buffer = LineBuffer()
        assert buffer.process_chunk(b'{"a": 1}\n{"b"') == ['{"a": 1}']
        assert buffer.process_chunk(b': 2}\n') == ['{"b": 2}']
        assert buffer.flush() == []

    def test_crlf_is_stripped(self):
        buffer = LineBuffer()
        assert buffer.process_chunk(b"data: x\r\n\r\n") == ["data: x", ""]

    def test_split_multibyte_character(self):
        buffer = LineBuffer()
        encoded = "Привет\n".encode("utf-8")

        first = buffer.process_chunk(encoded[:3])
        second = buffer.process_chunk(encoded[3:])

        assert first == []
        assert second == ["Привет"]

    def test_flush_returns_unterminated_line(self):
        buffer = LineBuffer()
        buffer.process_chunk(b'{"done": true}')
        assert buffer.flush() == ['{"done": true}']
        assert buffer.buffer == ""

    def test_oversized_line(self):
        buffer = LineBuffer(max_buffer_size=10)
        with pytest.raises(ValueError):
            buffer.process_chunk(b"x" * 20)
