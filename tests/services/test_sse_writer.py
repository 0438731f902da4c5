"""
Тесты SSEWriter: формат кадров и ошибки до/после первого кадра
"""
import json
from dataclasses import dataclass
from typing import ClassVar

import pytest
from fastapi.responses import StreamingResponse

from chatrelay.core.error_handling import ErrorContext, ErrorHandler
from chatrelay.core.models import Message, StreamedImageData
from chatrelay.services.chat import (
    ContentEvent,
    ConversationIdEvent,
    ErrorEvent,
    FinalMessageEvent,
    ImageEvent,
    SSEWriter,
    StreamEvent,
)
from chatrelay.services.chat.sse_writer import UNEXPECTED_ERROR_MESSAGE


@dataclass
class BrokenEvent(StreamEvent):
    event: ClassVar[str] = "broken"

    def payload(self):
        return {"value": object()}


async def events_of(*events, error=None):
    for event in events:
        yield event
    if error is not None:
        raise error


def parse_frames(body: str):
    frames = []
    for block in body.split("\n\n"):
        if not block:
            continue
        event_line, data_line = block.split("\n")
        assert event_line.startswith("event: ")
        assert data_line.startswith("data: ")
        frames.append((event_line[len("event: "):], json.loads(data_line[len("data: "):])))
    return frames


async def read_body(response) -> str:
    if isinstance(response, StreamingResponse):
        parts = [part async for part in response.body_iterator]
        return "".join(p.decode("utf-8") if isinstance(p, bytes) else p for p in parts)
    return response.body.decode("utf-8")


class TestFrameFormat:

    def test_content_frame(self):
        writer = SSEWriter()
        assert writer.format_event(ContentEvent("Привет")) == 'event: content\ndata: "Привет"\n\n'

    def test_conversation_id_is_string(self):
        writer = SSEWriter()
        assert writer.format_event(ConversationIdEvent(42)) == 'event: conversation_id\ndata: "42"\n\n'

    def test_image_frame(self):
        writer = SSEWriter()
        frame = writer.format_event(ImageEvent(StreamedImageData(url="https://x/y.png", index=1)))
        assert parse_frames(frame) == [("image", {"type": "image_url", "url": "https://x/y.png", "index": 1})]

    def test_error_event_frame(self):
        writer = SSEWriter()
        frame = writer.format_event(ErrorEvent(code="c", message="m", detail="d"))
        assert parse_frames(frame) == [("error", {"code": "c", "message": "m", "detail": "d", "retryable": True})]

    def test_unserializable_event_is_skipped(self):
        assert SSEWriter().format_event(BrokenEvent()) is None


class TestSSEResponse:

    @pytest.mark.asyncio
    async def test_streams_all_events(self):
        writer = SSEWriter()
        message = Message(role="assistant", content="Hi")

        response = await writer.response(events_of(
            ConversationIdEvent(7), ContentEvent("Hi"), FinalMessageEvent(message)
        ))

        assert isinstance(response, StreamingResponse)
        assert response.media_type == "text/event-stream"
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-accel-buffering"] == "no"
        frames = parse_frames(await read_body(response))
        assert [name for name, _ in frames] == ["conversation_id", "content", "final_message"]
        assert frames[2][1]["content"] == "Hi"

    @pytest.mark.asyncio
    async def test_http_error_before_first_frame(self):
        writer = SSEWriter()
        error = ErrorHandler.handle_provider_required(ErrorContext())

        response = await writer.response(events_of(error=error))

        assert response.status_code == 400
        frames = parse_frames(await read_body(response))
        assert frames == [("error", {"message": "Provider is required to start or continue a conversation."})]

    @pytest.mark.asyncio
    async def test_unexpected_error_before_first_frame(self):
        response = await SSEWriter().response(events_of(error=RuntimeError("secret detail")))

        assert response.status_code == 500
        assert parse_frames(await read_body(response)) == [("error", {"message": UNEXPECTED_ERROR_MESSAGE})]

    @pytest.mark.asyncio
    async def test_error_after_first_frame_ends_stream(self):
        response = await SSEWriter().response(events_of(ContentEvent("a"), error=RuntimeError("boom")))

        assert response.status_code == 200
        frames = parse_frames(await read_body(response))
        assert frames == [("content", "a"), ("error", {"message": UNEXPECTED_ERROR_MESSAGE})]

    @pytest.mark.asyncio
    async def test_broken_event_does_not_stop_stream(self):
        response = await SSEWriter().response(events_of(ContentEvent("a"), BrokenEvent(), ContentEvent("b")))

        frames = parse_frames(await read_body(response))
        assert frames == [("content", "a"), ("content", "b")]

    @pytest.mark.asyncio
    async def test_empty_sequence(self):
        response = await SSEWriter().response(events_of())

        assert await read_body(response) == ""

    @pytest.mark.asyncio
    async def test_closing_the_body_closes_the_events(self):
        closed = []

        async def events():
            try:
                yield ContentEvent("a")
                yield ContentEvent("b")
                yield ContentEvent("c")
            finally:
                closed.append(True)

        response = await SSEWriter().response(events())
        body = response.body_iterator
        first = await body.__anext__()
        await body.__anext__()
        await body.aclose()

        assert parse_frames(first) == [("content", "a")]
        assert closed == [True]
