"""
Тесты OpenRouterProvider: изображения в delta и стоимость из usage
"""
import json

import httpx
import pytest

from chatrelay.core.exceptions import ProviderStreamError
from chatrelay.core.models import ChatMessage, ProviderRequest, ProviderSettings
from chatrelay.providers import OpenRouterProvider
from chatrelay.providers.openrouter import OPENROUTER_CHAT_URL

SETTINGS = ProviderSettings(api_key="or-key")
IMAGE_URL = "data:image/png;base64,QUJD"


def sse(*payloads) -> bytes:
    return "".join(f"data: {p if isinstance(p, str) else json.dumps(p)}\n\n" for p in payloads).encode("utf-8")


def make_request(**overrides) -> ProviderRequest:
    values = {"model": "google/gemini-2.5-flash-image", "messages": [ChatMessage("user", "Draw a cat")]}
    values.update(overrides)
    return ProviderRequest(**values)


async def drain(response):
    chunks = [chunk async for chunk in response.content_stream]
    return chunks, await response.get_usage()


class TestOpenRouterProvider:

    @pytest.mark.asyncio
    async def test_text_images_and_cost(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, content=b": OPENROUTER PROCESSING\n\n" + sse(
                {"choices": [{"delta": {"content": "Look"}}]},
                {"choices": [{"delta": {"images": [
                    {"type": "image_url", "image_url": {"url": IMAGE_URL}, "index": 0}
                ]}}]},
                {"choices": [{"delta": {}}], "usage": {"prompt_tokens": 9, "completion_tokens": 4, "cost": 0.0012}},
                "[DONE]",
                {"choices": [{"delta": {"content": "ignored"}}]},
            ))

        async with pytest.mock_client(handler) as client:
            chunks, usage = await drain(OpenRouterProvider(client).stream_chat(make_request(top_k=3), SETTINGS))

        assert [chunk.text for chunk in chunks if chunk.text] == ["Look"]
        images = [image for chunk in chunks for image in chunk.images]
        assert [(image.url, image.index) for image in images] == [(IMAGE_URL, 0)]
        assert usage.prompt_tokens == 9
        assert usage.completion_tokens == 4
        assert usage.actual_cost == pytest.approx(0.0012)
        assert captured["url"] == OPENROUTER_CHAT_URL
        assert captured["body"]["usage"] == {"include": True}
        assert captured["body"]["top_k"] == 3

    @pytest.mark.asyncio
    async def test_image_index_defaults_to_position(self):
        def handler(request):
            return httpx.Response(200, content=sse(
                {"choices": [{"delta": {"images": [
                    {"image_url": {"url": "https://cdn.example.com/a.png"}},
                    {"image_url": {"url": "https://cdn.example.com/b.png"}},
                    {"image_url": {}},
                ]}}]},
                "[DONE]",
            ))

        async with pytest.mock_client(handler) as client:
            chunks, usage = await drain(OpenRouterProvider(client).stream_chat(make_request(), SETTINGS))

        assert [chunk.images[0].index for chunk in chunks] == [0, 1]
        assert usage.actual_cost is None

    @pytest.mark.asyncio
    async def test_error_frame(self):
        def handler(request):
            return httpx.Response(200, content=sse({"error": {"message": "No endpoints found", "code": 404}}))

        async with pytest.mock_client(handler) as client:
            with pytest.raises(ProviderStreamError) as exc_info:
                await drain(OpenRouterProvider(client).stream_chat(make_request(), SETTINGS))

        assert exc_info.value.message == "No endpoints found"
