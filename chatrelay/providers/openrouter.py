import asyncio
from typing import AsyncGenerator

from .base import BaseProvider
from .openai import build_chat_messages, sampling_parameters
from ..core.exceptions import ProviderStreamError
from ..core.models import (
    ProviderRequest,
    ProviderSettings,
    ProviderType,
    StreamedContentChunk,
    StreamedImageData,
    UsageData,
)

OPENROUTER_CHAT_URL = "https://openrouter.ai/api/v1/chat/completions"


class OpenRouterProvider(BaseProvider):
    """
    OpenRouter: OpenAI-compatible SSE with two extensions.

    `delta.images[]` carries generated images, and the final `usage` frame
    reports the provider-side `cost`, which is used as-is.
    """

    provider_type = ProviderType.OPENROUTER
    max_context_tokens = 128000

    async def _stream(
        self,
        request: ProviderRequest,
        settings: ProviderSettings,
        usage_future: asyncio.Future
    ) -> AsyncGenerator[StreamedContentChunk, None]:
        url = settings.api_url or OPENROUTER_CHAT_URL
        headers = {
            "Authorization": f"Bearer {settings.api_key}",
            "Content-Type": "application/json",
        }
        body = {
            "model": request.model,
            "messages": build_chat_messages(request),
            "stream": True,
            "usage": {"include": True},
            **sampling_parameters(request),
        }
        if request.top_k is not None:
            body["top_k"] = request.top_k

        image_count = 0
        async for line in self._stream_lines(url, headers, body, request.request_id):
            payload = self._sse_data(line)
            if not payload:
                continue
            if payload == "[DONE]":
                break
            data = self._parse_json(payload, request.request_id)
            if not isinstance(data, dict):
                continue
            if data.get("error"):
                error = data["error"]
                raise ProviderStreamError(
                    error.get("message") if isinstance(error, dict) else str(error),
                    provider_name=self.provider_name
                )

            usage = data.get("usage")
            if isinstance(usage, dict):
                cost = usage.get("cost")
                self._resolve_usage(usage_future, UsageData(
                    prompt_tokens=int(usage.get("prompt_tokens") or 0),
                    completion_tokens=int(usage.get("completion_tokens") or 0),
                    actual_cost=float(cost) if cost is not None else None,
                ))
                continue

            choices = data.get("choices") or []
            if not choices:
                continue
            delta = choices[0].get("delta") or {}

            for image in delta.get("images") or []:
                image_url = (image.get("image_url") or {}).get("url")
                if not image_url:
                    continue
                index = image.get("index")
                yield StreamedContentChunk(images=[StreamedImageData(
                    url=image_url,
                    index=index if isinstance(index, int) else image_count,
                    type=image.get("type") or "image_url",
                )])
                image_count += 1

            content = delta.get("content")
            if content:
                yield StreamedContentChunk(text=content)
