import asyncio
from typing import Any, AsyncGenerator, Dict, List, Optional

from .base import BaseProvider
from ..core.exceptions import ProviderStreamError
from ..core.models import (
    ChatMessage,
    ProviderRequest,
    ProviderSettings,
    ProviderType,
    StreamedContentChunk,
)
from ..utils.data_url import image_mime_from_data_url

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096
CONTINUATION_PLACEHOLDER = "(The assistant continues the conversation)"


class AnthropicProvider(BaseProvider):
    """Anthropic Messages API, SSE `data:` frames."""

    provider_type = ProviderType.ANTHROPIC
    max_context_tokens = 200000

    def build_request_body(self, request: ProviderRequest) -> Dict[str, Any]:
        system_parts = [request.system_prompt] if request.system_prompt else []
        messages = []
        for message in request.messages:
            if message.role == "system":
                if message.content and message.content not in system_parts:
                    system_parts.append(message.content)
                continue
            messages.append(self._to_anthropic_message(message))

        # The API rejects conversations that do not open with a user turn
        if not messages or messages[0]["role"] != "user":
            messages.insert(0, {"role": "user", "content": CONTINUATION_PLACEHOLDER})

        body = {
            "model": request.model,
            "messages": messages,
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "stream": True,
        }
        if system_parts:
            body["system"] = "\n\n".join(system_parts)
        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.top_p is not None:
            body["top_p"] = request.top_p
        if request.top_k is not None:
            body["top_k"] = request.top_k
        return body

    @staticmethod
    def _to_anthropic_message(message: ChatMessage) -> Dict[str, Any]:
        role = "assistant" if message.role == "assistant" else "user"
        if not message.images:
            return {"role": role, "content": message.content}

        content: List[Dict[str, Any]] = []
        for image in message.images:
            content.append({
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image_mime_from_data_url(image),
                    "data": image.split(",", 1)[-1],
                },
            })
        content.append({"type": "text", "text": message.content})
        return {"role": role, "content": content}

    async def _stream(
        self,
        request: ProviderRequest,
        settings: ProviderSettings,
        usage_future: asyncio.Future
    ) -> AsyncGenerator[StreamedContentChunk, None]:
        url = settings.api_url or ANTHROPIC_MESSAGES_URL
        headers = {
            "x-api-key": settings.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

        input_tokens: Optional[int] = None
        output_tokens: Optional[int] = None

        async for line in self._stream_lines(url, headers, self.build_request_body(request), request.request_id):
            payload = self._sse_data(line)
            if not payload:
                continue
            data = self._parse_json(payload, request.request_id)
            if not isinstance(data, dict):
                continue

            event_type = data.get("type")
            if event_type == "content_block_delta":
                text = (data.get("delta") or {}).get("text")
                if text:
                    yield StreamedContentChunk(text=text)
            elif event_type == "message_start":
                usage = (data.get("message") or {}).get("usage") or {}
                input_tokens = usage.get("input_tokens", input_tokens)
                output_tokens = usage.get("output_tokens", output_tokens)
            elif event_type == "message_delta":
                usage = data.get("usage") or {}
                output_tokens = usage.get("output_tokens", output_tokens)
            elif event_type == "message_stop":
                usage = data.get("usage") or {}
                input_tokens = usage.get("input_tokens", input_tokens)
                output_tokens = usage.get("output_tokens", output_tokens)
                break
            elif event_type == "error":
                error = data.get("error") or {}
                raise ProviderStreamError(
                    error.get("message") or str(error),
                    provider_name=self.provider_name,
                    error_code=error.get("type") or "provider_stream_error"
                )

        if input_tokens is not None or output_tokens is not None:
            usage = await self._priced_usage(request.model, int(input_tokens or 0), int(output_tokens or 0))
            self._resolve_usage(usage_future, usage)
