import asyncio
from typing import Any, AsyncGenerator, Dict

from .base import BaseProvider
from ..core.models import (
    ProviderRequest,
    ProviderSettings,
    ProviderType,
    StreamedContentChunk,
)


class OllamaProvider(BaseProvider):
    """Self-hosted Ollama, NDJSON stream from /api/chat."""

    provider_type = ProviderType.OLLAMA
    max_context_tokens = 4096
    requires_api_key = False
    requires_api_url = True

    def build_request_body(self, request: ProviderRequest) -> Dict[str, Any]:
        messages = []
        if request.system_prompt and not any(m.role == "system" for m in request.messages):
            messages.append({"role": "system", "content": request.system_prompt})
        for message in request.messages:
            entry = {"role": message.role, "content": message.content}
            if message.images:
                # Ollama takes raw base64 without the data URL prefix
                entry["images"] = [image.split(",", 1)[-1] for image in message.images]
            messages.append(entry)

        ollama_request_body = {
            "model": request.model,
            "messages": messages,
            "stream": True,
        }

        # Map sampling parameters to Ollama's 'options'
        ollama_options = {}
        if request.temperature is not None:
            ollama_options["temperature"] = request.temperature
        if request.top_p is not None:
            ollama_options["top_p"] = request.top_p
        if request.top_k is not None:
            ollama_options["top_k"] = request.top_k
        if request.max_tokens is not None:
            ollama_options["num_predict"] = request.max_tokens

        if ollama_options:
            ollama_request_body["options"] = ollama_options
        return ollama_request_body

    async def _stream(
        self,
        request: ProviderRequest,
        settings: ProviderSettings,
        usage_future: asyncio.Future
    ) -> AsyncGenerator[StreamedContentChunk, None]:
        url = f"{settings.api_url.rstrip('/')}/api/chat"
        headers = {"Content-Type": "application/json"}
        if settings.api_key:
            headers["Authorization"] = f"Bearer {settings.api_key}"

        async for line in self._stream_lines(url, headers, self.build_request_body(request), request.request_id):
            if not line.strip():
                continue
            data = self._parse_json(line, request.request_id)
            if not isinstance(data, dict):
                continue

            content = (data.get("message") or {}).get("content")
            if content:
                yield StreamedContentChunk(text=content)

            if data.get("done"):
                usage = await self._priced_usage(
                    request.model,
                    int(data.get("prompt_eval_count") or 0),
                    int(data.get("eval_count") or 0)
                )
                self._resolve_usage(usage_future, usage)
                break
