import asyncio
import base64
import uuid
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx

from .base import BaseProvider
from ..core.exceptions import ProviderStreamError
from ..core.logging import logger
from ..core.models import (
    ChatMessage,
    ProviderRequest,
    ProviderSettings,
    ProviderType,
    StreamedContentChunk,
    UsageData,
)
from ..utils.data_url import decode_data_url

OPENAI_BASE_URL = "https://api.openai.com/v1"
TOKENS_PER_CHAR = 0.3
MIN_PROMPT_TOKENS = 100
IMAGE_SIZE = "1024x1024"
IMAGE_QUALITY = "low"
IMAGE_TIMEOUT = httpx.Timeout(connect=10.0, read=300.0, write=60.0, pool=10.0)


def build_chat_messages(request: ProviderRequest) -> List[Dict[str, Any]]:
    """OpenAI chat message list; user images become image_url content parts."""
    messages = []
    if request.system_prompt and not any(m.role == "system" for m in request.messages):
        messages.append({"role": "system", "content": request.system_prompt})
    for message in request.messages:
        messages.append(_to_openai_message(message))
    return messages


def _to_openai_message(message: ChatMessage) -> Dict[str, Any]:
    if message.role != "user" or not message.images:
        return {"role": message.role, "content": message.content}
    parts = [{"type": "text", "text": message.content}]
    for image in message.images:
        parts.append({"type": "image_url", "image_url": {"url": image}})
    return {"role": message.role, "content": parts}


def sampling_parameters(request: ProviderRequest) -> Dict[str, Any]:
    params = {}
    if request.temperature is not None:
        params["temperature"] = request.temperature
    if request.top_p is not None:
        params["top_p"] = request.top_p
    if request.max_tokens is not None:
        params["max_tokens"] = request.max_tokens
    return params


class OpenAIProvider(BaseProvider):
    """
    OpenAI chat completions over SSE, plus the image-generation detour.

    The stream carries no usage, so token counts are estimated after the
    stream ends and costed through the pricing lookup.
    """

    provider_type = ProviderType.OPENAI
    max_context_tokens = 128000

    def __init__(self, client: httpx.AsyncClient, pricing=None, tokenizer=None,
                 file_store=None, image_models: Optional[List[str]] = None):
        super().__init__(client, pricing=pricing, tokenizer=tokenizer)
        self.file_store = file_store
        self.image_models = image_models if image_models is not None else ["gpt-image-1"]

    def is_image_model(self, model: str) -> bool:
        return model in self.image_models

    def _base_url(self, settings: ProviderSettings) -> str:
        return (settings.api_url or OPENAI_BASE_URL).rstrip("/")

    def _headers(self, settings: ProviderSettings) -> Dict[str, str]:
        return {"Authorization": f"Bearer {settings.api_key}"}

    async def _stream(
        self,
        request: ProviderRequest,
        settings: ProviderSettings,
        usage_future: asyncio.Future
    ) -> AsyncGenerator[StreamedContentChunk, None]:
        if self.is_image_model(request.model):
            chunk = await self._generate_image(request, settings)
            yield chunk
            return

        body = {
            "model": request.model,
            "messages": build_chat_messages(request),
            "stream": True,
            **sampling_parameters(request),
        }
        headers = {**self._headers(settings), "Content-Type": "application/json"}

        content_parts = []
        async for line in self._stream_lines(
            f"{self._base_url(settings)}/chat/completions", headers, body, request.request_id
        ):
            payload = self._sse_data(line)
            if payload is None or not payload:
                continue
            if payload == "[DONE]":
                break
            data = self._parse_json(payload, request.request_id)
            if not isinstance(data, dict):
                continue
            if data.get("error"):
                raise ProviderStreamError(str(data["error"]), provider_name=self.provider_name)

            choices = data.get("choices") or []
            if not choices:
                continue
            content = (choices[0].get("delta") or {}).get("content")
            if content:
                content_parts.append(content)
                yield StreamedContentChunk(text=content)

        self._resolve_usage(usage_future, await self._estimate_usage(request, "".join(content_parts)))

    async def _estimate_usage(self, request: ProviderRequest, completion: str) -> UsageData:
        if not completion:
            return UsageData()

        if self.tokenizer is not None:
            prompt_tokens = sum(
                self.tokenizer.count_message_tokens(request.model, m.role, m.content)
                for m in request.messages
            )
            if request.system_prompt:
                prompt_tokens += self.tokenizer.count_tokens(request.model, request.system_prompt)
            completion_tokens = self.tokenizer.count_tokens(request.model, completion)
        else:
            prompt_chars = sum(len(m.content or "") for m in request.messages)
            prompt_tokens = max(MIN_PROMPT_TOKENS, int(prompt_chars * TOKENS_PER_CHAR))
            completion_tokens = int(len(completion) * TOKENS_PER_CHAR)

        return await self._priced_usage(request.model, prompt_tokens, completion_tokens)

    async def _generate_image(self, request: ProviderRequest, settings: ProviderSettings) -> StreamedContentChunk:
        """
        Generate (or edit, when the last user message carries images) one image
        and return it as a markdown link chunk.
        """
        prompt_message = request.last_user_message
        prompt = prompt_message.content if prompt_message else ""
        reference_images = prompt_message.images if prompt_message else []
        base_url = self._base_url(settings)

        logger.info(
            "Generating image",
            request_id=request.request_id,
            provider_name=self.provider_name,
            model_id=request.model,
            reference_images=len(reference_images)
        )

        if reference_images:
            files = []
            for index, image in enumerate(reference_images):
                mime, data = decode_data_url(image)
                files.append(("image[]", (f"reference-{index}.png", data, mime or "image/png")))
            result = await self._post_json(
                f"{base_url}/images/edits",
                self._headers(settings),
                request.request_id,
                timeout=IMAGE_TIMEOUT,
                data={"model": request.model, "prompt": prompt, "quality": IMAGE_QUALITY, "size": IMAGE_SIZE},
                files=files,
            )
        else:
            result = await self._post_json(
                f"{base_url}/images/generations",
                {**self._headers(settings), "Content-Type": "application/json"},
                request.request_id,
                timeout=IMAGE_TIMEOUT,
                json={"model": request.model, "prompt": prompt, "n": 1, "size": IMAGE_SIZE},
            )

        images = result.get("data") or []
        if not images:
            raise ProviderStreamError("Image generation returned no image", provider_name=self.provider_name)
        image = images[0]

        file_name = f"{uuid.uuid4()}.png"
        if image.get("b64_json"):
            if self.file_store is None:
                raise ProviderStreamError("No file store configured for generated images", provider_name=self.provider_name)
            stored = await self.file_store.save(
                request.user_id, base64.b64decode(image["b64_json"]), file_name, "image/png"
            )
            url = stored.url
        elif image.get("url"):
            url = image["url"]
        else:
            raise ProviderStreamError("Image generation returned no image data", provider_name=self.provider_name)

        return StreamedContentChunk(text=f"![{file_name}]({url})")
