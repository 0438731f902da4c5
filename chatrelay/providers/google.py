import asyncio
import json
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx

from .base import BaseProvider
from ..core.error_handling import ErrorHandler, ErrorContext
from ..core.exceptions import ProviderStreamError
from ..core.logging import logger
from ..core.models import (
    ProviderRequest,
    ProviderSettings,
    ProviderType,
    StreamedContentChunk,
)
from ..utils.data_url import image_mime_from_data_url

VERTEX_URL_TEMPLATE = (
    "https://{location}-aiplatform.googleapis.com/v1/projects/{project_id}"
    "/locations/{location}/publishers/google/models"
)
MAX_PENDING_CHARS = 1024 * 1024


class JsonArrayLineDecoder:
    """
    Decodes a streamed JSON array consumed line by line.

    A line holding a whole array (or one element with `[`, `,` or `]`
    framing) decodes immediately; otherwise lines accumulate until the
    pending text forms a complete element.
    """

    def __init__(self):
        self.pending = ""

    @staticmethod
    def _trim(text: str) -> str:
        text = text.strip()
        while text[:1] in ("[", ","):
            text = text[1:].lstrip()
        while text[-1:] in ("]", ","):
            text = text[:-1].rstrip()
        return text

    @staticmethod
    def _objects(parsed: Any) -> Optional[List[Dict[str, Any]]]:
        if isinstance(parsed, dict):
            return [parsed]
        if isinstance(parsed, list) and all(isinstance(item, dict) for item in parsed):
            return parsed
        return None

    def _try_decode(self, text: str) -> Optional[List[Dict[str, Any]]]:
        for candidate in (text, self._trim(text)):
            if not candidate:
                continue
            try:
                objects = self._objects(json.loads(candidate))
            except json.JSONDecodeError:
                continue
            if objects is not None:
                return objects
        return None

    def feed(self, line: str) -> List[Dict[str, Any]]:
        stripped = line.strip()
        if not stripped or (not self.pending and stripped in ("[", "]", ",")):
            return []

        objects = self._try_decode(stripped)
        if objects is not None:
            if self.pending:
                logger.warning("Discarding undecodable google stream fragment", raw_line=self.pending[:200])
                self.pending = ""
            return objects

        self.pending = f"{self.pending}\n{stripped}" if self.pending else stripped
        objects = self._try_decode(self.pending)
        if objects is not None:
            self.pending = ""
            return objects

        if len(self.pending) > MAX_PENDING_CHARS:
            logger.warning("Dropping oversized google stream fragment", raw_line=self.pending[:200])
            self.pending = ""
        return []

    def leftover(self) -> str:
        pending, self.pending = self.pending, ""
        return self._trim(pending)


class GoogleProvider(BaseProvider):
    """Vertex AI Gemini streamGenerateContent (JSON array, no SSE framing)."""

    provider_type = ProviderType.GOOGLE
    max_context_tokens = 30720

    def __init__(self, client: httpx.AsyncClient, pricing=None, tokenizer=None,
                 google_settings: Optional[Dict[str, Any]] = None):
        super().__init__(client, pricing=pricing, tokenizer=tokenizer)
        self.google_settings = google_settings or {}

    def _validate(self, request: ProviderRequest, settings: ProviderSettings):
        super()._validate(request, settings)
        if not settings.api_url and not self.google_settings.get("project_id"):
            raise ErrorHandler.handle_provider_config_error(
                "Google project id is not configured.",
                ErrorContext(request_id=request.request_id, provider_name=self.provider_name)
            )

    def build_url(self, model: str, settings: ProviderSettings) -> str:
        if settings.api_url:
            base = settings.api_url.rstrip("/")
        else:
            base = VERTEX_URL_TEMPLATE.format(
                location=self.google_settings.get("location") or "us-central1",
                project_id=self.google_settings.get("project_id"),
            )
        return f"{base}/{model}:streamGenerateContent"

    def build_request_body(self, request: ProviderRequest) -> Dict[str, Any]:
        system_parts = [request.system_prompt] if request.system_prompt else []
        contents = []
        for message in request.messages:
            if message.role == "system":
                if message.content and message.content not in system_parts:
                    system_parts.append(message.content)
                continue
            parts: List[Dict[str, Any]] = [{"text": message.content}]
            for image in message.images:
                parts.append({
                    "inlineData": {
                        "mimeType": image_mime_from_data_url(image),
                        "data": image.split(",", 1)[-1],
                    }
                })
            contents.append({
                "role": "model" if message.role == "assistant" else "user",
                "parts": parts,
            })

        generation_config = {}
        if request.temperature is not None:
            generation_config["temperature"] = request.temperature
        if request.top_p is not None:
            generation_config["topP"] = request.top_p
        if request.top_k is not None:
            generation_config["topK"] = request.top_k
        if request.max_tokens is not None:
            generation_config["maxOutputTokens"] = request.max_tokens

        body: Dict[str, Any] = {"contents": contents}
        if system_parts:
            body["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}
        if generation_config:
            body["generationConfig"] = generation_config
        return body

    @staticmethod
    def _extract_text(element: Dict[str, Any]) -> Optional[str]:
        candidates = element.get("candidates") or []
        if not candidates:
            return None
        parts = (candidates[0].get("content") or {}).get("parts") or []
        if not parts:
            return None
        return parts[0].get("text")

    async def _stream(
        self,
        request: ProviderRequest,
        settings: ProviderSettings,
        usage_future: asyncio.Future
    ) -> AsyncGenerator[StreamedContentChunk, None]:
        headers = {
            "Authorization": f"Bearer {settings.api_key}",
            "Content-Type": "application/json",
        }
        decoder = JsonArrayLineDecoder()
        usage_metadata = None

        async for line in self._stream_lines(
            self.build_url(request.model, settings), headers, self.build_request_body(request), request.request_id
        ):
            for element in decoder.feed(line):
                if element.get("error"):
                    error = element["error"]
                    raise ProviderStreamError(
                        error.get("message") if isinstance(error, dict) else str(error),
                        provider_name=self.provider_name
                    )
                text = self._extract_text(element)
                if text:
                    yield StreamedContentChunk(text=text)
                if element.get("usageMetadata"):
                    usage_metadata = element["usageMetadata"]

        leftover = decoder.leftover()
        if leftover:
            logger.warning(
                "Skipping incomplete google stream fragment",
                request_id=request.request_id,
                provider_name=self.provider_name,
                raw_line=leftover[:200]
            )

        if usage_metadata:
            usage = await self._priced_usage(
                request.model,
                int(usage_metadata.get("promptTokenCount") or 0),
                int(usage_metadata.get("candidatesTokenCount") or 0)
            )
            self._resolve_usage(usage_future, usage)
