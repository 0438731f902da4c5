import asyncio
import json
from typing import Any, AsyncGenerator, AsyncIterator, Dict, Optional

import httpx

from .line_buffer import LineBuffer
from ..core.error_handling import ErrorHandler, ErrorContext, ErrorLogger
from ..core.exceptions import ProviderAPIError, ProviderNetworkError
from ..core.logging import logger
from ..core.models import (
    ProviderRequest,
    ProviderSettings,
    ProviderType,
    StreamedChatResponse,
    StreamedContentChunk,
    UsageData,
)

# Optimized timeout for streaming:
# - connect: 10s to establish connection
# - read: 60s between chunks (not total time)
# - write: 10s to send request
# - pool: 10s to get connection from pool
STREAM_TIMEOUT = httpx.Timeout(connect=10.0, read=60.0, write=10.0, pool=10.0)


class BaseProvider:
    """
    Streaming client for one provider wire protocol.

    `stream_chat` validates synchronously and returns at once; network I/O
    happens only while `content_stream` is consumed. Subclasses implement
    `_stream`, yielding chunks and resolving usage through `_resolve_usage`.
    """

    provider_type: ProviderType
    max_context_tokens: int = 4096
    requires_api_key: bool = True
    requires_api_url: bool = False

    def __init__(self, client: httpx.AsyncClient, pricing=None, tokenizer=None):
        self.client = client
        self.pricing = pricing
        self.tokenizer = tokenizer

    @property
    def provider_name(self) -> str:
        return self.provider_type.value

    def stream_chat(self, request: ProviderRequest, settings: ProviderSettings) -> StreamedChatResponse:
        """
        Start a streamed chat completion.

        Raises:
            HTTPException: 400 when model, API key or API URL is missing
        """
        self._validate(request, settings)
        usage_future = asyncio.get_running_loop().create_future()
        return StreamedChatResponse(
            content_stream=self._guarded_stream(request, settings, usage_future),
            usage_future=usage_future,
        )

    def _validate(self, request: ProviderRequest, settings: ProviderSettings):
        context = ErrorContext(
            request_id=request.request_id,
            model_id=request.model,
            provider_name=self.provider_name
        )
        if not request.model:
            raise ErrorHandler.handle_model_not_specified(context)
        if self.requires_api_key and not settings.api_key:
            raise ErrorHandler.handle_api_key_required(self.provider_name, context)
        if self.requires_api_url and not settings.api_url:
            raise ErrorHandler.handle_api_url_required(self.provider_name, context)

    async def _guarded_stream(
        self,
        request: ProviderRequest,
        settings: ProviderSettings,
        usage_future: asyncio.Future
    ) -> AsyncGenerator[StreamedContentChunk, None]:
        try:
            async for chunk in self._stream(request, settings, usage_future):
                yield chunk
        finally:
            # Stream ended without a usage frame
            self._resolve_usage(usage_future, UsageData())

    def _stream(
        self,
        request: ProviderRequest,
        settings: ProviderSettings,
        usage_future: asyncio.Future
    ) -> AsyncIterator[StreamedContentChunk]:
        raise NotImplementedError

    @staticmethod
    def _resolve_usage(usage_future: asyncio.Future, usage: UsageData):
        if not usage_future.done():
            usage_future.set_result(usage)

    async def _priced_usage(self, model: str, prompt_tokens: int, completion_tokens: int) -> UsageData:
        cost = None
        if self.pricing is not None:
            cost = await self.pricing.calculate_cost(self.provider_name, model, prompt_tokens, completion_tokens)
        return UsageData(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens, actual_cost=cost)

    async def _stream_lines(
        self,
        url: str,
        headers: Dict[str, str],
        body: Dict[str, Any],
        request_id: str = "unknown"
    ) -> AsyncGenerator[str, None]:
        """POST `body` and yield the response as decoded text lines."""
        logger.debug_data(
            title=f"{self.provider_name} request",
            data={"url": url, "request_body": body},
            request_id=request_id,
            component=f"{self.provider_name}_provider",
            data_flow="to_provider"
        )

        buffer = LineBuffer()
        try:
            async with self.client.stream("POST", url, headers=headers, json=body, timeout=STREAM_TIMEOUT) as response:
                logger.debug_data(
                    title="Provider Response Headers",
                    data={"status_code": response.status_code, "headers": dict(response.headers)},
                    request_id=request_id,
                    component=f"{self.provider_name}_provider",
                    data_flow="from_provider"
                )

                if response.status_code >= 400:
                    await response.aread()
                    raise self._api_error(response, request_id)

                async for chunk in response.aiter_bytes():
                    for line in buffer.process_chunk(chunk):
                        yield line
                for line in buffer.flush():
                    yield line
        except httpx.RequestError as e:
            raise ProviderNetworkError(
                f"{self.provider_name}: {str(e) or type(e).__name__}",
                provider_name=self.provider_name,
                original_exception=e
            ) from e

    async def _post_json(
        self,
        url: str,
        headers: Dict[str, str],
        request_id: str = "unknown",
        timeout: Optional[httpx.Timeout] = None,
        **request_kwargs
    ) -> Dict[str, Any]:
        """Non-streaming POST with the same error mapping as `_stream_lines`."""
        try:
            response = await self.client.post(
                url,
                headers=headers,
                timeout=timeout or httpx.Timeout(connect=10.0, read=180.0, write=30.0, pool=10.0),
                **request_kwargs
            )
        except httpx.RequestError as e:
            raise ProviderNetworkError(
                f"{self.provider_name}: {str(e) or type(e).__name__}",
                provider_name=self.provider_name,
                original_exception=e
            ) from e

        if response.status_code >= 400:
            raise self._api_error(response, request_id)

        response_json = response.json()
        logger.debug_data(
            title=f"{self.provider_name} response",
            data=response_json,
            request_id=request_id,
            component=f"{self.provider_name}_provider",
            data_flow="from_provider"
        )
        return response_json

    def _api_error(self, response: httpx.Response, request_id: str) -> ProviderAPIError:
        response_text = response.text
        error_code = "provider_api_error"
        if response.status_code == 429:
            error_message = "Provider rate limit exceeded (429 Too Many Requests). Please retry after a delay."
            error_code = "rate_limit_exceeded"
        else:
            error_message = f"Provider API error: {response.status_code} - {response_text}"

        try:
            error_json = json.loads(response_text)
            if isinstance(error_json, list) and error_json:
                error_json = error_json[0]
            if isinstance(error_json, dict):
                error = error_json.get("error")
                if isinstance(error, dict) and error.get("message"):
                    error_message = error["message"]
                    if isinstance(error.get("code"), str):
                        error_code = error["code"]
                elif isinstance(error, str):
                    error_message = error
                elif error_json.get("message"):
                    error_message = error_json["message"]
        except json.JSONDecodeError:
            pass

        ErrorLogger.log_provider_error(
            provider_name=self.provider_name,
            error_details=response_text,
            status_code=response.status_code,
            context=ErrorContext(request_id=request_id, provider_name=self.provider_name)
        )
        return ProviderAPIError(
            error_message,
            status_code=response.status_code,
            provider_name=self.provider_name,
            error_code=error_code,
            original_response_text=response_text
        )

    def _parse_json(self, payload: str, request_id: str = "unknown") -> Optional[Any]:
        """Parse one frame; malformed frames are logged and skipped."""
        try:
            return json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning(
                f"Skipping malformed {self.provider_name} stream line: {e}",
                request_id=request_id,
                provider_name=self.provider_name,
                raw_line=payload[:200]
            )
            return None

    @staticmethod
    def _sse_data(line: str) -> Optional[str]:
        """Payload of an SSE `data:` line, None for any other line."""
        if not line.startswith("data:"):
            return None
        return line[len("data:"):].strip()
