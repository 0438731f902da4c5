"""
Запись событий чата в SSE

Каждое событие пишется кадром `event: <type>\\ndata: <json>\\n\\n`.
"""
import asyncio
import json
from typing import AsyncGenerator, AsyncIterator, Optional

from fastapi import HTTPException, status
from fastapi.responses import Response, StreamingResponse

from .events import StreamEvent
from ...core.error_handling import ErrorHandler
from ...core.logging import logger

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred."


class SSEWriter:
    """
    Транспорт последовательности StreamEvent в text/event-stream
    """

    @staticmethod
    def frame(event_name: str, data) -> str:
        return f"event: {event_name}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"

    def format_event(self, event: StreamEvent, request_id: str = "unknown") -> Optional[str]:
        """Сериализует событие; несериализуемое событие логируется и пропускается"""
        try:
            return self.frame(event.event, event.payload())
        except (TypeError, ValueError) as e:
            logger.error(
                f"Failed to write SSE event of type {type(event).__name__}",
                request_id=request_id,
                error=str(e)
            )
            return None

    def error_frame(self, error: Exception, request_id: str = "unknown") -> str:
        """Финальный кадр ошибки для исключения из последовательности событий"""
        if isinstance(error, HTTPException):
            logger.warning(
                f"API error during chat stream: {ErrorHandler.error_message(error)}",
                request_id=request_id,
                status_code=error.status_code
            )
            return self.frame("error", {"message": ErrorHandler.error_message(error)})

        logger.error(
            "An unexpected error occurred during the chat stream.",
            request_id=request_id,
            error=str(error),
            error_type=type(error).__name__
        )
        return self.frame("error", {"message": UNEXPECTED_ERROR_MESSAGE})

    async def _frames(
        self,
        first: Optional[StreamEvent],
        events: AsyncIterator[StreamEvent],
        request_id: str
    ) -> AsyncGenerator[str, None]:
        try:
            if first is not None:
                frame = self.format_event(first, request_id)
                if frame:
                    yield frame
            async for event in events:
                frame = self.format_event(event, request_id)
                if frame:
                    yield frame
        except asyncio.CancelledError:
            logger.info("Request was cancelled by the client.", request_id=request_id)
            raise
        except Exception as e:
            yield self.error_frame(e, request_id)
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()

    async def response(self, events: AsyncIterator[StreamEvent], request_id: str = "unknown") -> Response:
        """
        Оборачивает события в StreamingResponse

        Первое событие запрашивается заранее: если последовательность падает
        до первого кадра, ответ получает статус ошибки и один кадр error.
        """
        iterator = events.__aiter__()
        first = None
        try:
            first = await iterator.__anext__()
        except StopAsyncIteration:
            pass
        except HTTPException as e:
            return Response(
                content=self.error_frame(e, request_id),
                status_code=e.status_code,
                media_type="text/event-stream",
                headers=SSE_HEADERS
            )
        except Exception as e:
            return Response(
                content=self.error_frame(e, request_id),
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                media_type="text/event-stream",
                headers=SSE_HEADERS
            )

        return StreamingResponse(
            self._frames(first, iterator, request_id),
            media_type="text/event-stream",
            headers=SSE_HEADERS
        )
