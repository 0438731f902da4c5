"""
События чат-стрима

Единая последовательность событий одного хода: conversation_id, content,
image, final_message, metrics, error.
"""
from dataclasses import dataclass
from typing import Any, ClassVar, Dict

from ...core.models import Message, StreamedImageData, UsageMetric


@dataclass
class StreamEvent:
    """Базовое событие: имя SSE-события и полезная нагрузка"""
    event: ClassVar[str] = ""

    def payload(self) -> Any:
        raise NotImplementedError


@dataclass
class ConversationIdEvent(StreamEvent):
    event: ClassVar[str] = "conversation_id"
    conversation_id: int

    def payload(self) -> str:
        return str(self.conversation_id)


@dataclass
class ContentEvent(StreamEvent):
    event: ClassVar[str] = "content"
    text: str

    def payload(self) -> str:
        return self.text


@dataclass
class ImageEvent(StreamEvent):
    event: ClassVar[str] = "image"
    image: StreamedImageData

    def payload(self) -> Dict[str, Any]:
        return self.image.to_dict()


@dataclass
class FinalMessageEvent(StreamEvent):
    event: ClassVar[str] = "final_message"
    message: Message

    def payload(self) -> Dict[str, Any]:
        return self.message.to_dict()


@dataclass
class MetricsEvent(StreamEvent):
    event: ClassVar[str] = "metrics"
    metric: UsageMetric

    def payload(self) -> Dict[str, Any]:
        return self.metric.to_dict()


@dataclass
class ErrorEvent(StreamEvent):
    event: ClassVar[str] = "error"
    code: str
    message: str
    detail: str = ""
    retryable: bool = True

    def payload(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "detail": self.detail,
            "retryable": self.retryable,
        }
