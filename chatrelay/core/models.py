"""
Domain models shared by the chat pipeline.

Inbound requests, provider-facing messages, streamed chunks, deferred usage
and the persisted conversation aggregate.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

from .error_handling import ErrorHandler, ErrorContext


class ProviderType(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    OLLAMA = "ollama"
    OPENROUTER = "openrouter"

    @classmethod
    def parse(cls, value: Any, context: Optional[ErrorContext] = None) -> "ProviderType":
        """Case-insensitive lookup; unknown names are a client error."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ErrorHandler.handle_unsupported_provider(str(value), context or ErrorContext())


class FinishReason:
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERROR = "error"


class Role:
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Attachment:
    file_name: str
    content_type: str
    base64_data: str

    @property
    def is_image(self) -> bool:
        return (self.content_type or "").startswith("image/")

    @property
    def data_url(self) -> str:
        return f"data:{self.content_type};base64,{self.base64_data}"


def _pick(payload: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


def _as_float(value: Any, field_name: str, context: ErrorContext) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ErrorHandler.handle_invalid_request(f"'{field_name}' must be a number", context)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ErrorHandler.handle_invalid_request(f"'{field_name}' must be a number", context)


def _as_int(value: Any, field_name: str, context: ErrorContext) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ErrorHandler.handle_invalid_request(f"'{field_name}' must be an integer", context)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ErrorHandler.handle_invalid_request(f"'{field_name}' must be an integer", context)


@dataclass
class ChatRequest:
    """One inbound chat turn. Enriched in place by persona and prompt resolution."""
    message: str
    provider: Optional[ProviderType] = None
    model: Optional[str] = None
    conversation_id: Optional[int] = None
    stream: bool = False
    is_temporary: bool = False
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    max_tokens: Optional[int] = None
    system_prompt: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)
    persona_id: Optional[str] = None
    prompt_id: Optional[str] = None
    prompt_variables: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any, context: Optional[ErrorContext] = None) -> "ChatRequest":
        """
        Build a request from the JSON body. Keys may be camelCase or snake_case.

        Raises:
            HTTPException: 400 for a malformed body or missing message
        """
        context = context or ErrorContext()
        if not isinstance(payload, dict):
            raise ErrorHandler.handle_invalid_request("request body must be a JSON object", context)

        message = _pick(payload, "message")
        if message is None:
            raise ErrorHandler.handle_missing_required_field("message", context)
        if not isinstance(message, str):
            raise ErrorHandler.handle_invalid_request("'message' must be a string", context)

        provider = _pick(payload, "provider")
        attachments = []
        for raw in _pick(payload, "attachments", default=[]) or []:
            if not isinstance(raw, dict):
                raise ErrorHandler.handle_invalid_request("attachments must be objects", context)
            attachments.append(Attachment(
                file_name=_pick(raw, "fileName", "file_name", default="attachment"),
                content_type=_pick(raw, "contentType", "content_type", default="application/octet-stream"),
                base64_data=_pick(raw, "base64Data", "base64_data", default=""),
            ))

        variables = _pick(payload, "promptVariables", "prompt_variables", default={}) or {}
        if not isinstance(variables, dict):
            raise ErrorHandler.handle_invalid_request("'promptVariables' must be an object", context)

        persona_id = _pick(payload, "personaId", "persona_id")
        prompt_id = _pick(payload, "promptId", "prompt_id")

        return cls(
            message=message,
            provider=ProviderType.parse(provider, context) if provider not in (None, "") else None,
            model=_pick(payload, "model") or None,
            conversation_id=_as_int(_pick(payload, "conversationId", "conversation_id"), "conversationId", context),
            stream=bool(_pick(payload, "stream", default=False)),
            is_temporary=bool(_pick(payload, "isTemporary", "is_temporary", default=False)),
            temperature=_as_float(_pick(payload, "temperature"), "temperature", context),
            top_p=_as_float(_pick(payload, "topP", "top_p"), "topP", context),
            top_k=_as_int(_pick(payload, "topK", "top_k"), "topK", context),
            max_tokens=_as_int(_pick(payload, "maxTokens", "max_tokens"), "maxTokens", context),
            system_prompt=_pick(payload, "systemPrompt", "system_prompt"),
            attachments=attachments,
            persona_id=str(persona_id) if persona_id is not None else None,
            prompt_id=str(prompt_id) if prompt_id is not None else None,
            prompt_variables={str(k): "" if v is None else str(v) for k, v in variables.items()},
        )


@dataclass
class ChatMessage:
    """A message as sent to a provider. `images` holds data URLs."""
    role: str
    content: str
    images: List[str] = field(default_factory=list)


@dataclass
class ProviderRequest:
    model: str
    messages: List[ChatMessage]
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    max_tokens: Optional[int] = None
    system_prompt: Optional[str] = None
    request_id: str = "unknown"
    user_id: Optional[str] = None

    @property
    def last_user_message(self) -> Optional[ChatMessage]:
        for message in reversed(self.messages):
            if message.role == Role.USER:
                return message
        return None


@dataclass
class ProviderSettings:
    api_key: Optional[str] = None
    api_url: Optional[str] = None
    default_model: Optional[str] = None


@dataclass
class StreamedImageData:
    url: str
    index: int = 0
    type: str = "image_url"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "url": self.url, "index": self.index}


@dataclass
class StreamedContentChunk:
    text: Optional[str] = None
    images: List[StreamedImageData] = field(default_factory=list)


@dataclass
class UsageData:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    actual_cost: Optional[float] = None

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class StreamedChatResponse:
    """
    Lazy content stream paired with a deferred usage value.

    The usage future is resolved by the provider once the stream completes.
    Callers await `get_usage()` only after draining `content_stream`; a
    provider that never reported usage yields zero usage.
    """
    content_stream: AsyncIterator[StreamedContentChunk]
    usage_future: "asyncio.Future[UsageData]"

    async def get_usage(self) -> UsageData:
        if not self.usage_future.done():
            self.usage_future.set_result(UsageData())
        return await self.usage_future


@dataclass
class StoredFile:
    id: str
    url: str
    file_name: str
    content_type: str
    size: int = 0


@dataclass
class MessageImage:
    url: str
    name: str
    content_type: Optional[str] = None
    file_id: Optional[str] = None
    is_external: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileId": self.file_id,
            "url": self.url,
            "name": self.name,
            "contentType": self.content_type,
            "isExternal": self.is_external,
        }


@dataclass
class MessageError:
    title: str
    description: str
    code: str

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "description": self.description, "code": self.code}


@dataclass
class Message:
    role: str
    content: str
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    id: Optional[int] = None
    conversation_id: Optional[int] = None
    parent_message_id: Optional[str] = None
    provider: Optional[ProviderType] = None
    model: Optional[str] = None
    token_count: Optional[int] = None
    finish_reason: Optional[str] = None
    is_error: bool = False
    error: Optional[MessageError] = None
    images: List[MessageImage] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def has_images(self) -> bool:
        return bool(self.images)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "messageId": self.message_id,
            "conversationId": self.conversation_id,
            "parentMessageId": self.parent_message_id,
            "role": self.role,
            "content": self.content,
            "provider": self.provider.value if self.provider else None,
            "model": self.model,
            "tokenCount": self.token_count,
            "finishReason": self.finish_reason,
            "isError": self.is_error,
            "hasImages": self.has_images,
            "error": self.error.to_dict() if self.error else None,
            "images": [image.to_dict() for image in self.images],
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class Conversation:
    user_id: str
    title: str
    provider: Optional[ProviderType] = None
    id: Optional[int] = None
    conversation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    messages: List[Message] = field(default_factory=list)
    is_pinned: bool = False
    is_hidden: bool = False
    tags: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None


@dataclass
class Persona:
    id: str
    name: str
    instructions: str = ""
    provider: Optional[ProviderType] = None
    model: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PromptVariable:
    name: str
    required: bool = False
    default: Optional[str] = None


@dataclass
class PromptTemplate:
    id: str
    title: str
    content: str
    variables: List[PromptVariable] = field(default_factory=list)


@dataclass
class UsageMetric:
    user_id: str
    conversation_id: Optional[int]
    message_id: str
    provider: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    cost_in_usd: float
    duration_ms: int
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "conversationId": self.conversation_id,
            "messageId": self.message_id,
            "provider": self.provider,
            "model": self.model,
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
            "costInUsd": self.cost_in_usd,
            "durationMs": self.duration_ms,
            "createdAt": self.created_at.isoformat(),
        }
