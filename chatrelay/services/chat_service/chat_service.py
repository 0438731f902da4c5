"""
Chat Service Module

This module provides the ChatOrchestrator, the coordinator of a single chat
turn: Enriching -> Dispatching -> Streaming -> Finalizing, with a parallel
Cancelled / Errored absorption path.

The turn is one async generator of StreamEvent objects:
- ConversationIdEvent: first event, only for a brand-new persistent conversation
- ContentEvent / ImageEvent: paced text and newly seen images (streaming mode)
- ErrorEvent: provider failure, emitted before the final message
- FinalMessageEvent: exactly once per turn that reaches Finalizing
- MetricsEvent: after the final message, on successful completion only

Validation failures raise HTTPException before the first event. Provider
failures never escape the generator; they become an error message plus an
ErrorEvent.
"""

import asyncio
import mimetypes
import re
import time
from dataclasses import dataclass, field
from typing import AsyncGenerator, AsyncIterator, List, Optional, Set

from fastapi import HTTPException

from ..chat.events import (
    StreamEvent,
    ConversationIdEvent,
    ContentEvent,
    ImageEvent,
    ErrorEvent,
    FinalMessageEvent,
    MetricsEvent,
)
from ..chat.stream_pacer import StreamPacer
from ..operational_metrics import OperationalMetrics
from ..pricing_service import PricingLookup
from ..tokenizer_service import TokenizerService
from .prompt_enrichment import PromptEnrichment
from .statistics_collector import StatisticsCollector
from ...core.error_handling import ErrorHandler, ErrorContext
from ...core.logging import logger
from ...core.models import (
    ChatMessage,
    ChatRequest,
    Conversation,
    FinishReason,
    Message,
    MessageError,
    MessageImage,
    ProviderRequest,
    ProviderSettings,
    ProviderType,
    Role,
    StreamedChatResponse,
    StreamedImageData,
    UsageData,
    UsageMetric,
)
from ...providers import BaseProvider, ProviderFactory
from ...stores import (
    ConversationStore,
    FileStore,
    MetricsStore,
    NotificationSink,
    SettingsResolver,
)
from ...stores.file_store import FILES_URL_PREFIX
from ...utils.data_url import decode_base64, decode_data_url, is_data_url

TITLE_MAX_LENGTH = 50
CANCELLED_MARKER = "[Response cancelled]"
ERROR_CONTENT_TEMPLATE = "The assistant ran into a problem: {error}"
ERROR_EVENT_CODE = "chat_generation_failed"
ERROR_EVENT_MESSAGE = "The assistant failed to generate a reply."
ERROR_TITLE = "Generation failed"
ATTACHMENT_FAILURE_NOTE = "\n\n[Failed to save attachment: {file_name}]"
COMPLETION_NOTIFICATION = "conversationCompleted"
LINKED_IMAGE_PATTERN = re.compile(r"!\[([^\]]*)\]\(" + re.escape(FILES_URL_PREFIX) + r"/([^)\s/]+)\)")


@dataclass
class TurnState:
    """Mutable accumulators for one turn; visible after early termination."""
    text_parts: List[str] = field(default_factory=list)
    images: List[StreamedImageData] = field(default_factory=list)
    emitted_images: int = 0
    cancelled: bool = False
    error: Optional[Exception] = None
    finalized: bool = False

    @property
    def text(self) -> str:
        return "".join(self.text_parts)

    def add_image(self, image: StreamedImageData) -> bool:
        if any(existing.url == image.url for existing in self.images):
            return False
        self.images.append(image)
        return True

    def new_images(self) -> List[StreamedImageData]:
        pending = self.images[self.emitted_images:]
        self.emitted_images = len(self.images)
        return pending


@dataclass
class TurnContext:
    """Resolved dispatch parameters of a turn."""
    user_id: str
    request: ChatRequest
    request_id: str
    provider_type: ProviderType
    model: str
    settings: ProviderSettings
    provider: BaseProvider
    error_context: ErrorContext
    conversation: Optional[Conversation] = None
    user_message: Optional[Message] = None


def conversation_title(message: str) -> str:
    if len(message) > TITLE_MAX_LENGTH:
        return message[:TITLE_MAX_LENGTH] + "..."
    return message


def describe_error(error: Exception) -> str:
    if isinstance(error, HTTPException):
        return ErrorHandler.error_message(error)
    return getattr(error, "message", None) or str(error) or type(error).__name__


def linked_file_images(content: str) -> List[MessageImage]:
    """Markdown images pointing at stored files, e.g. `![cat.png](/api/v1/files/<id>)`."""
    images = []
    for match in LINKED_IMAGE_PATTERN.finditer(content or ""):
        name, file_id = match.group(1), match.group(2)
        if any(image.file_id == file_id for image in images):
            continue
        images.append(MessageImage(
            url=f"{FILES_URL_PREFIX}/{file_id}",
            name=name or file_id,
            content_type=mimetypes.guess_type(name)[0],
            file_id=file_id,
        ))
    return images


class ChatOrchestrator:
    """
    Coordinates a chat turn across enrichment, provider streaming, pacing
    and persistence.

    Attributes:
        provider_factory (ProviderFactory): Builds the provider stream client
        settings_resolver (SettingsResolver): Per-user provider credentials
        conversations (ConversationStore): Conversation persistence
        files (FileStore): Attachment and generated-image storage
        metrics_store (MetricsStore): Usage/cost records
        notifications (NotificationSink): Completion notifications
        enrichment (PromptEnrichment): Persona and prompt resolution
        pacer (StreamPacer): Text re-chunking in streaming mode
        tokenizer (TokenizerService): Context-window trimming
        pricing (PricingLookup): Cost when the provider reports none
        operational_metrics (OperationalMetrics): Process counters
    """

    def __init__(
        self,
        provider_factory: ProviderFactory,
        settings_resolver: SettingsResolver,
        conversations: ConversationStore,
        files: FileStore,
        metrics_store: MetricsStore,
        notifications: NotificationSink,
        enrichment: PromptEnrichment,
        pacer: StreamPacer,
        tokenizer: Optional[TokenizerService] = None,
        pricing: Optional[PricingLookup] = None,
        operational_metrics: Optional[OperationalMetrics] = None
    ):
        self.provider_factory = provider_factory
        self.settings_resolver = settings_resolver
        self.conversations = conversations
        self.files = files
        self.metrics_store = metrics_store
        self.notifications = notifications
        self.enrichment = enrichment
        self.pacer = pacer
        self.tokenizer = tokenizer
        self.pricing = pricing
        self.operational_metrics = operational_metrics or OperationalMetrics()
        self._background_tasks: Set[asyncio.Task] = set()

    async def complete_turn(
        self,
        user_id: str,
        request: ChatRequest,
        request_id: str = "unknown",
        cancel_event: Optional[asyncio.Event] = None
    ) -> Message:
        """
        Non-streaming turn: drains the event sequence and returns the final message.

        Raises:
            HTTPException: validation errors, or 500 when no final message was produced
        """
        request.stream = False
        final_message = None
        async for event in self.stream_turn(user_id, request, request_id, cancel_event):
            if isinstance(event, FinalMessageEvent):
                final_message = event.message

        if final_message is None:
            raise ErrorHandler.handle_no_final_message(ErrorContext(request_id=request_id, user_id=user_id))
        return final_message

    async def stream_turn(
        self,
        user_id: str,
        request: ChatRequest,
        request_id: str = "unknown",
        cancel_event: Optional[asyncio.Event] = None
    ) -> AsyncGenerator[StreamEvent, None]:
        """
        Run one chat turn as a lazy sequence of StreamEvent.

        Args:
            user_id: Owner of the conversation
            request: Inbound chat request, enriched in place
            request_id: Correlation id for logs
            cancel_event: Cooperative cancellation signal; when set, the turn
                stops pulling from the provider and finishes as cancelled

        Raises:
            HTTPException: validation failures, before the first event
        """
        context = ErrorContext(request_id=request_id, user_id=user_id)

        # Enriching
        await self.enrichment.enrich(user_id, request, context)

        # Dispatching
        turn = await self._dispatch(user_id, request, request_id, context)
        self.operational_metrics.record_chat_completion(turn.provider_type.value, turn.model, request.stream)

        logger.request(
            operation="Chat Turn",
            request_id=request_id,
            user_id=user_id,
            model_id=turn.model,
            provider_name=turn.provider_type.value,
            streaming=request.stream,
            temporary=request.is_temporary
        )

        if request.is_temporary:
            provider_messages = self._temporary_messages(request)
        else:
            provider_messages = await self._prepare_conversation(turn)

        provider_request = ProviderRequest(
            model=turn.model,
            messages=self._fit_context(turn, provider_messages),
            temperature=request.temperature,
            top_p=request.top_p,
            top_k=request.top_k,
            max_tokens=request.max_tokens,
            system_prompt=request.system_prompt,
            request_id=request_id,
            user_id=user_id,
        )
        response = turn.provider.stream_chat(provider_request, turn.settings)

        events_emitted = 0
        state = TurnState()
        try:
            if turn.conversation is not None and turn.conversation.id is None:
                await self.conversations.create(turn.conversation)
                logger.info(
                    "Conversation created",
                    request_id=request_id,
                    user_id=user_id,
                    conversation_id=turn.conversation.id
                )
                yield ConversationIdEvent(turn.conversation.id)
                events_emitted += 1
            elif turn.conversation is not None:
                await self.conversations.append_message(turn.conversation, turn.user_message)

            # Streaming
            stats = StatisticsCollector()
            stats.start_timing()

            raw_text = self._raw_text(response, state, stats, cancel_event)
            fragments = self.pacer.pace(raw_text) if request.stream else raw_text

            try:
                async for fragment in fragments:
                    if cancel_event is not None and cancel_event.is_set():
                        state.cancelled = True
                        break
                    if request.stream:
                        yield ContentEvent(fragment)
                        events_emitted += 1
                        for image in state.new_images():
                            yield ImageEvent(image)
                            events_emitted += 1
            except Exception as e:
                state.error = e
            finally:
                aclose = getattr(fragments, "aclose", None)
                if aclose is not None:
                    await aclose()

            if cancel_event is not None and cancel_event.is_set() and state.error is None:
                state.cancelled = True

            if request.stream:
                for image in state.new_images():
                    yield ImageEvent(image)
                    events_emitted += 1

            usage = UsageData() if state.error is not None else await response.get_usage()
            stats.mark_completion_complete(usage.prompt_tokens, usage.completion_tokens)
            self.operational_metrics.record_provider_response_time(
                turn.provider_type.value, turn.model, stats.duration_ms
            )

            # Finalizing
            if state.error is None and not state.cancelled and not state.text and not state.images:
                empty_error = ErrorHandler.handle_empty_provider_response(turn.error_context)
                if not request.stream or events_emitted == 0:
                    raise empty_error
                state.error = empty_error

            if state.error is not None:
                async for event in self._finish_errored(turn, state):
                    yield event
                return

            if state.cancelled:
                assistant_message = await self._build_cancelled_message(turn, state)
                yield FinalMessageEvent(assistant_message)
                return

            assistant_message = await self._build_assistant_message(turn, state, usage)
            yield FinalMessageEvent(assistant_message)
        except (asyncio.CancelledError, GeneratorExit):
            # client disconnected or the consumer closed the turn early
            if not state.finalized:
                state.cancelled = True
                logger.info(
                    "Chat turn cancelled by the client",
                    request_id=request_id,
                    user_id=user_id,
                    accumulated_chars=len(state.text)
                )
                await asyncio.shield(self._build_cancelled_message(turn, state))
            raise

        logger.info(
            "Chat turn completed",
            request_id=request_id,
            user_id=user_id,
            model_id=turn.model,
            provider_name=turn.provider_type.value,
            statistics=stats.get_statistics()
        )

        if turn.conversation is None:
            return

        metric = await self._record_usage(turn, assistant_message, usage, stats.duration_ms)
        yield MetricsEvent(metric)
        self._dispatch_notification(turn, assistant_message)

    async def _dispatch(
        self,
        user_id: str,
        request: ChatRequest,
        request_id: str,
        context: ErrorContext
    ) -> TurnContext:
        if request.provider is None:
            raise ErrorHandler.handle_provider_required(context)
        context.provider_name = request.provider.value

        settings = await self.settings_resolver.resolve(user_id, request.provider)
        model = request.model or settings.default_model
        if not model:
            raise ErrorHandler.handle_model_not_specified(context)
        context.model_id = model

        return TurnContext(
            user_id=user_id,
            request=request,
            request_id=request_id,
            provider_type=request.provider,
            model=model,
            settings=settings,
            provider=self.provider_factory.create(request.provider),
            error_context=context,
        )

    @staticmethod
    def _image_data_urls(request: ChatRequest) -> List[str]:
        return [a.data_url for a in request.attachments if a.is_image and a.base64_data]

    def _temporary_messages(self, request: ChatRequest) -> List[ChatMessage]:
        return [ChatMessage(role=Role.USER, content=request.message, images=self._image_data_urls(request))]

    async def _prepare_conversation(self, turn: TurnContext) -> List[ChatMessage]:
        """Load or start the conversation and build the user message; nothing is persisted yet."""
        request = turn.request
        if request.conversation_id is not None:
            conversation = await self.conversations.get(turn.user_id, request.conversation_id)
            if conversation is None:
                raise ErrorHandler.handle_conversation_not_found(request.conversation_id, turn.error_context)
        else:
            conversation = Conversation(
                user_id=turn.user_id,
                title=conversation_title(request.message),
                provider=turn.provider_type,
            )

        history = [
            ChatMessage(role=m.role, content=m.content)
            for m in conversation.messages
            if not m.is_error
        ]

        last_message = conversation.last_message
        user_message = Message(
            role=Role.USER,
            content=request.message,
            parent_message_id=last_message.message_id if last_message else None,
            provider=turn.provider_type,
            model=turn.model,
        )
        await self._save_attachments(turn, user_message)

        if conversation.id is None:
            conversation.messages.append(user_message)

        turn.conversation = conversation
        turn.user_message = user_message

        history.append(ChatMessage(
            role=Role.USER,
            content=user_message.content,
            images=self._image_data_urls(request),
        ))
        return history

    async def _save_attachments(self, turn: TurnContext, user_message: Message):
        for attachment in turn.request.attachments:
            try:
                data = decode_base64(attachment.base64_data)
                stored = await self.files.save(
                    turn.user_id, data, attachment.file_name, attachment.content_type
                )
            except Exception as e:
                logger.error(
                    f"Failed to save attachment {attachment.file_name}",
                    request_id=turn.request_id,
                    user_id=turn.user_id,
                    error=str(e)
                )
                user_message.content += ATTACHMENT_FAILURE_NOTE.format(file_name=attachment.file_name)
                continue

            user_message.images.append(MessageImage(
                url=stored.url,
                name=stored.file_name,
                content_type=stored.content_type,
                file_id=stored.id,
            ))

    def _fit_context(self, turn: TurnContext, messages: List[ChatMessage]) -> List[ChatMessage]:
        if self.tokenizer is None:
            return messages
        reserved = turn.request.max_tokens or 0
        if turn.request.system_prompt:
            reserved += self.tokenizer.count_message_tokens(turn.model, Role.SYSTEM, turn.request.system_prompt)
        return self.tokenizer.fit_messages(
            turn.model, messages, turn.provider.max_context_tokens, reserved_tokens=reserved
        )

    async def _raw_text(
        self,
        response: StreamedChatResponse,
        state: TurnState,
        stats: StatisticsCollector,
        cancel_event: Optional[asyncio.Event]
    ) -> AsyncGenerator[str, None]:
        """Unpacks provider chunks: text is accumulated and yielded, images collected."""
        content_stream: AsyncIterator = response.content_stream
        try:
            async for chunk in content_stream:
                stats.mark_first_chunk()
                for image in chunk.images:
                    if state.add_image(image):
                        logger.debug(
                            f"Collected image {image.index} for final message",
                            images_total=len(state.images)
                        )
                if chunk.text:
                    state.text_parts.append(chunk.text)
                    yield chunk.text
                if cancel_event is not None and cancel_event.is_set():
                    state.cancelled = True
                    return
        finally:
            aclose = getattr(content_stream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _finish_errored(self, turn: TurnContext, state: TurnState) -> AsyncGenerator[StreamEvent, None]:
        detail = describe_error(state.error)
        self.operational_metrics.record_provider_error(
            turn.provider_type.value, turn.model, type(state.error).__name__
        )
        logger.warning(
            f"Chat generation failed: {detail}",
            request_id=turn.request_id,
            user_id=turn.user_id,
            model_id=turn.model,
            provider_name=turn.provider_type.value,
            error_type=type(state.error).__name__
        )

        assistant_message = self._new_assistant_message(turn, ERROR_CONTENT_TEMPLATE.format(error=detail))
        assistant_message.finish_reason = FinishReason.ERROR
        assistant_message.is_error = True
        assistant_message.error = MessageError(ERROR_TITLE, detail, ERROR_EVENT_CODE)
        state.finalized = True
        await self._persist_message(turn, assistant_message)

        yield ErrorEvent(
            code=ERROR_EVENT_CODE,
            message=ERROR_EVENT_MESSAGE,
            detail=detail,
            retryable=True
        )
        yield FinalMessageEvent(assistant_message)

    async def _build_cancelled_message(self, turn: TurnContext, state: TurnState) -> Message:
        content = state.text
        if not content and not state.images:
            content = CANCELLED_MARKER
        assistant_message = self._new_assistant_message(turn, content)
        assistant_message.finish_reason = FinishReason.CANCELLED
        assistant_message.images = await self._message_images(turn, state.images)
        state.finalized = True
        await self._persist_message(turn, assistant_message)
        logger.info(
            "Chat turn finished as cancelled",
            request_id=turn.request_id,
            user_id=turn.user_id,
            accumulated_chars=len(state.text)
        )
        return assistant_message

    async def _build_assistant_message(self, turn: TurnContext, state: TurnState, usage: UsageData) -> Message:
        assistant_message = self._new_assistant_message(turn, state.text)
        assistant_message.finish_reason = FinishReason.COMPLETE
        assistant_message.token_count = usage.completion_tokens
        assistant_message.images = await self._message_images(turn, state.images)
        if not assistant_message.images:
            assistant_message.images = linked_file_images(state.text)
        state.finalized = True
        await self._persist_message(turn, assistant_message)
        return assistant_message

    def _new_assistant_message(self, turn: TurnContext, content: str) -> Message:
        return Message(
            role=Role.ASSISTANT,
            content=content,
            provider=turn.provider_type,
            model=turn.model,
            parent_message_id=turn.user_message.message_id if turn.user_message else None,
            conversation_id=turn.conversation.id if turn.conversation else None,
        )

    async def _persist_message(self, turn: TurnContext, message: Message):
        if turn.conversation is None:
            return
        await self.conversations.append_message(turn.conversation, message)
        await self.conversations.save(turn.conversation)

    async def _message_images(self, turn: TurnContext, images: List[StreamedImageData]) -> List[MessageImage]:
        """
        Data-URL images are stored as files; provider-hosted URLs are kept as
        external references. Temporary turns store nothing.
        """
        result = []
        for image in images:
            name = f"Generated Image {image.index + 1}"
            if not is_data_url(image.url):
                result.append(MessageImage(url=image.url, name=name, is_external=True))
                continue
            if turn.conversation is None:
                result.append(MessageImage(url=image.url, name=name))
                continue

            try:
                mime_type, data = decode_data_url(image.url)
                mime_type = "image/jpeg" if mime_type in ("image/jpeg", "image/jpg") else "image/png"
                extension = "jpg" if mime_type == "image/jpeg" else "png"
                file_name = f"streamed-image-{image.index}-{int(time.time() * 1000)}.{extension}"
                stored = await self.files.save(turn.user_id, data, file_name, mime_type)
            except Exception as e:
                logger.error(
                    f"Failed to save streamed image {image.index}, keeping it inline",
                    request_id=turn.request_id,
                    user_id=turn.user_id,
                    error=str(e)
                )
                result.append(MessageImage(url=image.url, name=name))
                continue

            result.append(MessageImage(
                url=stored.url,
                name=name,
                content_type=mime_type,
                file_id=stored.id,
            ))
        return result

    async def _record_usage(
        self,
        turn: TurnContext,
        assistant_message: Message,
        usage: UsageData,
        duration_ms: int
    ) -> UsageMetric:
        cost = usage.actual_cost
        if cost is None:
            cost = 0.0
            if self.pricing is not None:
                cost = await self.pricing.calculate_cost(
                    turn.provider_type.value, turn.model, usage.prompt_tokens, usage.completion_tokens
                )

        metric = UsageMetric(
            user_id=turn.user_id,
            conversation_id=turn.conversation.id,
            message_id=assistant_message.message_id,
            provider=turn.provider_type.value,
            model=turn.model,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            cost_in_usd=cost,
            duration_ms=duration_ms,
        )
        return await self.metrics_store.record(metric)

    def _dispatch_notification(self, turn: TurnContext, assistant_message: Message):
        task = asyncio.create_task(self._notify_completed(turn, assistant_message))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _notify_completed(self, turn: TurnContext, assistant_message: Message):
        try:
            await self.notifications.notify(
                turn.user_id,
                COMPLETION_NOTIFICATION,
                {"conversationId": turn.conversation.id, "messageId": assistant_message.message_id}
            )
        except Exception as e:
            logger.warning(
                f"Failed to send completion notification for conversation {turn.conversation.id}",
                request_id=turn.request_id,
                user_id=turn.user_id,
                error=str(e)
            )

    async def wait_for_notifications(self):
        """Awaits in-flight completion notifications (shutdown, tests)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
