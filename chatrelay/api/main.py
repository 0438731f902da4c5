import json

from fastapi import FastAPI, Request, Depends
import uvicorn
import httpx

from ..core.config_manager import ConfigManager
from ..core.auth import get_user_id
from ..core.error_handling import ErrorHandler, ErrorContext
from ..core.logging import logger
from ..core.models import ChatRequest
from ..providers import ProviderFactory
from ..providers.base import STREAM_TIMEOUT
from ..services.chat import PacerSettings, StreamPacer, SSEWriter
from ..services.chat_service import ChatOrchestrator, PromptEnrichment
from ..services.operational_metrics import OperationalMetrics
from ..services.pricing_service import StaticPricingService
from ..services.tokenizer_service import TokenizerService
from ..stores import (
    ConfigPersonaRepository,
    ConfigPromptRepository,
    ConfigSettingsResolver,
    InMemoryConversationStore,
    InMemoryMetricsStore,
    LocalFileStore,
    LoggingNotificationSink,
)
from .middleware import RequestLoggerMiddleware

CHAT_COMPLETIONS_PATH = "/api/v1/chat/completions"

app = FastAPI()

# Initialize ConfigManager
config_manager = ConfigManager()
app.state.config_manager = config_manager


def build_orchestrator(config_manager: ConfigManager, httpx_client: httpx.AsyncClient) -> ChatOrchestrator:
    """Wires the chat orchestrator with config-backed and in-memory collaborators."""
    tokenizer = TokenizerService()
    pricing = StaticPricingService(config_manager)
    file_store = LocalFileStore(config_manager.files_dir)

    return ChatOrchestrator(
        provider_factory=ProviderFactory(
            httpx_client,
            config_manager=config_manager,
            pricing=pricing,
            tokenizer=tokenizer,
            file_store=file_store
        ),
        settings_resolver=ConfigSettingsResolver(config_manager),
        conversations=InMemoryConversationStore(),
        files=file_store,
        metrics_store=InMemoryMetricsStore(),
        notifications=LoggingNotificationSink(),
        enrichment=PromptEnrichment(
            ConfigPersonaRepository(config_manager),
            ConfigPromptRepository(config_manager)
        ),
        pacer=StreamPacer(PacerSettings.from_config(config_manager.streaming_defaults)),
        tokenizer=tokenizer,
        pricing=pricing,
        operational_metrics=OperationalMetrics()
    )


@app.on_event("startup")
async def startup_event():
    # Start config reloader task
    app.state.config_manager.start_reloader_task()

    # Initialize httpx client
    app.state.httpx_client = httpx.AsyncClient(timeout=STREAM_TIMEOUT)

    # Initialize ChatOrchestrator and SSE transport
    app.state.orchestrator = build_orchestrator(app.state.config_manager, app.state.httpx_client)
    app.state.sse_writer = SSEWriter()


@app.on_event("shutdown")
async def shutdown_event():
    await app.state.orchestrator.wait_for_notifications()
    await app.state.config_manager.stop_reloader_task()
    # Close httpx client
    await app.state.httpx_client.aclose()

app.add_middleware(RequestLoggerMiddleware)


@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.post(CHAT_COMPLETIONS_PATH)
async def chat_completions(
    request: Request,
    user_id: str = Depends(get_user_id)
):
    request_id = getattr(request.state, "request_id", "unknown")
    context = ErrorContext(request_id=request_id, user_id=user_id, endpoint_path=CHAT_COMPLETIONS_PATH)

    try:
        payload = await request.json()
    except json.JSONDecodeError as e:
        raise ErrorHandler.handle_invalid_request(f"request body is not valid JSON: {e.msg}", context)

    chat_request = ChatRequest.from_payload(payload, context)

    logger.debug_data(
        title="Chat Request",
        data={
            "provider": chat_request.provider.value if chat_request.provider else None,
            "model": chat_request.model,
            "conversation_id": chat_request.conversation_id,
            "stream": chat_request.stream,
            "is_temporary": chat_request.is_temporary,
            "persona_id": chat_request.persona_id,
            "prompt_id": chat_request.prompt_id,
            "attachments": len(chat_request.attachments),
        },
        request_id=request_id,
        component="api",
        data_flow="incoming"
    )

    orchestrator: ChatOrchestrator = app.state.orchestrator
    if chat_request.stream:
        events = orchestrator.stream_turn(user_id, chat_request, request_id)
        return await app.state.sse_writer.response(events, request_id)

    final_message = await orchestrator.complete_turn(user_id, chat_request, request_id)
    return final_message.to_dict()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
