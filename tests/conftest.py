"""
Pytest configuration and fixtures for the chatrelay test suite.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from chatrelay.core.models import (
    ChatRequest,
    ProviderSettings,
    ProviderType,
    StreamedContentChunk,
    StreamedImageData,
    UsageData,
)
from chatrelay.providers.base import BaseProvider
from chatrelay.services.chat import PacerSettings, StreamPacer
from chatrelay.services.chat_service import ChatOrchestrator, PromptEnrichment
from chatrelay.services.operational_metrics import OperationalMetrics
from chatrelay.stores import (
    InMemoryConversationStore,
    InMemoryMetricsStore,
    LocalFileStore,
    NotificationSink,
    PersonaRepository,
    PromptRepository,
    SettingsResolver,
)

# 1x1 PNG
PNG_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
PNG_DATA_URL = f"data:image/png;base64,{PNG_BASE64}"


class ScriptedProvider(BaseProvider):
    """
    Provider double that replays a script.

    Script items: str -> text chunk, StreamedContentChunk -> as is,
    Exception -> raised, asyncio.Event -> awaited, callable -> called.
    """

    provider_type = ProviderType.OLLAMA
    max_context_tokens = 4096
    requires_api_key = False
    requires_api_url = False

    def __init__(self, script: List[Any], usage: Optional[UsageData] = None):
        super().__init__(client=None)
        self.script = script
        self.usage = usage
        self.requests = []

    async def _stream(self, request, settings, usage_future):
        self.requests.append(request)
        for item in self.script:
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, asyncio.Event):
                await item.wait()
                continue
            if isinstance(item, str):
                yield StreamedContentChunk(text=item)
            elif isinstance(item, StreamedContentChunk):
                yield item
            elif callable(item):
                item()
                continue
            await asyncio.sleep(0)
        if self.usage is not None:
            self._resolve_usage(usage_future, self.usage)


class StaticProviderFactory:
    def __init__(self, provider: BaseProvider):
        self.provider = provider
        self.created = []

    def create(self, provider_type: ProviderType) -> BaseProvider:
        self.created.append(provider_type)
        return self.provider


class StaticSettingsResolver(SettingsResolver):
    def __init__(self, settings: Optional[ProviderSettings] = None):
        self.settings = settings or ProviderSettings(api_url="http://provider.test", default_model="llama3")

    async def resolve(self, user_id: str, provider: ProviderType) -> ProviderSettings:
        return self.settings


class DictPersonaRepository(PersonaRepository):
    def __init__(self, personas=None):
        self.personas = personas or {}

    async def get(self, user_id, persona_id):
        return self.personas.get(persona_id)


class DictPromptRepository(PromptRepository):
    def __init__(self, prompts=None):
        self.prompts = prompts or {}

    async def get(self, user_id, prompt_id):
        return self.prompts.get(prompt_id)


class RecordingNotificationSink(NotificationSink):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.notifications = []

    async def notify(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("notification channel is down")
        self.notifications.append((user_id, event, payload))


async def no_sleep(_seconds: float):
    await asyncio.sleep(0)


def image_chunk(url: str, index: int = 0) -> StreamedContentChunk:
    return StreamedContentChunk(images=[StreamedImageData(url=url, index=index)])


def make_request(**overrides) -> ChatRequest:
    values = {"message": "Hello there", "provider": ProviderType.OLLAMA, "stream": True}
    values.update(overrides)
    return ChatRequest(**values)


async def collect(events) -> list:
    return [event async for event in events]


@pytest.fixture
def conversation_store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def metrics_store() -> InMemoryMetricsStore:
    return InMemoryMetricsStore()


@pytest.fixture
def file_store(tmp_path) -> LocalFileStore:
    return LocalFileStore(str(tmp_path / "files"))


@pytest.fixture
def notification_sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def fast_pacer() -> StreamPacer:
    """Pacer without real delays."""
    return StreamPacer(PacerSettings(target_chunk_size=3, target_interval_ms=1), sleep=no_sleep)


@pytest.fixture
def make_orchestrator(conversation_store, metrics_store, file_store, notification_sink, fast_pacer):
    """Builds a ChatOrchestrator around a ScriptedProvider."""
    def factory(
        provider: BaseProvider,
        settings: Optional[ProviderSettings] = None,
        personas=None,
        prompts=None,
        notifications: Optional[NotificationSink] = None,
        **kwargs
    ) -> ChatOrchestrator:
        return ChatOrchestrator(
            provider_factory=StaticProviderFactory(provider),
            settings_resolver=StaticSettingsResolver(settings),
            conversations=conversation_store,
            files=file_store,
            metrics_store=metrics_store,
            notifications=notifications or notification_sink,
            enrichment=PromptEnrichment(DictPersonaRepository(personas), DictPromptRepository(prompts)),
            pacer=fast_pacer,
            operational_metrics=kwargs.pop("operational_metrics", OperationalMetrics()),
            **kwargs
        )
    return factory


@pytest.fixture
def config_dir(tmp_path):
    """A config directory with every YAML file the ConfigManager reads."""
    directory = tmp_path / "config"
    directory.mkdir()
    (directory / "settings.yaml").write_text(
        "settings:\n"
        "  streaming:\n"
        "    target_chunk_size: 4\n"
        "  pricing:\n"
        "    llama3:\n"
        "      prompt: 1.0\n"
        "      completion: 2.0\n",
        encoding="utf-8"
    )
    (directory / "user_keys.yaml").write_text(
        "user_keys:\n"
        "  alice:\n"
        "    api_key: alice-key\n"
        "  bob:\n"
        "    api_key: bob-key\n",
        encoding="utf-8"
    )
    (directory / "provider_settings.yaml").write_text(
        "provider_settings:\n"
        "  default:\n"
        "    ollama:\n"
        "      api_url: http://ollama.test\n"
        "      default_model: llama3\n"
        "    openai:\n"
        "      api_key_env: CHATRELAY_TEST_OPENAI_KEY\n"
        "  alice:\n"
        "    ollama:\n"
        "      api_url: http://alice-ollama.test\n"
        "      default_model: mistral\n",
        encoding="utf-8"
    )
    (directory / "personas.yaml").write_text(
        "personas:\n"
        "  reviewer:\n"
        "    name: Code reviewer\n"
        "    instructions: Review code carefully.\n"
        "    provider: openai\n"
        "    model: gpt-4o\n"
        "    parameters:\n"
        "      temperature: 0.2\n"
        "      maxTokens: 512\n"
        "  private:\n"
        "    name: Private persona\n"
        "    owner: alice\n"
        "    provider: nowhere\n",
        encoding="utf-8"
    )
    (directory / "prompts.yaml").write_text(
        "prompts:\n"
        "  report:\n"
        "    title: Report\n"
        "    content: Hello {{name}}, your {{topic}} is ready\n"
        "    variables:\n"
        "      - name: name\n"
        "        required: true\n"
        "      - name: topic\n"
        "        required: true\n"
        "  summarize:\n"
        "    content: 'Summarize in a {{tone}} tone: {{user_input}}'\n"
        "    variables:\n"
        "      - name: tone\n"
        "        default: neutral\n"
        "      - user_input\n",
        encoding="utf-8"
    )
    return directory


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    """httpx client whose transport answers with `handler`."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "streaming: mark test as streaming test"
    )
    config.addinivalue_line(
        "markers", "providers: mark test as provider wire-protocol test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers based on test location."""
    for item in items:
        path = str(item.fspath)
        if "providers" in path:
            item.add_marker(pytest.mark.providers)
        if "pacer" in path or "sse" in path or "orchestrator" in path:
            item.add_marker(pytest.mark.streaming)
        if "api" in path:
            item.add_marker(pytest.mark.integration)


# Shared helpers for test modules
pytest.ScriptedProvider = ScriptedProvider
pytest.RecordingNotificationSink = RecordingNotificationSink
pytest.make_request = make_request
pytest.collect = collect
pytest.image_chunk = image_chunk
pytest.mock_client = mock_client
pytest.PNG_DATA_URL = PNG_DATA_URL
pytest.PNG_BASE64 = PNG_BASE64
