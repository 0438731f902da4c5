"""
Tests for the collaborator stores.
"""
import os

import pytest

from chatrelay.core.config_manager import ConfigManager
from chatrelay.core.models import Conversation, Message, ProviderType, UsageMetric
from chatrelay.stores import (
    ConfigPromptRepository,
    ConfigSettingsResolver,
    InMemoryConversationStore,
    InMemoryMetricsStore,
    LocalFileStore,
    LoggingNotificationSink,
)


class TestInMemoryConversationStore:

    @pytest.mark.asyncio
    async def test_create_assigns_ids(self):
        store = InMemoryConversationStore()
        conversation = Conversation(user_id="alice", title="t", messages=[Message(role="user", content="hi")])

        await store.create(conversation)

        assert conversation.id == 1
        assert conversation.messages[0].id is not None
        assert conversation.messages[0].conversation_id == 1
        assert await store.get("alice", 1) is conversation

    @pytest.mark.asyncio
    async def test_get_checks_owner(self):
        store = InMemoryConversationStore()
        await store.create(Conversation(user_id="alice", title="t"))

        assert await store.get("bob", 1) is None
        assert await store.get("alice", 2) is None

    @pytest.mark.asyncio
    async def test_append_and_save(self):
        store = InMemoryConversationStore()
        conversation = await store.create(Conversation(user_id="alice", title="t"))
        message = Message(role="assistant", content="hello")

        await store.append_message(conversation, message)
        await store.save(conversation)

        assert message.id is not None
        assert message.conversation_id == conversation.id
        assert store.list_for_user("alice") == [conversation]

    @pytest.mark.asyncio
    async def test_save_unsaved_conversation(self):
        store = InMemoryConversationStore()
        conversation = Conversation(user_id="alice", title="t")
        await store.append_message(conversation, Message(role="user", content="hi"))

        await store.save(conversation)

        assert conversation.id is not None
        assert conversation.messages[0].id is not None


class TestLocalFileStore:

    @pytest.mark.asyncio
    async def test_save_writes_file(self, tmp_path):
        store = LocalFileStore(str(tmp_path))

        stored = await store.save("alice", b"data", "notes.txt", "text/plain")

        path = tmp_path / "alice" / f"{stored.id}.txt"
        assert path.read_bytes() == b"data"
        assert stored.url == f"/api/v1/files/{stored.id}"
        assert stored.size == 4
        assert stored.file_name == "notes.txt"

    @pytest.mark.asyncio
    async def test_extension_from_content_type(self, tmp_path):
        store = LocalFileStore(str(tmp_path))

        stored = await store.save("alice", b"\x89PNG", "image", "image/png")

        assert os.listdir(tmp_path / "alice") == [f"{stored.id}.png"]


class TestMetricsAndNotifications:

    @pytest.mark.asyncio
    async def test_metrics_store_assigns_ids(self):
        store = InMemoryMetricsStore()
        metric = UsageMetric(
            user_id="alice", conversation_id=1, message_id="m", provider="ollama", model="llama3",
            prompt_tokens=1, completion_tokens=2, cost_in_usd=0.0, duration_ms=10
        )

        recorded = await store.record(metric)

        assert recorded.id == 1
        assert recorded.total_tokens == 3
        assert store.for_user("alice") == [metric]
        assert store.for_user("bob") == []

    @pytest.mark.asyncio
    async def test_logging_sink(self):
        await LoggingNotificationSink().notify("alice", "conversationCompleted", {"conversationId": 1})


class TestConfigBackedStores:

    @pytest.mark.asyncio
    async def test_settings_resolver_user_override(self, config_dir):
        resolver = ConfigSettingsResolver(ConfigManager(str(config_dir)))

        alice = await resolver.resolve("alice", ProviderType.OLLAMA)
        bob = await resolver.resolve("bob", ProviderType.OLLAMA)

        assert alice.api_url == "http://alice-ollama.test"
        assert alice.default_model == "mistral"
        assert bob.api_url == "http://ollama.test"
        assert bob.api_key is None

    @pytest.mark.asyncio
    async def test_settings_resolver_api_key_env(self, config_dir, monkeypatch):
        monkeypatch.setenv("CHATRELAY_TEST_OPENAI_KEY", "sk-test")
        resolver = ConfigSettingsResolver(ConfigManager(str(config_dir)))

        settings = await resolver.resolve("bob", ProviderType.OPENAI)

        assert settings.api_key == "sk-test"

    @pytest.mark.asyncio
    async def test_prompt_variables_parsed(self, config_dir):
        repository = ConfigPromptRepository(ConfigManager(str(config_dir)))

        template = await repository.get("alice", "summarize")

        assert [(v.name, v.required, v.default) for v in template.variables] == [
            ("tone", False, "neutral"),
            ("user_input", False, None),
        ]
        assert await repository.get("alice", "missing") is None
