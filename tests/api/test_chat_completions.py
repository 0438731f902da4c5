"""
Tests for the chat completions endpoint.

Runs the FastAPI app in-process with a scripted provider behind the
orchestrator.
"""
import json

import pytest
from fastapi.testclient import TestClient

from chatrelay.api.main import app, CHAT_COMPLETIONS_PATH
from chatrelay.core.config_manager import ConfigManager

ALICE = {"Authorization": "Bearer alice-key"}


def parse_sse(text: str):
    frames = []
    for block in text.split("\n\n"):
        if not block.strip():
            continue
        event_line, data_line = block.split("\n")
        frames.append((event_line[len("event: "):], json.loads(data_line[len("data: "):])))
    return frames


@pytest.fixture
def client(config_dir):
    original = app.state.config_manager
    app.state.config_manager = ConfigManager(str(config_dir))
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.state.config_manager = original


@pytest.fixture
def scripted(client, make_orchestrator):
    """Replaces the orchestrator with one around a ScriptedProvider."""
    def install(script, **kwargs):
        provider = pytest.ScriptedProvider(script)
        app.state.orchestrator = make_orchestrator(provider, **kwargs)
        return provider
    return install


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestAuthentication:

    def test_missing_api_key(self, client):
        response = client.post(CHAT_COMPLETIONS_PATH, json={"message": "hi", "provider": "ollama"})

        assert response.status_code == 401
        assert response.json()["detail"]["error"]["code"] == "missing_api_key"

    def test_invalid_api_key(self, client):
        response = client.post(
            CHAT_COMPLETIONS_PATH,
            json={"message": "hi", "provider": "ollama"},
            headers={"Authorization": "Bearer wrong"}
        )

        assert response.status_code == 401
        assert response.json()["detail"]["error"]["code"] == "invalid_api_key"


class TestRequestValidation:

    def test_invalid_json(self, client):
        response = client.post(
            CHAT_COMPLETIONS_PATH,
            content=b"{not json",
            headers={**ALICE, "Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["detail"]["error"]["code"] == "invalid_request_format"

    def test_unsupported_provider(self, client):
        response = client.post(CHAT_COMPLETIONS_PATH, json={"message": "hi", "provider": "mistral"}, headers=ALICE)

        assert response.status_code == 400
        assert response.json()["detail"]["error"]["code"] == "unsupported_provider"


class TestChatCompletions:

    def test_non_streaming(self, scripted, client):
        provider = scripted(["Hello", " world"])

        response = client.post(
            CHAT_COMPLETIONS_PATH,
            json={"message": "Hi", "provider": "ollama", "temperature": 0.3},
            headers=ALICE
        )

        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "assistant"
        assert body["content"] == "Hello world"
        assert body["finishReason"] == "complete"
        assert body["conversationId"] is not None
        assert provider.requests[0].temperature == 0.3
        assert provider.requests[0].user_id == "alice"

    def test_streaming(self, scripted, client):
        scripted(["Hello", " world"])

        response = client.post(
            CHAT_COMPLETIONS_PATH,
            json={"message": "Hi", "provider": "ollama", "stream": True},
            headers=ALICE
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"

        frames = parse_sse(response.text)
        names = [name for name, _ in frames]
        assert names[0] == "conversation_id"
        assert names[-2:] == ["final_message", "metrics"]
        assert "".join(data for name, data in frames if name == "content") == "Hello world"
        assert frames[-2][1]["content"] == "Hello world"
        assert frames[-1][1]["userId"] == "alice"

    def test_streaming_provider_failure(self, scripted, client):
        scripted(["Hel", RuntimeError("upstream exploded")])

        response = client.post(
            CHAT_COMPLETIONS_PATH,
            json={"message": "Hi", "provider": "ollama", "stream": True},
            headers=ALICE
        )

        frames = parse_sse(response.text)
        names = [name for name, _ in frames]
        assert response.status_code == 200
        assert names[-2:] == ["error", "final_message"]
        assert frames[-2][1]["detail"] == "upstream exploded"
        assert frames[-1][1]["isError"] is True

    def test_streaming_validation_error_before_first_frame(self, scripted, client):
        scripted(["never"])

        response = client.post(
            CHAT_COMPLETIONS_PATH,
            json={"message": "Hi", "stream": True},
            headers=ALICE
        )

        assert response.status_code == 400
        assert parse_sse(response.text) == [
            ("error", {"message": "Provider is required to start or continue a conversation."})
        ]

    def test_continue_conversation(self, scripted, client):
        provider = scripted(["Sure"])
        first = client.post(CHAT_COMPLETIONS_PATH, json={"message": "One", "provider": "ollama"}, headers=ALICE)

        second = client.post(
            CHAT_COMPLETIONS_PATH,
            json={"message": "Two", "provider": "ollama", "conversationId": first.json()["conversationId"]},
            headers=ALICE
        )

        assert second.status_code == 200
        assert [m.content for m in provider.requests[-1].messages] == ["One", "Sure", "Two"]

    def test_foreign_conversation(self, scripted, client):
        scripted(["Sure"])
        first = client.post(CHAT_COMPLETIONS_PATH, json={"message": "One", "provider": "ollama"}, headers=ALICE)

        response = client.post(
            CHAT_COMPLETIONS_PATH,
            json={"message": "Two", "provider": "ollama", "conversationId": first.json()["conversationId"]},
            headers={"Authorization": "bob-key"}
        )

        assert response.status_code == 404
