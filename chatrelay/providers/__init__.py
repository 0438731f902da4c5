from typing import Any, Dict, Optional

import httpx

from .base import BaseProvider
from .openai import OpenAIProvider
from .anthropic import AnthropicProvider
from .google import GoogleProvider
from .ollama import OllamaProvider
from .openrouter import OpenRouterProvider
from ..core.error_handling import ErrorHandler, ErrorContext
from ..core.models import ProviderType


def get_provider_instance(
    provider_type: ProviderType,
    client: httpx.AsyncClient,
    pricing=None,
    tokenizer=None,
    file_store=None,
    google_settings: Optional[Dict[str, Any]] = None,
    image_models=None,
) -> BaseProvider:
    if provider_type == ProviderType.OPENAI:
        return OpenAIProvider(client, pricing=pricing, tokenizer=tokenizer,
                              file_store=file_store, image_models=image_models)
    elif provider_type == ProviderType.ANTHROPIC:
        return AnthropicProvider(client, pricing=pricing, tokenizer=tokenizer)
    elif provider_type == ProviderType.GOOGLE:
        return GoogleProvider(client, pricing=pricing, tokenizer=tokenizer, google_settings=google_settings)
    elif provider_type == ProviderType.OLLAMA:
        return OllamaProvider(client, pricing=pricing, tokenizer=tokenizer)
    elif provider_type == ProviderType.OPENROUTER:
        return OpenRouterProvider(client, pricing=pricing, tokenizer=tokenizer)
    else:
        raise ErrorHandler.handle_unsupported_provider(str(provider_type), ErrorContext())


class ProviderFactory:
    """Creates the streaming client for a provider type with shared collaborators."""

    def __init__(self, client: httpx.AsyncClient, config_manager=None, pricing=None,
                 tokenizer=None, file_store=None):
        self.client = client
        self.config_manager = config_manager
        self.pricing = pricing
        self.tokenizer = tokenizer
        self.file_store = file_store

    def create(self, provider_type: ProviderType) -> BaseProvider:
        return get_provider_instance(
            provider_type,
            self.client,
            pricing=self.pricing,
            tokenizer=self.tokenizer,
            file_store=self.file_store,
            google_settings=self.config_manager.google_settings if self.config_manager else None,
            image_models=self.config_manager.image_models if self.config_manager else None,
        )


__all__ = [
    "BaseProvider",
    "OpenAIProvider",
    "AnthropicProvider",
    "GoogleProvider",
    "OllamaProvider",
    "OpenRouterProvider",
    "ProviderFactory",
    "get_provider_instance",
]
