from abc import ABC, abstractmethod

from ..core.config_manager import ConfigManager
from ..core.models import ProviderSettings, ProviderType


class SettingsResolver(ABC):
    """user + provider -> API key, base URL and default model."""

    @abstractmethod
    async def resolve(self, user_id: str, provider: ProviderType) -> ProviderSettings:
        pass


class ConfigSettingsResolver(SettingsResolver):
    """Reads `provider_settings.yaml` through the ConfigManager."""

    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager

    async def resolve(self, user_id: str, provider: ProviderType) -> ProviderSettings:
        settings = self.config_manager.get_provider_settings(user_id, provider.value)
        return ProviderSettings(
            api_key=settings.get("api_key"),
            api_url=settings.get("api_url"),
            default_model=settings.get("default_model"),
        )
