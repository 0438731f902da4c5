"""
Collaborator stores used by the chat orchestrator.
"""

from .conversation_store import ConversationStore, InMemoryConversationStore
from .file_store import FileStore, LocalFileStore
from .notification_sink import NotificationSink, LoggingNotificationSink
from .settings_resolver import SettingsResolver, ConfigSettingsResolver
from .metrics_store import MetricsStore, InMemoryMetricsStore
from .catalog import (
    PersonaRepository,
    PromptRepository,
    ConfigPersonaRepository,
    ConfigPromptRepository,
)

__all__ = [
    'ConversationStore',
    'InMemoryConversationStore',
    'FileStore',
    'LocalFileStore',
    'NotificationSink',
    'LoggingNotificationSink',
    'SettingsResolver',
    'ConfigSettingsResolver',
    'MetricsStore',
    'InMemoryMetricsStore',
    'PersonaRepository',
    'PromptRepository',
    'ConfigPersonaRepository',
    'ConfigPromptRepository'
]
