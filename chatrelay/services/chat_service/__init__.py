"""
Chat Service Package

Components of a chat turn:

Modules:
- prompt_enrichment: Persona merge and prompt template rendering
- statistics_collector: Turn timing and token throughput
- chat_service: ChatOrchestrator, the turn state machine

Usage:
    from chatrelay.services.chat_service import ChatOrchestrator

    orchestrator = ChatOrchestrator(provider_factory, settings_resolver, conversations,
                                    files, metrics_store, notifications, enrichment, pacer)
    async for event in orchestrator.stream_turn(user_id, request, request_id):
        ...
"""

from .prompt_enrichment import PromptEnrichment
from .statistics_collector import StatisticsCollector
from .chat_service import ChatOrchestrator

__all__ = [
    "PromptEnrichment",
    "StatisticsCollector",
    "ChatOrchestrator"
]
