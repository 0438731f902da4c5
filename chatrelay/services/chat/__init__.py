"""
Экспорт компонентов стриминга чата
"""

from .events import (
    StreamEvent,
    ConversationIdEvent,
    ContentEvent,
    ImageEvent,
    FinalMessageEvent,
    MetricsEvent,
    ErrorEvent,
)
from .stream_pacer import PacerSettings, StreamPacer
from .sse_writer import SSEWriter

__all__ = [
    'StreamEvent',
    'ConversationIdEvent',
    'ContentEvent',
    'ImageEvent',
    'FinalMessageEvent',
    'MetricsEvent',
    'ErrorEvent',
    'PacerSettings',
    'StreamPacer',
    'SSEWriter'
]
