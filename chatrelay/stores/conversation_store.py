"""
Conversation persistence.

`InMemoryConversationStore` keeps conversations per process and assigns
integer surrogate ids to conversations and messages the way a database
would. Writes are last-write-wins.
"""

import asyncio
import itertools
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ..core.logging import logger
from ..core.models import Conversation, Message, utcnow


class ConversationStore(ABC):
    """Load, create, append-message and save for the conversation aggregate."""

    @abstractmethod
    async def get(self, user_id: str, conversation_id: int) -> Optional[Conversation]:
        pass

    @abstractmethod
    async def create(self, conversation: Conversation) -> Conversation:
        pass

    @abstractmethod
    async def append_message(self, conversation: Conversation, message: Message) -> Message:
        pass

    @abstractmethod
    async def save(self, conversation: Conversation) -> Conversation:
        pass


class InMemoryConversationStore(ConversationStore):

    def __init__(self):
        self._conversations: Dict[int, Conversation] = {}
        self._conversation_ids = itertools.count(1)
        self._message_ids = itertools.count(1)
        self._lock = asyncio.Lock()

    async def get(self, user_id: str, conversation_id: int) -> Optional[Conversation]:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.user_id != user_id:
            return None
        return conversation

    async def create(self, conversation: Conversation) -> Conversation:
        async with self._lock:
            conversation.id = next(self._conversation_ids)
            for message in conversation.messages:
                self._assign_message_id(conversation, message)
            self._conversations[conversation.id] = conversation
        logger.debug(
            "Conversation created",
            user_id=conversation.user_id,
            conversation_id=conversation.id
        )
        return conversation

    async def append_message(self, conversation: Conversation, message: Message) -> Message:
        async with self._lock:
            if conversation.id is not None:
                self._assign_message_id(conversation, message)
            conversation.messages.append(message)
            conversation.updated_at = utcnow()
        return message

    async def save(self, conversation: Conversation) -> Conversation:
        async with self._lock:
            if conversation.id is None:
                conversation.id = next(self._conversation_ids)
            for message in conversation.messages:
                if message.id is None:
                    self._assign_message_id(conversation, message)
            conversation.updated_at = utcnow()
            self._conversations[conversation.id] = conversation
        return conversation

    def _assign_message_id(self, conversation: Conversation, message: Message):
        message.id = next(self._message_ids)
        message.conversation_id = conversation.id

    def list_for_user(self, user_id: str) -> List[Conversation]:
        return [c for c in self._conversations.values() if c.user_id == user_id]
