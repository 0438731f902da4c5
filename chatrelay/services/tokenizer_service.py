"""
Tokenizer Service

Best-effort token counting per model family, used for context-window
truncation and for usage estimates where a provider reports none.
"""

import math
import threading
from typing import Dict, List, Optional

from ..core.logging import logger
from ..core.models import ChatMessage

# Model-name fragment -> tokenizer family
TOKENIZER_FAMILY_MAP = {
    "gpt-4": "gpt-4",
    "gpt-3.5": "gpt-3.5",
    "claude": "gpt-4",
    "gemini": "gpt-4",
    "llama": "llama",
}
DEFAULT_FAMILY = "gpt-4"

# Average characters per token for each family
CHARS_PER_TOKEN = {
    "gpt-4": 4.0,
    "gpt-3.5": 4.0,
    "llama": 3.5,
}

TOKENS_PER_MESSAGE = 3
TOKENS_PER_NAME = 1


class HeuristicTokenizer:
    """Character-ratio counter with a word-count floor."""

    def __init__(self, family: str, chars_per_token: float):
        self.family = family
        self.chars_per_token = chars_per_token

    def count(self, text: Optional[str]) -> int:
        if not text:
            return 0
        words = len(text.split())
        return max(words, math.ceil(len(text) / self.chars_per_token))


class TokenizerService:
    """
    Token counting with a get-or-create tokenizer cache.

    Each family is built at most once; the cache is safe to share between
    concurrent turns.
    """

    def __init__(self):
        self._tokenizers: Dict[str, HeuristicTokenizer] = {}
        self._lock = threading.Lock()

    @staticmethod
    def resolve_family(model: Optional[str]) -> str:
        name = (model or "").lower()
        for fragment, family in TOKENIZER_FAMILY_MAP.items():
            if fragment in name:
                return family
        logger.warning(
            f"No specific tokenizer found for model {model}. Defaulting to '{DEFAULT_FAMILY}' tokenizer.",
            model_id=model
        )
        return DEFAULT_FAMILY

    def get_tokenizer(self, model: Optional[str]) -> HeuristicTokenizer:
        family = self.resolve_family(model)
        tokenizer = self._tokenizers.get(family)
        if tokenizer is not None:
            return tokenizer
        with self._lock:
            tokenizer = self._tokenizers.get(family)
            if tokenizer is None:
                tokenizer = HeuristicTokenizer(family, CHARS_PER_TOKEN.get(family, 4.0))
                self._tokenizers[family] = tokenizer
        return tokenizer

    def count_tokens(self, model: Optional[str], text: Optional[str]) -> int:
        return self.get_tokenizer(model).count(text)

    def count_message_tokens(self, model: Optional[str], role: str, content: Optional[str]) -> int:
        """Message cost including the per-message framing overhead."""
        tokenizer = self.get_tokenizer(model)
        return TOKENS_PER_MESSAGE + tokenizer.count(role) + tokenizer.count(content) + TOKENS_PER_NAME

    def fit_messages(
        self,
        model: Optional[str],
        messages: List[ChatMessage],
        max_context_tokens: int,
        reserved_tokens: int = 0
    ) -> List[ChatMessage]:
        """
        Drop the oldest non-system messages until the estimate fits.

        System messages and the newest message are always kept.
        """
        if not messages:
            return []

        budget = max_context_tokens - reserved_tokens
        costs = [self.count_message_tokens(model, m.role, m.content) for m in messages]
        total = sum(costs)
        if total <= budget:
            return list(messages)

        keep = [True] * len(messages)
        for index in range(len(messages) - 1):
            if total <= budget:
                break
            if messages[index].role == "system":
                continue
            keep[index] = False
            total -= costs[index]

        fitted = [m for m, kept in zip(messages, keep) if kept]
        logger.info(
            "Trimmed conversation history to fit context window",
            model_id=model,
            original_messages=len(messages),
            kept_messages=len(fitted),
            max_context_tokens=max_context_tokens
        )
        return fitted
