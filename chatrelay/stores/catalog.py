"""
Personas and prompt templates.

Config-backed entries live in `personas.yaml` / `prompts.yaml` keyed by id.
An entry with `owner` is visible only to that user; entries without one are
shared.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..core.config_manager import ConfigManager
from ..core.logging import logger
from ..core.models import Persona, PromptTemplate, PromptVariable, ProviderType


def _visible(entry: Dict[str, Any], user_id: str) -> bool:
    owner = entry.get("owner")
    return owner is None or owner == user_id


class PersonaRepository(ABC):

    @abstractmethod
    async def get(self, user_id: str, persona_id: str) -> Optional[Persona]:
        pass


class PromptRepository(ABC):

    @abstractmethod
    async def get(self, user_id: str, prompt_id: str) -> Optional[PromptTemplate]:
        pass


class ConfigPersonaRepository(PersonaRepository):

    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager

    async def get(self, user_id: str, persona_id: str) -> Optional[Persona]:
        entry = self.config_manager.get_personas().get(persona_id)
        if not isinstance(entry, dict) or not _visible(entry, user_id):
            return None

        provider = entry.get("provider")
        try:
            provider_type = ProviderType(str(provider).lower()) if provider else None
        except ValueError:
            logger.warning(
                f"Persona {persona_id} names unknown provider {provider}, ignoring it",
                persona_id=persona_id
            )
            provider_type = None

        return Persona(
            id=str(persona_id),
            name=entry.get("name", persona_id),
            instructions=entry.get("instructions") or "",
            provider=provider_type,
            model=entry.get("model"),
            parameters=dict(entry.get("parameters") or {}),
        )


class ConfigPromptRepository(PromptRepository):

    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager

    async def get(self, user_id: str, prompt_id: str) -> Optional[PromptTemplate]:
        entry = self.config_manager.get_prompts().get(prompt_id)
        if not isinstance(entry, dict) or not _visible(entry, user_id):
            return None

        variables = []
        for raw in entry.get("variables") or []:
            if isinstance(raw, str):
                variables.append(PromptVariable(name=raw))
            elif isinstance(raw, dict) and raw.get("name"):
                variables.append(PromptVariable(
                    name=raw["name"],
                    required=bool(raw.get("required", False)),
                    default=raw.get("default"),
                ))

        return PromptTemplate(
            id=str(prompt_id),
            title=entry.get("title", prompt_id),
            content=entry.get("content") or "",
            variables=variables,
        )
