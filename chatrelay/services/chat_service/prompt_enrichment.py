"""
Prompt Enrichment Module

Applies a stored persona and a stored prompt template to an inbound chat
request before dispatch.

Persona merge rules:
- explicit request sampling parameters (temperature, top_p, top_k,
  max_tokens) always win over persona defaults
- persona provider/model fill in only what the request leaves empty
- persona instructions come first in the system prompt, then the user's
  own system prompt, separated by a blank line

Template rendering replaces `{{ name }}` placeholders. `user_input` is
available to every template and holds the raw message text.
"""

import re
from typing import Dict, Optional

from ...core.error_handling import ErrorHandler, ErrorContext
from ...core.logging import logger
from ...core.models import ChatRequest, Persona, PromptTemplate
from ...stores.catalog import PersonaRepository, PromptRepository

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")
USER_INPUT_VARIABLE = "user_input"

# request attribute -> accepted persona parameter keys
PERSONA_PARAMETERS = {
    "temperature": ("temperature",),
    "top_p": ("top_p", "topP"),
    "top_k": ("top_k", "topK"),
    "max_tokens": ("max_tokens", "maxTokens"),
}


def render_template(content: str, values: Dict[str, str]) -> str:
    """Substitute known placeholders; unknown ones stay exactly as written."""
    def replace(match: re.Match) -> str:
        value = values.get(match.group(1))
        return match.group(0) if value is None else value

    return PLACEHOLDER_PATTERN.sub(replace, content)


class PromptEnrichment:
    """
    Persona and prompt-template resolution for a chat turn.

    Attributes:
        personas (PersonaRepository): Source of stored personas
        prompts (PromptRepository): Source of stored prompt templates
    """

    def __init__(self, personas: PersonaRepository, prompts: PromptRepository):
        self.personas = personas
        self.prompts = prompts

    async def enrich(self, user_id: str, request: ChatRequest, context: ErrorContext) -> ChatRequest:
        """
        Resolve persona and prompt for the request, mutating it in place.

        Raises:
            HTTPException: 404 if the persona or prompt does not exist,
                400 if a required prompt variable is missing
        """
        if request.persona_id:
            persona = await self.personas.get(user_id, request.persona_id)
            if persona is None:
                raise ErrorHandler.handle_persona_not_found(request.persona_id, context)
            self.apply_persona(request, persona)
            logger.debug(
                f"Applied persona {persona.id}",
                request_id=context.request_id,
                user_id=user_id,
                persona_id=persona.id
            )

        if request.prompt_id:
            template = await self.prompts.get(user_id, request.prompt_id)
            if template is None:
                raise ErrorHandler.handle_prompt_not_found(request.prompt_id, context)
            request.message = self.render_prompt(template, request.prompt_variables, request.message, context)
            logger.debug(
                f"Rendered prompt template {template.id}",
                request_id=context.request_id,
                user_id=user_id,
                prompt_id=template.id
            )

        return request

    @staticmethod
    def apply_persona(request: ChatRequest, persona: Persona):
        for attribute, keys in PERSONA_PARAMETERS.items():
            if getattr(request, attribute) is not None:
                continue
            for key in keys:
                value = persona.parameters.get(key)
                if value is not None:
                    cast = float if attribute in ("temperature", "top_p") else int
                    setattr(request, attribute, cast(value))
                    break

        if request.provider is None and persona.provider is not None:
            request.provider = persona.provider
        if not request.model and persona.model:
            request.model = persona.model

        parts = [p for p in (persona.instructions, request.system_prompt) if p and p.strip()]
        request.system_prompt = "\n\n".join(parts) if parts else None

    @staticmethod
    def render_prompt(
        template: PromptTemplate,
        variables: Dict[str, str],
        user_input: str,
        context: Optional[ErrorContext] = None
    ) -> str:
        values = dict(variables)
        if not (values.get(USER_INPUT_VARIABLE) or "").strip():
            values[USER_INPUT_VARIABLE] = user_input

        for variable in template.variables:
            value = values.get(variable.name)
            if value is not None and value.strip():
                continue
            if variable.required:
                raise ErrorHandler.handle_missing_prompt_variable(variable.name, context or ErrorContext())
            if variable.default is not None:
                values[variable.name] = str(variable.default)

        return render_template(template.content, values)
