"""
Error Types and Context Definitions

Standardized error types and context information for the chat pipeline.
"""

from enum import Enum
from typing import Dict, Any, Optional
from fastapi import status


class ErrorType(Enum):
    """Enumeration of standard error types in the system."""

    # Validation Errors (400)
    PROVIDER_REQUIRED = ("provider_required", status.HTTP_400_BAD_REQUEST, "Provider is required to start or continue a conversation.")
    MODEL_NOT_SPECIFIED = ("model_not_specified", status.HTTP_400_BAD_REQUEST, "Model must be selected or have a default.")
    INVALID_REQUEST_FORMAT = ("invalid_request_format", status.HTTP_400_BAD_REQUEST, "Invalid request format: {error_details}")
    MISSING_REQUIRED_FIELD = ("missing_required_field", status.HTTP_400_BAD_REQUEST, "Missing required field: {field_name}")
    UNSUPPORTED_PROVIDER = ("unsupported_provider", status.HTTP_400_BAD_REQUEST, "Unsupported provider: '{provider_name}'")
    API_KEY_REQUIRED = ("api_key_required", status.HTTP_400_BAD_REQUEST, "API key is required for provider '{provider_name}'.")
    API_URL_REQUIRED = ("api_url_required", status.HTTP_400_BAD_REQUEST, "API URL is required for provider '{provider_name}'.")
    MISSING_PROMPT_VARIABLE = ("missing_prompt_variable", status.HTTP_400_BAD_REQUEST, "Prompt variable '{variable_name}' is required.")

    # Authorization Errors (401)
    MISSING_API_KEY = ("missing_api_key", status.HTTP_401_UNAUTHORIZED, "API key missing")
    INVALID_API_KEY = ("invalid_api_key", status.HTTP_401_UNAUTHORIZED, "Invalid API key")

    # Not Found Errors (404)
    PERSONA_NOT_FOUND = ("persona_not_found", status.HTTP_404_NOT_FOUND, "Persona '{persona_id}' not found")
    PROMPT_NOT_FOUND = ("prompt_not_found", status.HTTP_404_NOT_FOUND, "Prompt '{prompt_id}' not found")
    CONVERSATION_NOT_FOUND = ("conversation_not_found", status.HTTP_404_NOT_FOUND, "Conversation '{conversation_id}' not found")

    # Server Errors (500)
    PROVIDER_CONFIG_ERROR = ("provider_config_error", status.HTTP_500_INTERNAL_SERVER_ERROR, "Provider configuration error: {error_details}")
    INTERNAL_SERVER_ERROR = ("internal_server_error", status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error: {error_details}")
    NO_FINAL_MESSAGE = ("no_final_message", status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to get a response from the provider.")

    # Gateway Errors (502)
    EMPTY_PROVIDER_RESPONSE = ("empty_provider_response", status.HTTP_502_BAD_GATEWAY, "Provider returned no content.")

    # Provider Errors (dynamic status codes)
    PROVIDER_HTTP_ERROR = ("provider_http_error", None, "Provider error: {error_details}")
    PROVIDER_NETWORK_ERROR = ("provider_network_error", status.HTTP_502_BAD_GATEWAY, "Network error communicating with provider: {error_details}")
    PROVIDER_STREAM_ERROR = ("provider_stream_error", None, "Provider streaming error: {error_details}")

    def __init__(self, code: str, status_code: Optional[int], message_template: str):
        self.code = code
        self.status_code = status_code
        self.message_template = message_template

    def format_message(self, **kwargs) -> str:
        """Format the error message with provided parameters."""
        try:
            return self.message_template.format(**kwargs)
        except KeyError:
            return self.message_template

    def create_error_detail(self, **kwargs) -> Dict[str, Any]:
        """Create standardized error detail dictionary."""
        return {
            "error": {
                "message": self.format_message(**kwargs),
                "code": self.code
            }
        }


class ErrorContext:
    """Context information for error handling."""

    def __init__(
        self,
        request_id: Optional[str] = None,
        user_id: Optional[str] = None,
        model_id: Optional[str] = None,
        endpoint_path: Optional[str] = None,
        provider_name: Optional[str] = None,
        **additional_context
    ):
        self.request_id = request_id
        self.user_id = user_id
        self.model_id = model_id
        self.endpoint_path = endpoint_path
        self.provider_name = provider_name
        self.additional_context = additional_context

    def format_kwargs(self) -> Dict[str, Any]:
        """Values available to message templates."""
        values = {
            "request_id": self.request_id,
            "user_id": self.user_id,
            "model_id": self.model_id,
            "endpoint_path": self.endpoint_path,
            "provider_name": self.provider_name,
        }
        values.update(self.additional_context)
        return values

    def to_log_extra(self) -> Dict[str, Any]:
        """Convert context to logging extra dictionary."""
        extra = {
            "log_type": "error"
        }

        if self.request_id:
            extra["request_id"] = self.request_id
        if self.user_id:
            extra["user_id"] = self.user_id
        if self.model_id:
            extra["model_id"] = self.model_id
        if self.endpoint_path:
            extra["endpoint_path"] = self.endpoint_path
        if self.provider_name:
            extra["provider_name"] = self.provider_name

        extra.update(self.additional_context)
        return extra
