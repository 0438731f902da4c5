"""
Main Error Handler

Creates standardized, logged HTTPExceptions for validation and
configuration failures in the chat pipeline.
"""

from typing import Optional
from fastapi import HTTPException

from .error_types import ErrorType, ErrorContext
from .error_logger import ErrorLogger


class ErrorHandler:
    """Centralized error handling utility."""

    @staticmethod
    def create_http_exception(
        error_type: ErrorType,
        context: Optional[ErrorContext] = None,
        original_exception: Optional[Exception] = None,
        log_error: bool = True,
        status_code: Optional[int] = None,
        **format_kwargs
    ) -> HTTPException:
        """
        Create a standardized HTTPException with proper logging.

        Args:
            error_type: The type of error to create
            context: Error context information
            original_exception: Original exception that caused this error
            log_error: Whether to log the error
            status_code: Overrides the status for error types without a fixed one
            **format_kwargs: Additional kwargs for message formatting

        Returns:
            HTTPException with standardized format
        """
        if context is None:
            context = ErrorContext()

        format_dict = {**context.format_kwargs(), **format_kwargs}
        error_detail = error_type.create_error_detail(**format_dict)

        resolved_status = error_type.status_code or status_code or 500
        if error_type == ErrorType.PROVIDER_HTTP_ERROR and status_code:
            error_detail["error"]["code"] = f"provider_http_error_{status_code}"

        if log_error:
            ErrorLogger.log_error(
                error_type=error_type,
                context=context,
                original_exception=original_exception,
                additional_data={"error_detail": error_detail},
                message=error_detail["error"]["message"]
            )

        return HTTPException(status_code=resolved_status, detail=error_detail)

    @staticmethod
    def handle_provider_required(context: ErrorContext) -> HTTPException:
        return ErrorHandler.create_http_exception(ErrorType.PROVIDER_REQUIRED, context)

    @staticmethod
    def handle_model_not_specified(context: ErrorContext) -> HTTPException:
        return ErrorHandler.create_http_exception(ErrorType.MODEL_NOT_SPECIFIED, context)

    @staticmethod
    def handle_unsupported_provider(provider_name: str, context: ErrorContext) -> HTTPException:
        context.provider_name = provider_name
        return ErrorHandler.create_http_exception(ErrorType.UNSUPPORTED_PROVIDER, context)

    @staticmethod
    def handle_api_key_required(provider_name: str, context: ErrorContext) -> HTTPException:
        context.provider_name = provider_name
        return ErrorHandler.create_http_exception(ErrorType.API_KEY_REQUIRED, context)

    @staticmethod
    def handle_api_url_required(provider_name: str, context: ErrorContext) -> HTTPException:
        context.provider_name = provider_name
        return ErrorHandler.create_http_exception(ErrorType.API_URL_REQUIRED, context)

    @staticmethod
    def handle_missing_required_field(field_name: str, context: ErrorContext) -> HTTPException:
        return ErrorHandler.create_http_exception(
            ErrorType.MISSING_REQUIRED_FIELD, context, field_name=field_name
        )

    @staticmethod
    def handle_invalid_request(error_details: str, context: ErrorContext) -> HTTPException:
        return ErrorHandler.create_http_exception(
            ErrorType.INVALID_REQUEST_FORMAT, context, error_details=error_details
        )

    @staticmethod
    def handle_missing_prompt_variable(variable_name: str, context: ErrorContext) -> HTTPException:
        return ErrorHandler.create_http_exception(
            ErrorType.MISSING_PROMPT_VARIABLE, context, variable_name=variable_name
        )

    @staticmethod
    def handle_persona_not_found(persona_id: str, context: ErrorContext) -> HTTPException:
        return ErrorHandler.create_http_exception(
            ErrorType.PERSONA_NOT_FOUND, context, persona_id=persona_id
        )

    @staticmethod
    def handle_prompt_not_found(prompt_id: str, context: ErrorContext) -> HTTPException:
        return ErrorHandler.create_http_exception(
            ErrorType.PROMPT_NOT_FOUND, context, prompt_id=prompt_id
        )

    @staticmethod
    def handle_conversation_not_found(conversation_id: int, context: ErrorContext) -> HTTPException:
        return ErrorHandler.create_http_exception(
            ErrorType.CONVERSATION_NOT_FOUND, context, conversation_id=conversation_id
        )

    @staticmethod
    def handle_empty_provider_response(context: ErrorContext) -> HTTPException:
        return ErrorHandler.create_http_exception(ErrorType.EMPTY_PROVIDER_RESPONSE, context)

    @staticmethod
    def handle_no_final_message(context: ErrorContext) -> HTTPException:
        return ErrorHandler.create_http_exception(ErrorType.NO_FINAL_MESSAGE, context)

    @staticmethod
    def handle_provider_config_error(
        error_details: str,
        context: ErrorContext,
        original_exception: Optional[Exception] = None
    ) -> HTTPException:
        return ErrorHandler.create_http_exception(
            ErrorType.PROVIDER_CONFIG_ERROR,
            context,
            original_exception=original_exception,
            error_details=error_details
        )

    @staticmethod
    def handle_internal_server_error(
        error_details: str,
        context: ErrorContext,
        original_exception: Optional[Exception] = None
    ) -> HTTPException:
        return ErrorHandler.create_http_exception(
            ErrorType.INTERNAL_SERVER_ERROR,
            context,
            original_exception=original_exception,
            error_details=error_details
        )

    @staticmethod
    def handle_auth_errors(
        auth_type: str,
        context: ErrorContext,
        original_exception: Optional[Exception] = None
    ) -> HTTPException:
        """Handle authentication errors."""
        if auth_type == "missing_api_key":
            return ErrorHandler.create_http_exception(
                ErrorType.MISSING_API_KEY, context, original_exception=original_exception
            )
        elif auth_type == "invalid_api_key":
            return ErrorHandler.create_http_exception(
                ErrorType.INVALID_API_KEY, context, original_exception=original_exception
            )
        else:
            return ErrorHandler.handle_internal_server_error(
                error_details=f"Authentication error: {auth_type}",
                context=context,
                original_exception=original_exception
            )

    @staticmethod
    def error_message(exc: HTTPException) -> str:
        """Extract the human-readable message from a standardized HTTPException."""
        detail = exc.detail
        if isinstance(detail, dict):
            return detail.get("error", {}).get("message", str(detail))
        return str(detail)
