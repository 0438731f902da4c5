"""
Error Logging Utility

Centralized error logging for consistent error records across chatrelay.
"""

from typing import Dict, Any, Optional
import json
import re
from .error_types import ErrorType, ErrorContext
from ..logging import get_logger


class ErrorLogger:
    """Error logger backed by the shared project logger."""

    @staticmethod
    def _decode_unicode_escapes(text):
        """Decode \\uXXXX sequences in provider error bodies."""
        if not text:
            return text

        try:
            if '\\u' in text and text.startswith('{') and text.endswith('}'):
                decoded = json.loads(text)
                if isinstance(decoded, dict):
                    return json.dumps(decoded, ensure_ascii=False)
        except (json.JSONDecodeError, ValueError):
            pass

        unicode_pattern = re.compile(r'\\u([0-9a-fA-F]{4})')

        def replace_unicode(match):
            try:
                return chr(int(match.group(1), 16))
            except ValueError:
                return match.group(0)

        return unicode_pattern.sub(replace_unicode, text)

    @staticmethod
    def log_error(
        error_type: ErrorType,
        context: ErrorContext,
        original_exception: Optional[Exception] = None,
        additional_data: Optional[Dict[str, Any]] = None,
        message: Optional[str] = None
    ):
        """Log an error with its context."""
        log_extra = context.to_log_extra()
        log_extra["error_type"] = error_type.code
        log_extra["http_status_code"] = error_type.status_code

        if additional_data:
            log_extra.update(additional_data)

        log_message = message or error_type.format_message(**context.format_kwargs())

        if original_exception:
            log_extra["original_exception"] = str(original_exception)
            log_extra["original_exception_type"] = type(original_exception).__name__
            get_logger().error(log_message, **log_extra)
        else:
            get_logger().warning(log_message, **log_extra)

    @staticmethod
    def log_provider_error(
        provider_name: str,
        error_details: str,
        status_code: Optional[int],
        context: Optional[ErrorContext] = None,
        original_exception: Optional[Exception] = None
    ):
        """Log provider-specific errors."""
        decoded_error_details = ErrorLogger._decode_unicode_escapes(error_details)

        log_extra = (context or ErrorContext()).to_log_extra()
        log_extra.update({
            "provider_name": provider_name,
            "provider_error_details": decoded_error_details,
            "provider_status_code": status_code,
            "error_type": "provider_error",
        })

        if original_exception:
            log_extra["original_exception"] = str(original_exception)
            log_extra["original_exception_type"] = type(original_exception).__name__

        get_logger().error(
            f"Provider '{provider_name}' returned error {status_code}: {decoded_error_details}",
            **log_extra
        )
