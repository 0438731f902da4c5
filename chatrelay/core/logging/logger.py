"""
Project Logger.

Thin wrapper over the standard logging module that attaches structured
context (request_id, user_id, provider_name, ...) as record attributes and
renders payload dumps only when LOG_LEVEL=DEBUG.
"""

import logging
import json
from typing import Any
from .config import setup_logging


class Logger:
    """Structured logger used across chatrelay."""

    def __init__(self):
        self._logger = setup_logging()

    def is_debug_enabled(self) -> bool:
        """Check if debug logging is enabled."""
        return self._logger.isEnabledFor(logging.DEBUG)

    def info(self, message: str, **kwargs):
        if kwargs:
            self._logger.info(message, extra=kwargs)
        else:
            self._logger.info(message)

    def debug(self, message: str, **kwargs):
        if kwargs:
            self._logger.debug(message, extra=kwargs)
        else:
            self._logger.debug(message)

    def warning(self, message: str, **kwargs):
        if kwargs:
            self._logger.warning(message, extra=kwargs)
        else:
            self._logger.warning(message)

    def error(self, message: str, **kwargs):
        """Log an error message with the active exception, if any."""
        if kwargs:
            self._logger.error(message, extra=kwargs, exc_info=True)
        else:
            self._logger.error(message, exc_info=True)

    def request(self, operation: str, request_id: str, **kwargs):
        """Log the start of an operation with its routing context."""
        message_parts = [f"Request: {operation}"]
        if 'model_id' in kwargs:
            message_parts.append(f"model={kwargs['model_id']}")
        if 'provider_name' in kwargs:
            message_parts.append(f"provider={kwargs['provider_name']}")

        self.info(" | ".join(message_parts), request_id=request_id, **kwargs)

    def response(self, operation: str, request_id: str, status_code: int = 200, **kwargs):
        message_parts = [f"Response: {operation}", f"status={status_code}"]
        if 'processing_time_ms' in kwargs:
            message_parts.append(f"time={kwargs['processing_time_ms']}ms")

        self.info(" | ".join(message_parts), request_id=request_id, status_code=status_code, **kwargs)

    def debug_data(self, title: str, data: Any, request_id: str, **kwargs):
        """Dump a payload when LOG_LEVEL=DEBUG."""
        if not self.is_debug_enabled():
            return

        if isinstance(data, (dict, list)):
            data_str = json.dumps(data, indent=2, ensure_ascii=False, default=str)
        else:
            data_str = str(data)

        message = f"DEBUG: {title}"
        if 'component' in kwargs:
            message += f" | component={kwargs['component']}"
        if 'data_flow' in kwargs:
            message += f" | flow={kwargs['data_flow']}"

        self.debug(f"{message}\n{data_str}", request_id=request_id, **kwargs)
