from typing import Optional

from .logging import logger


class ProviderStreamError(Exception):
    """Error raised while consuming a provider stream (malformed frames, provider-reported errors)."""
    def __init__(self, message: str, provider_name: str = "unknown", status_code: int = 502,
                 error_code: str = "provider_stream_error", original_exception: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.provider_name = provider_name
        self.status_code = status_code
        self.error_code = error_code
        self.original_exception = original_exception

        logger.error(f"Provider stream error: {message}", exception={
            "type": "ProviderStreamError",
            "provider_name": provider_name,
            "error_code": error_code,
            "status_code": status_code,
            "original_exception_type": type(original_exception).__name__ if original_exception else None
        })


class ProviderAPIError(Exception):
    """Non-2xx response from a provider API."""
    def __init__(self, message: str, status_code: int, provider_name: str = "unknown",
                 error_code: str = "provider_api_error", original_response_text: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.provider_name = provider_name
        self.error_code = error_code
        self.original_response_text = original_response_text

        logger.error(f"Provider API error: {message}", exception={
            "type": "ProviderAPIError",
            "provider_name": provider_name,
            "error_code": error_code,
            "status_code": status_code,
            "response_preview": original_response_text[:200] + "..." if original_response_text and len(original_response_text) > 200 else original_response_text
        })

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429


class ProviderNetworkError(Exception):
    """Network or connection error while talking to a provider."""
    def __init__(self, message: str, provider_name: str = "unknown", original_exception: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.provider_name = provider_name
        self.original_exception = original_exception

        logger.error(f"Provider network error: {message}", exception={
            "type": "ProviderNetworkError",
            "provider_name": provider_name,
            "original_exception_type": type(original_exception).__name__ if original_exception else None
        })
