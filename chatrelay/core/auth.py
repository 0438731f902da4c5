from fastapi import Security, Request
from fastapi.security import APIKeyHeader
from .error_handling import ErrorHandler, ErrorContext

api_key_header = APIKeyHeader(name="Authorization", auto_error=False)


async def get_user_id(
    request: Request,
    api_key: str = Security(api_key_header)
) -> str:
    """Resolve the calling user from the Authorization header via user_keys.yaml."""
    request_id = getattr(request.state, "request_id", None)
    if not api_key:
        raise ErrorHandler.handle_auth_errors("missing_api_key", ErrorContext(request_id=request_id))

    if api_key.startswith("Bearer "):
        api_key = api_key[len("Bearer "):]

    user_keys = request.app.state.config_manager.get_user_keys()

    found_user = None
    for user_id, user_data in user_keys.items():
        if (user_data or {}).get("api_key") == api_key:
            found_user = str(user_id)
            break

    if not found_user:
        raise ErrorHandler.handle_auth_errors("invalid_api_key", ErrorContext(request_id=request_id))

    request.state.user_id = found_user
    return found_user
