import base64
import binascii
import re
from typing import Optional, Tuple

DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]*)*),(?P<data>.*)$", re.DOTALL)


def is_data_url(url: str) -> bool:
    return bool(url) and url.startswith("data:")


def image_mime_from_data_url(url: str) -> str:
    """jpeg when the data URL prefix names jpeg/jpg, png otherwise."""
    prefix = url.split(",", 1)[0].lower()
    if "jpeg" in prefix or "jpg" in prefix:
        return "image/jpeg"
    return "image/png"


def decode_data_url(url: str) -> Tuple[Optional[str], bytes]:
    """
    Split a data URL into (mime type, payload bytes).

    Raises:
        ValueError: not a data URL or the base64 payload is invalid
    """
    match = DATA_URL_PATTERN.match(url or "")
    if not match:
        raise ValueError("Not a data URL")
    data = match.group("data")
    if ";base64" in (match.group("params") or ""):
        try:
            return match.group("mime"), base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 payload: {e}") from e
    return match.group("mime"), data.encode("utf-8")


def decode_base64(data: str) -> bytes:
    """Decode plain or data-URL base64. Raises ValueError on invalid input."""
    if is_data_url(data):
        return decode_data_url(data)[1]
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e
