"""
Binary file storage for attachments and generated images.
"""

import asyncio
import mimetypes
import os
import uuid
from abc import ABC, abstractmethod

from ..core.logging import logger
from ..core.models import StoredFile

FILES_URL_PREFIX = "/api/v1/files"


class FileStore(ABC):

    @abstractmethod
    async def save(self, user_id: str, data: bytes, file_name: str, content_type: str) -> StoredFile:
        """Store bytes and return a stable reference id plus URL."""


class LocalFileStore(FileStore):
    """Writes files under `<base_dir>/<user_id>/` off the event loop."""

    def __init__(self, base_dir: str):
        self.base_dir = base_dir

    @staticmethod
    def _write(path: str, data: bytes):
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)

    async def save(self, user_id: str, data: bytes, file_name: str, content_type: str) -> StoredFile:
        file_id = uuid.uuid4().hex
        extension = os.path.splitext(file_name)[1] or mimetypes.guess_extension(content_type or "") or ""
        path = os.path.join(self.base_dir, user_id or "anonymous", f"{file_id}{extension}")

        await asyncio.to_thread(self._write, path, data)

        logger.debug(
            f"Stored file {file_name}",
            user_id=user_id,
            file_id=file_id,
            size=len(data),
            content_type=content_type
        )
        return StoredFile(
            id=file_id,
            url=f"{FILES_URL_PREFIX}/{file_id}",
            file_name=file_name,
            content_type=content_type,
            size=len(data),
        )
