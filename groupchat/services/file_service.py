import logging
import mimetypes
import shutil
from pathlib import Path
from typing import Optional
from uuid import uuid4

from fastapi import UploadFile
from pydantic import BaseModel

from groupchat.core.config import settings
from groupchat.core.errors import NotFoundError, ValidationError, service_operation
from groupchat.utils.timezone import utcnow

logger = logging.getLogger(__name__)


class FileUploadResponse(BaseModel):
    file_name: str
    file_url: str
    file_size: int
    content_type: Optional[str] = None
    uploaded_at: str


class FileService:
    """Local-disk attachment storage; files are served back under /api/files"""

    def __init__(self, upload_dir: Optional[str] = None):
        self.upload_dir = Path(upload_dir or settings.UPLOAD_DIR)
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    @service_operation("Failed to upload file")
    async def upload(self, file: UploadFile, user_id: int):
        if not file.filename:
            raise ValidationError("File name cannot be empty", reason="empty_file_name")

        extension = Path(file.filename).suffix.lower()
        if extension not in settings.ALLOWED_UPLOAD_EXTENSIONS:
            raise ValidationError(f"File type {extension or '(none)'} is not allowed", reason="file_type_not_allowed")
        if file.size is not None and file.size > settings.MAX_UPLOAD_SIZE:
            raise ValidationError(
                f"File too large (max {settings.MAX_UPLOAD_SIZE // (1024 * 1024)}MB)",
                reason="file_too_large",
            )

        file_name = f"{uuid4().hex}{extension}"
        file_path = self.upload_dir / file_name
        try:
            with file_path.open("wb") as buffer:
                shutil.copyfileobj(file.file, buffer)
        finally:
            file.file.close()

        size = file_path.stat().st_size
        if size > settings.MAX_UPLOAD_SIZE:
            file_path.unlink()
            raise ValidationError(
                f"File too large (max {settings.MAX_UPLOAD_SIZE // (1024 * 1024)}MB)",
                reason="file_too_large",
            )

        logger.info(f"📎 File {file_name} ({size} bytes) uploaded by user {user_id}")
        return FileUploadResponse(
            file_name=file_name,
            file_url=f"/api/files/{file_name}",
            file_size=size,
            content_type=file.content_type,
            uploaded_at=utcnow().isoformat(),
        ), "File uploaded successfully"

    @service_operation("Failed to delete file")
    async def delete(self, file_name: str, user_id: int):
        file_path = self.resolve(file_name)
        file_path.unlink()
        logger.info(f"🗑️ File {file_name} deleted by user {user_id}")
        return True, "File deleted successfully"

    def resolve(self, file_name: str) -> Path:
        """Path of a stored file; rejects anything that could escape the upload dir"""
        if not file_name or Path(file_name).name != file_name or file_name.startswith("."):
            raise ValidationError("Invalid file name", reason="invalid_file_name")
        file_path = self.upload_dir / file_name
        if not file_path.is_file():
            raise NotFoundError("File not found", reason="file_not_found")
        return file_path

    def content_type(self, file_name: str) -> str:
        return mimetypes.guess_type(file_name)[0] or "application/octet-stream"
