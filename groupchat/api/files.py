from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import FileResponse

from groupchat.api.responses import to_response
from groupchat.core.dependencies import get_current_user
from groupchat.core.errors import ServiceError, ServiceResult
from groupchat.models.user import User
from groupchat.services.file_service import FileService

router = APIRouter()


def get_file_service() -> FileService:
    return FileService()


@router.post("/upload")
async def upload_file(
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    service: FileService = Depends(get_file_service)
):
    """Store an attachment; the returned URL goes into a message's attachment_urls"""
    result = await service.upload(file, current_user.id)
    return to_response(result, success_status=status.HTTP_201_CREATED)


@router.get("/{file_name}")
async def download_file(
    file_name: str,
    service: FileService = Depends(get_file_service)
):
    try:
        file_path = service.resolve(file_name)
    except ServiceError as e:
        return to_response(ServiceResult.failure(e))
    return FileResponse(file_path, media_type=service.content_type(file_name), filename=file_name)


@router.delete("/{file_name}")
async def delete_file(
    file_name: str,
    current_user: User = Depends(get_current_user),
    service: FileService = Depends(get_file_service)
):
    return to_response(await service.delete(file_name, current_user.id))
