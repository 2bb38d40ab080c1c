from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from groupchat.core.errors import STATUS_BY_KIND, ErrorKind, ServiceResult
from groupchat.schemas.common import ApiResponse


def to_response(result: ServiceResult, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    """Render a service result as the ``ApiResponse`` envelope"""
    if result.is_success:
        status_code = success_status
    else:
        status_code = STATUS_BY_KIND[result.kind or ErrorKind.UNEXPECTED]

    body = ApiResponse(
        is_success=result.is_success,
        message=result.message,
        data=result.data,
        errors=result.errors,
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))
