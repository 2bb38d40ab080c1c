from fastapi import APIRouter, Depends, Request, status

from groupchat.api.responses import to_response
from groupchat.core.dependencies import get_auth_service, get_current_user
from groupchat.core.errors import ServiceResult
from groupchat.models.user import User
from groupchat.schemas.user import LoginRequest, RefreshTokenRequest, RegisterRequest, UserResponse
from groupchat.services.auth_service import AuthService

router = APIRouter()


@router.post("/register")
async def register(
    data: RegisterRequest,
    service: AuthService = Depends(get_auth_service)
):
    """Create an account and sign it in"""
    result = await service.register(data.username, data.email, data.password)
    return to_response(result, success_status=status.HTTP_201_CREATED)


@router.post("/login")
async def login(
    data: LoginRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service)
):
    result = await service.login(
        data.email,
        data.password,
        device_info=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )
    return to_response(result)


@router.post("/refresh")
async def refresh(
    data: RefreshTokenRequest,
    service: AuthService = Depends(get_auth_service)
):
    """Trade a refresh token for a new token pair; the old one stops working"""
    return to_response(await service.refresh(data.refresh_token))


@router.post("/revoke")
async def revoke(
    data: RefreshTokenRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service)
):
    return to_response(await service.revoke(data.refresh_token))


@router.post("/revoke-all")
async def revoke_all(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service)
):
    """Log out everywhere"""
    return to_response(await service.revoke_all(current_user.id))


@router.get("/me")
async def me(current_user: User = Depends(get_current_user)):
    return to_response(ServiceResult.success(UserResponse.model_validate(current_user)))
