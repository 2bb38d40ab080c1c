from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from groupchat.db.database import get_db
from groupchat.models.user import User
from groupchat.services.auth_service import AuthService
from groupchat.services.group_service import GroupService
from groupchat.services.message_service import MessageService
from groupchat.websocket.hub import ChatHub

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def get_hub(request: Request) -> ChatHub:
    """The application's hub, built in the lifespan handler"""
    return request.app.state.hub


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    user = await AuthService(db).authenticate_access_token(token)
    if user is None:
        raise credentials_exception
    return user


def get_auth_service(db: AsyncSession = Depends(get_db)) -> AuthService:
    return AuthService(db)


def get_group_service(
    db: AsyncSession = Depends(get_db),
    hub: ChatHub = Depends(get_hub)
) -> GroupService:
    return GroupService(db, hub)


def get_message_service(
    db: AsyncSession = Depends(get_db),
    hub: ChatHub = Depends(get_hub)
) -> MessageService:
    return MessageService(db, hub)
