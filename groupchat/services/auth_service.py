import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from groupchat.core.config import settings
from groupchat.core.errors import ConflictError, NotFoundError, UnauthorizedError, service_operation
from groupchat.core.security import (
    access_token_expiry,
    create_access_token,
    decode_access_token,
    generate_refresh_token,
    get_password_hash,
    verify_password,
)
from groupchat.models import RefreshToken, User, UserStatus
from groupchat.schemas.user import AuthResponse, UserResponse
from groupchat.utils.timezone import utcnow

logger = logging.getLogger(__name__)


class AuthService:
    """Registration, login and the refresh-token lifecycle"""

    def __init__(self, db: AsyncSession):
        self.db = db

    @service_operation("Registration failed")
    async def register(self, username: str, email: str, password: str):
        username = username.strip()
        email = email.strip().lower()

        existing = await self.db.scalar(
            select(User).where((User.username == username) | (User.email == email))
        )
        if existing is not None:
            if existing.username == username:
                raise ConflictError("Username is already taken", reason="username_taken")
            raise ConflictError("Email is already registered", reason="email_taken")

        now = utcnow()
        user = User(
            username=username,
            email=email,
            hashed_password=get_password_hash(password),
            display_name=None,
            avatar_url=None,
            status=UserStatus.OFFLINE,
            last_active_at=None,
            created_at=now,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError:
            raise ConflictError("Username or email already registered", reason="duplicate_user")

        response = self._issue_tokens(user)
        await self.db.commit()

        logger.info(f"✅ Registered user {user.id} ({user.username})")
        return response, "Registration successful"

    @service_operation("Login failed")
    async def login(
        self,
        email: str,
        password: str,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
    ):
        user = await self.db.scalar(
            select(User).where(User.email == email.strip().lower(), User.is_deleted == False)
        )
        # Same answer for unknown email and wrong password
        if user is None or not verify_password(password, user.hashed_password):
            logger.warning(f"⚠️ Failed login for {email}")
            raise UnauthorizedError("Invalid email or password", reason="invalid_credentials")

        user.status = UserStatus.ONLINE
        user.last_active_at = utcnow()

        response = self._issue_tokens(user, device_info=device_info, ip_address=ip_address)
        await self.db.commit()

        logger.info(f"🔑 User {user.id} logged in")
        return response, "Login successful"

    @service_operation("Token refresh failed")
    async def refresh(self, refresh_token: str):
        stored = await self.db.scalar(select(RefreshToken).where(RefreshToken.token == refresh_token))
        if stored is None or not stored.is_active:
            raise UnauthorizedError("Invalid or expired refresh token", reason="invalid_refresh_token")

        user = await self.db.get(User, stored.user_id)
        if user is None or user.is_deleted:
            raise UnauthorizedError("Invalid or expired refresh token", reason="invalid_refresh_token")

        # Rotation: the old token dies in the same commit that mints the new one.
        # The conditional update lets only one of two racing refreshes win.
        revoked = await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == stored.id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=utcnow())
        )
        if revoked.rowcount != 1:
            raise UnauthorizedError("Invalid or expired refresh token", reason="invalid_refresh_token")

        response = self._issue_tokens(user, device_info=stored.device_info, ip_address=stored.ip_address)
        await self.db.commit()

        logger.info(f"🔄 Refresh token rotated for user {user.id}")
        return response, "Token refreshed successfully"

    @service_operation("Token revocation failed")
    async def revoke(self, refresh_token: str):
        stored = await self.db.scalar(select(RefreshToken).where(RefreshToken.token == refresh_token))
        if stored is None:
            raise NotFoundError("Token not found", reason="token_not_found")

        if stored.revoked_at is None:
            stored.revoked_at = utcnow()
            await self.db.commit()

        logger.info(f"🚪 Refresh token {stored.id} revoked for user {stored.user_id}")
        return True, "Token revoked successfully"

    @service_operation("Token revocation failed")
    async def revoke_all(self, user_id: int):
        result = await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=utcnow())
        )
        await self.db.commit()

        logger.info(f"🚪 Revoked {result.rowcount} refresh tokens for user {user_id}")
        return result.rowcount, "All tokens revoked successfully"

    async def authenticate_access_token(self, token: Optional[str]) -> Optional[User]:
        """Resolve an access token to a live user, or None"""
        if not token:
            return None
        payload = decode_access_token(token)
        if payload is None:
            return None

        user_id = payload.get("sub")
        if user_id is None:
            return None
        try:
            user_id = int(user_id)
        except (TypeError, ValueError):
            return None

        user = await self.db.get(User, user_id)
        if user is None or user.is_deleted:
            return None
        return user

    def _issue_tokens(
        self,
        user: User,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> AuthResponse:
        # Caller commits
        access_token = create_access_token(
            data={"sub": str(user.id), "name": user.username, "email": user.email}
        )
        refresh = RefreshToken(
            user_id=user.id,
            token=generate_refresh_token(),
            jti=decode_access_token(access_token)["jti"],
            device_info=device_info[:100] if device_info else None,
            ip_address=ip_address,
            expires_at=utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
            created_at=utcnow(),
        )
        self.db.add(refresh)

        return AuthResponse(
            access_token=access_token,
            refresh_token=refresh.token,
            token_type="bearer",
            expires_at=access_token_expiry(),
            user=UserResponse.model_validate(user),
        )
