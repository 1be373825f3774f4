from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ..core.exceptions import ConflictError
from ..core.security import (
    AuthenticationError, UserRole, create_user_token, get_password_hash, verify_password,
)
from ..models.user import User
from ..schemas.auth import TokenResponse, UserLogin, UserRegister, UserResponse

logger = logging.getLogger(__name__)

class AuthService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def register_user(self, user_data: UserRegister) -> User:
        """Register a new patient or doctor."""
        result = await self.db.execute(select(User.id).where(User.email == user_data.email))
        if result.scalar_one_or_none() is not None:
            raise ConflictError("Email already registered")

        new_user = User(
            email=user_data.email,
            password_hash=get_password_hash(user_data.password),
            role=user_data.role,
            first_name=user_data.first_name,
            last_name=user_data.last_name,
            phone_number=user_data.phone_number,
            specialization=user_data.specialization if user_data.role == UserRole.DOCTOR else None,
            is_active=True,
        )

        self.db.add(new_user)
        await self.db.commit()
        await self.db.refresh(new_user)

        logger.info("Registered %s user %s", new_user.role.value, new_user.id)
        return new_user

    async def authenticate_user(self, login_data: UserLogin) -> TokenResponse:
        """Check credentials and issue an access token."""
        result = await self.db.execute(select(User).where(User.email == login_data.email))
        user = result.scalar_one_or_none()

        if not user or not user.password_hash or not verify_password(
            login_data.password, user.password_hash
        ):
            logger.info("Failed login for %s", login_data.email)
            raise AuthenticationError("Invalid email or password")

        if not user.is_active:
            raise AuthenticationError("Account is deactivated")

        token = create_user_token(user.id, user.email, user.role)
        return TokenResponse(
            access_token=token.access_token,
            token_type=token.token_type,
            expires_in=token.expires_in,
            user=UserResponse.model_validate(user),
        )
