# oneflow/core/deps.py
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlmodel.ext.asyncio.session import AsyncSession

from ..database import get_session
from ..models import User, UserRole, UserStatus
from .errors import AuthError, AuthorizationError
from .security import authenticate

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login", auto_error=False)

async def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    session: AsyncSession = Depends(get_session)
) -> User:
    if not token:
        raise AuthError("Missing Authorization header")

    principal = authenticate(token)
    if principal is None:
        raise AuthError("Invalid or expired token")

    user = await session.get(User, principal.user_id)
    if user is None:
        raise AuthError("Invalid or expired token")

    if user.status != UserStatus.ACTIVE:
        raise AuthorizationError("Account pending")

    return user

async def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != UserRole.ADMIN:
        raise AuthorizationError("Forbidden")
    return current_user
