from collections.abc import Callable

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_session
from app.core.security import decode_access_token
from app.models.user import Permission, User
from app.services.directory import DirectoryClient, get_directory
from app.services.user_service import get_user_by_id

__all__ = ["get_session", "get_directory_client", "get_current_user", "require_permissions"]

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_directory_client() -> DirectoryClient:
    return get_directory()


def impersonate(user: User, header: str | None) -> User:
    """DEV accounts may act as another permission through X-Impersonate-Permissao.

    Returns a detached copy so the stored permission is never changed.
    Unknown values are ignored.
    """
    if user.permission != Permission.DEV or not header or not header.strip():
        return user
    try:
        permission = Permission(header.strip().upper())
    except ValueError:
        return user
    return User(**user.model_dump(exclude={"permission"}), permission=permission)


async def get_current_user(
    session: AsyncSession = Depends(get_session),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    x_impersonate_permissao: str | None = Header(default=None, alias="X-Impersonate-Permissao"),
) -> User:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise _unauthorized("Missing or invalid authorization header")
    user_id = decode_access_token(credentials.credentials)
    if not user_id:
        raise _unauthorized("Invalid or expired token")
    try:
        uid = int(user_id)
    except ValueError:
        raise _unauthorized("Invalid token")
    user = await get_user_by_id(session, uid)
    if not user:
        raise _unauthorized("User not found")
    if not user.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User is inactive")
    return impersonate(user, x_impersonate_permissao)


def require_permissions(*permissions: Permission) -> Callable:
    """Dependency allowing only `permissions`; DEV is always allowed."""

    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.permission == Permission.DEV or current_user.permission in permissions:
            return current_user
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to perform this action",
        )

    return checker
