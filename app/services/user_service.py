from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User, UserCreate, UserSummary


async def get_user_by_id(session: AsyncSession, user_id: int) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_login(session: AsyncSession, login: str) -> User | None:
    result = await session.execute(select(User).where(User.login == login))
    return result.scalar_one_or_none()


def build_user(data: UserCreate, hashed_password: str | None = None) -> User:
    return User(
        login=data.login,
        name=data.name,
        email=data.email,
        permission=data.permission,
        active=data.active,
        unit_id=data.unit_id,
        hashed_password=hashed_password,
    )


def user_to_summary(user: User) -> UserSummary:
    return UserSummary(id=user.id, name=user.name, login=user.login)
