"""Create or refresh the bootstrap accounts.

Usage: python -m app.seed
"""
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.db import async_session_maker
from app.core.security import hash_password
from app.models.user import Permission, User, UserCreate
from app.services.user_service import build_user, get_user_by_login

logger = logging.getLogger(__name__)

PORTARIA_LOGIN = "Portaria"
PORTARIA_EMAIL = "portaria@agendamento.local"


async def upsert_account(session: AsyncSession, data: UserCreate, password: str | None = None) -> User:
    hashed_password = hash_password(password) if password else None
    user = await get_user_by_login(session, data.login)
    if user is None:
        user = build_user(data, hashed_password=hashed_password)
    else:
        user.name = data.name
        user.email = data.email
        user.permission = data.permission
        user.active = data.active
        if hashed_password:
            user.hashed_password = hashed_password
    session.add(user)
    await session.flush()
    return user


async def seed(session: AsyncSession) -> list[User]:
    accounts = []
    if settings.seed_dev_login:
        accounts.append(
            await upsert_account(
                session,
                UserCreate(
                    login=settings.seed_dev_login,
                    name=settings.seed_dev_name or settings.seed_dev_login,
                    email=settings.seed_dev_email
                    or f"{settings.seed_dev_login}@{settings.institutional_email_domain}",
                    permission=Permission.DEV,
                ),
            )
        )
    else:
        logger.warning("SEED_DEV_LOGIN not set; skipping DEV account")

    if settings.seed_portaria_password:
        accounts.append(
            await upsert_account(
                session,
                UserCreate(
                    login=PORTARIA_LOGIN,
                    name=PORTARIA_LOGIN,
                    email=PORTARIA_EMAIL,
                    permission=Permission.PORTARIA,
                ),
                password=settings.seed_portaria_password,
            )
        )
    else:
        logger.warning("SEED_PORTARIA_PASSWORD not set; skipping PORTARIA account")
    return accounts


async def main() -> None:
    async with async_session_maker() as session:
        try:
            accounts = await seed(session)
            await session.commit()
        except Exception:
            await session.rollback()
            raise
    for user in accounts:
        logger.info("Seeded %s (%s)", user.login, user.permission.value)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
