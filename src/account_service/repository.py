from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import User


async def create_user(
    session: AsyncSession,
    *,
    email: str,
    full_name: str | None = None,
    phone_number: str | None = None,
    is_active: bool = True,
) -> User:
    """Persist a new :class:`User` and flush to obtain its id."""

    user = User(
        email=email,
        full_name=full_name,
        phone_number=phone_number,
        is_active=is_active,
    )
    session.add(user)
    await session.flush()
    return user


async def get_user_by_id(session: AsyncSession, user_id: int) -> User | None:
    return await session.get(User, user_id)


async def get_active_user(session: AsyncSession, user_id: int) -> User | None:
    """Return the user only when the account is active and not soft-deleted."""

    stmt = select(User).where(
        User.id == user_id,
        User.is_active.is_(True),
        User.deleted_at.is_(None),
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
