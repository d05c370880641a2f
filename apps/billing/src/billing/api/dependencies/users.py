from __future__ import annotations

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from account_service.models import User
from account_service.repository import get_user_by_id
from billing.core.logging import bind_context
from billing.db.dependencies import get_db_session


async def get_current_user(
    session: AsyncSession = Depends(get_db_session),
    current_user_id: int = Header(
        ...,
        alias="X-User-Id",
        convert_underscores=False,
        description="Authenticated user identifier set by the upstream auth gateway",
    ),
) -> User:
    user = await get_user_by_id(session, current_user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authenticated user not found",
        )
    if not user.is_active or user.deleted_at is not None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="User is inactive or deleted"
        )
    bind_context(user_id=user.id)
    return user
