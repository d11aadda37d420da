"""Authentication service."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User
from app.utils.security import decode_access_token, user_id_from_claims


async def get_user(db: AsyncSession, user_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def user_from_token(db: AsyncSession, token: str) -> Optional[User]:
    """
    Resolve a bearer token to a local user.

    Args:
        db: Database session
        token: Raw JWT from the Authorization header

    Returns:
        The user named by the token, or None when the token is invalid,
        expired, carries no user id, or names an unknown user
    """
    payload = decode_access_token(token)
    if payload is None:
        return None
    user_id = user_id_from_claims(payload)
    if user_id is None:
        return None
    return await get_user(db, user_id)
