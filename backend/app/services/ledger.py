"""Prepaid credit ledger.

One credit buys 360 seconds of media; partial units round up and every job
costs at least one credit. Balances are only ever changed by single UPDATE
statements so concurrent requests for the same user cannot lose updates, and
the balance is clamped at zero.
"""

import math
from typing import Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.logging_config import get_logger
from app.models.credits import CreditAccount, CreditTransaction, CreditUsage
from app.schemas.credits import CreditSummaryResponse

SECONDS_PER_CREDIT = 360
MINIMUM_CHARGE = 1
DEFAULT_USAGE_DESCRIPTION = "Transcription processing"

logger = get_logger(__name__)


def credits_needed(duration_seconds: Optional[float]) -> int:
    """Credits charged for ``duration_seconds`` of media."""
    if not duration_seconds or duration_seconds <= 0:
        return MINIMUM_CHARGE
    return max(MINIMUM_CHARGE, math.ceil(duration_seconds / SECONDS_PER_CREDIT))


async def get_account(db: AsyncSession, user_id: str) -> Optional[CreditAccount]:
    result = await db.execute(select(CreditAccount).where(CreditAccount.user_id == user_id))
    return result.scalar_one_or_none()


async def get_or_create_account(db: AsyncSession, user_id: str) -> CreditAccount:
    """Return the user's account, creating a zero-balance row on first access."""
    account = await get_account(db, user_id)
    if account is not None:
        return account

    account = CreditAccount(user_id=user_id, credits_balance=0)
    db.add(account)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent request created the row first.
        await db.rollback()
        account = await get_account(db, user_id)
        if account is None:
            raise
        return account
    await db.refresh(account)
    logger.info("Created credit account for user %s", user_id)
    return account


async def get_balance(db: AsyncSession, user_id: str) -> int:
    """Current balance; a missing account counts as 0."""
    result = await db.execute(
        select(CreditAccount.credits_balance).where(CreditAccount.user_id == user_id)
    )
    balance = result.scalar_one_or_none()
    return int(balance or 0)


async def has_sufficient_credits(db: AsyncSession, user_id: str, needed: int) -> bool:
    return await get_balance(db, user_id) >= needed


async def has_usage_for(db: AsyncSession, transcription_id: str) -> bool:
    """Whether a deduction was already recorded for this transcription."""
    result = await db.execute(
        select(func.count(CreditUsage.id)).where(CreditUsage.transcription_id == transcription_id)
    )
    return result.scalar_one() > 0


async def credits_used_for(
    db: AsyncSession, transcription_id: str, user_id: Optional[str] = None
) -> int:
    """Credits already recorded against a transcription, optionally for one user."""
    query = select(func.coalesce(func.sum(CreditUsage.credits_used), 0)).where(
        CreditUsage.transcription_id == transcription_id
    )
    if user_id is not None:
        query = query.where(CreditUsage.user_id == user_id)
    result = await db.execute(query)
    return int(result.scalar_one())


async def deduct(
    db: AsyncSession,
    user_id: str,
    amount: int,
    transcription_id: Optional[str] = None,
    description: Optional[str] = None,
    *,
    commit: bool = True,
) -> bool:
    """Record a usage row and lower the balance by ``amount`` (clamped at 0).

    Both writes land in the same transaction. Returns False without writing
    anything when the user has no credit account; accounts are never deleted,
    so the existence check cannot go stale.
    """
    if amount < 0:
        raise ValueError("Deduction amount must be >= 0")

    if await get_account(db, user_id) is None:
        logger.error("Cannot deduct %s credits: user %s has no credit account", amount, user_id)
        return False

    db.add(
        CreditUsage(
            user_id=user_id,
            transcription_id=transcription_id,
            credits_used=amount,
            description=description or DEFAULT_USAGE_DESCRIPTION,
        )
    )
    await db.execute(
        update(CreditAccount)
        .where(CreditAccount.user_id == user_id)
        .values(
            credits_balance=case(
                (CreditAccount.credits_balance > amount, CreditAccount.credits_balance - amount),
                else_=0,
            )
        )
        .execution_options(synchronize_session=False)
    )
    if commit:
        await db.commit()
    logger.info(
        "Deducted %s credit(s) from user %s (transcription=%s)", amount, user_id, transcription_id
    )
    return True


async def credit(db: AsyncSession, user_id: str, amount: int, *, commit: bool = True) -> int:
    """Add ``amount`` credits and return the new balance."""
    if amount < 0:
        raise ValueError("Credit amount must be >= 0")

    result = await db.execute(
        update(CreditAccount)
        .where(CreditAccount.user_id == user_id)
        .values(credits_balance=CreditAccount.credits_balance + amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.add(CreditAccount(user_id=user_id, credits_balance=amount))
        await db.flush()

    if commit:
        await db.commit()
    balance = await get_balance(db, user_id)
    logger.info("Added %s credit(s) to user %s; balance now %s", amount, user_id, balance)
    return balance


async def credit_summary(db: AsyncSession, user_id: str) -> CreditSummaryResponse:
    """Balance plus lifetime purchase/usage totals for the dashboard."""
    await get_or_create_account(db, user_id)

    purchased = await db.execute(
        select(
            func.coalesce(func.sum(CreditTransaction.credits_added), 0),
            func.count(CreditTransaction.id),
        ).where(CreditTransaction.user_id == user_id)
    )
    total_purchased, purchase_count = purchased.one()

    used = await db.execute(
        select(
            func.coalesce(func.sum(CreditUsage.credits_used), 0),
            func.count(CreditUsage.id),
        ).where(CreditUsage.user_id == user_id)
    )
    total_used, usage_count = used.one()

    return CreditSummaryResponse(
        credits_balance=await get_balance(db, user_id),
        total_credits_purchased=int(total_purchased),
        total_credits_used=int(total_used),
        purchase_count=int(purchase_count),
        usage_count=int(usage_count),
    )
