"""Credit balance routes."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.logging_config import get_logger
from app.models.user import User
from app.routes.auth import get_current_user
from app.schemas.credits import (
    CreditActionRequest,
    CreditCheckResponse,
    CreditDeductResponse,
    CreditHistoryResponse,
    CreditRequirementRequest,
    CreditRequirementResponse,
    CreditSummaryResponse,
)
from app.services import ledger

router = APIRouter(prefix="/credits", tags=["credits"])
logger = get_logger(__name__)


@router.get("", response_model=CreditSummaryResponse)
async def get_credits(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Balance and lifetime totals; creates a zero-balance account on first access."""
    return await ledger.credit_summary(db, current_user.id)


@router.post("")
async def credit_action(
    payload: CreditActionRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Run a ``check``, ``deduct`` or ``history`` action.

    Raises:
        HTTPException: 400 for an invalid duration, a missing transcription id
            or an unknown action; 500 when the deduction could not be recorded
    """
    if payload.action == "history":
        return CreditHistoryResponse()

    if payload.action not in ("check", "deduct"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid action")

    if not payload.duration_in_seconds or payload.duration_in_seconds <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid duration")

    needed = ledger.credits_needed(payload.duration_in_seconds)

    if payload.action == "check":
        has_credits = await ledger.has_sufficient_credits(db, current_user.id, needed)
        return CreditCheckResponse(has_enough_credits=has_credits, credits_needed=needed)

    if not payload.transcription_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Transcription ID required"
        )

    if await ledger.has_usage_for(db, payload.transcription_id):
        logger.info(
            "Transcription %s already charged; ignoring deduct from user %s",
            payload.transcription_id,
            current_user.id,
        )
        return CreditDeductResponse(success=True, credits_deducted=0)

    success = await ledger.deduct(db, current_user.id, needed, payload.transcription_id)
    if not success:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to deduct credits"
        )
    return CreditDeductResponse(success=True, credits_deducted=needed)


@router.post("/check", response_model=CreditRequirementResponse, response_model_by_alias=True)
async def check_credits(
    payload: CreditRequirementRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Compare a precomputed credit requirement with the caller's balance."""
    await ledger.get_or_create_account(db, current_user.id)
    available = await ledger.get_balance(db, current_user.id)
    return CreditRequirementResponse(
        has_enough_credits=available >= payload.credits_needed,
        credits_needed=payload.credits_needed,
        credits_available=available,
    )
