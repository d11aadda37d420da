"""Pydantic schemas for the credit ledger endpoints.

Request and response bodies keep the camelCase keys the web client sends and
expects; Python attributes stay snake_case.
"""

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreditSummaryResponse(BaseModel):
    """Balance plus lifetime totals; ``credits_balance`` is the only hard field."""

    credits_balance: int
    total_credits_purchased: int = 0
    total_credits_used: int = 0
    purchase_count: int = 0
    usage_count: int = 0


class CreditActionRequest(CamelModel):
    """Body of ``POST /credits``."""

    action: str
    duration_in_seconds: Optional[float] = None
    transcription_id: Optional[str] = None


class CreditCheckResponse(CamelModel):
    has_enough_credits: bool
    credits_needed: int


class CreditDeductResponse(CamelModel):
    success: bool
    credits_deducted: int


class CreditHistoryResponse(BaseModel):
    """History stays disabled; both lists are always empty."""

    transactions: List[Any] = []
    usage: List[Any] = []


class CreditRequirementRequest(CamelModel):
    """Body of ``POST /credits/check``."""

    action: Literal["check"]
    credits_needed: int = Field(..., gt=0)


class CreditRequirementResponse(CamelModel):
    has_enough_credits: bool
    credits_needed: int
    credits_available: int
    authenticated: bool = True
