"""Database models package."""

from app.models.user import User
from app.models.credits import CreditAccount, CreditTransaction, CreditUsage
from app.models.transcription import TranscriptionJob
from app.models.integration import Integration

__all__ = [
    "User",
    "CreditAccount",
    "CreditUsage",
    "CreditTransaction",
    "TranscriptionJob",
    "Integration",
]
