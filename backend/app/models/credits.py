"""Credit ledger models."""

from datetime import datetime
from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
)
from app.database import Base


class CreditAccount(Base):
    """Prepaid credit balance, one row per user, created lazily with 0 credits."""

    __tablename__ = "user_credits"
    __table_args__ = (CheckConstraint("credits_balance >= 0", name="ck_credits_non_negative"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False, index=True)
    credits_balance = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<CreditAccount(user_id='{self.user_id}', balance={self.credits_balance})>"


class CreditUsage(Base):
    """Append-only audit row written once per deduction."""

    __tablename__ = "credit_usage"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    transcription_id = Column(String(64), nullable=True, index=True)
    credits_used = Column(Integer, nullable=False)
    description = Column(String(255), nullable=False, default="Transcription processing")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        return (
            f"<CreditUsage(user_id='{self.user_id}', transcription_id='{self.transcription_id}', "
            f"credits_used={self.credits_used})>"
        )


class CreditTransaction(Base):
    """Completed credit purchase reported by the payment processor."""

    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    paddle_transaction_id = Column(String(100), unique=True, nullable=False)
    amount = Column(Float, default=0, nullable=False)
    currency = Column(String(10), default="USD", nullable=False)
    status = Column(String(20), default="completed", nullable=False)
    credits_added = Column(Integer, nullable=False)
    package_name = Column(String(100), nullable=True)
    # "metadata" is reserved on declarative classes
    payload = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<CreditTransaction(id={self.id}, paddle_transaction_id='{self.paddle_transaction_id}', "
            f"credits_added={self.credits_added})>"
        )
