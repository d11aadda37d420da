"""Transcription job model."""

from datetime import datetime
from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String, Text
from app.database import Base


class TranscriptionJob(Base):
    """One submitted transcription and its lifecycle.

    Status values:
    pending     - Accepted locally, not yet acknowledged by the vendor
    processing  - Submitted to the vendor; awaiting a terminal status
    completed   - Vendor finished; text and counts copied locally, credits charged
    error       - Vendor reported failure, or the job outlived its reconciliation window

    next_check_at/check_attempts hold the reconciliation schedule so that
    pending checks survive process restarts.
    """

    __tablename__ = "transcriptions"

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    transcript_id = Column(String(64), nullable=True, index=True)  # vendor-assigned
    status = Column(String(20), nullable=False, index=True)
    file_name = Column(String(512), nullable=False)
    file_size = Column(Integer, default=0, nullable=False)  # bytes
    file_type = Column(String(100), nullable=True)
    duration = Column(Float, nullable=True)  # seconds
    transcription_text = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    job_metadata = Column("metadata", JSON, nullable=False, default=dict)
    error_message = Column(Text, nullable=True)
    check_attempts = Column(Integer, default=0, nullable=False)
    next_check_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<TranscriptionJob(id='{self.id}', transcript_id='{self.transcript_id}', "
            f"status='{self.status}')>"
        )
