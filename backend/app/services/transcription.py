"""Submission of transcription jobs to the vendor.

Credits are checked here against the estimated duration and charged later by
the reconciler, once the vendor reports the real duration.
"""

import uuid
from datetime import datetime
from pathlib import PurePosixPath
from typing import List, Optional
from urllib.parse import unquote, urlparse

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.logging_config import get_logger
from app.models.transcription import TranscriptionJob
from app.schemas.transcription import DiarizationOptions, TranscriptionMetadata
from app.services import ledger
from app.services.assemblyai import AssemblyAIClient
from app.services.reconciler import schedule_checks

logger = get_logger(__name__)


class InsufficientCreditsError(Exception):
    """The user's balance does not cover the estimated cost of a job."""

    def __init__(self, needed: int, available: int) -> None:
        super().__init__(
            f"Insufficient credits. You need {needed} credits for this transcription."
        )
        self.needed = needed
        self.available = available

    @property
    def shortfall(self) -> int:
        return max(0, self.needed - self.available)

    def to_detail(self) -> dict:
        return {
            "error": str(self),
            "creditsNeeded": self.needed,
            "creditsAvailable": self.available,
            "shortfall": self.shortfall,
        }


def file_name_from_url(url: str, transcript_id: str) -> str:
    """Last path segment of ``url``, or ``url_transcript_<id>`` when it has none."""
    name = PurePosixPath(unquote(urlparse(url).path)).name
    return name or f"url_transcript_{transcript_id}"


async def ensure_credits(db: AsyncSession, user_id: str, estimated_duration: float) -> int:
    """Return the estimated cost, raising when the balance does not cover it."""
    needed = ledger.credits_needed(estimated_duration)
    available = await ledger.get_balance(db, user_id)
    if available < needed:
        logger.info(
            "User %s has %s credit(s); %s needed for %ss", user_id, available, needed, estimated_duration
        )
        raise InsufficientCreditsError(needed, available)
    return needed


async def submit_transcription(
    db: AsyncSession,
    client: AssemblyAIClient,
    *,
    user_id: str,
    audio_url: str,
    file_name: Optional[str] = None,
    file_size: int = 0,
    file_type: str = "url",
    duration_seconds: Optional[float] = None,
    diarization_options: Optional[DiarizationOptions] = None,
    custom_vocabulary: Optional[List[str]] = None,
    sentiment_analysis: bool = False,
    source_url: Optional[str] = None,
) -> TranscriptionJob:
    """
    Check credits, submit ``audio_url`` to the vendor and record the job.

    Args:
        db: Database session
        client: Vendor client
        user_id: Owner of the job
        audio_url: Public or vendor-upload URL of the media
        file_name: Display name; derived from ``audio_url`` when omitted
        file_size: Size in bytes (0 for remote URLs)
        file_type: Media type, or ``url`` for remote sources
        duration_seconds: Estimated duration used for the credit check
        diarization_options: Speaker labelling options
        custom_vocabulary: Words to boost
        sentiment_analysis: Whether to request sentiment results
        source_url: Original URL for URL submissions

    Returns:
        The persisted job in ``processing`` state with its checks scheduled

    Raises:
        InsufficientCreditsError: The balance does not cover the estimate
        AssemblyAIError: The vendor rejected the submission
    """
    estimated_duration = duration_seconds or settings.url_estimated_duration_seconds
    estimated_credits = await ensure_credits(db, user_id, estimated_duration)

    cleaned_vocabulary = [w.strip() for w in custom_vocabulary or [] if w and w.strip()]
    transcript = await client.submit(
        audio_url,
        speaker_labels=diarization_options is not None,
        speakers_expected=diarization_options.speakers_expected if diarization_options else None,
        word_boost=cleaned_vocabulary or None,
        sentiment_analysis=sentiment_analysis,
        webhook_url=settings.assemblyai_webhook_url,
    )
    transcript_id = transcript["id"]

    metadata = TranscriptionMetadata(
        source_url=source_url,
        diarization_options=diarization_options,
        custom_vocabulary=cleaned_vocabulary or None,
        sentiment_analysis=sentiment_analysis,
        duration_seconds=estimated_duration,
        estimated_credits=estimated_credits,
        url_transcription=source_url is not None,
        direct_upload=source_url is None,
    )
    job = TranscriptionJob(
        id=str(uuid.uuid4()),
        user_id=user_id,
        transcript_id=transcript_id,
        status="processing",
        file_name=file_name or file_name_from_url(audio_url, transcript_id),
        file_size=file_size,
        file_type=file_type,
        duration=estimated_duration,
        job_metadata=metadata.to_json(),
        created_at=datetime.utcnow(),
    )
    schedule_checks(job)
    db.add(job)
    await db.commit()
    await db.refresh(job)

    logger.info(
        "Transcription %s submitted for user %s (vendor id %s, estimate %s credit(s))",
        job.id,
        user_id,
        transcript_id,
        estimated_credits,
    )
    return job


async def list_jobs(
    db: AsyncSession,
    user_id: str,
    *,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[int, List[TranscriptionJob]]:
    """The user's jobs, newest first, with the unpaginated total."""
    filters = [TranscriptionJob.user_id == user_id]
    if status:
        filters.append(TranscriptionJob.status == status)

    total = await db.execute(select(func.count(TranscriptionJob.id)).where(*filters))
    rows = await db.execute(
        select(TranscriptionJob)
        .where(*filters)
        .order_by(TranscriptionJob.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return int(total.scalar_one()), list(rows.scalars().all())


async def find_job(db: AsyncSession, user_id: str, identifier: str) -> Optional[TranscriptionJob]:
    """Most recent job owned by ``user_id`` whose vendor id or local id is ``identifier``."""
    result = await db.execute(
        select(TranscriptionJob)
        .where(
            TranscriptionJob.user_id == user_id,
            (TranscriptionJob.transcript_id == identifier) | (TranscriptionJob.id == identifier),
        )
        .order_by(TranscriptionJob.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def find_job_by_transcript(db: AsyncSession, transcript_id: str) -> Optional[TranscriptionJob]:
    result = await db.execute(
        select(TranscriptionJob)
        .where(TranscriptionJob.transcript_id == transcript_id)
        .order_by(TranscriptionJob.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
