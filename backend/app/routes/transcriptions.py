"""Transcription submission and status routes."""

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.dependencies import get_assemblyai_client
from app.logging_config import get_logger
from app.models.user import User
from app.routes.auth import get_current_user
from app.schemas.transcription import (
    DiarizationOptions,
    SentimentSummary,
    TranscribeUrlRequest,
    TranscriptionJobResponse,
    TranscriptionListResponse,
    TranscriptionSubmittedResponse,
    TranscriptPayload,
    VendorWebhookPayload,
)
from app.schemas.webhook import WebhookAck
from app.services import reconciler
from app.services.assemblyai import (
    AssemblyAIClient,
    process_sentiment,
    summarize_speakers,
    utterances_for,
)
from app.services.transcription import (
    InsufficientCreditsError,
    ensure_credits,
    find_job,
    find_job_by_transcript,
    list_jobs,
    submit_transcription,
)
from app.utils.file_validation import read_media_upload

router = APIRouter(tags=["transcriptions"])
logger = get_logger(__name__)


def _submitted(job) -> dict:
    response = TranscriptionSubmittedResponse(
        transcription_id=job.transcript_id,
        status=job.status,
        credits_used=job.job_metadata.get("estimated_credits", 0),
    )
    return response.model_dump(by_alias=True)


@router.post("/transcribe-url")
async def transcribe_url(
    payload: TranscribeUrlRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: AssemblyAIClient = Depends(get_assemblyai_client),
):
    """
    Submit a remote media URL for transcription.

    Returns:
        ``{transcriptionId, status, creditsUsed}``; ``creditsUsed`` is the
        estimate, the final charge is made when the vendor completes

    Raises:
        HTTPException: 401 without a valid token for an existing user, 403 if
            ``user_id`` is not the caller or the balance does not cover the
            estimated duration
    """
    if payload.user_id != current_user.id:
        logger.warning(
            "User %s tried to submit a transcription for user %s", current_user.id, payload.user_id
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="User ID does not match the authenticated user"
        )
    try:
        job = await submit_transcription(
            db,
            client,
            user_id=current_user.id,
            audio_url=payload.url,
            duration_seconds=payload.duration_seconds,
            diarization_options=payload.diarization_options,
            custom_vocabulary=payload.custom_vocabulary,
            sentiment_analysis=payload.sentiment_analysis,
            source_url=payload.url,
        )
    except InsufficientCreditsError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.to_detail())
    return _submitted(job)


@router.post("/transcribe")
async def transcribe_upload(
    file: UploadFile = File(...),
    speakers_expected: Optional[int] = Form(default=None, ge=1, le=10),
    custom_vocabulary: Optional[str] = Form(default=None),
    sentiment_analysis: bool = Form(default=False),
    duration_seconds: Optional[float] = Form(default=None, gt=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: AssemblyAIClient = Depends(get_assemblyai_client),
):
    """
    Upload a media file to the vendor and submit it for transcription.

    ``custom_vocabulary`` is a comma-separated list. Supplying
    ``speakers_expected`` turns on speaker labels.
    """
    filename, mime_type, content = await read_media_upload(file)

    # Check before paying for the upload; submit_transcription checks again.
    try:
        await ensure_credits(
            db, current_user.id, duration_seconds or settings.url_estimated_duration_seconds
        )
    except InsufficientCreditsError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.to_detail())

    upload_url = await client.upload(content)
    vocabulary: List[str] = [w for w in (custom_vocabulary or "").split(",") if w.strip()]
    diarization = DiarizationOptions(speakers_expected=speakers_expected) if speakers_expected else None

    try:
        job = await submit_transcription(
            db,
            client,
            user_id=current_user.id,
            audio_url=upload_url,
            file_name=filename,
            file_size=len(content),
            file_type=mime_type,
            duration_seconds=duration_seconds,
            diarization_options=diarization,
            custom_vocabulary=vocabulary,
            sentiment_analysis=sentiment_analysis,
        )
    except InsufficientCreditsError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.to_detail())
    return _submitted(job)


@router.get("/transcriptions", response_model=TranscriptionListResponse)
async def get_transcriptions(
    status_filter: Optional[Literal["pending", "processing", "completed", "error"]] = Query(
        None, alias="status"
    ),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The caller's transcription jobs, newest first."""
    total, jobs = await list_jobs(
        db, current_user.id, status=status_filter, limit=limit, offset=offset
    )
    return TranscriptionListResponse(
        total=total,
        limit=limit,
        offset=offset,
        items=[TranscriptionJobResponse.model_validate(job) for job in jobs],
    )


@router.get("/transcription/{transcript_id}", response_model=TranscriptPayload)
async def get_transcription(
    transcript_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: AssemblyAIClient = Depends(get_assemblyai_client),
):
    """
    Fetch live vendor status for one of the caller's jobs.

    A terminal status is copied into the job row, and other ``processing``
    rows for the same file are removed since this one is the live attempt.

    Raises:
        HTTPException: 404 if the caller owns no job with this id
    """
    job = await find_job(db, current_user.id, transcript_id)
    if job is None or not job.transcript_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transcription not found")

    transcript = await client.get(job.transcript_id)
    await reconciler.apply_vendor_transcript(db, job, transcript)
    await reconciler.cleanup_duplicates(db, job)
    await db.commit()

    utterances = utterances_for(transcript) if transcript.get("status") == "completed" else []
    return TranscriptPayload(
        id=job.transcript_id,
        transcription_id=job.id,
        status=transcript.get("status") or job.status,
        text=transcript.get("text"),
        audio_duration=transcript.get("audio_duration"),
        words=transcript.get("words") or [],
        utterances=utterances,
        speakers=summarize_speakers(utterances),
        entities=transcript.get("entities") or [],
        sentiment=SentimentSummary(**process_sentiment(transcript.get("sentiment_analysis_results"))),
        error=transcript.get("error"),
        metadata=job.job_metadata or {},
    )


@router.post("/transcription/webhook", response_model=WebhookAck)
async def transcription_webhook(
    payload: VendorWebhookPayload,
    db: AsyncSession = Depends(get_db),
    client: AssemblyAIClient = Depends(get_assemblyai_client),
):
    """Vendor completion callback; runs an immediate check for the job."""
    job = await find_job_by_transcript(db, payload.transcript_id)
    if job is None:
        logger.info("Ignoring callback for unknown transcript %s", payload.transcript_id)
        return WebhookAck(message="Unknown transcript ignored")

    terminal = await reconciler.check_job(db, client, job)
    logger.info(
        "Callback for transcript %s (%s); job %s terminal=%s",
        payload.transcript_id,
        payload.status,
        job.id,
        terminal,
    )
    return WebhookAck(message=f"Transcription {job.status}")
