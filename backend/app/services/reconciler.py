"""Copy terminal vendor status into local transcription rows.

Checks are scheduled through the ``next_check_at`` column rather than
in-process timers: a job is due at ``created_at + delays[n]`` for each
configured delay, then every tail interval until it is older than the
maximum age, when it is failed. ``ReconciliationPoller`` runs due checks for
the lifetime of the process; the pull path (``GET /transcription/{id}``)
applies the same terminal update synchronously.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import AssemblyAIError
from app.logging_config import get_logger
from app.models.transcription import TranscriptionJob
from app.services import ledger
from app.services.assemblyai import AssemblyAIClient, count_speakers, utterances_for

logger = get_logger(__name__)

TIMEOUT_MESSAGE = "Transcription timed out"


def schedule_checks(
    job: TranscriptionJob,
    *,
    delays: Optional[Sequence[int]] = None,
) -> None:
    """Arm the first scheduled check for a freshly submitted job."""
    delays = list(delays if delays is not None else settings.check_delays_seconds)
    created = job.created_at or datetime.utcnow()
    job.check_attempts = 0
    job.next_check_at = created + timedelta(seconds=delays[0])


def advance_schedule(
    job: TranscriptionJob,
    now: datetime,
    *,
    delays: Optional[Sequence[int]] = None,
    tail_interval: Optional[int] = None,
    max_age: Optional[int] = None,
) -> None:
    """Move the job to its next check after a non-terminal result.

    Jobs that outlive ``max_age`` seconds are moved to ``error``.
    """
    delays = list(delays if delays is not None else settings.check_delays_seconds)
    tail_interval = tail_interval if tail_interval is not None else settings.reconcile_tail_interval_seconds
    max_age = max_age if max_age is not None else settings.reconcile_max_age_seconds

    job.check_attempts = (job.check_attempts or 0) + 1
    created = job.created_at or now

    if (now - created).total_seconds() >= max_age:
        logger.warning(
            "Transcription %s still processing after %ss; marking as error", job.id, max_age
        )
        job.status = "error"
        job.error_message = TIMEOUT_MESSAGE
        job.completed_at = now
        job.next_check_at = None
        return

    if job.check_attempts < len(delays):
        job.next_check_at = created + timedelta(seconds=delays[job.check_attempts])
    else:
        job.next_check_at = now + timedelta(seconds=tail_interval)


async def apply_vendor_transcript(
    db: AsyncSession,
    job: TranscriptionJob,
    transcript: Dict[str, Any],
    *,
    now: Optional[datetime] = None,
) -> bool:
    """Apply a terminal vendor status to ``job``; returns True when terminal.

    Completion copies text, duration and derived counts, merges them into the
    existing metadata and charges the job's credits in the same transaction.
    The status-gated UPDATE makes repeated or concurrent applications a no-op.
    Only the part of the cost not already recorded as usage for the job is
    deducted. Nothing is committed here.
    """
    now = now or datetime.utcnow()
    vendor_status = transcript.get("status")

    if vendor_status == "completed":
        utterances = utterances_for(transcript)
        duration = transcript.get("audio_duration") or job.duration or 0
        credits = ledger.credits_needed(duration)
        merged = dict(job.job_metadata or {})
        merged.update(
            {
                "utterances_count": len(utterances),
                "words_count": len(transcript.get("words") or []),
                "speaker_count": count_speakers(utterances),
                "credits_used": credits,
            }
        )

        result = await db.execute(
            update(TranscriptionJob)
            .where(TranscriptionJob.id == job.id, TranscriptionJob.status != "completed")
            .values(
                status="completed",
                completed_at=now,
                transcription_text=transcript.get("text") or "",
                duration=duration,
                job_metadata=merged,
                error_message=None,
                next_check_at=None,
            )
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount == 0:
            logger.debug("Transcription %s already completed; skipping update", job.id)
            return True

        # Earlier manual deductions against this job count toward its cost.
        already_charged = await ledger.credits_used_for(db, job.id, job.user_id)
        remaining = max(0, credits - already_charged)
        if remaining == 0:
            logger.info("Transcription %s was already charged %s credit(s)", job.id, already_charged)
        else:
            charged = await ledger.deduct(
                db,
                job.user_id,
                remaining,
                transcription_id=job.id,
                description=f"Transcription of {job.file_name}",
                commit=False,
            )
            if not charged:
                logger.error("Transcription %s completed but credits were not deducted", job.id)
        logger.info(
            "Transcription %s completed (%ss, %s credit(s))", job.id, duration, credits
        )
        return True

    if vendor_status == "error":
        if job.status in ("completed", "error"):
            return True
        await db.execute(
            update(TranscriptionJob)
            .where(TranscriptionJob.id == job.id, TranscriptionJob.status == job.status)
            .values(
                status="error",
                completed_at=now,
                error_message=transcript.get("error") or "Transcription failed",
                next_check_at=None,
            )
            .execution_options(synchronize_session="evaluate")
        )
        logger.warning("Transcription %s failed at vendor: %s", job.id, transcript.get("error"))
        return True

    return False


async def check_job(
    db: AsyncSession,
    client: AssemblyAIClient,
    job: TranscriptionJob,
    *,
    now: Optional[datetime] = None,
) -> bool:
    """Run one scheduled check; returns True when the job reached a terminal state."""
    now = now or datetime.utcnow()
    if job.status not in ("pending", "processing"):
        job.next_check_at = None
        await db.commit()
        return True

    transcript: Optional[Dict[str, Any]] = None
    if job.transcript_id:
        try:
            transcript = await client.get(job.transcript_id)
        except AssemblyAIError as exc:
            logger.warning("Status check for transcription %s failed: %s", job.id, exc)

    if transcript is not None:
        logger.debug("Transcription %s vendor status: %s", job.id, transcript.get("status"))
        if await apply_vendor_transcript(db, job, transcript, now=now):
            await db.commit()
            return True

    advance_schedule(job, now)
    await db.commit()
    return job.status == "error"


async def cleanup_duplicates(db: AsyncSession, job: TranscriptionJob) -> int:
    """Delete other processing rows for the same user and file name.

    Client retries can create several rows for one upload; the row that was
    looked up wins. Nothing is committed here.
    """
    result = await db.execute(
        delete(TranscriptionJob)
        .where(
            TranscriptionJob.user_id == job.user_id,
            TranscriptionJob.file_name == job.file_name,
            TranscriptionJob.status == "processing",
            TranscriptionJob.id != job.id,
        )
        .execution_options(synchronize_session=False)
    )
    removed = result.rowcount or 0
    if removed:
        logger.info(
            "Removed %s duplicate processing row(s) for user %s file %s",
            removed,
            job.user_id,
            job.file_name,
        )
    return removed


async def reconcile_due_jobs(
    session_factory: Callable[[], AsyncSession],
    client: AssemblyAIClient,
    *,
    now: Optional[datetime] = None,
    limit: int = 50,
) -> int:
    """Run every check that is due; returns the number of jobs checked."""
    now = now or datetime.utcnow()
    async with session_factory() as db:
        result = await db.execute(
            select(TranscriptionJob.id)
            .where(
                TranscriptionJob.status.in_(("pending", "processing")),
                TranscriptionJob.next_check_at.isnot(None),
                TranscriptionJob.next_check_at <= now,
            )
            .order_by(TranscriptionJob.next_check_at)
            .limit(limit)
        )
        job_ids = list(result.scalars().all())

    for job_id in job_ids:
        try:
            async with session_factory() as db:
                job = await db.get(TranscriptionJob, job_id)
                if job is not None:
                    await check_job(db, client, job, now=now)
        except Exception:
            logger.exception("Reconciliation of transcription %s failed", job_id)
    return len(job_ids)


class ReconciliationPoller:
    """Background task that runs due status checks while the process lives."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        client: AssemblyAIClient,
        *,
        interval: Optional[float] = None,
    ) -> None:
        self._session_factory = session_factory
        self._client = client
        self._interval = max(0.1, float(interval or settings.reconcile_poll_interval_seconds))
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Reconciliation poller started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Reconciliation poller stopped")

    async def _run(self) -> None:
        while True:
            try:
                await reconcile_due_jobs(self._session_factory, self._client)
            except Exception as exc:
                logger.warning("Reconciliation sweep failed: %s", exc)
            await asyncio.sleep(self._interval)
