"""Tests for the transcription status reconciler."""

import asyncio
from datetime import datetime, timedelta

import httpx
import pytest
from sqlalchemy import func, select

from app.database import AsyncSessionLocal, Base, engine
from app.models.credits import CreditAccount, CreditUsage
from app.models.transcription import TranscriptionJob
from app.models.user import User
from app.services import ledger, reconciler
from app.services.assemblyai import AssemblyAIClient

USER_ID = "44444444-4444-4444-4444-444444444444"
CREATED = datetime(2026, 1, 1, 12, 0, 0)
DELAYS = [2, 20, 60, 180]


@pytest.fixture
async def test_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as session:
        session.add(User(id=USER_ID, email="reconcile@example.com"))
        session.add(CreditAccount(user_id=USER_ID, credits_balance=5))
        await session.commit()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


def vendor_client(transcripts: dict, calls: list | None = None) -> AssemblyAIClient:
    """Client whose GET /transcript/<id> answers from ``transcripts``."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request.url.path)
        transcript_id = request.url.path.rsplit("/", 1)[-1]
        body = transcripts.get(transcript_id)
        if body is None:
            return httpx.Response(500, json={"error": "vendor unavailable"})
        return httpx.Response(200, json=body)

    return AssemblyAIClient("test-key", transport=httpx.MockTransport(handler))


def completed(transcript_id: str = "tx_1", duration: float = 600) -> dict:
    return {
        "id": transcript_id,
        "status": "completed",
        "text": "Hello there. General Kenobi.",
        "audio_duration": duration,
        "words": [
            {"text": "Hello", "start": 0, "end": 400, "speaker": "A"},
            {"text": "there.", "start": 400, "end": 800, "speaker": "A"},
            {"text": "General", "start": 900, "end": 1300, "speaker": "B"},
            {"text": "Kenobi.", "start": 1300, "end": 1800, "speaker": "B"},
        ],
        "sentiment_analysis_results": [{"text": "Hello there.", "sentiment": "POSITIVE"}],
    }


async def _add_job(
    job_id: str = "job-1",
    transcript_id: str = "tx_1",
    *,
    file_name: str = "meeting.mp3",
    created_at: datetime = CREATED,
    status: str = "processing",
) -> None:
    async with AsyncSessionLocal() as session:
        job = TranscriptionJob(
            id=job_id,
            user_id=USER_ID,
            transcript_id=transcript_id,
            status=status,
            file_name=file_name,
            file_type="url",
            duration=300,
            job_metadata={"estimated_credits": 1, "url_transcription": True},
            created_at=created_at,
        )
        reconciler.schedule_checks(job, delays=DELAYS)
        session.add(job)
        await session.commit()


async def _usage_count(session) -> int:
    return (await session.execute(select(func.count(CreditUsage.id)))).scalar_one()


def test_schedule_checks_arms_first_delay():
    job = TranscriptionJob(id="job-1", created_at=CREATED)
    reconciler.schedule_checks(job, delays=DELAYS)

    assert job.check_attempts == 0
    assert job.next_check_at == CREATED + timedelta(seconds=2)


def test_advance_schedule_walks_delays_then_tail():
    job = TranscriptionJob(id="job-1", status="processing", created_at=CREATED)
    reconciler.schedule_checks(job, delays=DELAYS)

    seen = []
    now = CREATED
    for _ in range(4):
        now = job.next_check_at
        reconciler.advance_schedule(job, now, delays=DELAYS, tail_interval=900, max_age=86400)
        seen.append(job.next_check_at)

    assert seen[:3] == [CREATED + timedelta(seconds=s) for s in (20, 60, 180)]
    assert seen[3] == now + timedelta(seconds=900)
    assert job.check_attempts == 4
    assert job.status == "processing"


def test_advance_schedule_times_out_old_jobs():
    job = TranscriptionJob(id="job-1", status="processing", created_at=CREATED)
    now = CREATED + timedelta(days=1)

    reconciler.advance_schedule(job, now, delays=DELAYS, tail_interval=900, max_age=86400)

    assert job.status == "error"
    assert job.error_message == reconciler.TIMEOUT_MESSAGE
    assert job.completed_at == now
    assert job.next_check_at is None


@pytest.mark.asyncio
async def test_completion_charges_vendor_duration_once(test_db):
    await _add_job()

    async with AsyncSessionLocal() as session:
        job = await session.get(TranscriptionJob, "job-1")
        assert await reconciler.apply_vendor_transcript(session, job, completed()) is True
        await session.commit()

        assert job.status == "completed"
        assert job.transcription_text == "Hello there. General Kenobi."
        assert job.duration == 600
        assert job.next_check_at is None
        assert job.job_metadata["estimated_credits"] == 1
        assert job.job_metadata["credits_used"] == 2
        assert job.job_metadata["words_count"] == 4
        assert job.job_metadata["utterances_count"] == 2
        assert job.job_metadata["speaker_count"] == 2
        assert "sentiment" not in job.job_metadata

        # A second delivery of the same result is a no-op.
        assert await reconciler.apply_vendor_transcript(session, job, completed()) is True
        await session.commit()

        assert await ledger.get_balance(session, USER_ID) == 3
        assert await _usage_count(session) == 1


@pytest.mark.asyncio
async def test_completion_charges_only_the_remainder(test_db):
    await _add_job()
    async with AsyncSessionLocal() as session:
        await ledger.deduct(session, USER_ID, 1, "job-1")

    async with AsyncSessionLocal() as session:
        job = await session.get(TranscriptionJob, "job-1")
        await reconciler.apply_vendor_transcript(session, job, completed(duration=600))
        await session.commit()

        assert job.status == "completed"
        assert await ledger.get_balance(session, USER_ID) == 3
        assert await ledger.credits_used_for(session, "job-1") == 2
        assert await _usage_count(session) == 2


@pytest.mark.asyncio
async def test_completion_skips_charge_when_fully_charged(test_db):
    await _add_job()
    async with AsyncSessionLocal() as session:
        await ledger.deduct(session, USER_ID, 2, "job-1")

    async with AsyncSessionLocal() as session:
        job = await session.get(TranscriptionJob, "job-1")
        await reconciler.apply_vendor_transcript(session, job, completed(duration=600))
        await session.commit()

        assert job.status == "completed"
        assert await ledger.get_balance(session, USER_ID) == 3
        assert await _usage_count(session) == 1


@pytest.mark.asyncio
async def test_completion_falls_back_to_stored_duration(test_db):
    await _add_job()
    transcript = completed()
    transcript["audio_duration"] = None

    async with AsyncSessionLocal() as session:
        job = await session.get(TranscriptionJob, "job-1")
        await reconciler.apply_vendor_transcript(session, job, transcript)
        await session.commit()

        assert job.duration == 300
        assert await ledger.get_balance(session, USER_ID) == 4


@pytest.mark.asyncio
async def test_vendor_error_marks_job_failed_without_charge(test_db):
    await _add_job()

    async with AsyncSessionLocal() as session:
        job = await session.get(TranscriptionJob, "job-1")
        terminal = await reconciler.apply_vendor_transcript(
            session, job, {"id": "tx_1", "status": "error", "error": "Audio file is corrupt"}
        )
        await session.commit()

        assert terminal is True
        assert job.status == "error"
        assert job.error_message == "Audio file is corrupt"
        assert job.next_check_at is None
        assert await ledger.get_balance(session, USER_ID) == 5
        assert await _usage_count(session) == 0


@pytest.mark.asyncio
async def test_non_terminal_status_changes_nothing(test_db):
    await _add_job()

    async with AsyncSessionLocal() as session:
        job = await session.get(TranscriptionJob, "job-1")
        assert (
            await reconciler.apply_vendor_transcript(
                session, job, {"id": "tx_1", "status": "processing"}
            )
            is False
        )
        assert job.status == "processing"


@pytest.mark.asyncio
async def test_check_job_advances_schedule_while_processing(test_db):
    await _add_job()
    client = vendor_client({"tx_1": {"id": "tx_1", "status": "processing"}})
    now = CREATED + timedelta(seconds=3)

    async with AsyncSessionLocal() as session:
        job = await session.get(TranscriptionJob, "job-1")
        assert await reconciler.check_job(session, client, job, now=now) is False
        assert job.check_attempts == 1
        assert job.next_check_at == CREATED + timedelta(seconds=20)

    await client.aclose()


@pytest.mark.asyncio
async def test_check_job_survives_vendor_failure(test_db):
    await _add_job()
    client = vendor_client({})
    now = CREATED + timedelta(seconds=3)

    async with AsyncSessionLocal() as session:
        job = await session.get(TranscriptionJob, "job-1")
        assert await reconciler.check_job(session, client, job, now=now) is False
        assert job.status == "processing"
        assert job.check_attempts == 1

    await client.aclose()


@pytest.mark.asyncio
async def test_cleanup_duplicates_keeps_lookup_target(test_db):
    await _add_job("job-old", "tx_0", created_at=CREATED)
    await _add_job("job-new", "tx_1", created_at=CREATED + timedelta(minutes=1))
    await _add_job("job-other", "tx_2", file_name="other.mp3")

    async with AsyncSessionLocal() as session:
        job = await session.get(TranscriptionJob, "job-new")
        assert await reconciler.cleanup_duplicates(session, job) == 1
        await session.commit()

        remaining = (await session.execute(select(TranscriptionJob.id))).scalars().all()
        assert sorted(remaining) == ["job-new", "job-other"]


@pytest.mark.asyncio
async def test_reconcile_due_jobs_only_checks_due_rows(test_db):
    await _add_job("job-due", "tx_1", created_at=CREATED)
    await _add_job("job-later", "tx_2", file_name="later.mp3", created_at=CREATED + timedelta(hours=1))
    calls: list = []
    client = vendor_client({"tx_1": completed("tx_1"), "tx_2": completed("tx_2")}, calls)

    checked = await reconciler.reconcile_due_jobs(
        AsyncSessionLocal, client, now=CREATED + timedelta(seconds=5)
    )

    assert checked == 1
    assert calls == ["/v2/transcript/tx_1"]
    async with AsyncSessionLocal() as session:
        due = await session.get(TranscriptionJob, "job-due")
        later = await session.get(TranscriptionJob, "job-later")
        assert due.status == "completed"
        assert later.status == "processing"
        assert await ledger.get_balance(session, USER_ID) == 3

    await client.aclose()


@pytest.mark.asyncio
async def test_poller_start_and_stop(test_db):
    client = vendor_client({})
    poller = reconciler.ReconciliationPoller(AsyncSessionLocal, client, interval=0.1)

    await poller.start()
    assert poller.running is True
    await asyncio.sleep(0.15)
    await poller.stop()
    assert poller.running is False

    await client.aclose()
