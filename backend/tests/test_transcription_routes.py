"""Integration tests for transcription submission and status routes."""

import json

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from app.database import AsyncSessionLocal, Base, engine
from app.dependencies import get_assemblyai_client
from app.main import app
from app.models.credits import CreditAccount
from app.models.transcription import TranscriptionJob
from app.models.user import User
from app.services import ledger
from app.services.assemblyai import AssemblyAIClient
from app.utils.security import create_access_token

USER_ID = "55555555-5555-5555-5555-555555555555"
OTHER_ID = "66666666-6666-6666-6666-666666666666"
MEDIA_URL = "https://cdn.example.com/audio/meeting.mp3"


class FakeVendor:
    """In-memory AssemblyAI: records submissions and serves canned transcripts."""

    def __init__(self):
        self.submissions = []
        self.uploads = []
        self.transcripts = {}
        self.fail_submit = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "POST" and path.endswith("/upload"):
            self.uploads.append(request.content)
            return httpx.Response(200, json={"upload_url": "https://cdn.assemblyai.com/upload/abc"})
        if request.method == "POST" and path.endswith("/transcript"):
            if self.fail_submit:
                return httpx.Response(400, json={"error": "Invalid audio_url"})
            body = json.loads(request.content)
            self.submissions.append(body)
            transcript_id = f"tx_{len(self.submissions)}"
            self.transcripts[transcript_id] = {"id": transcript_id, "status": "queued"}
            return httpx.Response(200, json={"id": transcript_id, "status": "queued"})
        transcript_id = path.rsplit("/", 1)[-1]
        if transcript_id in self.transcripts:
            return httpx.Response(200, json=self.transcripts[transcript_id])
        return httpx.Response(404, json={"error": "Transcript not found"})

    def complete(self, transcript_id: str, duration: float = 600) -> None:
        self.transcripts[transcript_id] = {
            "id": transcript_id,
            "status": "completed",
            "text": "Good morning everyone.",
            "audio_duration": duration,
            "words": [
                {"text": "Good", "start": 0, "end": 300, "speaker": "A"},
                {"text": "morning", "start": 300, "end": 700, "speaker": "A"},
                {"text": "everyone.", "start": 800, "end": 1200, "speaker": "B"},
            ],
            "entities": [],
            "sentiment_analysis_results": [
                {"text": "Good morning everyone.", "sentiment": "POSITIVE"}
            ],
        }


@pytest.fixture
async def test_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as session:
        session.add(User(id=USER_ID, email="owner@example.com"))
        session.add(User(id=OTHER_ID, email="other@example.com"))
        await session.commit()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def vendor():
    fake = FakeVendor()
    client = AssemblyAIClient("test-key", transport=httpx.MockTransport(fake.handler))
    app.dependency_overrides[get_assemblyai_client] = lambda: client
    yield fake
    app.dependency_overrides.pop(get_assemblyai_client, None)
    await client.aclose()


def _headers(user_id: str = USER_ID) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


async def _fund(balance: int, user_id: str = USER_ID) -> None:
    async with AsyncSessionLocal() as session:
        session.add(CreditAccount(user_id=user_id, credits_balance=balance))
        await session.commit()


@pytest.mark.asyncio
async def test_transcribe_url_unknown_user(test_db, vendor):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/transcribe-url",
            json={"url": MEDIA_URL, "user_id": "missing"},
            headers=_headers("missing"),
        )

    assert response.status_code == 401
    assert vendor.submissions == []


@pytest.mark.asyncio
async def test_transcribe_url_requires_token(test_db, vendor):
    await _fund(5)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/transcribe-url", json={"url": MEDIA_URL, "user_id": USER_ID}
        )

    assert response.status_code == 401
    assert vendor.submissions == []


@pytest.mark.asyncio
async def test_transcribe_url_rejects_other_users_id(test_db, vendor):
    await _fund(5, OTHER_ID)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/transcribe-url",
            json={"url": MEDIA_URL, "user_id": OTHER_ID},
            headers=_headers(),
        )

    assert response.status_code == 403
    assert vendor.submissions == []
    async with AsyncSessionLocal() as session:
        count = await session.execute(select(func.count(TranscriptionJob.id)))
        assert count.scalar_one() == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"user_id": USER_ID},
        {"url": MEDIA_URL},
        {"url": "ftp://example.com/a.mp3", "user_id": USER_ID},
    ],
)
async def test_transcribe_url_validation(test_db, vendor, body):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/transcribe-url", json=body, headers=_headers())

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_transcribe_url_insufficient_credits(test_db, vendor):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/transcribe-url",
            json={"url": MEDIA_URL, "user_id": USER_ID, "duration_seconds": 1000},
            headers=_headers(),
        )

    assert response.status_code == 403
    detail = response.json()["detail"]
    assert detail["creditsNeeded"] == 3
    assert detail["creditsAvailable"] == 0
    assert detail["shortfall"] == 3
    assert vendor.submissions == []


@pytest.mark.asyncio
async def test_transcribe_url_creates_scheduled_job(test_db, vendor):
    await _fund(5)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/transcribe-url",
            json={
                "url": MEDIA_URL,
                "user_id": USER_ID,
                "diarization_options": {"speakers_expected": 2},
                "custom_vocabulary": ["Kubernetes", " ", "gRPC"],
                "sentiment_analysis": True,
            },
            headers=_headers(),
        )

    assert response.status_code == 200
    assert response.json() == {"transcriptionId": "tx_1", "status": "processing", "creditsUsed": 1}

    submitted = vendor.submissions[0]
    assert submitted["audio_url"] == MEDIA_URL
    assert submitted["speaker_labels"] is True
    assert submitted["speakers_expected"] == 2
    assert submitted["word_boost"] == ["Kubernetes", "gRPC"]
    assert submitted["sentiment_analysis"] is True

    async with AsyncSessionLocal() as session:
        job = (await session.execute(select(TranscriptionJob))).scalar_one()
        assert job.status == "processing"
        assert job.file_name == "meeting.mp3"
        assert job.file_type == "url"
        assert job.file_size == 0
        assert job.next_check_at is not None
        assert job.check_attempts == 0
        assert job.job_metadata["source_url"] == MEDIA_URL
        assert job.job_metadata["url_transcription"] is True
        assert job.job_metadata["estimated_credits"] == 1
        # Charged at completion, not at submission.
        assert await ledger.get_balance(session, USER_ID) == 5


@pytest.mark.asyncio
async def test_transcribe_url_vendor_failure_is_500(test_db, vendor):
    await _fund(5)
    vendor.fail_submit = True
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/transcribe-url", json={"url": MEDIA_URL, "user_id": USER_ID}, headers=_headers()
        )

    assert response.status_code == 500
    assert "Invalid audio_url" in response.json()["detail"]


@pytest.mark.asyncio
async def test_pull_completes_job_and_charges_actual_duration(test_db, vendor):
    await _fund(5)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        submitted = await client.post(
            "/api/transcribe-url", json={"url": MEDIA_URL, "user_id": USER_ID}, headers=_headers()
        )
        transcript_id = submitted.json()["transcriptionId"]

        pending = await client.get(f"/api/transcription/{transcript_id}", headers=_headers())
        assert pending.status_code == 200
        assert pending.json()["status"] == "queued"

        vendor.complete(transcript_id, duration=600)
        done = await client.get(f"/api/transcription/{transcript_id}", headers=_headers())
        again = await client.get(f"/api/transcription/{transcript_id}", headers=_headers())
        credits = await client.get("/api/credits", headers=_headers())

    assert done.status_code == 200
    payload = done.json()
    assert payload["status"] == "completed"
    assert payload["text"] == "Good morning everyone."
    assert payload["audio_duration"] == 600
    assert len(payload["utterances"]) == 2
    assert {s["id"] for s in payload["speakers"]} == {"A", "B"}
    assert payload["sentiment"]["overall"] == "positive"
    assert payload["metadata"]["credits_used"] == 2
    assert again.status_code == 200
    assert credits.json()["credits_balance"] == 3
    assert credits.json()["usage_count"] == 1


@pytest.mark.asyncio
async def test_pull_removes_duplicate_processing_rows(test_db, vendor):
    await _fund(5)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        await client.post(
            "/api/transcribe-url", json={"url": MEDIA_URL, "user_id": USER_ID}, headers=_headers()
        )
        await client.post(
            "/api/transcribe-url", json={"url": MEDIA_URL, "user_id": USER_ID}, headers=_headers()
        )
        response = await client.get("/api/transcription/tx_2", headers=_headers())

    assert response.status_code == 200
    async with AsyncSessionLocal() as session:
        rows = (await session.execute(select(TranscriptionJob.transcript_id))).scalars().all()
        assert rows == ["tx_2"]


@pytest.mark.asyncio
async def test_pull_is_scoped_to_owner(test_db, vendor):
    await _fund(5)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        await client.post(
            "/api/transcribe-url", json={"url": MEDIA_URL, "user_id": USER_ID}, headers=_headers()
        )
        foreign = await client.get("/api/transcription/tx_1", headers=_headers(OTHER_ID))
        unknown = await client.get("/api/transcription/tx_404", headers=_headers())
        anonymous = await client.get("/api/transcription/tx_1")

    assert foreign.status_code == 404
    assert unknown.status_code == 404
    assert anonymous.status_code == 401


@pytest.mark.asyncio
async def test_vendor_callback_completes_job(test_db, vendor):
    await _fund(5)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        await client.post(
            "/api/transcribe-url", json={"url": MEDIA_URL, "user_id": USER_ID}, headers=_headers()
        )
        vendor.complete("tx_1", duration=100)
        ack = await client.post(
            "/api/transcription/webhook", json={"transcript_id": "tx_1", "status": "completed"}
        )
        ignored = await client.post(
            "/api/transcription/webhook", json={"transcript_id": "tx_9", "status": "completed"}
        )

    assert ack.status_code == 200
    assert ack.json()["message"] == "Transcription completed"
    assert ignored.json()["message"] == "Unknown transcript ignored"
    async with AsyncSessionLocal() as session:
        job = (await session.execute(select(TranscriptionJob))).scalar_one()
        assert job.status == "completed"
        assert await ledger.get_balance(session, USER_ID) == 4


@pytest.mark.asyncio
async def test_list_transcriptions(test_db, vendor):
    await _fund(5)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        await client.post(
            "/api/transcribe-url", json={"url": MEDIA_URL, "user_id": USER_ID}, headers=_headers()
        )
        await client.post(
            "/api/transcribe-url",
            json={"url": "https://cdn.example.com/interview.wav", "user_id": USER_ID},
            headers=_headers(),
        )
        listing = await client.get("/api/transcriptions", headers=_headers())
        filtered = await client.get(
            "/api/transcriptions", params={"status": "completed"}, headers=_headers()
        )
        other = await client.get("/api/transcriptions", headers=_headers(OTHER_ID))

    assert listing.status_code == 200
    data = listing.json()
    assert data["total"] == 2
    assert {item["file_name"] for item in data["items"]} == {"meeting.mp3", "interview.wav"}
    assert data["items"][0]["metadata"]["url_transcription"] is True
    assert filtered.json()["total"] == 0
    assert other.json()["total"] == 0


@pytest.mark.asyncio
async def test_transcribe_upload(test_db, vendor):
    await _fund(5)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/transcribe",
            files={"file": ("standup.mp3", b"ID3fake-audio", "audio/mpeg")},
            data={"speakers_expected": "3", "custom_vocabulary": "Jira, Confluence"},
            headers=_headers(),
        )

    assert response.status_code == 200
    assert response.json()["transcriptionId"] == "tx_1"
    assert vendor.uploads == [b"ID3fake-audio"]
    assert vendor.submissions[0]["audio_url"] == "https://cdn.assemblyai.com/upload/abc"
    assert vendor.submissions[0]["speakers_expected"] == 3
    assert vendor.submissions[0]["word_boost"] == ["Jira", "Confluence"]

    async with AsyncSessionLocal() as session:
        job = (await session.execute(select(TranscriptionJob))).scalar_one()
        assert job.file_name == "standup.mp3"
        assert job.file_type == "audio/mpeg"
        assert job.file_size == len(b"ID3fake-audio")
        assert job.job_metadata["direct_upload"] is True


@pytest.mark.asyncio
async def test_transcribe_upload_rejects_unsupported_type(test_db, vendor):
    await _fund(5)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/transcribe",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            headers=_headers(),
        )

    assert response.status_code == 400
    assert vendor.uploads == []


@pytest.mark.asyncio
async def test_transcribe_upload_checks_credits_before_upload(test_db, vendor):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/api/transcribe",
            files={"file": ("standup.mp3", b"ID3fake-audio", "audio/mpeg")},
            headers=_headers(),
        )

    assert response.status_code == 403
    assert vendor.uploads == []


@pytest.mark.asyncio
async def test_list_transcriptions_rejects_unknown_status(test_db, vendor):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get(
            "/api/transcriptions", params={"status": "bogus"}, headers=_headers()
        )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_manual_deduct_does_not_cap_completion_charge(test_db, vendor):
    await _fund(20)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        await client.post(
            "/api/transcribe-url", json={"url": MEDIA_URL, "user_id": USER_ID}, headers=_headers()
        )
        listing = await client.get("/api/transcriptions", headers=_headers())
        job_id = listing.json()["items"][0]["id"]

        deducted = await client.post(
            "/api/credits",
            json={"action": "deduct", "durationInSeconds": 1, "transcriptionId": job_id},
            headers=_headers(),
        )
        assert deducted.json() == {"success": True, "creditsDeducted": 1}

        vendor.complete("tx_1", duration=3600)
        done = await client.get("/api/transcription/tx_1", headers=_headers())
        credits = await client.get("/api/credits", headers=_headers())

    assert done.json()["status"] == "completed"
    assert credits.json()["credits_balance"] == 10
    assert credits.json()["total_credits_used"] == 10
