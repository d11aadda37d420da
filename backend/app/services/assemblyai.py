"""AssemblyAI REST client and transcript post-processing helpers."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.exceptions import AssemblyAIError
from app.logging_config import get_logger

logger = get_logger(__name__)

TERMINAL_STATUSES = {"completed", "error"}


class AssemblyAIClient:
    """Thin async wrapper over the v2 transcript API.

    One instance is created per process (see ``app.main.lifespan``) and shared
    through the ``get_assemblyai_client`` dependency.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.assemblyai.com/v2",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"authorization": api_key},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls) -> "AssemblyAIClient":
        return cls(
            settings.assemblyai_api_key,
            base_url=settings.assemblyai_base_url,
            timeout=settings.vendor_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, operation: str, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            resp = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("AssemblyAI %s failed: %s", operation, exc)
            raise AssemblyAIError(f"Failed to {operation}: {exc}") from exc

        if resp.status_code >= 400:
            message = _error_message(resp)
            logger.error("AssemblyAI %s returned %s: %s", operation, resp.status_code, message)
            raise AssemblyAIError(f"Failed to {operation}: {message}", status_code=resp.status_code)
        return resp.json()

    async def upload(self, content: bytes) -> str:
        """Upload raw media bytes; returns the private URL to transcribe from."""
        data = await self._request(
            "upload media",
            "POST",
            "/upload",
            content=content,
            headers={"content-type": "application/octet-stream"},
        )
        upload_url = data.get("upload_url")
        if not upload_url:
            raise AssemblyAIError("Failed to upload media: no upload_url in response")
        return upload_url

    async def submit(
        self,
        audio_url: str,
        *,
        speaker_labels: bool = False,
        speakers_expected: Optional[int] = None,
        word_boost: Optional[List[str]] = None,
        sentiment_analysis: bool = False,
        webhook_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Queue a transcript; returns the vendor record (status ``queued``)."""
        payload: Dict[str, Any] = {
            "audio_url": audio_url,
            "punctuate": True,
            "format_text": True,
            "speaker_labels": speaker_labels,
        }
        if speakers_expected:
            payload["speakers_expected"] = speakers_expected
        if word_boost:
            payload["word_boost"] = word_boost
            payload["boost_param"] = "high"
        if sentiment_analysis:
            payload["sentiment_analysis"] = True
        if webhook_url:
            payload["webhook_url"] = webhook_url

        transcript = await self._request("submit transcript", "POST", "/transcript", json=payload)
        logger.info("Submitted transcript %s for %s", transcript.get("id"), audio_url)
        return transcript

    async def get(self, transcript_id: str) -> Dict[str, Any]:
        return await self._request("get transcript", "GET", f"/transcript/{transcript_id}")


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return resp.reason_phrase or str(resp.status_code)


def extract_utterances_from_words(words: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Group consecutive words by speaker label into utterances.

    Words without a speaker label are skipped.
    """
    utterances: List[Dict[str, Any]] = []
    current: Optional[Dict[str, Any]] = None

    for word in words or []:
        speaker = word.get("speaker")
        if not speaker:
            continue
        if current is None or current["speaker"] != speaker:
            if current is not None:
                utterances.append(current)
            current = {
                "id": f"utterance_{len(utterances) + 1}",
                "speaker": speaker,
                "start": word.get("start"),
                "end": word.get("end"),
                "text": word.get("text", ""),
                "words": [word],
            }
        else:
            current["text"] = f"{current['text']} {word.get('text', '')}"
            current["end"] = word.get("end")
            current["words"].append(word)

    if current is not None:
        utterances.append(current)
    return utterances


def utterances_for(transcript: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Vendor utterances when present, otherwise rebuilt from labelled words."""
    utterances = transcript.get("utterances") or []
    if utterances:
        return utterances
    return extract_utterances_from_words(transcript.get("words") or [])


def count_speakers(utterances: List[Dict[str, Any]]) -> int:
    """Number of distinct speaker labels observed across utterances."""
    return len({u.get("speaker") for u in utterances if u.get("speaker")})


def summarize_speakers(utterances: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    speakers: Dict[str, Dict[str, Any]] = {}
    for utterance in utterances:
        label = utterance.get("speaker")
        if not label:
            continue
        entry = speakers.setdefault(
            label, {"id": label, "utterances": 0, "wordCount": 0, "totalDuration": 0}
        )
        entry["utterances"] += 1
        entry["wordCount"] += len(utterance.get("words") or [])
        start, end = utterance.get("start"), utterance.get("end")
        if start is not None and end is not None:
            entry["totalDuration"] += end - start
    return list(speakers.values())


def process_sentiment(results: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
    """Overall sentiment, the raw segments and a one-line summary."""
    if not results:
        return {"overall": "neutral", "segments": [], "summary": "No sentiment data available"}

    counts = {"positive": 0, "negative": 0, "neutral": 0}
    for item in results:
        label = str(item.get("sentiment", "")).lower()
        if label in ("positive", "negative"):
            counts[label] += 1
        else:
            counts["neutral"] += 1

    overall = "neutral"
    if counts["positive"] > counts["negative"] and counts["positive"] > counts["neutral"]:
        overall = "positive"
    elif counts["negative"] > counts["positive"] and counts["negative"] > counts["neutral"]:
        overall = "negative"

    total = sum(counts.values())
    pct = {key: round(value / total * 100) for key, value in counts.items()}
    summary = (
        f"Overall sentiment is {overall}. The transcript contains {pct['positive']}% positive, "
        f"{pct['negative']}% negative, and {pct['neutral']}% neutral segments."
    )
    return {"overall": overall, "segments": results, "summary": summary}
