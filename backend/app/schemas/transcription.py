"""Pydantic schemas for transcription jobs."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class DiarizationOptions(BaseModel):
    speakers_expected: Optional[int] = Field(default=None, ge=1, le=10)
    summary_type: Optional[str] = None
    summary_model: Optional[str] = None


class TranscriptionMetadata(BaseModel):
    """Typed view of ``transcriptions.metadata``.

    Request-time options are written at submission; the counts are merged in
    on completion. Unknown keys already present in a row are preserved.
    """

    model_config = ConfigDict(extra="allow")

    source_url: Optional[str] = None
    diarization_options: Optional[DiarizationOptions] = None
    custom_vocabulary: Optional[List[str]] = None
    sentiment_analysis: bool = False
    duration_seconds: Optional[float] = None
    estimated_credits: Optional[int] = None
    url_transcription: bool = False
    direct_upload: bool = False
    credits_used: Optional[int] = None
    utterances_count: Optional[int] = None
    words_count: Optional[int] = None
    speaker_count: Optional[int] = None

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class TranscribeUrlRequest(BaseModel):
    """Body of ``POST /transcribe-url``."""

    url: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    diarization_options: Optional[DiarizationOptions] = None
    custom_vocabulary: Optional[List[str]] = None
    sentiment_analysis: bool = False
    duration_seconds: Optional[float] = Field(default=None, gt=0)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not (v.startswith("http://") or v.startswith("https://")):
            raise ValueError("Media URL must be an http(s) URL")
        return v


class TranscriptionSubmittedResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    transcription_id: str
    status: str
    credits_used: int


class TranscriptionJobResponse(BaseModel):
    """Local job row as returned to the owner."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    transcript_id: Optional[str] = None
    status: str
    file_name: str
    file_size: int = 0
    file_type: Optional[str] = None
    duration: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="job_metadata")
    error_message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class TranscriptionListResponse(BaseModel):
    total: int
    limit: int
    offset: int
    items: List[TranscriptionJobResponse]


class SentimentSummary(BaseModel):
    overall: str = "neutral"
    segments: List[Dict[str, Any]] = []
    summary: str = "No sentiment data available"


class TranscriptPayload(BaseModel):
    """Flattened vendor transcript returned by ``GET /transcription/{id}``."""

    id: str
    transcription_id: str
    status: str
    text: Optional[str] = None
    audio_duration: Optional[float] = None
    words: List[Dict[str, Any]] = []
    utterances: List[Dict[str, Any]] = []
    speakers: List[Dict[str, Any]] = []
    entities: List[Dict[str, Any]] = []
    sentiment: SentimentSummary = Field(default_factory=SentimentSummary)
    error: Optional[str] = None
    metadata: Dict[str, Any] = {}


class VendorWebhookPayload(BaseModel):
    """Completion callback posted by the transcription vendor."""

    transcript_id: str
    status: str
