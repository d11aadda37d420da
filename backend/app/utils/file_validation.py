"""Validation for media uploads forwarded to the transcription vendor."""

from pathlib import Path
from typing import Optional, Tuple

from fastapi import HTTPException, UploadFile, status

from app.config import settings

# Allowed MIME types for media files
ALLOWED_MIME_TYPES = {
    # Audio formats
    "audio/mpeg",
    "audio/mp3",
    "audio/wav",
    "audio/x-wav",
    "audio/wave",
    "audio/flac",
    "audio/x-flac",
    "audio/aac",
    "audio/ogg",
    "audio/opus",
    "audio/webm",
    "audio/m4a",
    "audio/x-m4a",
    "audio/mp4",
    # Video formats
    "video/mp4",
    "video/mpeg",
    "video/x-msvideo",
    "video/quicktime",
    "video/x-matroska",
    "video/webm",
    "video/ogg",
    "video/3gpp",
}

EXTENSION_MIME_MAP = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".flac": "audio/flac",
    ".aac": "audio/aac",
    ".ogg": "audio/ogg",
    ".opus": "audio/opus",
    ".m4a": "audio/m4a",
    ".mp4": "video/mp4",
    ".mpeg": "video/mpeg",
    ".avi": "video/x-msvideo",
    ".mov": "video/quicktime",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".3gp": "video/3gpp",
}

CHUNK_SIZE = 1024 * 1024


def detect_mime_type(filename: Optional[str], content_type: Optional[str]) -> Optional[str]:
    """Declared content type when it is a known media type, else the extension's."""
    declared = (content_type or "").split(";")[0].strip().lower()
    if declared in ALLOWED_MIME_TYPES:
        return declared
    return EXTENSION_MIME_MAP.get(Path(filename or "").suffix.lower())


def validate_filename(filename: Optional[str]) -> str:
    if not filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing filename")
    if any(token in filename for token in ("../", "..\\", "\0", "/")):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid filename: path traversal attempt detected",
        )
    name = Path(filename).name
    if not name or name in (".", ".."):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid filename")
    return name


async def read_media_upload(
    file: UploadFile, max_bytes: Optional[int] = None
) -> Tuple[str, str, bytes]:
    """
    Validate an uploaded media file and read it into memory.

    Args:
        file: Uploaded file from FastAPI
        max_bytes: Size limit; defaults to ``settings.max_upload_bytes``

    Returns:
        Tuple of (safe_filename, mime_type, content)

    Raises:
        HTTPException: 400 if the file is empty, unnamed or of an unsupported
            type; 413 if it exceeds the size limit
    """
    limit = max_bytes if max_bytes is not None else settings.max_upload_bytes
    filename = validate_filename(file.filename)

    mime_type = detect_mime_type(filename, file.content_type)
    if mime_type is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                "File type not supported. Supported formats: audio (MP3, WAV, FLAC, AAC, "
                "OGG, Opus, M4A) and video (MP4, MOV, MKV, WebM, etc.)"
            ),
        )

    content = bytearray()
    while True:
        chunk = await file.read(CHUNK_SIZE)
        if not chunk:
            break
        content.extend(chunk)
        if len(content) > limit:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File too large. Maximum size is {limit} bytes",
            )

    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file uploaded")

    return filename, mime_type, bytes(content)
