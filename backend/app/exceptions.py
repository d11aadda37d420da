"""Errors raised when a third-party service call fails."""


class UpstreamServiceError(RuntimeError):
    """A vendor API returned a non-2xx response or could not be reached.

    Surfaced to clients as HTTP 500 carrying the message; never retried.
    """

    service = "upstream"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AssemblyAIError(UpstreamServiceError):
    service = "assemblyai"


class GoogleDriveError(UpstreamServiceError):
    service = "google_drive"


class MissingTokenError(GoogleDriveError):
    """The integration has no usable OAuth token for the requested operation."""
