"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class TunefetchError(Exception):
    """Base exception for all application-specific errors."""

    status_code = 500


class ValidationError(TunefetchError):
    """Raised when a request is malformed, before any job is created."""

    status_code = 400

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message)
        self.errors = errors or []


class ConfigurationError(TunefetchError):
    """Raised for issues related to configuration loading or validation."""


class ExtractorError(TunefetchError):
    """Raised when a one-shot query against the extraction binary fails."""


class ExtractionFailed(TunefetchError):
    """Raised when the extraction subprocess exits with a non-zero code."""

    def __init__(
        self, exit_code: int | None, diagnostics: str = "", message: str | None = None
    ):
        super().__init__(message or f"exit code {exit_code}")
        self.exit_code = exit_code
        self.diagnostics = diagnostics


class OutputMissing(TunefetchError):
    """Raised when the extractor reported success but wrote no output file."""


class OutputEmpty(TunefetchError):
    """Raised when the extractor reported success but the output file is empty."""


class JobCancelledError(TunefetchError):
    """Raised when a job's extraction was terminated on request."""


class NoItemsFound(TunefetchError):
    """Raised when a playlist URL enumerates to zero items."""

    status_code = 400


class MetadataWriteFailed(TunefetchError):
    """Raised when tags could not be written and the original file was restored."""


class ArchiveError(TunefetchError):
    """Raised when packaging a playlist's tracks into an archive fails."""


class JobNotFoundError(TunefetchError):
    """Raised when a registry operation references an unknown job id."""

    status_code = 404


class InvalidTransitionError(TunefetchError):
    """Raised when a job update would leave a terminal state."""

    status_code = 409


class ArtifactNotFound(TunefetchError):
    """Raised when an artifact is requested for an unknown job."""

    status_code = 404


class ArtifactNotReady(TunefetchError):
    """Raised when an artifact is requested before its job has completed."""

    status_code = 404


class ArtifactFileMissing(TunefetchError):
    """Raised when a completed job's output file is no longer on disk."""

    status_code = 404
