"""
Exception hierarchy for the transcription pipeline.

The audio preparer and the inference client only raise these; the job
processor is the single place that turns them into persisted job state.
"""

from typing import Optional


class EchoScriptError(Exception):
    """Base class for all pipeline errors."""


class DecodeError(EchoScriptError):
    """Raised when audio cannot be decoded (unsupported container, corrupt or empty data)."""


class AudioMissing(EchoScriptError):
    """Raised when a job's raw audio is not present in the blob store."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__("Audio file not found in storage.")


class ChunkTranscriptionFailed(EchoScriptError):
    """Raised when a chunk still fails after every retry attempt."""

    def __init__(self, chunk_index: int, attempts: int, last_error: Optional[BaseException] = None):
        self.chunk_index = chunk_index
        self.attempts = attempts
        self.last_error = last_error
        message = f"Failed to transcribe chunk {chunk_index} after {attempts} attempts."
        if last_error is not None:
            message += f" Last error: {last_error}"
        super().__init__(message)


class SummaryFailed(EchoScriptError):
    """Raised by the summary request; converted to fallback text by the inference client."""


class JobCancelled(EchoScriptError):
    """Raised between chunks when a job's cancellation token is set."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__("Cancelled by user.")


class JobInterrupted(EchoScriptError):
    """Raised between chunks when the server is shutting down."""

    MESSAGE = "Interrupted (process stopped before the job finished). Retry to resume."

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(self.MESSAGE)


class JobAlreadyRunning(EchoScriptError):
    """Raised when a second run is requested for a job that is already in flight."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} is already running")
