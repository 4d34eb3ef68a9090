"""
Transcription job server package.

This package provides job persistence, the chunked transcription processor,
a thread-pool processing queue and a Flask API on top of them. The Flask app
lives in ``echoscript.server.app`` and is built with ``create_app``.
"""

from .job_store import AudioBlobStore, JobStore
from .models import Emotion, Job, JobStatus, TranscriptionResponse, TranscriptionSegment

__all__ = [
    "AudioBlobStore",
    "Emotion",
    "Job",
    "JobStatus",
    "JobStore",
    "TranscriptionResponse",
    "TranscriptionSegment",
]
