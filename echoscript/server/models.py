"""
Data models for transcription jobs.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class JobStatus(Enum):
    """Overall job status."""

    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


class Emotion(Enum):
    """Emotion labels the model may attach to a speaker turn."""

    HAPPY = "Happy"
    SAD = "Sad"
    ANGRY = "Angry"
    NEUTRAL = "Neutral"

    @classmethod
    def parse(cls, value: Any) -> Optional["Emotion"]:
        """Map a raw label to an Emotion, or None when it is missing or unknown."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        for emotion in cls:
            if emotion.value.lower() == value.strip().lower():
                return emotion
        return None


@dataclass
class TranscriptionSegment:
    """A single speaker turn."""

    speaker: str
    timestamp: str
    original_transcript: str
    semantic_correction: str
    emotion: Optional[Emotion] = None
    language: Optional[str] = None

    def to_dict(self, include_original: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {"speaker": self.speaker, "timestamp": self.timestamp}
        if include_original:
            data["original_transcript"] = self.original_transcript
        data["semantic_correction"] = self.semantic_correction
        data["emotion"] = self.emotion.value if self.emotion else None
        if self.language is not None:
            data["language"] = self.language
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptionSegment":
        language = data.get("language")
        return cls(
            speaker=_as_text(data.get("speaker")),
            timestamp=_as_text(data.get("timestamp")),
            original_transcript=_as_text(data.get("original_transcript")),
            semantic_correction=_as_text(data.get("semantic_correction")),
            emotion=Emotion.parse(data.get("emotion")),
            language=language if isinstance(language, str) else None,
        )


@dataclass
class TranscriptionResponse:
    """Aggregate result of a job: summary plus chronologically ordered segments."""

    summary: str = ""
    segments: List[TranscriptionSegment] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Full export, including verbatim text."""
        return {"summary": self.summary, "segments": [s.to_dict() for s in self.segments]}

    def to_clean_dict(self) -> Dict[str, Any]:
        """Clean export: summary plus segments without the verbatim transcript."""
        return {"summary": self.summary, "segments": [s.to_dict(include_original=False) for s in self.segments]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptionResponse":
        segments = data.get("segments") or []
        return cls(
            summary=_as_text(data.get("summary")),
            segments=[TranscriptionSegment.from_dict(s) for s in segments if isinstance(s, dict)],
        )


@dataclass
class Job:
    """Unit of work and its lifecycle record."""

    id: str
    file_name: str
    created_at: datetime
    status: JobStatus = JobStatus.PROCESSING
    result: Optional[TranscriptionResponse] = None
    duration: Optional[float] = None
    error: Optional[str] = None
    progress: Optional[float] = None
    mime_type: Optional[str] = None
    updated_at: Optional[datetime] = None

    def evolve(self, **changes: Any) -> "Job":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "status": self.status.value,
            "result": self.result.to_dict() if self.result is not None else None,
            "duration": self.duration,
            "error": self.error,
            "progress": self.progress,
            "mime_type": self.mime_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        result = data.get("result")
        updated_at = data.get("updated_at")
        return cls(
            id=data["id"],
            file_name=data.get("file_name", ""),
            created_at=datetime.fromisoformat(data["created_at"]),
            status=JobStatus(data.get("status", JobStatus.PROCESSING.value)),
            result=TranscriptionResponse.from_dict(result) if isinstance(result, dict) else None,
            duration=data.get("duration"),
            error=data.get("error"),
            progress=data.get("progress"),
            mime_type=data.get("mime_type"),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)
