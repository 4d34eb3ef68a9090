"""
Remote multimodal inference through an OpenAI-compatible chat completions API.

The client is stateless with respect to jobs: every call receives the user's
credential and builds its own SDK client, so one process can serve many
credentials. The default endpoint is Gemini's OpenAI-compatible API, but any
server that accepts ``input_audio`` content parts and JSON-schema response
formats works.

Key features:
- One request per audio chunk, with an optional context hint from the previous chunk
- Strict JSON schema for speaker turns, parsed tolerantly
- Summary generation that never fails the caller
- Cheap credential validation round-trip

SDK-level retries are disabled: the job processor owns the retry policy.
"""

import base64
import logging
from typing import Any, Dict, Iterable, List, Optional

from openai import OpenAI

from ..config import ConfigManager
from ..errors import SummaryFailed
from ..server.models import TranscriptionSegment
from .parsing import parse_segments
from .prompts import (
    NO_SUMMARY_TEXT,
    SUMMARY_FALLBACK_TEXT,
    SUMMARY_TEMPERATURE,
    TRANSCRIPTION_SCHEMA,
    TRANSCRIPTION_TEMPERATURE,
    VALIDATION_PROMPT,
    build_summary_prompt,
    build_transcription_prompt,
)

logger = logging.getLogger(__name__)

_AUDIO_FORMATS = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
}


class InferenceClient:
    """
    Wrapper around the two remote calls the pipeline needs.

    Transcription failures propagate so the caller can retry; summary failures
    are converted to a fixed fallback text.
    """

    def __init__(self, model: Optional[str] = None, base_url: Optional[str] = None,
                 timeout: Optional[float] = None):
        """
        Args:
            model: Model id (default: LLM_MODEL setting)
            base_url: OpenAI-compatible endpoint (default: LLM_API_BASE_URL setting)
            timeout: Per-request timeout in seconds (default: LLM_TIMEOUT_SECONDS setting)
        """
        self.model = ConfigManager.get("LLM_MODEL", model)
        self.base_url = ConfigManager.get("LLM_API_BASE_URL", base_url)
        self.timeout = ConfigManager.get_float("LLM_TIMEOUT_SECONDS", timeout)

    def _client(self, credential: str) -> OpenAI:
        return OpenAI(api_key=credential, base_url=self.base_url, timeout=self.timeout, max_retries=0)

    def transcribe_chunk(
        self,
        credential: str,
        audio_payload: bytes,
        mime_type: str,
        previous_context: Optional[str] = None,
    ) -> Dict[str, List[TranscriptionSegment]]:
        """
        Transcribe one audio chunk.

        Args:
            credential: API key for the inference endpoint
            audio_payload: Encoded audio (e.g. WAV bytes)
            mime_type: Content type of the payload
            previous_context: Verbatim text of the previous chunk's last segment

        Returns:
            Dictionary with a ``segments`` list; timestamps are chunk-relative.
            Malformed JSON yields an empty list.

        Raises:
            openai.OpenAIError: On transport or API failure
        """
        content = [
            {
                "type": "input_audio",
                "input_audio": {
                    "data": base64.b64encode(audio_payload).decode("ascii"),
                    "format": _audio_format(mime_type),
                },
            },
            {"type": "text", "text": build_transcription_prompt(previous_context)},
        ]

        response = self._client(credential).chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": content}],
            temperature=TRANSCRIPTION_TEMPERATURE,
            response_format={
                "type": "json_schema",
                "json_schema": {"name": "transcription", "strict": True, "schema": TRANSCRIPTION_SCHEMA},
            },
        )

        segments = parse_segments(_response_text(response))
        logger.debug(f"Chunk transcription returned {len(segments)} segment(s)")
        return {"segments": segments}

    def generate_summary(self, credential: str, full_transcript_text: str) -> str:
        """
        Generate an executive summary of a transcript.

        Returns:
            Summary text, or a fixed fallback string if the request fails.
        """
        try:
            return self._request_summary(credential, full_transcript_text)
        except SummaryFailed as e:
            logger.error(f"Summary generation failed: {e}")
            return SUMMARY_FALLBACK_TEXT

    def _request_summary(self, credential: str, full_transcript_text: str) -> str:
        try:
            response = self._client(credential).chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": build_summary_prompt(full_transcript_text)}],
                temperature=SUMMARY_TEMPERATURE,
            )
            summary = _response_text(response).strip()
        except Exception as e:
            raise SummaryFailed(str(e)) from e

        return summary or NO_SUMMARY_TEXT

    def validate_credential(self, credential: str) -> bool:
        """Return True if a minimal live request with this credential succeeds."""
        try:
            self._client(credential).chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": VALIDATION_PROMPT}],
            )
            return True
        except Exception as e:
            logger.warning(f"Credential validation failed: {e}")
            return False


def transcript_text(segments: Iterable[TranscriptionSegment]) -> str:
    """Build the ``speaker: original_transcript`` lines the summarizer consumes."""
    return "\n".join(f"{s.speaker}: {s.original_transcript}" for s in segments)


def _audio_format(mime_type: str) -> str:
    base = (mime_type or "").split(";", 1)[0].strip().lower()
    if base in _AUDIO_FORMATS:
        return _AUDIO_FORMATS[base]
    return base.rsplit("/", 1)[-1] or "wav"


def _response_text(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    return getattr(message, "content", None) or ""
