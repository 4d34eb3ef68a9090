import base64
import json
from types import SimpleNamespace

import pytest

from echoscript.inference import client as client_module
from echoscript.inference.client import InferenceClient, transcript_text
from echoscript.inference.prompts import (
    CONTEXT_PREFIX,
    NO_SUMMARY_TEXT,
    SUMMARY_CHAR_BUDGET,
    SUMMARY_FALLBACK_TEXT,
    TRANSCRIPTION_SYSTEM,
)
from echoscript.server.models import TranscriptionSegment

from .conftest import CREDENTIAL


class FakeOpenAIBackend:
    """Records SDK construction and chat completion requests."""

    def __init__(self):
        self.content = json.dumps({"segments": []})
        self.error = None
        self.response = None
        self.client_kwargs = []
        self.requests = []

    def build(self, **kwargs):
        self.client_kwargs.append(kwargs)
        return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=self.create)))

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        if self.response is not None:
            return self.response
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.fixture
def backend(monkeypatch):
    backend = FakeOpenAIBackend()
    monkeypatch.setattr(client_module, "OpenAI", backend.build)
    return backend


@pytest.fixture
def inference():
    return InferenceClient(model="test-model", base_url="http://inference.local/v1/", timeout=5)


def _prompt_text(request):
    return request["messages"][0]["content"][1]["text"]


def test_transcribe_chunk_request_shape(backend, inference):
    backend.content = json.dumps(
        {
            "segments": [
                {
                    "speaker": "Speaker 1",
                    "timestamp": "00:00 - 00:03",
                    "original_transcript": "hello",
                    "semantic_correction": "Hello.",
                    "emotion": "Happy",
                }
            ]
        }
    )

    result = inference.transcribe_chunk(CREDENTIAL, b"RIFF-bytes", "audio/wav")

    assert backend.client_kwargs == [
        {"api_key": CREDENTIAL, "base_url": "http://inference.local/v1/", "timeout": 5.0, "max_retries": 0}
    ]
    request = backend.requests[0]
    assert request["model"] == "test-model"
    assert request["temperature"] == 0.3
    assert request["response_format"]["type"] == "json_schema"
    assert request["response_format"]["json_schema"]["strict"] is True

    audio_part = request["messages"][0]["content"][0]
    assert audio_part["type"] == "input_audio"
    assert audio_part["input_audio"]["format"] == "wav"
    assert base64.b64decode(audio_part["input_audio"]["data"]) == b"RIFF-bytes"
    assert _prompt_text(request) == TRANSCRIPTION_SYSTEM

    assert [s.original_transcript for s in result["segments"]] == ["hello"]


def test_transcribe_chunk_appends_context(backend, inference):
    inference.transcribe_chunk(CREDENTIAL, b"x", "audio/wav", previous_context="see you tomorrow")

    assert _prompt_text(backend.requests[0]) == TRANSCRIPTION_SYSTEM + CONTEXT_PREFIX + '"see you tomorrow"'


def test_transcribe_chunk_empty_context_is_omitted(backend, inference):
    inference.transcribe_chunk(CREDENTIAL, b"x", "audio/mpeg", previous_context="")

    request = backend.requests[0]
    assert _prompt_text(request) == TRANSCRIPTION_SYSTEM
    assert request["messages"][0]["content"][0]["input_audio"]["format"] == "mp3"


def test_transcribe_chunk_malformed_response_gives_no_segments(backend, inference):
    backend.content = "Sorry, the audio was silent."

    assert inference.transcribe_chunk(CREDENTIAL, b"x", "audio/wav") == {"segments": []}


def test_transcribe_chunk_propagates_api_errors(backend, inference):
    backend.error = RuntimeError("503 overloaded")

    with pytest.raises(RuntimeError, match="overloaded"):
        inference.transcribe_chunk(CREDENTIAL, b"x", "audio/wav")


def test_summary_truncates_transcript(backend, inference):
    backend.content = "  Decisions were made.  "

    summary = inference.generate_summary(CREDENTIAL, "Ω" * (SUMMARY_CHAR_BUDGET + 500))

    assert summary == "Decisions were made."
    request = backend.requests[0]
    assert request["temperature"] == 0.5
    assert request["messages"][0]["content"].count("Ω") == SUMMARY_CHAR_BUDGET


def test_summary_failure_returns_fallback(backend, inference):
    backend.error = ConnectionError("network down")

    assert inference.generate_summary(CREDENTIAL, "Speaker 1: hi") == SUMMARY_FALLBACK_TEXT


def test_empty_summary_response(backend, inference):
    backend.content = None

    assert inference.generate_summary(CREDENTIAL, "Speaker 1: hi") == NO_SUMMARY_TEXT


def test_summary_choice_without_message(backend, inference):
    backend.response = SimpleNamespace(choices=[SimpleNamespace(message=None)])

    assert inference.generate_summary(CREDENTIAL, "Speaker 1: hi") == NO_SUMMARY_TEXT


def test_summary_unreadable_response_returns_fallback(backend, inference):
    backend.response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=["not", "text"]))])

    assert inference.generate_summary(CREDENTIAL, "Speaker 1: hi") == SUMMARY_FALLBACK_TEXT


def test_validate_credential(backend, inference):
    assert inference.validate_credential(CREDENTIAL) is True

    backend.error = PermissionError("API key not valid")
    assert inference.validate_credential(CREDENTIAL) is False


def test_transcript_text():
    segments = [
        TranscriptionSegment("Speaker 1", "00:00 - 00:02", "hi there", "Hi there."),
        TranscriptionSegment("Speaker 2", "00:02 - 00:04", "hello", "Hello."),
    ]

    assert transcript_text(segments) == "Speaker 1: hi there\nSpeaker 2: hello"
