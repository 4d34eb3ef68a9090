import numpy as np
import pytest

from echoscript.audio.preparer import encode
from echoscript.server.job_store import AudioBlobStore, JobStore
from echoscript.server.models import Emotion, TranscriptionSegment
from echoscript.server.processor import JobProcessor, RetryPolicy

CREDENTIAL = "AIza" + "k1" * 18
OTHER_CREDENTIAL = "AIza" + "k2" * 18


def make_wav(seconds: float, rate: int = 16000, freq: float = 440.0, amplitude: float = 0.5) -> bytes:
    """Sine tone as WAV bytes."""
    t = np.arange(int(seconds * rate)) / rate
    return encode(amplitude * np.sin(2 * np.pi * freq * t), sample_rate=rate)


def default_segments(chunk_index: int):
    """Two chunk-relative speaker turns per chunk."""
    return [
        TranscriptionSegment(
            speaker=f"Speaker {j + 1}",
            timestamp=f"00:0{j} - 00:0{j + 1}",
            original_transcript=f"c{chunk_index}s{j}",
            semantic_correction=f"Chunk {chunk_index}, sentence {j}.",
            emotion=Emotion.NEUTRAL,
        )
        for j in range(2)
    ]


class FakeInference:
    """
    Scripted stand-in for InferenceClient.

    Attributes:
        responses: chunk index -> segments to return (default: default_segments)
        failures: chunk index -> number of calls that raise before one succeeds
        on_call: hook called as on_call(chunk_index, attempt) before each chunk request
    """

    def __init__(self, summary: str = "A summary."):
        self.summary = summary
        self.responses = {}
        self.failures = {}
        self.on_call = None
        self.valid = True
        self.reset()

    def reset(self):
        self.chunk_index = 0
        self.calls = []
        self.summary_calls = []
        self._failed = {}

    def transcribe_chunk(self, credential, audio_payload, mime_type, previous_context=None):
        index = self.chunk_index
        attempt = self._failed.get(index, 0) + 1
        self.calls.append({"chunk": index, "attempt": attempt, "context": previous_context, "mime_type": mime_type})
        if self.on_call is not None:
            self.on_call(index, attempt)

        if self._failed.get(index, 0) < self.failures.get(index, 0):
            self._failed[index] = self._failed.get(index, 0) + 1
            raise ConnectionError(f"transient failure on chunk {index}")

        self.chunk_index += 1
        segments = self.responses.get(index)
        return {"segments": list(segments) if segments is not None else default_segments(index)}

    def generate_summary(self, credential, full_transcript_text):
        self.summary_calls.append(full_transcript_text)
        return self.summary

    def validate_credential(self, credential):
        return self.valid


@pytest.fixture
def job_store(tmp_path):
    return JobStore(str(tmp_path / "jobs"))


@pytest.fixture
def blob_store(tmp_path):
    return AudioBlobStore(str(tmp_path / "audio"))


@pytest.fixture
def fake_inference():
    return FakeInference()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def processor(job_store, blob_store, fake_inference, sleeps):
    return JobProcessor(
        job_store,
        blob_store,
        fake_inference,
        chunk_seconds=1,
        retry_policy=RetryPolicy(attempts=3, base_delay=0),
        sleep=sleeps.append,
    )
