"""
Audio preparation for chunked transcription.

This module turns an uploaded recording into the payloads that are sent to the
inference API. It is a pure, deterministic pipeline: the same input bytes
always yield the same chunks, which is what makes a full rerun of a failed job
consistent.

Key features:
- Decoding of any container pydub/ffmpeg understands (WAV is read natively)
- Downmix to mono and resampling to 16 kHz
- Fixed-duration, non-overlapping chunking
- Canonical 44-byte-header WAV encoding of a single chunk
"""

import io
import wave
from typing import List

import numpy as np
from pydub import AudioSegment

from ..errors import DecodeError

TARGET_SAMPLE_RATE = 16000  # Hz
CHUNK_DURATION_SECONDS = 600  # 10 minutes per chunk
WAV_MIME_TYPE = "audio/wav"

_PCM_SAMPLE_WIDTH = 2  # bytes, 16-bit
_PCM_NEGATIVE_SCALE = 32768.0
_PCM_POSITIVE_SCALE = 32767.0


def normalize(raw_audio: bytes, target_rate: int = TARGET_SAMPLE_RATE) -> np.ndarray:
    """
    Decode raw audio bytes into mono float samples at the target sample rate.

    Args:
        raw_audio: Bytes of any supported audio/video container
        target_rate: Output sample rate in Hz (default: 16000)

    Returns:
        float32 numpy array in [-1, 1]

    Raises:
        DecodeError: If the data is empty, unsupported or corrupt
    """
    if not raw_audio:
        raise DecodeError("Audio file is empty.")

    try:
        if _looks_like_wav(raw_audio):
            segment = AudioSegment.from_file(io.BytesIO(raw_audio), format="wav")
        else:
            segment = AudioSegment.from_file(io.BytesIO(raw_audio))
    except Exception as e:
        raise DecodeError(f"Audio file is corrupt or in an unsupported format: {e}") from e

    audio = _to_unit_range(np.array(segment.get_array_of_samples()), segment.sample_width)

    # Mix down to mono
    if segment.channels > 1:
        usable = len(audio) - len(audio) % segment.channels
        audio = audio[:usable].reshape(-1, segment.channels).mean(axis=1)

    if segment.frame_rate != target_rate and len(audio) > 0:
        audio = _resample(audio, segment.frame_rate, target_rate)

    return audio.astype(np.float32)


def split(samples: np.ndarray, chunk_seconds: float = CHUNK_DURATION_SECONDS,
          sample_rate: int = TARGET_SAMPLE_RATE) -> List[np.ndarray]:
    """
    Partition samples into contiguous, non-overlapping windows.

    Every window holds exactly ``chunk_seconds`` of audio except possibly the
    last one. Empty input yields no chunks.
    """
    samples_per_chunk = int(chunk_seconds * sample_rate)
    if samples_per_chunk <= 0:
        raise ValueError(f"Chunk duration must be positive, got {chunk_seconds}")

    return [samples[start : start + samples_per_chunk] for start in range(0, len(samples), samples_per_chunk)]


def encode(samples: np.ndarray, sample_rate: int = TARGET_SAMPLE_RATE) -> bytes:
    """
    Serialize mono samples as a 16-bit PCM WAV payload.

    Amplitudes outside [-1, 1] are clipped before quantization.

    Args:
        samples: Audio array (float, nominally in [-1, 1])
        sample_rate: Sample rate written into the header

    Returns:
        WAV bytes (44-byte header followed by little-endian PCM data)
    """
    clipped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * _PCM_NEGATIVE_SCALE, clipped * _PCM_POSITIVE_SCALE)
    audio_int = scaled.astype(np.int16)

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(_PCM_SAMPLE_WIDTH)
        wf.setframerate(sample_rate)
        wf.writeframes(audio_int.tobytes())
    return buffer.getvalue()


def duration_seconds(samples: np.ndarray, sample_rate: int = TARGET_SAMPLE_RATE) -> float:
    """Duration of a sample buffer in seconds."""
    return len(samples) / float(sample_rate)


def chunk_offset(index: int, chunk_seconds: float = CHUNK_DURATION_SECONDS) -> float:
    """Start time of chunk ``index`` within the whole recording, in seconds."""
    return index * chunk_seconds


def _looks_like_wav(data: bytes) -> bool:
    return len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WAVE"


def _to_unit_range(samples: np.ndarray, sample_width: int) -> np.ndarray:
    """Scale signed integer samples into [-1, 1], mirroring ``encode``'s quantization."""
    full_scale = float(1 << (8 * sample_width - 1))
    audio = samples.astype(np.float64)
    return np.where(audio < 0, audio / full_scale, audio / (full_scale - 1))


def _resample(audio: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """Linear-interpolation resampling."""
    target_length = int(round(len(audio) * target_rate / float(source_rate)))
    if target_length <= 0:
        return np.zeros(0, dtype=audio.dtype)
    return np.interp(
        np.linspace(0, len(audio) - 1, target_length),
        np.arange(len(audio)),
        audio,
    )
