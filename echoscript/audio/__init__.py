"""
Audio preparation for chunked transcription.

Main components:
- normalize: decode any supported container into mono 16 kHz float samples
- split: partition samples into fixed-duration chunks
- encode: serialize one chunk as a 16-bit PCM WAV payload

Example usage:
    from echoscript.audio import normalize, split, encode

    samples = normalize(raw_bytes)
    payloads = [encode(chunk) for chunk in split(samples, chunk_seconds=600)]
"""

from .preparer import (
    CHUNK_DURATION_SECONDS,
    TARGET_SAMPLE_RATE,
    WAV_MIME_TYPE,
    chunk_offset,
    duration_seconds,
    encode,
    normalize,
    split,
)

__all__ = [
    "CHUNK_DURATION_SECONDS",
    "TARGET_SAMPLE_RATE",
    "WAV_MIME_TYPE",
    "chunk_offset",
    "duration_seconds",
    "encode",
    "normalize",
    "split",
]
