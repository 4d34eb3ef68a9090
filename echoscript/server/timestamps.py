"""
Offset correction of chunk-relative timestamps.

The model reports "MM:SS - MM:SS" relative to the chunk it heard. Each chunk
starts ``i * chunk_seconds`` into the recording, so both ends of the range are
shifted by that offset and reformatted. Minutes are never wrapped into hours.
"""

import re
from dataclasses import replace
from typing import List, Tuple

from .models import TranscriptionSegment

_RANGE_DELIMITER = re.compile(r"[-–—]")
_LEADING_DIGITS = re.compile(r"\s*(\d+)")


def parse_clock(value: str) -> int:
    """
    Convert "MM:SS" (or "HH:MM:SS") to total seconds.

    Each field contributes its leading digits; a field without digits counts as 0.
    """
    fields = [_leading_int(part) for part in value.split(":")]
    if len(fields) >= 3:
        hours, minutes, seconds = fields[0], fields[1], fields[2]
        return hours * 3600 + minutes * 60 + seconds
    minutes = fields[0]
    seconds = fields[1] if len(fields) > 1 else 0
    return minutes * 60 + seconds


def parse_range(timestamp: str) -> Tuple[int, int]:
    """Parse a timestamp range; a single value is treated as start = end."""
    parts = _RANGE_DELIMITER.split(timestamp or "", maxsplit=1)
    start = parse_clock(parts[0])
    end = parse_clock(parts[1]) if len(parts) > 1 else start
    return start, end


def format_clock(total_seconds: int) -> str:
    """Format seconds as zero-padded MM:SS; minutes are unbounded."""
    minutes, seconds = divmod(int(total_seconds), 60)
    return f"{minutes:02d}:{seconds:02d}"


def correct_timestamp(timestamp: str, offset_seconds: float) -> str:
    """Shift a chunk-relative range into whole-recording time."""
    start, end = parse_range(timestamp)
    offset = int(offset_seconds)
    return f"{format_clock(start + offset)} - {format_clock(end + offset)}"


def correct_segments(segments: List[TranscriptionSegment], offset_seconds: float) -> List[TranscriptionSegment]:
    """Return copies of ``segments`` with corrected timestamps, order preserved."""
    return [replace(s, timestamp=correct_timestamp(s.timestamp, offset_seconds)) for s in segments]


def _leading_int(text: str) -> int:
    match = _LEADING_DIGITS.match(text)
    return int(match.group(1)) if match else 0
