"""
Tolerant parsing of model responses.

Models sometimes wrap the JSON payload in markdown code fences or surround it
with prose. The parser extracts the outermost balanced ``{...}`` span and parses
only that. A response without a usable object degrades to an empty segment
list instead of raising.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from ..server.models import TranscriptionSegment

logger = logging.getLogger(__name__)


def parse_json_response(text: Optional[str]) -> Dict[str, Any]:
    """
    Extract the transcription object from raw model output.

    Args:
        text: Raw response text, possibly fenced or with surrounding prose

    Returns:
        Dictionary with a ``segments`` list of segment dictionaries
    """
    if not text:
        return {"segments": []}

    for candidate in _object_candidates(text):
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            segments = data.get("segments")
            if not isinstance(segments, list):
                segments = []
            return {**data, "segments": [s for s in segments if isinstance(s, dict)]}

    logger.error(f"Failed to parse JSON response ({len(text)} chars), using empty segment list")
    return {"segments": []}


def parse_segments(text: Optional[str]) -> List[TranscriptionSegment]:
    """Parse raw model output straight into segment models."""
    return [TranscriptionSegment.from_dict(s) for s in parse_json_response(text)["segments"]]


def _object_candidates(text: str) -> List[str]:
    candidates = []

    balanced = _outermost_object(text)
    if balanced is not None:
        candidates.append(balanced)

    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        span = text[first : last + 1]
        if span not in candidates:
            candidates.append(span)

    return candidates


def _outermost_object(text: str) -> Optional[str]:
    """Return the balanced brace span starting at the first '{', skipping braces inside strings."""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    return None
