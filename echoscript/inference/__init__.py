"""
Remote inference: chunk transcription, summarization and credential checks.
"""

from .client import InferenceClient, transcript_text
from .parsing import parse_json_response, parse_segments

__all__ = ["InferenceClient", "transcript_text", "parse_json_response", "parse_segments"]
