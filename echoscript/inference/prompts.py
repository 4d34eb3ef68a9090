"""
Prompt text, sampling temperatures and the response schema for the inference API.
"""

from ..server.models import Emotion

TRANSCRIPTION_TEMPERATURE = 0.3
SUMMARY_TEMPERATURE = 0.5

# Upper bound on transcript characters sent to the summarizer
SUMMARY_CHAR_BUDGET = 50_000

SUMMARY_FALLBACK_TEXT = "Failed to generate summary."
NO_SUMMARY_TEXT = "No summary available."

TRANSCRIPTION_SYSTEM = """
You are an expert audio transcription assistant, specializing in Taiwan accents and dialects (Mandarin, Taiwanese/Hokkien).
Process the provided audio chunk and generate a structured transcription.

Rules:
1. Identify distinct speakers (e.g., Speaker 1, Speaker 2).
2. Provide accurate timestamps (MM:SS) relative to the start of this audio file.
3. Output BOTH "original_transcript" (verbatim, including fillers) and "semantic_correction" (polished for readability, fixing grammar/stuttering).
4. Detect emotion (Happy, Sad, Angry, Neutral).
5. Output JSON only.
"""

CONTEXT_PREFIX = "\n\nCONTEXT FROM PREVIOUS SEGMENT (Use this to maintain speaker consistency): "

SUMMARY_SYSTEM = """
Please provide a comprehensive executive summary of the following conversation.

Language Rules:
- If the content is primarily in Chinese (Traditional) or Taiwanese, the summary MUST be in Traditional Chinese.
- If it's in English, provide the summary in English.

TRANSCRIPT:
"""

VALIDATION_PROMPT = "Test connection"

_SEGMENT_FIELDS = ["speaker", "timestamp", "original_transcript", "semantic_correction", "emotion"]

TRANSCRIPTION_SCHEMA = {
    "type": "object",
    "properties": {
        "segments": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "speaker": {"type": "string"},
                    "timestamp": {"type": "string"},
                    "original_transcript": {"type": "string"},
                    "semantic_correction": {"type": "string"},
                    "emotion": {"type": "string", "enum": [e.value for e in Emotion]},
                },
                "required": _SEGMENT_FIELDS,
                "additionalProperties": False,
            },
        },
    },
    "required": ["segments"],
    "additionalProperties": False,
}


def build_transcription_prompt(previous_context: str | None = None) -> str:
    """System instruction for one chunk, with the previous chunk's last line appended when known."""
    prompt = TRANSCRIPTION_SYSTEM
    if previous_context:
        prompt += f'{CONTEXT_PREFIX}"{previous_context}"'
    return prompt


def build_summary_prompt(transcript_text: str) -> str:
    """Summary instruction followed by the transcript, truncated to the character budget."""
    return f"{SUMMARY_SYSTEM}\n{transcript_text[:SUMMARY_CHAR_BUDGET]}"
