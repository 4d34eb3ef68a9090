"""
EchoScript: chunked, speaker-attributed transcription jobs backed by a remote
multimodal inference API.
"""

__version__ = "0.1.0"
