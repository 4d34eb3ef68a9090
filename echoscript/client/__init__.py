"""
Client package for the transcription API server: uploads, job polling and exports.
"""

from .api_client import APIClient, upload_and_process

__all__ = ["APIClient", "upload_and_process"]
