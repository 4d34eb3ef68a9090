"""
Client module for communicating with the transcription API server.

This module provides a simple interface for a UI or script to:
- Validate an API key (which also flags jobs interrupted by a server restart)
- Upload audio files for transcription
- Poll job status, including partial transcripts while a job runs
- Retrieve, export, retry and delete jobs
"""

import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import requests
from requests.exceptions import ConnectionError, RequestException

from ..config import ConfigManager

CREDENTIAL_HEADER = "X-API-Key"


class APIClient:
    """Client for communicating with the transcription API server."""

    def __init__(self, api_key: str, base_url: Optional[str] = None, timeout: int = 30):
        """
        Initialize the API client.

        Args:
            api_key: Credential scoping every request to one user's jobs
            base_url: Base URL of the API server (default: API_BASE_URL setting)
            timeout: Default request timeout in seconds
        """
        self.base_url = ConfigManager.get("API_BASE_URL", base_url).rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers[CREDENTIAL_HEADER] = api_key

    def health_check(self) -> Dict[str, Any]:
        """
        Check if the API server is healthy.

        Raises:
            ConnectionError: If unable to connect to the server
        """
        try:
            response = self.session.get(f"{self.base_url}/health", timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except RequestException as e:
            raise ConnectionError(f"Unable to connect to API server: {e}")

    def validate_api_key(self) -> Dict[str, Any]:
        """
        Validate the client's API key.

        Returns:
            Dictionary with ``valid`` and, when valid, ``interrupted_jobs``
        """
        try:
            response = self.session.post(f"{self.base_url}/auth/validate", timeout=self.timeout)
        except RequestException as e:
            raise RequestException(f"Failed to validate API key: {e}")

        if response.status_code == 401:
            return {"valid": False, "error": response.json().get("error", "Invalid API key")}
        response.raise_for_status()
        return response.json()

    def upload_audio_file(self, file_path: str, file_name: Optional[str] = None, timeout: int = 300) -> Dict[str, Any]:
        """
        Upload an audio file for transcription.

        Args:
            file_path: Path to the audio file to upload
            file_name: Display name for the job (default: the file's name)
            timeout: Request timeout in seconds

        Returns:
            Dictionary containing job_id and initial status

        Raises:
            FileNotFoundError: If the file doesn't exist
            RequestException: If the upload fails
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"Audio file not found: {file_path}")

        data = {}
        if file_name:
            data["file_name"] = file_name

        try:
            with open(file_path, "rb") as audio_file:
                files = {"file": (file_path.name, audio_file)}
                response = self.session.post(f"{self.base_url}/upload", files=files, data=data, timeout=timeout)
            response.raise_for_status()
            return response.json()
        except RequestException as e:
            raise RequestException(f"Upload failed: {e}")

    def get_job_status(self, job_id: str) -> Dict[str, Any]:
        """
        Get a job record, including the partial result while it is processing.

        Raises:
            RequestException: If the request fails
        """
        return self._get_json(f"/status/{job_id}", "Failed to get job status")

    def list_jobs(self, status_filter: Optional[str] = None, limit: int = 100, offset: int = 0) -> Dict[str, Any]:
        """
        List this API key's jobs, newest first.

        Args:
            status_filter: Filter by status (processing, success, error)
            limit: Maximum number of jobs to return
            offset: Offset for pagination
        """
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        if status_filter:
            params["status"] = status_filter
        return self._get_json("/jobs", "Failed to list jobs", params=params)

    def get_job_result(self, job_id: str) -> Dict[str, Any]:
        """Get the summary and segments of a successfully completed job."""
        return self._get_json(f"/result/{job_id}", "Failed to get job result")

    def export_job(self, job_id: str, variant: str = "full") -> Dict[str, Any]:
        """
        Get a job export.

        Args:
            job_id: Unique identifier for the job
            variant: "full" (with verbatim text) or "clean" (without)
        """
        return self._get_json(f"/export/{job_id}", "Failed to export job", params={"variant": variant})

    def download_audio(self, job_id: str, destination: str) -> Path:
        """Save a job's original audio to ``destination``."""
        try:
            response = self.session.get(f"{self.base_url}/audio/{job_id}", timeout=self.timeout)
            response.raise_for_status()
        except RequestException as e:
            raise RequestException(f"Failed to download audio: {e}")

        path = Path(destination)
        path.write_bytes(response.content)
        return path

    def retry_job(self, job_id: str) -> Dict[str, Any]:
        """Queue a failed job to rerun from the first chunk."""
        try:
            response = self.session.post(f"{self.base_url}/retry/{job_id}", timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except RequestException as e:
            raise RequestException(f"Failed to retry job: {e}")

    def delete_job(self, job_id: str) -> Dict[str, Any]:
        """Delete a job and its audio."""
        try:
            response = self.session.delete(f"{self.base_url}/delete/{job_id}", timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except RequestException as e:
            raise RequestException(f"Failed to delete job: {e}")

    def wait_for_completion(
        self,
        job_id: str,
        poll_interval: float = 2,
        timeout: int = 3600,
        on_update: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> Dict[str, Any]:
        """
        Poll a job until it reaches a terminal state.

        Args:
            job_id: Unique identifier for the job
            poll_interval: Time to wait between status checks (seconds)
            timeout: Maximum time to wait (seconds)
            on_update: Called with each job record while it is still processing,
                so partial transcripts can be shown as chunks complete

        Returns:
            The final job record

        Raises:
            TimeoutError: If the job doesn't finish within the timeout
            RequestException: If the job fails or any API call fails
        """
        start_time = time.time()

        while time.time() - start_time < timeout:
            job = self.get_job_status(job_id)
            status = job.get("status")

            if status == "success":
                return job
            elif status == "error":
                raise RequestException(f"Job failed: {job.get('error') or 'Unknown error'}")

            if on_update is not None:
                on_update(job)

            time.sleep(poll_interval)

        raise TimeoutError(f"Job {job_id} did not complete within {timeout} seconds")

    def _get_json(self, path: str, failure_message: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = self.session.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except RequestException as e:
            raise RequestException(f"{failure_message}: {e}")


# Convenience function for quick uploads
def upload_and_process(
    file_path: str,
    api_key: str,
    api_url: Optional[str] = None,
    wait_for_result: bool = True,
    poll_interval: float = 2,
    timeout: int = 3600,
) -> Dict[str, Any]:
    """
    Upload a file and optionally wait for processing to complete.

    Args:
        file_path: Path to the audio file
        api_key: Credential for the API server
        api_url: API server URL (default: API_BASE_URL setting)
        wait_for_result: Whether to wait for completion
        poll_interval: Polling interval in seconds
        timeout: Maximum wait time in seconds

    Returns:
        Either the upload response or the final job record
    """
    client = APIClient(api_key, api_url)

    upload_result = client.upload_audio_file(file_path)
    job_id = upload_result["job_id"]

    if wait_for_result:
        return client.wait_for_completion(job_id, poll_interval, timeout)
    return upload_result
