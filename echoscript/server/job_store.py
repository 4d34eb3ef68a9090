"""
Filesystem-based persistence for transcription jobs.

Two independent stores:
- JobStore keeps job records, one JSON file per job id, inside a directory
  namespaced by a hash of the user's credential. Jobs saved under one
  credential are invisible to every other credential.
- AudioBlobStore keeps the original uploaded audio, one directory per job id.
  Its lifetime is bound to the job; callers delete both together.

Records are written to a temporary file and moved into place, so a polling
reader never observes a half-written record.

Precondition: one writer process per credential. Writes from threads of the
same process are serialized by the store's lock.
"""

import hashlib
import json
import logging
import os
import re
import shutil
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

from ..config import ConfigManager
from .models import Job, JobStatus

logger = logging.getLogger(__name__)

_JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class JobStore:
    """Per-credential job records, addressable by job id."""

    RECORD_SUFFIX = ".json"

    def __init__(self, jobs_dir: Optional[str] = None):
        """
        Initialize the job store.

        Args:
            jobs_dir: Root directory for all namespaces (default: JOBS_DIR setting)
        """
        self.jobs_dir = Path(ConfigManager.get("JOBS_DIR", jobs_dir))
        self.jobs_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    @staticmethod
    def namespace(credential: str) -> str:
        """Directory name isolating one credential's jobs."""
        return hashlib.sha256(credential.encode("utf-8")).hexdigest()[:16]

    def get_namespace_dir(self, credential: str) -> Path:
        return self.jobs_dir / self.namespace(credential)

    def _record_path(self, credential: str, job_id: str) -> Optional[Path]:
        if not _JOB_ID_PATTERN.match(job_id or ""):
            return None
        return self.get_namespace_dir(credential) / f"{job_id}{self.RECORD_SUFFIX}"

    def job_exists(self, credential: str, job_id: str) -> bool:
        path = self._record_path(credential, job_id)
        return path is not None and path.exists()

    def save_job(self, credential: str, job: Job) -> Job:
        """
        Create or overwrite a job record.

        Returns:
            The stored job (with ``updated_at`` refreshed)
        """
        path = self._record_path(credential, job.id)
        if path is None:
            raise ValueError(f"Invalid job id: {job.id!r}")

        stored = job.evolve(updated_at=datetime.now())
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            _write_json(path, stored.to_dict())
        return stored

    def update_job(self, credential: str, job: Job) -> Optional[Job]:
        """
        Overwrite an existing job record.

        Returns:
            The stored job, or None if the record no longer exists (deleted jobs are never recreated)
        """
        with self._lock:
            if not self.job_exists(credential, job.id):
                return None
            return self.save_job(credential, job)

    def get_job(self, credential: str, job_id: str) -> Optional[Job]:
        """Get one job record, or None if it doesn't exist or can't be read."""
        path = self._record_path(credential, job_id)
        if path is None:
            return None
        return self._load_job(path)

    def get_jobs(self, credential: str, status_filter: Optional[JobStatus] = None) -> List[Job]:
        """
        List all jobs of a credential.

        Args:
            credential: User's API credential
            status_filter: Only return jobs in this status

        Returns:
            Jobs sorted by creation time (newest first)
        """
        namespace_dir = self.get_namespace_dir(credential)
        if not namespace_dir.is_dir():
            return []

        jobs = []
        for path in namespace_dir.glob(f"*{self.RECORD_SUFFIX}"):
            job = self._load_job(path)
            if job is None:
                continue
            if status_filter is not None and job.status != status_filter:
                continue
            jobs.append(job)

        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs

    def delete_job(self, credential: str, job_id: str) -> bool:
        """
        Delete a job record.

        Returns:
            True if the job was deleted, False if it didn't exist
        """
        path = self._record_path(credential, job_id)
        if path is None:
            return False

        with self._lock:
            if not path.exists():
                return False
            path.unlink()
        return True

    def _load_job(self, path: Path) -> Optional[Job]:
        data = _load_json(path)
        if data is None:
            return None
        try:
            return Job.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping unreadable job record {path.name}: {e}")
            return None


class AudioBlobStore:
    """Raw uploaded audio, one directory per job id."""

    FILES = {
        "audio": "audio.bin",
        "content_type": "content_type.txt",
    }

    def __init__(self, audio_dir: Optional[str] = None):
        """
        Initialize the blob store.

        Args:
            audio_dir: Directory to store audio blobs (default: AUDIO_DIR setting)
        """
        self.audio_dir = Path(ConfigManager.get("AUDIO_DIR", audio_dir))
        self.audio_dir.mkdir(parents=True, exist_ok=True)

    def get_blob_dir(self, job_id: str) -> Optional[Path]:
        if not _JOB_ID_PATTERN.match(job_id or ""):
            return None
        return self.audio_dir / job_id

    def save_audio(self, job_id: str, data: bytes, mime_type: str = "application/octet-stream") -> None:
        """Store the original audio bytes of a job."""
        blob_dir = self.get_blob_dir(job_id)
        if blob_dir is None:
            raise ValueError(f"Invalid job id: {job_id!r}")

        blob_dir.mkdir(parents=True, exist_ok=True)
        _write_bytes(blob_dir / self.FILES["audio"], data)
        _write_bytes(blob_dir / self.FILES["content_type"], mime_type.encode("utf-8"))

    def get_audio(self, job_id: str) -> Optional[bytes]:
        """Get the audio bytes of a job, or None if absent."""
        blob_dir = self.get_blob_dir(job_id)
        if blob_dir is None:
            return None

        audio_path = blob_dir / self.FILES["audio"]
        if not audio_path.exists():
            return None
        return audio_path.read_bytes()

    def get_mime_type(self, job_id: str) -> Optional[str]:
        blob_dir = self.get_blob_dir(job_id)
        if blob_dir is None:
            return None

        type_path = blob_dir / self.FILES["content_type"]
        if not type_path.exists():
            return None
        return type_path.read_text(encoding="utf-8").strip() or None

    def delete_audio(self, job_id: str) -> bool:
        """
        Delete a job's audio.

        Returns:
            True if audio was deleted, False if there was none
        """
        blob_dir = self.get_blob_dir(job_id)
        if blob_dir is None or not blob_dir.exists():
            return False

        shutil.rmtree(blob_dir)
        return True


def _write_json(path: Path, data: Any) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    os.replace(tmp_path, path)


def _write_bytes(path: Path, data: bytes) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "wb") as f:
        f.write(data)
    os.replace(tmp_path, path)


def _load_json(path: Path) -> Optional[Any]:
    if not path.exists():
        return None

    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, IOError):
        return None
