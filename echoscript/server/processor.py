"""
Job orchestration for chunked transcription.

This module drives a job from creation to a terminal state:
- decode and split the stored audio into fixed-duration chunks
- transcribe chunks one at a time, carrying the previous chunk's last line as context
- retry failed chunk calls with exponential backoff
- shift chunk-relative timestamps into whole-recording time
- persist the partial transcript after every chunk
- summarize once every chunk succeeded

Chunks are never processed concurrently: each request depends on the context
produced by the one before it. The processor is the only component that turns
exceptions into persisted job state.
"""

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterator, List, Optional, Set

from ..audio import preparer
from ..config import ConfigManager
from ..errors import AudioMissing, ChunkTranscriptionFailed, JobAlreadyRunning, JobCancelled, JobInterrupted
from ..inference import InferenceClient, transcript_text
from .job_store import AudioBlobStore, JobStore
from .models import Job, JobStatus, TranscriptionResponse, TranscriptionSegment
from .timestamps import correct_segments

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = JobInterrupted.MESSAGE

# Share of the progress bar covered by chunk transcription; the rest is the summary.
_TRANSCRIPTION_PROGRESS_SHARE = 95.0


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for chunk requests."""

    attempts: int = 3
    base_delay: float = 1.0  # seconds

    def delay_before_retry(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (1-based): base * 2, base * 4, ..."""
        return self.base_delay * (2**retry_number)

    @classmethod
    def from_config(cls) -> "RetryPolicy":
        return cls(
            attempts=max(1, ConfigManager.get_int("API_RETRY_ATTEMPTS")),
            base_delay=ConfigManager.get_float("API_RETRY_BASE_DELAY_MS") / 1000.0,
        )


@dataclass(frozen=True)
class TranscriptFold:
    """Accumulator threaded through the chunk sequence."""

    segments: List[TranscriptionSegment] = field(default_factory=list)
    context: str = ""

    def absorb(self, chunk_segments: List[TranscriptionSegment]) -> "TranscriptFold":
        """Append one chunk's corrected segments and take its last line as the next context."""
        return TranscriptFold(
            segments=self.segments + list(chunk_segments),
            context=chunk_segments[-1].original_transcript if chunk_segments else "",
        )


class _JobDeleted(Exception):
    """The job record disappeared while the job was running."""


class JobProcessor:
    """Runs transcription jobs against the job and audio stores."""

    def __init__(
        self,
        job_store: JobStore,
        blob_store: AudioBlobStore,
        inference: Optional[InferenceClient] = None,
        chunk_seconds: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the job processor.

        Args:
            job_store: Store for job records
            blob_store: Store for the original audio
            inference: Remote inference client
            chunk_seconds: Chunk duration (default: CHUNK_DURATION_SECONDS setting)
            retry_policy: Backoff policy for chunk requests (default: from settings)
            sleep: Function used to wait between retries
        """
        self.job_store = job_store
        self.blob_store = blob_store
        self.inference = inference or InferenceClient()
        self.chunk_seconds = ConfigManager.get_float("CHUNK_DURATION_SECONDS", chunk_seconds)
        self.retry_policy = retry_policy or RetryPolicy.from_config()
        self.sleep = sleep

        # Ids of jobs with a run in progress in this process
        self._active: Set[str] = set()
        self._lock = threading.Lock()

    def create_job(self, credential: str, file_name: str, audio_bytes: bytes, mime_type: Optional[str] = None) -> Job:
        """
        Store the audio and a new job record in ``processing`` state.

        Returns:
            The created job
        """
        job = Job(
            id=str(uuid.uuid4()),
            file_name=file_name,
            created_at=datetime.now(),
            status=JobStatus.PROCESSING,
            progress=0.0,
            mime_type=mime_type,
        )

        self.blob_store.save_audio(job.id, audio_bytes, mime_type or "application/octet-stream")
        stored = self.job_store.save_job(credential, job)
        logger.info(f"Created job {job.id} ({len(audio_bytes)} bytes)")
        return stored

    def is_running(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._active

    def run_job(
        self,
        credential: str,
        job: Job,
        cancel_event: Optional[threading.Event] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Optional[Job]:
        """
        Process a job through all chunks and the summary.

        Failures never propagate: they are persisted as ``error`` with a reason,
        keeping every segment committed before the failure.

        Args:
            credential: User's API credential
            job: Job to process
            cancel_event: Set when the user cancels; the job stops before the next chunk
            stop_event: Set when the server shuts down; the job stops before the
                next chunk and is recorded as interrupted

        Returns:
            The final stored job, or None if the job was deleted while running

        Raises:
            JobAlreadyRunning: If another run of the same job is in progress
        """
        with self._claim(job.id):
            start_time = time.time()
            logger.info(f"Starting processing for job {job.id}")

            try:
                final = self._process(credential, job, cancel_event, stop_event)
            except _JobDeleted:
                logger.info(f"Job {job.id} was deleted while processing, stopping")
                return None
            except Exception as e:
                logger.error(f"Processing failed for job {job.id}: {e}")
                return self.mark_failed(credential, job.id, str(e) or "Unknown error occurred")

            logger.info(f"Job {job.id} completed in {time.time() - start_time:.2f} seconds")
            return final

    def resume_processing(self, credential: str, keep: Optional[Callable[[str], bool]] = None) -> List[str]:
        """
        Mark jobs left in ``processing`` by a stopped process as ``error``.

        Jobs with a run in progress in this process are left alone, as are jobs
        for which ``keep(job_id)`` is true (e.g. jobs waiting in a queue).
        Nothing is resumed automatically; the user retries explicitly.

        Returns:
            Ids of the jobs marked as interrupted
        """
        interrupted = []
        for job in self.job_store.get_jobs(credential, status_filter=JobStatus.PROCESSING):
            if self.is_running(job.id) or (keep is not None and keep(job.id)):
                continue

            if self.job_store.update_job(credential, job.evolve(status=JobStatus.ERROR, error=INTERRUPTED_MESSAGE)):
                logger.info(f"Marked interrupted job {job.id} as failed")
                interrupted.append(job.id)

        return interrupted

    def reset_for_retry(self, credential: str, job_id: str) -> Optional[Job]:
        """
        Put a job back into ``processing`` with no error and no result.

        Returns:
            The reset job, or None if it doesn't exist

        Raises:
            JobAlreadyRunning: If the job is currently being processed
        """
        job = self.job_store.get_job(credential, job_id)
        if job is None:
            return None
        if self.is_running(job_id):
            raise JobAlreadyRunning(job_id)

        reset = job.evolve(status=JobStatus.PROCESSING, error=None, result=None, progress=0.0)
        return self.job_store.update_job(credential, reset)

    def retry_job(self, credential: str, job_id: str, cancel_event: Optional[threading.Event] = None) -> Optional[Job]:
        """
        Reset a job and rerun it from the first chunk.

        Segments from the previous attempt are discarded, not appended to.

        Returns:
            The final stored job, or None if the job doesn't exist
        """
        job = self.reset_for_retry(credential, job_id)
        if job is None:
            logger.warning(f"Cannot retry job {job_id}: not found")
            return None

        logger.info(f"Retrying job {job_id} from the first chunk")
        return self.run_job(credential, job, cancel_event)

    def delete_job(self, credential: str, job_id: str) -> bool:
        """
        Delete a job record together with its audio.

        Returns:
            True if the job existed under this credential
        """
        if not self.job_store.delete_job(credential, job_id):
            return False

        self.blob_store.delete_audio(job_id)
        logger.info(f"Deleted job {job_id}")
        return True

    @contextmanager
    def _claim(self, job_id: str) -> Iterator[None]:
        with self._lock:
            if job_id in self._active:
                raise JobAlreadyRunning(job_id)
            self._active.add(job_id)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(job_id)

    def _process(
        self,
        credential: str,
        job: Job,
        cancel_event: Optional[threading.Event],
        stop_event: Optional[threading.Event],
    ) -> Job:
        audio_bytes = self.blob_store.get_audio(job.id)
        if audio_bytes is None:
            raise AudioMissing(job.id)

        samples = preparer.normalize(audio_bytes)
        chunks = preparer.split(samples, self.chunk_seconds)
        duration = preparer.duration_seconds(samples)
        logger.info(f"Job {job.id}: {duration:.1f}s of audio in {len(chunks)} chunk(s)")

        fold = TranscriptFold()
        for index, chunk in enumerate(chunks):
            self._check_cancelled(job.id, cancel_event, stop_event)

            raw_segments = self._transcribe_with_retry(credential, job.id, index, preparer.encode(chunk), fold.context)
            offset = preparer.chunk_offset(index, self.chunk_seconds)
            fold = fold.absorb(correct_segments(raw_segments, offset))

            # Summary stays empty until every chunk is done
            partial = job.evolve(
                status=JobStatus.PROCESSING,
                result=TranscriptionResponse(summary="", segments=list(fold.segments)),
                duration=duration,
                progress=round(_TRANSCRIPTION_PROGRESS_SHARE * (index + 1) / len(chunks), 1),
                error=None,
            )
            self._persist(credential, partial)
            logger.info(f"Job {job.id}: chunk {index + 1}/{len(chunks)} done, {len(raw_segments)} segment(s)")

        self._check_cancelled(job.id, cancel_event, stop_event)

        if not fold.segments:
            logger.warning(f"Empty transcript for job {job.id}")
        summary = self.inference.generate_summary(credential, transcript_text(fold.segments))

        final = job.evolve(
            status=JobStatus.SUCCESS,
            result=TranscriptionResponse(summary=summary, segments=list(fold.segments)),
            duration=duration,
            progress=100.0,
            error=None,
        )
        return self._persist(credential, final)

    def _transcribe_with_retry(
        self, credential: str, job_id: str, index: int, payload: bytes, context: str
    ) -> List[TranscriptionSegment]:
        attempts = self.retry_policy.attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                response = self.inference.transcribe_chunk(
                    credential, payload, preparer.WAV_MIME_TYPE, context or None
                )
                return response["segments"]
            except Exception as e:
                last_error = e
                if attempt < attempts:
                    delay = self.retry_policy.delay_before_retry(attempt)
                    logger.warning(
                        f"Chunk {index} of job {job_id} failed (attempt {attempt}/{attempts}): {e}, "
                        f"retrying in {delay:.1f}s"
                    )
                    self.sleep(delay)

        raise ChunkTranscriptionFailed(index, attempts, last_error) from last_error

    def _check_cancelled(
        self, job_id: str, cancel_event: Optional[threading.Event], stop_event: Optional[threading.Event]
    ) -> None:
        if stop_event is not None and stop_event.is_set():
            raise JobInterrupted(job_id)
        if cancel_event is not None and cancel_event.is_set():
            raise JobCancelled(job_id)

    def _persist(self, credential: str, job: Job) -> Job:
        stored = self.job_store.update_job(credential, job)
        if stored is None:
            raise _JobDeleted(job.id)
        return stored

    def mark_failed(self, credential: str, job_id: str, reason: str) -> Optional[Job]:
        """Record a job as ``error`` with ``reason``, keeping its last persisted partial result."""
        current = self.job_store.get_job(credential, job_id)
        if current is None:
            logger.warning(f"Job {job_id} no longer exists, not recording failure")
            return None
        return self.job_store.update_job(credential, current.evolve(status=JobStatus.ERROR, error=reason))
