"""
Queue-based job processing using ThreadPoolExecutor.

This module manages a queue of transcription jobs and runs them in background
threads. Distinct jobs may run concurrently; each job's chunk loop stays
sequential inside its own worker. Every queued job carries a cancellation
token that the processor checks between chunks.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from queue import Empty, Queue
from typing import Any, Dict, Optional

from ..config import ConfigManager
from .processor import JobProcessor

logger = logging.getLogger(__name__)


class ProcessingQueue:
    """Manages a queue of transcription jobs using ThreadPoolExecutor."""

    def __init__(self, processor: JobProcessor, max_workers: Optional[int] = None, queue_check_interval: float = 1.0):
        """
        Initialize the processing queue.

        Args:
            processor: JobProcessor that runs the jobs
            max_workers: Maximum number of concurrent jobs (default: MAX_WORKERS setting)
            queue_check_interval: How often to check for new jobs (seconds)
        """
        self.processor = processor
        self.max_workers = ConfigManager.get_int("MAX_WORKERS", max_workers)
        self.queue_check_interval = queue_check_interval

        # Threading components
        self.job_queue: Queue = Queue()
        self.executor = ThreadPoolExecutor(max_workers=self.max_workers)
        self.running_jobs: Dict[str, Future] = {}
        self.cancel_events: Dict[str, threading.Event] = {}
        # Set on shutdown; jobs stop after their current chunk and are recorded as interrupted
        self.shutdown_event = threading.Event()
        self.is_running = False
        self.queue_thread: Optional[threading.Thread] = None

        # Lock for thread safety
        self._lock = threading.Lock()

    def start(self):
        """Start the processing queue."""
        if self.is_running:
            logger.warning("Processing queue is already running")
            return

        self.is_running = True
        self.queue_thread = threading.Thread(target=self._queue_worker, daemon=True)
        self.queue_thread.start()
        logger.info(f"Processing queue started with {self.max_workers} workers")

    def stop(self):
        """Stop the processing queue, asking running jobs to stop after their current chunk."""
        if not self.is_running:
            return

        logger.info("Stopping processing queue...")
        self.is_running = False

        if self.queue_thread:
            self.queue_thread.join(timeout=5.0)

        with self._lock:
            pending = list(self.cancel_events)
        if pending:
            logger.info(f"Interrupting {len(pending)} job(s): {', '.join(pending)}")
        self.shutdown_event.set()

        self.executor.shutdown(wait=True)
        logger.info("Processing queue stopped")

    def enqueue_job(self, credential: str, job_id: str) -> bool:
        """
        Add a job to the processing queue.

        Args:
            credential: User's API credential
            job_id: Job identifier

        Returns:
            True if job was enqueued, False if it is already queued or running
        """
        if not self.is_running:
            logger.error("Cannot enqueue job: processing queue is not running")
            return False

        with self._lock:
            if job_id in self.cancel_events or self.processor.is_running(job_id):
                logger.warning(f"Job {job_id} is already queued or running")
                return False
            self.cancel_events[job_id] = threading.Event()

        self.job_queue.put((credential, job_id))
        logger.info(f"Job {job_id} enqueued")
        return True

    def cancel_job(self, job_id: str) -> bool:
        """
        Ask a queued or running job to stop before its next chunk.

        Returns:
            True if the job was queued or running, False otherwise
        """
        with self._lock:
            event = self.cancel_events.get(job_id)
            if event is None:
                return False
            event.set()

        logger.info(f"Cancellation requested for job {job_id}")
        return True

    def is_active(self, job_id: str) -> bool:
        """True if the job is queued or running."""
        with self._lock:
            if job_id in self.cancel_events:
                return True
        return self.processor.is_running(job_id)

    def get_queue_status(self) -> Dict[str, Any]:
        """Get status information about the processing queue."""
        with self._lock:
            running_jobs = list(self.running_jobs.keys())

        return {
            "is_running": self.is_running,
            "queue_size": self.job_queue.qsize(),
            "running_jobs": running_jobs,
            "max_workers": self.max_workers,
        }

    def _queue_worker(self):
        """Main queue worker thread that dispatches jobs to the executor."""
        logger.info("Queue worker thread started")

        while self.is_running:
            try:
                try:
                    credential, job_id = self.job_queue.get(timeout=self.queue_check_interval)
                except Empty:
                    continue

                with self._lock:
                    cancel_event = self.cancel_events.setdefault(job_id, threading.Event())

                logger.info(f"Starting processing for job {job_id}")
                future = self.executor.submit(self._process_job, credential, job_id, cancel_event)

                with self._lock:
                    self.running_jobs[job_id] = future

                future.add_done_callback(lambda f, jid=job_id: self._job_completed(jid, f))

            except Exception as e:
                logger.error(f"Error in queue worker: {e}")
                time.sleep(1.0)

        logger.info("Queue worker thread stopped")

    def _job_completed(self, job_id: str, future: Future):
        """Callback called when a job completes."""
        with self._lock:
            self.running_jobs.pop(job_id, None)
            self.cancel_events.pop(job_id, None)

        if future.cancelled():
            logger.info(f"Job {job_id} was cancelled before it started")
        elif future.exception():
            logger.error(f"Job {job_id} failed with error: {future.exception()}")
        else:
            logger.info(f"Job {job_id} finished")

    def _process_job(self, credential: str, job_id: str, cancel_event: threading.Event):
        """Load a job record and run it."""
        job = self.processor.job_store.get_job(credential, job_id)
        if job is None:
            logger.warning(f"Job {job_id} not found, skipping")
            return None

        return self.processor.run_job(credential, job, cancel_event, stop_event=self.shutdown_event)
