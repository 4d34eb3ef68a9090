"""
Flask API server for transcription jobs.

This server provides endpoints for:
- Validating an API credential (and flagging jobs interrupted by a restart)
- Uploading audio files for transcription
- Polling job status, including partial transcripts while a job runs
- Retrying, deleting and exporting jobs

Every request is scoped to the credential sent in the ``X-API-Key`` header;
jobs of one credential are invisible to all others. Processing happens in a
ProcessingQueue (ThreadPoolExecutor) in the background.
"""

import atexit
import functools
import json
import logging
from datetime import datetime
from urllib.parse import urlparse

from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from werkzeug.utils import secure_filename

from ..config import ConfigManager
from ..errors import JobAlreadyRunning
from ..inference import InferenceClient
from .job_store import AudioBlobStore, JobStore
from .models import JobStatus
from .processing_queue import ProcessingQueue
from .processor import JobProcessor

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"wav", "mp3", "mp4", "m4a", "flac", "aac", "ogg", "wma", "webm"}

CREDENTIAL_HEADER = "X-API-Key"
CREDENTIAL_PREFIX = "AIza"
MIN_CREDENTIAL_LENGTH = 30

EXPORT_VARIANTS = ("full", "clean")

QUEUE_UNAVAILABLE_MESSAGE = "Processing queue is not accepting jobs. Retry later."


def allowed_file(filename: str) -> bool:
    """Check if the uploaded file has an allowed extension."""
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def is_valid_credential_format(credential: str) -> bool:
    """Non-empty, recognized prefix, minimum length."""
    return bool(credential) and credential.startswith(CREDENTIAL_PREFIX) and len(credential) >= MIN_CREDENTIAL_LENGTH


def requires_credential(view):
    """Pass the request's credential as the first argument of the view, or answer 401."""

    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        credential = request.headers.get(CREDENTIAL_HEADER, "").strip()
        if not is_valid_credential_format(credential):
            return jsonify({"error": f"Missing or invalid API key. It should start with '{CREDENTIAL_PREFIX}'."}), 401
        return view(credential, *args, **kwargs)

    return wrapper


def _audio_extension(mime_type: str) -> str:
    if "mp4" in mime_type:
        return "mp4"
    if "wav" in mime_type:
        return "wav"
    if "mpeg" in mime_type:
        return "mp3"
    return "webm"


def create_app(processor: JobProcessor, processing_queue: ProcessingQueue) -> Flask:
    """
    Build the Flask app around a processor and a processing queue.

    Args:
        processor: JobProcessor holding the job and audio stores
        processing_queue: Started ProcessingQueue used to run jobs in the background
    """
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = 500 * 1024 * 1024  # 500MB max file size
    CORS(app)

    job_store = processor.job_store
    blob_store = processor.blob_store

    def _queue_unavailable(credential: str, job_id: str):
        """Fail a job the queue refused so it is not left in ``processing``."""
        logger.error(f"Processing queue refused job {job_id}")
        processor.mark_failed(credential, job_id, QUEUE_UNAVAILABLE_MESSAGE)
        return jsonify({"job_id": job_id, "error": QUEUE_UNAVAILABLE_MESSAGE}), 503

    @app.route("/health", methods=["GET"])
    def health_check():
        """Health check endpoint."""
        queue_status = processing_queue.get_queue_status()
        return jsonify(
            {
                "status": "healthy",
                "timestamp": datetime.now().isoformat(),
                "queue_running": queue_status["is_running"],
                "queue_size": queue_status["queue_size"],
                "running_jobs": len(queue_status["running_jobs"]),
            }
        )

    @app.route("/auth/validate", methods=["POST"])
    @requires_credential
    def validate_credential(credential: str):
        """
        Check a credential with a live round-trip.

        On success, jobs left in ``processing`` by a previous server run are
        marked as interrupted so the user can retry them.
        """
        if not processor.inference.validate_credential(credential):
            return jsonify({"valid": False, "error": "API key was rejected by the inference service"}), 401

        interrupted = processor.resume_processing(credential, keep=processing_queue.is_active)
        return jsonify({"valid": True, "interrupted_jobs": interrupted})

    @app.route("/upload", methods=["POST"])
    @requires_credential
    def upload_audio(credential: str):
        """
        Upload an audio file for transcription.

        Expected form data:
        - file: Audio file to process
        - file_name: Optional display name (defaults to the uploaded file name)

        Returns:
        - job_id: Unique identifier for tracking the job
        - status: Initial status (processing)
        """
        if "file" not in request.files:
            return jsonify({"error": "No file provided"}), 400

        file = request.files["file"]
        if file.filename == "":
            return jsonify({"error": "No file selected"}), 400

        if not allowed_file(file.filename):
            allowed_types = ", ".join(sorted(ALLOWED_EXTENSIONS))
            return jsonify({"error": f"File type not allowed. Allowed types: {allowed_types}"}), 400

        if not secure_filename(file.filename):
            return jsonify({"error": "Invalid filename"}), 400

        audio_bytes = file.read()
        if not audio_bytes:
            return jsonify({"error": "Empty file not allowed"}), 400

        display_name = request.form.get("file_name", "").strip() or file.filename
        job = processor.create_job(credential, display_name, audio_bytes, file.mimetype or None)
        if not processing_queue.enqueue_job(credential, job.id):
            return _queue_unavailable(credential, job.id)

        return jsonify(
            {
                "job_id": job.id,
                "status": job.status.value,
                "message": "File uploaded successfully and queued for processing",
            }
        ), 201

    @app.route("/jobs", methods=["GET"])
    @requires_credential
    def list_jobs(credential: str):
        """
        List the credential's jobs.

        Query parameters:
        - status: Filter by status (processing, success, error)
        - limit: Limit number of results (default: 100)
        - offset: Offset for pagination (default: 0)

        Returns jobs sorted by creation time (newest first).
        """
        status_filter = None
        if request.args.get("status"):
            try:
                status_filter = JobStatus(request.args["status"])
            except ValueError:
                return jsonify({"error": f"Unknown status: {request.args['status']}"}), 400

        try:
            limit = int(request.args.get("limit", 100))
            offset = int(request.args.get("offset", 0))
        except ValueError:
            return jsonify({"error": "limit and offset must be integers"}), 400

        jobs = job_store.get_jobs(credential, status_filter=status_filter)
        page = jobs[offset : offset + limit]

        return jsonify({"jobs": [j.to_dict() for j in page], "total": len(jobs), "limit": limit, "offset": offset})

    @app.route("/status/<job_id>", methods=["GET"])
    @requires_credential
    def get_job_status(credential: str, job_id: str):
        """
        Get a job record.

        While the job is processing, ``result.segments`` holds the transcript
        so far and ``result.summary`` is empty.
        """
        job = job_store.get_job(credential, job_id)
        if job is None:
            return jsonify({"error": "Job not found"}), 404

        data = job.to_dict()
        data["active"] = processing_queue.is_active(job_id)
        return jsonify(data)

    @app.route("/result/<job_id>", methods=["GET"])
    @requires_credential
    def get_job_result(credential: str, job_id: str):
        """Get the result of a successfully completed job."""
        job = job_store.get_job(credential, job_id)
        if job is None:
            return jsonify({"error": "Job not found"}), 404

        if job.status != JobStatus.SUCCESS or job.result is None:
            return jsonify({"error": "Job not completed yet"}), 400

        return jsonify(job.result.to_dict())

    @app.route("/export/<job_id>", methods=["GET"])
    @requires_credential
    def export_job(credential: str, job_id: str):
        """
        Download a job's result as JSON.

        Query parameters:
        - variant: "full" (default, includes verbatim text) or "clean" (omits original_transcript)
        """
        variant = request.args.get("variant", "full")
        if variant not in EXPORT_VARIANTS:
            return jsonify({"error": f"Unknown export variant: {variant}"}), 400

        job = job_store.get_job(credential, job_id)
        if job is None:
            return jsonify({"error": "Job not found"}), 404
        if job.result is None:
            return jsonify({"error": "Job has no result yet"}), 400

        data = job.result.to_dict() if variant == "full" else job.result.to_clean_dict()
        filename = f"transcription-{variant}-{datetime.now().date().isoformat()}.json"
        return Response(
            json.dumps(data, ensure_ascii=False, indent=2),
            mimetype="application/json",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )

    @app.route("/audio/<job_id>", methods=["GET"])
    @requires_credential
    def download_audio(credential: str, job_id: str):
        """Download the original audio of a job."""
        if not job_store.job_exists(credential, job_id):
            return jsonify({"error": "Job not found"}), 404

        audio_bytes = blob_store.get_audio(job_id)
        if audio_bytes is None:
            return jsonify({"error": "Audio file not found in storage"}), 404

        mime_type = blob_store.get_mime_type(job_id) or "application/octet-stream"
        filename = f"recording-{datetime.now().date().isoformat()}.{_audio_extension(mime_type)}"
        return Response(
            audio_bytes,
            mimetype=mime_type,
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )

    @app.route("/retry/<job_id>", methods=["POST"])
    @requires_credential
    def retry_job(credential: str, job_id: str):
        """Reset a job and queue it to rerun from the first chunk."""
        if processing_queue.is_active(job_id):
            return jsonify({"error": "Job is already running"}), 409

        try:
            job = processor.reset_for_retry(credential, job_id)
        except JobAlreadyRunning:
            return jsonify({"error": "Job is already running"}), 409

        if job is None:
            return jsonify({"error": "Job not found"}), 404

        if not processing_queue.enqueue_job(credential, job.id):
            return _queue_unavailable(credential, job.id)
        return jsonify({"job_id": job.id, "status": job.status.value, "message": "Job queued for retry"}), 202

    @app.route("/delete/<job_id>", methods=["DELETE"])
    @requires_credential
    def delete_job(credential: str, job_id: str):
        """
        Delete a job and its audio.

        A running job is asked to stop; it will not recreate the deleted record.
        """
        if not job_store.job_exists(credential, job_id):
            return jsonify({"error": "Job not found"}), 404

        processing_queue.cancel_job(job_id)

        if processor.delete_job(credential, job_id):
            return jsonify({"message": "Job deleted successfully"})
        return jsonify({"error": "Failed to delete job"}), 500

    @app.route("/queue/status", methods=["GET"])
    def get_queue_status():
        """Get detailed queue status information."""
        return jsonify(processing_queue.get_queue_status())

    return app


def configure_logging() -> None:
    """Configure root logging from LOG_LEVEL and quiet chatty third-party loggers."""
    log_level = ConfigManager.get("LOG_LEVEL").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for name in ("werkzeug", "openai", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def log_settings() -> None:
    """Log every setting with the tier it came from (override, env or default)."""
    for key in ConfigManager.DEFAULTS:
        value, source = ConfigManager.get_display_value(key)
        logger.info(f"Setting {key}={value} ({source})")


def main():
    """Run the API server with stores, processor and queue built from configuration."""
    configure_logging()
    log_settings()

    processor = JobProcessor(JobStore(), AudioBlobStore(), InferenceClient())
    processing_queue = ProcessingQueue(processor)
    processing_queue.start()

    # Ensure cleanup on shutdown
    atexit.register(processing_queue.stop)

    port = urlparse(ConfigManager.get("API_BASE_URL")).port or 5001
    app = create_app(processor, processing_queue)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
