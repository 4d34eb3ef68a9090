import io
import logging

import pytest

from echoscript.server.app import QUEUE_UNAVAILABLE_MESSAGE, create_app, is_valid_credential_format, log_settings
from echoscript.server.models import JobStatus

from .conftest import CREDENTIAL, OTHER_CREDENTIAL, make_wav


class InlineQueue:
    """Runs jobs synchronously when they are enqueued."""

    def __init__(self, processor):
        self.processor = processor
        self.cancelled = []
        self.accepting = True

    def enqueue_job(self, credential, job_id):
        if not self.accepting:
            return False
        job = self.processor.job_store.get_job(credential, job_id)
        self.processor.run_job(credential, job)
        return True

    def cancel_job(self, job_id):
        self.cancelled.append(job_id)
        return False

    def is_active(self, job_id):
        return False

    def get_queue_status(self):
        return {"is_running": True, "queue_size": 0, "running_jobs": [], "max_workers": 1}


@pytest.fixture
def queue(processor):
    return InlineQueue(processor)


@pytest.fixture
def client(processor, queue):
    app = create_app(processor, queue)
    app.config["TESTING"] = True
    return app.test_client()


def _headers(credential=CREDENTIAL):
    return {"X-API-Key": credential}


def _upload(client, seconds=3.0, filename="meeting.wav", credential=CREDENTIAL, **form):
    data = {"file": (io.BytesIO(make_wav(seconds)), filename, "audio/wav"), **form}
    return client.post("/upload", data=data, headers=_headers(credential), content_type="multipart/form-data")


def test_credential_format():
    assert is_valid_credential_format(CREDENTIAL)
    assert not is_valid_credential_format("")
    assert not is_valid_credential_format("sk-" + "x" * 40)
    assert not is_valid_credential_format("AIza-short")


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json()["status"] == "healthy"


@pytest.mark.parametrize("headers", [{}, {"X-API-Key": "AIza-short"}, {"X-API-Key": "wrong" * 10}])
def test_requests_without_valid_credential_are_rejected(client, headers):
    assert client.get("/jobs", headers=headers).status_code == 401
    assert client.post("/auth/validate", headers=headers).status_code == 401


def test_validate_marks_interrupted_jobs(client, processor):
    job = processor.create_job(CREDENTIAL, "left-over.wav", make_wav(1.0), "audio/wav")

    response = client.post("/auth/validate", headers=_headers())

    assert response.status_code == 200
    assert response.get_json() == {"valid": True, "interrupted_jobs": [job.id]}
    assert processor.job_store.get_job(CREDENTIAL, job.id).status == JobStatus.ERROR


def test_validate_rejected_by_inference_service(client, fake_inference):
    fake_inference.valid = False

    response = client.post("/auth/validate", headers=_headers())

    assert response.status_code == 401
    assert response.get_json()["valid"] is False


def test_upload_and_poll(client):
    response = _upload(client, file_name="Weekly sync")

    assert response.status_code == 201
    job_id = response.get_json()["job_id"]

    status = client.get(f"/status/{job_id}", headers=_headers()).get_json()
    assert status["status"] == "success"
    assert status["file_name"] == "Weekly sync"
    assert status["active"] is False
    assert len(status["result"]["segments"]) == 6

    result = client.get(f"/result/{job_id}", headers=_headers()).get_json()
    assert result["summary"] == "A summary."


def test_upload_validation(client):
    assert _upload(client, filename="notes.txt").status_code == 400

    response = client.post("/upload", data={}, headers=_headers(), content_type="multipart/form-data")
    assert response.status_code == 400

    empty = {"file": (io.BytesIO(b""), "empty.wav", "audio/wav")}
    response = client.post("/upload", data=empty, headers=_headers(), content_type="multipart/form-data")
    assert response.status_code == 400


def test_jobs_are_scoped_to_credential(client):
    _upload(client)
    _upload(client)

    mine = client.get("/jobs", headers=_headers()).get_json()
    theirs = client.get("/jobs", headers=_headers(OTHER_CREDENTIAL)).get_json()

    assert mine["total"] == 2
    assert theirs["total"] == 0

    job_id = mine["jobs"][0]["id"]
    assert client.get(f"/status/{job_id}", headers=_headers(OTHER_CREDENTIAL)).status_code == 404


def test_jobs_filter_and_pagination(client):
    for _ in range(3):
        _upload(client, seconds=1.0)

    page = client.get("/jobs?status=success&limit=2&offset=1", headers=_headers()).get_json()
    assert page["total"] == 3
    assert len(page["jobs"]) == 2

    assert client.get("/jobs?status=unknown", headers=_headers()).status_code == 400
    assert client.get("/jobs?limit=abc", headers=_headers()).status_code == 400


def test_export_variants(client):
    job_id = _upload(client).get_json()["job_id"]

    full = client.get(f"/export/{job_id}", headers=_headers())
    clean = client.get(f"/export/{job_id}?variant=clean", headers=_headers())

    assert full.headers["Content-Disposition"].startswith("attachment; filename=transcription-full-")
    assert "original_transcript" in full.get_json()["segments"][0]
    assert "original_transcript" not in clean.get_json()["segments"][0]
    assert clean.get_json()["segments"][0]["semantic_correction"] == "Chunk 0, sentence 0."
    assert client.get(f"/export/{job_id}?variant=pdf", headers=_headers()).status_code == 400


def test_download_audio(client, processor):
    job_id = _upload(client, seconds=1.0).get_json()["job_id"]

    response = client.get(f"/audio/{job_id}", headers=_headers())

    assert response.status_code == 200
    assert response.mimetype == "audio/wav"
    assert response.data == processor.blob_store.get_audio(job_id)
    assert response.headers["Content-Disposition"].endswith(".wav")


def test_result_of_failed_job_and_retry(client, fake_inference):
    fake_inference.failures[1] = 3
    job_id = _upload(client).get_json()["job_id"]

    status = client.get(f"/status/{job_id}", headers=_headers()).get_json()
    assert status["status"] == "error"
    assert len(status["result"]["segments"]) == 2
    assert client.get(f"/result/{job_id}", headers=_headers()).status_code == 400

    fake_inference.failures.clear()
    fake_inference.reset()
    response = client.post(f"/retry/{job_id}", headers=_headers())

    assert response.status_code == 202
    status = client.get(f"/status/{job_id}", headers=_headers()).get_json()
    assert status["status"] == "success"
    assert len(status["result"]["segments"]) == 6

    assert client.post("/retry/missing", headers=_headers()).status_code == 404


def test_delete(client, queue, processor):
    job_id = _upload(client, seconds=1.0).get_json()["job_id"]

    response = client.delete(f"/delete/{job_id}", headers=_headers())

    assert response.status_code == 200
    assert queue.cancelled == [job_id]
    assert client.get(f"/status/{job_id}", headers=_headers()).status_code == 404
    assert processor.blob_store.get_audio(job_id) is None
    assert client.delete(f"/delete/{job_id}", headers=_headers()).status_code == 404


def test_upload_refused_by_queue(client, queue, processor):
    queue.accepting = False

    response = _upload(client, seconds=1.0)

    assert response.status_code == 503
    job_id = response.get_json()["job_id"]
    job = processor.job_store.get_job(CREDENTIAL, job_id)
    assert job.status == JobStatus.ERROR
    assert job.error == QUEUE_UNAVAILABLE_MESSAGE


def test_retry_refused_by_queue(client, queue, fake_inference):
    fake_inference.failures[0] = 3
    job_id = _upload(client, seconds=1.0).get_json()["job_id"]
    queue.accepting = False

    response = client.post(f"/retry/{job_id}", headers=_headers())

    assert response.status_code == 503
    status = client.get(f"/status/{job_id}", headers=_headers()).get_json()
    assert status["status"] == "error"
    assert status["error"] == QUEUE_UNAVAILABLE_MESSAGE


def test_log_settings_reports_sources(monkeypatch, caplog):
    monkeypatch.setenv("MAX_WORKERS", "4")
    monkeypatch.delenv("LLM_MODEL", raising=False)

    with caplog.at_level(logging.INFO, logger="echoscript.server.app"):
        log_settings()

    assert "Setting MAX_WORKERS=4 (env)" in caplog.messages
    assert "Setting LLM_MODEL=gemini-2.5-flash (default)" in caplog.messages
