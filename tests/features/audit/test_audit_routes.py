from app.features.audit.models.audit_job import AuditJobStatus
from app.features.audit.services.job_store import SQLAlchemyJobStore
from app.platform.db.session import SessionLocal


def submit(client, url="https://example.com", **extra):
    return client.post("/api/v1/audits", json={"url": url, **extra})


def test_submit_audit_enqueues_job(queue_client):
    response = submit(queue_client, "example.com/landing", user_id="user-42")

    assert response.status_code == 202
    payload = response.json()
    assert payload["status"] == "success"
    assert payload["data"]["status"] == "pending"

    job_id = payload["data"]["job_id"]
    assert queue_client.recording_queue.enqueued == [(job_id, "https://example.com/landing")]
    assert response.headers["location"].endswith(f"/api/v1/audits/{job_id}/status")


def test_submit_audit_rejects_invalid_url(queue_client):
    response = submit(queue_client, "ftp://example.com/file.txt")

    assert response.status_code == 422
    payload = response.json()
    assert payload["message"] == "Validation failed"
    assert payload["data"]["errors"][0]["field"] == "url"
    assert "Invalid URL scheme" in payload["data"]["errors"][0]["message"]
    assert queue_client.recording_queue.enqueued == []


def test_status_of_new_job_is_pending(queue_client):
    job_id = submit(queue_client).json()["data"]["job_id"]

    response = queue_client.get(f"/api/v1/audits/{job_id}/status")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["job_id"] == job_id
    assert data["status"] == "pending"
    assert data["url"] == "https://example.com"
    assert data["error_message"] is None


def test_results_not_available_until_completed(queue_client):
    job_id = submit(queue_client).json()["data"]["job_id"]

    response = queue_client.get(f"/api/v1/audits/{job_id}/results")

    assert response.status_code == 409
    assert "pending" in response.json()["message"]


def test_results_of_completed_job(queue_client):
    job_id = submit(queue_client).json()["data"]["job_id"]
    store = SQLAlchemyJobStore(SessionLocal)
    queue_client.portal.call(
        lambda: store.update_status(
            job_id,
            AuditJobStatus.completed,
            results={"healthScore": 87, "summary": {"url": "https://example.com"}},
            analysis_data={"auditFindings": []},
        )
    )

    response = queue_client.get(f"/api/v1/audits/{job_id}/results")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "completed"
    assert data["results"]["healthScore"] == 87

    history = queue_client.get("/api/v1/audits", params={"limit": 200}).json()["data"]
    item = next(audit for audit in history["audits"] if audit["job_id"] == job_id)
    assert item["health_score"] == 87


def test_unknown_job_returns_404(queue_client):
    assert queue_client.get("/api/v1/audits/missing/status").status_code == 404
    assert queue_client.get("/api/v1/audits/missing/results").status_code == 404


def test_history_filters_by_user(queue_client):
    mine = submit(queue_client, "https://mine.example.com", user_id="history-user").json()["data"]["job_id"]
    submit(queue_client, "https://theirs.example.com", user_id="someone-else")

    response = queue_client.get("/api/v1/audits", params={"user_id": "history-user"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["count"] == 1
    assert data["audits"][0]["job_id"] == mine
    assert data["audits"][0]["url"] == "https://mine.example.com"


def test_queue_status(queue_client):
    submit(queue_client)

    response = queue_client.get("/api/v1/audits/queue/status")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["queueLength"] == 1
    assert data["isProcessing"] is False


def test_queue_status_without_running_queue(queue_client, test_app):
    test_app.state.job_queue = None

    response = queue_client.get("/api/v1/audits/queue/status")

    assert response.status_code == 503
