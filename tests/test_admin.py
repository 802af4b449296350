import pytest
from fastapi.testclient import TestClient

from relay.database import get_db
from relay.dependencies import get_config_store, get_job_queue
from relay.main import app
from relay.models import ScheduledJob
from relay.services.event_log import EventType, log_event
from relay.services.identity_service import upsert_mapping

HEADERS = {"X-Admin-Token": "test-admin-token"}
USER = "15550001111"


@pytest.fixture
def client(session_factory, config_store, queue):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_config_store] = lambda: config_store
    app.dependency_overrides[get_job_queue] = lambda: queue
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestAuth:
    def test_missing_token(self, client):
        assert client.get("/admin/jobs").status_code == 401

    def test_wrong_token(self, client):
        assert client.get("/admin/jobs", headers={"X-Admin-Token": "nope"}).status_code == 401


class TestJobs:
    def test_lists_jobs_with_contact_name(self, client, db, queue):
        upsert_mapping(db, USER, display_name="Ana")
        queue.enqueue_or_debounce(db, USER, "Hello")

        response = client.get("/admin/jobs", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["jobs"][0]["content"] == "Hello"
        assert data["jobs"][0]["contact_name"] == "Ana"
        assert data["jobs"][0]["status"] == "pending"

    def test_status_filter_and_limit_cap(self, client, db, queue):
        queue.enqueue_or_debounce(db, USER, "Hello")

        data = client.get("/admin/jobs", params={"status": "completed", "limit": 500}, headers=HEADERS).json()

        assert data["total"] == 0
        assert data["limit"] == 50

    def test_unknown_status_is_rejected(self, client):
        response = client.get("/admin/jobs", params={"status": "stuck"}, headers=HEADERS)
        assert response.status_code == 400

    def test_process_now(self, client, db, queue, clock, fake_ai):
        queue.enqueue_or_debounce(db, USER, "Hello")
        clock.advance(seconds=3)

        response = client.post("/admin/jobs/process", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["processed"] == 1
        assert data["errors"] == 0
        assert "duration_ms" in data
        assert len(fake_ai.calls) == 1

    def test_process_releases_stale_jobs(self, client, db, queue, clock):
        job_id = queue.enqueue_or_debounce(db, USER, "Hello")
        clock.advance(seconds=3)
        queue._claim(db, job_id)
        clock.advance(hours=1)

        data = client.post("/admin/jobs/process", headers=HEADERS).json()

        assert data["released_stale"] == 1
        assert data["processed"] == 1
        db.expire_all()
        assert db.get(ScheduledJob, job_id).status == "completed"


class TestLogs:
    def test_filters_by_event_type(self, client, db):
        log_event(db, EventType.WEBHOOK_RECEIVED, payload={"object": "whatsapp_business_account"})
        log_event(db, EventType.MESSAGE_RECEIVED, user_id=USER)

        data = client.get("/admin/logs", params={"event_type": "message_received"}, headers=HEADERS).json()

        assert data["total"] == 1
        assert data["logs"][0]["user_id"] == USER


class TestBlock:
    def test_toggle_and_read(self, client, db):
        assert client.get(f"/admin/users/{USER}/block", headers=HEADERS).json()["blocked"] is False

        response = client.post(f"/admin/users/{USER}/block", headers=HEADERS)
        assert response.json() == {"user_id": USER, "blocked": True}
        assert client.get(f"/admin/users/{USER}/block", headers=HEADERS).json()["blocked"] is True

        assert client.post(f"/admin/users/{USER}/block", headers=HEADERS).json()["blocked"] is False

        logs = client.get("/admin/logs", params={"user_id": USER}, headers=HEADERS).json()["logs"]
        assert sorted(log["event_type"] for log in logs) == ["user_blocked", "user_unblocked"]


class TestConfig:
    def test_update_and_read_masked(self, client):
        response = client.put("/admin/config", json={"key": "chatbase_api_key", "value": "sk-live-1234"}, headers=HEADERS)
        assert response.json() == {"success": True, "key": "chatbase_api_key"}

        data = client.get("/admin/config", headers=HEADERS).json()
        assert data["chatbase_api_key"]["value"] == "••••••••1234"
        assert data["chatbase_api_key"]["masked"] is True

    def test_invalid_key(self, client):
        response = client.put("/admin/config", json={"key": "bogus", "value": "x"}, headers=HEADERS)
        assert response.status_code == 400


class TestHealth:
    def test_reports_queue(self, client, db, queue, clock):
        queue.enqueue_or_debounce(db, USER, "Hello")

        data = client.get("/admin/health", headers=HEADERS).json()

        assert data["jobs"]["pending"] == 1
        assert data["status"] == "ok"


def test_public_health(client):
    assert client.get("/health").json() == {"status": "ok"}
