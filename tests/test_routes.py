import io
import json

import pytest

from services import migration_store, orchestrator


CSV = (
    "eventCode,teacherName,audio1-tracksNo\n"
    "2019-06-01-A,Jigme Khyentse Rinpoche,2\n"
    "2019-07-01-B,Unknown Lama,1\n"
)


class FakeJob:
    id = "job-42"


class FakeQueue:
    def __init__(self):
        self.enqueued = []

    def enqueue(self, func, *args, **kwargs):
        self.enqueued.append((func, args, kwargs))
        return FakeJob()


@pytest.fixture
def app():
    from app import create_app

    application = create_app()
    application.config["TESTING"] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def queue(monkeypatch):
    fake = FakeQueue()
    monkeypatch.setattr(orchestrator, "get_queue", lambda name=None: fake)
    return fake


def _upload(client, filename="manifest.csv", title="Arquivo 2019"):
    return client.post(
        "/api/migrations",
        data={"file": (io.BytesIO(CSV.encode("utf-8")), filename), "title": title},
        content_type="multipart/form-data"
    )


def test_create_and_get(client):
    response = _upload(client)
    assert response.status_code == 201
    migration = response.get_json()["migration"]
    assert migration["status"] == "uploaded"
    assert migration["title"] == "Arquivo 2019"
    assert migration["csv_row_count"] == 2

    detail = client.get(f"/api/migrations/{migration['id']}").get_json()["migration"]
    assert detail["catalog_count"] == 0
    assert detail["analysis"] == {}

    listing = client.get("/api/migrations?status=uploaded").get_json()
    assert listing["total"] == 1
    assert listing["migrations"][0]["id"] == migration["id"]


def test_upload_requires_csv(client):
    assert client.post("/api/migrations", data={}, content_type="multipart/form-data").status_code == 400
    assert _upload(client, filename="manifest.xlsx").status_code == 400


def test_invalid_or_unknown_id(client):
    assert client.get("/api/migrations/not-a-uuid").status_code == 404
    missing = client.get("/api/migrations/00000000-0000-0000-0000-000000000000")
    assert missing.status_code == 404
    assert missing.get_json()["ok"] is False


def test_analyze_enqueues_job(client, queue):
    migration_id = _upload(client).get_json()["migration"]["id"]
    response = client.post(f"/api/migrations/{migration_id}/analyze")
    assert response.status_code == 202
    assert response.get_json()["job_id"] == "job-42"
    assert queue.enqueued[0][1] == (migration_id,)

    orchestrator.transition(migration_id, "uploaded", "analyzing")
    assert client.post(f"/api/migrations/{migration_id}/analyze").status_code == 409


def test_decisions_and_approval(client, seed_migration):
    migration_id, ids = seed_migration({"EV": [("mediateca/EV/notes.txt", 5)]})
    catalog_id = ids["mediateca/EV/notes.txt"]

    assert client.post(f"/api/migrations/{migration_id}/approve", json={}).status_code == 409

    bad = client.post(
        f"/api/migrations/{migration_id}/decisions",
        json={"decisions": [{"catalog_id": 999999, "action": "ignore"}]}
    )
    assert bad.status_code == 400
    assert client.post(f"/api/migrations/{migration_id}/decisions", json={}).status_code == 400

    response = client.post(
        f"/api/migrations/{migration_id}/decisions",
        json={"decisions": [{"catalog_id": catalog_id, "action": "ignore"}], "decided_by": "ana"}
    )
    assert response.status_code == 200
    assert response.get_json()["status"] == "decisions_complete"

    listed = client.get(f"/api/migrations/{migration_id}/decisions?action=ignore").get_json()
    assert listed["total"] == 1
    assert listed["decisions"][0]["decision"]["decided_by"] == "ana"

    approved = client.post(f"/api/migrations/{migration_id}/approve", json={"approved_by": "ana"})
    assert approved.get_json()["status"] == "approved"


def test_execute_enqueues(client, seed_migration, queue):
    migration_id, _ = seed_migration({}, status="approved")
    response = client.post(f"/api/migrations/{migration_id}/execute")
    assert response.status_code == 202
    assert migration_store.get_status(migration_id) == "executing"
    assert client.post(f"/api/migrations/{migration_id}/execute").status_code == 409


def test_catalog_and_logs(client, seed_migration):
    migration_id, _ = seed_migration({
        "EV-1": [("mediateca/EV-1/001 Talk.mp3", 10)],
        "EV-2": [("mediateca/EV-2/cover.jpg", 10)],
    })
    catalog = client.get(f"/api/migrations/{migration_id}/catalog?event_code=EV-1").get_json()
    assert catalog["total"] == 1
    assert catalog["entries"][0]["filename"] == "001 Talk.mp3"

    client.post(f"/api/migrations/{migration_id}/cancel")
    logs = client.get(f"/api/migrations/{migration_id}/logs?level=warn").get_json()
    assert logs["total"] == 1


def test_cancel_then_delete(client, seed_migration):
    migration_id, _ = seed_migration({"EV": [("mediateca/EV/a.mp3", 1)]})
    assert client.delete(f"/api/migrations/{migration_id}").status_code == 409

    response = client.post(f"/api/migrations/{migration_id}/cancel")
    assert response.get_json()["status"] == "cancelled"
    assert client.post(f"/api/migrations/{migration_id}/cancel").status_code == 409

    assert client.delete(f"/api/migrations/{migration_id}").status_code == 200
    assert client.get(f"/api/migrations/{migration_id}").status_code == 404


def test_repairs_endpoints(client, seed_migration):
    migration_id, _ = seed_migration({"EV": [("mediateca/EV/001 Talk.mp3", 10)]})
    planned = client.get(f"/api/migrations/{migration_id}/repairs").get_json()
    assert planned["total"] == 1

    applied = client.post(f"/api/migrations/{migration_id}/repairs", json={"decided_by": "ana"})
    assert applied.get_json()["applied"] == 1


class TestCli:
    def test_create_and_status(self, app, tmp_path):
        path = tmp_path / "manifest.csv"
        path.write_text(CSV, encoding="utf-8")
        runner = app.test_cli_runner()

        result = runner.invoke(args=["migration", "create", str(path), "--title", "CLI"])
        assert result.exit_code == 0
        migration_id = result.output.strip()

        result = runner.invoke(args=["migration", "status", migration_id])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["status"] == "uploaded"
        assert data["unresolved"] == 0

    def test_invalid_transition_is_reported(self, app, seed_migration):
        migration_id, _ = seed_migration({}, status="completed")
        result = app.test_cli_runner().invoke(args=["migration", "cancel", migration_id])
        assert result.exit_code != 0
