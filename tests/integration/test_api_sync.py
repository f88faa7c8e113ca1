"""Integration tests for /sync routes."""
import pytest
from fastapi.testclient import TestClient

from quotesync.api.main import create_app
from quotesync.sync.manager import SyncManager

T5 = "2025-03-01 05:00:00"
T10 = "2025-03-01 10:00:00"


@pytest.fixture(name="client")
def client_fixture(settings, local_engine, remote_engine):
    manager = SyncManager(settings, local_engine=local_engine)
    app = create_app(manager)
    with TestClient(app) as c:
        yield c


class TestSyncRoutes:
    def test_status_before_any_run(self, client):
        resp = client.get("/sync/status")
        assert resp.status_code == 200
        body = resp.json()
        assert body["is_syncing"] is False
        assert body["last_sync_time"] is None
        assert body["username"] == "alice"
        assert body["scheduled_sync"] is False  # auto_sync disabled in tests

    def test_trigger_runs_sync(self, client, local_engine, insert_row):
        insert_row(local_engine, "customers", customerCode="C1", name="Acme", updated_at=T10)

        resp = client.post("/sync/trigger")

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["status"] == "success"
        assert body["stats"]["pushed"]["customers"] == 1
        assert "timestamp" in body

    def test_history_after_trigger(self, client):
        client.post("/sync/trigger")
        client.post("/sync/trigger")

        resp = client.get("/sync/history", params={"limit": 1})

        assert resp.status_code == 200
        runs = resp.json()
        assert len(runs) == 1
        assert runs[0]["status"] == "success"
        assert runs[0]["direction"] == "bidirectional"

    def test_history_limit_validated(self, client):
        assert client.get("/sync/history", params={"limit": 0}).status_code == 422

    def test_test_connection(self, client):
        resp = client.get("/sync/test-connection")
        assert resp.status_code == 200
        assert resp.json()["success"] is True


class TestConflictRoutes:
    def _seed(self, client, local_engine, remote_engine, insert_row):
        insert_row(local_engine, "customers", customerCode="C1", name="Local", updated_at=T10)
        insert_row(remote_engine, "customers", customerCode="C1", name="Master", updated_at=T5)
        client.post("/sync/trigger")

    def test_list_pending(self, client, local_engine, remote_engine, insert_row):
        self._seed(client, local_engine, remote_engine, insert_row)

        resp = client.get("/sync/conflicts")

        assert resp.status_code == 200
        conflicts = resp.json()
        assert len(conflicts) == 1
        assert conflicts[0]["remote_data"]["name"] == "Master"
        assert conflicts[0]["local_data"]["name"] == "Local"

    def test_resolve(self, client, local_engine, remote_engine, insert_row):
        self._seed(client, local_engine, remote_engine, insert_row)
        conflict_id = client.get("/sync/conflicts").json()[0]["id"]

        resp = client.post(f"/sync/conflicts/{conflict_id}/resolve", json={"resolution": "local"})

        assert resp.status_code == 200
        assert resp.json()["resolved"] is True
        assert client.get("/sync/conflicts").json() == []

    def test_resolve_unknown_id(self, client):
        resp = client.post("/sync/conflicts/42/resolve", json={"resolution": "local"})
        assert resp.status_code == 404

    def test_resolve_bad_resolution(self, client, local_engine, remote_engine, insert_row):
        self._seed(client, local_engine, remote_engine, insert_row)
        conflict_id = client.get("/sync/conflicts").json()[0]["id"]

        resp = client.post(f"/sync/conflicts/{conflict_id}/resolve", json={"resolution": "both"})

        assert resp.status_code == 400
