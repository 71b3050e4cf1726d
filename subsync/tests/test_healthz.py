from fastapi.testclient import TestClient

import subsync.api.health as health_api
from subsync.main import app

client = TestClient(app)


def test_healthz_always_ok():
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json().get("status") == "ok"


def test_readyz_ok_with_real_schema(db):
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json().get("status") == "ok"


def test_readyz_reports_missing_tables(monkeypatch):
    class FakeConn:
        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def exec_driver_sql(self, query):
            return None

    class FakeEngine:
        def connect(self):
            return FakeConn()

    class FakeInspector:
        def __init__(self, tables):
            self.tables = set(tables)

        def has_table(self, name):
            return name in self.tables

    monkeypatch.setattr(health_api, "get_engine", lambda: FakeEngine())
    monkeypatch.setattr(health_api, "inspect", lambda engine: FakeInspector(["app_users", "roles"]))

    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert "subscription_plans" in resp.json()["detail"]


def test_readyz_handles_db_down(monkeypatch):
    def boom():
        raise RuntimeError("db down")

    monkeypatch.setattr(health_api, "get_engine", boom)

    resp = client.get("/readyz")
    body = resp.json()
    assert resp.status_code == 503
    assert body.get("status") == "error"
    assert "db down" not in body.get("detail", "")


def test_metrics_endpoint_exports_counters():
    client.get("/healthz")

    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert 'http_requests_total{method="GET",path="/healthz",status="200"}' in resp.text
    assert "# TYPE subscription_webhook_events_total counter" in resp.text

    again = client.get("/metrics")
    assert 'path="/metrics"' not in again.text
