from sqlalchemy.exc import OperationalError

from extensions import db


def test_health_reports_database(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "ok"
    assert body["database"] == "connected"
    assert body["uptime"] >= 0
    assert body["timestamp"]


def test_health_reports_database_outage(app, client, monkeypatch):
    def broken_execute(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    with app.app_context():
        monkeypatch.setattr(db.session, "execute", broken_execute)
        resp = client.get("/api/health")
    assert resp.status_code == 503
    assert resp.get_json()["database"] == "disconnected"


def test_ai_health_ok(client, grader):
    grader["replies"].append("Hi")
    resp = client.get("/api/ai/health")
    assert resp.status_code == 200
    assert resp.get_json()["model"] == "gpt-4o"
    assert grader["calls"][0] == [{"role": "user", "content": "Hello"}]


def test_ai_health_without_key(app, client):
    app.config["OPENAI_API_KEY"] = None
    resp = client.get("/api/ai/health")
    assert resp.status_code == 503
    assert resp.get_json()["status"] == "error"


def test_ai_health_upstream_failure(client, grader):
    resp = client.get("/api/ai/health")
    assert resp.status_code == 503
