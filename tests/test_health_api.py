from fastapi.testclient import TestClient

import src.api.main as api_main


def test_health_returns_ok_when_database_is_up(monkeypatch) -> None:
    monkeypatch.setattr(api_main, "test_db_connection", lambda: (True, None))

    client = TestClient(api_main.app)
    response = client.get("/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["services"]["database"]["ok"] is True


def test_health_returns_503_when_database_fails(monkeypatch) -> None:
    monkeypatch.setattr(api_main, "test_db_connection", lambda: (False, "db unavailable"))

    client = TestClient(api_main.app)
    response = client.get("/health")

    assert response.status_code == 503
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["services"]["database"]["error"] == "db unavailable"


def test_version_endpoint_echoes_request_id() -> None:
    client = TestClient(api_main.app)
    response = client.get("/version", headers={"x-request-id": "req-123"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["name"] == api_main.settings.app_name
    assert payload["version"]
    assert response.headers["x-request-id"] == "req-123"
