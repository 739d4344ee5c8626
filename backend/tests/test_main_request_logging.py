import logging

from fastapi.testclient import TestClient

from app.main import app


def test_request_id_is_echoed():
    with TestClient(app) as client:
        response = client.get("/api/health", headers={"X-Request-Id": "req-42"})
    assert response.status_code == 200
    assert response.headers["X-Request-Id"] == "req-42"


def test_missing_route_logs_warning(caplog):
    caplog.set_level(logging.INFO, logger="app.request")
    with TestClient(app) as client:
        response = client.get("/api/allowance-missing")
    assert response.status_code == 404
    records = [record for record in caplog.records if record.name == "app.request"]
    assert records[-1].levelno == logging.WARNING
    assert records[-1].getMessage().startswith("GET /api/allowance-missing | ERROR: endpoint not found")
    assert "status=404" in records[-1].getMessage()
