import pytest
from fastapi.testclient import TestClient

from ws_bandwidth_measurement.config import Settings
from ws_bandwidth_measurement.web import create_app


@pytest.fixture
def client():
    settings = Settings(ws_port=9001, ws_path="/speed", payload_size=4096, heartbeat_interval=2.0)
    return TestClient(create_app(settings))


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"message": "Speed test server is running"}


def test_config(client):
    response = client.get("/config")
    assert response.status_code == 200
    assert response.json() == {
        "ws_port": 9001,
        "ws_path": "/speed",
        "payload_size": 4096,
        "heartbeat_interval": 2.0,
    }


def test_config_reports_loaded_payload_size():
    client = TestClient(create_app(Settings(), payload_size=123))
    assert client.get("/config").json()["payload_size"] == 123


def test_landing_page(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "text/html" in response.headers["content-type"]
    assert "/static/speedtest.js" in response.text


def test_script_is_served(client):
    response = client.get("/static/speedtest.js")
    assert response.status_code == 200
    assert "WebSocket" in response.text


def test_unknown_static_file(client):
    assert client.get("/static/nope.js").status_code == 404
