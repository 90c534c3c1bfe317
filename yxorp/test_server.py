from fastapi.testclient import TestClient

from yxorp.proxy import ProxyDispatcher
from yxorp.server import app, build_dispatcher, load_landing_page


def test_landing_page_is_bundled():
    page = load_landing_page()

    assert b"<form" in page


def test_build_dispatcher_uses_configuration():
    dispatcher = build_dispatcher()

    assert isinstance(dispatcher, ProxyDispatcher)
    assert dispatcher.origin.base_url == "http://localhost:5050"
    assert dispatcher.codec.default_scheme == "https"


def test_app_serves_landing_page():
    with TestClient(app) as client:
        response = client.get("/")

    assert response.status_code == 200
    assert response.content == load_landing_page()


def test_metrics_are_exposed():
    with TestClient(app) as client:
        client.get("/")
        response = client.get("/metrics")

    assert response.status_code == 200
    assert "fastapi_app_info" in response.text
