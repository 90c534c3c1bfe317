import importlib

import pytest


@pytest.fixture
def vars_module():
    import yxorp.vars as vars_module

    yield vars_module
    importlib.reload(vars_module)


def test_defaults(vars_module, monkeypatch):
    for name in ("PORT", "PUBLIC_URL", "DEFAULT_TARGET_SCHEME", "HISTORY_TIMEOUT_MS"):
        monkeypatch.delenv(name, raising=False)

    importlib.reload(vars_module)

    assert vars_module.PORT == 5050
    assert vars_module.PUBLIC_URL == "http://localhost:5050"
    assert vars_module.DEFAULT_TARGET_SCHEME == "https"
    assert vars_module.HISTORY_TIMEOUT_MS == 600000
    assert vars_module.LANDING_PAGE.endswith("index.html")


def test_public_url_follows_port(vars_module, monkeypatch):
    monkeypatch.delenv("PUBLIC_URL", raising=False)
    monkeypatch.setenv("PORT", "8081")

    importlib.reload(vars_module)

    assert vars_module.PUBLIC_URL == "http://localhost:8081"


def test_overrides(vars_module, monkeypatch):
    monkeypatch.setenv("PUBLIC_URL", "https://proxy.example.org/")
    monkeypatch.setenv("DEFAULT_TARGET_SCHEME", "HTTP:")
    monkeypatch.setenv("REWRITE_SCRIPT_HEURISTICS", "false")
    monkeypatch.setenv("DISCONNECT_POLL_INTERVAL", "0.1")

    importlib.reload(vars_module)

    assert vars_module.PUBLIC_URL == "https://proxy.example.org"
    assert vars_module.DEFAULT_TARGET_SCHEME == "http"
    assert vars_module.REWRITE_SCRIPT_HEURISTICS is False
    assert vars_module.REWRITE_HTML_URLS is True
    assert vars_module.DISCONNECT_POLL_INTERVAL == 0.1
