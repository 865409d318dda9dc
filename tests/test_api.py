#!/usr/bin/env python3
"""
API tests for the plugdeck FastAPI application.

Each test builds an app over a temporary plugins directory and talks to it
through FastAPI's TestClient.
"""

import pytest
from fastapi.testclient import TestClient

from plugdeck.api.main import create_app
from plugdeck.config import RuntimeSettings

SETTINGS_SCHEMA = [
    {"key": "apiKey", "label": "API Key", "type": "secret", "required": True, "minLength": 10},
    {"key": "org", "label": "Organization", "type": "text"},
    {"key": "pageSize", "type": "number", "min": 1, "max": 100, "default": 50},
]


@pytest.fixture
def app(plugins_dir):
    return create_app(RuntimeSettings(plugins_dir=str(plugins_dir)))


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def github(write_manifest):
    return write_manifest(
        "github",
        settingsSchema=SETTINGS_SCHEMA,
        routes=[{"method": "POST", "path": "/sync"}],
        jobs=[{"name": "sync", "route": "/sync", "cron": "*/5 * * * *"}],
        menus=[
            {"label": "Overview", "path": "/overview"},
            {"label": "Admin", "path": "/admin", "capabilities": ["admin"]},
        ],
    )


class TestHealthEndpoints:

    def test_health(self, client, github):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["plugins_discovered"] == 1

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-fixed"})
        assert response.headers["X-Request-ID"] == "req-fixed"
        assert client.get("/health").headers["X-Request-ID"].startswith("req-")

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "plugdeck_manifest_loads_total" in response.text


class TestPluginEndpoints:

    def test_list_reports_broken_plugins(self, client, github, write_manifest):
        write_manifest("broken", raw="{")

        response = client.get("/plugins")

        assert response.status_code == 200
        by_key = {p["key"]: p for p in response.json()}
        assert by_key["github"]["ok"] is True
        assert by_key["github"]["jobs"] == 1
        assert by_key["broken"]["ok"] is False
        assert by_key["broken"]["error"]["type"] == "ManifestMalformed"

    def test_get_plugin(self, client, github):
        response = client.get("/plugins/github")
        assert response.status_code == 200
        data = response.json()
        assert data["id"] == "github"
        assert [s["key"] for s in data["settings"]] == ["apiKey", "org", "pageSize"]
        assert data["jobs"][0]["cron"] == "*/5 * * * *"

    def test_get_missing_plugin(self, client):
        response = client.get("/plugins/nope")
        assert response.status_code == 404
        assert response.json()["detail"]["type"] == "ManifestNotFound"

    def test_get_malformed_plugin(self, client, write_manifest):
        write_manifest("broken", {"id": "broken"})
        response = client.get("/plugins/broken")
        assert response.status_code == 422
        assert response.json()["detail"]["plugin_key"] == "broken"


class TestConfigEndpoints:

    def test_invalid_config_lists_every_error(self, client, github):
        response = client.post("/plugins/github/config/validate", json={"config": {"pageSize": 500}})

        assert response.status_code == 422
        assert response.json()["detail"]["errors"] == [
            {"field": "apiKey", "message": "API Key is required"},
            {"field": "pageSize", "message": "pageSize must be at most 100"},
        ]

    def test_valid_config_is_returned_masked(self, client, github):
        response = client.post("/plugins/github/config/validate", json={
            "config": {"apiKey": "abcd1234efgh5678", "org": "acme"},
            "apply_defaults": True,
        })

        assert response.status_code == 200
        assert response.json() == {
            "valid": True,
            "config": {"apiKey": "abcd***5678", "org": "acme", "pageSize": 50},
        }

    def test_schema_defect_is_a_server_error(self, client, write_manifest):
        write_manifest("bad", settingsSchema=[{"key": "name", "type": "text", "regex": "([unclosed"}])

        response = client.post("/plugins/bad/config/validate", json={"config": {"name": "x"}})

        assert response.status_code == 500
        detail = response.json()["detail"]
        assert detail["type"] == "SchemaProgrammerError"
        assert detail["plugin_key"] == "bad"

    def test_validate_missing_plugin(self, client):
        response = client.post("/plugins/nope/config/validate", json={"config": {}})
        assert response.status_code == 404

    def test_display_masks_without_validating(self, client, github):
        response = client.post("/plugins/github/config/display", json={"config": {"apiKey": "short"}})
        assert response.status_code == 200
        assert response.json() == {"plugin_key": "github", "config": {"apiKey": "***REDACTED***"}}


class TestMenuEndpoint:

    def test_menus_filtered_by_scopes_header(self, client, github):
        response = client.get("/menus")
        assert [m["label"] for m in response.json()["menus"]] == ["Overview"]

        response = client.get("/menus", headers={"X-Scopes": "admin"})
        labels = [m["label"] for m in response.json()["menus"]]
        assert labels == ["Overview", "Admin"]

    def test_menus_for_selected_plugins_with_diagnostics(self, client, github, write_manifest):
        write_manifest("jira", menus=[{"label": "Issues", "path": "/issues"}])
        write_manifest("broken", raw="{")

        response = client.get("/menus", params=[("plugin", "jira"), ("plugin", "broken")])

        assert response.status_code == 200
        data = response.json()
        assert [m["pluginKey"] for m in data["menus"]] == ["jira"]
        assert data["menus"][0]["path"] == "/plugins/jira/issues"
        assert data["diagnostics"][0]["plugin_key"] == "broken"


class TestSanitizeEndpoint:

    def test_sanitize(self, client):
        response = client.post("/events/sanitize", json={
            "payload": {"event": "push", "token": "abcd1234efgh5678", "hook": "https://h.example/x1y2"},
            "extra_keys": ["hook"],
        })
        assert response.status_code == 200
        assert response.json() == {"payload": {
            "event": "push", "token": "abcd***5678", "hook": "http***x1y2",
        }}

    def test_payload_is_required(self, client):
        assert client.post("/events/sanitize", json={}).status_code == 422


class TestErrorHandling:

    def test_unexpected_error_returns_standard_body(self, app, github):
        async def exploding_load_many(keys):
            raise RuntimeError("disk on fire")

        app.state.loader.load_many = exploding_load_many
        client = TestClient(app, raise_server_exceptions=False)

        response = client.get("/plugins")

        assert response.status_code == 500
        assert response.json()["error"] == "InternalServerError"
