"""Tests for environment-driven backend configuration."""

import importlib
import os

import pytest

import botchat

from botchat.config import BackendConfig, ConfigError, load_backend_config


class TestBackendConfig:
    def test_urls_built_from_subdomain_and_region(self):
        config = BackendConfig(subdomain="abc123", region="ap-south-1")
        assert config.auth_url == "https://abc123.auth.ap-south-1.nhost.run/v1"
        assert config.graphql_url == "https://abc123.graphql.ap-south-1.nhost.run/v1"
        assert config.graphql_ws_url == "wss://abc123.graphql.ap-south-1.nhost.run/v1"

    def test_overrides_win_and_lose_trailing_slash(self):
        config = BackendConfig(
            auth_url_override="http://localhost:4000/v1/",
            graphql_url_override="http://localhost:8080/v1/graphql",
        )
        assert config.auth_url == "http://localhost:4000/v1"
        assert config.graphql_ws_url == "ws://localhost:8080/v1/graphql"

    def test_unsupported_scheme_rejected(self):
        config = BackendConfig(graphql_url_override="ftp://example.com/graphql")
        with pytest.raises(ConfigError):
            _ = config.graphql_ws_url


class TestLoadBackendConfig:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("NHOST_SUBDOMAIN", "proj")
        monkeypatch.setenv("NHOST_REGION", "eu-central-1")
        monkeypatch.setenv("NHOST_REQUEST_TIMEOUT", "12.5")
        monkeypatch.setenv("PERSIST_SESSION", "false")

        config = load_backend_config()

        assert config.subdomain == "proj"
        assert config.region == "eu-central-1"
        assert config.request_timeout == 12.5
        assert config.persist_session is False

    def test_defaults_to_local_project(self, monkeypatch):
        for name in ("NHOST_SUBDOMAIN", "NHOST_REGION", "NHOST_AUTH_URL", "NHOST_GRAPHQL_URL"):
            monkeypatch.delenv(name, raising=False)
        config = load_backend_config()
        assert config.auth_url == "https://local.auth.local.nhost.run/v1"

    def test_invalid_number_raises_config_error(self, monkeypatch):
        monkeypatch.setenv("NHOST_REFRESH_MARGIN", "soon")
        with pytest.raises(ConfigError):
            load_backend_config()


class TestEnvFiles:
    def test_local_file_overrides_base_file(self, tmp_path, monkeypatch):
        config_dir = tmp_path / "config"
        config_dir.mkdir()
        (config_dir / ".env").write_text("NHOST_SUBDOMAIN=from-base\nNHOST_REGION=eu-central-1\n")
        (config_dir / ".env.local").write_text("NHOST_SUBDOMAIN=from-local\n")
        monkeypatch.chdir(tmp_path)
        for name in ("NHOST_SUBDOMAIN", "NHOST_REGION", "NHOST_AUTH_URL"):
            monkeypatch.delenv(name, raising=False)

        importlib.reload(botchat)

        assert os.environ["NHOST_SUBDOMAIN"] == "from-local"
        assert load_backend_config().auth_url == "https://from-local.auth.eu-central-1.nhost.run/v1"
