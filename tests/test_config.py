"""
Tests for the credential store.
"""

import json

import pytest

from helpdesk_connector.config import (
    CONFIG_PATH_ENV,
    ConfigError,
    CredentialStore,
    env_credentials,
    get_config_path,
    load_config,
)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "zendesk": {"subdomain": "acme", "email": "file@acme.com", "token": "file-token"},
        "groove": {"api_token": "gv-file"},
    }), encoding="utf-8")
    return path


class TestLoadConfig:
    """Tests for file plus environment loading."""

    def test_file_values(self, config_file):
        """Test credentials are read per source from the file."""
        config = load_config(config_file, environ={})

        assert config["zendesk"]["token"] == "file-token"
        assert config["groove"] == {"api_token": "gv-file"}

    def test_environment_wins(self, config_file):
        """Test a set environment variable overrides the file value."""
        config = load_config(config_file, environ={"ZENDESK_TOKEN": "env-token"})

        assert config["zendesk"]["token"] == "env-token"
        assert config["zendesk"]["email"] == "file@acme.com"

    def test_environment_only(self, tmp_path):
        """Test sources can be configured without any file."""
        config = load_config(tmp_path / "absent.json", environ={"INTERCOM_ACCESS_TOKEN": "ic-token"})

        assert config == {"intercom": {"access_token": "ic-token"}}

    def test_empty_environment_value_ignored(self, config_file):
        """Test an empty variable does not blank out the file value."""
        config = load_config(config_file, environ={"ZENDESK_TOKEN": ""})

        assert config["zendesk"]["token"] == "file-token"

    def test_invalid_json(self, tmp_path):
        """Test a corrupt file raises ConfigError."""
        path = tmp_path / "config.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ConfigError):
            load_config(path, environ={})

    def test_non_object(self, tmp_path):
        """Test a file holding a list is rejected."""
        path = tmp_path / "config.json"
        path.write_text("[]", encoding="utf-8")

        with pytest.raises(ConfigError):
            load_config(path, environ={})

    def test_config_path_override(self, config_file):
        """Test HELPDESK_EXPORT_CONFIG points at another file."""
        environ = {CONFIG_PATH_ENV: str(config_file)}

        assert get_config_path(environ) == config_file
        assert load_config(environ=environ)["groove"]["api_token"] == "gv-file"

    def test_default_path(self):
        """Test the default lives under the home directory."""
        path = get_config_path({})
        assert path.parts[-2:] == (".helpdesk-export", "config.json")


class TestEnvCredentials:
    def test_only_set_variables(self):
        """Test unset variables are left out."""
        environ = {"KAYAKO_DOMAIN": "acme.kayako.com", "KAYAKO_EMAIL": "a@acme.com"}

        assert env_credentials("kayako", environ) == {"domain": "acme.kayako.com", "email": "a@acme.com"}
        assert env_credentials("unknown", environ) == {}


class TestCredentialStore:
    """Tests for the read-only store."""

    def test_missing_keys(self, config_file):
        """Test missing keys are listed in required order."""
        store = CredentialStore.load(config_file, environ={})

        assert store.missing_keys("zendesk", ("subdomain", "email", "token")) == []
        assert store.missing_keys("kayako", ("domain", "email", "password")) == ["domain", "email", "password"]

    def test_credentials_are_copies(self, config_file):
        """Test callers cannot mutate the stored credentials."""
        store = CredentialStore.load(config_file, environ={})

        creds = store.credentials_for("zendesk")
        creds["token"] = "changed"

        assert store.credentials_for("zendesk")["token"] == "file-token"
        assert store.credentials_for("helpscout") == {}

    def test_configured_sources(self, config_file):
        store = CredentialStore.load(config_file, environ={"HELPSCOUT_APP_ID": "app"})

        assert store.configured_sources() == ["groove", "helpscout", "zendesk"]
