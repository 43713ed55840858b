"""
Credential store.

Credentials come from `~/.helpdesk-export/config.json` (one object per
source, keyed by source name) with environment variable fallbacks. An
environment variable that is set wins over the file. The store is read
only: this package never writes secrets to disk.

    {
      "zendesk": {"subdomain": "acme", "email": "agent@acme.com", "token": "..."},
      "groove": {"api_token": "..."}
    }
"""

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

CONFIG_PATH_ENV = "HELPDESK_EXPORT_CONFIG"

# source -> credential key -> environment variable
ENV_MAPPINGS: dict[str, dict[str, str]] = {
    "zendesk": {
        "subdomain": "ZENDESK_SUBDOMAIN",
        "email": "ZENDESK_EMAIL",
        "token": "ZENDESK_TOKEN",
    },
    "helpscout": {
        "app_id": "HELPSCOUT_APP_ID",
        "app_secret": "HELPSCOUT_APP_SECRET",
        "mailbox_id": "HELPSCOUT_MAILBOX_ID",
    },
    "kayako": {
        "domain": "KAYAKO_DOMAIN",
        "email": "KAYAKO_EMAIL",
        "password": "KAYAKO_PASSWORD",
    },
    "intercom": {
        "access_token": "INTERCOM_ACCESS_TOKEN",
    },
    "groove": {
        "api_token": "GROOVE_API_TOKEN",
    },
}


class ConfigError(Exception):
    """Raised when the config file exists but cannot be read."""
    pass


def get_config_path(environ: Mapping[str, str] | None = None) -> Path:
    """Config file path; HELPDESK_EXPORT_CONFIG overrides the default."""
    environ = os.environ if environ is None else environ
    override = environ.get(CONFIG_PATH_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".helpdesk-export" / "config.json"


def env_credentials(source: str, environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Credentials for `source` taken only from environment variables that are set."""
    environ = os.environ if environ is None else environ
    return {
        key: environ[var]
        for key, var in ENV_MAPPINGS.get(source, {}).items()
        if environ.get(var)
    }


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, dict[str, Any]]:
    """
    Load per-source credentials from file, with environment variable fallbacks.

    Priority:
    1. Environment variables (when set)
    2. Config file values

    Raises:
        ConfigError: If the file exists but is not a JSON object
    """
    environ = os.environ if environ is None else environ
    config_path = Path(path) if path is not None else get_config_path(environ)

    config: dict[str, dict[str, Any]] = {}
    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                loaded = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"{config_path} is not valid JSON: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigError(f"{config_path} must contain a JSON object")
        config = {
            name: dict(values)
            for name, values in loaded.items()
            if isinstance(values, dict)
        }
        logger.debug("Loaded config file", path=str(config_path), sources=sorted(config))

    for source in ENV_MAPPINGS:
        overrides = env_credentials(source, environ)
        if overrides:
            config.setdefault(source, {}).update(overrides)

    return config


class CredentialStore:
    """
    Read-only view of per-source credentials.

    Example:
        store = CredentialStore.load()
        source = ZendeskSource.from_credentials(store.credentials_for("zendesk"))
    """

    def __init__(self, config: dict[str, dict[str, Any]] | None = None):
        self._config = config or {}

    @classmethod
    def load(
        cls,
        path: str | Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> "CredentialStore":
        return cls(load_config(path, environ))

    def credentials_for(self, source: str) -> dict[str, Any]:
        """A copy of the credentials for `source` ({} when none are configured)."""
        return dict(self._config.get(source, {}))

    def missing_keys(self, source: str, required: tuple[str, ...]) -> list[str]:
        credentials = self._config.get(source, {})
        return [key for key in required if not credentials.get(key)]

    def configured_sources(self) -> list[str]:
        return sorted(name for name, values in self._config.items() if values)
