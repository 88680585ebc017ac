"""Backend configuration read from the environment.

Values come from ``config/.env`` / ``config/.env.local`` (loaded by the
package on import) or from the process environment.
"""

import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field


class ConfigError(ValueError):
    """Raised when the environment holds an unusable setting."""


_TRUTHY = {"1", "true", "yes", "on"}


def _service_url(subdomain: str, region: str, service: str) -> str:
    return f"https://{subdomain}.{service}.{region}.nhost.run/v1"


class BackendConfig(BaseModel):
    """Connection settings for the Nhost project."""

    subdomain: str = "local"
    region: str = "local"
    auth_url_override: Optional[str] = None
    graphql_url_override: Optional[str] = None
    request_timeout: float = Field(default=30.0, gt=0)
    refresh_margin: float = Field(default=60.0, ge=0)
    persist_session: bool = True
    message_poll_interval: float = Field(default=1.0, gt=0)

    @property
    def auth_url(self) -> str:
        return (self.auth_url_override or _service_url(self.subdomain, self.region, "auth")).rstrip("/")

    @property
    def graphql_url(self) -> str:
        return (self.graphql_url_override or _service_url(self.subdomain, self.region, "graphql")).rstrip("/")

    @property
    def graphql_ws_url(self) -> str:
        url = self.graphql_url
        if url.startswith("https://"):
            return "wss://" + url[len("https://"):]
        if url.startswith("http://"):
            return "ws://" + url[len("http://"):]
        raise ConfigError(f"Unsupported GraphQL URL scheme: {url}")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def load_backend_config() -> BackendConfig:
    """Build a fresh config from the current environment."""
    return BackendConfig(
        subdomain=os.getenv("NHOST_SUBDOMAIN", "local"),
        region=os.getenv("NHOST_REGION", "local"),
        auth_url_override=os.getenv("NHOST_AUTH_URL") or None,
        graphql_url_override=os.getenv("NHOST_GRAPHQL_URL") or None,
        request_timeout=_float_env("NHOST_REQUEST_TIMEOUT", 30.0),
        refresh_margin=_float_env("NHOST_REFRESH_MARGIN", 60.0),
        persist_session=os.getenv("PERSIST_SESSION", "true").strip().lower() in _TRUTHY,
        message_poll_interval=_float_env("MESSAGE_POLL_INTERVAL", 1.0),
    )


@lru_cache(maxsize=1)
def get_backend_config() -> BackendConfig:
    return load_backend_config()
