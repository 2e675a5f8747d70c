"""Environment-driven dispatch settings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from agent_layer.errors import ConfigurationError

ENV_CACHE_DIR = "AL_CACHE_DIR"
ENV_NO_NETWORK = "AL_NO_NETWORK"
ENV_VERSION_OVERRIDE = "AL_VERSION"
ENV_SHIM_ACTIVE = "AL_SHIM_ACTIVE"
ENV_MAX_DOWNLOAD_BYTES = "AL_MAX_DOWNLOAD_BYTES"
ENV_RELEASES_BASE_URL = "AL_RELEASES_BASE_URL"

RELEASES_REPO = "conn-castle/agent-layer"
DEFAULT_RELEASES_BASE_URL = f"https://github.com/{RELEASES_REPO}/releases"
DEFAULT_MAX_DOWNLOAD_BYTES = 100 * 1024 * 1024

Getenv = Callable[[str], str]


class ConfigError(ConfigurationError):
    """Raised when dispatch settings are invalid."""


@dataclass(frozen=True)
class DispatchSettings:
    cache_dir: str | None = None
    no_network: bool = False
    version_override: str | None = None
    shim_active: bool = False
    max_download_bytes: int = DEFAULT_MAX_DOWNLOAD_BYTES
    releases_base_url: str = DEFAULT_RELEASES_BASE_URL


def parse_max_download_bytes(raw: str) -> int:
    value = raw.strip()
    if not value:
        return DEFAULT_MAX_DOWNLOAD_BYTES
    try:
        parsed = int(value, 10)
    except ValueError:
        return DEFAULT_MAX_DOWNLOAD_BYTES
    if parsed <= 0:
        return DEFAULT_MAX_DOWNLOAD_BYTES
    return parsed


def load_dispatch_settings(getenv: Getenv) -> DispatchSettings:
    """Read the dispatch environment contract.

    ``getenv`` returns ``""`` for unset keys. Nothing is cached; callers
    load fresh settings for every dispatch attempt.
    """
    cache_dir = getenv(ENV_CACHE_DIR).strip() or None
    version_override = getenv(ENV_VERSION_OVERRIDE).strip() or None

    configured_base = getenv(ENV_RELEASES_BASE_URL).strip()
    releases_base_url = (configured_base or DEFAULT_RELEASES_BASE_URL).rstrip("/")
    if not releases_base_url.startswith(("http://", "https://")):
        raise ConfigError(f"{ENV_RELEASES_BASE_URL} must be an http(s) URL")

    return DispatchSettings(
        cache_dir=cache_dir,
        no_network=bool(getenv(ENV_NO_NETWORK).strip()),
        version_override=version_override,
        shim_active=getenv(ENV_SHIM_ACTIVE) != "",
        max_download_bytes=parse_max_download_bytes(getenv(ENV_MAX_DOWNLOAD_BYTES)),
        releases_base_url=releases_base_url,
    )
