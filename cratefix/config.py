"""Settings read from CRATEFIX_* environment variables."""

import os
from dataclasses import dataclass, field

from .registry import DEFAULT_INDEX_URL

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_CONCURRENCY = 6
DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_WEB_HOST = "127.0.0.1"
DEFAULT_WEB_PORT = 8000


def _env_str(key: str, default: str) -> str:
    return os.getenv(key) or default


def _env_int(key: str, default: int) -> int:
    """Read integer from environment variable."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    """Read float from environment variable."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    """Read boolean from environment variable."""
    value = os.getenv(key, "").lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    return default


@dataclass
class Settings:
    """
    Runtime settings.

    Environment Variables:
        CRATEFIX_INDEX_URL: Sparse index root (default: https://index.crates.io)
        CRATEFIX_TIMEOUT: Registry request timeout in seconds (default: 30)
        CRATEFIX_MAX_CONCURRENCY: Concurrent registry requests (default: 6)
        CRATEFIX_OFFLINE: Never touch the network (default: false)
        CRATEFIX_LOG_LEVEL: Log level for the CLI and web server (default: WARNING)
        CRATEFIX_WEB_HOST: Address the web API binds to (default: 127.0.0.1)
        CRATEFIX_WEB_PORT: Port the web API listens on (default: 8000)
    """

    index_url: str = field(default_factory=lambda: _env_str("CRATEFIX_INDEX_URL", DEFAULT_INDEX_URL))
    timeout: float = field(default_factory=lambda: _env_float("CRATEFIX_TIMEOUT", DEFAULT_TIMEOUT))
    max_concurrency: int = field(
        default_factory=lambda: _env_int("CRATEFIX_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY)
    )
    offline: bool = field(default_factory=lambda: _env_bool("CRATEFIX_OFFLINE", False))
    log_level: str = field(default_factory=lambda: _env_str("CRATEFIX_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper())
    web_host: str = field(default_factory=lambda: _env_str("CRATEFIX_WEB_HOST", DEFAULT_WEB_HOST))
    web_port: int = field(default_factory=lambda: _env_int("CRATEFIX_WEB_PORT", DEFAULT_WEB_PORT))

    def __post_init__(self):
        if self.max_concurrency < 1:
            self.max_concurrency = DEFAULT_MAX_CONCURRENCY
        if self.timeout <= 0:
            self.timeout = DEFAULT_TIMEOUT
        if not 0 < self.web_port < 65536:
            self.web_port = DEFAULT_WEB_PORT


def load_settings() -> Settings:
    return Settings()
