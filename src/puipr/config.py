"""Application settings via pydantic-settings."""

import math
import re
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_FETCH_INTERVAL_SECONDS: float = 300.0
MIN_FETCH_INTERVAL_SECONDS: float = 1.0
DEFAULT_TAUTULLI_LENGTH: int = 100

_BARE_SECONDS = re.compile(r"\d+(?:\.\d+)?")
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS: dict[str, float] = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: str) -> float:
    """Parse a duration such as ``"5m"``, ``"1h30m"``, ``"45s"`` or ``"90"`` into seconds.

    Raises:
        ValueError: If the value is empty or not a duration.
    """
    text = value.strip().lower()
    if not text:
        msg = "Empty duration"
        raise ValueError(msg)

    if _BARE_SECONDS.fullmatch(text):
        return float(text)

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        msg = f"Invalid duration: {value!r}"
        raise ValueError(msg)
    return total


class Settings(BaseSettings):
    """Application configuration loaded from environment variables with PUIPR_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="PUIPR_",
        env_file=".env",
        case_sensitive=False,
    )

    # --- Core ---
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"
    database_url: str = "sqlite+aiosqlite:///./data/puipr.db"
    log_level: str = "INFO"
    log_format: str = "json"
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 1707

    # --- Push ingestion ---
    ingest_token: str = ""
    max_ingest_bytes: int = 10 * 1024 * 1024

    # --- Tautulli poller ---
    tautulli_url: str = ""
    tautulli_apikey: str = ""
    tautulli_length: str = str(DEFAULT_TAUTULLI_LENGTH)
    fetch_interval: str = "5m"
    fetch_timeout_seconds: float = 15.0
    ingest_timeout_seconds: float = 20.0

    @property
    def poller_enabled(self) -> bool:
        """The poller only runs when both the Tautulli URL and API key are set."""
        return bool(self.tautulli_url and self.tautulli_apikey)

    @property
    def fetch_interval_seconds(self) -> float:
        """Poll interval in seconds, falling back to 5 minutes when invalid or too short."""
        try:
            seconds = parse_duration(self.fetch_interval)
        except ValueError:
            return DEFAULT_FETCH_INTERVAL_SECONDS
        if not math.isfinite(seconds) or seconds < MIN_FETCH_INTERVAL_SECONDS:
            return DEFAULT_FETCH_INTERVAL_SECONDS
        return seconds

    @property
    def history_length(self) -> int:
        """Number of history rows requested per poll, 100 when invalid."""
        try:
            length = int(self.tautulli_length.strip())
        except ValueError:
            return DEFAULT_TAUTULLI_LENGTH
        return length if length > 0 else DEFAULT_TAUTULLI_LENGTH


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
