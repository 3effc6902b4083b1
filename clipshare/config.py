"""Configuration from environment (no hardcoded secrets)."""

from pathlib import Path
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Backend settings from env."""

    model_config = SettingsConfigDict(env_prefix="CLIPSHARE_", extra="ignore")

    # Storage: database file and uploads/ live under data_dir unless db_path is set
    data_dir: Path = Path("data")
    db_path: Optional[Path] = None
    # Payloads up to this many bytes stay inline in the database row
    inline_threshold_bytes: int = 256 * 1024
    # Upper bound on a single request body (checked against Content-Length)
    max_upload_bytes: int = 210 * 1024 * 1024

    # Shared password for the main application. Empty = authentication not configured.
    password: str = ""

    # JWT (empty secret = random per process, credentials do not survive a restart)
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    auth_max_age_seconds: int = 7 * 24 * 3600
    share_auth_max_age_seconds: int = 7 * 24 * 3600
    auth_cookie_samesite: str = "lax"
    # Accept ?auth=<password or token> (EventSource cannot send headers)
    allow_query_auth: bool = False

    # Event stream
    heartbeat_seconds: float = 25.0
    event_backlog: int = 1024

    # CORS: set as comma-separated string in env (e.g. https://clip.example.com)
    # so pydantic-settings does not try to JSON-decode it
    cors_origins: str = ""

    rate_limit_enabled: bool = True

    @field_validator("auth_cookie_samesite")
    @classmethod
    def _normalize_samesite(cls, v: str) -> str:
        v = (v or "").strip().lower()
        return v if v in ("lax", "strict", "none") else "lax"

    @property
    def cors_origins_list(self) -> List[str]:
        """CORS origins as a list (split on comma). Empty list = same-origin only."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def database_path(self) -> Path:
        """SQLite file path (db_path, or data_dir/clipshare.db)."""
        return self.db_path or (self.data_dir / "clipshare.db")

    # Server
    host: str = "0.0.0.0"
    port: int = 8087

    # Logging (empty log_file = stderr only; level DEBUG|INFO|WARNING|ERROR)
    log_level: str = "INFO"
    log_file: str = ""


def get_settings() -> Settings:
    """Return application settings."""
    return Settings()
