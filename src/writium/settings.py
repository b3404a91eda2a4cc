"""Configuration helpers for Writium."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_DATA_ROOT = Path.home() / "writium-data"
DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://localhost:3002,http://localhost:3003"


class Settings(BaseModel):
    """Runtime configuration loaded from env vars with sensible defaults."""

    data_dir: Path = Field(default_factory=lambda: DEFAULT_DATA_ROOT)
    db_filename: str = "writium.sqlite3"
    database_url: str | None = None
    log_level: str = "INFO"
    public_url: str = "http://localhost:3002"
    cors_origins: list[str] = Field(
        default_factory=lambda: _split_origins(DEFAULT_CORS_ORIGINS)
    )
    statement_timeout_seconds: int = 30

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_filename

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.db_path}"

    def share_url(self, token: str) -> str:
        return f"{self.public_url.rstrip('/')}?share={token}"

    def ensure_directories(self) -> None:
        """Create data directories if they are missing."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def load(cls) -> "Settings":
        load_dotenv()
        data_dir = Path(os.environ.get("WRITIUM_DATA_DIR", DEFAULT_DATA_ROOT))
        database_url = (
            os.environ.get("DATABASE_URL", "").strip()
            or os.environ.get("PORTAL_DATABASE_URL", "").strip()
            or None
        )
        return cls(
            data_dir=data_dir,
            db_filename=os.environ.get("WRITIUM_DB_FILENAME", "writium.sqlite3"),
            database_url=database_url,
            log_level=os.environ.get("WRITIUM_LOG_LEVEL", "INFO"),
            public_url=os.environ.get("WRITIUM_URL", "http://localhost:3002").rstrip("/"),
            cors_origins=_split_origins(os.environ.get("CORS_ORIGIN", DEFAULT_CORS_ORIGINS)),
            statement_timeout_seconds=int(os.environ.get("WRITIUM_STATEMENT_TIMEOUT", "30")),
        )


def _split_origins(value: str) -> list[str]:
    return [origin.strip() for origin in value.split(",") if origin.strip()]


def get_settings() -> Settings:
    """Convenience accessor for lazy modules."""
    settings = Settings.load()
    settings.ensure_directories()
    return settings
