"""Settings for the UCR orchestrator, read from the environment and ``.env``.

Storage backend:
  - DATABASE_URL non-empty -> that database (PostgreSQL in production)
  - otherwise a SQLite file at DB_SQLITE_PATH (relative paths resolve
    against backend/), default data/ucr.db

Rule lifecycle knobs use the UCR_ prefix, application knobs HERA_.
"""

import re
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BACKEND_ROOT: Path = Path(__file__).resolve().parent
DEFAULT_SQLITE_PATH = "data/ucr.db"

for _env_file in (BACKEND_ROOT / ".env", BACKEND_ROOT.parent / ".env"):
    if _env_file.exists():
        load_dotenv(_env_file, override=False)


def _from_backend_root(raw: str | Path) -> Path:
    path = Path(raw)
    return path if path.is_absolute() else (BACKEND_ROOT / path).resolve()


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=(str(BACKEND_ROOT / ".env"), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str | None = Field(
        default=None,
        description="Server database DSN; overrides the SQLite file when set.",
        validation_alias="DATABASE_URL",
    )
    sqlite_path: str = Field(default=DEFAULT_SQLITE_PATH)
    sqlite_busy_timeout_ms: int = Field(
        default=30000, description="How long a SQLite writer waits for the family slot row"
    )
    pool_size: int = Field(default=5)
    pool_timeout: int = Field(default=30)
    pool_recycle: int = Field(default=1800)

    @property
    def is_sqlite(self) -> bool:
        return not (self.database_url or "").strip()

    @property
    def sqlite_file(self) -> Path:
        return _from_backend_root((self.sqlite_path or DEFAULT_SQLITE_PATH).strip())

    @property
    def url(self) -> str:
        if not self.is_sqlite:
            return (self.database_url or "").strip()
        path: Path = self.sqlite_file
        path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{path.as_posix()}"

    def describe(self) -> str:
        """Backend and location for logs; server passwords are masked."""
        if self.is_sqlite:
            return f"SQLite @ {self.sqlite_file.as_posix()}"
        return f"server @ {re.sub(r':([^:@/]+)@', ':***@', self.url)}"


class UCRSettings(BaseSettings):
    """Rule lifecycle knobs."""

    model_config = SettingsConfigDict(
        env_prefix="UCR_",
        env_file=(str(BACKEND_ROOT / ".env"), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    default_requires_approval: bool = Field(
        default=True, description="Deployment needs at least one approval unless overridden per rule"
    )
    approver_roles: list[str] = Field(
        default_factory=lambda: ["manager", "owner", "admin"],
        description="Roles allowed to approve a rule for deployment",
    )
    enforce_open_period: bool = Field(
        default=True, description="Reject deployments effective in a closed accounting period"
    )
    simulation_max_workers: int = Field(
        default=1, ge=1, description="Thread pool size for scenario batches"
    )
    templates_dir: Path | None = Field(
        default=None, description="Directory of extra *.json rule templates"
    )

    @field_validator("approver_roles")
    @classmethod
    def _normalize_roles(cls, roles: list[str]) -> list[str]:
        return [r.strip().lower() for r in roles if r.strip()]

    @field_validator("templates_dir")
    @classmethod
    def _resolve_templates_dir(cls, value: Path | None) -> Path | None:
        return _from_backend_root(value) if value is not None else None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="HERA_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    api_key: str | None = Field(default=None, description="Required in X-API-Key on mutations when set")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://127.0.0.1:5173"]
    )

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    ucr: UCRSettings = Field(default_factory=UCRSettings)


@lru_cache
def get_settings() -> Settings:
    return Settings()
