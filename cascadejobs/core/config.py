from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from limits import parse_many
from pydantic import Field, PositiveInt, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CASCADEJOBS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "cascadejobs"
    environment: str = "production"
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    log_level: str = "INFO"

    state_root: Path = Field(default=Path("/state"))
    database_url: str | None = None
    sqlite_busy_timeout_ms: PositiveInt = 5000

    default_chunk_size: PositiveInt = 3
    max_chunk_size: PositiveInt = 500
    chunk_delay_ms: PositiveInt = 500
    tick_lease_seconds: PositiveInt = 60

    worker_enabled: bool = False
    worker_poll_ms: PositiveInt = 250
    worker_concurrency: PositiveInt = 4
    worker_claim_batch_size: PositiveInt = 16

    rate_limit_enabled: bool = True
    rate_limit_global: str = "5/second;60/minute"
    rate_limit_session: str = "3/second;10/minute"
    rate_limit_storage_uri: str = "memory://"

    planner: str | None = None

    @field_validator("state_root", mode="before")
    @classmethod
    def _normalize_path(cls, value: str | Path) -> Path:
        raw = str(value)
        if "~" in raw:
            raise ValueError("Home expansion syntax is not allowed in paths")
        if "$" in raw:
            raise ValueError("Environment variable syntax is not allowed in paths")
        path = Path(raw)
        if not path.is_absolute():
            raise ValueError("Path settings must be absolute")
        return path

    @model_validator(mode="after")
    def _validate_runtime_constraints(self) -> "Settings":
        self.state_root = self.state_root.resolve(strict=False)
        if self.database_url is None:
            self.state_root.mkdir(parents=True, exist_ok=True)

        normalized_level = self.log_level.upper().strip()
        if normalized_level not in SUPPORTED_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(SUPPORTED_LOG_LEVELS)}")
        self.log_level = normalized_level

        if self.max_chunk_size < self.default_chunk_size:
            raise ValueError("max_chunk_size must be greater than or equal to default_chunk_size")

        if self.tick_lease_seconds * 1000 <= self.chunk_delay_ms:
            raise ValueError("tick_lease_seconds must exceed chunk_delay_ms")

        for field_name in ("rate_limit_global", "rate_limit_session"):
            raw = getattr(self, field_name).strip()
            try:
                parse_many(raw)
            except ValueError as exc:
                raise ValueError(f"{field_name} is not a valid rate limit string: {raw!r}") from exc
            setattr(self, field_name, raw)

        if self.planner is not None:
            token = self.planner.strip()
            if ":" not in token:
                raise ValueError("planner must be an import path of the form 'module:attribute'")
            self.planner = token

        return self

    @property
    def effective_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        db_path = self.state_root / "cascadejobs.sqlite3"
        return f"sqlite:///{db_path.as_posix()}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
