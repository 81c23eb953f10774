import datetime as dt
from enum import Enum

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageBackend(Enum):
    MEMORY = "memory"
    SQLITE = "sqlite"


class SchedulingConfig(BaseSettings):
    """Scheduling policy handed to the engine at construction."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULING_", env_file=".env", extra="ignore", frozen=True
    )

    granule_minutes: int = Field(default=30, gt=0)
    min_duration_minutes: int = Field(default=15, gt=0)
    default_duration_minutes: int = 30
    opening_time: dt.time = dt.time(6, 0)
    closing_time: dt.time = dt.time(22, 0)
    # Blocks a patient from holding two open future bookings with one provider.
    one_open_appointment_per_provider: bool = True

    @model_validator(mode="after")
    def _check_bounds(self) -> "SchedulingConfig":
        if self.opening_time >= self.closing_time:
            raise ValueError("opening_time must be before closing_time")
        if self.default_duration_minutes < self.min_duration_minutes:
            raise ValueError("default_duration_minutes must be at least min_duration_minutes")
        return self


class StorageConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STORAGE_", env_file=".env", extra="ignore")

    backend: StorageBackend = StorageBackend.MEMORY
    sqlite_path: str = "medibook.db"
    sqlite_busy_timeout_seconds: float = 5.0


class DirectoryConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DIRECTORY_", env_file=".env", extra="ignore")

    base_url: str | None = None
    token: str = ""
    timeout_seconds: float = 10.0


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    clinic_timezone: str = "America/New_York"
    scheduling: SchedulingConfig = Field(default_factory=lambda: SchedulingConfig())
    storage: StorageConfig = Field(default_factory=lambda: StorageConfig())
    directory: DirectoryConfig = Field(default_factory=lambda: DirectoryConfig())
