from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ZKCOORD_", env_file=".env", extra="ignore")

    # Ensemble connection
    hosts: str = "localhost:2181"
    session_timeout: float = 10.0
    connect_timeout: float = 15.0

    # Recipe roots
    lock_root: str = "/_zklocking"
    semaphore_root: str = "/_zksemaphore"
    election_root: str = "/_zkelection"

    # Watch callback executor
    callback_workers: int = Field(default=5, ge=1)

    # Observability
    # Off gives the client its own no-op registry; on shares the process-wide one
    enable_metrics: bool = True
    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("lock_root", "semaphore_root", "election_root")
    @classmethod
    def _absolute_root(cls, value: str) -> str:
        if not value.startswith("/") or value.endswith("/"):
            raise ValueError(f"root must be an absolute path without a trailing slash: {value!r}")
        return value
