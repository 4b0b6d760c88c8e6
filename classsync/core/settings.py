from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    redis_url: str = Field(default="redis://localhost:6379/0")

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)
    log_level: str = Field(default="INFO")

    send_timeout_s: float = Field(default=5.0, gt=0)
    outbox_maxsize: int = Field(default=256, ge=1)
    heartbeat_timeout_s: float = Field(default=60.0, gt=0)

    reconnect_grace_s: float = Field(default=30.0, ge=0)
    stuck_threshold_s: float = Field(default=120.0, gt=0)
    presence_sweep_interval_s: float = Field(default=2.0, gt=0)

    persistence_retry_interval_s: float = Field(default=5.0, gt=0)
    persistence_max_attempts: int = Field(default=20, ge=1)


settings = Settings()
