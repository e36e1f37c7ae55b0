"""Configuration for TaskKeeper."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration, read from TASK_KEEPER_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="TASK_KEEPER_")

    tasks_dir: Path = Field(default=Path("tasks"))
    save_delay: float = Field(default=1.0, ge=0.0)
    cache_ttl: float = Field(default=10.0, gt=0.0)
    cache_max_size: int = Field(default=100, ge=1)
    agent_name: str = Field(default="windsurf")
    oracle_endpoint: str = Field(default="http://localhost:3001/api/similarity")
    oracle_api_key: str | None = Field(default=None)
    oracle_timeout: float = Field(default=5.0, gt=0.0)
    maintenance_config: Path | None = Field(default=None)
    watch_files: bool = Field(default=True)
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)
    log_level: str = Field(default="INFO")
