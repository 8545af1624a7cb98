"""Service settings read from the process environment."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded once from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TAILTUNNEL_",
        populate_by_name=True,
        extra="ignore",
    )

    # Persistence file for the tunnel list
    tunnels_path: Path = Field(
        default=Path("./tunnels.json"),
        validation_alias="TUNNELS_PATH",
    )
    # Hostname reported to clients and used in connection URLs
    hostname: str = Field(
        default="tailscale-discloud",
        min_length=1,
        validation_alias="TAILSCALE_HOSTNAME",
    )

    bind_host: str = "0.0.0.0"
    bind_port: int = Field(default=3000, ge=1, le=65535)
    static_dir: Path = Path("./public")

    forwarder_binary: str = "socat"
    tester_binary: str = "nc"
    stop_forwarders_on_shutdown: bool = True

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_json: bool = False

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings instance."""
    return Settings()
