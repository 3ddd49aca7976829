"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/switchboard.db",
        description="SQLAlchemy connection string.",
    )

    # Migrations / schema
    auto_create_db_schema: bool = Field(
        default=True,
        description="If true, creates tables automatically on startup (useful for local/dev).",
    )

    # Asterisk ARI
    asterisk_ari_url: str = Field(
        default="http://localhost:8088/ari",
        description="Base URL for Asterisk ARI, e.g. http://localhost:8088/ari",
    )
    asterisk_ari_username: str | None = Field(default=None)
    asterisk_ari_password: str | None = Field(default=None)
    asterisk_stasis_app: str = Field(
        default="asterisk-gui",
        description="ARI stasis application name used by the dialplan.",
    )
    ari_events_enabled: bool = Field(
        default=True,
        description="If false, the API starts without consuming the ARI event websocket.",
    )
    ari_request_timeout_seconds: float = Field(default=10.0, gt=0)

    # Origination
    default_caller_id: str = Field(default="1000")
    outbound_context: str = Field(default="internal")
    outbound_amd_context: str = Field(
        default="internal_amd",
        description="Dialplan context used when answering-machine detection is requested.",
    )
    default_ring_timeout_seconds: int = Field(default=30, ge=1)
    trunk_names: str = Field(
        default="",
        description="Comma separated PJSIP trunk names, merged with the sip_trunks table.",
    )

    # Recording
    recording_format: str = Field(default="wav")
    recording_max_duration_seconds: int = Field(default=3600, ge=0)
    recording_max_silence_seconds: int = Field(default=30, ge=0)

    # DTMF gather
    gather_default_timeout_ms: int = Field(default=10000, ge=1)

    # Webhooks
    webhook_timeout_seconds: float = Field(default=5.0, gt=0)
    webhook_user_agent: str = Field(default="Asterisk-ARI-API/2.0")

    # Text to speech
    tts_provider: Literal["google"] = Field(default="google")
    google_tts_api_key: str | None = Field(default=None)
    default_voice: str = Field(default="en-US-Neural2-A")
    sounds_dir: Path = Field(
        default=Path("/var/lib/asterisk/sounds"),
        description="Directory Asterisk resolves sound: media references from.",
    )

    data_dir: Path = Field(default=Path("./data"))

    @field_validator("data_dir")
    @classmethod
    def ensure_data_dir(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value

    @property
    def trunk_list(self) -> list[str]:
        return [name.strip() for name in self.trunk_names.split(",") if name.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
