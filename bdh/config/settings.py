from __future__ import annotations

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env once at module import so every BaseSettings subclass sees the env vars
load_dotenv()

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class BdhSettings(BaseSettings):
    """Local runtime settings. Env vars prefixed with BDH_."""

    model_config = SettingsConfigDict(env_prefix="BDH_")

    bd_bin: str = "bd"
    git_bin: str = "git"
    api_timeout_s: float = Field(10.0, gt=0)
    export_timeout_s: float = Field(10.0, gt=0)
    git_timeout_s: float = Field(5.0, gt=0)
    ready_timeout_s: float = Field(3.0, gt=0)
    reserve_ttl_seconds: int = Field(300, gt=0, le=3600)
    log_level: str = "WARNING"
    log_json: bool = False

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in _LOG_LEVELS:
            raise ValueError(f"BDH_LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)} (got '{v}')")
        return v


class BeadHubSettings(BaseSettings):
    """Coordination service overrides. Env vars prefixed with BEADHUB_.

    ``url`` wins over the workspace file's ``beadhub_url`` when set.
    ``repo_origin`` stands in for ``git remote get-url origin`` in the repo
    binding check, and ``skip_repo_check`` turns that check off.
    """

    model_config = SettingsConfigDict(env_prefix="BEADHUB_")

    url: str | None = None
    api_key: str | None = None
    repo_origin: str | None = None
    skip_repo_check: bool = False

    @field_validator("url", "api_key", "repo_origin")
    @classmethod
    def _blank_is_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None


class Settings(BaseSettings):
    """Root settings composing all sub-configurations."""

    model_config = SettingsConfigDict(extra="ignore")

    bdh: BdhSettings = Field(default_factory=BdhSettings)
    beadhub: BeadHubSettings = Field(default_factory=BeadHubSettings)


def get_settings() -> Settings:
    """Load and validate settings. Raises ValidationError on invalid values."""
    return Settings()
