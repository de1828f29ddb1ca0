"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from labmarket.services.assets.config import AssetConfig

logger = logging.getLogger(__name__)


class LedgerConfig(BaseModel):
    """Experiment ledger rules and role identities."""

    min_unit: int = Field(default=1, ge=1)
    unbet_timeout_days: int = Field(default=60, ge=0)
    pool_account: str = "labmarket-pool"
    primary_identity: str = "primary-admin"
    secondary_identity: str | None = None


class NotificationConfig(BaseModel):
    """Where committed notifications are delivered."""

    log_to_logger: bool = True
    log_to_file: bool = True


class ApiConfig(BaseModel):
    """HTTP server parameters."""

    host: str = "127.0.0.1"
    port: int = 8000
    allowed_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"]
    )
    caller_header: str = "X-Caller"
    persist: bool = True


class Settings(BaseSettings):
    """Process settings: paths, secrets and the nested config sections."""

    # Paths
    data_dir: Path = Path("data")

    environment: str = "development"
    logfire_token: str = ""

    # Nested configuration sections
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    assets: AssetConfig = Field(default_factory=AssetConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LABMARKET_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("data_dir", mode="after")
    @classmethod
    def resolve_data_dir(cls, v: Path) -> Path:
        """Resolve data directory to absolute path."""
        return v.resolve()

    def load_yaml_config(self) -> None:
        """Overlay ``<data_dir>/config.yaml`` onto the nested sections.

        Keys present in the file replace the current values; absent keys keep
        whatever the environment or the defaults provided.
        """
        config_path = self.data_dir / "config.yaml"

        if not config_path.exists():
            logger.warning(
                f"No config.yaml in {self.data_dir}; using env and defaults. "
                "Run 'python -m labmarket init' to create one."
            )
            return

        try:
            overlay = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            logger.error(f"Invalid YAML in {config_path}: {e}")
            raise

        for name in YAML_SECTIONS:
            overrides = overlay.get(name)
            if overrides:
                setattr(self, name, _merge_section(getattr(self, name), overrides))

        applied = [name for name in YAML_SECTIONS if overlay.get(name)]
        logger.info(f"Loaded {config_path} (sections: {applied})")


YAML_SECTIONS = ("ledger", "assets", "notifications", "api")


def _merge_section(section: BaseModel, overrides: dict) -> BaseModel:
    # YAML values pass the same validation as env values.
    return type(section).model_validate({**section.model_dump(), **overrides})


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings: env and .env first, then the YAML overlay."""
    settings = Settings()
    settings.load_yaml_config()
    return settings
