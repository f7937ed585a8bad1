"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from groupguard.config.defaults import (
    DEFAULT_KICK,
    DEFAULT_PACING,
    DEFAULT_PROPAGATION,
    DEFAULT_STORAGE,
)


class BridgeConfig(BaseModel):
    """WhatsApp bridge connection settings."""

    model_config = ConfigDict(extra="ignore")

    host: str = "127.0.0.1"
    port: int = 3001
    token: str = ""
    account_id: str = "default"
    request_timeout_ms: int = 20000
    max_payload_bytes: int = 4 * 1024 * 1024
    auth_dir: str = "~/.groupguard/secrets/whatsapp-auth"

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"

    @property
    def auth_path(self) -> Path:
        return Path(self.auth_dir).expanduser()


class PacingConfig(BaseModel):
    """Delays applied between platform calls during a batch."""

    model_config = ConfigDict(extra="ignore")

    metadata_delay_ms: int = Field(default=int(DEFAULT_PACING["metadata_delay_ms"]), ge=0)
    removal_delay_ms: int = Field(default=int(DEFAULT_PACING["removal_delay_ms"]), ge=0)
    extended_pause_every: int = Field(default=int(DEFAULT_PACING["extended_pause_every"]), ge=0)
    extended_pause_ms: int = Field(default=int(DEFAULT_PACING["extended_pause_ms"]), ge=0)
    rate_limit_backoff_ms: int = Field(default=int(DEFAULT_PACING["rate_limit_backoff_ms"]), ge=0)
    listing_delay_ms: int = Field(default=int(DEFAULT_PACING["listing_delay_ms"]), ge=0)


class PropagationConfig(BaseModel):
    """Batch propagation and interactive selection settings."""

    model_config = ConfigDict(extra="ignore")

    default_cap: int = Field(default=int(DEFAULT_PROPAGATION["default_cap"]), ge=1)
    confirm_threshold: int = Field(default=int(DEFAULT_PROPAGATION["confirm_threshold"]), ge=1)
    selection_ttl_seconds: int = Field(default=int(DEFAULT_PROPAGATION["selection_ttl_seconds"]), ge=1)
    lease_ttl_seconds: int = Field(default=int(DEFAULT_PROPAGATION["lease_ttl_seconds"]), ge=1)
    pacing: PacingConfig = Field(default_factory=PacingConfig)


class KickConfig(BaseModel):
    """Bounded retry settings for participant removal."""

    model_config = ConfigDict(extra="ignore")

    max_attempts: int = Field(default=int(DEFAULT_KICK["max_attempts"]), ge=1)
    attempt_timeout_ms: int = int(DEFAULT_KICK["attempt_timeout_ms"])
    final_attempt_timeout_ms: int = int(DEFAULT_KICK["final_attempt_timeout_ms"])
    retry_delay_ms: int = int(DEFAULT_KICK["retry_delay_ms"])


class StorageConfig(BaseModel):
    """Checkpoint database and audit log locations."""

    model_config = ConfigDict(extra="ignore")

    checkpoint_db_path: str = str(DEFAULT_STORAGE["checkpoint_db_path"])
    audit_path: str = str(DEFAULT_STORAGE["audit_path"])

    @property
    def checkpoint_db_file(self) -> Path:
        from groupguard.utils.helpers import resolve_data_file

        return resolve_data_file(self.checkpoint_db_path)

    @property
    def audit_file(self) -> Path:
        from groupguard.utils.helpers import resolve_data_file

        return resolve_data_file(self.audit_path)


class Config(BaseSettings):
    """Root configuration for groupguard."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, env_prefix="GROUPGUARD_", env_nested_delimiter="__")

    config_version: int = 1
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    propagation: PropagationConfig = Field(default_factory=PropagationConfig)
    kick: KickConfig = Field(default_factory=KickConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment overrides values loaded from config.json.
        return env_settings, dotenv_settings, init_settings, file_secret_settings
