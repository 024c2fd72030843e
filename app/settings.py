from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    db_path: Path = Field(
        default=Path("data/triage-monitor.db"), validation_alias="DB_PATH"
    )
    user_agent: str = Field(default="triage-monitor/0.1", validation_alias="USER_AGENT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    oracle_api_key: str | None = Field(default=None, validation_alias="ORACLE_API_KEY")
    oracle_model: str = Field(
        default="gemini-3-flash-preview", validation_alias="ORACLE_MODEL"
    )
    oracle_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        validation_alias="ORACLE_BASE_URL",
    )
    oracle_timeout_seconds: float = Field(
        default=30.0, validation_alias="ORACLE_TIMEOUT_SECONDS"
    )
    oracle_retry_base_seconds: float = Field(
        default=1.0, validation_alias="ORACLE_RETRY_BASE_SECONDS"
    )

    mastodon_instance: str = Field(
        default="mastodon.social", validation_alias="MASTODON_INSTANCE"
    )
    mastodon_tag: str = Field(default="emergency", validation_alias="MASTODON_TAG")
    reliefweb_appname: str = Field(
        default="triage-monitor", validation_alias="RELIEFWEB_APPNAME"
    )

    sync_interval_seconds: int = Field(
        default=0, validation_alias="SYNC_INTERVAL_SECONDS"
    )
    connector_timeout_seconds: float = Field(
        default=120.0, validation_alias="CONNECTOR_TIMEOUT_SECONDS"
    )
    content_hash_ids: bool = Field(default=False, validation_alias="CONTENT_HASH_IDS")

    operator_name: str = Field(default="Field Operator", validation_alias="OPERATOR_NAME")
    operator_email: str = Field(
        default="operator@localhost", validation_alias="OPERATOR_EMAIL"
    )
