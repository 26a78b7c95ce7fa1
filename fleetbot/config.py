"""Configuration management using pydantic-settings"""

import os
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from pydantic import AliasChoices, Field, model_validator, field_validator
from typing import Annotated, List, Optional


class Settings(BaseSettings):
    """Environment (and .env) configuration of the fleet"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Bot Configuration
    bot_token: str

    # Server Configuration
    port: int = 8916
    host: str = "0.0.0.0"

    # Database Configuration
    database_url: str = "sqlite:///./data/fleetbot.db"

    # Application Configuration
    # NODE_ENV is accepted when ENVIRONMENT is not set
    environment: str = Field(default="production", validation_alias=AliasChoices("ENVIRONMENT", "NODE_ENV"))
    log_level: str = Field(default="error", description="Log level: debug, info, warning, error (default: error for production)")

    @model_validator(mode="before")
    @classmethod
    def clear_empty_user_id(cls, data: dict) -> dict:
        """An empty ALLOWED_USER_ID= disables the restriction"""
        if isinstance(data, dict):
            for key in ("ALLOWED_USER_ID", "allowed_user_id"):
                if key in data and (data[key] is None or str(data[key]).strip() == ""):
                    data[key] = None
        return data

    @model_validator(mode="after")
    def set_environment_defaults(self) -> "Settings":
        """Production logs errors only unless LOG_LEVEL is set"""
        if self.environment == "production" and not os.getenv("LOG_LEVEL"):
            self.log_level = "error"
        return self

    # Access Control
    @field_validator("allowed_user_id", mode="before")
    @classmethod
    def validate_allowed_user_id(cls, v):
        """Blank or non-numeric values disable the restriction"""
        if v == "" or v is None:
            return None
        if isinstance(v, str):
            try:
                return int(v.strip()) if v.strip() else None
            except (ValueError, TypeError):
                return None
        return v

    allowed_user_id: Optional[int] = None

    @field_validator("admin_user_ids", mode="before")
    @classmethod
    def parse_admin_user_ids(cls, v):
        """Accept a comma-separated list of Telegram ids"""
        if v is None or v == "":
            return []
        if isinstance(v, int):
            return [v]
        if isinstance(v, str):
            return [int(part.strip()) for part in v.split(",") if part.strip()]
        return v

    admin_user_ids: Annotated[List[int], NoDecode] = Field(default_factory=list, description="Telegram ids allowed to see fleet-wide stats")

    # Fleet Configuration
    max_bots_per_user: int = Field(default=3, ge=1, description="Default bot quota per owner (overridable in bot settings)")
    health_check_interval_seconds: int = Field(default=30, ge=1, description="Interval between fleet health sweeps")
    disconnection_warning_limit: int = Field(default=5, ge=1, description="Warnings sent before a bot is force-stopped")
    relay_game_chat: bool = Field(default=False, description="Forward in-game chat lines to the owner")

    # Game Client Configuration
    reconnect_max_attempts: int = Field(default=5, ge=1, description="Connect attempts before a bot gives up reconnecting")
    reconnect_delay_seconds: float = Field(default=5.0, ge=0, description="Delay before each reconnect attempt")
    connect_timeout_seconds: float = Field(default=10.0, gt=0, description="Timeout for establishing a game session")
    keep_alive_interval_seconds: float = Field(default=5.0, gt=0, description="Connected ping interval for Bedrock sessions")

    # Connection log retention
    episode_retention_days: int = Field(default=30, ge=1, description="Days of connection history kept by the cleanup job")

    # Job System Configuration
    job_persistence_enabled: bool = Field(default=False, description="Enable job persistence across restarts")


# Global settings instance
settings = Settings()
