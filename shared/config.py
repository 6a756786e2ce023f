"""Base configuration with pydantic-settings.

This module provides a base Settings class that components inherit from.
Each component defines its own Settings with the fields specific to it.

Usage:
    from shared.config import BaseSettings, robot_user_field

    class Settings(BaseSettings):
        robot_user: str = robot_user_field(required=True)

    settings = Settings()
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings as PydanticBaseSettings, SettingsConfigDict


class BaseSettings(PydanticBaseSettings):
    """Base application settings.

    All fields here are optional with sensible defaults.
    Components inherit this and make required fields mandatory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging configuration
    service_name: str = Field(
        default="baremetal-provisioner",
        description="Service name for structured logging",
    )
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v


# === Field definitions for reuse in component configs ===


def robot_url_field():
    """Hetzner Robot webservice URL field definition."""
    return Field(
        default="https://robot-ws.your-server.de",
        description="Robot webservice base URL",
        examples=["https://robot-ws.your-server.de"],
    )


def robot_user_field(required: bool = True):
    """Robot webservice user field definition."""
    if required:
        return Field(
            ...,
            description="Robot webservice user",
        )
    return Field(
        default=None,
        description="Robot webservice user (optional)",
    )


def robot_password_field(required: bool = True):
    """Robot webservice password field definition."""
    if required:
        return Field(
            ...,
            description="Robot webservice password",
        )
    return Field(
        default=None,
        description="Robot webservice password (optional)",
    )
