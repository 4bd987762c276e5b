"""Configuration management for Kitty Settle."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="KITTY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Hard per-transfer cap, in the smallest currency unit
    max_transaction_amount: int = Field(default=100_000, gt=0)

    # Largest tolerated spread between final spends
    fixed_epsilon: int = Field(default=0, ge=0)

    # Search limits
    max_participants: int = Field(default=40, gt=0)
    search_timeout_seconds: float | None = Field(default=30.0, gt=0)
    max_workers: int = Field(default=4, gt=0)


def load_settings(**overrides) -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings(**overrides)
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Check the KITTY_* environment variables "
            f"or your .env file.\n"
            f"Error: {e}"
        ) from e
