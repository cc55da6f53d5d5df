"""Runtime settings, loaded from the environment or a .env file."""

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from tradeprivate import constants
from tradeprivate.utils.retry import RetryPolicy


class Settings(BaseSettings):
    """Engine settings. Every field can be overridden with a TRADEPRIVATE_* variable."""

    model_config = SettingsConfigDict(
        env_prefix="TRADEPRIVATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Literal["development", "test", "production"] = "development"
    log_level: str = "INFO"
    database_url: str = "sqlite:///tradeprivate.db"

    # Protocol
    commit_reveal_delay: int = Field(constants.COMMIT_REVEAL_DELAY, ge=0)
    order_expiration_blocks: int = Field(constants.ORDER_EXPIRATION, gt=0)

    # Seed vault
    kdf_iterations: int = Field(constants.KDF_ITERATIONS, ge=1)

    # Order limits
    max_leverage: int = Field(constants.MAX_LEVERAGE, ge=1)
    min_order_size: Decimal = Decimal(constants.MIN_ORDER_SIZE)
    max_order_size: Decimal = Decimal(constants.MAX_ORDER_SIZE)

    # Keeper discovery
    keeper_sample_size: int = Field(constants.KEEPER_SAMPLE_SIZE, ge=1)
    keeper_page_size: int = Field(25, ge=1)

    # Retry / circuit breaker
    retry_max_attempts: int = Field(3, ge=0)
    retry_initial_delay: float = Field(1.0, ge=0)
    retry_max_delay: float = Field(10.0, ge=0)
    retry_backoff_factor: float = Field(2.0, ge=1)
    breaker_failure_threshold: int = Field(5, ge=1)
    breaker_reset_timeout: float = Field(60.0, ge=0)

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.retry_max_attempts,
            initial_delay=self.retry_initial_delay,
            max_delay=self.retry_max_delay,
            backoff_factor=self.retry_backoff_factor,
        )


@lru_cache
def get_settings() -> Settings:
    """Get the process-wide settings loaded from the environment."""
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    """Install a basic stderr handler for applications and demos."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
