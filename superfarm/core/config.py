import os
from pydantic_settings import BaseSettings
import logging


class Settings(BaseSettings):
    """Application settings with validation."""

    # App
    app_name: str = "SuperFarm"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"

    # Document store ("memory://" selects the in-process store)
    database_url: str = "postgresql://localhost/superfarm"
    test_database_url: str = "postgresql://localhost/superfarm_test"
    db_pool_min: int = 1
    db_pool_max: int = 10

    # Host embedding environment (Telegram WebApp)
    telegram_bot_token: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    init_data_max_age_seconds: int = 86400

    # Anonymous session token
    anonymous_cookie_name: str = "webUserId"
    anonymous_cookie_max_age_days: int = 365

    # Host lookup retry: attempts and base delay (doubled per attempt)
    host_lookup_attempts: int = 5
    host_lookup_delay: float = 0.1

    # Stage recomputation cadence for open sessions
    tick_interval_seconds: float = 1.0

    # Sessions not accessed for this long are closed by a periodic sweep
    session_idle_seconds: float = 900.0
    session_sweep_interval_seconds: float = 60.0

    # Event sink
    event_log_size: int = 100

    # New player economy
    starting_primary: int = 10
    starting_secondary: int = 0

    class Config:
        env_file = ".env"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._validate_host_lookup_attempts()
        self._validate_tick_interval()
        self._validate_session_idle()

    def _fail_or_reset(self, error_msg: str, field: str, default):
        # Fail fast in dev/test
        if self.environment in ["development", "testing"]:
            raise ValueError(error_msg)

        # Log warning and fallback in production
        logger = logging.getLogger(__name__)
        logger.warning(f"{error_msg}. Falling back to default ({default}).")
        setattr(self, field, default)

    def _validate_host_lookup_attempts(self):
        """Validate and enforce host_lookup_attempts."""
        min_val, max_val = 1, 10

        if not (min_val <= self.host_lookup_attempts <= max_val):
            self._fail_or_reset(
                f"HOST_LOOKUP_ATTEMPTS must be between {min_val} and {max_val}, "
                f"got {self.host_lookup_attempts}",
                "host_lookup_attempts",
                5,
            )

    def _validate_tick_interval(self):
        if self.tick_interval_seconds <= 0:
            self._fail_or_reset(
                f"TICK_INTERVAL_SECONDS must be positive, got {self.tick_interval_seconds}",
                "tick_interval_seconds",
                1.0,
            )

    def _validate_session_idle(self):
        if self.session_idle_seconds <= 0:
            self._fail_or_reset(
                f"SESSION_IDLE_SECONDS must be positive, got {self.session_idle_seconds}",
                "session_idle_seconds",
                900.0,
            )
        if self.session_sweep_interval_seconds <= 0:
            self._fail_or_reset(
                f"SESSION_SWEEP_INTERVAL_SECONDS must be positive, got {self.session_sweep_interval_seconds}",
                "session_sweep_interval_seconds",
                60.0,
            )

    @property
    def uses_memory_store(self) -> bool:
        return self.database_url.startswith("memory://")

    @property
    def anonymous_cookie_max_age(self) -> int:
        """Cookie max-age in seconds."""
        return self.anonymous_cookie_max_age_days * 24 * 60 * 60


# Global settings instance
settings = Settings()
