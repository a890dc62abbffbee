"""
Runtime settings loaded from environment variables.

Every knob can be overridden with a ``LOADBENCH_`` prefixed variable or a
``.env`` file in the working directory.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    LOG_FILE: Optional[str] = None

    # Run defaults
    BASE_URL: Optional[str] = None
    THINK_TIME_MIN_MS: int = 1000
    THINK_TIME_MAX_MS: int = 3000
    REQUEST_TIMEOUT_MS: int = 30000
    GRACEFUL_RAMP_DOWN_MS: int = 30000
    CONTROL_TICK_SECONDS: float = 1.0

    # Trend percentile estimation
    PERCENTILE_STRATEGY: str = "auto"
    EXACT_PERCENTILE_LIMIT: int = 10000
    HISTOGRAM_RELATIVE_ACCURACY: float = 0.005
    MAX_HISTOGRAM_BUCKETS: int = 2048
    RESERVOIR_SIZE: int = 10000
    MAX_METRICS: int = 1000

    model_config = SettingsConfigDict(
        env_prefix="LOADBENCH_", env_file=".env", extra="ignore"
    )


settings = Settings()
