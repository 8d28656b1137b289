"""Configuration from .env file."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    OPENAI_API_KEY: str | None = None  # No key = deterministic fallbacks only
    TUTOR_MODEL: str = "gpt-4o"
    EVALUATION_MODEL: str = "gpt-4o-mini"
    LOG_LEVEL: str = "INFO"

    # Third classifier tier (model-assisted) is off unless explicitly enabled.
    ENABLE_AI_CLASSIFIER: bool = False

    # Validator gives up on the evaluation model after this many seconds.
    VALIDATION_TIMEOUT_SECONDS: float = 3.0

    # Retry buffer for proof events that could not be written.
    RETRY_TTL_SECONDS: float = 300.0
    MAX_RETRY_ATTEMPTS: int = 3
    RETRY_SWEEP_INTERVAL_SECONDS: float = 60.0

    DEFAULT_GRADE_LEVEL: int = 8
    EXCERPT_MAX_LENGTH: int = 200
    HISTORY_WINDOW: int = 20  # Messages of chat history handed to the tutor

    DATA_DIR: str = "data"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
