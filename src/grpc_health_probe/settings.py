"""Environment-driven settings for the probe's ambient behavior."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogSettings(BaseSettings):
    """Logging settings.

    Reads from environment variables (case-insensitive).
    E.g., LOG_LEVEL=DEBUG LOG_FORMAT=json
    """

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
        extra="ignore",
    )

    # stderr stays empty unless something goes wrong
    level: str = Field(default="WARNING", description="Console log level")
    format: str = Field(default="human", description="human or json")
    file: str | None = Field(default=None, description="Optional log file path")
    file_level: str | None = Field(
        default=None,
        description="Level for file output (default: same as level)",
    )
