"""
Configuration Management for Expense Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FetchSettings(BaseSettings):
    """Receipt page fetching configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RECEIPT_FETCH_",
        extra="ignore"
    )

    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=60,
        description="Hard timeout for fetching a receipt page"
    )
    user_agent: str = Field(
        default="Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
        description="User-Agent sent to the issuer's page"
    )


class ScheduleSettings(BaseSettings):
    """Schedule expansion configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULE_",
        extra="ignore"
    )

    max_recurrences: int = Field(
        default=360,
        ge=1,
        le=5000,
        description="Ceiling on generated recurrence steps (e.g. 30 years monthly)"
    )
    recurrence_marker: str = Field(
        default="(Assinatura)",
        min_length=1,
        description="Tag appended to generated recurring descriptions"
    )


class ParserSettings(BaseSettings):
    """Fiscal document parser configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PARSER_",
        extra="ignore"
    )

    raw_fragment_length: int = Field(
        default=300,
        ge=50,
        le=5000,
        description="Characters of item markup kept for diagnostics"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # One worksheet per collection, named <prefix><collection>
    worksheet_prefix: str = Field(
        default="",
        description="Prefix for collection worksheet names"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Sanity threshold (warning only, never blocks)
    max_obligation_amount: float = Field(
        default=1000000.0,
        gt=0,
        description="Amount above which a manual entry is flagged as suspicious"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def fetch(self) -> FetchSettings:
        return FetchSettings()

    @property
    def schedule(self) -> ScheduleSettings:
        return ScheduleSettings()

    @property
    def parser(self) -> ParserSettings:
        return ParserSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    groups = {
        "fetch": lambda: settings.fetch,
        "schedule": lambda: settings.schedule,
        "parser": lambda: settings.parser,
        "google_sheets": lambda: settings.google_sheets,
        "app": lambda: settings.app,
    }

    for name, load in groups.items():
        try:
            load()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
