"""Configuration package."""

from expense_ledger.config.settings import (
    AppSettings,
    FetchSettings,
    GoogleSheetsSettings,
    ParserSettings,
    ScheduleSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "FetchSettings",
    "GoogleSheetsSettings",
    "ParserSettings",
    "ScheduleSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
