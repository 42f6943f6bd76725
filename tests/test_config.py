"""Tests for environment-driven settings."""

from expense_ledger.config import (
    FetchSettings,
    ScheduleSettings,
    get_settings,
    validate_all_settings,
)


class TestSettings:
    """Tests for the settings groups."""

    def test_defaults(self):
        """Test the documented defaults."""
        assert FetchSettings().timeout_seconds == 10.0
        assert ScheduleSettings().max_recurrences == 360
        assert ScheduleSettings().recurrence_marker == "(Assinatura)"
        assert get_settings().parser.raw_fragment_length == 300

    def test_env_prefix(self, monkeypatch):
        """Test groups read their own prefixed variables."""
        monkeypatch.setenv("RECEIPT_FETCH_TIMEOUT_SECONDS", "3.5")
        monkeypatch.setenv("SCHEDULE_MAX_RECURRENCES", "12")

        assert FetchSettings().timeout_seconds == 3.5
        assert ScheduleSettings().max_recurrences == 12

    def test_validate_all_reports_missing_sheets(self, monkeypatch):
        """Test a missing storage configuration is reported, not raised."""
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)

        results = validate_all_settings()

        assert results["fetch"] is True
        assert results["google_sheets"] is False
        assert "google_sheets_error" in results
