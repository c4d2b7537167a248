"""Tests for application settings."""

import pytest

from src.config import AppSettings, Settings, validate_all_settings


class TestDefaultGroups:
    """Tests for the DEFAULT_GROUPS setting."""

    def test_default_value(self):
        """Test the shipped default splits 50 / 30 / 20."""
        assert AppSettings().default_groups_list == [
            ("Needs", 50.0, True),
            ("Wants", 30.0, True),
            ("Savings", 20.0, False),
        ]

    def test_blank_entries_skipped(self):
        """Test stray commas and spaces are ignored."""
        settings = AppSettings(default_groups=" Rent : 40 : TRUE ,, ")
        assert settings.default_groups_list == [("Rent", 40.0, True)]

    @pytest.mark.parametrize("value", [
        "Needs:50",
        "Needs:50:true:extra",
        ":50:true",
        "Needs:half:true",
        "Needs:0:true",
        "Needs:150:true",
        "Needs:nan:true",
        "Needs:50:maybe",
    ])
    def test_malformed_rejected_on_load(self, value):
        """Test malformed entries fail when the settings are loaded."""
        with pytest.raises(ValueError):
            AppSettings(default_groups=value)

    def test_reported_by_validation(self, monkeypatch):
        """Test the settings check flags a malformed value."""
        monkeypatch.setenv("DEFAULT_GROUPS", "Needs:50")
        status = validate_all_settings(Settings())

        assert status["app"] is False
        assert "name:percentage:can_spend" in status["app_error"]
        assert status["database"] is True
