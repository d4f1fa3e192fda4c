"""
Tests for settings file parsing.
"""

import pytest

from ..error_tracker import ParseError
from ..settings_parser import parse_settings, setting_key


class TestParseSettings:
    """Test JSON settings parsing."""

    def test_site_settings(self):
        setting = parse_settings("settings/site.json", '{"name":"X"}')

        assert setting.key == "site"
        assert setting.value == {"name": "X"}

    def test_any_json_value(self):
        assert parse_settings("settings/flags.json", "[1, 2, 3]").value == [1, 2, 3]
        assert parse_settings("settings/enabled.json", "true").value is True

    def test_invalid_json_raises(self):
        with pytest.raises(ParseError) as exc_info:
            parse_settings("settings/broken.json", '{"name": ')
        assert exc_info.value.source_id == "settings/broken.json"
        assert "settings/broken.json" in exc_info.value.message

    def test_setting_key(self):
        assert setting_key("settings/navigation.json") == "navigation"
        assert setting_key("settings/site.config.json") == "site.config"
