"""
Unit tests for configuration loading and validation.

These tests ensure:
  1. Config loads from environment variables correctly
  2. Required fields are validated at startup
  3. Type conversions work (e.g., strings to ints)
  4. Matching limits keep their documented defaults
"""

import pytest
from unittest.mock import patch
from src.config import Config, validate_config


def _valid_mock(mock_config):
    mock_config.FIREBASE_PROJECT_ID = "test"
    mock_config.NEARBY_SCAN_LIMIT = 200
    mock_config.FIRESTORE_IN_QUERY_LIMIT = 10
    mock_config.NOTIFY_MAX_WORKERS = 8
    mock_config.EMAIL_SMTP_URL = None
    mock_config.GOOGLE_GEOCODING_API_KEY = None


class TestConfigLoading:
    """Test configuration loading from environment."""

    @patch.dict("os.environ", {"FIREBASE_PROJECT_ID": "test-project"})
    def test_required_config_loads(self):
        """Required config fields should load from environment."""
        config = Config(_env_file=None)
        assert config.FIREBASE_PROJECT_ID == "test-project"

    @patch.dict("os.environ", {
        "FIREBASE_PROJECT_ID": "test-project",
        "NEARBY_SCAN_LIMIT": "50",
        "PORT": "9000",
    })
    def test_integer_config_conversion(self):
        """Integer environment variables should be converted to int."""
        config = Config(_env_file=None)
        assert config.NEARBY_SCAN_LIMIT == 50
        assert isinstance(config.PORT, int)
        assert config.PORT == 9000

    @patch.dict("os.environ", {"FIREBASE_PROJECT_ID": "test-project"}, clear=True)
    def test_matching_defaults(self):
        """Scan window and batch size default to the store's known limits."""
        config = Config(_env_file=None)
        assert config.NEARBY_SCAN_LIMIT == 200
        assert config.FIRESTORE_IN_QUERY_LIMIT == 10
        assert config.EMAIL_FROM == "no-reply@lost-and-found"
        assert config.PUBLIC_APP_URL == "http://localhost:3000"
        assert config.EMAIL_SMTP_URL is None

    @patch.dict("os.environ", {"FIREBASE_PROJECT_ID": "test-project", "DEBUG": "false"})
    def test_boolean_config_conversion(self):
        """Boolean environment variables should be converted correctly."""
        config = Config(_env_file=None)
        assert config.DEBUG is False


class TestConfigValidation:
    """Test configuration validation function."""

    @patch("src.config.config")
    def test_validate_firebase_required(self, mock_config):
        """Firebase project ID must be set."""
        _valid_mock(mock_config)
        mock_config.FIREBASE_PROJECT_ID = ""

        with pytest.raises(ValueError, match="FIREBASE_PROJECT_ID"):
            validate_config()

    @patch("src.config.config")
    def test_validate_in_query_limit_range(self, mock_config):
        """Batch size must fit Firestore's 'in' filter limit."""
        _valid_mock(mock_config)
        mock_config.FIRESTORE_IN_QUERY_LIMIT = 31

        with pytest.raises(ValueError, match="FIRESTORE_IN_QUERY_LIMIT"):
            validate_config()

    @patch("src.config.config")
    def test_validate_scan_limit_positive(self, mock_config):
        _valid_mock(mock_config)
        mock_config.NEARBY_SCAN_LIMIT = 0

        with pytest.raises(ValueError, match="NEARBY_SCAN_LIMIT"):
            validate_config()

    @patch("src.config.config")
    def test_mail_is_optional(self, mock_config):
        """Missing SMTP settings are reported, not fatal."""
        _valid_mock(mock_config)

        result = validate_config()
        assert result["mail"] == "✗ Not set"
        assert result["firebase"] == "✓ Configured"

    @patch("src.config.config")
    def test_validate_success_returns_status(self, mock_config):
        """Successful validation should return status dict."""
        _valid_mock(mock_config)
        mock_config.EMAIL_SMTP_URL = "smtp://user:pw@mail.test:587"
        mock_config.GOOGLE_GEOCODING_API_KEY = "key"

        result = validate_config()
        assert result == {
            "firebase": "✓ Configured",
            "mail": "✓ Configured",
            "geocoding": "✓ Configured",
        }
