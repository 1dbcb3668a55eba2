"""Unit tests for application settings validation."""

import pytest
from pydantic import ValidationError

from costguard.core.config import Settings


class TestCORSOriginValidation:
    """Test suite for CORS origin validation in Settings."""

    def test_comma_separated_origins_are_split(self):
        """Test that a comma-separated string is parsed into a list."""
        settings = Settings(ALLOWED_ORIGINS="http://localhost:3000, https://costguard.example.com")

        assert settings.ALLOWED_ORIGINS == ["http://localhost:3000", "https://costguard.example.com"]

    def test_wildcard_origin_rejected(self):
        """Test that wildcard origins are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            Settings(ALLOWED_ORIGINS=["*"])

        assert "wildcard" in str(exc_info.value)

    def test_http_origin_rejected_in_production(self):
        """Test that non-localhost HTTP origins are rejected in production."""
        with pytest.raises(ValidationError) as exc_info:
            Settings(APP_ENV="production", ALLOWED_ORIGINS=["http://costguard.example.com"])

        assert "HTTPS" in str(exc_info.value)

    def test_localhost_allowed_in_production(self):
        settings = Settings(APP_ENV="production", ALLOWED_ORIGINS=["http://localhost:3000"])

        assert settings.ALLOWED_ORIGINS == ["http://localhost:3000"]


class TestEngineSettings:
    """Test suite for control plane and drift tick settings."""

    def test_control_plane_normalized(self):
        assert Settings(CONTROL_PLANE=" AWS ").CONTROL_PLANE == "aws"

    def test_unknown_control_plane_rejected(self):
        with pytest.raises(ValidationError):
            Settings(CONTROL_PLANE="gcp")

    def test_execution_mode_normalized(self):
        assert Settings().EXECUTION_MODE == "manual"
        assert Settings(EXECUTION_MODE=" Automated ").EXECUTION_MODE == "automated"

    def test_unknown_execution_mode_rejected(self):
        with pytest.raises(ValidationError):
            Settings(EXECUTION_MODE="yolo")

    @pytest.mark.parametrize("raw", ["", "0", -5, None])
    def test_expiry_disabled_values(self, raw):
        """Test that empty and non-positive expiry values disable expiry."""
        assert Settings(RECOMMENDATION_EXPIRY_DAYS=raw).RECOMMENDATION_EXPIRY_DAYS is None

    def test_expiry_days_parsed(self):
        assert Settings(RECOMMENDATION_EXPIRY_DAYS="45").RECOMMENDATION_EXPIRY_DAYS == 45

    def test_database_url_empty_by_default_in_tests(self):
        """Test that the test environment starts without a store."""
        assert Settings().DATABASE_URL == ""
