"""
Tests for source configuration.
"""

import pytest

from sources.config import SourceConfig
from sources.exceptions import InvalidArgumentException


class TestSourceConfig:
    """Tests for SourceConfig."""

    def test_defaults(self):
        """Test default timeouts and endpoints."""
        config = SourceConfig()

        assert config.create_repo_timeout_seconds == 30
        assert config.wait_tag_timeout_seconds == 10
        assert config.rate_limit_timeout_seconds == 60
        assert config.rate_limit_retry_count == 3
        assert config.github_api_url == "https://api.github.com"
        assert config.gitlab_url == "https://gitlab.com"

    def test_from_empty_env(self):
        """Test an empty environment yields the defaults."""
        assert SourceConfig.from_env({}) == SourceConfig()

    def test_from_env(self):
        """Test values are read from prefixed variables."""
        config = SourceConfig.from_env(
            {
                "SCC_CREATE_REPO_TIMEOUT_SECONDS": "5",
                "SCC_WAIT_TAG_TIMEOUT_SECONDS": "0",
                "SCC_RATE_LIMIT_RETRY_COUNT": "7",
                "SCC_GITLAB_URL": "https://gitlab.example.com",
            }
        )

        assert config.create_repo_timeout_seconds == 5
        assert config.wait_tag_timeout_seconds == 0
        assert config.rate_limit_retry_count == 7
        assert config.gitlab_url == "https://gitlab.example.com"
        assert config.rate_limit_timeout_seconds == 60

    def test_blank_value_uses_default(self):
        """Test blank variables fall back to defaults."""
        config = SourceConfig.from_env({"SCC_WAIT_TAG_TIMEOUT_SECONDS": " "})
        assert config.wait_tag_timeout_seconds == 10

    def test_non_integer(self):
        """Test malformed numbers are rejected."""
        with pytest.raises(InvalidArgumentException, match="must be an integer"):
            SourceConfig.from_env({"SCC_WAIT_TAG_TIMEOUT_SECONDS": "ten"})

    def test_negative(self):
        """Test negative numbers are rejected."""
        with pytest.raises(InvalidArgumentException, match="must not be negative"):
            SourceConfig.from_env({"SCC_RATE_LIMIT_RETRY_COUNT": "-1"})

    def test_reads_process_environment(self, monkeypatch):
        """Test os.environ is used by default."""
        monkeypatch.setenv("SCC_REQUEST_TIMEOUT_SECONDS", "12")
        assert SourceConfig.from_env().request_timeout_seconds == 12
