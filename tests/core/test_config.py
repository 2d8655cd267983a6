"""Tests for core configuration classes and shared types."""

from __future__ import annotations

from smsrelay.core.config import DEFAULT_API_URL, ChannelConfig, SyncPolicy
from smsrelay.core.types import Direction, SyncMode


class TestChannelConfig:
    """Tests for ChannelConfig class."""

    def test_init_basic(self) -> None:
        """Should initialize with required fields."""
        config = ChannelConfig(bot_token="123:abc")
        assert config.bot_token == "123:abc"
        assert config.api_url == DEFAULT_API_URL
        assert config.timeout == 30.0
        assert config.verify_ssl is True

    def test_init_custom_timeout(self) -> None:
        """Should accept custom timeout."""
        config = ChannelConfig(bot_token="123:abc", timeout=5.0)
        assert config.timeout == 5.0

    def test_url_trailing_slash_removed(self) -> None:
        """Should strip trailing slash from API URL."""
        config = ChannelConfig(bot_token="123:abc", api_url="https://bots.example.com/")
        assert config.api_url == "https://bots.example.com"

    def test_bot_url(self) -> None:
        """Should build the per-bot method URL."""
        config = ChannelConfig(bot_token="123:abc")
        assert config.bot_url == "https://api.telegram.org/bot123:abc"

    def test_is_secure(self) -> None:
        """Should report HTTPS URLs as secure."""
        assert ChannelConfig(bot_token="t").is_secure is True
        assert ChannelConfig(bot_token="t", api_url="http://localhost:8081").is_secure is False


class TestSyncPolicy:
    """Tests for SyncPolicy defaults."""

    def test_defaults(self) -> None:
        """Defaults should match the channel's throughput limits."""
        policy = SyncPolicy()
        assert policy.max_attempts == 3
        assert policy.full_sync_limit == 100
        assert policy.batch_size == 10
        assert policy.inter_message_delay == 1.15
        assert policy.burst_size == 20
        assert policy.burst_cooldown == 25.0
        assert policy.batch_delay == 2.0
        assert policy.sync_interval == 6 * 60 * 60
        assert policy.dead_letter_permanent_errors is False


class TestDirection:
    """Tests for Direction mapping."""

    def test_from_origin_type(self) -> None:
        """Type 1 is received, 2 is sent, everything else is other."""
        assert Direction.from_origin_type(1) == Direction.RECEIVED
        assert Direction.from_origin_type(2) == Direction.SENT
        assert Direction.from_origin_type(3) == Direction.OTHER
        assert Direction.from_origin_type(None) == Direction.OTHER

    def test_label(self) -> None:
        assert Direction.RECEIVED.label == "Received"
        assert Direction.OTHER.label == "Other"

    def test_sync_mode_values(self) -> None:
        assert SyncMode("NEW_ONLY") == SyncMode.NEW_ONLY
