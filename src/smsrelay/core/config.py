"""Shared configuration classes for smsrelay.

This module defines the channel connection settings and the delivery policy
used by the sync orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_API_URL = "https://api.telegram.org"


@dataclass
class ChannelConfig:
    """Configuration for connecting to the Telegram Bot API.

    Attributes:
        bot_token: Bot token issued by BotFather.
        api_url: Base URL of the Bot API (overridable for self-hosted servers).
        timeout: Request/connection timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    bot_token: str
    api_url: str = DEFAULT_API_URL
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize API URL."""
        self.api_url = self.api_url.rstrip("/")

    @property
    def bot_url(self) -> str:
        """Get the method base URL for this bot.

        Returns:
            URL of the form ``{api_url}/bot{token}``.
        """
        return f"{self.api_url}/bot{self.bot_token}"

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS."""
        return self.api_url.startswith("https://")


@dataclass
class SyncPolicy:
    """Delivery limits applied by the sync orchestrator.

    The defaults match the destination platform's throughput limits for a
    single chat. Tests shrink the delays and burst size.

    Attributes:
        max_attempts: Failed attempts after which a message is dead-lettered.
        full_sync_limit: Maximum messages selected by a full pass.
        batch_size: Messages per batch (and per quick pass).
        inter_message_delay: Fixed delay before every send but the first of a pass.
        burst_size: Successful sends after which a cooldown is due.
        burst_cooldown: Cooldown served once a burst completes.
        batch_delay: Delay between two batches of a full pass.
        sync_interval: Minimum spacing between two unforced full passes.
        send_timeout: Timeout applied to each channel call.
        dead_letter_permanent_errors: Dead-letter a message at once when the
            channel reports an error re-sending cannot fix (bad token,
            forbidden or unknown destination).
    """

    max_attempts: int = 3
    full_sync_limit: int = 100
    batch_size: int = 10
    inter_message_delay: float = 1.15
    burst_size: int = 20
    burst_cooldown: float = 25.0
    batch_delay: float = 2.0
    sync_interval: float = 6 * 60 * 60
    send_timeout: float = 30.0
    dead_letter_permanent_errors: bool = False
