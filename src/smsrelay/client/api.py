"""HTTP client for the Telegram Bot API.

This module provides:
- TelegramChannelClient: Posts messages to a channel and discovers chats
- ChannelProtocol: What the sync engine needs from a channel client
- ChatInfo: Chat metadata returned by getUpdates/getChat
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from smsrelay.client.sync.types import ChannelError

if TYPE_CHECKING:
    from smsrelay.core.config import ChannelConfig

logger = logging.getLogger(__name__)

__all__ = ["ChannelError", "ChannelProtocol", "ChatInfo", "TelegramChannelClient"]

# Update fields that carry a chat, in lookup order
_UPDATE_CHAT_FIELDS = (
    "message",
    "edited_message",
    "channel_post",
    "edited_channel_post",
    "my_chat_member",
)


class ChannelProtocol(Protocol):
    """Structural interface consumed by the sync orchestrator."""

    def send_message(
        self,
        destination: str,
        text: str,
        timeout: float | None = None,
    ) -> str:
        """Post a message and return the remote message id.

        Raises:
            ChannelError: If the channel rejected or failed the request.
        """
        ...


@dataclass
class ChatInfo:
    """Chat metadata from the Bot API."""

    id: str
    type: str
    title: str | None = None
    username: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatInfo:
        """Create from API chat object."""
        title = data.get("title")
        if title is None:
            names = [data.get("first_name"), data.get("last_name")]
            title = " ".join(name for name in names if name) or None
        return cls(
            id=str(data["id"]),
            type=data.get("type", "unknown"),
            title=title,
            username=data.get("username"),
        )

    @property
    def display_name(self) -> str:
        if self.title:
            return self.title
        if self.username:
            return f"@{self.username}"
        return self.id


class TelegramChannelClient:
    """HTTP client for the Telegram Bot API."""

    def __init__(self, config: ChannelConfig) -> None:
        """Initialize the channel client.

        Args:
            config: Bot token, API URL and transport settings.
        """
        self._config = config
        self._client = httpx.Client(
            base_url=config.bot_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> TelegramChannelClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _handle_response(self, response: httpx.Response) -> Any:
        """Return the ``result`` of a Bot API response or raise ChannelError."""
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not isinstance(payload, dict):
            if response.status_code >= 400:
                raise ChannelError(
                    f"{response.status_code} {response.text or response.reason_phrase}",
                    response.status_code,
                )
            raise ChannelError(f"Malformed response: {response.text[:200]}", response.status_code)

        if response.status_code >= 400 or not payload.get("ok", False):
            status = payload.get("error_code", response.status_code)
            description = payload.get("description", "Unknown error")
            parameters = payload.get("parameters") or {}
            retry_after = parameters.get("retry_after")
            message = f"{status} {description}"
            if retry_after is not None:
                message += f' {{"retry_after": {retry_after}}}'
            raise ChannelError(
                message,
                status_code=int(status) if status is not None else None,
                retry_after=float(retry_after) if retry_after is not None else None,
            )

        return payload.get("result")

    def _call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """POST a Bot API method and return its result.

        Raises:
            ChannelError: On transport failures and API errors.
        """
        kwargs: dict[str, Any] = {"json": params or {}}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = self._client.post(f"/{method}", **kwargs)
        except httpx.TimeoutException as e:
            raise ChannelError(f"timeout: {method} timed out ({e})") from e
        except httpx.RequestError as e:
            raise ChannelError(f"network error: {e}") from e
        return self._handle_response(response)

    # === Health check ===

    def health_check(self) -> bool:
        """Check that the bot token is accepted.

        Returns:
            True if getMe succeeded.
        """
        try:
            self._call("getMe")
            return True
        except ChannelError as e:
            logger.debug(f"Health check failed: {e}")
            return False

    # === Messages ===

    def send_message(
        self,
        destination: str,
        text: str,
        timeout: float | None = None,
    ) -> str:
        """Post a text message to a chat.

        Args:
            destination: Chat id or @channel username.
            text: Message text.
            timeout: Request timeout overriding the client default.

        Returns:
            The id of the posted message.

        Raises:
            ChannelError: If the message was not posted.
        """
        result = self._call(
            "sendMessage",
            {"chat_id": destination, "text": text},
            timeout=timeout,
        )
        message_id = result.get("message_id") if isinstance(result, dict) else None
        if message_id is None:
            raise ChannelError("Telegram response did not include a message id")
        return str(message_id)

    # === Chats ===

    def get_chat(self, destination: str) -> bool:
        """Check that the bot can see a chat.

        Returns:
            True if the chat exists and is accessible to the bot.
        """
        try:
            self._call("getChat", {"chat_id": destination})
        except ChannelError as e:
            logger.warning(f"Chat {destination} is not accessible: {e}")
            return False
        return True

    def get_updates(self, offset: int | None = None) -> list[ChatInfo]:
        """List chats that recently interacted with the bot.

        Args:
            offset: First update id to return.

        Returns:
            Distinct chats, in the order they first appear.
        """
        params: dict[str, Any] = {"timeout": 0}
        if offset is not None:
            params["offset"] = offset
        updates = self._call("getUpdates", params) or []

        chats: dict[str, ChatInfo] = {}
        for update in updates:
            for field in _UPDATE_CHAT_FIELDS:
                chat = (update.get(field) or {}).get("chat")
                if chat and "id" in chat:
                    info = ChatInfo.from_dict(chat)
                    chats.setdefault(info.id, info)
                    break
        return list(chats.values())
