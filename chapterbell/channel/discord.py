"""Discord channel: post a message into a text channel via the bot REST API."""
from __future__ import annotations

import logging
from typing import Any

import requests

from chapterbell.channel.base import Channel, ChannelError
from chapterbell.config import resolve_env
from chapterbell.models import PushMessage

logger = logging.getLogger(__name__)

DISCORD_API = "https://discord.com/api/v10"
# Discord rejects message content longer than this
MAX_CONTENT = 2000


class DiscordChannel(Channel):
    """Chat-channel target: address is the Discord channel id."""

    style = "discord"

    def send(self, msg: PushMessage, address: str, channel_config: dict) -> None:
        token = resolve_env(str(channel_config.get("token") or "")).strip()
        if not token or token.startswith("${"):
            raise ChannelError("Discord channel_config missing 'token' (env var not set?)")
        if not address.isdigit():
            raise ChannelError(f"invalid Discord channel id: {address!r}")

        api = str(channel_config.get("api_base") or DISCORD_API).rstrip("/")
        url = f"{api}/channels/{address}/messages"
        payload: dict[str, Any] = {"content": msg.body[:MAX_CONTENT]}
        headers = {"Authorization": f"Bot {token}"}
        try:
            resp = requests.post(url, json=payload, headers=headers, timeout=10)
        except requests.RequestException as e:
            raise ChannelError(f"Discord request failed: {e}") from e
        if resp.status_code == 404:
            raise ChannelError(f"Channel with ID {address} not found")
        if not 200 <= resp.status_code < 300:
            raise ChannelError(f"Discord send failed: status={resp.status_code} body={resp.text[:500]}")
        logger.info("Notification sent to Discord channel %s", address)
