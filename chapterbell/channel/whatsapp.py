"""WhatsApp channel: direct text message through the WhatsApp Cloud API."""
from __future__ import annotations

import logging
import re
from typing import Any

import requests

from chapterbell.channel.base import Channel, ChannelError
from chapterbell.config import resolve_env
from chapterbell.models import PushMessage

logger = logging.getLogger(__name__)

GRAPH_API = "https://graph.facebook.com/v19.0"
NON_DIGITS_RE = re.compile(r"\D")


def normalize_phone(phone: str) -> str:
    """Strip everything but digits; the number must carry its country code."""
    return NON_DIGITS_RE.sub("", phone)


class WhatsAppChannel(Channel):
    """Direct-message target: address is the recipient phone number."""

    style = "whatsapp"

    def send(self, msg: PushMessage, address: str, channel_config: dict) -> None:
        token = resolve_env(str(channel_config.get("token") or "")).strip()
        phone_id = resolve_env(str(channel_config.get("phone_number_id") or "")).strip()
        if not token or token.startswith("${") or not phone_id or phone_id.startswith("${"):
            raise ChannelError("WhatsApp channel_config needs 'token' and 'phone_number_id'")
        number = normalize_phone(address)
        if not number:
            raise ChannelError(f"invalid phone number: {address!r}")

        api = str(channel_config.get("api_base") or GRAPH_API).rstrip("/")
        payload: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "to": number,
            "type": "text",
            "text": {"body": msg.body},
        }
        try:
            resp = requests.post(
                f"{api}/{phone_id}/messages",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
                timeout=10,
            )
        except requests.RequestException as e:
            raise ChannelError(f"WhatsApp request failed: {e}") from e
        if not 200 <= resp.status_code < 300:
            raise ChannelError(f"WhatsApp send failed: status={resp.status_code} body={resp.text[:500]}")
        logger.info("Message sent to %s", number)
