"""Channel layer: base + Discord + WhatsApp; factory by type."""
from __future__ import annotations

from chapterbell.channel.base import Channel, ChannelError
from chapterbell.channel.discord import DiscordChannel
from chapterbell.channel.whatsapp import WhatsAppChannel

_CHANNELS: dict[str, type[Channel]] = {
    "discord": DiscordChannel,
    "whatsapp": WhatsAppChannel,
}


def get_channel(channel_type: str) -> type[Channel]:
    """Return channel class for given type."""
    if channel_type not in _CHANNELS:
        raise ValueError(f"Unknown channel type: {channel_type}")
    return _CHANNELS[channel_type]


def channel_types() -> list[str]:
    return sorted(_CHANNELS)


__all__ = ["Channel", "ChannelError", "DiscordChannel", "WhatsAppChannel", "channel_types", "get_channel"]
