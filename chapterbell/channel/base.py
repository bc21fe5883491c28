"""Channel abstraction: one delivery mechanism for rendered messages."""
from __future__ import annotations

from abc import ABC, abstractmethod

from chapterbell.models import PushMessage


class ChannelError(Exception):
    """Raised by Channel.send when a message could not be delivered."""


class Channel(ABC):
    """Abstract channel: send(msg, address, channel_config) -> None, raises ChannelError."""

    # Rendering style the dispatcher uses for this channel
    style: str = "text"

    @abstractmethod
    def send(self, msg: PushMessage, address: str, channel_config: dict) -> None:
        """Deliver msg to address using the given channel config (token etc.)."""
        ...
