"""
Delivery of notifications to the destination messaging platform
"""
from .base import (
    Attachment,
    Embed,
    OutboundMessage,
    SentMessage,
    MessagingClient,
    ChannelProvisioner,
)
from .media import MediaFetcher
from .discord_client import DiscordRestClient
from .notifier import Notifier, correlation_marker, link_only_content

__all__ = [
    "Attachment",
    "Embed",
    "OutboundMessage",
    "SentMessage",
    "MessagingClient",
    "ChannelProvisioner",
    "MediaFetcher",
    "DiscordRestClient",
    "Notifier",
    "correlation_marker",
    "link_only_content",
]
