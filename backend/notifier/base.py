"""
Messaging platform interface used by the notifier
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol


@dataclass
class Attachment:
    """File uploaded alongside a message"""
    filename: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class Embed:
    """Rich-embed metadata"""
    description: str = ""
    author: Optional[str] = None
    footer: Optional[str] = None
    color: Optional[int] = None
    timestamp: Optional[datetime] = None


@dataclass
class OutboundMessage:
    """A message about to be sent"""
    content: str = ""
    embeds: List[Embed] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)

    @property
    def attachment_bytes(self) -> int:
        return sum(a.size for a in self.attachments)


@dataclass
class SentMessage:
    """A message already in a channel's history"""
    message_id: str
    content: str = ""
    footers: List[str] = field(default_factory=list)

    def contains(self, marker: str) -> bool:
        return marker in self.content or any(marker in footer for footer in self.footers)


class MessagingClient(Protocol):
    """Send/history API of the destination messaging platform"""

    async def fetch_recent_messages(self, channel_id: str, limit: int) -> List[SentMessage]:
        ...

    async def send_message(self, channel_id: str, message: OutboundMessage) -> SentMessage:
        """
        Raises:
            AttachmentTooLargeError: if the platform refuses the upload for size
            DeliveryError: for any other refusal or transport failure
        """
        ...


class ChannelProvisioner(Protocol):
    """Creates destination channels for newly seen creators"""

    async def create_text_channel(self, name: str) -> str:
        """Create a channel and return its id"""
        ...
