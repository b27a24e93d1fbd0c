"""
Events recorded by the forwarder
"""
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional

from downloaders.base import DownloadResult, download_result_from_dict
from outbox.events import DomainEvent, EventTypeRegistry


@dataclass(frozen=True)
class MappingSnapshot:
    """Destination of one notification, copied into the event at creation time"""
    username: str
    channel_id: str
    role_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class VideoForwardedEvent(DomainEvent):
    """A new post by a tracked creator must be announced in one mapped channel"""

    def __init__(
        self,
        mapping: MappingSnapshot,
        media: Optional[DownloadResult],
        original_url: str,
        source_guild_name: Optional[str] = None,
        event_id: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ):
        super().__init__(event_id=event_id, occurred_at=occurred_at)
        self.mapping = mapping
        self.media = media
        self.original_url = original_url
        self.source_guild_name = source_guild_name

    @property
    def aggregate_id(self) -> str:
        return f"{self.mapping.username}#{self.mapping.channel_id}"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "occurred_at": self.occurred_at.isoformat(),
            "mapping": self.mapping.to_dict(),
            "media": self.media.to_dict() if self.media is not None else None,
            "original_url": self.original_url,
            "source_guild_name": self.source_guild_name,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "VideoForwardedEvent":
        mapping = payload["mapping"]
        occurred_at = payload.get("occurred_at")
        return cls(
            mapping=MappingSnapshot(
                username=mapping["username"],
                channel_id=mapping["channel_id"],
                role_id=mapping.get("role_id"),
            ),
            media=download_result_from_dict(payload.get("media")),
            original_url=payload["original_url"],
            source_guild_name=payload.get("source_guild_name"),
            event_id=payload.get("event_id"),
            occurred_at=datetime.fromisoformat(occurred_at) if occurred_at else None,
        )


def default_event_types() -> EventTypeRegistry:
    return EventTypeRegistry([VideoForwardedEvent])
