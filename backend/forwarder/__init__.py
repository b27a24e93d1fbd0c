"""
Forwarder: resolves destinations for a post and records delivery events in the outbox
"""
from .validation import CreatorUsername, ChannelId, RoleId, sanitize_channel_name
from .events import MappingSnapshot, VideoForwardedEvent, default_event_types
from .resolver import MappingResolver
from .usecases import ProcessVideoLinkUseCase
from .handlers import SendNotificationHandler, register_handlers, render_message

__all__ = [
    "CreatorUsername",
    "ChannelId",
    "RoleId",
    "sanitize_channel_name",
    "MappingSnapshot",
    "VideoForwardedEvent",
    "default_event_types",
    "MappingResolver",
    "ProcessVideoLinkUseCase",
    "SendNotificationHandler",
    "register_handlers",
    "render_message",
]
