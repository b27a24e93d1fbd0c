"""
Outbox handlers for forwarder events
"""
from loguru import logger

from errors import DeliveryPendingError
from notifier.notifier import Notifier
from outbox.registry import EventHandler, EventHandlerRegistry
from .events import VideoForwardedEvent


def render_message(event: VideoForwardedEvent) -> str:
    author = (event.media.author if event.media else None) or event.mapping.username
    message = f"🎥 **New Post by @{author}!**"
    if event.media is None or not event.media.urls:
        message += f"\n<{event.original_url}>"
    return message


class SendNotificationHandler(EventHandler):
    """Announces a forwarded post in its mapped channel"""

    def __init__(self, notifier: Notifier):
        self.notifier = notifier

    async def handle(self, event: VideoForwardedEvent) -> None:
        mapping = event.mapping
        logger.info(f"Handling {event.event_type} for @{mapping.username} -> channel {mapping.channel_id}")

        try:
            await self.notifier.notify(
                mapping.channel_id,
                render_message(event),
                media=event.media,
                role_id=mapping.role_id,
                correlation_id=event.event_id,
            )
        except Exception as e:
            raise DeliveryPendingError(
                f"Failed to notify channel {mapping.channel_id} for {event.event_id}: {e}"
            ) from e


def register_handlers(registry: EventHandlerRegistry, notifier: Notifier):
    registry.register(VideoForwardedEvent.__name__, SendNotificationHandler(notifier))
