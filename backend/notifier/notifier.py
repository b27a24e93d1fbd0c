"""
Idempotent notification delivery
"""
from datetime import datetime, timezone
from typing import List, Optional

import httpx
from loguru import logger

from downloaders.base import DownloadResult, ImageResult, VideoResult
from errors import AttachmentTooLargeError, DeliveryError, MediaTooLargeError, TransientDeliveryError
from utils.retry import with_retry
from .base import Attachment, Embed, MessagingClient, OutboundMessage
from .media import MediaFetcher

EMBED_COLOR = 0xFE2C55
DEFAULT_FOOTER = "ClipRelay"


def correlation_marker(correlation_id: str) -> str:
    """Text embedded in the footer so a later attempt can recognise the send"""
    return f"Event: {correlation_id}"


def link_only_content(content: str, url: str) -> str:
    return f"{content}\n\n⚠️ Media too large to upload directly:\n{url}"


class Notifier:
    """
    Renders a notification and sends it at most once per correlation id.

    The dispatcher delivers at-least-once, so before every send the last
    `history_limit` messages of the channel are scanned for the correlation
    marker. If the scan itself fails the message is sent anyway.
    """

    def __init__(
        self,
        client: MessagingClient,
        media_fetcher: MediaFetcher,
        history_limit: int = 10,
        max_attachment_bytes: int = 25 * 1024 * 1024,
        max_images: int = 4,
        footer_text: str = DEFAULT_FOOTER,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        retry_backoff: bool = True,
    ):
        self.client = client
        self.media_fetcher = media_fetcher
        self.history_limit = history_limit
        self.max_attachment_bytes = max_attachment_bytes
        self.max_images = max_images
        self.footer_text = footer_text
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.retry_backoff = retry_backoff

    async def notify(
        self,
        channel_id: str,
        message: str,
        media: Optional[DownloadResult] = None,
        role_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> bool:
        """
        Deliver one notification.

        Returns:
            True if a message was sent, False if a duplicate was found

        Raises:
            DeliveryError: the platform refused or could not be reached
        """
        if correlation_id and await self._already_sent(channel_id, correlation_id):
            logger.info(f"Skipping duplicate notification for {correlation_id} in channel {channel_id}")
            return False

        content = f"<@&{role_id}> {message}" if role_id else message
        embeds = self._build_embeds(media, correlation_id)

        attachments: List[Attachment] = []
        fallback_url = media.urls[0] if media and media.urls else None
        if media and media.urls:
            try:
                attachments = await self._fetch_attachments(media)
            except MediaTooLargeError as e:
                logger.warning(f"Media over upload limit, sending link instead: {e}")
                return await self._send_link_only(channel_id, content, embeds, fallback_url)
            except httpx.HTTPError as e:
                logger.warning(f"Could not fetch media, sending link instead: {e}")
                return await self._send_link_only(channel_id, content, embeds, fallback_url)

        outbound = OutboundMessage(content=content, embeds=embeds, attachments=attachments)
        try:
            await self._send(channel_id, outbound)
        except AttachmentTooLargeError as e:
            if not fallback_url:
                raise
            logger.warning(f"Platform rejected attachment size for channel {channel_id}: {e}")
            return await self._send_link_only(channel_id, content, embeds, fallback_url)

        logger.info(f"Notification sent to channel {channel_id} ({len(attachments)} attachments)")
        return True

    async def _already_sent(self, channel_id: str, correlation_id: str) -> bool:
        marker = correlation_marker(correlation_id)
        try:
            recent = await with_retry(
                lambda: self.client.fetch_recent_messages(channel_id, self.history_limit),
                max_attempts=self.retry_attempts,
                base_delay=self.retry_delay,
                backoff=self.retry_backoff,
                retry_on=(TransientDeliveryError,),
                operation=f"history scan of {channel_id}",
            )
        except Exception as e:
            logger.warning(f"History scan failed for channel {channel_id}, assuming not a duplicate: {e}")
            return False

        return any(sent.contains(marker) for sent in recent)

    def _build_embeds(self, media: Optional[DownloadResult], correlation_id: Optional[str]) -> List[Embed]:
        footer = self.footer_text
        if correlation_id:
            footer = f"{self.footer_text} • {correlation_marker(correlation_id)}"
        now = datetime.now(timezone.utc)

        if media is not None:
            return [Embed(
                description=media.description or "",
                author=media.author or "TikTok",
                footer=footer,
                color=EMBED_COLOR,
                timestamp=now,
            )]
        if correlation_id:
            return [Embed(description="Notification", footer=footer, timestamp=now)]
        return []

    async def _fetch_attachments(self, media: DownloadResult) -> List[Attachment]:
        if isinstance(media, VideoResult):
            targets = [(media.urls[0], "video.mp4")]
        elif isinstance(media, ImageResult):
            targets = [(url, f"image{i}.jpg") for i, url in enumerate(media.urls[:self.max_images])]
        else:
            raise TypeError(f"Unsupported media type: {type(media).__name__}")

        attachments: List[Attachment] = []
        total = 0
        for url, filename in targets:
            # the limit is per message, not per file
            attachment = await self.media_fetcher.fetch(url, filename, max_bytes=self.max_attachment_bytes - total)
            total += attachment.size
            attachments.append(attachment)
        return attachments

    async def _send_link_only(
        self, channel_id: str, content: str, embeds: List[Embed], url: Optional[str]
    ) -> bool:
        text = link_only_content(content, url) if url else content
        await self._send(channel_id, OutboundMessage(content=text, embeds=embeds))
        logger.info(f"Link-only notification sent to channel {channel_id}")
        return True

    async def _send(self, channel_id: str, message: OutboundMessage):
        try:
            await with_retry(
                lambda: self.client.send_message(channel_id, message),
                max_attempts=self.retry_attempts,
                base_delay=self.retry_delay,
                backoff=self.retry_backoff,
                retry_on=(TransientDeliveryError,),
                operation=f"send to {channel_id}",
            )
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(f"Send to channel {channel_id} failed: {e}") from e
