"""
Forwarding use case: turn a post link into outbox events, one per mapped channel
"""
from typing import List, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker

from database.connection import transaction
from downloaders.chain import DownloadEngineChain
from downloaders.url_matcher import detect_platform, extract_url, extract_username
from errors import ChainExhaustedError, ValidationError
from outbox.store import OutboxStore
from .events import MappingSnapshot, VideoForwardedEvent
from .resolver import MappingResolver
from .validation import CreatorUsername


class ProcessVideoLinkUseCase:
    """
    Download metadata for a post and record one `VideoForwardedEvent` per
    destination mapping.

    When the creator is known up front (explicit argument or a profile-style
    URL), mappings are resolved and committed before the download, so a
    provisioned channel survives a failed download. Otherwise the creator is
    taken from the download result and the mapping and events share one
    transaction.
    """

    def __init__(
        self,
        chain: DownloadEngineChain,
        resolver: MappingResolver,
        outbox: OutboxStore,
        session_factory: async_sessionmaker,
    ):
        self.chain = chain
        self.resolver = resolver
        self.outbox = outbox
        self.session_factory = session_factory

    async def execute(
        self,
        url: str,
        username: Optional[str] = None,
        source_guild_name: Optional[str] = None,
    ) -> List[str]:
        """
        Returns:
            Ids of the events written (empty if the creator has no destination)

        Raises:
            ValidationError: malformed or unsupported URL, or bad username
            ChainExhaustedError: every download engine failed; mapping
                side-effects are already committed, no event is written
        """
        if not url or not url.startswith(("http://", "https://")):
            raise ValidationError(f"Not a URL: {url!r}")
        if detect_platform(url) is None:
            raise ValidationError(f"Unsupported link: {url}")

        logger.info(f"Processing URL: {url}" + (f" from {source_guild_name}" if source_guild_name else ""))

        known = username or extract_username(url)
        creator = CreatorUsername.create(known) if known else None

        mappings: Optional[List[MappingSnapshot]] = None
        if creator is not None:
            async with transaction(self.session_factory) as session:
                mappings = await self.resolver.resolve(creator, session)
            if not mappings:
                logger.info(f"No destination for @{creator}, skipping download")
                return []

        try:
            media = await self.chain.download(url)
        except ChainExhaustedError as e:
            logger.error(f"Download failed for {url}: {e}")
            raise

        if creator is None:
            if not media.author:
                raise ValidationError(f"Could not determine the creator of {url}")
            creator = CreatorUsername.create(media.author)

        async with transaction(self.session_factory) as session:
            if mappings is None:
                mappings = await self.resolver.resolve(creator, session)
            if not mappings:
                logger.info(f"No mappings available for @{creator}")
                return []

            event_ids = []
            for mapping in mappings:
                event = VideoForwardedEvent(mapping, media, url, source_guild_name=source_guild_name)
                await self.outbox.save(event, session)
                event_ids.append(event.event_id)

        logger.info(f"Recorded {len(event_ids)} notification(s) for @{creator}")
        return event_ids

    async def execute_from_text(
        self,
        text: str,
        username: Optional[str] = None,
        source_guild_name: Optional[str] = None,
    ) -> List[str]:
        """Same as `execute`, using the first post link found in free text"""
        url = extract_url(text or "")
        if not url:
            raise ValidationError("No supported link found in message")
        return await self.execute(url, username=username, source_guild_name=source_guild_name)
