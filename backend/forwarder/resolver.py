"""
Mapping resolution: find where a creator's posts go, provisioning a channel on first sight
"""
from typing import List

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from database.repository import MappingRepository
from errors import DeliveryError
from notifier.base import ChannelProvisioner
from .events import MappingSnapshot
from .validation import ChannelId, CreatorUsername, sanitize_channel_name


class MappingResolver:
    """
    Looks up creator -> channel mappings and auto-provisions missing ones.
    All database work joins the caller's session.
    """

    def __init__(self, provisioner: ChannelProvisioner, auto_provision: bool = True):
        self.provisioner = provisioner
        self.auto_provision = auto_provision

    async def find_mappings(self, username: CreatorUsername, session: AsyncSession) -> List[MappingSnapshot]:
        rows = await MappingRepository(session).find_by_username(username.value)
        return [
            MappingSnapshot(username=row.username, channel_id=row.channel_id, role_id=row.role_id)
            for row in rows
        ]

    async def provision_channel(self, sanitized_name: str) -> ChannelId:
        channel_id = await self.provisioner.create_text_channel(sanitized_name)
        return ChannelId.create(channel_id)

    async def resolve(self, username: CreatorUsername, session: AsyncSession) -> List[MappingSnapshot]:
        """
        Existing mappings for the creator, or a freshly provisioned one.

        Returns an empty list if the name cannot become a channel or the
        platform refuses to create it.
        """
        existing = await self.find_mappings(username, session)
        if existing:
            logger.debug(f"Found {len(existing)} mapping(s) for @{username}")
            return existing

        if not self.auto_provision:
            logger.info(f"No mapping for @{username} and auto-provisioning is off")
            return []

        channel_name = sanitize_channel_name(username.value)
        if channel_name is None:
            logger.warning(f"Cannot auto-create channel: @{username} leaves no usable channel name")
            return []

        logger.info(f"No mapping found for @{username}, provisioning #{channel_name}")
        try:
            channel_id = await self.provision_channel(channel_name)
        except DeliveryError as e:
            logger.error(f"Failed to provision channel for @{username}: {e}")
            return []

        await MappingRepository(session).save(username.value, channel_id.value)
        logger.info(f"Auto-provisioned @{username} -> #{channel_name} ({channel_id})")
        return [MappingSnapshot(username=username.value, channel_id=channel_id.value)]
