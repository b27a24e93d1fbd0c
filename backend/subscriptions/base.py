"""
Base class for creator post fetchers.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from loguru import logger


@dataclass
class PostInfo:
    """A post on a creator's profile"""
    post_id: str
    url: str
    published_at: Optional[datetime] = None
    description: Optional[str] = None


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=None) if value.tzinfo else value


class BaseFetcher(ABC):
    """Abstract base class for platform-specific profile fetchers"""

    @property
    @abstractmethod
    def platform(self) -> str:
        """Return the platform name (e.g., 'tiktok')"""
        pass

    @abstractmethod
    async def get_latest_videos(self, username: str, limit: int = 10) -> List[PostInfo]:
        """
        Get the latest posts from a creator.

        Returns:
            List of PostInfo, newest first
        """
        pass

    async def get_new_videos(
        self,
        username: str,
        after_video_id: Optional[str] = None,
        after_date: Optional[datetime] = None,
        limit: int = 10,
    ) -> List[PostInfo]:
        """
        Posts newer than a reference point, newest first.

        With no reference point this is the first check: nothing is returned
        and the caller records the newest post as the baseline, so a newly
        tracked creator does not flood the channel with old posts.
        """
        if not after_video_id and not after_date:
            logger.debug(f"First check for @{username}: no baseline set, returning empty to establish baseline")
            return []

        posts = await self.get_latest_videos(username, limit)
        after_date = _naive(after_date)

        new_posts = []
        for post in posts:
            # Stop if we've reached the reference post
            if after_video_id and post.post_id == after_video_id:
                break

            published = _naive(post.published_at)
            if after_date and published and published <= after_date:
                break

            new_posts.append(post)

        return new_posts

    async def close(self):
        pass
