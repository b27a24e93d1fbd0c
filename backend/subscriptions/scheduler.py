"""
Creator watcher: periodically checks tracked creators for new posts and
forwards them through the forwarding use case.
"""
import asyncio
from typing import List, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker

from database.connection import transaction
from database.models import TrackedCreatorModel
from database.repository import TrackedCreatorRepository
from forwarder.usecases import ProcessVideoLinkUseCase
from utils.polling import PeriodicWorker
from .base import BaseFetcher, PostInfo


class CreatorWatcher(PeriodicWorker):
    """
    Checks due creators every `check_interval` seconds, at most
    `max_concurrent_checks` at a time.
    """

    name = "Creator watcher"

    def __init__(
        self,
        fetcher: BaseFetcher,
        use_case: ProcessVideoLinkUseCase,
        session_factory: async_sessionmaker,
        check_interval: int = 60,
        max_concurrent_checks: int = 3,
        fetch_limit: int = 10,
    ):
        super().__init__(check_interval)
        self.fetcher = fetcher
        self.use_case = use_case
        self.session_factory = session_factory
        self.fetch_limit = fetch_limit
        self._semaphore = asyncio.Semaphore(max_concurrent_checks)

    async def _run_tick(self):
        await self.check_due_creators()

    async def check_due_creators(self) -> int:
        """Check all due creators; returns how many were checked"""
        async with transaction(self.session_factory) as session:
            creators = await TrackedCreatorRepository(session).get_due()

        if not creators:
            return 0

        logger.debug(f"Found {len(creators)} creators due for checking")
        await asyncio.gather(
            *(self._check_with_semaphore(creator) for creator in creators),
            return_exceptions=True,
        )
        return len(creators)

    async def _check_with_semaphore(self, creator: TrackedCreatorModel):
        async with self._semaphore:
            await self.check_creator(creator)

    async def check_creator(self, creator: TrackedCreatorModel) -> List[PostInfo]:
        """
        Check a single creator for new posts.

        The baseline advances past each post as soon as it is processed, so a
        failed post and the ones after it are picked up again on the next check
        without re-forwarding the ones before it.
        """
        username = creator.username
        error: Optional[str] = None
        new_posts: List[PostInfo] = []

        try:
            if not creator.last_video_id and not creator.last_video_published_at:
                logger.info(f"First check for @{username}: setting baseline without forwarding")
                latest = await self.fetcher.get_latest_videos(username, limit=1)
                if latest:
                    await self._set_baseline(username, latest[0])
            else:
                new_posts = await self.fetcher.get_new_videos(
                    username,
                    after_video_id=creator.last_video_id,
                    after_date=creator.last_video_published_at,
                    limit=self.fetch_limit,
                )
                if new_posts:
                    logger.info(f"Found {len(new_posts)} new posts for @{username}")
                    if not await self._forward(username, new_posts):
                        error = "Failed to forward new posts"
                        logger.warning(f"Baseline for @{username} held at the last forwarded post")
                else:
                    logger.debug(f"No new posts for @{username}")
        except Exception as e:
            logger.error(f"Error checking @{username}: {e}")
            error = str(e)

        async with transaction(self.session_factory) as session:
            await TrackedCreatorRepository(session).schedule_next(username, error=error)
        return new_posts

    async def _forward(self, username: str, posts: List[PostInfo]) -> bool:
        # Oldest first so channels receive posts in publish order
        for post in reversed(posts):
            try:
                await self.use_case.execute(post.url, username=username)
            except Exception as e:
                logger.error(f"Failed to forward {post.url} for @{username}: {e}")
                return False
            await self._set_baseline(username, post)
        return True

    async def _set_baseline(self, username: str, post: PostInfo):
        async with transaction(self.session_factory) as session:
            await TrackedCreatorRepository(session).update(
                username,
                last_video_id=post.post_id,
                last_video_published_at=post.published_at,
            )
        logger.info(f"Baseline for @{username} set to {post.post_id}")
