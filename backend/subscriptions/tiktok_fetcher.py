"""
TikTok profile fetcher.
Lists a creator's recent posts using yt-dlp flat playlist extraction.
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

import yt_dlp
from loguru import logger

from .base import BaseFetcher, PostInfo


class TikTokFetcher(BaseFetcher):
    """Fetcher for TikTok user posts."""

    @property
    def platform(self) -> str:
        return "tiktok"

    def __init__(self, cookie_file: Optional[str] = None):
        self.ydl_opts = {
            'quiet': True,
            'no_warnings': True,
            'skip_download': True,
            'extract_flat': 'in_playlist',
            'http_headers': {
                'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36'
            },
        }
        if cookie_file:
            self.ydl_opts['cookiefile'] = cookie_file

    async def get_latest_videos(self, username: str, limit: int = 10) -> List[PostInfo]:
        """
        Fetch recent posts from a TikTok user, newest first.

        Raises:
            yt_dlp.utils.DownloadError: if the profile cannot be listed
        """
        profile_url = f"https://www.tiktok.com/@{username}"
        opts = dict(self.ydl_opts, playlistend=limit)

        def extract():
            with yt_dlp.YoutubeDL(opts) as ydl:
                return ydl.extract_info(profile_url, download=False)

        loop = asyncio.get_running_loop()
        info = await loop.run_in_executor(None, extract)

        posts = [self._to_post(username, entry) for entry in (info or {}).get('entries') or [] if entry]
        posts = [p for p in posts if p is not None][:limit]
        logger.debug(f"Found {len(posts)} TikTok posts for @{username}")
        return posts

    def _to_post(self, username: str, entry: Dict[str, Any]) -> Optional[PostInfo]:
        post_id = str(entry.get('id') or '')
        if not post_id:
            return None

        timestamp = entry.get('timestamp')
        published_at = datetime.fromtimestamp(int(timestamp)) if timestamp else None

        return PostInfo(
            post_id=post_id,
            url=entry.get('url') or f"https://www.tiktok.com/@{username}/video/{post_id}",
            published_at=published_at,
            description=(entry.get('title') or entry.get('description') or '')[:100] or None,
        )
