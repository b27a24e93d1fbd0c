"""
Generic catch-all engine using yt-dlp metadata extraction (no file download)
"""
import asyncio
from typing import Any, Dict, List, Optional

import yt_dlp
from loguru import logger

from errors import EngineError
from .base import BaseDownloadEngine, DownloadResult, ImageResult, VideoResult

_IMAGE_EXTS = {"jpg", "jpeg", "png", "webp", "heic"}


class YtDlpEngine(BaseDownloadEngine):
    """Resolves direct media URLs for any site yt-dlp supports"""

    def __init__(self, cookie_file: Optional[str] = None, max_urls: int = 3):
        self.max_urls = max_urls
        self.ydl_opts = {
            'quiet': True,
            'no_warnings': True,
            'skip_download': True,
            'extract_flat': False,
            'format': 'best[vcodec^=avc]/best[ext=mp4]/best',
            'http_headers': {
                'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36'
            },
        }
        if cookie_file:
            self.ydl_opts['cookiefile'] = cookie_file

    @property
    def name(self) -> str:
        return "ytdlp"

    async def download(self, url: str) -> DownloadResult:
        def extract():
            with yt_dlp.YoutubeDL(self.ydl_opts) as ydl:
                return ydl.extract_info(url, download=False)

        try:
            loop = asyncio.get_running_loop()
            info = await loop.run_in_executor(None, extract)
        except yt_dlp.utils.DownloadError as e:
            raise EngineError(self.name, str(e)) from e

        if not info:
            raise EngineError(self.name, "no metadata returned")

        return self._to_result(info)

    def _to_result(self, info: Dict[str, Any]) -> DownloadResult:
        author = info.get('uploader_id') or info.get('uploader') or info.get('creator')
        description = info.get('description') or info.get('title') or ""

        entries = [e for e in (info.get('entries') or []) if e]
        if entries:
            urls = [e.get('url') for e in entries if e.get('url')]
            if urls and all((e.get('ext') or '').lower() in _IMAGE_EXTS for e in entries):
                return ImageResult(urls=tuple(urls), description=description, author=author)
            if urls:
                return VideoResult(urls=tuple(urls[:self.max_urls]), description=description, author=author)

        urls = self._video_urls(info)
        if not urls:
            raise EngineError(self.name, "no playable formats found")

        logger.debug(f"yt-dlp resolved {len(urls)} candidate URLs")
        return VideoResult(urls=tuple(urls), description=description, author=author)

    def _video_urls(self, info: Dict[str, Any]) -> List[str]:
        urls: List[str] = []
        if info.get('url'):
            urls.append(info['url'])

        # yt-dlp lists formats worst -> best
        for fmt in reversed(info.get('formats') or []):
            if fmt.get('vcodec') in (None, 'none') or not fmt.get('url'):
                continue
            if fmt['url'] not in urls:
                urls.append(fmt['url'])
            if len(urls) >= self.max_urls:
                break
        return urls
