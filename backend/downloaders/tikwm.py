"""
TikTok engine backed by the tikwm JSON API
"""
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from errors import EngineError
from utils.retry import with_retry
from .base import BaseDownloadEngine, DownloadResult, ImageResult, VideoResult


class TikwmEngine(BaseDownloadEngine):
    """Resolves TikTok posts through tikwm.com"""

    platforms = ("tiktok",)

    def __init__(
        self,
        api_url: str = "https://www.tikwm.com/api/",
        hd: bool = True,
        timeout: float = 30.0,
        retry_attempts: int = 2,
        retry_delay: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url
        self.hd = hd
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={
                "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
            },
        )

    @property
    def name(self) -> str:
        return "tikwm"

    async def close(self):
        if self._owns_client:
            await self.client.aclose()

    async def download(self, url: str) -> DownloadResult:
        async def request():
            response = await self.client.post(
                self.api_url,
                data={"url": url, "hd": 1 if self.hd else 0},
            )
            response.raise_for_status()
            return response.json()

        try:
            body = await with_retry(
                request,
                max_attempts=self.retry_attempts,
                base_delay=self.retry_delay,
                retry_on=(httpx.TransportError, httpx.HTTPStatusError),
                operation=f"tikwm lookup {url}",
            )
        except httpx.HTTPError as e:
            raise EngineError(self.name, f"request failed: {e}") from e
        except ValueError as e:
            raise EngineError(self.name, f"invalid JSON response: {e}") from e

        if body.get("code") != 0 or not body.get("data"):
            raise EngineError(self.name, f"API error: {body.get('msg') or 'empty response'}")

        return self._parse(body["data"])

    def _parse(self, data: Dict[str, Any]) -> DownloadResult:
        author_info = data.get("author") or {}
        author = author_info.get("unique_id") or author_info.get("nickname")
        description = data.get("title") or ""

        images = data.get("images") or []
        if images:
            logger.debug(f"tikwm: photo post with {len(images)} images")
            return ImageResult(urls=tuple(images), description=description, author=author)

        urls = []
        for key in (("hdplay", "play") if self.hd else ("play", "hdplay")):
            value = data.get(key)
            if value and value not in urls:
                urls.append(value)

        if not urls:
            raise EngineError(self.name, "response contained no media URLs")

        return VideoResult(urls=tuple(urls), description=description, author=author)
