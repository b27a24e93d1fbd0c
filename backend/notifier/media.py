"""
Media fetching with a hard size limit
"""
from typing import Optional

import httpx
from loguru import logger

from errors import MediaTooLargeError
from utils.retry import with_retry
from .base import Attachment

_CHUNK_SIZE = 64 * 1024


class MediaFetcher:
    """Streams media URLs into memory, refusing anything over `max_bytes`"""

    def __init__(
        self,
        max_bytes: int = 25 * 1024 * 1024,
        timeout: float = 60.0,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.max_bytes = max_bytes
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

    async def close(self):
        if self._owns_client:
            await self.client.aclose()

    async def fetch(self, url: str, filename: str, max_bytes: Optional[int] = None) -> Attachment:
        """
        Download one file.

        Raises:
            MediaTooLargeError: declared or streamed size exceeds the limit (not retried)
            httpx.HTTPError: transport or status failure after retries
        """
        limit = self.max_bytes if max_bytes is None else max_bytes

        async def attempt() -> Attachment:
            async with self.client.stream("GET", url) as response:
                response.raise_for_status()

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > limit:
                    raise MediaTooLargeError(url, int(declared), limit)

                buffer = bytearray()
                async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                    buffer.extend(chunk)
                    if len(buffer) > limit:
                        raise MediaTooLargeError(url, None, limit)

            logger.debug(f"Fetched {len(buffer)} bytes from {url}")
            return Attachment(filename=filename, data=bytes(buffer))

        return await with_retry(
            attempt,
            max_attempts=self.retry_attempts,
            base_delay=self.retry_delay,
            retry_on=(httpx.TransportError,),
            operation=f"media fetch {url}",
        )
