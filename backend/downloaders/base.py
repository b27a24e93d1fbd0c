"""
Base Download Engine Interface
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union


@dataclass(frozen=True)
class VideoResult:
    """A single video; urls are alternative sources, best first"""
    urls: Tuple[str, ...]
    description: str = ""
    author: Optional[str] = None
    kind: str = field(default="video", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "urls": list(self.urls),
            "description": self.description,
            "author": self.author,
        }


@dataclass(frozen=True)
class ImageResult:
    """A photo post; urls are the slides in order"""
    urls: Tuple[str, ...]
    description: str = ""
    author: Optional[str] = None
    kind: str = field(default="image", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "urls": list(self.urls),
            "description": self.description,
            "author": self.author,
        }


DownloadResult = Union[VideoResult, ImageResult]


def download_result_from_dict(data: Optional[Dict[str, Any]]) -> Optional[DownloadResult]:
    """Rebuild a result from its `to_dict()` form"""
    if not data:
        return None

    urls = tuple(data.get("urls") or ())
    description = data.get("description") or ""
    author = data.get("author")

    kind = data.get("type")
    if kind == "video":
        return VideoResult(urls=urls, description=description, author=author)
    if kind == "image":
        return ImageResult(urls=urls, description=description, author=author)
    raise ValueError(f"Unknown download result type: {kind!r}")


class BaseDownloadEngine(ABC):
    """
    Abstract base class for media download engines.

    Engines are stateless with respect to each other: provider-specific
    options are passed to the constructor, never set by the chain.
    """

    # Source platforms (url_matcher keys) this engine is dedicated to, besides its own name
    platforms: Tuple[str, ...] = ()

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry name used in configuration (e.g. 'tikwm', 'ytdlp')"""
        pass

    @abstractmethod
    async def download(self, url: str) -> DownloadResult:
        """
        Resolve a post URL into media URLs.

        Raises:
            EngineError: if the provider could not resolve the post
        """
        pass

    async def close(self):
        """Release network resources"""
        pass
