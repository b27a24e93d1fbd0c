"""
Creator tracking: watches TikTok profiles for new posts and forwards them.
"""
from .base import BaseFetcher, PostInfo
from .tiktok_fetcher import TikTokFetcher
from .scheduler import CreatorWatcher

__all__ = [
    "BaseFetcher",
    "PostInfo",
    "TikTokFetcher",
    "CreatorWatcher",
]
