"""
Platform detection for post URLs.
Order matters: more specific patterns come first.
"""
import re
from typing import Dict, Optional, Pattern

PLATFORM_PATTERNS: Dict[str, Pattern] = {
    # Video / short form
    "tiktok": re.compile(r'(?:https?://)?(?:www\.|vm\.|vt\.|m\.)?tiktok\.com/\S+', re.IGNORECASE),
    "douyin": re.compile(r'(?:https?://)?(?:www\.|v\.)?douyin\.com/\S+', re.IGNORECASE),
    "kuaishou": re.compile(r'(?:https?://)?(?:www\.|v\.)?kuaishou\.com/\S+', re.IGNORECASE),
    "youtube": re.compile(r'(?:https?://)?(?:www\.|m\.)?(?:youtube\.com|youtu\.be)/\S+', re.IGNORECASE),
    "capcut": re.compile(r'(?:https?://)?(?:www\.)?capcut\.com/\S+', re.IGNORECASE),
    "dailymotion": re.compile(r'(?:https?://)?(?:www\.)?dailymotion\.com/\S+', re.IGNORECASE),

    # Social media
    "twitter": re.compile(r'(?:https?://)?(?:www\.|mobile\.)?(?:twitter\.com|x\.com)/\S+', re.IGNORECASE),
    "instagram": re.compile(r'(?:https?://)?(?:www\.|m\.)?(?:instagram\.com|instagr\.am)/\S+', re.IGNORECASE),
    "facebook": re.compile(r'(?:https?://)?(?:www\.|m\.|web\.)?(?:facebook\.com|fb\.watch|fb\.me)/\S+', re.IGNORECASE),
    "threads": re.compile(r'(?:https?://)?(?:www\.)?threads\.net/\S+', re.IGNORECASE),
    "bluesky": re.compile(r'(?:https?://)?(?:www\.)?bsky\.app/\S+', re.IGNORECASE),
    "linkedin": re.compile(r'(?:https?://)?(?:www\.)?linkedin\.com/\S+', re.IGNORECASE),
    "tumblr": re.compile(r'(?:https?://)?(?:www\.|[a-zA-Z0-9-]+\.)?tumblr\.com/\S+', re.IGNORECASE),
    "snapchat": re.compile(r'(?:https?://)?(?:www\.)?snapchat\.com/\S+', re.IGNORECASE),
    "reddit": re.compile(r'(?:https?://)?(?:www\.|old\.)?(?:reddit\.com|redd\.it)/\S+', re.IGNORECASE),
    "pinterest": re.compile(r'(?:https?://)?(?:www\.)?(?:pinterest\.com|pin\.it)/\S+', re.IGNORECASE),

    # Audio / music
    "soundcloud": re.compile(r'(?:https?://)?(?:www\.|m\.)?soundcloud\.com/\S+', re.IGNORECASE),
    "spotify": re.compile(r'(?:https?://)?(?:open\.)?spotify\.com/\S+', re.IGNORECASE),

    # Other / storage
    "terabox": re.compile(r'(?:https?://)?(?:www\.)?(?:terabox\.com|teraboxapp\.com)/\S+', re.IGNORECASE),
    "twitch": re.compile(r'(?:https?://)?(?:www\.|m\.)?twitch\.tv/\S+', re.IGNORECASE),
}

# Platform whose links go through the configured primary/fallback chain
PRIMARY_PLATFORM = "tiktok"

_URL_RE = re.compile(r'https?://\S+')
_TIKTOK_USERNAME_RE = re.compile(r'tiktok\.com/@([\w.]+)', re.IGNORECASE)


def detect_platform(url: str) -> Optional[str]:
    """Return the platform key for a URL, or None if unknown"""
    if not url:
        return None

    for platform, pattern in PLATFORM_PATTERNS.items():
        if pattern.search(url):
            return platform
    return None


def extract_url(text: str) -> Optional[str]:
    """First URL in free text that belongs to a known platform"""
    if not text:
        return None

    for candidate in _URL_RE.findall(text):
        candidate = candidate.rstrip(">)].,!?'\"")
        if detect_platform(candidate):
            return candidate
    return None


def extract_username(url: str) -> Optional[str]:
    """Pull the @username out of a TikTok profile or video URL"""
    if not url:
        return None
    match = _TIKTOK_USERNAME_RE.search(url)
    return match.group(1) if match else None
