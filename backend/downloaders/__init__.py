"""Media Download Engines Package"""
from .base import (
    BaseDownloadEngine,
    DownloadResult,
    VideoResult,
    ImageResult,
    download_result_from_dict,
)
from .chain import (
    DownloadEngineChain,
    build_execution_list,
    static_engine_config,
    settings_engine_config,
    database_engine_config,
)
from .url_matcher import detect_platform, extract_url, extract_username, PLATFORM_PATTERNS
from .tikwm import TikwmEngine
from .ytdlp import YtDlpEngine

__all__ = [
    "BaseDownloadEngine",
    "DownloadResult",
    "VideoResult",
    "ImageResult",
    "download_result_from_dict",
    "DownloadEngineChain",
    "build_execution_list",
    "static_engine_config",
    "settings_engine_config",
    "database_engine_config",
    "detect_platform",
    "extract_url",
    "extract_username",
    "PLATFORM_PATTERNS",
    "TikwmEngine",
    "YtDlpEngine",
]
