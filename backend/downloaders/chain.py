"""
Download engine registry and fallback chain.

Primary-platform links go through the configured execution list
(primary -> fallback 1 -> fallback 2). Links from any other platform are
routed straight to that platform's dedicated engine, or to the generic
catch-all when none is registered.
"""
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from loguru import logger

from errors import ChainExhaustedError, EngineNotFoundError
from .base import BaseDownloadEngine, DownloadResult
from .url_matcher import PRIMARY_PLATFORM, detect_platform

ENGINE_KEYS = ("DOWNLOAD_ENGINE", "DOWNLOAD_ENGINE_FALLBACK_1", "DOWNLOAD_ENGINE_FALLBACK_2")
NONE_SENTINEL = "none"
CATCH_ALL_ENGINE = "ytdlp"

# Renamed engines still found in older configuration; the targets are
# engines registered by deployments, not built in here
ENGINE_ALIASES = {"devest": "devest-alpha", "yt-dlp": "ytdlp"}

# Platforms served by a deployment-registered engine under a different name
PLATFORM_ENGINE_ALIASES = {"instagram": "facebook-insta", "facebook": "facebook-insta"}

EngineConfigProvider = Callable[[], Awaitable[Dict[str, Optional[str]]]]


def static_engine_config(
    primary: Optional[str],
    fallback_1: Optional[str] = None,
    fallback_2: Optional[str] = None,
) -> EngineConfigProvider:
    """Config provider returning fixed engine names"""
    values = dict(zip(ENGINE_KEYS, (primary, fallback_1, fallback_2)))

    async def provider() -> Dict[str, Optional[str]]:
        return dict(values)

    return provider


def settings_engine_config(app_settings) -> EngineConfigProvider:
    """Config provider that re-reads a Settings object on every call"""

    async def provider() -> Dict[str, Optional[str]]:
        return {key: getattr(app_settings, key, None) for key in ENGINE_KEYS}

    return provider


def database_engine_config(session_factory, fallback: EngineConfigProvider) -> EngineConfigProvider:
    """
    Config provider backed by the system_config table.
    Keys missing from the table fall back to `fallback`.
    """
    from database.repository import SystemConfigRepository

    async def provider() -> Dict[str, Optional[str]]:
        defaults = await fallback()
        async with session_factory() as session:
            stored = await SystemConfigRepository(session).get_many(list(ENGINE_KEYS))
        return {key: stored.get(key) or defaults.get(key) for key in ENGINE_KEYS}

    return provider


def build_execution_list(names: List[Optional[str]], registered: Optional[List[str]] = None) -> List[str]:
    """
    Ordered, de-duplicated engine names.

    Drops empty entries, the "none" sentinel and, when `registered` is
    given, names without a registered engine.
    """
    result: List[str] = []
    for raw in names:
        if not raw:
            continue
        name = raw.strip().lower()
        name = ENGINE_ALIASES.get(name, name)
        if not name or name == NONE_SENTINEL or name in result:
            continue
        if registered is not None and name not in registered:
            logger.warning(f"Engine {name} not registered, skipping")
            continue
        result.append(name)
    return result


class DownloadEngineChain:
    """Registry of interchangeable engines plus the primary/fallback policy"""

    def __init__(
        self,
        config_provider: EngineConfigProvider,
        primary_platform: str = PRIMARY_PLATFORM,
        catch_all: str = CATCH_ALL_ENGINE,
    ):
        self._engines: Dict[str, BaseDownloadEngine] = {}
        self._config_provider = config_provider
        self.primary_platform = primary_platform
        self.catch_all = catch_all

    def register(self, engine: BaseDownloadEngine):
        # Config names are matched case-insensitively
        key = engine.name.strip().lower()
        if key in self._engines:
            logger.warning(f"Engine {key} registered twice, replacing")
        self._engines[key] = engine

    def get(self, name: str) -> Optional[BaseDownloadEngine]:
        return self._engines.get(name.strip().lower())

    def registered_engine_names(self) -> List[str]:
        return list(self._engines.keys())

    async def execution_list(self) -> List[str]:
        """Engines to try for primary-platform links, read from config on every call"""
        config = await self._config_provider()
        return build_execution_list(
            [config.get(key) for key in ENGINE_KEYS],
            registered=self.registered_engine_names(),
        )

    async def download(self, url: str) -> DownloadResult:
        platform = detect_platform(url)
        logger.info(f"Detected platform: {platform or 'unknown'}")

        if platform and platform != self.primary_platform:
            engine = self._engine_for_platform(platform)
            logger.info(f"Routing {platform} link to engine: {engine.name}")
            try:
                return await engine.download(url)
            except Exception as e:
                raise ChainExhaustedError(
                    f"Dedicated engine for {platform} failed ({engine.name}): {e}",
                    errors=[(engine.name, e)],
                ) from e

        return await self._download_with_fallback(url)

    async def close(self):
        for engine in self._engines.values():
            await engine.close()

    def _engine_for_platform(self, platform: str) -> BaseDownloadEngine:
        engine = self._engines.get(platform)
        if engine is None and platform in PLATFORM_ENGINE_ALIASES:
            engine = self._engines.get(PLATFORM_ENGINE_ALIASES[platform])
        if engine is None:
            engine = next(
                (e for e in self._engines.values() if platform in e.platforms and e.name != self.catch_all),
                None,
            )
        if engine is None:
            engine = self._engines.get(self.catch_all)
            if engine is not None:
                logger.info(f"No dedicated engine for {platform}, using {self.catch_all}")
        if engine is None:
            raise EngineNotFoundError(f"No engine available for platform: {platform}")
        return engine

    async def _download_with_fallback(self, url: str) -> DownloadResult:
        names = await self.execution_list()
        if not names:
            raise ChainExhaustedError("No download engines configured")

        errors: List[Tuple[str, BaseException]] = []
        for name in names:
            engine = self._engines[name]
            try:
                logger.info(f"Attempting download using engine: {name}")
                return await engine.download(url)
            except Exception as e:
                errors.append((name, e))
                logger.warning(f"Engine {name} failed: {e}. Switching to next fallback...")

        last_name, last_error = errors[-1]
        summary = "; ".join(f"{name}: {error}" for name, error in errors)
        raise ChainExhaustedError(
            f"All configured download engines failed. Last error ({last_name}): {last_error} [{summary}]",
            errors=errors,
        )
