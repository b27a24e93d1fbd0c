"""Tests for the download engine chain: execution list, fallback and platform routing."""

import asyncio

import pytest
from hypothesis import given, settings, strategies as st

from database.connection import transaction
from database.repository import SystemConfigRepository
from downloaders.base import ImageResult, VideoResult, download_result_from_dict
from downloaders.chain import (
    DownloadEngineChain,
    build_execution_list,
    database_engine_config,
    static_engine_config,
)
from errors import ChainExhaustedError, EngineNotFoundError

from conftest import StubEngine, failing_engine

TIKTOK_URL = "https://www.tiktok.com/@creator/video/7300000000000000000"
YOUTUBE_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


def _chain(*engines, primary="a", fb1="b", fb2="c"):
    chain = DownloadEngineChain(static_engine_config(primary, fb1, fb2))
    for engine in engines:
        chain.register(engine)
    return chain


# ---------------------------------------------------------------------------
# Execution list
# ---------------------------------------------------------------------------

class TestBuildExecutionList:
    def test_order_is_preserved(self):
        assert build_execution_list(["a", "b", "c"]) == ["a", "b", "c"]

    def test_none_sentinel_and_blanks_are_dropped(self):
        assert build_execution_list(["a", "none", None]) == ["a"]

    def test_duplicates_are_dropped(self):
        assert build_execution_list(["a", "a", "b"]) == ["a", "b"]

    def test_unregistered_names_are_dropped(self):
        assert build_execution_list(["a", "ghost", "b"], registered=["a", "b"]) == ["a", "b"]

    def test_legacy_names_are_normalised(self):
        assert build_execution_list(["DEVEST", "yt-dlp"], registered=["devest-alpha", "ytdlp"]) == ["devest-alpha", "ytdlp"]

    @given(st.lists(st.sampled_from(["a", "b", "c", "none", "ghost"]), max_size=3))
    def test_result_is_unique_registered_subsequence(self, names):
        result = build_execution_list(names, registered=["a", "b", "c"])
        assert len(result) == len(set(result))
        assert all(name in ("a", "b", "c") for name in result)
        # relative order of first occurrences is kept
        firsts = []
        for name in names:
            if name in ("a", "b", "c") and name not in firsts:
                firsts.append(name)
        assert result == firsts


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------

class TestFallback:
    async def test_falls_through_to_second_engine(self):
        a = StubEngine("providerA", error=TimeoutError("timed out"))
        b = StubEngine("providerB")
        chain = _chain(a, b, primary="providerA", fb1="providerB", fb2="none")

        result = await chain.download(TIKTOK_URL)

        assert result == b.result
        assert a.calls == [TIKTOK_URL]
        assert b.calls == [TIKTOK_URL]

    async def test_never_calls_engine_after_success(self):
        a, b, c = failing_engine("a"), StubEngine("b"), StubEngine("c")
        chain = _chain(a, b, c)

        assert await chain.download(TIKTOK_URL) == b.result
        assert c.calls == []

    async def test_exhaustion_reports_last_error(self):
        chain = _chain(failing_engine("a", "first"), failing_engine("b", "second"), failing_engine("c", "third"))

        with pytest.raises(ChainExhaustedError) as excinfo:
            await chain.download(TIKTOK_URL)

        assert "third" in str(excinfo.value)
        assert [name for name, _ in excinfo.value.errors] == ["a", "b", "c"]

    async def test_no_configured_engines(self):
        chain = _chain(StubEngine("a"), primary="none", fb1="none", fb2="none")

        with pytest.raises(ChainExhaustedError, match="No download engines configured"):
            await chain.download(TIKTOK_URL)

    @settings(max_examples=30, deadline=None)
    @given(st.lists(st.booleans(), min_size=1, max_size=3))
    def test_first_success_wins(self, outcomes):
        names = ["a", "b", "c"][:len(outcomes)]
        engines = [
            StubEngine(name) if ok else failing_engine(name)
            for name, ok in zip(names, outcomes)
        ]
        chain = _chain(*engines, primary=names[0],
                       fb1=names[1] if len(names) > 1 else "none",
                       fb2=names[2] if len(names) > 2 else "none")

        if not any(outcomes):
            with pytest.raises(ChainExhaustedError):
                asyncio.run(chain.download(TIKTOK_URL))
            assert all(len(e.calls) == 1 for e in engines)
            return

        winner = outcomes.index(True)
        assert asyncio.run(chain.download(TIKTOK_URL)) == engines[winner].result
        for later in engines[winner + 1:]:
            assert later.calls == []

    async def test_config_is_read_per_call(self):
        config = {"DOWNLOAD_ENGINE": "a", "DOWNLOAD_ENGINE_FALLBACK_1": None, "DOWNLOAD_ENGINE_FALLBACK_2": None}

        async def provider():
            return dict(config)

        a, b = StubEngine("a"), StubEngine("b")
        chain = DownloadEngineChain(provider)
        chain.register(a)
        chain.register(b)

        await chain.download(TIKTOK_URL)
        config["DOWNLOAD_ENGINE"] = "b"
        await chain.download(TIKTOK_URL)

        assert len(a.calls) == 1
        assert len(b.calls) == 1


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

class TestRouting:
    async def test_non_primary_platform_uses_dedicated_engine(self):
        primary = StubEngine("a")
        youtube = StubEngine("yt", platforms=("youtube",))
        catch_all = StubEngine("ytdlp")
        chain = _chain(primary, youtube, catch_all)

        assert await chain.download(YOUTUBE_URL) == youtube.result
        assert primary.calls == []
        assert catch_all.calls == []

    async def test_non_primary_platform_falls_back_to_catch_all(self):
        primary = StubEngine("a")
        catch_all = StubEngine("ytdlp")
        chain = _chain(primary, catch_all)

        assert await chain.download(YOUTUBE_URL) == catch_all.result
        assert primary.calls == []

    async def test_dedicated_engine_failure_is_aggregated(self):
        chain = _chain(StubEngine("a"), failing_engine("ytdlp", "unsupported"))

        with pytest.raises(ChainExhaustedError, match="unsupported"):
            await chain.download(YOUTUBE_URL)

    async def test_no_engine_for_platform(self):
        chain = _chain(StubEngine("a"))

        with pytest.raises(EngineNotFoundError):
            await chain.download(YOUTUBE_URL)

    async def test_meta_platforms_share_one_engine(self):
        meta = StubEngine("facebook-insta")
        catch_all = StubEngine("ytdlp")
        chain = _chain(StubEngine("a"), meta, catch_all)

        await chain.download("https://www.instagram.com/reel/abc/")
        await chain.download("https://www.facebook.com/watch/?v=1")

        assert len(meta.calls) == 2
        assert catch_all.calls == []


class TestDatabaseEngineConfig:
    async def test_stored_values_override_fallback(self, session_factory):
        async with transaction(session_factory) as session:
            await SystemConfigRepository(session).set("DOWNLOAD_ENGINE", "b")

        provider = database_engine_config(session_factory, fallback=static_engine_config("a", "c", "none"))
        config = await provider()

        assert config == {
            "DOWNLOAD_ENGINE": "b",
            "DOWNLOAD_ENGINE_FALLBACK_1": "c",
            "DOWNLOAD_ENGINE_FALLBACK_2": "none",
        }


class TestDownloadResult:
    def test_dict_form_round_trip_keeps_variant(self):
        image = ImageResult(urls=("https://cdn/1.jpg", "https://cdn/2.jpg"), author="x")
        video = VideoResult(urls=("https://cdn/v.mp4",), description="hi")

        assert download_result_from_dict(image.to_dict()) == image
        assert download_result_from_dict(video.to_dict()) == video
        assert download_result_from_dict(None) is None

    def test_unknown_type_is_rejected(self):
        with pytest.raises(ValueError):
            download_result_from_dict({"type": "audio", "urls": []})
