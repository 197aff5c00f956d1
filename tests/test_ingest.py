"""Tests for URL policy, the yt-dlp runner and the Media Fetcher stage.

Tests:
- URL validation and site classification
- Stable media keys (TikTok ids, URL hashes)
- yt-dlp runner error classification
- Fetcher reuse, retries, timeouts and size bounds
"""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from videoenrich.errors import PreconditionFailed, StageFailed
from videoenrich.ingest import (
    DownloadError,
    MediaFetcher,
    SiteType,
    classify_url_heuristic,
    download_url,
    extract_tiktok_id,
    media_key,
    validate_source_url,
)
from videoenrich.ingest.ytdlp_runner import find_existing, is_permanent_error
from videoenrich.models import Stage

TIKTOK = "https://www.tiktok.com/@shop/video/7301234567890123456"


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class TestPolicy:
    def test_classify(self):
        assert classify_url_heuristic(TIKTOK) == SiteType.TIKTOK
        assert classify_url_heuristic("https://www.instagram.com/reel/abc/") == SiteType.INSTAGRAM
        assert classify_url_heuristic("https://youtu.be/xyz") == SiteType.YOUTUBE
        assert classify_url_heuristic("https://cdn.example.com/a.mp4") == SiteType.GENERIC

    def test_validate_source_url(self):
        assert validate_source_url("  https://example/video/1 ") == "https://example/video/1"
        for bad in ["", "   ", "not a url", "ftp://example.com/x", "https://", "javascript:alert(1)"]:
            with pytest.raises(PreconditionFailed):
                validate_source_url(bad)

    def test_extract_tiktok_id(self):
        assert extract_tiktok_id(TIKTOK) == "7301234567890123456"
        assert extract_tiktok_id("https://m.tiktok.com/v/123456.html") == "123456"
        assert extract_tiktok_id("https://vm.tiktok.com/ZMabc/") is None

    def test_media_key_tiktok_ignores_query(self):
        assert media_key(TIKTOK) == "tiktok_7301234567890123456"
        assert media_key(TIKTOK + "?is_from_webapp=1&sender_device=pc") == "tiktok_7301234567890123456"

    def test_media_key_generic_is_stable(self):
        a = media_key("https://example.com/v/clip")
        assert a == media_key(" https://example.com/v/clip ")
        assert a.startswith("generic_")
        assert a != media_key("https://example.com/v/other")


# ---------------------------------------------------------------------------
# yt-dlp runner
# ---------------------------------------------------------------------------


class FakeYoutubeDL:
    fail_with = None

    def __init__(self, opts):
        self.opts = opts

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def extract_info(self, url, download=True):
        target = Path(self.opts["outtmpl"].replace("%(ext)s", "mp4"))
        if self.fail_with is not None:
            (target.parent / (target.name + ".part")).write_bytes(b"partial")
            raise self.fail_with
        target.write_bytes(b"\0" * 4096)
        return {"id": "1", "ext": "mp4"}


class TestYtDlpRunner:
    def test_download_writes_keyed_file(self, tmp_path, monkeypatch):
        monkeypatch.setattr("yt_dlp.YoutubeDL", FakeYoutubeDL)
        monkeypatch.setattr(FakeYoutubeDL, "fail_with", None)

        path = download_url(TIKTOK, tmp_path / "media", "tiktok_1")

        assert path == tmp_path / "media" / "tiktok_1.mp4"
        assert find_existing(tmp_path / "media", "tiktok_1") == path

    def test_permanent_failure_cleans_partials(self, tmp_path, monkeypatch):
        monkeypatch.setattr("yt_dlp.YoutubeDL", FakeYoutubeDL)
        monkeypatch.setattr(FakeYoutubeDL, "fail_with", RuntimeError("ERROR: Unsupported URL: https://x"))

        with pytest.raises(DownloadError) as exc:
            download_url("https://x/y", tmp_path, "generic_abc")

        assert exc.value.permanent is True
        assert list(tmp_path.glob("generic_abc*.part*")) == []

    def test_transient_failure_not_permanent(self, tmp_path, monkeypatch):
        monkeypatch.setattr("yt_dlp.YoutubeDL", FakeYoutubeDL)
        monkeypatch.setattr(FakeYoutubeDL, "fail_with", RuntimeError("HTTP Error 503: Service Unavailable"))

        with pytest.raises(DownloadError) as exc:
            download_url("https://x/y", tmp_path, "generic_abc")
        assert exc.value.permanent is False

    def test_is_permanent_error(self):
        assert is_permanent_error(RuntimeError("This video is private"))
        assert is_permanent_error(RuntimeError("HTTP Error 404: Not Found"))
        assert not is_permanent_error(RuntimeError("HTTP Error 429: Too Many Requests"))


# ---------------------------------------------------------------------------
# MediaFetcher
# ---------------------------------------------------------------------------


class FakeDownload:
    """Writes a file of ``size`` bytes, after raising the queued errors in order."""

    def __init__(self, size: int = 4096, errors=None, block: threading.Event = None):
        self.size = size
        self.errors = list(errors or [])
        self.block = block
        self.calls = []

    def __call__(self, url, output_dir, key, *, socket_timeout_s=30.0):
        self.calls.append((url, key))
        if self.block is not None:
            self.block.wait(5)
        if self.errors:
            raise self.errors.pop(0)
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / f"{key}.mp4"
        path.write_bytes(b"\0" * self.size)
        return path


def _fetcher(tmp_path, download, **kwargs) -> MediaFetcher:
    sleeps = kwargs.pop("sleeps", [])
    return MediaFetcher(media_dir=tmp_path / "media", download=download, sleep=sleeps.append, **kwargs)


class TestMediaFetcher:
    def test_returns_absolute_locator(self, tmp_path):
        download = FakeDownload()
        locator = _fetcher(tmp_path, download).fetch(TIKTOK)

        assert Path(locator).is_absolute()
        assert Path(locator).name == "tiktok_7301234567890123456.mp4"
        assert Path(locator).stat().st_size == 4096

    def test_second_fetch_reuses_stored_media(self, tmp_path):
        download = FakeDownload()
        fetcher = _fetcher(tmp_path, download)

        first = fetcher.fetch(TIKTOK)
        second = fetcher.fetch(TIKTOK + "?lang=es")

        assert first == second
        assert len(download.calls) == 1

    def test_transient_errors_are_retried(self, tmp_path):
        sleeps = []
        download = FakeDownload(
            errors=[
                DownloadError("Download failed: HTTP Error 503"),
                DownloadError("Download failed: HTTP Error 429: Too Many Requests"),
            ]
        )
        fetcher = _fetcher(tmp_path, download, sleeps=sleeps, backoff_base_s=1.0, backoff_max_s=30.0)

        assert fetcher.fetch(TIKTOK)
        assert len(download.calls) == 3
        assert sleeps == [1.0, 2.0]

    def test_retries_are_bounded(self, tmp_path):
        download = FakeDownload(errors=[DownloadError("Download failed: HTTP Error 503")] * 5)
        fetcher = _fetcher(tmp_path, download, max_attempts=3)

        with pytest.raises(StageFailed) as exc:
            fetcher.fetch(TIKTOK)

        assert exc.value.stage == Stage.FETCHING
        assert "503" in exc.value.reason
        assert len(download.calls) == 3

    def test_permanent_error_not_retried(self, tmp_path):
        download = FakeDownload(errors=[DownloadError("Download failed: Unsupported URL", permanent=True)])

        with pytest.raises(StageFailed) as exc:
            _fetcher(tmp_path, download).fetch("https://example.com/page")

        assert "Unsupported URL" in exc.value.reason
        assert len(download.calls) == 1

    def test_invalid_url_fails_without_download(self, tmp_path):
        download = FakeDownload()

        with pytest.raises(StageFailed) as exc:
            _fetcher(tmp_path, download).fetch("file:///etc/passwd")

        assert exc.value.stage == Stage.FETCHING
        assert exc.value.reason.startswith("invalid source url")
        assert download.calls == []

    def test_timeout_is_not_retried(self, tmp_path):
        release = threading.Event()
        download = FakeDownload(block=release)

        try:
            with pytest.raises(StageFailed) as exc:
                _fetcher(tmp_path, download, timeout_s=0.05).fetch(TIKTOK)
        finally:
            release.set()

        assert exc.value.reason == "timeout"
        assert len(download.calls) == 1

    def test_too_small_is_unsupported(self, tmp_path):
        with pytest.raises(StageFailed) as exc:
            _fetcher(tmp_path, FakeDownload(size=10)).fetch(TIKTOK)
        assert exc.value.reason.startswith("unsupported media: file too small")

    def test_too_large_is_unsupported(self, tmp_path):
        with pytest.raises(StageFailed) as exc:
            _fetcher(tmp_path, FakeDownload(size=4096), max_bytes=2048).fetch(TIKTOK)
        assert exc.value.reason.startswith("unsupported media: file too large")

    def test_from_profile(self, tmp_path):
        from videoenrich.profile import default_profile

        profile = default_profile()
        profile["fetch"]["media_dir"] = str(tmp_path / "m")
        profile["fetch"]["max_attempts"] = 5

        fetcher = MediaFetcher.from_profile(profile)
        assert fetcher.media_dir == tmp_path / "m"
        assert fetcher.max_attempts == 5
        assert fetcher.max_bytes == 25 * 1024 * 1024
