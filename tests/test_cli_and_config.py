"""Tests for profile loading, logging setup and the command line."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from videoenrich import cli
from videoenrich.logging_config import _coerce_level, _parse_module_levels
from videoenrich.profile import default_profile, llm_api_key, load_profile, stt_api_key


def _write_profile(tmp_path: Path) -> Path:
    path = tmp_path / "profile.yaml"
    path.write_text(
        f"store:\n  path: {tmp_path / 'videos.sqlite'}\nvariants:\n  max_count: 5\n",
        encoding="utf-8",
    )
    return path


class TestProfile:
    def test_defaults_without_file(self, monkeypatch):
        monkeypatch.delenv("VE_PROFILE", raising=False)
        profile = load_profile(None)
        assert profile == default_profile()
        assert profile["transcribe"]["timeout_s"] == 300.0
        assert profile["fetch"]["max_attempts"] == 3
        assert profile["store"]["lease_s"] == 120.0
        assert profile["copywriting"]["max_hooks"] == 10

    def test_yaml_merged_over_defaults(self, tmp_path):
        profile = load_profile(_write_profile(tmp_path))
        assert profile["variants"]["max_count"] == 5
        assert profile["variants"]["max_attempts"] == 2
        assert profile["store"]["path"] == str(tmp_path / "videos.sqlite")

    def test_env_profile(self, tmp_path, monkeypatch):
        monkeypatch.setenv("VE_PROFILE", str(_write_profile(tmp_path)))
        assert load_profile(None)["variants"]["max_count"] == 5

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_profile(tmp_path / "nope.yaml")

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_profile(path)

    def test_api_keys(self, monkeypatch):
        for name in ("VE_LLM_API_KEY", "VE_STT_API_KEY", "OPENAI_API_KEY"):
            monkeypatch.delenv(name, raising=False)
        assert llm_api_key() is None
        assert stt_api_key() is None

        monkeypatch.setenv("OPENAI_API_KEY", "shared")
        monkeypatch.setenv("VE_STT_API_KEY", "stt")
        assert llm_api_key() == "shared"
        assert stt_api_key() == "stt"


class TestLogging:
    def test_parse_module_levels(self):
        levels = _parse_module_levels("pipeline=DEBUG; videoenrich.ai:warning,bogus,x=NOTALEVEL")
        assert levels == {
            "videoenrich.pipeline": logging.DEBUG,
            "videoenrich.ai": logging.WARNING,
        }

    def test_coerce_level(self, monkeypatch):
        monkeypatch.delenv("VE_LOG_LEVEL", raising=False)
        assert _coerce_level(None) == logging.INFO
        assert _coerce_level("debug") == logging.DEBUG
        assert _coerce_level(logging.WARNING) == logging.WARNING
        assert _coerce_level("loud") == logging.INFO
        monkeypatch.setenv("VE_LOG_LEVEL", "ERROR")
        assert _coerce_level(None) == logging.ERROR


class TestCli:
    @pytest.fixture(autouse=True)
    def _quiet(self, monkeypatch):
        monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)

    def test_add_and_status(self, tmp_path, capsys):
        profile = _write_profile(tmp_path)

        cli.main(["--profile", str(profile), "add", "https://example/video/1", "--id", "v1"])
        assert capsys.readouterr().out.strip() == "v1"

        cli.main(["--profile", str(profile), "status", "v1", "--json"])
        data = json.loads(capsys.readouterr().out)
        assert data["id"] == "v1"
        assert data["status"] == {"state": "idle"}

    def test_unknown_entity_exits_2(self, tmp_path, capsys):
        profile = _write_profile(tmp_path)
        with pytest.raises(SystemExit) as exc:
            cli.main(["--profile", str(profile), "status", "nope"])
        assert exc.value.code == 2
        assert "entity not found: nope" in capsys.readouterr().err

    def test_run_prints_updates(self, tmp_path, capsys, monkeypatch, orchestrator, store):
        # The orchestrator fixture uses <tmp_path>/videos.sqlite, same as the profile.
        profile = _write_profile(tmp_path)
        monkeypatch.setattr(cli, "build_orchestrator", lambda profile, store=None: orchestrator)
        store.create("https://example/video/1", entity_id="v1")

        cli.main(["--profile", str(profile), "run", "v1"])

        out = capsys.readouterr().out
        assert "[0] fetching" in out
        assert "[3] complete (complete)" in out

    def test_run_failure_exit_code(self, tmp_path, monkeypatch, orchestrator, store, fakes):
        from videoenrich.errors import StageFailed
        from videoenrich.models import Stage

        profile = _write_profile(tmp_path)
        monkeypatch.setattr(cli, "build_orchestrator", lambda profile, store=None: orchestrator)
        store.create("https://example/video/1", entity_id="v1")
        fakes["fetcher"].error = StageFailed(Stage.FETCHING, "private video")

        with pytest.raises(SystemExit) as exc:
            cli.main(["--profile", str(profile), "run", "v1"])
        assert exc.value.code == 1

    def test_variants_command(self, tmp_path, capsys, monkeypatch, orchestrator, store):
        from videoenrich.models import Analysis

        profile = _write_profile(tmp_path)
        monkeypatch.setattr(cli, "build_orchestrator", lambda profile, store=None: orchestrator)
        store.create("https://example/video/1", entity_id="v1")
        store.update("v1", media_locator="/m.mp4", transcript="t", analysis=Analysis(hook="h", body="b", cta="c"))

        cli.main(["--profile", str(profile), "variants", "v1", "--count", "2", "--product", "Spray"])

        variants = json.loads(capsys.readouterr().out)
        assert len(variants) == 2

    def test_list_pending(self, tmp_path, capsys):
        profile = _write_profile(tmp_path)
        cli.main(["--profile", str(profile), "add", "https://example/video/1", "--id", "v1"])
        capsys.readouterr()

        cli.main(["--profile", str(profile), "list", "--pending"])
        assert "v1  [idle]  https://example/video/1" in capsys.readouterr().out

    def test_hooks_command(self, tmp_path, capsys, monkeypatch, orchestrator, fakes):
        profile = _write_profile(tmp_path)
        monkeypatch.setattr(cli, "build_orchestrator", lambda profile, store=None: orchestrator)
        fakes["llm"].responses = ['["Nadie te dice esto", "Deja de tallar"]']

        cli.main(["--profile", str(profile), "hooks", "spray desengrasante", "--count", "2"])

        assert capsys.readouterr().out.splitlines() == ["Nadie te dice esto", "Deja de tallar"]

    def test_rewrite_without_transcript_exits_2(self, tmp_path, capsys, monkeypatch, orchestrator, store, fakes):
        profile = _write_profile(tmp_path)
        monkeypatch.setattr(cli, "build_orchestrator", lambda profile, store=None: orchestrator)
        store.create("https://example/video/1", entity_id="v1")

        with pytest.raises(SystemExit) as exc:
            cli.main(["--profile", str(profile), "rewrite", "v1"])
        assert exc.value.code == 2
        assert "requires a transcript" in capsys.readouterr().err
        assert fakes["llm"].calls == []
