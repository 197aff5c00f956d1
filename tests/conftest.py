"""Shared fakes for the remote collaborators (no network in tests)."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, List, Optional

import pytest

from videoenrich.ai.copywriter import ScriptCopywriter
from videoenrich.ai.variants import VariantGenerator
from videoenrich.models import Analysis
from videoenrich.pipeline import PipelineOrchestrator
from videoenrich.store import SqliteEntityStore


class FakeFetcher:
    def __init__(self, locator: str = "/media/tiktok_1.mp4", error: Optional[BaseException] = None):
        self.locator = locator
        self.error = error
        self.gate: Optional[threading.Event] = None
        self.started = threading.Event()
        self.calls: List[str] = []

    def fetch(self, source_url: str) -> str:
        self.calls.append(source_url)
        self.started.set()
        if self.gate is not None:
            assert self.gate.wait(5), "fetch gate never opened"
        if self.error is not None:
            raise self.error
        return self.locator


class FakeTranscriber:
    def __init__(self, text: str = "Mira este truco para limpiar tu cocina. Compra ya.", error=None):
        self.text = text
        self.error = error
        self.calls: List[str] = []

    def transcribe(self, media_locator: str) -> str:
        self.calls.append(media_locator)
        if self.error is not None:
            raise self.error
        return self.text


class FakeAnalyzer:
    def __init__(self, error=None):
        self.error = error
        self.calls: List[str] = []

    def analyze(self, transcript: str) -> Analysis:
        self.calls.append(transcript)
        if self.error is not None:
            raise self.error
        return Analysis(hook="Mira este truco", body="para limpiar tu cocina.", cta="Compra ya.", tags=["PAS"])


class FakeLLM:
    """Stands in for LLMClient.complete; returns queued payloads or raises queued errors."""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.calls: List[dict] = []

    def complete(self, prompt: str, **kwargs: Any) -> Any:
        self.calls.append({"prompt": prompt, **kwargs})
        if self.responses:
            item = self.responses.pop(0)
        else:
            item = {"hook": "Nuevo hook", "body": "Nuevo cuerpo", "cta": "Compra hoy"}
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def store(tmp_path: Path) -> SqliteEntityStore:
    return SqliteEntityStore(tmp_path / "videos.sqlite")


@pytest.fixture
def fakes():
    llm = FakeLLM()
    return {
        "fetcher": FakeFetcher(),
        "transcriber": FakeTranscriber(),
        "analyzer": FakeAnalyzer(),
        "llm": llm,
        "variant_generator": VariantGenerator(client=llm, sleep=lambda s: None),  # type: ignore[arg-type]
        "copywriter": ScriptCopywriter(client=llm, sleep=lambda s: None),  # type: ignore[arg-type]
    }


@pytest.fixture
def orchestrator(store, fakes):
    orch = PipelineOrchestrator(
        store,
        fetcher=fakes["fetcher"],
        transcriber=fakes["transcriber"],
        analyzer=fakes["analyzer"],
        variant_generator=fakes["variant_generator"],
        copywriter=fakes["copywriter"],
        follow_poll_s=0.02,
    )
    yield orch
    if fakes["fetcher"].gate is not None:
        fakes["fetcher"].gate.set()
    orch.join(5)
