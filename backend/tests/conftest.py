from __future__ import annotations

import importlib
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from pulse_core import PulseContext, ReplyStreamer, SendOrchestrator, SessionManager  # noqa: E402
from pulse_fakes import FakeGateway  # noqa: E402


@pytest.fixture
def backend_module(tmp_path, monkeypatch):
    monkeypatch.setenv("PULSE_ARCHIVE_PATH", str(tmp_path / "pulse-test.sqlite"))
    monkeypatch.setenv("PULSE_LLM_API_KEY", "test-key")
    monkeypatch.setenv("PULSE_LLM_BASE_URL", "https://llm.test/v1")
    # Keep streaming instant in tests; timing is covered by the streamer tests.
    monkeypatch.setenv("PULSE_STREAM_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("PULSE_GREETING", "true")

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    return module


@pytest.fixture
def client(backend_module):
    with TestClient(backend_module.app) as test_client:
        yield test_client


@pytest.fixture
def context() -> PulseContext:
    return PulseContext()


@pytest.fixture
def sessions() -> SessionManager:
    return SessionManager(greeting=False)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway(["Hello! How long has it been going on?"])


@pytest.fixture
def orchestrator(sessions, gateway, context) -> SendOrchestrator:
    return SendOrchestrator(
        sessions=sessions,
        gateway=gateway,
        context=context,
        streamer=ReplyStreamer(interval_seconds=0),
    )
