from __future__ import annotations

import importlib

import pytest
from fastapi.testclient import TestClient

import sheetpilot.main as main_module
from sheetpilot.observability.metrics import get_runtime_metrics


@pytest.fixture(autouse=True)
def reset_metrics():
    get_runtime_metrics().reset()
    yield
    get_runtime_metrics().reset()


@pytest.fixture
def isolated_client(monkeypatch: pytest.MonkeyPatch):
    for name in ("SHEETPILOT_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY", "SHEETPILOT_BASE_URL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SHEETPILOT_PROVIDER", "openai")
    monkeypatch.setenv("SHEETPILOT_MODEL", "test-model")
    module = importlib.reload(main_module)
    with TestClient(module.app) as client:
        yield client
