"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import copy
import os
import sys
from pathlib import Path
from typing import Any, Dict, List

import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


def reply(text: str) -> Dict[str, Any]:
    """Minimal successful generateContent body."""
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class ScriptedClient:
    """Upstream stand-in that plays back a script of replies and failures.

    Each script item is a reply text, a raw response dict, or an exception
    to raise. Once the script runs out the default reply is returned.
    """

    def __init__(self, script: List[Any] | None = None, default: str = "ok"):
        self.script = list(script or [])
        self.default = default
        self.calls: List[List[Dict[str, Any]]] = []

    async def generate_content(self, contents):
        self.calls.append(copy.deepcopy(contents))
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            if isinstance(item, str):
                return reply(item)
            return item
        return reply(self.default)


class RecordingSleep:
    """Async sleep replacement that only records the requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="function")
def scripted_client():
    """Factory for :class:`ScriptedClient` instances."""
    return ScriptedClient


@pytest.fixture(scope="function")
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture(scope="function")
def tmp_uploads_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for uploaded files during tests."""
    d = tmp_path / "uploads"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="function", autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in list(os.environ):
        if var.startswith("RELAY_SERVER"):
            monkeypatch.delenv(var, raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    yield
