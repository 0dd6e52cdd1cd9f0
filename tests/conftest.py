"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import base64
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from image_chat.llm import GenerationResult  # noqa: E402

PNG_B64 = base64.b64encode(b"\x89PNG\r\n\x1a\nfake-image-bytes").decode("ascii")


class DummyModel:
    """Returns a fixed reply and records every turn sequence it was sent."""

    def __init__(self, parts: Optional[List[Dict[str, Any]]] = None):
        self.parts = parts if parts is not None else [
            {"inlineData": {"data": PNG_B64, "mimeType": "image/png"}},
            {"text": "Here is your edit."},
        ]
        self.calls: List[List[Dict[str, Any]]] = []

    def generate(self, turns):
        self.calls.append([dict(t) for t in turns])
        text = "".join(p["text"] for p in self.parts if "text" in p)
        return GenerationResult(turn={"role": "model", "parts": list(self.parts)}, text=text)


@pytest.fixture(scope="function")
def missing_config(tmp_path: Path) -> str:
    """A config path that does not exist, so built-in defaults are used."""
    return str(tmp_path / "absent.yaml")


@pytest.fixture(scope="function", autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in ["IMAGE_CHAT_CONFIG", "GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY", "GEMINI_IMAGE_MODEL"]:
        monkeypatch.delenv(var, raising=False)
    for var in list(os.environ):
        if var.startswith("IMAGE_CHAT__"):
            monkeypatch.delenv(var, raising=False)
    yield
