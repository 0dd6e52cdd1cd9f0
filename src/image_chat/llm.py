"""Gateway to the Gemini ``generateContent`` REST endpoint for image output."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .config import require_api_key
from .errors import UpstreamError
from .turns import Turn

logger = logging.getLogger(__name__)


# -----------------------------
# Types & defaults
# -----------------------------

@dataclass
class GenerationConfig:
    response_modalities: Optional[List[str]] = field(default_factory=lambda: ["TEXT", "IMAGE"])
    response_mime_type: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.response_modalities:
            out["responseModalities"] = list(self.response_modalities)
        if self.response_mime_type:
            out["responseMimeType"] = self.response_mime_type
        return out


@dataclass
class GenerationResult:
    """The single reply turn plus the concatenated text of its text parts."""
    turn: Turn
    text: str = ""


def _gemini_contents(turns: Sequence[Turn]) -> List[Dict[str, Any]]:
    """Copy turns into Gemini's two-role shape; stored turns stay untouched."""
    contents: List[Dict[str, Any]] = []
    for turn in turns:
        role = turn.get("role")
        if role == "assistant":
            role = "model"
        elif role == "system":
            role = "user"
        contents.append({"role": role, "parts": turn.get("parts", [])})
    return contents


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return str(body["error"].get("message") or f"HTTP {response.status_code}")
    return response.text or f"HTTP {response.status_code}"


# -----------------------------
# Gemini wrapper
# -----------------------------

class GeminiImageModel:
    """Thin wrapper around the Gemini REST API: turns in, one model turn out.

    The gateway does not interpret model semantics; it only transports turns.
    Every failure (HTTP status, transport, timeout, unparseable body) is
    raised as :class:`UpstreamError` carrying the provider's message.
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "models/gemini-2.5-flash-image-preview",
        api_base: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 120.0,
        generation: Optional[GenerationConfig] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.model = model if model.startswith("models/") else f"models/{model}"
        self.api_base = api_base.rstrip("/")
        self.generation = generation or GenerationConfig()
        self._api_key = api_key
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def url(self) -> str:
        return f"{self.api_base}/{self.model}:generateContent"

    def generate(self, turns: Sequence[Turn]) -> GenerationResult:
        payload: Dict[str, Any] = {"contents": _gemini_contents(turns)}
        gen = self.generation.to_payload()
        if gen:
            payload["generationConfig"] = gen

        headers = {"x-goog-api-key": self._api_key, "Content-Type": "application/json"}
        try:
            response = self._client.post(self.url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise UpstreamError("Generation failed", detail=f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamError("Generation failed", detail=str(e)) from e

        if response.status_code != 200:
            detail = _error_detail(response)
            logger.warning("Model call failed with status %s: %s", response.status_code, detail)
            raise UpstreamError("Generation failed", detail=detail)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError("Generation failed", detail="Unparseable model response") from e

        return self._first_candidate(data)

    def close(self) -> None:
        self._client.close()

    # -------------------------
    # Internals
    # -------------------------
    def _first_candidate(self, data: Any) -> GenerationResult:
        candidates = data.get("candidates") if isinstance(data, dict) else None
        content = {}
        if candidates and isinstance(candidates[0], dict):
            content = candidates[0].get("content") or {}
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            parts = []

        text = "".join(p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str))
        return GenerationResult(turn={"role": "model", "parts": parts}, text=text)


# -----------------------------
# Convenience factory
# -----------------------------

def create_from_config(cfg: Dict[str, Any], client: Optional[httpx.Client] = None) -> GeminiImageModel:
    """Create GeminiImageModel from a config dict (e.g., loaded YAML).

    Raises :class:`ConfigurationError` when no credential is configured.
    """
    api_key = require_api_key(cfg)
    model_cfg = (cfg or {}).get("model", {}) if isinstance(cfg, dict) else {}
    generation = GenerationConfig(
        response_modalities=model_cfg.get("response_modalities", ["TEXT", "IMAGE"]),
        response_mime_type=model_cfg.get("response_mime_type"),
    )
    return GeminiImageModel(
        api_key,
        model=str(model_cfg.get("name") or "models/gemini-2.5-flash-image-preview"),
        api_base=str(model_cfg.get("api_base") or "https://generativelanguage.googleapis.com/v1beta"),
        timeout=float(model_cfg.get("timeout", 120.0)),
        generation=generation,
        client=client,
    )
