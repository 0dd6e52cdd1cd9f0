"""Configuration loading utilities for the image chat server.

This module handles layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable IMAGE_CHAT_CONFIG
3. Fallback to "config/default.yaml"

It also supports optional overrides from environment variables with prefix
``IMAGE_CHAT__`` (e.g., IMAGE_CHAT__MODEL__TIMEOUT=30), and the well-known
credential / model variables shared with other Gemini tooling
(``GEMINI_API_KEY``, ``GOOGLE_API_KEY``, ``API_KEY``, ``GEMINI_IMAGE_MODEL``).
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

API_KEY_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY")

DEFAULTS: Dict[str, Any] = {
    "model": {
        "name": "models/gemini-2.5-flash-image-preview",
        "api_base": "https://generativelanguage.googleapis.com/v1beta",
        "timeout": 120.0,
        "response_modalities": ["TEXT", "IMAGE"],
        "response_mime_type": None,
    },
    "history": {"max_sessions": 1000, "ttl_seconds": None},
    "server": {"cors_origins": ["*"], "max_body_mb": 10, "static_dir": None},
}


def _merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix IMAGE_CHAT__."""
    prefix = "IMAGE_CHAT__"
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        # e.g., IMAGE_CHAT__HISTORY__MAX_SESSIONS -> cfg["history"]["max_sessions"]
        parts = key[len(prefix):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        leaf = parts[-1]
        # Attempt to parse simple types (bool, int, float)
        if value.lower() in {"true", "false"}:
            sub[leaf] = value.lower() == "true"
        else:
            try:
                if "." in value:
                    sub[leaf] = float(value)
                else:
                    sub[leaf] = int(value)
            except ValueError:
                sub[leaf] = value

    model_id = os.environ.get("GEMINI_IMAGE_MODEL")
    if model_id:
        cfg.setdefault("model", {})["name"] = model_id
    return cfg


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration for the image chat server.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``IMAGE_CHAT_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Built-in defaults overlaid with the file and environment overrides.
    """
    if path is None:
        path = os.environ.get("IMAGE_CHAT_CONFIG", "config/default.yaml")

    cfg = copy.deepcopy(DEFAULTS)
    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("Config file not found at %s. Using defaults.", path_obj)
        return _apply_env_overrides(cfg)

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse config file {path_obj}: {e}")

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Invalid config format in {path_obj}, expected dict.")

    return _apply_env_overrides(_merge(cfg, loaded))


def resolve_api_key(cfg: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """Return the model credential: environment first, then ``model.api_key``."""
    for var in API_KEY_VARS:
        value = os.environ.get(var)
        if value:
            return value
    model_cfg = (cfg or {}).get("model", {}) if isinstance(cfg, dict) else {}
    return model_cfg.get("api_key") or None


def require_api_key(cfg: Optional[Dict[str, Any]] = None) -> str:
    key = resolve_api_key(cfg)
    if not key:
        raise ConfigurationError("Missing GEMINI_API_KEY in environment.")
    return key
