"""Configuration loading utilities for the relay server.

This module handles layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable RELAY_SERVER_CONFIG
3. Fallback to "config/default.yaml"

It also supports optional overrides from environment variables with prefix
``RELAY_SERVER__`` (e.g., RELAY_SERVER__RETRY__INITIAL_DELAY=0.5).

User-facing strings live in their own YAML file (``strings_path``) so the
route and error texts can be changed without touching code.
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, List

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "server": {"cors_origins": ["*"]},
    "logging": {"level": "INFO"},
    "memory": {"max_total_length": 30000},
    "retry": {"max_retries": 3, "initial_delay": 2.0, "reject_when_busy": False},
    "pipeline": {"batch_size": 20000, "encoding": "utf-16-le"},
    "uploads": {"dir": "uploads", "max_bytes": 10 * 1024 * 1024},
    "upstream": {
        "endpoint": (
            "https://generativelanguage.googleapis.com"
            "/v1beta/models/gemini-1.5-flash:generateContent"
        ),
        "api_key_env": "GEMINI_API_KEY",
        "timeout": 60.0,
    },
    "strings_path": "config/strings.yaml",
}

DEFAULT_STRINGS: Dict[str, Any] = {
    "initial_context": (
        "This is your initial context: you are going to help a team that is in "
        "the field of software engineering. All following prompts have to take "
        "this into account."
    ),
    "roles": {"context": "user", "requester": "user", "responder": "model"},
    "error_messages": {
        "missing_prompt": "Prompt is required",
        "no_file_uploaded": "No file uploaded",
        "unknown_error": "Unknown error",
        "no_content_generated": "No content generated",
        "service_unavailable": (
            "The AI model is currently unavailable due to high demand. "
            "Please try again in a few minutes."
        ),
        "log_processing_failed": "Error processing the log file.",
        "file_processing_failed": "Error processing file",
        "empty_file": "Uploaded file is empty",
    },
    "messages": {"upload_success": "File uploaded and processed successfully"},
    "debug": {"backend_running": "Backend is running"},
}


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


ENV_PREFIX = "RELAY_SERVER__"


def _parse_scalar(raw: str) -> Any:
    # YAML rules, so "0.5", "true" and '["a", "b"]' become float, bool and list.
    if not raw.strip():
        return raw
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw


def _set_path(cfg: Dict[str, Any], parts: List[str], value: Any) -> None:
    node = cfg
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[parts[-1]] = value


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply ``RELAY_SERVER__SECTION__KEY=value`` overrides to ``cfg`` in place."""
    for key in sorted(os.environ):
        if not key.startswith(ENV_PREFIX):
            continue
        parts = [p for p in key[len(ENV_PREFIX):].lower().split("__") if p]
        if not parts:
            continue
        value = _parse_scalar(os.environ[key])
        logger.debug("Config override %s -> %r", ".".join(parts), value)
        _set_path(cfg, parts, value)
    return cfg


def _read_yaml(path_obj: Path) -> Dict[str, Any]:
    with path_obj.open("r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RuntimeError(f"Failed to parse config file {path_obj}: {e}") from e
    if not isinstance(data, dict):
        raise RuntimeError(f"Invalid config format in {path_obj}, expected dict.")
    return data


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration for the relay server.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``RELAY_SERVER_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Configuration merged over :data:`DEFAULT_CONFIG` with environment
        overrides applied.
    """
    if path is None:
        path = os.environ.get("RELAY_SERVER_CONFIG", "config/default.yaml")

    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("Config file not found at %s. Using defaults.", path_obj)
        return _apply_env_overrides(copy.deepcopy(DEFAULT_CONFIG))

    cfg = _deep_merge(DEFAULT_CONFIG, _read_yaml(path_obj))
    return _apply_env_overrides(cfg)


def load_strings(path: str | None = None) -> Dict[str, Any]:
    """Load the externalized user-facing strings.

    Missing keys fall back to :data:`DEFAULT_STRINGS`. The server refuses to
    start without an initial context message.
    """
    strings = copy.deepcopy(DEFAULT_STRINGS)
    if path is not None:
        path_obj = Path(path)
        if path_obj.exists():
            strings = _deep_merge(strings, _read_yaml(path_obj))
        else:
            logger.warning("Strings file not found at %s. Using built-in strings.", path_obj)

    if not str(strings.get("initial_context") or "").strip():
        raise RuntimeError("Initial context message is missing or empty.")
    return strings
