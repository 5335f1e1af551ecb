"""
Environment variable loading for ChainGate.

- Loads .env from project root when available.
- Typed readers with defaults; malformed values raise ConfigError.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv

from backend_chaingate.core.exceptions import ConfigError

# Project root: config is backend_chaingate/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_BACKEND_DIR = _CONFIG_DIR.parent
_ROOT = _BACKEND_DIR.parent
_ENV_PATH = _ROOT / ".env"

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


def load_chaingate_env(path: str | Path | None = None) -> None:
    """Load .env from project root (or path). Existing env vars win. Safe to call multiple times."""
    load_dotenv(path or _ENV_PATH, override=False)


def env_str(env: Mapping[str, str], key: str, default: str | None = None) -> str | None:
    """Stripped string value; empty counts as unset."""
    raw = (env.get(key) or "").strip()
    return raw if raw else default


def env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env_str(env, key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from e


def env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env_str(env, key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from e


def env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    """Feature flags: unset keeps the default; 1/true/yes/on and 0/false/no/off accepted."""
    raw = (env_str(env, key) or "").lower()
    if not raw:
        return default
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ConfigError(f"{key} must be a boolean, got {raw!r}")


def current_env() -> Mapping[str, str]:
    """Process environment after loading .env."""
    load_chaingate_env()
    return os.environ
