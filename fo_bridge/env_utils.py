"""
Environment helpers shared by startup and the HTTP surface.
"""
from __future__ import annotations

import os
from typing import Optional

PRODUCTION_ENV_VARS = ("ENVIRONMENT", "APP_ENV", "NODE_ENV")


def is_production_env() -> bool:
    """
    True when any of ENVIRONMENT, APP_ENV or NODE_ENV equals "production"
    (case-insensitive, surrounding whitespace ignored).
    """
    return any(os.getenv(name, "").strip().lower() == "production" for name in PRODUCTION_ENV_VARS)


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def first_env(*names: str, default: Optional[str] = None) -> Optional[str]:
    """Return the first non-empty variable among `names`."""
    for name in names:
        value = os.getenv(name, "").strip()
        if value:
            return value
    return default
