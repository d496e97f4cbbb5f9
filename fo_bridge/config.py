from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError


DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "server.yaml"

REQUIRED_ENV = ("CLIENT_ID", "CLIENT_SECRET", "TENANT_ID", "D365_URL")


def config_path() -> Path:
    return Path(os.getenv("FO_BRIDGE_CONFIG", str(DEFAULT_CONFIG_PATH)))


def load_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Bridge config not found at {path}")
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError("Config root must be a mapping")
    return data


def _page_bound(raw: Any) -> Optional[int]:
    """`backend.max_pages`: a positive bound, or 0/null for no bound."""
    try:
        bound = int(raw or 0)
    except (TypeError, ValueError):
        raise ConfigError(f"backend.max_pages must be an integer, got {raw!r}")
    if bound < 0:
        raise ConfigError(f"backend.max_pages must be 0 (unbounded) or a positive integer, got {bound}")
    return bound or None


@dataclass
class HttpLimits:
    connect_timeout: float = 5.0
    read_timeout: float = 30.0
    write_timeout: float = 10.0
    pool_timeout: float = 5.0
    max_connections: int = 50
    max_keepalive_connections: int = 10

    @classmethod
    def from_config(cls, raw: Optional[Dict[str, Any]]) -> "HttpLimits":
        raw = raw or {}
        return cls(
            connect_timeout=float(raw.get("connect_timeout", 5.0)),
            read_timeout=float(raw.get("read_timeout", 30.0)),
            write_timeout=float(raw.get("write_timeout", 10.0)),
            pool_timeout=float(raw.get("pool_timeout", 5.0)),
            max_connections=int(raw.get("max_connections", 50)),
            max_keepalive_connections=int(raw.get("max_keepalive_connections", 10)),
        )


@dataclass
class BackendSettings:
    """Connection settings for one Finance & Operations environment."""

    client_id: str
    client_secret: str
    tenant_id: str
    base_url: str
    authority_host: str = "https://login.microsoftonline.com"
    max_pages: Optional[int] = 1000
    token_renewal_skew_seconds: float = 180.0
    http_limits: HttpLimits = field(default_factory=HttpLimits)

    @classmethod
    def from_env(cls, config: Optional[Dict[str, Any]] = None) -> "BackendSettings":
        """
        Build settings from the environment plus the `backend` config section.

        Raises ConfigError naming every missing variable.
        """
        values = {name: os.getenv(name, "").strip() for name in REQUIRED_ENV}
        missing = [name for name, value in values.items() if not value]
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

        backend_cfg = (config or {}).get("backend", {}) or {}
        return cls(
            client_id=values["CLIENT_ID"],
            client_secret=values["CLIENT_SECRET"],
            tenant_id=values["TENANT_ID"],
            base_url=values["D365_URL"],
            authority_host=str(backend_cfg.get("authority_host", "https://login.microsoftonline.com")),
            max_pages=_page_bound(backend_cfg.get("max_pages", 1000)),
            token_renewal_skew_seconds=float(backend_cfg.get("token_renewal_skew_seconds", 180)),
            http_limits=HttpLimits.from_config(backend_cfg.get("http_limits")),
        )
