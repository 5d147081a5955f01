"""Runtime configuration read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

_STORAGE_BACKENDS = {"sqlite", "json"}
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _split_origins(raw: Optional[str]) -> List[str]:
    if not raw:
        return ["*"]
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass(frozen=True)
class Settings:
    # "sqlite" covers any SQLAlchemy URL, not just SQLite files.
    storage_backend: str = "sqlite"
    database_url: str = "sqlite:///./coal.db"
    json_store_path: str = "./data/app.json"
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        backend = (env.get("COAL_STORAGE") or "sqlite").strip().lower()
        if backend not in _STORAGE_BACKENDS:
            raise ValueError(f"Unsupported COAL_STORAGE '{backend}'")
        return cls(
            storage_backend=backend,
            database_url=env.get("DATABASE_URL") or cls.database_url,
            json_store_path=env.get("COAL_JSON_PATH") or cls.json_store_path,
            log_level=(env.get("COAL_LOG_LEVEL") or cls.log_level).upper(),
            cors_origins=_split_origins(env.get("CORS_ORIGINS")),
        )


def configure_logging(level: str = "INFO") -> None:
    """Install a plain stream handler on the root logger (idempotent)."""
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


__all__ = ["Settings", "configure_logging"]
