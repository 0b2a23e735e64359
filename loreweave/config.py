"""Settings loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ENV_PREFIX = "LOREWEAVE"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True)
class Settings:
    home: Path
    log_level: str
    log_file: Path | None
    scan_max_depth: int

    @staticmethod
    def from_env() -> "Settings":
        log_file = _env(_k("LOG_FILE")).strip()
        return Settings(
            home=_env_path(_k("HOME"), Path.home() / ".loreweave"),
            log_level=_env(_k("LOG_LEVEL"), "WARNING").upper(),
            log_file=Path(log_file).expanduser() if log_file else None,
            scan_max_depth=_env_int(_k("SCAN_MAX_DEPTH"), 100),
        )
