"""Small shared helpers with no ccrelay imports of their own."""

import os
from pathlib import Path

CCRELAY_DIR_ENV = "CCRELAY_DIR"


def ccrelay_dir() -> Path:
    """Resolve the config directory ($CCRELAY_DIR, default ~/.ccrelay)."""
    raw = os.environ.get(CCRELAY_DIR_ENV, "")
    return Path(raw).expanduser() if raw else Path.home() / ".ccrelay"


def env_flag(name: str, default: bool) -> bool:
    """Read a boolean environment variable (1/0, true/false, yes/no, on/off)."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean (true/false), got {raw!r}")
