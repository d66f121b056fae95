"""Application configuration — reads env vars and exposes a singleton.

Loads the Telegram bot token and the message-delivery settings (parse
mode, per-message length, part indicators, pacing, sanitizer limits) from
environment variables, with .env support.
.env loading priority: local .env (cwd) > $CCRELAY_DIR/.env (default ~/.ccrelay).
The module-level `config` instance is what telegram_sender reads its
defaults from.

Key class: Config (singleton instantiated as `config`).
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from .utils import ccrelay_dir, env_flag

logger = logging.getLogger(__name__)

TELEGRAM_MAX_MESSAGE_LENGTH = 4096

# Accepted spellings of CCRELAY_PARSE_MODE → canonical Telegram parse mode
PARSE_MODES: dict[str, str] = {
    "markdownv2": "MarkdownV2",
    "markdown_v2": "MarkdownV2",
    "html": "HTML",
    "plain": "plain",
    "none": "plain",
}


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


class Config:
    """Application configuration loaded from environment variables."""

    def __init__(self) -> None:
        self.config_dir = ccrelay_dir()

        # Load .env: local (cwd) takes priority over config_dir
        # load_dotenv default override=False means first-loaded wins
        local_env = Path(".env")
        global_env = self.config_dir / ".env"
        if local_env.is_file():
            load_dotenv(local_env)
            logger.debug("Loaded env from %s", local_env.resolve())
        if global_env.is_file():
            load_dotenv(global_env)
            logger.debug("Loaded env from %s", global_env)

        # Only needed when ccrelay creates the Bot itself (create_bot)
        self.telegram_bot_token: str = os.getenv("TELEGRAM_BOT_TOKEN") or ""

        mode = os.getenv("CCRELAY_PARSE_MODE", "MarkdownV2").strip()
        if mode.lower() not in PARSE_MODES:
            raise ValueError(
                f"CCRELAY_PARSE_MODE must be one of MarkdownV2, HTML, plain; got {mode!r}"
            )
        self.parse_mode = PARSE_MODES[mode.lower()]

        # Stay a little under Telegram's hard limit to leave room for part indicators
        self.max_message_length = _int_env("CCRELAY_MAX_MESSAGE_LENGTH", 4000)
        if not 0 < self.max_message_length <= TELEGRAM_MAX_MESSAGE_LENGTH:
            raise ValueError(
                "CCRELAY_MAX_MESSAGE_LENGTH must be between 1 and "
                f"{TELEGRAM_MAX_MESSAGE_LENGTH}, got {self.max_message_length}"
            )

        # "[Part i/n]" footer on multi-part replies
        self.part_indicators = env_flag("CCRELAY_PART_INDICATORS", True)

        # Pause between the parts of one reply to stay clear of flood control
        self.part_send_interval = _float_env("CCRELAY_PART_SEND_INTERVAL", 0.1)
        if self.part_send_interval < 0:
            raise ValueError("CCRELAY_PART_SEND_INTERVAL must not be negative")

        # Longest *bold* run the sanitizer accumulates before giving up on it
        self.bold_scan_limit = _int_env("CCRELAY_BOLD_SCAN_LIMIT", 200)
        if self.bold_scan_limit <= 0:
            raise ValueError("CCRELAY_BOLD_SCAN_LIMIT must be positive")

        logger.debug(
            "Config initialized: dir=%s, token=%s, parse_mode=%s, "
            "max_message_length=%d, part_indicators=%s",
            self.config_dir,
            "set" if self.telegram_bot_token else "unset",
            self.parse_mode,
            self.max_message_length,
            self.part_indicators,
        )


config = Config()
