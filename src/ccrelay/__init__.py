"""ccrelay — Telegram-safe message production for a Claude chat relay.

Turns raw assistant markdown into payloads Telegram will accept: the
sanitizer escapes it for MarkdownV2, the splitter cuts it into balanced,
length-bounded segments, and telegram_sender delivers them.
"""

from .markdown_v2 import SanitizedPayload, SanitizerError, sanitize
from .splitter import Segment, split

__all__ = ["SanitizedPayload", "SanitizerError", "Segment", "sanitize", "split"]

__version__ = "0.1.0"
