"""Placeholder tokens used while escaping formatted regions.

A token is a private-use-area marker, an arena index, and a closing
marker: ``\\ue000<index>\\ue001``. Neither marker is renderable text and
both are stripped from input before any token is issued, so a token can
never collide with user content. Digits and private-use characters are
outside the MarkdownV2 reserved set and the HTML escape set, so tokens
survive every escaping pass untouched.
"""

import re

TOKEN_OPEN = "\ue000"
TOKEN_CLOSE = "\ue001"

TOKEN_RE = re.compile(f"{TOKEN_OPEN}(\\d+){TOKEN_CLOSE}")
_MARK_RE = re.compile(f"[{TOKEN_OPEN}{TOKEN_CLOSE}]")


def make_token(index: int) -> str:
    """Build the placeholder token for arena slot *index*."""
    return f"{TOKEN_OPEN}{index}{TOKEN_CLOSE}"


def strip_marks(text: str) -> str:
    """Remove stray token markers so input cannot forge a placeholder."""
    return _MARK_RE.sub("", text)
