"""Markdown → Telegram HTML conversion.

The HTML parse mode is the forgiving alternative to MarkdownV2: only
``&``, ``<`` and ``>`` need escaping, and tags make splitting easy to
balance. Code and links are lifted out into placeholder tokens first so
none of the markdown rewrites below can reach inside them.

Key function: markdown_to_html(text) → Telegram HTML string.
"""

from __future__ import annotations

import html
import re

from .placeholders import TOKEN_RE, make_token, strip_marks

PARSE_MODE = "HTML"

_FENCE_RE = re.compile(r"```(?:([\w+#.-]*)\n)?([\s\S]*?)```")
_INLINE_CODE_RE = re.compile(r"`([^`\n]+)`")

_HEADING_RE = re.compile(r"^#{1,6}[ \t]+(.+?)[ \t]*#*[ \t]*$", re.MULTILINE)
_BOLD_RE = re.compile(r"\*\*(?=\S)(.+?)(?<=\S)\*\*")
_SINGLE_BOLD_RE = re.compile(r"(?<![\w*])\*(?=\S)([^*\n]+?)(?<=\S)\*(?![\w*])")
_ITALIC_RE = re.compile(r"(?<![\w/\\])_([^_\n]+)_(?![\w/])")
_STRIKE_RE = re.compile(r"~~(?=\S)(.+?)(?<=\S)~~")
_LINK_RE = re.compile(r"\[([^\]\n]+)\]\(([^)\s]+)\)")
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")


def escape_html(text: str) -> str:
    """Escape the three characters Telegram HTML reserves."""
    return html.escape(text, quote=False)


def _render_link(m: re.Match[str]) -> str:
    href = escape_html(m.group(2)).replace('"', "&quot;")
    return f'<a href="{href}">{escape_html(m.group(1))}</a>'


def markdown_to_html(text: str) -> str:
    """Convert assistant markdown into Telegram-flavoured HTML."""
    if not text or not isinstance(text, str):
        return ""

    stash: list[str] = []

    def _protect(rendered: str) -> str:
        stash.append(rendered)
        return make_token(len(stash) - 1)

    def _fence(m: re.Match[str]) -> str:
        language = m.group(1) or ""
        code = escape_html(m.group(2).strip("\n"))
        if language:
            return _protect(f'<pre><code class="language-{language}">{code}</code></pre>')
        return _protect(f"<pre>{code}</pre>")

    formatted = strip_marks(text)
    formatted = _FENCE_RE.sub(_fence, formatted)
    formatted = _INLINE_CODE_RE.sub(
        lambda m: _protect(f"<code>{escape_html(m.group(1))}</code>"), formatted
    )
    # Links are stashed whole so emphasis rewrites cannot reach the URL.
    formatted = _LINK_RE.sub(lambda m: _protect(_render_link(m)), formatted)

    formatted = escape_html(formatted)
    formatted = _HEADING_RE.sub(lambda m: f"<b>{m.group(1).replace('*', '')}</b>", formatted)
    formatted = _BOLD_RE.sub(r"<b>\1</b>", formatted)
    formatted = _SINGLE_BOLD_RE.sub(r"<b>\1</b>", formatted)
    formatted = _ITALIC_RE.sub(r"<i>\1</i>", formatted)
    formatted = _STRIKE_RE.sub(r"<s>\1</s>", formatted)
    formatted = _EXCESS_NEWLINES_RE.sub("\n\n", formatted)

    # Link labels may hold code tokens, so expansion recurses.
    def _restore(m: re.Match[str]) -> str:
        return TOKEN_RE.sub(_restore, stash[int(m.group(1))])

    return TOKEN_RE.sub(_restore, formatted)
