"""Markdown → Telegram MarkdownV2 sanitizer.

Converts the markdown subset Claude emits (fenced code, inline code,
single-asterisk bold, underscore italic, plain text) into a payload that
Telegram's MarkdownV2 parser accepts. Formatted regions are first pulled
out into an index-addressed arena of placeholder tokens, so the plain-text
escaping pass never touches them. They are restored afterwards with their
own escaping rules.

sanitize() never raises for ordinary input: an unexpected internal failure
falls back to a fully-literal escape of the original text and attaches a
SanitizerError describing what the input looked like.

Key functions: sanitize(text) → SanitizedPayload, normalize_markdown(),
escape_markdown_v2(), validate_structure().
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from .placeholders import TOKEN_OPEN, TOKEN_RE, make_token, strip_marks

logger = logging.getLogger(__name__)

PARSE_MODE = "MarkdownV2"

# Characters that must be escaped in Telegram MarkdownV2 plain text
RESERVED_CHARS = frozenset("_*[]()~`>#+-=|{}.!")
_MDV2_ESCAPE_RE = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")

# Bold runs longer than this without a closing delimiter are treated as literal.
BOLD_SCAN_LIMIT = 200

_FENCE_RE = re.compile(r"```[\s\S]*?```")
_FENCE_BODY_RE = re.compile(r"^```(?:([\w+#.-]*)\n)?([\s\S]*?)\n?```$")
_INLINE_CODE_RE = re.compile(r"`([^`]+)`")
_ITALIC_RE = re.compile(r"(?<![\w/\\])_([^_]+)_(?![\w/])")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

BlockKind = Literal["fenced-code", "inline-code", "bold", "italic"]


class SanitizerError(Exception):
    """Diagnostic for a sanitizer failure.

    Carries enough context to debug the input (length, detected markup,
    a truncated preview) without ever holding the full original text.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": str(self),
            "details": self.details,
            "timestamp": self.timestamp,
        }


@dataclass
class ProtectedBlock:
    """A formatted region lifted out of the text during sanitizing.

    Attributes:
        index: Slot in the block arena; the placeholder token encodes it.
        kind: Region type, decides the delimiters used by render().
        original: The raw matched text, kept for diagnostics.
        content: Inner text, already escaped for its region.
        language: Language tag of a fenced code block, if any.
    """

    index: int
    kind: BlockKind
    original: str
    content: str
    language: str = ""

    @property
    def token(self) -> str:
        return make_token(self.index)

    def render(self) -> str:
        if self.kind == "fenced-code":
            return f"```{self.language}\n{self.content}\n```"
        if self.kind == "inline-code":
            return f"`{self.content}`"
        if self.kind == "bold":
            return f"*{self.content}*"
        return f"_{self.content}_"


@dataclass
class SanitizedPayload:
    """Sanitizer output: message body plus the parse mode to send it with."""

    text: Any
    parse_mode: str = PARSE_MODE
    error: SanitizerError | None = None
    issues: list[str] = field(default_factory=list)

    @property
    def is_fallback(self) -> bool:
        return self.error is not None


class _BlockArena:
    """Index-addressed store of protected blocks for one sanitize() call."""

    def __init__(self) -> None:
        self.blocks: list[ProtectedBlock] = []

    def protect(
        self, kind: BlockKind, original: str, content: str, language: str = ""
    ) -> str:
        block = ProtectedBlock(len(self.blocks), kind, original, content, language)
        self.blocks.append(block)
        return block.token

    def restore(self, text: str) -> str:
        # Bold and italic content may itself hold code tokens, so expansion recurses.
        return TOKEN_RE.sub(self._expand, text)

    def _expand(self, m: re.Match[str]) -> str:
        block = self.blocks[int(m.group(1))]
        return TOKEN_RE.sub(self._expand, block.render())


def escape_markdown_v2(text: str) -> str:
    """Escape every MarkdownV2 special character, backslash included."""
    return _MDV2_ESCAPE_RE.sub(r"\\\1", text)


def unescape_markdown_v2(text: str) -> str:
    """Drop MarkdownV2 escape backslashes, leaving the literal characters."""
    return re.sub(r"\\(.)", r"\1", text, flags=re.DOTALL)


def _is_escaped(text: str, index: int) -> bool:
    """True if the character at *index* follows an odd run of backslashes."""
    count = 0
    i = index - 1
    while i >= 0 and text[i] == "\\":
        count += 1
        i -= 1
    return count % 2 == 1


def _escape_code(content: str) -> str:
    # Backslash first, so the backslashes added for backticks are not doubled.
    content = _CONTROL_RE.sub("", content)
    return content.replace("\\", "\\\\").replace("`", "\\`")


def _extract_fenced_code(text: str, arena: _BlockArena) -> str:
    def _replace(m: re.Match[str]) -> str:
        if _is_escaped(text, m.start()):
            return m.group(0)
        body = _FENCE_BODY_RE.match(m.group(0))
        if body is None:
            return m.group(0)
        language = body.group(1) or ""
        content = body.group(2).replace("\r\n", "\n").replace("\r", "\n")
        content = _escape_code(content).strip("\n")
        return arena.protect("fenced-code", m.group(0), content, language)

    return _FENCE_RE.sub(_replace, text)


def _extract_inline_code(text: str, arena: _BlockArena) -> str:
    def _replace(m: re.Match[str]) -> str:
        if _is_escaped(text, m.start()):
            return m.group(0)
        content = re.sub(r"\r\n|\r|\n", " ", m.group(1))
        content = _escape_code(content).strip()
        if not content:
            return m.group(0)
        return arena.protect("inline-code", m.group(0), content)

    return _INLINE_CODE_RE.sub(_replace, text)


def _extract_bold(text: str, arena: _BlockArena, max_length: int) -> str:
    """Lift ``*bold*`` runs with a two-state scan.

    Outside a run, an unescaped ``*`` opens one. Inside, every character
    is accumulated until the next unescaped ``*`` closes it. A run that
    grows past *max_length* or reaches the end of the text is emitted
    literally; the plain-text pass escapes its delimiter later.
    """
    out: list[str] = []
    buf: list[str] = []
    inside = False

    for i, ch in enumerate(text):
        if ch == "*" and not _is_escaped(text, i):
            if not inside:
                inside = True
                buf = []
                continue
            content = "".join(buf)
            inside = False
            if content.strip():
                out.append(arena.protect("bold", f"*{content}*", _escape_entity(content)))
            else:
                out.append(f"*{content}*")
            continue

        if not inside:
            out.append(ch)
            continue

        buf.append(ch)
        if len(buf) > max_length:
            logger.debug("Bold run exceeded %d chars, treating as literal", max_length)
            out.append("*" + "".join(buf))
            inside = False

    if inside:
        out.append("*" + "".join(buf))
    return "".join(out)


def _extract_italic(text: str, arena: _BlockArena) -> str:
    def _replace(m: re.Match[str]) -> str:
        content = m.group(1)
        if not content.strip():
            return m.group(0)
        return arena.protect("italic", m.group(0), _escape_entity(content))

    return _ITALIC_RE.sub(_replace, text)


def _escape_entity(content: str) -> str:
    """Escape the inner text of a bold or italic region.

    Same rules as plain text, so an escape pair the author already wrote
    is kept and re-sanitizing a region leaves it unchanged. Code tokens
    nested inside the region pass through untouched.
    """
    return _escape_plain(content)


def _escape_plain(text: str) -> str:
    """Escape reserved characters outside placeholder tokens.

    An existing escape pair (backslash + reserved char or backslash) is
    kept as-is; a lone backslash is doubled.
    """
    out: list[str] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == TOKEN_OPEN:
            m = TOKEN_RE.match(text, i)
            if m:
                out.append(m.group(0))
                i = m.end()
                continue
        if ch == "\\":
            nxt = text[i + 1] if i + 1 < n else ""
            if nxt and (nxt == "\\" or nxt in RESERVED_CHARS):
                out.append(ch + nxt)
                i += 2
                continue
            out.append("\\\\")
        elif ch in RESERVED_CHARS:
            out.append("\\" + ch)
        else:
            out.append(ch)
        i += 1
    return "".join(out)


def _unescaped_runs(text: str, char: str) -> list[int]:
    """Lengths of maximal unescaped runs of *char* in *text*."""
    runs: list[int] = []
    i = 0
    n = len(text)
    while i < n:
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == char:
            j = i
            while j < n and text[j] == char:
                j += 1
            runs.append(j - i)
            i = j
            continue
        i += 1
    return runs


def validate_structure(text: str) -> list[str]:
    """Cheap parity check on code delimiters of a sanitized payload."""
    issues: list[str] = []
    runs = _unescaped_runs(text, "`")
    fences = sum(r // 3 for r in runs)
    singles = sum(r % 3 for r in runs)
    if fences % 2:
        issues.append("Unmatched code blocks detected")
    if singles % 2:
        issues.append("Unmatched inline code backticks detected")
    return issues


@dataclass
class ValidationResult:
    valid: bool
    issues: list[str] = field(default_factory=list)


def quick_validate(text: str) -> ValidationResult:
    issues = validate_structure(text)
    return ValidationResult(valid=not issues, issues=issues)


def _describe_input(text: str, error: Exception) -> dict[str, Any]:
    preview = text[:200] + ("..." if len(text) > 200 else "")
    return {
        "text_preview": preview,
        "text_length": len(text),
        "has_code_blocks": "```" in text,
        "has_inline_code": "`" in text and "```" not in text,
        "has_bold": "*" in text,
        "has_italic": "_" in text,
        "error": str(error),
    }


def _sanitize(text: str, max_bold_length: int) -> str:
    arena = _BlockArena()
    result = strip_marks(text)
    result = _extract_fenced_code(result, arena)
    result = _extract_inline_code(result, arena)
    result = _extract_bold(result, arena, max_bold_length)
    result = _extract_italic(result, arena)
    result = _escape_plain(result)
    return arena.restore(result)


def sanitize(text: Any, *, max_bold_length: int = BOLD_SCAN_LIMIT) -> SanitizedPayload:
    """Convert raw markdown into a Telegram MarkdownV2 payload.

    Empty or non-string input is returned unchanged. Structural issues
    found in the result are logged and recorded on the payload but never
    block delivery.
    """
    if not text or not isinstance(text, str):
        return SanitizedPayload(text=text)

    try:
        result = _sanitize(text, max_bold_length)
    except Exception as e:
        error = SanitizerError(
            "Failed to sanitize text for Telegram MarkdownV2",
            _describe_input(text, e),
        )
        logger.warning("Sanitizer fell back to literal escaping: %s", error.details)
        return SanitizedPayload(text=escape_markdown_v2(text), error=error)

    issues = validate_structure(result)
    if issues:
        logger.warning(
            "MarkdownV2 structure check failed (%s), length=%d",
            ", ".join(issues),
            len(result),
        )
    return SanitizedPayload(text=result, issues=issues)


# --- Markdown normalisation ---

# Code is left exactly as written; only the text between code spans is rewritten.
_CODE_SPLIT_RE = re.compile(r"(```[\s\S]*?```|`[^`\n]+`)")
_BULLET_RE = re.compile(r"^([ \t]*)[*+-][ \t]+", re.MULTILINE)
_DOUBLE_BOLD_RE = re.compile(r"\*\*(?=\S)(.+?)(?<=\S)\*\*")
_HEADING_RE = re.compile(r"^#{1,6}[ \t]+(.+?)[ \t]*#*[ \t]*$", re.MULTILINE)
_LINK_RE = re.compile(r"\[([^\]\n]+)\]\(([^)\s]+)\)")
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")


def _heading_to_bold(m: re.Match[str]) -> str:
    title = m.group(1).replace("*", "").strip()
    return f"*{title}*" if title else m.group(0)


def normalize_markdown(text: str) -> str:
    """Rewrite CommonMark-isms into the subset sanitize() understands.

    List bullets become ``•``, ``**bold**`` becomes ``*bold*``, headings
    become bold lines, links become ``text (url)`` and runs of blank lines
    collapse to one.
    """
    if not text or not isinstance(text, str):
        return text

    parts = _CODE_SPLIT_RE.split(text)
    for i in range(0, len(parts), 2):
        part = parts[i]
        part = _BULLET_RE.sub(r"\1• ", part)
        part = _DOUBLE_BOLD_RE.sub(r"*\1*", part)
        part = _HEADING_RE.sub(_heading_to_bold, part)
        part = _LINK_RE.sub(r"\1 (\2)", part)
        part = _EXCESS_NEWLINES_RE.sub("\n\n", part)
        parts[i] = part
    return "".join(parts)
