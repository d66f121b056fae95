"""Tag-balanced message splitting for Telegram's per-message length limit.

Splits a formatted payload (Telegram HTML, MarkdownV2, or plain text) into
segments no longer than ``max_length``. Cuts prefer paragraph, line,
sentence, comma and word boundaries and never land inside a tag, an escape
pair or an HTML entity. Every segment closes the tags still open at its
end, and the next segment re-opens them, so each one parses on its own.
Joining the segments' ``content`` gives back the input exactly.

Key function: split(text, max_length, tag_syntax) → list[Segment].
"""

from __future__ import annotations

import bisect
import logging
import re
from dataclasses import dataclass, field
from typing import Literal

logger = logging.getLogger(__name__)

# Never accept a natural break that leaves a segment shorter than this share.
MIN_SPLIT_RATIO = 0.7

# Preferred break points, best first.
BREAK_POINTS = ("\n\n", "\n", ". ", ", ", " ")


@dataclass(frozen=True)
class TagToken:
    """One opening or closing tag found in the text.

    ``reopen`` is what a later segment prepends to continue the tag; it is
    the full original opening text so attributes (``<a href=…>``,
    ``<code class=…>``) and fence languages survive the split.
    """

    start: int
    end: int
    name: str
    kind: Literal["open", "close"]
    reopen: str = ""


@dataclass
class TagScan:
    """Tags plus the spans a cut must never fall strictly inside."""

    tokens: list[TagToken] = field(default_factory=list)
    atoms: list[tuple[int, int]] = field(default_factory=list)

    def __post_init__(self) -> None:
        # Merge overlaps (an entity inside a tag's attribute belongs to the tag).
        merged: list[tuple[int, int]] = []
        for start, end in sorted(self.atoms):
            if merged and start < merged[-1][1]:
                merged[-1] = (merged[-1][0], max(end, merged[-1][1]))
            else:
                merged.append((start, end))
        self.atoms = merged
        self._atom_starts = [a[0] for a in self.atoms]
        self._token_starts = [t.start for t in self.tokens]

    def atom_containing(self, pos: int) -> tuple[int, int] | None:
        """Return the atom with ``start < pos < end``, if any."""
        i = bisect.bisect_left(self._atom_starts, pos) - 1
        if i >= 0:
            start, end = self.atoms[i]
            if start < pos < end:
                return self.atoms[i]
        return None

    def opener_ending_at(self, pos: int) -> TagToken | None:
        i = bisect.bisect_left(self._token_starts, pos) - 1
        while i >= 0:
            token = self.tokens[i]
            if token.end == pos and token.kind == "open":
                return token
            if token.end < pos:
                break
            i -= 1
        return None

    def tokens_between(self, start: int, end: int) -> list[TagToken]:
        lo = bisect.bisect_left(self._token_starts, start)
        hi = bisect.bisect_left(self._token_starts, end)
        return [t for t in self.tokens[lo:hi] if t.end <= end]


class TagSyntax:
    """Plain text: no tags and nothing that cannot be cut."""

    name = "plain"

    def scan(self, text: str) -> TagScan:
        return TagScan()

    def closer(self, token: TagToken) -> str:
        return ""


class HtmlSyntax(TagSyntax):
    """Telegram HTML: ``<b>…</b>``-style tags and ``&…;`` entities."""

    name = "html"

    _TAG_RE = re.compile(r"</?([a-zA-Z][a-zA-Z0-9-]*)\b[^<>]*>")
    _ENTITY_RE = re.compile(r"&(?:[a-zA-Z][a-zA-Z0-9]*|#\d+|#x[0-9a-fA-F]+);")

    def scan(self, text: str) -> TagScan:
        tokens: list[TagToken] = []
        atoms: list[tuple[int, int]] = []
        for m in self._TAG_RE.finditer(text):
            raw = m.group(0)
            atoms.append((m.start(), m.end()))
            if raw.endswith("/>"):
                continue
            name = m.group(1).lower()
            if raw.startswith("</"):
                tokens.append(TagToken(m.start(), m.end(), name, "close"))
            else:
                tokens.append(TagToken(m.start(), m.end(), name, "open", raw))
        for m in self._ENTITY_RE.finditer(text):
            atoms.append((m.start(), m.end()))
        return TagScan(tokens, atoms)

    def closer(self, token: TagToken) -> str:
        return f"</{token.name}>"


class MarkdownV2Syntax(TagSyntax):
    """Telegram MarkdownV2 delimiters.

    Toggle delimiters (``*``, ``_``, ``__``, ``~``, ``||``) open when not
    already open and close otherwise. Inside inline code or a fence only
    the matching closing delimiter is significant. Every ``\\x`` escape
    pair is an atom.
    """

    name = "markdown_v2"

    # Two-character delimiters first so "__" is not read as two "_".
    _TOGGLES = (
        ("||", "spoiler"),
        ("__", "underline"),
        ("*", "bold"),
        ("_", "italic"),
        ("~", "strikethrough"),
    )
    _DELIMITERS = {
        "pre": "```",
        "code": "`",
        "spoiler": "||",
        "underline": "__",
        "bold": "*",
        "italic": "_",
        "strikethrough": "~",
    }
    _FENCE_LANG_RE = re.compile(r"[\w+#.-]*")

    def scan(self, text: str) -> TagScan:
        tokens: list[TagToken] = []
        atoms: list[tuple[int, int]] = []
        stack: list[str] = []
        i = 0
        n = len(text)

        while i < n:
            ch = text[i]
            if ch == "\\" and i + 1 < n:
                atoms.append((i, i + 2))
                i += 2
                continue

            code = stack[-1] if stack and stack[-1] in ("pre", "code") else None
            if code == "pre":
                if text.startswith("```", i):
                    tokens.append(TagToken(i, i + 3, "pre", "close"))
                    atoms.append((i, i + 3))
                    stack.pop()
                    i += 3
                else:
                    i += 1
                continue
            if code == "code":
                if ch == "`":
                    tokens.append(TagToken(i, i + 1, "code", "close"))
                    stack.pop()
                i += 1
                continue

            if text.startswith("```", i):
                lang = self._FENCE_LANG_RE.match(text, i + 3)
                end = lang.end() if lang else i + 3
                tokens.append(TagToken(i, end, "pre", "open", text[i:end] + "\n"))
                atoms.append((i, end))
                stack.append("pre")
                i = end
                continue
            if ch == "`":
                tokens.append(TagToken(i, i + 1, "code", "open", "`"))
                stack.append("code")
                i += 1
                continue

            for delim, name in self._TOGGLES:
                if text.startswith(delim, i):
                    end = i + len(delim)
                    if name in stack:
                        tokens.append(TagToken(i, end, name, "close"))
                        del stack[len(stack) - 1 - stack[::-1].index(name)]
                    else:
                        tokens.append(TagToken(i, end, name, "open", delim))
                        stack.append(name)
                    if end - i > 1:
                        atoms.append((i, end))
                    i = end
                    break
            else:
                i += 1

        return TagScan(tokens, atoms)

    def closer(self, token: TagToken) -> str:
        return self._DELIMITERS[token.name]


_SYNTAXES: dict[str, type[TagSyntax]] = {
    "plain": TagSyntax,
    "html": HtmlSyntax,
    "markdown_v2": MarkdownV2Syntax,
    "markdownv2": MarkdownV2Syntax,
}


def get_tag_syntax(tag_syntax: TagSyntax | str | None) -> TagSyntax:
    """Resolve a syntax name (or Telegram parse mode) to a TagSyntax."""
    if isinstance(tag_syntax, TagSyntax):
        return tag_syntax
    key = (tag_syntax or "plain").lower()
    try:
        return _SYNTAXES[key]()
    except KeyError:
        raise ValueError(f"Unknown tag syntax: {tag_syntax!r}") from None


@dataclass(frozen=True)
class Segment:
    """One length-bounded, self-contained piece of a split message.

    Attributes:
        content: Slice of the original text.
        opening: Synthetic re-openers for tags carried in from the previous segment.
        closing: Synthetic closers for tags still open at the end.
        reopened: Names of the tags re-opened by ``opening``.
        carried_open: Names of the tags closed by ``closing``; the next
            segment re-opens them.
    """

    content: str
    opening: str = ""
    closing: str = ""
    reopened: tuple[str, ...] = ()
    carried_open: tuple[str, ...] = ()

    @property
    def text(self) -> str:
        return self.opening + self.content + self.closing

    def __len__(self) -> int:
        return len(self.opening) + len(self.content) + len(self.closing)

    def __str__(self) -> str:
        return self.text


def _apply_tags(stack: list[TagToken], tokens: list[TagToken]) -> list[TagToken]:
    """Return *stack* after applying *tokens*; closes pop the last same-named open."""
    result = list(stack)
    for token in tokens:
        if token.kind == "open":
            result.append(token)
            continue
        for j in range(len(result) - 1, -1, -1):
            if result[j].name == token.name:
                del result[j]
                break
    return result


def _settle(text: str, scan: TagScan, cut: int, pos: int) -> int:
    """Move *cut* back out of atoms and before any opening tag it would strand.

    An opening tag followed only by whitespace up to the cut would leave
    an empty entity at the end of the segment, so the cut moves before it.
    If that would leave nothing at all, the last atom-free cut is kept.
    """
    keep = pos
    while cut > pos:
        atom = scan.atom_containing(cut)
        if atom is not None:
            cut = atom[0]
            continue
        keep = cut
        back = cut
        while back > pos and text[back - 1] in " \n":
            back -= 1
        opener = scan.opener_ending_at(back)
        if opener is not None and opener.start >= pos:
            cut = opener.start
            continue
        break
    return cut if cut > pos else keep


def _find_cutoff(text: str, pos: int, limit: int, budget: int, scan: TagScan) -> int:
    """Best cut in ``(pos, limit]``: a natural break if one is long enough, else *limit*."""
    cut = _settle(text, scan, limit, pos)
    if cut <= pos:
        return cut

    floor = pos + int(budget * MIN_SPLIT_RATIO)
    for brk in BREAK_POINTS:
        end = cut
        while True:
            i = text.rfind(brk, pos, end)
            if i == -1:
                break
            candidate = i + len(brk)
            if candidate < floor:
                break
            if _settle(text, scan, candidate, pos) == candidate:
                return candidate
            end = candidate - 1
    return cut


def _forced_cut(
    text: str,
    pos: int,
    budget: int,
    max_length: int,
    scan: TagScan,
    syntax: TagSyntax,
    carried: list[TagToken],
) -> tuple[int, list[TagToken]]:
    """Cut that always makes progress, plus the tags still open at it.

    Room is kept for the closers of those tags; only a single atom wider
    than the room makes the segment oversized. When the carried
    re-openers alone exceed *max_length*, each forced segment still takes
    a full *max_length* of content.
    """
    room = budget if budget > 0 else max_length
    while True:
        cut = min(pos + room, len(text))
        atom = scan.atom_containing(cut)
        if atom is not None:
            if atom[0] <= pos:
                cut = atom[1]
                return cut, _apply_tags(carried, scan.tokens_between(pos, cut))
            cut = atom[0]
        still_open = _apply_tags(carried, scan.tokens_between(pos, cut))
        closing_len = sum(len(syntax.closer(t)) for t in still_open)
        overflow = (cut - pos) + closing_len - room
        if budget <= 0 or overflow <= 0 or cut - pos - overflow <= 0:
            return cut, still_open
        room = cut - pos - overflow


def split(
    text: str, max_length: int, tag_syntax: TagSyntax | str | None = "html"
) -> list[Segment]:
    """Split *text* into independently well-formed segments of at most *max_length*.

    A single tag or escape that cannot fit on its own is emitted in an
    oversized segment rather than dropped.
    """
    if max_length <= 0:
        raise ValueError(f"max_length must be positive, got {max_length}")

    syntax = get_tag_syntax(tag_syntax)
    scan = syntax.scan(text)
    segments: list[Segment] = []
    carried: list[TagToken] = []
    pos = 0

    while True:
        opening = "".join(t.reopen for t in carried)
        reopened = tuple(t.name for t in carried)
        if len(opening) + len(text) - pos <= max_length:
            segments.append(Segment(text[pos:], opening, reopened=reopened))
            break

        budget = max_length - len(opening)
        limit = pos + max(budget, 0)
        while True:
            cut = _find_cutoff(text, pos, limit, budget, scan)
            if cut <= pos:
                cut, still_open = _forced_cut(
                    text, pos, budget, max_length, scan, syntax, carried
                )
                logger.debug("No valid cut within %d chars at offset %d, forcing", budget, pos)
                break
            still_open = _apply_tags(carried, scan.tokens_between(pos, cut))
            closing_len = sum(len(syntax.closer(t)) for t in still_open)
            overflow = len(opening) + (cut - pos) + closing_len - max_length
            if overflow <= 0:
                break
            limit = cut - overflow

        closing = "".join(syntax.closer(t) for t in reversed(still_open))
        segments.append(
            Segment(
                text[pos:cut],
                opening,
                closing,
                reopened=reopened,
                carried_open=tuple(t.name for t in still_open),
            )
        )
        if cut >= len(text):
            break
        pos = cut
        carried = still_open

    logger.debug(
        "Split %d chars into %d segments (max_length=%d, syntax=%s)",
        len(text),
        len(segments),
        max_length,
        syntax.name,
    )
    return segments


def split_text(
    text: str, max_length: int, tag_syntax: TagSyntax | str | None = "html"
) -> list[str]:
    """Like split(), returning the rendered segment strings."""
    return [segment.text for segment in split(text, max_length, tag_syntax)]
