"""Tests for splitter — tag-balanced, length-bounded message splitting."""

import pytest

from ccrelay.markdown_v2 import sanitize, validate_structure
from ccrelay.splitter import Segment, get_tag_syntax, split, split_text

SYNTAXES = ["plain", "html", "markdown_v2"]


def _open_tags(text: str, syntax: str) -> list[str]:
    """Tags left open after scanning *text* on its own."""
    stack: list[str] = []
    for token in get_tag_syntax(syntax).scan(text).tokens:
        if token.kind == "open":
            stack.append(token.name)
        elif token.name in stack:
            del stack[len(stack) - 1 - stack[::-1].index(token.name)]
    return stack


def _check_segments(text: str, segments: list[Segment], max_length: int, syntax: str):
    assert "".join(s.content for s in segments) == text
    for segment in segments:
        assert len(segment.text) <= max_length
        assert segment.content
        assert _open_tags(segment.text, syntax) == []


# ── split: basics ────────────────────────────────────────────────────────


class TestSplitBasics:
    def test_short_text_single_segment(self):
        segments = split("hello", 10, "html")
        assert segments == [Segment("hello")]
        assert segments[0].text == "hello"

    def test_empty_text(self):
        assert split("", 10, "plain") == [Segment("")]

    @pytest.mark.parametrize("max_length", [0, -5])
    def test_non_positive_max_length_rejected(self, max_length: int):
        with pytest.raises(ValueError, match="max_length"):
            split("hello", max_length)

    def test_unknown_syntax_rejected(self):
        with pytest.raises(ValueError, match="Unknown tag syntax"):
            split("hello", 10, "bbcode")

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            pytest.param("HTML", "html", id="html_upper"),
            pytest.param("MarkdownV2", "markdown_v2", id="parse_mode_name"),
            pytest.param(None, "plain", id="none"),
        ],
    )
    def test_syntax_lookup(self, name, expected: str):
        assert get_tag_syntax(name).name == expected

    @pytest.mark.parametrize("syntax", SYNTAXES)
    def test_uniform_text_splits_evenly(self, syntax: str):
        text = "A" * 10_000
        segments = split(text, 200, syntax)
        assert len(segments) == 50
        assert all(len(s) == 200 for s in segments)
        assert "".join(s.content for s in segments) == text

    def test_split_text_returns_strings(self, long_bold_html: str):
        parts = split_text(long_bold_html, 150, "html")
        assert parts == [s.text for s in split(long_bold_html, 150, "html")]


# ── split: break preference ──────────────────────────────────────────────


class TestBreakPoints:
    def test_paragraph_break_preferred(self):
        text = "a" * 200 + "\n\n" + "b" * 30 + "\n" + "c" * 100
        segments = split(text, 250, "plain")
        assert segments[0].content == "a" * 200 + "\n\n"

    def test_short_paragraph_falls_back_to_line_break(self):
        text = "a" * 100 + "\n\n" + "b" * 100 + "\n" + "c" * 100
        segments = split(text, 250, "plain")
        assert segments[0].content == "a" * 100 + "\n\n" + "b" * 100 + "\n"
        assert segments[1].content == "c" * 100

    def test_sentence_break(self):
        text = "x" * 180 + ". " + "y" * 100
        segments = split(text, 200, "plain")
        assert segments[0].content == "x" * 180 + ". "

    def test_break_too_early_is_ignored(self):
        text = "a" * 50 + " " + "b" * 300
        segments = split(text, 200, "plain")
        assert segments[0].content == "a" * 50 + " " + "b" * 149

    def test_word_break(self):
        text = "word " * 100
        segments = split(text, 52, "plain")
        _check_segments(text, segments, 52, "plain")
        assert all(s.content.endswith(" ") for s in segments)


# ── split: tag balance ───────────────────────────────────────────────────


class TestTagBalance:
    def test_html_bold_closed_and_reopened(self, long_bold_html: str):
        segments = split(long_bold_html, 150, "html")
        assert len(segments) > 1
        assert segments[0].carried_open == ("b",)
        assert segments[0].text.endswith("</b>")
        assert segments[1].reopened == ("b",)
        assert segments[1].text.startswith("<b>")
        _check_segments(long_bold_html, segments, 150, "html")

    def test_markdown_v2_bold_closed_and_reopened(self, long_bold_markdown_v2: str):
        segments = split(long_bold_markdown_v2, 150, "markdown_v2")
        assert len(segments) > 1
        assert segments[0].closing == "*"
        assert segments[1].opening == "*"
        _check_segments(long_bold_markdown_v2, segments, 150, "markdown_v2")

    def test_nested_tags_close_innermost_first(self):
        text = "<b><i>" + "word " * 60 + "</i></b>"
        segments = split(text, 100, "html")
        assert segments[0].closing == "</i></b>"
        assert segments[1].opening == "<b><i>"
        _check_segments(text, segments, 100, "html")

    def test_reopen_keeps_attributes(self):
        text = '<a href="https://example.com">' + "word " * 60 + "</a>"
        segments = split(text, 120, "html")
        assert segments[0].closing == "</a>"
        assert segments[1].opening == '<a href="https://example.com">'
        _check_segments(text, segments, 120, "html")

    def test_fence_reopens_with_language(self, fenced_markdown_v2: str):
        segments = split(fenced_markdown_v2, 100, "markdown_v2")
        assert len(segments) > 1
        assert segments[0].closing == "```"
        assert segments[1].opening == "```python\n"
        _check_segments(fenced_markdown_v2, segments, 100, "markdown_v2")
        for segment in segments:
            assert validate_structure(segment.text) == []

    def test_tags_inside_code_are_ignored(self):
        tokens = get_tag_syntax("markdown_v2").scan("*a* `b*c`").tokens
        assert [(t.name, t.kind) for t in tokens] == [
            ("bold", "open"),
            ("bold", "close"),
            ("code", "open"),
            ("code", "close"),
        ]

    def test_escaped_delimiters_are_not_tags(self):
        assert get_tag_syntax("markdown_v2").scan("\\*a\\*").tokens == []

    def test_html_names_lowercased_and_self_closing_skipped(self):
        tokens = get_tag_syntax("html").scan("<B>x<br/></B>").tokens
        assert [(t.name, t.kind) for t in tokens] == [("b", "open"), ("b", "close")]


# ── split: atoms ─────────────────────────────────────────────────────────


class TestAtoms:
    def test_tag_never_cut(self):
        tag = '<a href="https://example.com/page">'
        text = "a" * 95 + tag + "link</a>" + "b" * 100
        segments = split(text, 100, "html")
        assert segments[0].content == "a" * 95
        assert segments[1].content.startswith(tag)
        _check_segments(text, segments, 100, "html")

    def test_entity_never_cut(self):
        text = "a" * 99 + "&amp;" + "b" * 50
        segments = split(text, 101, "html")
        assert segments[0].content == "a" * 99
        assert segments[1].content.startswith("&amp;")

    def test_escape_pair_never_cut(self):
        text = "a" * 99 + "\\." + "b" * 50
        segments = split(text, 100, "markdown_v2")
        assert segments[0].content == "a" * 99
        assert segments[1].content.startswith("\\.")

    def test_oversized_tag_emitted_whole(self):
        tag = '<a href="' + "h" * 300 + '">'
        text = tag + "x</a>"
        segments = split(text, 100, "html")
        assert len(segments) == 2
        assert segments[0].content == tag
        assert segments[1].content == "x</a>"
        assert "".join(s.content for s in segments) == text
        for segment in segments:
            assert _open_tags(segment.text, "html") == []


# ── split: invariants over varied inputs ─────────────────────────────────


class TestInvariants:
    @pytest.mark.parametrize("max_length", [1, 2, 7, 33, 120])
    def test_plain_text(self, max_length: int):
        text = "Lorem ipsum dolor sit amet, consectetur. Adipiscing elit.\n\n" * 6
        segments = split(text, max_length, "plain")
        _check_segments(text, segments, max_length, "plain")

    @pytest.mark.parametrize(
        ("text", "syntax"),
        [
            pytest.param("<b>" + " " * 200 + "x</b>", "html", id="html_blank_bold"),
            pytest.param("*" + " " * 150 + "x*", "markdown_v2", id="markdown_v2_blank_bold"),
        ],
    )
    def test_whitespace_after_opener_stays_within_limit(self, text: str, syntax: str):
        segments = split(text, 100, syntax)
        assert len(segments) > 1
        _check_segments(text, segments, 100, syntax)

    @pytest.mark.parametrize("max_length", [64, 150, 333])
    def test_html(self, max_length: int):
        text = (
            "<b>Summary</b>: build &amp; test failed.\n\n"
            + "<i>Step</i> <code>make test</code> returned 2. " * 10
            + '<pre><code class="language-python">'
            + "print(1 &lt; 2)\n" * 20
            + "</code></pre>"
        )
        segments = split(text, max_length, "html")
        _check_segments(text, segments, max_length, "html")

    @pytest.mark.parametrize("max_length", [60, 150, 300, 1000])
    def test_sanitized_reply(self, sample_reply: str, max_length: int):
        text = sanitize(sample_reply).text
        segments = split(text, max_length, "markdown_v2")
        _check_segments(text, segments, max_length, "markdown_v2")
        for segment in segments:
            assert validate_structure(segment.text) == []
