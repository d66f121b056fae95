"""Shared fixtures: realistic assistant replies and formatted payloads."""

import pytest


@pytest.fixture
def sample_reply() -> str:
    """A typical Claude reply: bold lead, prose, a fenced block, inline code."""
    return (
        "*Summary:* the build failed.\n\n"
        + "Step one - install deps (pip install -e .). " * 8
        + "\n\n```python\n"
        + "def add(a, b):\n    return a + b  # `sum`\n" * 12
        + "```\n\n"
        + "Use `make test` to run _all_ checks. " * 10
    )


@pytest.fixture
def long_bold_html() -> str:
    """A 500-character bold span in Telegram HTML."""
    return "<b>" + "word " * 100 + "</b>"


@pytest.fixture
def long_bold_markdown_v2() -> str:
    """A 500-character bold span in MarkdownV2."""
    return "*" + "word " * 100 + "*"


@pytest.fixture
def fenced_markdown_v2() -> str:
    """A sanitized fenced block long enough to need splitting."""
    return "```python\n" + "x = 1\n" * 40 + "```"
