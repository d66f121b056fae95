"""Telegram delivery helpers — formatting, splitting and sending long replies.

Provides:
  - format_message(): assistant markdown → payload + parse mode (MarkdownV2
    via the sanitizer, HTML via html_format, or plain text).
  - split_message(): splits a formatted payload into Telegram-safe chunks
    (≤4096 chars) whose markup stays balanced.
  - send_long_message(): sends the chunks in order through python-telegram-bot,
    retrying any chunk Telegram refuses to parse as plain text.
"""

from __future__ import annotations

import asyncio
import html
import logging
import re
from dataclasses import dataclass
from typing import Any

from telegram import Bot, LinkPreviewOptions, Message
from telegram.error import BadRequest, TelegramError

from .config import TELEGRAM_MAX_MESSAGE_LENGTH, config
from .html_format import markdown_to_html
from .markdown_v2 import normalize_markdown, sanitize, unescape_markdown_v2
from .splitter import split_text

logger = logging.getLogger(__name__)

_NO_LINK_PREVIEW = LinkPreviewOptions(is_disabled=True)

_HTML_TAG_RE = re.compile(r"</?[a-zA-Z][a-zA-Z0-9-]*\b[^<>]*>")

# Widest indicator we reserve room for; replies never get near 999 parts.
_INDICATOR_RESERVE_PARTS = 999


@dataclass
class FormattedMessage:
    """A message body ready for Telegram, plus the parse mode to send it with.

    parse_mode is None for plain text.
    """

    text: str
    parse_mode: str | None


def _normalize_mode(parse_mode: str | None) -> str | None:
    mode = parse_mode or config.parse_mode
    lowered = str(mode).lower()
    if lowered in ("markdownv2", "markdown_v2"):
        return "MarkdownV2"
    if lowered == "html":
        return "HTML"
    if lowered in ("plain", "none"):
        return None
    raise ValueError(f"Unsupported parse mode: {parse_mode!r}")


def format_message(text: str, parse_mode: str | None = None) -> FormattedMessage:
    """Render assistant markdown for the given (or configured) parse mode."""
    mode = _normalize_mode(parse_mode)
    if mode == "MarkdownV2":
        payload = sanitize(normalize_markdown(text), max_bold_length=config.bold_scan_limit)
        if payload.error is not None:
            logger.warning("Sending literal MarkdownV2 fallback: %s", payload.error)
        return FormattedMessage(payload.text, payload.parse_mode)
    if mode == "HTML":
        return FormattedMessage(markdown_to_html(text), mode)
    return FormattedMessage(text, None)


def _tag_syntax(parse_mode: str | None) -> str:
    if parse_mode == "MarkdownV2":
        return "markdown_v2"
    if parse_mode == "HTML":
        return "html"
    return "plain"


def split_message(
    text: str,
    max_length: int = TELEGRAM_MAX_MESSAGE_LENGTH,
    parse_mode: str | None = None,
) -> list[str]:
    """Split an already-formatted message into chunks that fit Telegram's limit.

    Tags or delimiters open at a split point are closed at the end of the
    chunk and re-opened at the start of the next one.
    """
    if len(text) <= max_length:
        return [text]
    return split_text(text, max_length, _tag_syntax(parse_mode))


def part_indicator(index: int, total: int, parse_mode: str | None) -> str:
    """Footer marking chunk *index* (1-based) of *total*."""
    if parse_mode == "MarkdownV2":
        return f"\n\n_\\[Part {index}/{total}\\]_"
    if parse_mode == "HTML":
        return f"\n\n<i>[Part {index}/{total}]</i>"
    return f"\n\n[Part {index}/{total}]"


def to_plain_text(text: str, parse_mode: str | None) -> str:
    """Strip markup from a formatted chunk for the plain-text fallback."""
    if parse_mode == "MarkdownV2":
        return unescape_markdown_v2(text)
    if parse_mode == "HTML":
        return html.unescape(_HTML_TAG_RE.sub("", text))
    return text


async def _send_part(
    bot: Bot, chat_id: int | str, text: str, parse_mode: str | None, **kwargs: Any
) -> Message | None:
    """Send one chunk, falling back to plain text if Telegram rejects the markup."""
    try:
        return await bot.send_message(
            chat_id=chat_id, text=text, parse_mode=parse_mode, **kwargs
        )
    except BadRequest as e:
        if parse_mode is None:
            logger.error(f"Failed to send message to {chat_id}: {e}")
            return None
        logger.warning("%s rejected by Telegram (%s), resending as plain text", parse_mode, e)
    except TelegramError as e:
        logger.error(f"Failed to send message to {chat_id}: {e}")
        return None

    try:
        return await bot.send_message(
            chat_id=chat_id, text=to_plain_text(text, parse_mode), **kwargs
        )
    except TelegramError as e:
        logger.error(f"Failed to send plain-text fallback to {chat_id}: {e}")
        return None


async def send_long_message(
    bot: Bot,
    chat_id: int | str,
    text: str,
    *,
    parse_mode: str | None = None,
    max_length: int | None = None,
    part_indicators: bool | None = None,
    send_interval: float | None = None,
    **kwargs: Any,
) -> Message | None:
    """Format, split and send a reply, one Telegram message per chunk.

    Only the first chunk notifies the user. Returns the first sent message
    (callers attach keyboards to it), or None if nothing was delivered.
    """
    formatted = format_message(text, parse_mode)
    mode = formatted.parse_mode
    limit = max_length or config.max_message_length
    indicators = config.part_indicators if part_indicators is None else part_indicators
    interval = config.part_send_interval if send_interval is None else send_interval
    kwargs.setdefault("link_preview_options", _NO_LINK_PREVIEW)

    if not formatted.text:
        logger.debug("Nothing to send to %s", chat_id)
        return None

    chunks = [formatted.text]
    if len(formatted.text) > limit:
        reserve = 0
        if indicators:
            reserve = len(part_indicator(_INDICATOR_RESERVE_PARTS, _INDICATOR_RESERVE_PARTS, mode))
        chunks = split_message(formatted.text, max(limit - reserve, 1), mode)
        logger.info(
            "Splitting long message (%d chars) into %d parts", len(formatted.text), len(chunks)
        )

    total = len(chunks)
    first: Message | None = None
    for i, chunk in enumerate(chunks):
        part_kwargs = dict(kwargs)
        if i > 0:
            part_kwargs["disable_notification"] = True
        if total > 1 and indicators:
            chunk += part_indicator(i + 1, total, mode)

        sent = await _send_part(bot, chat_id, chunk, mode, **part_kwargs)
        if sent is None:
            logger.error("Failed to send part %d/%d (%d chars)", i + 1, total, len(chunk))
        elif first is None:
            first = sent

        if i < total - 1 and interval > 0:
            await asyncio.sleep(interval)

    return first


def create_bot(token: str | None = None) -> Bot:
    """Build a python-telegram-bot Bot from *token* or TELEGRAM_BOT_TOKEN."""
    token = token or config.telegram_bot_token
    if not token:
        raise ValueError("TELEGRAM_BOT_TOKEN environment variable is required")
    return Bot(token)
