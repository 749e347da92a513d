"""Telegram MarkdownV2 rendering for model-generated text.

Model output is loose GitHub-flavoured Markdown. Telegram's MarkdownV2 parser
rejects the whole message when a single reserved character is left unescaped,
so conversion works in three phases:

1. recognised constructs (code, links, emphasis, quotes) are swapped for
   private-use placeholder tokens, each carrying its own pre-escaped text;
2. everything left over is escaped uniformly;
3. placeholders are restored, stray emphasis delimiters are neutralised and the
   result is cut to Telegram's message limit.

Send the result with ``parse_mode=MarkdownV2``.
"""

from __future__ import annotations

import re
from typing import Callable

TELEGRAM_LIMIT = 4096
ELLIPSIS = "…"

# Characters that must be escaped outside of entities, plus the escape
# character itself.
ESCAPE_CHARS = "\\_*[]()~`>#+-=|{}.!"
BALANCED_DELIMITERS = ("*", "_", "~")

_TOKEN_OPEN = "\ue000"
_TOKEN_CLOSE = "\ue001"

_ESCAPE_RE = re.compile("([" + re.escape(ESCAPE_CHARS) + "])")
_CODE_ESCAPE_RE = re.compile(r"([\\`])")
_URL_ESCAPE_RE = re.compile(r"([\\)])")

_BOLD_DOUBLE_RE = re.compile(r"\*\*(.+?)\*\*", re.DOTALL)
_STRIKE_DOUBLE_RE = re.compile(r"~~(.+?)~~", re.DOTALL)
_BULLET_RE = re.compile(r"^[ \t]*[-*][ \t]+", re.MULTILINE)

_FENCED_RE = re.compile(r"```(.*?)```", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`([^`]+)`")
_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)]+)\)", re.DOTALL)
_SPOILER_RE = re.compile(r"\|\|(.+?)\|\|", re.DOTALL)
_UNDERLINE_RE = re.compile(r"__([^_]+)__")
_ITALIC_RE = re.compile(r"_(?!_)([^_\n]+)_(?!_)")
_BOLD_RE = re.compile(r"(?<!\*)\*([^*\n]+)\*(?!\*)")
_STRIKE_RE = re.compile(r"~([^~\n]+)~")
_QUOTE_RE = re.compile(r"^([ \t]*>+)", re.MULTILINE)


def render_markdown_v2(text: str) -> str:
    """Convert model output into text Telegram accepts as MarkdownV2."""

    if not text:
        return ""
    text = text.replace(_TOKEN_OPEN, "").replace(_TOKEN_CLOSE, "")
    text = normalize_markdown(text)
    text = _to_markdown_v2(text)
    return truncate(text, TELEGRAM_LIMIT)


def normalize_markdown(text: str) -> str:
    """Collapse common GitHub Markdown into MarkdownV2 syntax."""

    text = _BOLD_DOUBLE_RE.sub(r"*\1*", text)
    text = _STRIKE_DOUBLE_RE.sub(r"~\1~", text)
    # Telegram has no lists; a bullet glyph avoids escaping every "- ".
    return _BULLET_RE.sub("• ", text)


def escape(text: str) -> str:
    """Escape every MarkdownV2 reserved character."""

    return _ESCAPE_RE.sub(r"\\\1", text)


def escape_code(text: str) -> str:
    return _CODE_ESCAPE_RE.sub(r"\\\1", text)


def escape_url(text: str) -> str:
    return _URL_ESCAPE_RE.sub(r"\\\1", text)


class _Placeholders:
    """Single-use tokens standing in for already escaped spans."""

    def __init__(self) -> None:
        self._spans: list[tuple[str, str]] = []

    def protect(self, original: str) -> str:
        token = f"{_TOKEN_OPEN}{len(self._spans)}{_TOKEN_CLOSE}"
        self._spans.append((token, original))
        return token

    def sub(self, pattern: re.Pattern[str], build: Callable[[re.Match[str]], str], text: str) -> str:
        return pattern.sub(lambda match: self.protect(build(match)), text)

    def restore(self, text: str) -> str:
        # Later spans may wrap earlier tokens, so unwind newest first.
        for token, original in reversed(self._spans):
            text = text.replace(token, original)
        return text


def _to_markdown_v2(text: str) -> str:
    spans = _Placeholders()

    text = spans.sub(_FENCED_RE, lambda m: f"```{escape_code(m.group(1))}```", text)
    text = spans.sub(_INLINE_CODE_RE, lambda m: f"`{escape_code(m.group(1))}`", text)
    text = spans.sub(_LINK_RE, lambda m: f"[{escape(m.group(1))}]({escape_url(m.group(2))})", text)
    text = spans.sub(_SPOILER_RE, lambda m: f"||{escape(m.group(1))}||", text)
    text = spans.sub(_UNDERLINE_RE, lambda m: f"__{escape(m.group(1))}__", text)
    text = spans.sub(_ITALIC_RE, lambda m: f"_{escape(m.group(1))}_", text)
    text = spans.sub(_BOLD_RE, lambda m: f"*{escape(m.group(1))}*", text)
    text = spans.sub(_STRIKE_RE, lambda m: f"~{escape(m.group(1))}~", text)
    text = spans.sub(_QUOTE_RE, lambda m: m.group(1), text)

    text = escape(text)
    text = spans.restore(text)
    return balance_delimiters(text)


def balance_delimiters(text: str) -> str:
    """Escape the last unpaired ``*``, ``_`` and ``~`` outside code spans."""

    for delimiter in BALANCED_DELIMITERS:
        positions = _unescaped_positions(text, delimiter)
        if len(positions) % 2:
            last = positions[-1]
            text = f"{text[:last]}\\{text[last:]}"
    return text


def _unescaped_positions(text: str, delimiter: str) -> list[int]:
    positions: list[int] = []
    in_pre = False
    in_code = False
    i = 0
    while i < len(text):
        char = text[i]
        if char == "\\":
            i += 2
            continue
        if text.startswith("```", i) and not in_code:
            in_pre = not in_pre
            i += 3
            continue
        if text.startswith("](", i) and not (in_pre or in_code):
            # Link destinations are literal.
            i += 2
            while i < len(text) and text[i] != ")":
                i += 2 if text[i] == "\\" else 1
            continue
        if char == "`" and not in_pre:
            in_code = not in_code
        elif char == delimiter and not (in_pre or in_code):
            positions.append(i)
        i += 1
    return positions


def truncate(text: str, limit: int) -> str:
    """Cut to ``limit`` code points without leaving a dangling escape."""

    if len(text) <= limit:
        return text
    # Room for the ellipsis and one escape per rebalanced delimiter.
    cut = text[: limit - 1 - len(BALANCED_DELIMITERS)]
    cut = cut.rstrip("\\")
    return balance_delimiters(cut) + ELLIPSIS
