from __future__ import annotations

import html
import re

MAX_TEXT_LENGTH = 2000
SUMMARY_WORD_LIMIT = 200

_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")
_NON_ASCII_RE = re.compile(r"[^\x00-\x7f]")
_ASCII_FOLDS = str.maketrans(
    {
        "\u2018": "'",
        "\u2019": "'",
        "\u201c": '"',
        "\u201d": '"',
        "\u2013": "-",
        "\u2014": "-",
        "\u2026": "...",
        "\u2022": "*",
        "\u2023": "*",
        "\u25e6": "*",
        "\u2043": "*",
        "\u2219": "*",
        "\ufe63": "-",
        "\uff65": "*",
        "\u00b7": "*",
        "\u00a0": " ",
    }
)
# Common UTF-8 bytes decoded as cp1252.
_MOJIBAKE_HINTS = ("\u00e2\u20ac", "\u00c3", "\u00c2")


def sanitize_text(value: object, *, required: bool = False, max_length: int = MAX_TEXT_LENGTH) -> str | None:
    """Normalize external text to bounded, tag-free ASCII.

    Never raises: anything that cannot be decoded is dropped. Returns "" for
    empty required fields and None for empty optional ones.
    """
    if value is None:
        return "" if required else None
    text = value if isinstance(value, str) else str(value)

    text = _repair_mojibake(html.unescape(text))
    text = _CONTROL_RE.sub("", text)
    text = text.translate(_ASCII_FOLDS)
    text = _NON_ASCII_RE.sub("", text)
    text = _TAG_RE.sub(" ", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()

    if len(text) > max_length:
        text = text[:max_length]
    if text:
        return text
    return "" if required else None


def html_to_text(value: str | None) -> str:
    if not value:
        return ""
    text = _TAG_RE.sub(" ", html.unescape(html.unescape(value)))
    return _WHITESPACE_RE.sub(" ", text).strip()


def summarize_words(text: str, limit: int = SUMMARY_WORD_LIMIT) -> str:
    words = text.split(" ") if text else []
    if len(words) <= limit:
        return text
    return " ".join(words[:limit]) + "..."


def _repair_mojibake(text: str) -> str:
    if not any(hint in text for hint in _MOJIBAKE_HINTS):
        return text
    try:
        return text.encode("cp1252").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        return text
