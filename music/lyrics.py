"""Prompt shaping for lyrics tasks and extraction of the generated lyric text."""
from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Mapping, Optional

from .errors import EmptyLyricsError
from .schemas import GeneratedLyrics, dig

log = logging.getLogger("music.lyrics")

PROMPT_MAX_CHARS = 200
LYRICS_MAX_LINES = 24
LYRICS_MAX_CHARS = 1200

PROMPT_PREFIX = "Genera una letra corta en español, con estructura [Verse]/[Chorus]. "
DEFAULT_THEME = "identidad GOAT, tono emocionante"

_WHITESPACE_RE = re.compile(r"\s+")
_BLANK_RUN_RE = re.compile(r"\n{4,}")

# Reply shapes seen for lyrics/record-info, most specific first.
_LYRICS_LIST_PATHS: tuple[tuple[str, ...], ...] = (
    ("data", "response", "lyricsData"),
    ("data", "response", "data"),
    ("response", "lyricsData"),
    ("response", "data"),
    ("lyricsData",),
    ("data",),
)


def _squash(value: Optional[str]) -> str:
    return _WHITESPACE_RE.sub(" ", value or "").strip()


def build_prompt(theme: Optional[str], style: Optional[str], *, max_chars: int = PROMPT_MAX_CHARS) -> str:
    """Compose the lyrics prompt, never longer than ``max_chars``.

    The instructional prefix and the style token are kept; the theme is the
    part that gets cut when the budget runs out. Only when prefix and style
    alone overflow is the whole prompt hard-cut.
    """

    style_text = _squash(style)
    theme_text = _squash(theme) or DEFAULT_THEME
    head = f"{PROMPT_PREFIX}Tema: "
    tail = f". Estilo: {style_text}."
    budget = max_chars - len(head) - len(tail)
    if budget > 0:
        theme_text = theme_text[:budget].rstrip(" ,.;:")
        if theme_text:
            return f"{head}{theme_text}{tail}"
    return f"{PROMPT_PREFIX}Estilo: {style_text}."[:max_chars]


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def make_short_lyrics(
    text: Optional[str],
    *,
    max_lines: int = LYRICS_MAX_LINES,
    max_chars: int = LYRICS_MAX_CHARS,
) -> str:
    """Clamp lyrics to ``max_lines`` lines and then to ``max_chars`` characters.

    Runs of three or more blank lines collapse to a single blank line before
    any cap is applied.
    """

    normalized = normalize_newlines(text or "")
    lines = [line.rstrip() for line in normalized.split("\n")]
    collapsed = _BLANK_RUN_RE.sub("\n\n", "\n".join(lines)).strip("\n")
    clamped = "\n".join(collapsed.split("\n")[:max_lines]).rstrip()
    return clamped[:max_chars].rstrip()


def _candidate_items(record: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    for path in _LYRICS_LIST_PATHS:
        value = dig(record, path)
        if isinstance(value, list) and value:
            return [item for item in value if isinstance(item, Mapping)]
    return []


def _item_text(item: Mapping[str, Any]) -> Any:
    value = item.get("text")
    if value is None:
        value = item.get("content")
    return value


def _is_complete(item: Mapping[str, Any]) -> bool:
    status = str(item.get("status") or "").lower()
    text = _item_text(item)
    return status == "complete" and isinstance(text, str) and bool(text.strip())


def _pick(items: Iterable[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    items = list(items)
    if not items:
        return None
    for item in items:
        if _is_complete(item):
            return item
    return items[0]


def extract_lyrics(
    record: Mapping[str, Any],
    *,
    max_lines: int = LYRICS_MAX_LINES,
    max_chars: int = LYRICS_MAX_CHARS,
) -> GeneratedLyrics:
    """Pull the lyric text and suggested title out of a finished lyrics record."""

    chosen = _pick(_candidate_items(record))
    raw_text = _item_text(chosen) if chosen is not None else None
    text = normalize_newlines(raw_text).strip() if isinstance(raw_text, str) else ""
    if not text:
        log.error("lyrics record without text", extra={"meta": {"record": record}})
        raise EmptyLyricsError(
            "Lyrics: SUCCESS pero no llegó texto en la respuesta",
            task_status="SUCCESS",
            payload=record,
        )
    raw_title = chosen.get("title") if chosen is not None else None
    title = raw_title.strip() if isinstance(raw_title, str) and raw_title.strip() else None
    return GeneratedLyrics(
        text=make_short_lyrics(text, max_lines=max_lines, max_chars=max_chars),
        title=title,
    )


__all__ = [
    "DEFAULT_THEME",
    "LYRICS_MAX_CHARS",
    "LYRICS_MAX_LINES",
    "PROMPT_MAX_CHARS",
    "PROMPT_PREFIX",
    "build_prompt",
    "extract_lyrics",
    "make_short_lyrics",
    "normalize_newlines",
]
