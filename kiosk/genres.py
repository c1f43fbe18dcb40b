"""Genre catalogue shown on the selection screen."""
from __future__ import annotations

from typing import NamedTuple, Optional


class Genre(NamedTuple):
    key: str
    label: str


GENRES: tuple[Genre, ...] = (
    Genre("pop", "Pop"),
    Genre("hip_hop_rap", "Hip-Hop / Rap"),
    Genre("rock_alt", "Rock / Alternativo"),
    Genre("kpop", "K-pop"),
    Genre("reggaeton", "Reggaetón"),
    Genre("salsa", "Salsa"),
)


def find_genre(value: str) -> Optional[Genre]:
    """Look a genre up by key or label (case-insensitive)."""

    needle = (value or "").strip().lower()
    for genre in GENRES:
        if needle in (genre.key, genre.label.lower()):
            return genre
    return None


__all__ = ["GENRES", "Genre", "find_genre"]
