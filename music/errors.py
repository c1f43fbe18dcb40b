"""Error hierarchy for the music generation core."""
from __future__ import annotations

from typing import Any, Optional


class MusicAPIError(RuntimeError):
    """Base error for the generation core.

    ``http_status`` is the status code the web layer answers with, ``status``
    is the upstream HTTP status when one was observed.
    """

    http_status = 500

    def __init__(self, message: str, *, status: Optional[int] = None, payload: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.payload = payload


class ConfigurationError(MusicAPIError):
    """Raised when the API credential (or another required setting) is missing."""


class ValidationError(MusicAPIError):
    """Raised for malformed inbound generation requests."""

    http_status = 400


class UpstreamHTTPError(MusicAPIError):
    """The music API answered with a non-2xx status."""

    @property
    def response_status(self) -> int:
        if self.status and 400 <= self.status < 600:
            return self.status
        return 502


class UpstreamTaskError(MusicAPIError):
    """The music API accepted the call but the reply is unusable."""


class MissingTaskIdError(UpstreamTaskError):
    """No task identifier could be found in the upstream reply."""


class LyricsGenerationFailure(MusicAPIError):
    """The lyrics task ended in a non-SUCCESS state or without text."""

    def __init__(self, message: str, *, task_status: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.task_status = task_status


class EmptyLyricsError(LyricsGenerationFailure):
    """SUCCESS was reported but no usable lyric text was delivered."""


class PollTimeout(MusicAPIError):
    """Polling attempts were exhausted before a terminal status arrived."""

    http_status = 504

    def __init__(self, message: str, *, last_status: Optional[str] = None, attempts: int = 0, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.last_status = last_status
        self.attempts = attempts


__all__ = [
    "ConfigurationError",
    "EmptyLyricsError",
    "LyricsGenerationFailure",
    "MissingTaskIdError",
    "MusicAPIError",
    "PollTimeout",
    "UpstreamHTTPError",
    "UpstreamTaskError",
    "ValidationError",
]
