"""Pydantic models for requests to and snapshots from the music generation API."""
from __future__ import annotations

from typing import Any, Literal, Mapping, NamedTuple, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

GenerationMode = Literal["autoLyrics", "lyrics"]
MusicModel = Literal["V3_5", "V4", "V4_5", "V4_5PLUS"]

LYRICS_SUCCESS = "SUCCESS"
LYRICS_TERMINAL_STATUSES = frozenset(
    {
        "SUCCESS",
        "CREATE_TASK_FAILED",
        "CALLBACK_EXCEPTION",
        "SENSITIVE_WORD_ERROR",
    }
)

SONG_PROGRESS_STATUSES = frozenset({"PENDING", "TEXT_SUCCESS", "FIRST_SUCCESS"})
SONG_SUCCESS = "SUCCESS"
SONG_FAILURE_STATUSES = frozenset(
    {
        "CREATE_TASK_FAILED",
        "GENERATE_AUDIO_FAILED",
        "CALLBACK_EXCEPTION",
        "SENSITIVE_WORD_ERROR",
    }
)

# Enumerated locations of the task identifier across known reply shapes.
TASK_ID_PATHS: tuple[tuple[str, ...], ...] = (
    ("data", "taskId"),
    ("data", "task_id"),
    ("taskId",),
    ("task_id",),
    ("id",),
)


def dig(payload: Any, path: Sequence[str]) -> Any:
    current = payload
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def extract_task_id(payload: Any) -> Optional[str]:
    """Return the first non-empty task id found along ``TASK_ID_PATHS``."""

    for path in TASK_ID_PATHS:
        value = dig(payload, path)
        if value in (None, ""):
            continue
        if isinstance(value, (Mapping, list, tuple)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        text = value.strip()
        return text or None
    return value


class GenerateSongRequest(BaseModel):
    """Inbound body of ``POST /api/generate-song``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    mode: GenerationMode
    model: Optional[MusicModel] = None
    theme_prompt: Optional[str] = Field(default=None, alias="themePrompt")
    lyrics: Optional[str] = None
    style: str
    title: str
    negative_tags: str = Field(default="", alias="negativeTags")

    @field_validator("negative_tags", mode="before")
    def _default_tags(cls, value: Any) -> Any:
        if value is None:
            return ""
        return value


class GeneratedLyrics(NamedTuple):
    text: str
    title: Optional[str] = None


class LyricsTask(BaseModel):
    """Last observed snapshot of a lyrics task."""

    model_config = ConfigDict(extra="ignore")

    task_id: str
    status: str = "PENDING"
    result_text: Optional[str] = None
    result_title: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.status in LYRICS_TERMINAL_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.status == LYRICS_SUCCESS

    @classmethod
    def from_record(cls, task_id: str, record: Mapping[str, Any]) -> "LyricsTask":
        status = dig(record, ("data", "status"))
        error_message = dig(record, ("data", "errorMessage"))
        return cls(
            task_id=task_id,
            status=str(status).strip() if status else "PENDING",
            error_message=str(error_message) if error_message else None,
        )


class TrackInfo(BaseModel):
    """First track of a song task as served to the kiosk."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    audio_url: Optional[str] = Field(default=None, alias="audioUrl")
    stream_audio_url: Optional[str] = Field(default=None, alias="streamAudioUrl")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    title: Optional[str] = None
    duration: Optional[float] = None

    @field_validator("audio_url", "stream_audio_url", "image_url", "title", mode="before")
    def _strip_text(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("duration", mode="before")
    def _coerce_duration(cls, value: Any) -> Optional[float]:
        if value in (None, ""):
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None


class SongTask(BaseModel):
    """Last observed snapshot of a song generation task."""

    model_config = ConfigDict(extra="ignore")

    task_id: str
    status: Optional[str] = None
    track: Optional[TrackInfo] = None
    error_message: Optional[str] = None

    @property
    def stream_audio_url(self) -> Optional[str]:
        return self.track.stream_audio_url if self.track else None

    @property
    def final_audio_url(self) -> Optional[str]:
        return self.track.audio_url if self.track else None

    @property
    def is_final(self) -> bool:
        return self.status == SONG_SUCCESS and bool(self.final_audio_url)

    @property
    def failed(self) -> bool:
        return self.status in SONG_FAILURE_STATUSES

    @property
    def terminal(self) -> bool:
        return self.is_final or self.failed

    @classmethod
    def from_record(cls, task_id: str, record: Mapping[str, Any]) -> "SongTask":
        status = dig(record, ("data", "status"))
        tracks = dig(record, ("data", "response", "sunoData"))
        first = tracks[0] if isinstance(tracks, list) and tracks else None
        track = TrackInfo.model_validate(first) if isinstance(first, Mapping) else None
        error_message = dig(record, ("data", "errorMessage"))
        return cls(
            task_id=task_id,
            status=str(status) if status else None,
            track=track,
            error_message=str(error_message) if error_message else None,
        )


__all__ = [
    "GenerateSongRequest",
    "GeneratedLyrics",
    "GenerationMode",
    "LYRICS_TERMINAL_STATUSES",
    "LyricsTask",
    "MusicModel",
    "SONG_FAILURE_STATUSES",
    "SongTask",
    "TASK_ID_PATHS",
    "TrackInfo",
    "dig",
    "extract_task_id",
]
