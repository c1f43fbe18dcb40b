"""Public surface for the music generation core."""
from .client import MusicApiClient, MusicApiConfig
from .errors import (
    ConfigurationError,
    EmptyLyricsError,
    LyricsGenerationFailure,
    MissingTaskIdError,
    MusicAPIError,
    PollTimeout,
    UpstreamHTTPError,
    UpstreamTaskError,
    ValidationError,
)
from .lyrics import build_prompt, extract_lyrics, make_short_lyrics
from .polling import PollOutcome, poll_until
from .schemas import GenerateSongRequest, LyricsTask, SongTask, TrackInfo, extract_task_id
from .service import GenerationService

__all__ = [
    "ConfigurationError",
    "EmptyLyricsError",
    "GenerateSongRequest",
    "GenerationService",
    "LyricsGenerationFailure",
    "LyricsTask",
    "MissingTaskIdError",
    "MusicAPIError",
    "MusicApiClient",
    "MusicApiConfig",
    "PollOutcome",
    "PollTimeout",
    "SongTask",
    "TrackInfo",
    "UpstreamHTTPError",
    "UpstreamTaskError",
    "ValidationError",
    "build_prompt",
    "extract_lyrics",
    "extract_task_id",
    "make_short_lyrics",
    "poll_until",
]
