"""Client-side orchestration for the GOAT MUSIC kiosk."""
from .api import GenerationFailed, KioskApiClient, TaskUpdate
from .genres import GENRES, Genre, find_genre
from .playback import AutoplayBlocked, PlaybackCoordinator, PlaybackState, PlaybackSurface, PlayState, SeekUnsupported
from .session import SessionSnapshot, SongSession, Step

__all__ = [
    "AutoplayBlocked",
    "GENRES",
    "Genre",
    "GenerationFailed",
    "KioskApiClient",
    "PlayState",
    "PlaybackCoordinator",
    "PlaybackState",
    "PlaybackSurface",
    "SeekUnsupported",
    "SessionSnapshot",
    "SongSession",
    "Step",
    "TaskUpdate",
    "find_genre",
]
