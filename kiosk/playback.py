"""Playback state for the kiosk player.

The coordinator owns :class:`PlaybackState` and is the only thing that
touches the playback surface. A song usually arrives in two steps: a
streaming preview URL while the track is still rendering, then the final
file. Swapping to the final URL keeps the play/pause intent and, where the
surface can seek, the listening position.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Protocol

log = logging.getLogger("kiosk.playback")


class PlayState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    WAITING = "waiting"
    ENDED = "ended"
    ERROR = "error"
    BLOCKED = "blocked"


class AutoplayBlocked(RuntimeError):
    """The surface refused to start playback without a user gesture."""


class SeekUnsupported(RuntimeError):
    """The loaded source cannot seek."""


@dataclass(frozen=True)
class PlaybackState:
    current_url: Optional[str] = None
    is_final: bool = False
    is_playing: bool = False
    position_seconds: float = 0.0


class PlaybackSurface(Protocol):
    """Audio element (plus its analysis graph) driven by the coordinator."""

    def load(self, url: str) -> None: ...

    async def play(self) -> None:
        """Start playback; raises :class:`AutoplayBlocked` when refused."""

    def pause(self) -> None: ...

    def seek(self, seconds: float) -> None:
        """Move to ``seconds``; raises :class:`SeekUnsupported` when it can't."""

    def position(self) -> float: ...

    def release(self) -> None: ...


Listener = Callable[[PlayState, PlaybackState], None]


class PlaybackCoordinator:
    def __init__(
        self,
        surface: PlaybackSurface,
        *,
        autoplay: bool = True,
        listener: Optional[Listener] = None,
    ) -> None:
        self._surface = surface
        self._autoplay = autoplay
        self._listener = listener
        self._state = PlaybackState()
        self._play_state = PlayState.IDLE
        self._torn_down = False

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def play_state(self) -> PlayState:
        return self._play_state

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    def _set(self, play_state: Optional[PlayState] = None, **changes) -> None:
        if play_state is not None:
            self._play_state = play_state
        if changes:
            self._state = replace(self._state, **changes)
        if self._listener:
            self._listener(self._play_state, self._state)

    async def _play(self) -> None:
        try:
            await self._surface.play()
        except AutoplayBlocked:
            log.info("autoplay blocked", extra={"meta": {"url": self._state.current_url}})
            if not self._torn_down:
                self._set(PlayState.BLOCKED, is_playing=False)
            return
        if not self._torn_down:
            self._set(PlayState.PLAYING, is_playing=True)

    async def offer_stream(self, url: str) -> None:
        """Load a preview URL unless the final file is already in use."""

        if self._torn_down or not url:
            return
        if self._state.is_final or url == self._state.current_url:
            return
        self._surface.load(url)
        self._set(PlayState.LOADING, current_url=url, is_final=False, position_seconds=0.0)
        if self._autoplay:
            await self._play()

    async def offer_final(self, url: str) -> None:
        """Swap to the final URL keeping play intent and position."""

        if self._torn_down or not url or url == self._state.current_url:
            return
        had_source = self._state.current_url is not None
        was_playing = self._state.is_playing if had_source else self._autoplay
        # blocked preview keeps its play intent
        was_playing = was_playing or self._play_state is PlayState.BLOCKED
        position = self._surface.position() if had_source else 0.0

        self._surface.load(url)
        if position > 0:
            try:
                self._surface.seek(position)
            except SeekUnsupported:
                log.debug("seek unsupported, restarting at 0", extra={"meta": {"url": url}})
                position = 0.0
        self._set(
            PlayState.LOADING,
            current_url=url,
            is_final=True,
            is_playing=False,
            position_seconds=position,
        )
        if was_playing:
            await self._play()
        else:
            self._set(PlayState.PAUSED if had_source else PlayState.IDLE)
        log.info("final source in use", extra={"meta": {"url": url, "position": position}})

    async def resume(self) -> None:
        """Explicit user gesture: start or continue playback."""

        if self._torn_down or self._state.current_url is None:
            return
        await self._play()

    def pause(self) -> None:
        if self._torn_down or self._state.current_url is None:
            return
        self._surface.pause()
        self._set(PlayState.PAUSED, is_playing=False, position_seconds=self._surface.position())

    def on_playing(self) -> None:
        if not self._torn_down:
            self._set(PlayState.PLAYING, is_playing=True)

    def on_waiting(self) -> None:
        if not self._torn_down:
            self._set(PlayState.WAITING)

    on_stalled = on_waiting

    def on_pause(self) -> None:
        if not self._torn_down:
            self._set(PlayState.PAUSED, is_playing=False)

    def on_ended(self) -> None:
        if not self._torn_down:
            self._set(PlayState.ENDED, is_playing=False)

    def on_error(self) -> None:
        if not self._torn_down:
            log.warning("playback error", extra={"meta": {"url": self._state.current_url}})
            self._set(PlayState.ERROR, is_playing=False)

    def on_time_update(self, seconds: float) -> None:
        if not self._torn_down:
            self._state = replace(self._state, position_seconds=max(0.0, float(seconds)))

    def teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        self._surface.pause()
        self._surface.release()
        self._listener = None


__all__ = [
    "AutoplayBlocked",
    "PlayState",
    "PlaybackCoordinator",
    "PlaybackState",
    "PlaybackSurface",
    "SeekUnsupported",
]
