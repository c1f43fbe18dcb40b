import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from kiosk.playback import AutoplayBlocked, PlaybackCoordinator, PlayState, SeekUnsupported


class FakeSurface:
    def __init__(self, *, block_autoplay=False, can_seek=True):
        self.block_autoplay = block_autoplay
        self.can_seek = can_seek
        self.loaded = []
        self.seeks = []
        self.plays = 0
        self.pauses = 0
        self.released = False
        self.current_position = 0.0

    def load(self, url):
        self.loaded.append(url)
        self.current_position = 0.0

    async def play(self):
        if self.block_autoplay:
            raise AutoplayBlocked("user gesture required")
        self.plays += 1

    def pause(self):
        self.pauses += 1

    def seek(self, seconds):
        if not self.can_seek:
            raise SeekUnsupported("stream source")
        self.seeks.append(seconds)
        self.current_position = seconds

    def position(self):
        return self.current_position

    def release(self):
        self.released = True


def test_stream_then_final_keeps_playing_and_position():
    surface = FakeSurface()
    coordinator = PlaybackCoordinator(surface)

    async def scenario():
        await coordinator.offer_stream("https://cdn/stream")
        surface.current_position = 42.0
        coordinator.on_time_update(42.0)
        await coordinator.offer_final("https://cdn/final.mp3")

    asyncio.run(scenario())

    state = coordinator.state
    assert surface.loaded == ["https://cdn/stream", "https://cdn/final.mp3"]
    assert surface.seeks == [42.0]
    assert state.current_url == "https://cdn/final.mp3"
    assert state.is_final is True
    assert state.is_playing is True
    assert state.position_seconds == 42.0
    assert coordinator.play_state is PlayState.PLAYING


def test_final_swap_keeps_paused_intent():
    surface = FakeSurface()
    coordinator = PlaybackCoordinator(surface)

    async def scenario():
        await coordinator.offer_stream("https://cdn/stream")
        surface.current_position = 10.0
        coordinator.pause()
        await coordinator.offer_final("https://cdn/final.mp3")

    asyncio.run(scenario())

    assert coordinator.state.is_playing is False
    assert coordinator.state.is_final is True
    assert surface.plays == 1
    assert coordinator.play_state is PlayState.PAUSED


def test_unsupported_seek_restarts_from_zero():
    surface = FakeSurface(can_seek=False)
    coordinator = PlaybackCoordinator(surface)

    async def scenario():
        await coordinator.offer_stream("https://cdn/stream")
        surface.current_position = 30.0
        await coordinator.offer_final("https://cdn/final.mp3")

    asyncio.run(scenario())

    assert coordinator.state.position_seconds == 0.0
    assert coordinator.state.is_playing is True


def test_stream_ignored_once_final_in_use_and_duplicates_ignored():
    surface = FakeSurface()
    coordinator = PlaybackCoordinator(surface)

    async def scenario():
        await coordinator.offer_stream("https://cdn/stream")
        await coordinator.offer_stream("https://cdn/stream")
        await coordinator.offer_final("https://cdn/final.mp3")
        await coordinator.offer_final("https://cdn/final.mp3")
        await coordinator.offer_stream("https://cdn/stream-2")

    asyncio.run(scenario())

    assert surface.loaded == ["https://cdn/stream", "https://cdn/final.mp3"]
    assert coordinator.state.current_url == "https://cdn/final.mp3"


def test_blocked_autoplay_waits_for_gesture():
    surface = FakeSurface(block_autoplay=True)
    coordinator = PlaybackCoordinator(surface)

    asyncio.run(coordinator.offer_final("https://cdn/final.mp3"))
    assert coordinator.play_state is PlayState.BLOCKED
    assert coordinator.state.is_playing is False

    surface.block_autoplay = False
    asyncio.run(coordinator.resume())
    assert coordinator.play_state is PlayState.PLAYING
    assert coordinator.state.is_playing is True


def test_surface_events_drive_state():
    surface = FakeSurface()
    seen = []
    coordinator = PlaybackCoordinator(surface, listener=lambda play_state, state: seen.append(play_state))
    asyncio.run(coordinator.offer_stream("https://cdn/stream"))

    coordinator.on_waiting()
    assert coordinator.play_state is PlayState.WAITING
    coordinator.on_playing()
    assert coordinator.play_state is PlayState.PLAYING
    coordinator.on_ended()
    assert coordinator.play_state is PlayState.ENDED
    assert coordinator.state.is_playing is False
    coordinator.on_error()
    assert coordinator.play_state is PlayState.ERROR
    assert PlayState.LOADING in seen


def test_teardown_releases_surface_and_freezes_state():
    surface = FakeSurface()
    coordinator = PlaybackCoordinator(surface)
    asyncio.run(coordinator.offer_stream("https://cdn/stream"))

    coordinator.teardown()
    frozen_state = coordinator.state
    frozen_play_state = coordinator.play_state

    asyncio.run(coordinator.offer_final("https://cdn/final.mp3"))
    coordinator.on_playing()
    coordinator.on_time_update(99.0)
    coordinator.pause()
    coordinator.teardown()

    assert surface.released is True
    assert surface.loaded == ["https://cdn/stream"]
    assert coordinator.state == frozen_state
    assert coordinator.play_state is frozen_play_state


def test_blocked_preview_stays_blocked_after_final_swap():
    surface = FakeSurface(block_autoplay=True)
    coordinator = PlaybackCoordinator(surface)

    async def scenario():
        await coordinator.offer_stream("https://cdn/stream")
        assert coordinator.play_state is PlayState.BLOCKED
        await coordinator.offer_final("https://cdn/final.mp3")

    asyncio.run(scenario())

    assert coordinator.play_state is PlayState.BLOCKED
    assert coordinator.state.is_final is True
    assert coordinator.state.is_playing is False
    assert surface.plays == 0


def test_blocked_preview_plays_final_when_allowed():
    surface = FakeSurface(block_autoplay=True)
    coordinator = PlaybackCoordinator(surface)

    async def scenario():
        await coordinator.offer_stream("https://cdn/stream")
        surface.block_autoplay = False
        await coordinator.offer_final("https://cdn/final.mp3")

    asyncio.run(scenario())

    assert coordinator.play_state is PlayState.PLAYING
    assert coordinator.state.is_playing is True
    assert surface.plays == 1
