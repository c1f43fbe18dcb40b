import asyncio
import sys
from pathlib import Path

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.settings import Settings
from kiosk.api import GenerationFailed, KioskApiClient, TaskUpdate
from survey.delivery import TrackWatcher, download_url, slugify


class ScriptedApi:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = 0

    async def get_task(self, task_id):
        self.calls += 1
        item = self.replies[min(self.calls, len(self.replies)) - 1]
        if isinstance(item, Exception):
            raise item
        return item


@pytest.mark.parametrize(
    "title, expected",
    [
        ("Canción de Año!", "cancion-de-ano"),
        ("  Noche   GOAT  ", "noche-goat"),
        ("Reggaetón 2024 (Remix)", "reggaeton-2024-remix"),
        ("", "cancion"),
        (None, "cancion"),
        ("¡¡¡!!!", "cancion"),
    ],
)
def test_slugify(title, expected):
    assert slugify(title) == expected


def test_download_url_encodes_source_and_filename():
    url = download_url("https://kiosk.goat/", "https://cdn.test/a b.mp3?x=1&y=2", "Mi Canción")
    assert url == (
        "https://kiosk.goat/api/download"
        "?src=https%3A%2F%2Fcdn.test%2Fa%20b.mp3%3Fx%3D1%26y%3D2"
        "&filename=mi-cancion.mp3"
    )


def test_watch_with_final_source_needs_no_polling():
    api = ScriptedApi([TaskUpdate(status="PENDING")])
    watcher = TrackWatcher(api, "https://kiosk.goat")

    delivery = asyncio.run(watcher.watch("song-1", src="https://cdn/final.mp3", final=True))

    assert api.calls == 0
    assert delivery.is_final is True
    assert delivery.status == "SUCCESS"
    assert delivery.download_url.endswith("filename=cancion.mp3")


def test_watch_polls_until_final_and_skips_transient_errors():
    request = httpx.Request("GET", "http://kiosk/api/get-task")
    api = ScriptedApi(
        [
            httpx.ConnectError("blip", request=request),
            GenerationFailed("generation failed"),
            TaskUpdate(status="FIRST_SUCCESS", stream_audio_url="https://cdn/stream"),
            TaskUpdate(status="SUCCESS", audio_url="https://cdn/final.mp3", title="Noche GOAT"),
        ]
    )
    watcher = TrackWatcher(api, "https://kiosk.goat", interval=0.0, max_attempts=10)

    delivery = asyncio.run(watcher.watch("song-1"))

    assert api.calls == 4
    assert delivery.is_final is True
    assert delivery.audio_url == "https://cdn/final.mp3"
    assert delivery.download_url == (
        "https://kiosk.goat/api/download?src=https%3A%2F%2Fcdn%2Ffinal.mp3&filename=noche-goat.mp3"
    )


def test_watch_gives_up_after_budget_keeping_preview():
    api = ScriptedApi([TaskUpdate(status="FIRST_SUCCESS", stream_audio_url="https://cdn/stream")])
    watcher = TrackWatcher(api, "https://kiosk.goat", interval=0.0, max_attempts=3)

    delivery = asyncio.run(watcher.watch("song-1", title="Mi Canción"))

    assert api.calls == 3
    assert delivery.is_final is False
    assert delivery.status == "FIRST_SUCCESS"
    assert delivery.audio_url == "https://cdn/stream"
    assert delivery.download_url is None


def test_watch_success_without_audio_keeps_polling():
    api = ScriptedApi(
        [
            TaskUpdate(status="SUCCESS"),
            TaskUpdate(status="SUCCESS", audio_url="https://cdn/final.mp3"),
        ]
    )
    watcher = TrackWatcher(api, "https://kiosk.goat", interval=0.0, max_attempts=5)

    delivery = asyncio.run(watcher.watch("song-1", title="Salsa"))

    assert api.calls == 2
    assert delivery.download_url.endswith("filename=salsa.mp3")


def test_watch_without_task_id_returns_initial_state():
    api = ScriptedApi([TaskUpdate(status="SUCCESS", audio_url="https://cdn/final.mp3")])
    watcher = TrackWatcher(api, "https://kiosk.goat")

    delivery = asyncio.run(watcher.watch(None, src="https://cdn/stream"))

    assert api.calls == 0
    assert delivery.status == "PENDING"
    assert delivery.audio_url == "https://cdn/stream"
    assert delivery.is_final is False


def test_watch_stops_when_cancelled():
    api = ScriptedApi([TaskUpdate(status="PENDING")])
    watcher = TrackWatcher(api, "https://kiosk.goat", interval=30.0, max_attempts=20)

    async def scenario():
        stop = asyncio.Event()
        watching = asyncio.create_task(watcher.watch("song-1", cancel_event=stop))
        for _ in range(3):
            await asyncio.sleep(0)
        stop.set()
        return await watching

    delivery = asyncio.run(scenario())
    assert api.calls == 1
    assert delivery.is_final is False


def test_watcher_budget_from_settings():
    settings = Settings(PUBLIC_BASE_URL=" https://kiosk.goat ")
    client = KioskApiClient.from_settings(settings, transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    watcher = TrackWatcher.from_settings(client, settings)

    assert settings.PUBLIC_BASE_URL == "https://kiosk.goat"
    assert watcher.max_attempts == 100
    assert watcher._interval == 6.0
    asyncio.run(client.aclose())


def test_watcher_against_web_api_shape():
    replies = iter(
        [
            httpx.Response(502, text="bad gateway"),
            httpx.Response(200, json={"status": "PENDING", "track": None, "raw": {}}),
            httpx.Response(
                200,
                json={"status": "SUCCESS", "track": {"audioUrl": "https://cdn/final.mp3", "title": "Hola"}, "raw": {}},
            ),
        ]
    )
    client = KioskApiClient("http://kiosk.test", transport=httpx.MockTransport(lambda request: next(replies)))
    watcher = TrackWatcher(client, "http://kiosk.test", interval=0.0, max_attempts=5)

    async def scenario():
        async with client:
            return await watcher.watch("song-9")

    delivery = asyncio.run(scenario())
    assert delivery.is_final is True
    assert delivery.download_url.endswith("&filename=hola.mp3")
