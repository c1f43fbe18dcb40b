import asyncio
import json
import sys
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.settings import Settings
from metrics import REGISTRY
from music.downloader import AudioProxy
from survey.store import InMemorySurveyStore
from web import create_app, task_status_label


def _settings(**overrides):
    values = {
        "MUSIC_API_KEY": "test-key",
        "MUSIC_API_BASE": "https://music.test/api/v1",
        "LYRICS_POLL_ATTEMPTS": 2,
        "LYRICS_POLL_INTERVAL_MS": 0,
        "LOG_JSON": False,
        "REDIS_URL": None,
    }
    values.update(overrides)
    return Settings(**values)


class Upstream:
    def __init__(self):
        self.requests = []
        self.lyrics_status = "SUCCESS"
        self.record = {"data": {"status": "PENDING"}}
        self.record_status_code = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/lyrics"):
            return httpx.Response(200, json={"data": {"taskId": "lyr-1"}})
        if path.endswith("/lyrics/record-info"):
            data = {"status": self.lyrics_status}
            if self.lyrics_status == "SUCCESS":
                data["response"] = {"lyricsData": [{"status": "complete", "text": "[Verse]\nhola", "title": "Hola"}]}
            return httpx.Response(200, json={"data": data})
        if path.endswith("/generate"):
            return httpx.Response(200, json={"code": 200, "data": {"taskId": "song-1"}})
        if path.endswith("/generate/record-info"):
            return httpx.Response(self.record_status_code, json=self.record)
        return httpx.Response(404, json={"msg": "not found"})


class AudioHost:
    def __init__(self, status_code=200, headers=None):
        self.status_code = status_code
        self.headers = headers or {}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, content=b"ID3-audio-bytes", headers=self.headers)


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def audio_host():
    return AudioHost()


@pytest.fixture
def store():
    return InMemorySurveyStore()


@pytest.fixture
def client(upstream, audio_host, store):
    app = create_app(
        _settings(),
        transport=httpx.MockTransport(upstream),
        download_transport=httpx.MockTransport(audio_host),
        survey_store=store,
    )
    with TestClient(app) as test_client:
        yield test_client


def test_generate_song_auto_lyrics_returns_task_id(client, upstream):
    response = client.post("/api/generate-song", json={"mode": "autoLyrics", "style": "Salsa", "title": ""})

    assert response.status_code == 202
    assert response.json() == {"taskId": "song-1"}
    generate = next(req for req in upstream.requests if req.url.path.endswith("/generate"))
    body = json.loads(generate.content)
    assert body["title"] == "Hola"
    assert body["prompt"] == "[Verse]\nhola"


def test_generate_song_lyrics_mode_requires_lyrics(client, upstream):
    response = client.post(
        "/api/generate-song",
        json={"mode": "lyrics", "style": "Rock", "title": "t", "lyrics": "  "},
    )

    assert response.status_code == 400
    assert "lyrics es requerido" in response.json()["error"]
    assert upstream.requests == []


def test_generate_song_invalid_body(client):
    response = client.post("/api/generate-song", json={"mode": "autoLyrics"})
    assert response.status_code == 400
    assert "style" in response.json()["error"]

    response = client.post("/api/generate-song", content=b"not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400


def test_generate_song_without_credential_makes_no_upstream_call(upstream, audio_host, store):
    app = create_app(
        _settings(MUSIC_API_KEY=None),
        transport=httpx.MockTransport(upstream),
        download_transport=httpx.MockTransport(audio_host),
        survey_store=store,
    )
    with TestClient(app) as test_client:
        response = test_client.post("/api/generate-song", json={"mode": "autoLyrics", "style": "Pop", "title": ""})

    assert response.status_code == 500
    assert response.json() == {"error": "Configura MUSIC_API_KEY"}
    assert upstream.requests == []


def test_generate_song_lyrics_timeout_is_504(client, upstream):
    upstream.lyrics_status = "PENDING"

    response = client.post("/api/generate-song", json={"mode": "autoLyrics", "style": "Pop", "title": ""})

    assert response.status_code == 504
    assert "PENDING" in response.json()["error"]
    polls = [req for req in upstream.requests if req.url.path.endswith("/lyrics/record-info")]
    assert len(polls) == 2


def test_generate_song_lyrics_failure_is_500(client, upstream):
    upstream.lyrics_status = "CALLBACK_EXCEPTION"

    response = client.post("/api/generate-song", json={"mode": "autoLyrics", "style": "Pop", "title": ""})

    assert response.status_code == 500
    assert response.json()["error"].startswith("Lyrics: tarea no finalizó en SUCCESS")


def test_get_task_requires_task_id(client):
    response = client.get("/api/get-task")
    assert response.status_code == 400
    assert response.json() == {"error": "taskId requerido"}


def test_get_task_returns_track(client, upstream):
    upstream.record = {
        "code": 200,
        "data": {
            "status": "SUCCESS",
            "response": {
                "sunoData": [
                    {
                        "audioUrl": "https://cdn/final.mp3",
                        "streamAudioUrl": "https://cdn/stream",
                        "imageUrl": "https://cdn/cover.jpg",
                        "title": "Hola",
                        "duration": 88.2,
                    }
                ]
            },
        },
    }

    response = client.get("/api/get-task", params={"taskId": "song-1"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "SUCCESS"
    assert payload["track"] == {
        "audioUrl": "https://cdn/final.mp3",
        "streamAudioUrl": "https://cdn/stream",
        "imageUrl": "https://cdn/cover.jpg",
        "title": "Hola",
        "duration": 88.2,
    }
    assert payload["raw"] == upstream.record
    assert upstream.requests[-1].url.params["taskId"] == "song-1"


def test_get_task_without_tracks(client, upstream):
    upstream.record = {"data": {"status": "PENDING"}}

    payload = client.get("/api/get-task", params={"taskId": "song-1"}).json()

    assert payload["status"] == "PENDING"
    assert payload["track"] is None


def test_task_status_metric_uses_bounded_labels(client, upstream):
    assert task_status_label(None) == "unknown"
    assert task_status_label("FIRST_SUCCESS") == "FIRST_SUCCESS"
    assert task_status_label("SENSITIVE_WORD_ERROR") == "SENSITIVE_WORD_ERROR"
    assert task_status_label("QUEUED_ON_NODE_42") == "other"

    before = REGISTRY.get_sample_value("goat_task_status_total", {"status": "other"}) or 0.0
    upstream.record = {"data": {"status": "QUEUED_ON_NODE_42"}}

    payload = client.get("/api/get-task", params={"taskId": "song-1"}).json()

    assert payload["status"] == "QUEUED_ON_NODE_42"
    assert REGISTRY.get_sample_value("goat_task_status_total", {"status": "other"}) == before + 1
    assert REGISTRY.get_sample_value("goat_task_status_total", {"status": "QUEUED_ON_NODE_42"}) is None


def test_get_task_forwards_upstream_status(client, upstream):
    upstream.record = {"msg": "task not found"}
    upstream.record_status_code = 404

    response = client.get("/api/get-task", params={"taskId": "missing"})

    assert response.status_code == 404
    assert response.json() == {"error": "task not found"}


def test_download_requires_src(client):
    response = client.get("/api/download")
    assert response.status_code == 400
    assert response.text == "Missing 'src' query param"


def test_download_streams_with_attachment_headers(client, audio_host):
    response = client.get(
        "/api/download",
        params={"src": "https://cdn.test/final.mp3", "filename": "mi canción (1).mp3"},
    )

    assert response.status_code == 200
    assert response.content == b"ID3-audio-bytes"
    assert response.headers["content-type"].startswith("audio/mpeg")
    assert response.headers["content-disposition"] == 'attachment; filename="mi_canci_n__1_.mp3"'
    assert response.headers["cache-control"] == "no-store"
    assert response.headers["access-control-expose-headers"] == "Content-Disposition"
    assert "authorization" not in audio_host.requests[0].headers


def test_download_default_filename_and_upstream_type(upstream, store):
    host = AudioHost(headers={"Content-Type": "audio/wav"})
    app = create_app(
        _settings(),
        transport=httpx.MockTransport(upstream),
        download_transport=httpx.MockTransport(host),
        survey_store=store,
    )
    with TestClient(app) as test_client:
        response = test_client.get("/api/download", params={"src": "https://cdn.test/a.wav"})

    assert response.headers["content-type"].startswith("audio/wav")
    assert response.headers["content-disposition"] == 'attachment; filename="track.mp3"'


def test_download_upstream_error_is_502(upstream, store):
    host = AudioHost(status_code=404)
    app = create_app(
        _settings(),
        transport=httpx.MockTransport(upstream),
        download_transport=httpx.MockTransport(host),
        survey_store=store,
    )
    with TestClient(app) as test_client:
        response = test_client.get("/api/download", params={"src": "https://cdn.test/gone.mp3"})

    assert response.status_code == 502
    assert response.text == "Upstream error (404)"


def test_download_link_builds_qr_target(client):
    response = client.get("/api/download-link", params={"src": "https://cdn.test/final.mp3", "title": "Noche GOAT"})

    assert response.status_code == 200
    assert response.json() == {
        "url": "http://testserver/api/download?src=https%3A%2F%2Fcdn.test%2Ffinal.mp3&filename=noche-goat.mp3",
        "filename": "noche-goat.mp3",
    }
    assert client.get("/api/download-link").status_code == 400


def test_audio_stream_releases_response_when_consumer_stops_early():
    async def body():
        yield b"one"
        yield b"two"
        yield b"three"

    proxy = AudioProxy(transport=httpx.MockTransport(lambda request: httpx.Response(200, content=body())))

    async def scenario():
        stream = await proxy.open("https://cdn.test/final.mp3")
        chunks = stream.chunks()
        first = await chunks.__anext__()
        await chunks.aclose()
        await proxy.aclose()
        return first, stream

    first, stream = asyncio.run(scenario())
    assert first == b"one"
    assert stream.response.is_closed is True


def test_survey_submission_flow(client, store):
    bad = client.post("/api/survey", json={"nombre": "A", "telefono": "12", "correo": "x@y.io"})
    assert bad.status_code == 400
    assert set(bad.json()["errors"]) == {"nombre", "telefono", "correo"}
    assert store.count() == 0

    good = client.post(
        "/api/survey",
        json={"nombre": "Ana María", "telefono": "(301) 555-1234", "correo": "ana@goat.co", "empresa": ""},
    )
    assert good.status_code == 201
    assert good.json()["id"]

    assert client.get("/api/survey/count").json() == {"count": 1}
    items = client.get("/api/survey").json()["items"]
    assert items[0]["nombre"] == "Ana María"
    assert "createdAt" in items[0]


def test_health_metrics_and_security_headers(client):
    health = client.get("/healthz")
    assert health.json()["ok"] is True
    assert health.json()["music_ready"] is True
    assert health.headers["x-content-type-options"] == "nosniff"
    assert health.headers["referrer-policy"] == "no-referrer"

    client.post("/api/generate-song", json={"mode": "lyrics", "style": "Rock", "title": "", "lyrics": ""})
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "goat_generation_requests_total" in metrics.text
    assert "process_uptime_seconds" in metrics.text
