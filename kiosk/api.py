"""HTTP client the kiosk uses to talk to the web service."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

log = logging.getLogger("kiosk.api")

GENERATION_FAILED = "generation failed"


class GenerationFailed(RuntimeError):
    """Shown to the user when a generation cannot go on."""


@dataclass(frozen=True)
class TaskUpdate:
    """One ``/api/get-task`` reply as the kiosk sees it."""

    status: str
    audio_url: Optional[str] = None
    stream_audio_url: Optional[str] = None
    title: Optional[str] = None
    image_url: Optional[str] = None

    @property
    def is_final(self) -> bool:
        return self.status == "SUCCESS" and bool(self.audio_url)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TaskUpdate":
        track = payload.get("track") or {}
        if not isinstance(track, dict):
            track = {}
        return cls(
            status=str(payload.get("status") or "—"),
            audio_url=track.get("audioUrl") or None,
            stream_audio_url=track.get("streamAudioUrl") or None,
            title=track.get("title") or None,
            image_url=track.get("imageUrl") or None,
        )


def _json(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise GenerationFailed(GENERATION_FAILED) from exc
    if not isinstance(data, dict):
        raise GenerationFailed(GENERATION_FAILED)
    return data


class KioskApiClient:
    """Thin wrapper over ``/api/generate-song`` and ``/api/get-task``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> "KioskApiClient":
        return cls(settings.KIOSK_API_BASE, timeout=settings.HTTP_TIMEOUT_READ, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "KioskApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def start_generation(self, style: str, theme_prompt: Optional[str] = None) -> str:
        """Submit an auto-lyrics generation and return its task id."""

        body: Dict[str, Any] = {"mode": "autoLyrics", "style": style, "title": ""}
        if theme_prompt and theme_prompt.strip():
            body["themePrompt"] = theme_prompt.strip()
        response = await self._client.post("/api/generate-song", json=body)
        if not response.is_success:
            try:
                message = _json(response).get("error")
            except GenerationFailed:
                message = None
            raise GenerationFailed(message or "Falló la generación")
        data = _json(response)
        task_id = data.get("taskId")
        if not task_id:
            raise GenerationFailed("Falló la generación")
        log.info("generation submitted", extra={"meta": {"task_id": task_id, "style": style}})
        return str(task_id)

    async def get_task(self, task_id: str) -> TaskUpdate:
        """Fetch the current task state.

        Network errors propagate as ``httpx.HTTPError``; a non-2xx reply raises
        ``httpx.HTTPStatusError``. Both are transient for the caller. A body
        that cannot be parsed raises :class:`GenerationFailed`.
        """

        response = await self._client.get("/api/get-task", params={"taskId": task_id})
        if not response.is_success:
            raise httpx.HTTPStatusError(
                f"Error en polling (HTTP {response.status_code})",
                request=response.request,
                response=response,
            )
        return TaskUpdate.from_payload(_json(response))


__all__ = ["GENERATION_FAILED", "GenerationFailed", "KioskApiClient", "TaskUpdate"]
