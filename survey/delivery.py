"""Hands the finished song to the survey screen as a download/QR target.

The survey screen may open before the song is ready. :class:`TrackWatcher`
keeps polling ``/api/get-task`` at a slow pace until the final audio exists,
and :func:`download_url` builds the ``/api/download`` link encoded in the QR.
"""
from __future__ import annotations

import asyncio
import logging
import re
import unicodedata
from dataclasses import dataclass, replace
from typing import Any, Optional
from urllib.parse import quote

import httpx

from kiosk.api import GenerationFailed, KioskApiClient, TaskUpdate
from music.polling import poll_until

log = logging.getLogger("survey.delivery")

DEFAULT_SLUG = "cancion"
SURVEY_POLL_INTERVAL = 6.0
SURVEY_POLL_BUDGET = 600.0

_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")
# characters encodeURIComponent leaves alone
_URI_COMPONENT_SAFE = "!~*'()"


def slugify(title: Optional[str]) -> str:
    """``"Canción de Año!"`` -> ``"cancion-de-ano"``; blank input gives ``cancion``."""

    decomposed = unicodedata.normalize("NFD", (title or "").lower())
    plain = "".join(char for char in decomposed if not unicodedata.combining(char))
    return _NON_SLUG_RE.sub("-", plain).strip("-") or DEFAULT_SLUG


def download_url(base: str, src: str, title: Optional[str] = None) -> str:
    filename = quote(f"{slugify(title)}.mp3", safe=_URI_COMPONENT_SAFE)
    encoded_src = quote(src, safe=_URI_COMPONENT_SAFE)
    return f"{base.rstrip('/')}/api/download?src={encoded_src}&filename={filename}"


@dataclass(frozen=True)
class Delivery:
    """What the survey screen shows for one task."""

    task_id: Optional[str]
    status: str
    audio_url: Optional[str] = None
    is_final: bool = False
    download_url: Optional[str] = None


class TrackWatcher:
    def __init__(
        self,
        api: KioskApiClient,
        public_base: str,
        *,
        interval: float = SURVEY_POLL_INTERVAL,
        budget: float = SURVEY_POLL_BUDGET,
        max_attempts: Optional[int] = None,
    ) -> None:
        self._api = api
        self._public_base = public_base
        self._interval = interval
        if max_attempts is None:
            max_attempts = int(budget // interval) if interval > 0 else 1
        self._max_attempts = max(1, max_attempts)

    @classmethod
    def from_settings(cls, api: KioskApiClient, settings: Any, **kwargs: Any) -> "TrackWatcher":
        return cls(
            api,
            settings.PUBLIC_BASE_URL or settings.KIOSK_API_BASE,
            interval=settings.SURVEY_POLL_INTERVAL_MS / 1000.0,
            budget=settings.SURVEY_POLL_BUDGET_MS / 1000.0,
            **kwargs,
        )

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def _finish(self, delivery: Delivery, audio_url: str, title: Optional[str]) -> Delivery:
        return replace(
            delivery,
            status="SUCCESS",
            audio_url=audio_url,
            is_final=True,
            download_url=download_url(self._public_base, audio_url, title),
        )

    async def watch(
        self,
        task_id: Optional[str],
        *,
        src: Optional[str] = None,
        title: Optional[str] = None,
        final: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Delivery:
        """Resolve the final track for ``task_id``.

        ``src``/``final`` are what the kiosk already knew when it opened the
        survey. A final ``src`` needs no polling; otherwise the task is polled
        until SUCCESS with an audio URL, the budget runs out or ``cancel_event``
        is set. Transient errors are skipped. A preview URL is kept as
        ``audio_url`` but never turned into a download link.
        """

        delivery = Delivery(task_id=task_id, status="SUCCESS" if final else "PENDING", audio_url=src or None)
        if final and src:
            return self._finish(delivery, src, title)
        if not task_id:
            return delivery

        async def fetch() -> Optional[TaskUpdate]:
            nonlocal delivery
            try:
                update = await self._api.get_task(task_id)
            except (GenerationFailed, httpx.HTTPError) as exc:
                log.debug("survey poll failed", extra={"meta": {"task_id": task_id, "error": str(exc)}})
                return None
            delivery = replace(
                delivery,
                status=update.status,
                audio_url=delivery.audio_url or update.stream_audio_url,
            )
            return update

        outcome = await poll_until(
            fetch,
            lambda update: update is not None and update.is_final,
            max_attempts=self._max_attempts,
            interval=self._interval,
            cancel_event=cancel_event,
            logger=log,
            log_context={"task_id": task_id, "screen": "survey"},
        )
        if outcome.terminal and outcome.value is not None:
            log.info("survey track ready", extra={"meta": {"task_id": task_id, "attempts": outcome.attempts}})
            return self._finish(delivery, outcome.value.audio_url, title or outcome.value.title)
        return delivery


__all__ = [
    "DEFAULT_SLUG",
    "Delivery",
    "SURVEY_POLL_BUDGET",
    "SURVEY_POLL_INTERVAL",
    "TrackWatcher",
    "download_url",
    "slugify",
]
