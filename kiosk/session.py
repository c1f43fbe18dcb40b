"""Kiosk flow: pick a genre, submit, poll the song and hand it to the player."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import httpx

from music.polling import poll_until
from music.schemas import SONG_FAILURE_STATUSES

from .api import GenerationFailed, KioskApiClient, TaskUpdate
from .playback import PlaybackCoordinator

log = logging.getLogger("kiosk.session")

DEFAULT_TITLE = "Mi Canción"


class Step(str, Enum):
    START = "start"
    GENRE = "genre"
    LOADING = "loading"
    PLAYER = "player"


@dataclass(frozen=True)
class SessionSnapshot:
    step: Step
    style: str
    theme_prompt: str
    task_id: Optional[str]
    status: str
    stream_url: Optional[str]
    final_url: Optional[str]
    title: str
    error: Optional[str]
    timed_out: bool


class SongSession:
    """One visitor's pass through the kiosk screens."""

    def __init__(
        self,
        api: KioskApiClient,
        coordinator_factory: Callable[[], PlaybackCoordinator],
        *,
        poll_interval: float = 2.0,
        max_attempts: int = 150,
        auto_proceed: float = 20.0,
        listener: Optional[Callable[[SessionSnapshot], None]] = None,
    ) -> None:
        self._api = api
        self._coordinator_factory = coordinator_factory
        self._poll_interval = poll_interval
        self._max_attempts = max_attempts
        self._auto_proceed = auto_proceed
        self._listener = listener

        self._coordinator: Optional[PlaybackCoordinator] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._auto_task: Optional[asyncio.Task] = None
        self._cancel_event: Optional[asyncio.Event] = None
        self._auto_elapsed = False
        self._run_token = 0
        self._reset()
        self.step = Step.START

    @classmethod
    def from_settings(
        cls,
        api: KioskApiClient,
        coordinator_factory: Callable[[], PlaybackCoordinator],
        settings: Any,
        **kwargs: Any,
    ) -> "SongSession":
        return cls(
            api,
            coordinator_factory,
            poll_interval=settings.SONG_POLL_INTERVAL_MS / 1000.0,
            max_attempts=settings.SONG_POLL_MAX_ATTEMPTS,
            auto_proceed=settings.AUTO_PROCEED_MS / 1000.0,
            **kwargs,
        )

    def _reset(self) -> None:
        self.style = ""
        self.theme_prompt = ""
        self._clear_generation()

    def _clear_generation(self) -> None:
        self.task_id: Optional[str] = None
        self.status = "—"
        self.stream_url: Optional[str] = None
        self.final_url: Optional[str] = None
        self.title = DEFAULT_TITLE
        self.error: Optional[str] = None
        self.timed_out = False
        self._auto_elapsed = False

    @property
    def coordinator(self) -> Optional[PlaybackCoordinator]:
        return self._coordinator

    @property
    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            step=self.step,
            style=self.style,
            theme_prompt=self.theme_prompt,
            task_id=self.task_id,
            status=self.status,
            stream_url=self.stream_url,
            final_url=self.final_url,
            title=self.title,
            error=self.error,
            timed_out=self.timed_out,
        )

    def _notify(self) -> None:
        if self._listener:
            self._listener(self.snapshot)

    def begin(self, theme_prompt: Optional[str] = None) -> None:
        """Leave the start screen, optionally with a theme typed there."""

        if theme_prompt and theme_prompt.strip():
            self.theme_prompt = theme_prompt.strip()
        self.step = Step.GENRE
        self._notify()

    def back(self) -> None:
        if self.step is Step.GENRE:
            self.step = Step.START
            self._notify()

    def choose_genre(self, style: str) -> None:
        self.style = (style or "").strip()
        self._notify()

    def set_theme(self, prompt: Optional[str]) -> None:
        self.theme_prompt = (prompt or "").strip()
        self._notify()

    async def start(self) -> bool:
        """Submit the generation and start polling; False when submission failed."""

        if not self.style:
            self.error = "Selecciona un género"
            self._notify()
            return False
        await self._stop_background()
        run = self._run_token
        self._clear_generation()
        self.step = Step.LOADING
        self._notify()

        try:
            task_id = await self._api.start_generation(self.style, self.theme_prompt or None)
        except (GenerationFailed, httpx.HTTPError) as exc:
            if run != self._run_token:
                return False
            log.warning("generation submit failed", extra={"meta": {"error": str(exc)}})
            self.error = str(exc) or "Error"
            self.step = Step.GENRE
            self._notify()
            return False
        if run != self._run_token:
            # navigated away while the submission was in flight
            log.info("generation submitted after cancel", extra={"meta": {"task_id": task_id}})
            return False

        self.task_id = task_id
        self.status = "PENDING"
        self._coordinator = self._coordinator_factory()
        self._cancel_event = asyncio.Event()
        self._poll_task = asyncio.create_task(self._run_poll(task_id, self._cancel_event))
        self._auto_task = asyncio.create_task(self._run_auto_proceed())
        self._notify()
        return True

    async def wait(self) -> None:
        """Wait until the song poller finishes."""

        if self._poll_task is not None:
            await asyncio.gather(self._poll_task, return_exceptions=True)

    async def _fetch(self, task_id: str) -> Optional[TaskUpdate]:
        try:
            update = await self._api.get_task(task_id)
        except httpx.HTTPError as exc:
            log.debug("task poll failed", extra={"meta": {"task_id": task_id, "error": str(exc)}})
            return None
        await self._apply(update)
        return update

    @staticmethod
    def _is_terminal(update: Optional[TaskUpdate]) -> bool:
        if update is None:
            return False
        return update.is_final or update.status in SONG_FAILURE_STATUSES

    async def _apply(self, update: TaskUpdate) -> None:
        self.status = update.status
        coordinator = self._coordinator
        if update.stream_audio_url and not self.final_url:
            self.stream_url = update.stream_audio_url
            if coordinator is not None:
                await coordinator.offer_stream(update.stream_audio_url)
        if update.is_final:
            self.final_url = update.audio_url
            if update.title:
                self.title = update.title
            if coordinator is not None:
                await coordinator.offer_final(update.audio_url)
            self.step = Step.PLAYER
            self._stop_auto_proceed()
        elif self._auto_elapsed and self.step is Step.LOADING and self.stream_url:
            self.step = Step.PLAYER
        self._notify()

    async def _run_poll(self, task_id: str, cancel_event: asyncio.Event) -> None:
        try:
            outcome = await poll_until(
                lambda: self._fetch(task_id),
                self._is_terminal,
                max_attempts=self._max_attempts,
                interval=self._poll_interval,
                cancel_event=cancel_event,
                logger=log,
                log_context={"task_id": task_id},
            )
        except GenerationFailed as exc:
            log.error("task poll aborted", extra={"meta": {"task_id": task_id, "error": str(exc)}})
            self._stop_auto_proceed()
            self._teardown_player()
            self.error = str(exc)
            self.step = Step.GENRE
            self._notify()
            return

        if outcome.cancelled:
            return
        if outcome.timed_out:
            log.warning(
                "song poll timed out",
                extra={"meta": {"task_id": task_id, "status": self.status, "attempts": outcome.attempts}},
            )
            self.timed_out = True
            self._notify()
            return
        update = outcome.value
        if update is not None and not update.is_final:
            self._stop_auto_proceed()
            self._teardown_player()
            self.error = f"La generación falló (Estado: {update.status})"
            self.step = Step.GENRE
            self._notify()

    async def _run_auto_proceed(self) -> None:
        await asyncio.sleep(self._auto_proceed)
        self._auto_elapsed = True
        if self.step is Step.LOADING and (self.stream_url or self.final_url):
            log.info("auto proceed to player", extra={"meta": {"task_id": self.task_id}})
            self.step = Step.PLAYER
            self._notify()

    def _stop_auto_proceed(self) -> None:
        task = self._auto_task
        self._auto_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _teardown_player(self) -> None:
        if self._coordinator is not None:
            self._coordinator.teardown()
            self._coordinator = None

    async def _stop_background(self) -> None:
        self._run_token += 1
        if self._cancel_event is not None:
            self._cancel_event.set()
        self._stop_auto_proceed()
        task = self._poll_task
        self._poll_task = None
        if task is not None and not task.done():
            # in-flight request is aborted along with the task
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._teardown_player()

    async def cancel(self) -> None:
        """Navigate away from loading/player back to the genre screen."""

        await self._stop_background()
        self.step = Step.GENRE
        self._notify()

    async def restart(self) -> None:
        await self._stop_background()
        self._reset()
        self.step = Step.START
        self._notify()


__all__ = ["DEFAULT_TITLE", "SessionSnapshot", "SongSession", "Step"]
