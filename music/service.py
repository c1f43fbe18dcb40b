"""Song generation orchestration: lyrics task, payload shaping and submission."""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional, Union

from metrics import lyrics_poll_attempts

from .client import MusicApiClient
from .errors import LyricsGenerationFailure, MissingTaskIdError, PollTimeout, ValidationError
from .lyrics import (
    LYRICS_MAX_CHARS,
    LYRICS_MAX_LINES,
    PROMPT_MAX_CHARS,
    build_prompt,
    extract_lyrics,
)
from .polling import poll_until
from .schemas import (
    GeneratedLyrics,
    GenerateSongRequest,
    LyricsTask,
    SongTask,
    extract_task_id,
)

log = logging.getLogger("music.service")

DEFAULT_TITLE = "Mi Canción"

# Appended to every request to steer the generator toward short songs.
SHORT_FORM_NEGATIVE_TAGS: tuple[str, ...] = (
    "long intro",
    "repetitive chorus",
    "extended outro",
    "long instrumental break",
    "slow build-up",
)


def merge_negative_tags(user_tags: Union[str, Iterable[str], None]) -> str:
    """Union of user tags and :data:`SHORT_FORM_NEGATIVE_TAGS`, user tags first."""

    if user_tags is None:
        raw: list[str] = []
    elif isinstance(user_tags, str):
        raw = user_tags.split(",")
    else:
        raw = [str(tag) for tag in user_tags]
    merged: list[str] = []
    seen: set[str] = set()
    for tag in [*raw, *SHORT_FORM_NEGATIVE_TAGS]:
        text = " ".join(str(tag).split())
        if not text:
            continue
        lowered = text.lower()
        if lowered in seen:
            continue
        seen.add(lowered)
        merged.append(text)
    return ", ".join(merged)


class GenerationService:
    """Runs the server side of a generation: lyrics first, then the song task."""

    def __init__(
        self,
        client: MusicApiClient,
        *,
        default_model: str = "V4",
        lyrics_poll_attempts: int = 30,
        lyrics_poll_interval: float = 3.0,
        prompt_max_chars: int = PROMPT_MAX_CHARS,
        lyrics_max_lines: int = LYRICS_MAX_LINES,
        lyrics_max_chars: int = LYRICS_MAX_CHARS,
    ) -> None:
        self.client = client
        self.default_model = default_model
        self.lyrics_poll_attempts = lyrics_poll_attempts
        self.lyrics_poll_interval = lyrics_poll_interval
        self.prompt_max_chars = prompt_max_chars
        self.lyrics_max_lines = lyrics_max_lines
        self.lyrics_max_chars = lyrics_max_chars

    @classmethod
    def from_settings(cls, client: MusicApiClient, settings: Any) -> "GenerationService":
        return cls(
            client,
            default_model=settings.MUSIC_DEFAULT_MODEL,
            lyrics_poll_attempts=settings.LYRICS_POLL_ATTEMPTS,
            lyrics_poll_interval=settings.LYRICS_POLL_INTERVAL_MS / 1000.0,
            prompt_max_chars=settings.PROMPT_MAX_CHARS,
            lyrics_max_lines=settings.LYRICS_MAX_LINES,
            lyrics_max_chars=settings.LYRICS_MAX_CHARS,
        )

    # ------------------------------------------------------------------ lyrics
    async def generate_lyrics(self, prompt: str) -> GeneratedLyrics:
        start = await self.client.create_lyrics_task(prompt)
        task_id = extract_task_id(start)
        if not task_id:
            raise MissingTaskIdError(
                "Lyrics: no se recibió taskId en POST /lyrics",
                payload=start,
            )

        outcome = await poll_until(
            lambda: self.client.get_lyrics_record(task_id),
            lambda record: LyricsTask.from_record(task_id, record).terminal,
            max_attempts=self.lyrics_poll_attempts,
            interval=self.lyrics_poll_interval,
            logger=log,
            log_context={"taskId": task_id, "phase": "lyrics"},
        )
        lyrics_poll_attempts.observe(outcome.attempts)
        record: Mapping[str, Any] = outcome.value or {}
        task = LyricsTask.from_record(task_id, record)

        if outcome.timed_out:
            raise PollTimeout(
                f"Lyrics: tiempo de espera agotado. Estado: {task.status}",
                last_status=task.status,
                attempts=outcome.attempts,
                payload=record,
            )
        if not task.succeeded:
            detail = task.error_message or f"Estado: {task.status}"
            log.error(
                "lyrics task failed",
                extra={"meta": {"taskId": task_id, "status": task.status, "record": record}},
            )
            raise LyricsGenerationFailure(
                f"Lyrics: tarea no finalizó en SUCCESS. {detail}",
                task_status=task.status,
                payload=record,
            )

        lyrics = extract_lyrics(
            record,
            max_lines=self.lyrics_max_lines,
            max_chars=self.lyrics_max_chars,
        )
        log.info(
            "lyrics ready",
            extra={
                "meta": {
                    "taskId": task_id,
                    "attempts": outcome.attempts,
                    "chars": len(lyrics.text),
                    "title": lyrics.title,
                }
            },
        )
        return lyrics

    # ------------------------------------------------------------------ generate
    def build_generation_payload(
        self,
        request: GenerateSongRequest,
        *,
        lyrics: str,
        title: str,
    ) -> dict[str, Any]:
        return {
            "customMode": True,
            "instrumental": False,
            "model": request.model or self.default_model,
            "negativeTags": merge_negative_tags(request.negative_tags),
            "style": request.style.strip(),
            "title": title,
            "prompt": lyrics,
            "callBackUrl": self.client.config.callback_url,
        }

    async def submit(self, payload: Mapping[str, Any]) -> str:
        self.client.require_credential()
        response = await self.client.create_generation(payload)
        task_id = extract_task_id(response)
        if not task_id:
            vendor_message = response.get("msg") if isinstance(response, Mapping) else None
            raise MissingTaskIdError(
                str(vendor_message or "No se recibió taskId de generate"),
                payload=response,
            )
        log.info("generation submitted", extra={"meta": {"taskId": task_id, "model": payload.get("model")}})
        return task_id

    async def generate_song(self, request: GenerateSongRequest) -> str:
        """Resolve lyrics and title for ``request`` and submit it; return the task id."""

        self.client.require_credential()
        title: Optional[str] = request.title.strip() or None

        if request.mode == "autoLyrics":
            prompt = build_prompt(request.theme_prompt, request.style, max_chars=self.prompt_max_chars)
            generated = await self.generate_lyrics(prompt)
            lyrics = generated.text
            title = title or generated.title or DEFAULT_TITLE
        else:
            lyrics = (request.lyrics or "").strip()
            if not lyrics:
                raise ValidationError("lyrics es requerido en modo lyrics")
            title = title or DEFAULT_TITLE

        payload = self.build_generation_payload(request, lyrics=lyrics, title=title)
        return await self.submit(payload)

    # ------------------------------------------------------------------ status
    async def get_task(self, task_id: str) -> tuple[SongTask, Mapping[str, Any]]:
        record = await self.client.get_generation_record(task_id)
        return SongTask.from_record(task_id, record), record


__all__ = [
    "DEFAULT_TITLE",
    "GenerationService",
    "SHORT_FORM_NEGATIVE_TAGS",
    "merge_negative_tags",
]
