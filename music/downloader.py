"""Streaming proxy that re-serves finished audio as a file download."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import httpx

log = logging.getLogger("music.downloader")

DEFAULT_FILENAME = "track.mp3"
DEFAULT_CONTENT_TYPE = "audio/mpeg"

_UNSAFE_FILENAME_RE = re.compile(r"[^\w.-]", re.ASCII)


class DownloadError(RuntimeError):
    """Raised when the audio source cannot be streamed."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


def sanitize_filename(filename: Optional[str]) -> str:
    return _UNSAFE_FILENAME_RE.sub("_", filename or DEFAULT_FILENAME)


@dataclass
class AudioStream:
    """Open upstream response; iterate ``chunks()`` then call ``aclose()``."""

    response: httpx.Response
    content_type: str

    async def chunks(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self.response.aiter_bytes():
                if chunk:
                    yield chunk
        finally:
            await self.response.aclose()

    async def aclose(self) -> None:
        await self.response.aclose()


class AudioProxy:
    """Opens audio URLs without any API credentials attached."""

    def __init__(
        self,
        *,
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            timeout=timeout or httpx.Timeout(20.0, read=120.0),
            transport=transport,
            follow_redirects=True,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def open(self, src: str) -> AudioStream:
        try:
            request = self._client.build_request("GET", src, headers={"Cache-Control": "no-store"})
            response = await self._client.send(request, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            log.warning("audio source unreachable", extra={"meta": {"src": src, "error": str(exc)}})
            raise DownloadError("Upstream error (network)") from exc
        if not response.is_success:
            await response.aclose()
            log.warning(
                "audio source rejected",
                extra={"meta": {"src": src, "status": response.status_code}},
            )
            raise DownloadError(f"Upstream error ({response.status_code})", status=response.status_code)
        content_type = response.headers.get("content-type") or DEFAULT_CONTENT_TYPE
        return AudioStream(response=response, content_type=content_type)


__all__ = [
    "AudioProxy",
    "AudioStream",
    "DEFAULT_FILENAME",
    "DownloadError",
    "sanitize_filename",
]
