"""HTTP client wrapper for the music generation API."""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, MutableMapping, Optional

import httpx

from metrics import upstream_latency_seconds, upstream_requests_total

from .errors import ConfigurationError, MusicAPIError, UpstreamHTTPError

log = logging.getLogger("music.client")

_DEFAULT_BASE = "https://api.api.box/api/v1"

LYRICS_PATH = "/lyrics"
LYRICS_INFO_PATH = "/lyrics/record-info"
GENERATE_PATH = "/generate"
GENERATE_INFO_PATH = "/generate/record-info"


@dataclass(slots=True)
class MusicApiConfig:
    """Connection settings for :class:`MusicApiClient`."""

    api_key: Optional[str]
    base_url: str = _DEFAULT_BASE
    callback_url: str = "https://example.com/callback"
    timeout_connect: float = 10.0
    timeout_read: float = 60.0
    timeout_write: float = 30.0
    timeout_pool: float = 10.0

    @classmethod
    def from_settings(cls, settings: Any) -> "MusicApiConfig":
        return cls(
            api_key=settings.MUSIC_API_KEY,
            base_url=settings.MUSIC_API_BASE,
            callback_url=settings.MUSIC_CALLBACK_URL,
            timeout_connect=settings.HTTP_TIMEOUT_CONNECT,
            timeout_read=settings.HTTP_TIMEOUT_READ,
            timeout_write=settings.HTTP_TIMEOUT_WRITE,
            timeout_pool=settings.HTTP_TIMEOUT_POOL,
        )

    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self.timeout_connect,
            read=self.timeout_read,
            write=self.timeout_write,
            pool=self.timeout_pool,
        )


def _payload_message(payload: Any) -> Optional[str]:
    if not isinstance(payload, Mapping):
        return None
    for key in ("msg", "error", "message"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class MusicApiClient:
    """Thin async wrapper around :mod:`httpx` for the lyrics and generate endpoints."""

    def __init__(
        self,
        config: MusicApiConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config
        self.base_url = (config.base_url or _DEFAULT_BASE).rstrip("/") + "/"
        if not config.api_key:
            log.warning("MusicApiClient initialized without API key; requests will fail")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=config.timeout(),
            transport=transport,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "MusicApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ helpers
    def require_credential(self) -> str:
        token = (self.config.api_key or "").strip()
        if not token:
            raise ConfigurationError("Configura MUSIC_API_KEY")
        return token

    def _headers(self, token: str) -> MutableMapping[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

    def _log_request(
        self,
        op: str,
        *,
        level: int,
        method: str,
        url: str,
        status: Any,
        duration_ms: float,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        fields: MutableMapping[str, Any] = {
            "method": method.upper(),
            "url": url,
            "status": status,
            "ms": round(duration_ms, 3),
        }
        if context:
            for key, value in context.items():
                if value is not None and key not in fields:
                    fields[key] = value
        message = " ".join(f"{key}={value}" for key, value in fields.items() if value not in (None, ""))
        log.log(level, "[MUSIC][%s] %s", op, message, extra={"meta": {"op": op, **fields}})

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_payload: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
        op: str = "request",
        log_context: Optional[Mapping[str, Any]] = None,
    ) -> Mapping[str, Any]:
        token = self.require_credential()
        url = path.lstrip("/")
        full_url = f"{self.base_url}{url}"
        start_ts = time.monotonic()
        try:
            response = await self._client.request(
                method.upper(),
                url,
                headers=self._headers(token),
                json=json_payload,
                params=params,
            )
        except httpx.HTTPError as exc:
            duration_ms = max(0.0, (time.monotonic() - start_ts) * 1000.0)
            upstream_requests_total.labels(op=op, result="network_error").inc()
            context = dict(log_context or {})
            context.setdefault("error", str(exc) or exc.__class__.__name__)
            self._log_request(
                op,
                level=logging.ERROR,
                method=method,
                url=full_url,
                status="network_error",
                duration_ms=duration_ms,
                context=context,
            )
            raise

        duration_ms = max(0.0, (time.monotonic() - start_ts) * 1000.0)
        upstream_latency_seconds.labels(op=op).observe(duration_ms / 1000.0)
        status = response.status_code
        try:
            payload: Any = response.json() if response.content else {}
        except ValueError as exc:
            upstream_requests_total.labels(op=op, result="invalid_json").inc()
            self._log_request(
                op,
                level=logging.ERROR,
                method=method,
                url=full_url,
                status=status,
                duration_ms=duration_ms,
                context={**dict(log_context or {}), "error": "invalid json"},
            )
            if response.is_success:
                raise MusicAPIError("Invalid JSON from music API", status=status) from exc
            raise UpstreamHTTPError(f"HTTP {status}", status=status) from exc
        if not isinstance(payload, Mapping):
            payload = {"data": payload}

        if not response.is_success:
            message = _payload_message(payload) or json.dumps(payload, ensure_ascii=False)
            upstream_requests_total.labels(op=op, result=f"http_{status}").inc()
            self._log_request(
                op,
                level=logging.WARNING if status < 500 else logging.ERROR,
                method=method,
                url=full_url,
                status=status,
                duration_ms=duration_ms,
                context={**dict(log_context or {}), "error": message},
            )
            raise UpstreamHTTPError(message, status=status, payload=payload)

        upstream_requests_total.labels(op=op, result="ok").inc()
        self._log_request(
            op,
            level=logging.INFO,
            method=method,
            url=full_url,
            status=status,
            duration_ms=duration_ms,
            context={**dict(log_context or {}), "msg": _payload_message(payload)},
        )
        return payload

    # ------------------------------------------------------------------ public API
    async def create_lyrics_task(self, prompt: str) -> Mapping[str, Any]:
        body = {"prompt": prompt, "callBackUrl": self.config.callback_url}
        return await self._request(
            "POST",
            LYRICS_PATH,
            json_payload=body,
            op="lyrics",
            log_context={"prompt_len": len(prompt)},
        )

    async def get_lyrics_record(self, task_id: str) -> Mapping[str, Any]:
        return await self._request(
            "GET",
            LYRICS_INFO_PATH,
            params={"taskId": str(task_id)},
            op="lyrics_info",
            log_context={"taskId": task_id},
        )

    async def create_generation(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        return await self._request(
            "POST",
            GENERATE_PATH,
            json_payload=dict(payload),
            op="generate",
            log_context={"model": payload.get("model"), "style": payload.get("style")},
        )

    async def get_generation_record(self, task_id: str) -> Mapping[str, Any]:
        return await self._request(
            "GET",
            GENERATE_INFO_PATH,
            params={"taskId": str(task_id)},
            op="generate_info",
            log_context={"taskId": task_id},
        )


__all__ = [
    "GENERATE_INFO_PATH",
    "GENERATE_PATH",
    "LYRICS_INFO_PATH",
    "LYRICS_PATH",
    "MusicApiClient",
    "MusicApiConfig",
]
