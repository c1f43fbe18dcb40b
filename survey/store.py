"""Storage for survey records (the ``encuestas`` collection)."""
from __future__ import annotations

import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

log = logging.getLogger("survey.store")

COLLECTION = "encuestas"


class SurveyForm(BaseModel):
    """Fields captured by the kiosk form."""

    model_config = ConfigDict(extra="ignore")

    nombre: str = ""
    telefono: str = ""
    correo: str = ""
    empresa: str = ""
    cargo: str = ""

    @field_validator("nombre", "telefono", "correo", "empresa", "cargo", mode="before")
    def _strip(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()


class SurveyRecord(SurveyForm):
    """Stored survey entry."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    created_at: datetime = Field(alias="createdAt")


class SurveyStore(ABC):
    """Interface of the survey persistence collaborator."""

    @abstractmethod
    def create(self, form: SurveyForm) -> SurveyRecord:
        """Persist ``form`` stamped with the current time."""

    @abstractmethod
    def list_ordered_by_created_at(self, limit: Optional[int] = None) -> List[SurveyRecord]:
        """Return records newest first."""

    @abstractmethod
    def count(self) -> int:
        """Return the number of stored records."""


def _new_record(form: SurveyForm) -> SurveyRecord:
    return SurveyRecord(
        id=uuid.uuid4().hex,
        createdAt=datetime.now(timezone.utc),
        **form.model_dump(),
    )


class InMemorySurveyStore(SurveyStore):
    """Thread-safe in-memory implementation of :class:`SurveyStore`."""

    def __init__(self) -> None:
        self._records: List[SurveyRecord] = []
        self._lock = threading.RLock()

    def create(self, form: SurveyForm) -> SurveyRecord:
        record = _new_record(form)
        with self._lock:
            self._records.append(record)
        return record

    def list_ordered_by_created_at(self, limit: Optional[int] = None) -> List[SurveyRecord]:
        with self._lock:
            ordered = sorted(self._records, key=lambda item: item.created_at, reverse=True)
        if limit is not None:
            ordered = ordered[: max(0, limit)]
        return ordered

    def count(self) -> int:
        with self._lock:
            return len(self._records)


class RedisSurveyStore(SurveyStore):
    """Records as JSON strings plus a sorted-set index scored by creation time."""

    def __init__(self, client: Any, *, prefix: str) -> None:
        self._redis = client
        self._prefix = f"{prefix}:{COLLECTION}"
        self._index_key = f"{self._prefix}:index"

    def _record_key(self, record_id: str) -> str:
        return f"{self._prefix}:{record_id}"

    def create(self, form: SurveyForm) -> SurveyRecord:
        record = _new_record(form)
        payload = record.model_dump_json(by_alias=True)
        pipe = self._redis.pipeline()
        pipe.set(self._record_key(record.id), payload)
        pipe.zadd(self._index_key, {record.id: record.created_at.timestamp()})
        pipe.execute()
        return record

    def list_ordered_by_created_at(self, limit: Optional[int] = None) -> List[SurveyRecord]:
        if limit is not None and limit <= 0:
            return []
        end = -1 if limit is None else limit - 1
        ids = self._redis.zrevrange(self._index_key, 0, end)
        if not ids:
            return []
        keys = [self._record_key(_decode(item)) for item in ids]
        records: List[SurveyRecord] = []
        for raw in self._redis.mget(keys):
            if raw is None:
                continue
            records.append(SurveyRecord.model_validate(json.loads(_decode(raw))))
        return records

    def count(self) -> int:
        return int(self._redis.zcard(self._index_key))


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def build_survey_store(settings: Any) -> SurveyStore:
    """Redis-backed store when ``REDIS_URL`` is configured, in-memory otherwise."""

    if settings.REDIS_URL:
        import redis

        log.info("survey store: redis", extra={"meta": {"prefix": settings.REDIS_PREFIX}})
        return RedisSurveyStore(redis.from_url(settings.REDIS_URL), prefix=settings.REDIS_PREFIX)
    log.info("survey store: memory")
    return InMemorySurveyStore()


__all__ = [
    "COLLECTION",
    "InMemorySurveyStore",
    "RedisSurveyStore",
    "SurveyForm",
    "SurveyRecord",
    "SurveyStore",
    "build_survey_store",
]
