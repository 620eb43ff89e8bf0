"""Caption storage backends.

Classes:
    - CaptionStore: append/query contract over caption records and session summaries
    - MemoryCaptionStore: in-process store for demo deployments and tests
    - BeanieCaptionStore: MongoDB store through Beanie documents
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Protocol

from loguru import logger
from pymongo.errors import DuplicateKeyError, PyMongoError

from livecast.domain.captioning.errors import TransientServiceError
from livecast.domain.captioning.models import CaptionEvent, SessionSummary, utcnow
from livecast.schemas.caption import CaptionRecord
from livecast.schemas.session_record import SessionRecord


class CaptionStore(Protocol):
    async def append_caption(self, event: CaptionEvent) -> bool:
        """Store one caption. Returns False if (session_id, sequence) is already stored."""
        ...

    async def query_captions(
        self,
        org_id: str,
        start: datetime,
        end: datetime,
        session_id: str | None = None,
    ) -> list[CaptionEvent]: ...

    async def list_session_captions(self, session_id: str) -> list[CaptionEvent]: ...

    async def save_summary(self, summary: SessionSummary) -> None: ...

    async def get_summary(self, session_id: str) -> SessionSummary | None: ...


class MemoryCaptionStore:
    def __init__(self) -> None:
        self._captions: dict[tuple[str, int], CaptionEvent] = {}
        self._summaries: dict[str, SessionSummary] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._captions)

    async def append_caption(self, event: CaptionEvent) -> bool:
        key = (event.session_id, event.sequence)
        async with self._lock:
            if key in self._captions:
                return False
            self._captions[key] = event
            return True

    async def query_captions(
        self,
        org_id: str,
        start: datetime,
        end: datetime,
        session_id: str | None = None,
    ) -> list[CaptionEvent]:
        events = [
            event
            for event in self._captions.values()
            if event.org_id == org_id
            and start <= event.timestamp <= end
            and (session_id is None or event.session_id == session_id)
        ]
        return sorted(events, key=lambda e: (e.timestamp, e.session_id, e.sequence))

    async def list_session_captions(self, session_id: str) -> list[CaptionEvent]:
        events = [e for (sid, _), e in self._captions.items() if sid == session_id]
        return sorted(events, key=lambda e: e.sequence)

    async def save_summary(self, summary: SessionSummary) -> None:
        self._summaries[summary.session_id] = summary

    async def get_summary(self, session_id: str) -> SessionSummary | None:
        return self._summaries.get(session_id)


class BeanieCaptionStore:
    """MongoDB-backed store. Requires `init_beanie_odm` to have run."""

    async def append_caption(self, event: CaptionEvent) -> bool:
        try:
            await CaptionRecord.from_event(event).insert()
        except DuplicateKeyError:
            logger.debug(f"Caption {event.session_id}#{event.sequence} already archived")
            return False
        except PyMongoError as exc:
            raise TransientServiceError(f"MongoDB insert failed: {exc}") from exc
        return True

    async def query_captions(
        self,
        org_id: str,
        start: datetime,
        end: datetime,
        session_id: str | None = None,
    ) -> list[CaptionEvent]:
        query = CaptionRecord.find(
            CaptionRecord.org_id == org_id,
            CaptionRecord.timestamp >= start,
            CaptionRecord.timestamp <= end,
        )
        if session_id:
            query = query.find(CaptionRecord.session_id == session_id)
        records = await query.sort("timestamp", "session_id", "sequence").to_list()
        return [record.to_event() for record in records]

    async def list_session_captions(self, session_id: str) -> list[CaptionEvent]:
        records = (
            await CaptionRecord.find(CaptionRecord.session_id == session_id)
            .sort("sequence")
            .to_list()
        )
        return [record.to_event() for record in records]

    async def save_summary(self, summary: SessionSummary) -> None:
        record = await SessionRecord.find_one(SessionRecord.session_id == summary.session_id)
        data = summary.model_dump()
        if record is None:
            await SessionRecord(**data).insert()
            return
        for key, value in data.items():
            setattr(record, key, value)
        record.updated_at = utcnow()
        await record.save()

    async def get_summary(self, session_id: str) -> SessionSummary | None:
        record = await SessionRecord.find_one(SessionRecord.session_id == session_id)
        return record.to_summary() if record else None
