"""Tests for ArchiveWriter retries, ordering and failure reporting."""

import asyncio
from datetime import datetime, timezone

import pytest

from livecast.domain.archive.writer import ArchiveWriter
from livecast.domain.captioning.models import CaptionEvent
from tests.fixtures.pipeline_fixtures import FlakyStore, RecordingStore


def _event(sequence: int) -> CaptionEvent:
    return CaptionEvent(
        session_id="sess_1",
        org_id="org_1",
        sequence=sequence,
        timestamp=datetime.now(timezone.utc),
        source_text=f"chunk {sequence}",
    )


@pytest.mark.asyncio
async def test_submitted_events_are_stored_in_order():
    store = RecordingStore()
    writer = ArchiveWriter(store, base_delay=0.001)

    for sequence in range(5):
        writer.submit(_event(sequence))
    assert await writer.aclose(timeout=1.0) is True

    assert store.append_order == [0, 1, 2, 3, 4]
    assert writer.stored == 5
    assert writer.pending == 0


@pytest.mark.asyncio
async def test_transient_store_failures_are_retried():
    store = FlakyStore(failures=2)
    writer = ArchiveWriter(store, max_retries=3, base_delay=0.001, max_delay=0.002)

    assert await writer.append(_event(0)) is True

    assert store.attempts[0] == 3
    assert len(store) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_report_failure_and_continue():
    failures = []
    store = FlakyStore(failures=5)
    writer = ArchiveWriter(
        store, max_retries=1, base_delay=0.001, max_delay=0.002, on_failure=failures.append
    )

    writer.submit(_event(0))
    writer.submit(_event(1))
    await writer.aclose(timeout=1.0)

    assert [failure.sequence for failure in failures] == [0, 1]
    assert "archive unavailable" in failures[0].reason
    assert writer.failed == 2
    assert len(store) == 0


@pytest.mark.asyncio
async def test_duplicate_append_is_idempotent():
    store = RecordingStore()
    writer = ArchiveWriter(store)
    event = _event(3)

    assert await writer.append(event) is True
    assert await writer.append(event) is True

    assert len(store) == 1
    assert writer.stored == 1
    assert writer.duplicates == 1


@pytest.mark.asyncio
async def test_submit_never_waits_on_the_store():
    class StalledStore(RecordingStore):
        async def append_caption(self, event):
            await asyncio.Event().wait()

    writer = ArchiveWriter(StalledStore())

    for sequence in range(100):
        writer.submit(_event(sequence))

    assert writer.pending == 100
    assert await writer.aclose(timeout=0.05) is False
