"""Tests for the sequence-keyed reorder buffer."""

import random
from datetime import datetime, timezone

import pytest

from livecast.domain.captioning.models import CaptionEvent
from livecast.domain.captioning.reorder import ReorderBuffer


def _event(sequence: int) -> CaptionEvent:
    return CaptionEvent(
        session_id="sess_1",
        org_id="org_1",
        sequence=sequence,
        timestamp=datetime.now(timezone.utc),
        source_text=f"chunk {sequence}",
    )


class TestReorderBuffer:
    def test_holds_later_results_until_head_completes(self):
        buffer = ReorderBuffer()
        for seq in range(3):
            buffer.reserve(seq, deadline=100.0)

        buffer.complete(_event(2))
        buffer.complete(_event(1))
        assert buffer.pop_ready() == []

        buffer.complete(_event(0))
        assert [e.sequence for e in buffer.pop_ready()] == [0, 1, 2]
        assert buffer.empty
        assert buffer.head() is None
        with pytest.raises(ValueError):
            buffer.reserve(2, deadline=100.0)

    def test_random_completion_order_releases_in_sequence(self):
        buffer = ReorderBuffer()
        sequences = list(range(50))
        for seq in sequences:
            buffer.reserve(seq, deadline=100.0)

        released = []
        shuffled = sequences[:]
        random.Random(7).shuffle(shuffled)
        for seq in shuffled:
            buffer.complete(_event(seq))
            released.extend(e.sequence for e in buffer.pop_ready())

        assert released == sequences

    def test_head_reports_next_sequence_and_deadline(self):
        buffer = ReorderBuffer()
        assert buffer.head() is None

        buffer.reserve(4, deadline=12.5)
        buffer.reserve(5, deadline=13.5)
        assert buffer.head() == (4, 12.5)

        buffer.complete(_event(4))
        buffer.pop_ready()
        assert buffer.head() == (5, 13.5)

    def test_complete_twice_is_ignored(self):
        buffer = ReorderBuffer()
        buffer.reserve(0, deadline=1.0)

        assert buffer.complete(_event(0)) is True
        assert buffer.complete(_event(0)) is False

    def test_complete_unknown_sequence_is_ignored(self):
        buffer = ReorderBuffer()
        buffer.reserve(0, deadline=1.0)

        assert buffer.complete(_event(9)) is False

    def test_reserving_released_sequence_raises(self):
        buffer = ReorderBuffer()
        buffer.reserve(0, deadline=1.0)
        buffer.complete(_event(0))
        buffer.pop_ready()

        with pytest.raises(ValueError):
            buffer.reserve(0, deadline=1.0)

    def test_discard_drops_pending_slots(self):
        buffer = ReorderBuffer()
        for seq in range(3):
            buffer.reserve(seq, deadline=1.0)
        buffer.complete(_event(1))

        assert buffer.discard() == [0, 1, 2]
        assert buffer.empty
