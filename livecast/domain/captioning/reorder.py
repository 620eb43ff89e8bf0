from __future__ import annotations

from dataclasses import dataclass

from livecast.domain.captioning.models import CaptionEvent


@dataclass
class _Slot:
    deadline: float
    event: CaptionEvent | None = None


class ReorderBuffer:
    """
    Holds out-of-order chunk results until every lower sequence has been released.

    A slot is reserved when its chunk is dispatched, filled when the chunk's
    caption (or failure marker) is ready, and released strictly in sequence
    order. Each slot carries a deadline (monotonic clock) after which the
    orchestrator gives up on it and fills it with a failure marker.
    """

    def __init__(self) -> None:
        self._slots: dict[int, _Slot] = {}
        self._next_release: int | None = None

    def __len__(self) -> int:
        return len(self._slots)

    @property
    def empty(self) -> bool:
        return not self._slots

    def reserve(self, sequence: int, deadline: float) -> None:
        if self._next_release is None:
            self._next_release = sequence
        if sequence < self._next_release or sequence in self._slots:
            raise ValueError(f"Sequence {sequence} is already reserved or released")
        self._slots[sequence] = _Slot(deadline=deadline)

    def complete(self, event: CaptionEvent) -> bool:
        """Fill a reserved slot. Returns False when the slot is unknown or already filled."""
        slot = self._slots.get(event.sequence)
        if slot is None or slot.event is not None:
            return False
        slot.event = event
        return True

    def is_pending(self, sequence: int) -> bool:
        slot = self._slots.get(sequence)
        return slot is not None and slot.event is None

    def head(self) -> tuple[int, float] | None:
        """Sequence and deadline of the next slot to release, if it is reserved."""
        if self._next_release is None:
            return None
        slot = self._slots.get(self._next_release)
        if slot is None:
            return None
        return self._next_release, slot.deadline

    def pop_ready(self) -> list[CaptionEvent]:
        """Remove and return every consecutively filled slot starting at the head."""
        released: list[CaptionEvent] = []
        while self._next_release is not None:
            slot = self._slots.get(self._next_release)
            if slot is None or slot.event is None:
                break
            released.append(slot.event)
            del self._slots[self._next_release]
            self._next_release += 1
        return released

    def discard(self) -> list[int]:
        """Drop every unreleased slot, returning their sequence numbers."""
        dropped = sorted(self._slots)
        self._slots.clear()
        return dropped
