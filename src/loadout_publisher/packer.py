# src/loadout_publisher/packer.py

"""
Greedy, order-preserving batch packing of signed URL entries.

The receiving device drops any MQTT message larger than its packet buffer,
so every published payload must stay within a byte budget. Entries are
packed in a single pass: each one joins the open batch if the batch still
fits afterwards, otherwise the open batch is closed and a new one started.
An entry too large to be sent even on its own is dropped and reported.

This does not minimise the number of messages. It keeps the input order
intact across batches, which the device relies on.

Sizes are tracked incrementally. For the compact separators used here,
`len(serialize_batch(b))` is exactly `2 + sum(entry sizes) + (len(b) - 1)`:
the enclosing brackets plus one comma between neighbours.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .schemas import SignedUrlEntry

logger = logging.getLogger(__name__)

_ARRAY_BRACKETS_BYTES = 2
_SEPARATOR_BYTES = 1

Batch = list[SignedUrlEntry]


def compute_payload_budget(max_packet_size: int, safety_margin_percent: float) -> int:
    """floor(max_packet_size * (1 - margin)), the largest payload we send."""
    return math.floor(max_packet_size * (1 - safety_margin_percent / 100.0))


def _dumps(obj) -> bytes:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def serialize_entry(entry: SignedUrlEntry) -> bytes:
    return _dumps(entry.to_wire())


def serialize_batch(batch: Sequence[SignedUrlEntry]) -> bytes:
    """The exact bytes published for a batch: a UTF-8 JSON array."""
    return _dumps([entry.to_wire() for entry in batch])


@dataclass(frozen=True)
class DroppedEntry:
    """An entry whose single-item payload alone exceeds the budget."""

    entry: SignedUrlEntry
    payload_bytes: int


@dataclass
class PackResult:
    batches: list[Batch] = field(default_factory=list)
    dropped: list[DroppedEntry] = field(default_factory=list)

    @property
    def packed_count(self) -> int:
        return sum(len(batch) for batch in self.batches)


class BatchPacker:
    """
    Incremental form of the packer, for callers that want to act on each
    batch as soon as it closes.

    `add` returns the batch it closed, if any; `flush` returns the final
    open batch. Dropped entries accumulate in `dropped`.
    """

    def __init__(self, budget_bytes: int):
        if budget_bytes <= 0:
            raise ValueError("budget_bytes must be positive")
        self.budget_bytes = budget_bytes
        self.dropped: list[DroppedEntry] = []
        self._current: Batch = []
        self._current_bytes = _ARRAY_BRACKETS_BYTES

    def _size_with(self, entry_bytes: int) -> int:
        if not self._current:
            return _ARRAY_BRACKETS_BYTES + entry_bytes
        return self._current_bytes + _SEPARATOR_BYTES + entry_bytes

    def add(self, entry: SignedUrlEntry) -> Batch | None:
        entry_bytes = len(serialize_entry(entry))

        candidate_bytes = self._size_with(entry_bytes)
        if candidate_bytes <= self.budget_bytes:
            self._current.append(entry)
            self._current_bytes = candidate_bytes
            return None

        closed = self.flush()

        alone_bytes = _ARRAY_BRACKETS_BYTES + entry_bytes
        if alone_bytes > self.budget_bytes:
            logger.warning(
                "Single item exceeds payload budget. Skipping.",
                extra={
                    "key": entry.key,
                    "payload_bytes": alone_bytes,
                    "budget_bytes": self.budget_bytes,
                },
            )
            self.dropped.append(DroppedEntry(entry=entry, payload_bytes=alone_bytes))
        else:
            self._current = [entry]
            self._current_bytes = alone_bytes
        return closed

    def flush(self) -> Batch | None:
        if not self._current:
            return None
        closed = self._current
        self._current = []
        self._current_bytes = _ARRAY_BRACKETS_BYTES
        return closed


def pack_entries(entries: Iterable[SignedUrlEntry], budget_bytes: int) -> PackResult:
    """
    Packs `entries` into batches whose serialized size is at most `budget_bytes`.

    Every entry lands in exactly one batch or in `dropped`; concatenating the
    batches reproduces the input minus the dropped entries, in order.
    """
    packer = BatchPacker(budget_bytes)
    result = PackResult()
    for entry in entries:
        closed = packer.add(entry)
        if closed:
            result.batches.append(closed)
    final = packer.flush()
    if final:
        result.batches.append(final)
    result.dropped = packer.dropped
    return result
