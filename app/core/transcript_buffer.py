"""Queue of finalized transcript segments awaiting analysis.

A pass takes ownership of the queued segments with `claim()`, which
atomically checks the in-flight guard, drains the queue and marks a pass
as running. Nothing can be claimed twice and nothing appended later is
swept into a running pass. When the pass finishes the batch is either
dropped (`complete`) or put back in front of newer segments (`release`),
so a failed pass loses no speech.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field

from app.core.schemas_canvas import TranscriptSegment


@dataclass(frozen=True)
class ClaimedBatch:
    """Segments owned by one analysis pass."""
    pass_id: str
    segments: tuple[TranscriptSegment, ...] = field(default_factory=tuple)

    @property
    def texts(self) -> list[str]:
        return [s.text for s in self.segments]

    @property
    def text(self) -> str:
        return " ".join(self.texts)


class TranscriptBuffer:
    """Single-writer segment queue with a claim-for-processing guard."""

    def __init__(self) -> None:
        self._pending: list[TranscriptSegment] = []
        self._claimed: ClaimedBatch | None = None
        self._lock = threading.Lock()

    def append(self, text: str) -> TranscriptSegment | None:
        """Queue one finalized segment. Blank text is ignored."""
        text = text.strip()
        if not text:
            return None
        segment = TranscriptSegment(text=text)
        with self._lock:
            self._pending.append(segment)
        return segment

    def claim(self) -> ClaimedBatch | None:
        """Take every queued segment for one pass.

        Returns None when a pass is already running or nothing is queued.
        """
        with self._lock:
            if self._claimed is not None or not self._pending:
                return None
            batch = ClaimedBatch(pass_id=str(uuid.uuid4()), segments=tuple(self._pending))
            self._pending = []
            self._claimed = batch
            return batch

    def complete(self, batch: ClaimedBatch) -> None:
        """Pass finished: the claimed segments are consumed."""
        with self._lock:
            self._check_owner(batch)
            self._claimed = None

    def release(self, batch: ClaimedBatch) -> None:
        """Pass failed: requeue the claimed segments ahead of newer ones."""
        with self._lock:
            self._check_owner(batch)
            self._pending = [*batch.segments, *self._pending]
            self._claimed = None

    def _check_owner(self, batch: ClaimedBatch) -> None:
        if self._claimed is None or self._claimed.pass_id != batch.pass_id:
            raise RuntimeError(f"Batch {batch.pass_id} is not the active claim")

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._claimed is not None

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return bool(self._pending)

    @property
    def pending_segments(self) -> list[TranscriptSegment]:
        with self._lock:
            return list(self._pending)

    @property
    def pending_text(self) -> str:
        with self._lock:
            return " ".join(s.text for s in self._pending)
