"""When to analyze buffered speech.

Three triggers call `flush_if_ready()`:
  - pause: every final segment restarts a short debounce timer; when the
    speaker stays silent until it fires, the buffer is analyzed
  - interval: a periodic loop flushes whatever is queued, so continuous
    speech that never pauses still makes progress
  - explicit: stopping the session (or a user action) flushes the rest

The in-flight guard lives in `TranscriptBuffer.claim()`, which runs with
no suspension point between checking and claiming. Redundant or
simultaneous flush requests are no-ops while a pass is running; the next
trigger picks up whatever was queued in the meantime.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from app.core.analysis_pipeline import AnalysisPipeline
from app.core.logging import get_logger, log_with_context
from app.core.schemas_analysis import AnalysisOutcome
from app.core.transcript_buffer import TranscriptBuffer

logger = get_logger(__name__)

OutcomeListener = Callable[[AnalysisOutcome], None]


class AnalysisScheduler:
    """Debounce / interval / explicit triggers over one buffer and pipeline."""

    def __init__(
        self,
        buffer: TranscriptBuffer,
        pipeline: AnalysisPipeline,
        pause_seconds: float = 1.5,
        interval_seconds: float = 10.0,
        on_outcome: OutcomeListener | None = None,
        session_id: str | None = None,
    ):
        self.buffer = buffer
        self.pipeline = pipeline
        self.pause_seconds = pause_seconds
        self.interval_seconds = interval_seconds
        self.on_outcome = on_outcome
        self.session_id = session_id
        self._debounce_task: asyncio.Task | None = None
        self._interval_task: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Core flush
    # ------------------------------------------------------------------

    async def flush_if_ready(self, trigger: str = "explicit") -> AnalysisOutcome | None:
        """
        Analyze everything queued, unless a pass is running or nothing is queued.

        Returns:
            The pass outcome, or None when nothing was claimed

        Raises:
            Exception: Whatever escaped the pass; the batch is requeued first
        """
        batch = self.buffer.claim()
        if batch is None:
            return None

        self._idle.clear()
        log_with_context(
            logger,
            logging.INFO,
            f"Analysis pass started ({len(batch.segments)} segments)",
            session_id=self.session_id,
            pass_id=batch.pass_id,
            trigger=trigger,
        )
        try:
            outcome = await self.pipeline.run(batch.text, batch.texts, pass_id=batch.pass_id)
        except BaseException:
            self.buffer.release(batch)
            raise
        else:
            self.buffer.complete(batch)
        finally:
            self._idle.set()

        log_with_context(
            logger,
            logging.INFO,
            f"Analysis pass finished: {outcome.action.value}",
            session_id=self.session_id,
            pass_id=batch.pass_id,
            trigger=trigger,
        )
        if self.on_outcome is not None:
            try:
                self.on_outcome(outcome)
            except Exception:
                logger.exception("Outcome listener failed")
        return outcome

    async def _guarded_flush(self, trigger: str) -> None:
        """Flush from a timer; failures are logged, the buffer keeps the speech."""
        try:
            await self.flush_if_ready(trigger)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                f"Analysis pass failed ({trigger} trigger); speech kept for retry",
                extra={"session_id": self.session_id, "trigger": trigger},
            )

    # ------------------------------------------------------------------
    # Pause trigger
    # ------------------------------------------------------------------

    def notify_segment(self) -> None:
        """(Re)start the pause timer after a final segment was buffered."""
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.create_task(self._debounce())

    async def _debounce(self) -> None:
        await asyncio.sleep(self.pause_seconds)
        # Shielded so a new segment arriving mid-pass cannot cancel the pass itself
        await asyncio.shield(self._guarded_flush("pause"))

    # ------------------------------------------------------------------
    # Interval trigger
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._interval_task is None or self._interval_task.done():
            self._interval_task = asyncio.create_task(self._interval_loop())

    async def _interval_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            if self.buffer.has_pending and not self.buffer.in_flight:
                # Stopping cancels this loop, never a pass that already started
                await asyncio.shield(self._guarded_flush("interval"))

    # ------------------------------------------------------------------
    # Explicit / stop trigger
    # ------------------------------------------------------------------

    async def wait_idle(self) -> None:
        await self._idle.wait()

    async def stop(self) -> AnalysisOutcome | None:
        """
        Cancel timers, wait for a running pass, then flush the residual buffer.

        Timer flushes are shielded, so a pass already under way finishes
        once and is not re-run here.

        Returns:
            Outcome of the final flush, if anything was left to analyze
        """
        for task in (self._debounce_task, self._interval_task):
            if task is not None and not task.done():
                task.cancel()
        self._debounce_task = None
        self._interval_task = None

        await self.wait_idle()
        return await self.flush_if_ready("stop")

    @property
    def running(self) -> bool:
        return self._interval_task is not None and not self._interval_task.done()
