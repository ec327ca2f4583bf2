"""Recording sessions: one canvas, one transcript buffer, one set of triggers.

The speech-capture client streams `(text, is_final)` events into a
session. Interim events only update the live caption; final, non-blank
events are buffered and restart the pause timer. Stopping a session
flushes what is left and freezes the session transcript.
"""

from __future__ import annotations

import uuid
from collections import deque
from datetime import datetime

from app.core.analysis_pipeline import AnalysisPipeline, CapabilityHook
from app.core.config import Settings, get_settings
from app.core.feature_store import FeatureStore
from app.core.logging import get_logger
from app.core.oracle import RequirementOracle, build_oracle
from app.core.schemas_analysis import AnalysisOutcome
from app.core.schemas_canvas import TranscriptSegment, utc_now
from app.core.transcript_buffer import TranscriptBuffer
from app.core.trigger_policy import AnalysisScheduler

logger = get_logger(__name__)


class SessionNotFoundError(LookupError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class RecordingSession:
    """A live dictation session feeding one feature canvas."""

    def __init__(
        self,
        oracle: RequirementOracle,
        settings: Settings | None = None,
        session_id: str | None = None,
        on_capability_added: CapabilityHook | None = None,
    ):
        self.settings = settings or get_settings()
        self.id = session_id or str(uuid.uuid4())
        self.store = FeatureStore(self.settings.NODE_WIDTH, self.settings.NODE_HEIGHT)
        self.buffer = TranscriptBuffer()
        self.pipeline = AnalysisPipeline(
            self.store,
            oracle,
            settings=self.settings,
            on_capability_added=on_capability_added,
        )
        self.scheduler = AnalysisScheduler(
            self.buffer,
            self.pipeline,
            pause_seconds=self.settings.PAUSE_DEBOUNCE_SECONDS,
            interval_seconds=self.settings.FALLBACK_INTERVAL_SECONDS,
            on_outcome=self._record_outcome,
            session_id=self.id,
        )
        self.recent_outcomes: deque[AnalysisOutcome] = deque(
            maxlen=self.settings.MAX_RECENT_OUTCOMES
        )
        self.segments: list[TranscriptSegment] = []
        self.interim_text = ""
        self.recording = False
        self.started_at: datetime | None = None
        self.stopped_at: datetime | None = None
        self.final_transcript: str | None = None

    def start(self) -> None:
        """Begin recording; starts the fallback interval trigger."""
        if self.recording:
            return
        self.recording = True
        self.started_at = self.started_at or utc_now()
        self.final_transcript = None
        self.scheduler.start()
        logger.info(f"Recording session {self.id} started")

    def handle_speech(self, text: str, is_final: bool) -> TranscriptSegment | None:
        """
        Accept one speech-engine event.

        Interim events update the live caption only. Final events with
        non-blank text are buffered and restart the pause timer.

        Returns:
            The buffered segment, or None if the event was not buffered
        """
        if not is_final:
            self.interim_text = text
            return None

        self.interim_text = ""
        segment = self.buffer.append(text)
        if segment is None:
            return None
        self.segments.append(segment)
        if self.recording:
            self.scheduler.notify_segment()
        return segment

    async def flush(self) -> AnalysisOutcome | None:
        """Explicit user-requested analysis of the current buffer."""
        return await self.scheduler.flush_if_ready("explicit")

    async def stop(self) -> str:
        """
        Stop recording, analyze residual speech, and finalize the transcript.

        A failing final pass is logged; its speech stays buffered.

        Returns:
            The session transcript (all final segments joined by spaces)
        """
        self.recording = False
        self.interim_text = ""
        try:
            await self.scheduler.stop()
        except Exception:
            logger.exception(f"Final analysis pass failed for session {self.id}")
        self.stopped_at = utc_now()
        self.final_transcript = " ".join(s.text for s in self.segments)
        logger.info(f"Recording session {self.id} stopped ({len(self.segments)} segments)")
        return self.final_transcript

    def _record_outcome(self, outcome: AnalysisOutcome) -> None:
        self.recent_outcomes.append(outcome)

    def status(self) -> dict:
        return {
            "session_id": self.id,
            "recording": self.recording,
            "analysis_in_flight": self.buffer.in_flight,
            "pending_segments": len(self.buffer.pending_segments),
            "pending_text": self.buffer.pending_text,
            "interim_text": self.interim_text,
            "canvas_version": self.store.version,
            "started_at": self.started_at,
            "stopped_at": self.stopped_at,
        }


class SessionManager:
    """Registry of live recording sessions."""

    def __init__(self, settings: Settings | None = None, oracle: RequirementOracle | None = None):
        self.settings = settings or get_settings()
        self._oracle = oracle
        self._sessions: dict[str, RecordingSession] = {}

    @property
    def oracle(self) -> RequirementOracle:
        if self._oracle is None:
            self._oracle = build_oracle(self.settings)
        return self._oracle

    def create(self, start: bool = True) -> RecordingSession:
        session = RecordingSession(self.oracle, settings=self.settings)
        self._sessions[session.id] = session
        if start:
            session.start()
        return session

    def get(self, session_id: str) -> RecordingSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def list_sessions(self) -> list[RecordingSession]:
        return list(self._sessions.values())

    async def close(self, session_id: str) -> None:
        """Stop the session, analyzing anything still buffered, and forget it."""
        session = self.get(session_id)
        # Final segments can arrive after stop(); they are analyzed here too
        if session.recording or session.buffer.has_pending:
            await session.stop()
        del self._sessions[session_id]

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)


_manager: SessionManager | None = None


def get_session_manager() -> SessionManager:
    """Process-wide session manager (FastAPI dependency)."""
    global _manager
    if _manager is None:
        _manager = SessionManager()
    return _manager
