"""Tests for pause / interval / explicit analysis triggers."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from app.core.analysis_pipeline import AnalysisPipeline
from app.core.feature_store import FeatureNotFoundError, FeatureStore
from app.core.transcript_buffer import TranscriptBuffer
from app.core.trigger_policy import AnalysisScheduler
from tests.fakes.fake_oracle import FakeOracle


def make_scheduler(settings, oracle=None, pause=60.0, interval=600.0, on_outcome=None):
    oracle = oracle or FakeOracle()
    buffer = TranscriptBuffer()
    pipeline = AnalysisPipeline(FeatureStore(), oracle, settings=settings)
    scheduler = AnalysisScheduler(
        buffer,
        pipeline,
        pause_seconds=pause,
        interval_seconds=interval,
        on_outcome=on_outcome,
    )
    return scheduler, buffer, oracle


class TestFlushIfReady:
    @pytest.mark.asyncio
    async def test_empty_buffer_is_noop(self, settings):
        scheduler, _, oracle = make_scheduler(settings)
        assert await scheduler.flush_if_ready() is None
        assert oracle.calls == []

    @pytest.mark.asyncio
    async def test_concurrent_flushes_run_one_pass(self, settings):
        scheduler, buffer, oracle = make_scheduler(settings)
        oracle.gate = asyncio.Event()
        buffer.append("we need login")

        first = asyncio.create_task(scheduler.flush_if_ready("pause"))
        await oracle.started.wait()
        buffer.append("with google")
        second = await scheduler.flush_if_ready("interval")
        oracle.gate.set()
        outcome = await first

        assert second is None
        assert oracle.count("classify") == 1
        assert outcome.transcript == "we need login"
        assert buffer.pending_text == "with google"
        assert not buffer.in_flight

    @pytest.mark.asyncio
    async def test_outcome_listener_called(self, settings):
        outcomes = []
        scheduler, buffer, _ = make_scheduler(settings, on_outcome=outcomes.append)
        buffer.append("dashboard with charts")

        outcome = await scheduler.flush_if_ready()

        assert outcomes == [outcome]

    @pytest.mark.asyncio
    async def test_failed_pass_requeues_speech(self, settings):
        scheduler, buffer, _ = make_scheduler(settings)
        buffer.append("first")

        with patch.object(
            scheduler.pipeline, "run", AsyncMock(side_effect=FeatureNotFoundError("f1"))
        ):
            with pytest.raises(FeatureNotFoundError):
                await scheduler.flush_if_ready()

        assert not buffer.in_flight
        assert buffer.pending_text == "first"
        # The next trigger retries the same speech
        outcome = await scheduler.flush_if_ready()
        assert outcome.transcript == "first"


class TestPauseTrigger:
    @pytest.mark.asyncio
    async def test_debounce_batches_segments_into_one_pass(self, settings):
        scheduler, buffer, oracle = make_scheduler(settings, pause=0.05)

        for text in ["we need", "a shared", "calendar"]:
            buffer.append(text)
            scheduler.notify_segment()
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.2)

        assert oracle.count("classify") == 1
        assert oracle.calls[0] == ("classify", "we need a shared calendar")

    @pytest.mark.asyncio
    async def test_pause_failure_is_logged_and_speech_kept(self, settings):
        scheduler, buffer, _ = make_scheduler(settings, pause=0.01)
        buffer.append("first")

        with patch.object(
            scheduler.pipeline, "run", AsyncMock(side_effect=FeatureNotFoundError("f1"))
        ):
            scheduler.notify_segment()
            await asyncio.sleep(0.1)

        assert buffer.pending_text == "first"
        assert not buffer.in_flight


class TestIntervalTrigger:
    @pytest.mark.asyncio
    async def test_interval_flushes_without_pause(self, settings):
        scheduler, buffer, oracle = make_scheduler(settings, interval=0.02)
        scheduler.start()
        buffer.append("continuous speech about billing plans")

        await asyncio.sleep(0.15)
        await scheduler.stop()

        assert oracle.count("classify") == 1
        assert not scheduler.running


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_flushes_residual_buffer(self, settings):
        scheduler, buffer, oracle = make_scheduler(settings)
        scheduler.start()
        buffer.append("export to csv")
        scheduler.notify_segment()

        outcome = await scheduler.stop()

        assert outcome is not None
        assert outcome.transcript == "export to csv"
        assert not buffer.has_pending

    @pytest.mark.asyncio
    async def test_stop_waits_for_running_pass_then_flushes_rest(self, settings):
        scheduler, buffer, oracle = make_scheduler(settings)
        oracle.gate = asyncio.Event()
        buffer.append("first")
        running = asyncio.create_task(scheduler.flush_if_ready("pause"))
        await oracle.started.wait()
        buffer.append("second")

        stopping = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0.01)
        assert not stopping.done()
        oracle.gate.set()

        await running
        final = await stopping
        assert final.transcript == "second"
        assert oracle.count("classify") == 2

    @pytest.mark.asyncio
    async def test_stop_lets_running_interval_pass_finish_once(self, settings):
        outcomes = []
        scheduler, buffer, oracle = make_scheduler(
            settings, interval=0.01, on_outcome=outcomes.append
        )
        oracle.gate = asyncio.Event()
        scheduler.start()
        buffer.append("stripe checkout with annual billing")
        await asyncio.wait_for(oracle.started.wait(), timeout=1.0)

        stopping = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0.01)
        assert not stopping.done()
        oracle.gate.set()

        final = await stopping
        assert final is None
        assert oracle.count("classify") == 1
        assert [o.transcript for o in outcomes] == ["stripe checkout with annual billing"]
        assert not buffer.has_pending
        assert not scheduler.running
