"""Tests for transcript classification."""

from unittest.mock import AsyncMock, patch

import pytest

from app.chains.classify_transcript import (
    _features_context,
    _parse_classification,
    classify_transcript,
)
from app.core.schemas_analysis import FeatureSummary, TranscriptType


class TestParseClassification:
    def test_valid_payload(self):
        result = _parse_classification(
            {"type": "capability", "confidence": 0.82, "reasoning": "extends billing"}
        )
        assert result.type == TranscriptType.CAPABILITY
        assert result.confidence == 0.82

    def test_type_is_case_insensitive(self):
        assert _parse_classification({"type": " Feature ", "confidence": 0.7}).type == TranscriptType.FEATURE

    def test_confidence_clamped(self):
        assert _parse_classification({"type": "noise", "confidence": 1.7}).confidence == 1.0
        assert _parse_classification({"type": "noise", "confidence": -2}).confidence == 0.0

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            _parse_classification({"type": "question", "confidence": 0.9})


class TestFeaturesContext:
    def test_empty(self):
        assert _features_context([]) == "[] (none yet)"

    def test_includes_names(self):
        context = _features_context([FeatureSummary(id="f1", name="Payments", summary="Stripe")])
        assert '"Payments"' in context
        assert '"f1"' in context


class TestClassifyTranscript:
    @pytest.mark.asyncio
    async def test_returns_parsed_classification(self):
        with patch(
            "app.chains.classify_transcript.call_structured_llm",
            new_callable=AsyncMock,
            return_value={"type": "feature", "confidence": 0.9, "reasoning": "pricing decision"},
        ) as mock_llm:
            result = await classify_transcript("twelve ninety-nine a month", [])

        assert result.type == TranscriptType.FEATURE
        assert result.reasoning == "pricing decision"
        assert mock_llm.call_args.kwargs["chain"] == "classify_transcript"
        assert "twelve ninety-nine a month" in mock_llm.call_args.args[1]

    @pytest.mark.asyncio
    async def test_malformed_output_falls_back_to_noise(self):
        with patch(
            "app.chains.classify_transcript.call_structured_llm",
            new_callable=AsyncMock,
            return_value={"type": "banana"},
        ):
            result = await classify_transcript("something", [])

        assert result.type == TranscriptType.NOISE
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_api_failure_falls_back_to_noise(self):
        with patch(
            "app.chains.classify_transcript.call_structured_llm",
            new_callable=AsyncMock,
            side_effect=ConnectionError("down"),
        ):
            result = await classify_transcript("something", [])

        assert result.type == TranscriptType.NOISE
        assert result.confidence == 0.0
