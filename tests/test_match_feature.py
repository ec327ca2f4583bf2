"""Tests for matching speech to existing features."""

from unittest.mock import AsyncMock, patch

import pytest

from app.chains.match_feature import _parse_match, match_feature
from app.core.schemas_analysis import MatchCandidate

CANDIDATES = [
    MatchCandidate(id="f-pay", name="Payment Processing", key_capabilities=["Monthly plan"]),
    MatchCandidate(id="f-auth", name="Authentication"),
]


class TestParseMatch:
    def test_known_id(self):
        result = _parse_match({"matched_id": "f-pay", "confidence": 0.9}, CANDIDATES)
        assert result.matched_id == "f-pay"
        assert result.confidence == 0.9

    def test_null_spellings(self):
        for raw in (None, "", "null", "none"):
            assert _parse_match({"matched_id": raw, "confidence": 0.8}, CANDIDATES).matched_id is None

    def test_unknown_id_is_no_match(self):
        result = _parse_match({"matched_id": "f-ghost", "confidence": 0.99}, CANDIDATES)
        assert result.matched_id is None
        assert result.confidence == 0.0


class TestMatchFeature:
    @pytest.mark.asyncio
    async def test_no_candidates_skips_llm(self):
        with patch("app.chains.match_feature.call_structured_llm", new_callable=AsyncMock) as mock_llm:
            result = await match_feature("anything", [])

        mock_llm.assert_not_called()
        assert result.matched_id is None

    @pytest.mark.asyncio
    async def test_candidates_sent_to_llm(self):
        with patch(
            "app.chains.match_feature.call_structured_llm",
            new_callable=AsyncMock,
            return_value={"matched_id": "f-pay", "confidence": 0.88, "reasoning": "plan option"},
        ) as mock_llm:
            result = await match_feature("also an annual plan", CANDIDATES)

        assert result.matched_id == "f-pay"
        prompt = mock_llm.call_args.args[1]
        assert "Monthly plan" in prompt
        assert "f-auth" in prompt

    @pytest.mark.asyncio
    async def test_failure_is_no_match(self):
        with patch(
            "app.chains.match_feature.call_structured_llm",
            new_callable=AsyncMock,
            side_effect=TimeoutError(),
        ):
            result = await match_feature("also an annual plan", CANDIDATES)

        assert result.matched_id is None
        assert result.confidence == 0.0
