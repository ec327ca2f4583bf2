"""Tests for the transcript analysis pipeline (routing, thresholds, merge/create)."""

import random
from unittest.mock import patch

import pytest

from app.core.analysis_pipeline import (
    AnalysisPipeline,
    accept_match,
    new_capability_names,
    resolve_type,
)
from app.core.feature_store import FeatureNotFoundError, FeatureStore
from app.core.schemas_analysis import (
    AnalysisAction,
    CapabilityExtraction,
    FeatureExtraction,
    FeatureMatch,
    TranscriptType,
)
from app.core.schemas_canvas import CapabilityDraft, ConversationEntry, Position
from tests.fakes.fake_oracle import FakeOracle, classification


def make_pipeline(settings, oracle, store=None):
    store = store or FeatureStore(settings.NODE_WIDTH, settings.NODE_HEIGHT)
    return AnalysisPipeline(store, oracle, settings=settings, rng=random.Random(7))


def seed_feature(store, name="Authentication", key_capabilities=None):
    feature, _ = store.create_feature(
        FeatureExtraction(name=name, summary="Sign in", key_capabilities=key_capabilities or []),
        Position(x=300, y=300),
        ConversationEntry(transcript="seed"),
    )
    return feature


class TestResolveType:
    def test_confident_noise_is_discarded(self, settings):
        assert resolve_type(classification("noise", 0.9), settings) is None

    def test_noise_at_threshold_becomes_feature(self, settings):
        assert resolve_type(classification("noise", 0.85), settings) == TranscriptType.FEATURE

    def test_noise_just_above_threshold_is_discarded(self, settings):
        assert resolve_type(classification("noise", 0.850001), settings) is None

    def test_low_confidence_capability_becomes_feature(self, settings):
        assert resolve_type(classification("capability", 0.59999), settings) == TranscriptType.FEATURE

    def test_capability_at_override_threshold_kept(self, settings):
        assert resolve_type(classification("capability", 0.6), settings) == TranscriptType.CAPABILITY

    def test_confident_feature_kept(self, settings):
        assert resolve_type(classification("feature", 0.95), settings) == TranscriptType.FEATURE


class TestAcceptMatch:
    def test_match_at_threshold_accepted(self, settings):
        assert accept_match(FeatureMatch(matched_id="f1", confidence=0.7), settings) == "f1"

    def test_match_below_threshold_rejected(self, settings):
        assert accept_match(FeatureMatch(matched_id="f1", confidence=0.6999), settings) is None

    def test_null_match_rejected(self, settings):
        assert accept_match(FeatureMatch(matched_id=None, confidence=1.0), settings) is None


class TestNewCapabilityNames:
    def test_known_names_skipped_case_insensitive(self):
        fresh = new_capability_names(
            ["Email Login", "SSO", "Password reset"],
            ["email login"],
            ["password reset"],
        )
        assert fresh == ["SSO"]

    def test_duplicates_in_extraction_collapse(self):
        assert new_capability_names(["SSO", "sso", " SSO "], [], []) == ["SSO"]

    def test_blank_names_skipped(self):
        assert new_capability_names(["", "  ", "MFA"], [], []) == ["MFA"]


class TestNoise:
    @pytest.mark.asyncio
    async def test_confident_noise_leaves_store_unchanged(self, settings):
        oracle = FakeOracle(classify=classification("noise", 0.95, "small talk"))
        pipeline = make_pipeline(settings, oracle)

        outcome = await pipeline.run("um yeah so anyway")

        assert outcome.action == AnalysisAction.DISCARDED_NOISE
        assert pipeline.store.version == 0
        assert oracle.count("extract_feature") == 0

    @pytest.mark.asyncio
    async def test_unsure_noise_becomes_feature(self, settings):
        oracle = FakeOracle(
            classify=classification("noise", 0.5),
            extract_feature=FeatureExtraction(name="Export"),
        )
        pipeline = make_pipeline(settings, oracle)

        outcome = await pipeline.run("maybe export stuff")

        assert outcome.overridden is True
        assert outcome.effective_type == TranscriptType.FEATURE
        assert outcome.action == AnalysisAction.CREATED_FEATURE
        assert len(pipeline.store.snapshot().features) == 1


class TestFeaturePath:
    @pytest.mark.asyncio
    async def test_unmatched_feature_creates_feature_with_nodes(self, settings):
        """First feature on an empty canvas gets one node per capability."""
        oracle = FakeOracle(
            classify=classification("feature", 0.9, "auth requirement"),
            extract_feature=FeatureExtraction(
                name="Authentication",
                summary="Users sign in",
                key_capabilities=["Email login", "Password reset"],
            ),
        )
        pipeline = make_pipeline(settings, oracle)

        outcome = await pipeline.run("we need login with email and password reset")

        snapshot = pipeline.store.snapshot()
        assert outcome.action == AnalysisAction.CREATED_FEATURE
        assert len(snapshot.features) == 1
        feature = snapshot.features[0]
        assert feature.name == "Authentication"
        assert [c.title for c in snapshot.capabilities_of(feature.id)] == [
            "Email login",
            "Password reset",
        ]
        assert feature.conversation_history[0].insights == "auth requirement"
        # No candidates yet: the matcher is not consulted
        assert oracle.count("match_feature") == 0

    @pytest.mark.asyncio
    async def test_new_feature_nodes_do_not_overlap(self, settings):
        oracle = FakeOracle(
            extract_feature=FeatureExtraction(
                name="Billing", key_capabilities=["A b", "C d", "E f", "G h", "I j"]
            ),
        )
        pipeline = make_pipeline(settings, oracle)

        await pipeline.run("billing with lots of things")

        nodes = pipeline.store.snapshot().capabilities
        assert len({(n.position.x, n.position.y) for n in nodes}) == 5
        for i, a in enumerate(nodes):
            for b in nodes[i + 1:]:
                apart_x = abs(a.position.x - b.position.x) >= settings.NODE_WIDTH
                apart_y = abs(a.position.y - b.position.y) >= settings.NODE_HEIGHT
                assert apart_x or apart_y

    @pytest.mark.asyncio
    async def test_matched_feature_merges_and_adds_only_new_nodes(self, settings):
        store = FeatureStore()
        existing = seed_feature(store, key_capabilities=["Email login"])
        store.add_capability(
            existing.id,
            CapabilityDraft(title="Email login", position=Position(x=0, y=0)),
        )
        oracle = FakeOracle(
            classify=classification("feature", 0.9),
            extract_feature=FeatureExtraction(
                name="Auth",
                user_value="Fewer lockouts",
                key_capabilities=["email login", "Two-factor auth"],
            ),
            match=FeatureMatch(matched_id=existing.id, confidence=0.85, reasoning="same area"),
        )
        pipeline = make_pipeline(settings, oracle, store)

        outcome = await pipeline.run("and two-factor auth for email login")

        feature = store.get_feature(existing.id)
        titles = [c.title for c in store.capabilities_of(existing.id)]
        assert outcome.action == AnalysisAction.MERGED_FEATURE
        assert outcome.feature_id == existing.id
        assert titles == ["Email login", "Two-factor auth"]
        assert feature.user_value == "Fewer lockouts"
        assert feature.summary == "Sign in"
        assert feature.name == "Authentication"
        assert len(feature.conversation_history) == 2

    @pytest.mark.asyncio
    async def test_repeated_feature_pass_adds_no_duplicate_nodes(self, settings):
        store = FeatureStore()
        existing = seed_feature(store)
        oracle = FakeOracle(
            extract_feature=FeatureExtraction(name="Auth", key_capabilities=["SSO", "MFA"]),
            match=FeatureMatch(matched_id=existing.id, confidence=0.9),
        )
        pipeline = make_pipeline(settings, oracle, store)

        await pipeline.run("sso and mfa")
        second = await pipeline.run("sso and mfa again")

        assert second.created_capability_ids == []
        assert len(store.capabilities_of(existing.id)) == 2

    @pytest.mark.asyncio
    async def test_weak_match_creates_new_feature(self, settings):
        store = FeatureStore()
        seed_feature(store)
        oracle = FakeOracle(
            extract_feature=FeatureExtraction(name="Dark Mode"),
            match=FeatureMatch(matched_id=store.snapshot().features[0].id, confidence=0.69),
        )
        pipeline = make_pipeline(settings, oracle, store)

        outcome = await pipeline.run("dark mode theme")

        assert outcome.action == AnalysisAction.CREATED_FEATURE
        assert len(store.snapshot().features) == 2

    @pytest.mark.asyncio
    async def test_unknown_matched_id_treated_as_no_match(self, settings):
        store = FeatureStore()
        seed_feature(store)
        oracle = FakeOracle(
            extract_feature=FeatureExtraction(name="Reports"),
            match=FeatureMatch(matched_id="not-a-feature", confidence=0.99),
        )
        pipeline = make_pipeline(settings, oracle, store)

        outcome = await pipeline.run("weekly reports")

        assert outcome.action == AnalysisAction.CREATED_FEATURE
        assert len(store.snapshot().features) == 2


class TestCapabilityPath:
    @pytest.mark.asyncio
    async def test_matched_capability_adds_one_node(self, settings):
        store = FeatureStore()
        existing = seed_feature(store)
        oracle = FakeOracle(
            classify=classification("capability", 0.8, "extends auth"),
            match=FeatureMatch(matched_id=existing.id, confidence=0.8),
            capability=CapabilityExtraction(title="Magic links", description="Passwordless"),
        )
        pipeline = make_pipeline(settings, oracle, store)

        outcome = await pipeline.run("also magic links")

        feature = store.get_feature(existing.id)
        nodes = store.capabilities_of(existing.id)
        assert outcome.action == AnalysisAction.ADDED_CAPABILITY
        assert [n.title for n in nodes] == ["Magic links"]
        assert "Magic links" in feature.key_capabilities
        assert feature.conversation_history[-1].insights == "Added capability 'Magic links'. extends auth"
        assert oracle.count("extract_feature") == 0

    @pytest.mark.asyncio
    async def test_capability_then_feature_pass_adds_no_duplicate(self, settings):
        store = FeatureStore()
        existing = seed_feature(store)
        oracle = FakeOracle(
            classify=[classification("capability", 0.8), classification("feature", 0.9)],
            match=FeatureMatch(matched_id=existing.id, confidence=0.8),
            capability=CapabilityExtraction(title="Magic links"),
            extract_feature=FeatureExtraction(name="Auth", key_capabilities=["magic links"]),
        )
        pipeline = make_pipeline(settings, oracle, store)

        await pipeline.run("also magic links")
        outcome = await pipeline.run("auth with magic links")

        assert outcome.action == AnalysisAction.MERGED_FEATURE
        assert outcome.created_capability_ids == []
        assert len(store.capabilities_of(existing.id)) == 1

    @pytest.mark.asyncio
    async def test_unmatched_capability_becomes_feature(self, settings):
        oracle = FakeOracle(
            classify=classification("capability", 0.8),
            extract_feature=FeatureExtraction(name="Export", key_capabilities=["CSV export"]),
        )
        pipeline = make_pipeline(settings, oracle)

        outcome = await pipeline.run("export to csv")

        snapshot = pipeline.store.snapshot()
        assert outcome.action == AnalysisAction.CREATED_FEATURE_FROM_CAPABILITY
        assert outcome.effective_type == TranscriptType.CAPABILITY
        assert [f.name for f in snapshot.features] == ["Export"]
        assert [c.title for c in snapshot.capabilities] == ["CSV export"]
        assert oracle.count("extract_capability") == 0

    @pytest.mark.asyncio
    async def test_capability_hook_receives_new_node(self, settings):
        store = FeatureStore()
        existing = seed_feature(store)
        received = []

        async def hook(feature, capability, text):
            received.append((feature.id, capability.title, text))

        oracle = FakeOracle(
            classify=classification("capability", 0.8),
            match=FeatureMatch(matched_id=existing.id, confidence=0.9),
            capability=CapabilityExtraction(title="SSO"),
        )
        pipeline = AnalysisPipeline(store, oracle, settings=settings, on_capability_added=hook)

        await pipeline.run("plus sso")
        for task in list(pipeline._background):
            await task

        assert received == [(existing.id, "SSO", "plus sso")]


class TestOracleFailures:
    @pytest.mark.asyncio
    async def test_classify_failure_falls_back_to_feature(self, settings):
        oracle = FakeOracle(classify=RuntimeError("api down"))
        pipeline = make_pipeline(settings, oracle)

        outcome = await pipeline.run("shared calendar for teams")

        assert outcome.classification.type == TranscriptType.NOISE
        assert outcome.classification.confidence == 0.0
        assert outcome.effective_type == TranscriptType.FEATURE
        assert outcome.action == AnalysisAction.CREATED_FEATURE

    @pytest.mark.asyncio
    async def test_extract_failure_uses_first_words_as_name(self, settings):
        oracle = FakeOracle(extract_feature=RuntimeError("timeout"))
        pipeline = make_pipeline(settings, oracle)

        await pipeline.run("shared calendar for whole teams")

        feature = pipeline.store.snapshot().features[0]
        assert feature.name == "shared calendar for whole..."
        assert feature.capability_ids == []

    @pytest.mark.asyncio
    async def test_match_failure_creates_feature(self, settings):
        store = FeatureStore()
        seed_feature(store)
        oracle = FakeOracle(
            extract_feature=FeatureExtraction(name="Calendar"),
            match=RuntimeError("rate limited"),
        )
        pipeline = make_pipeline(settings, oracle, store)

        outcome = await pipeline.run("calendar")

        assert outcome.action == AnalysisAction.CREATED_FEATURE
        assert outcome.match.matched_id is None

    @pytest.mark.asyncio
    async def test_capability_extract_failure_uses_text(self, settings):
        store = FeatureStore()
        existing = seed_feature(store)
        oracle = FakeOracle(
            classify=classification("capability", 0.8),
            match=FeatureMatch(matched_id=existing.id, confidence=0.9),
            capability=ValueError("bad json"),
        )
        pipeline = make_pipeline(settings, oracle, store)

        await pipeline.run("remember me checkbox on login")

        node = store.capabilities_of(existing.id)[0]
        assert node.title == "remember me checkbox on..."
        assert node.description == "remember me checkbox on login"

    @pytest.mark.asyncio
    async def test_store_error_propagates(self, settings):
        store = FeatureStore()
        existing = seed_feature(store)
        oracle = FakeOracle(
            extract_feature=FeatureExtraction(name="Auth"),
            match=FeatureMatch(matched_id=existing.id, confidence=0.9),
        )
        pipeline = make_pipeline(settings, oracle, store)

        with patch.object(store, "merge_feature", side_effect=FeatureNotFoundError(existing.id)):
            with pytest.raises(FeatureNotFoundError):
                await pipeline.run("auth again")


class TestScenarios:
    @pytest.mark.asyncio
    async def test_pricing_then_annual_plan_then_filler(self, settings):
        store = FeatureStore()
        oracle = FakeOracle(
            classify=[
                classification("feature", 0.92, "pricing decision"),
                classification("capability", 0.8, "adds a plan to payments"),
                classification("noise", 0.95, "filler"),
            ],
            extract_feature=FeatureExtraction(
                name="Payment Processing",
                key_capabilities=["Monthly subscription billing"],
            ),
            match=lambda candidates: FeatureMatch(matched_id=candidates[0].id, confidence=0.85),
            capability=CapabilityExtraction(title="Annual plan option"),
        )
        pipeline = make_pipeline(settings, oracle, store)

        first = await pipeline.run("We need Stripe subscriptions, twelve ninety-nine a month")
        feature = store.get_feature(first.feature_id)
        assert first.action == AnalysisAction.CREATED_FEATURE
        assert [c.title for c in store.capabilities_of(feature.id)] == [
            "Monthly subscription billing"
        ]

        second = await pipeline.run("also add an annual plan option")
        feature = store.get_feature(first.feature_id)
        assert second.action == AnalysisAction.ADDED_CAPABILITY
        assert "Annual plan option" in feature.key_capabilities
        assert len(feature.capability_ids) == 2
        assert len(store.snapshot().features) == 1

        version = store.version
        third = await pipeline.run("um, yeah, I think, you know")
        assert third.action == AnalysisAction.DISCARDED_NOISE
        assert store.version == version
