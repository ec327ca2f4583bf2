"""Offline, deterministic RequirementOracle.

Pure heuristics: no network, no LLM cost. Used when ORACLE_BACKEND is
`heuristic` (local demos, CI, API keys unavailable).

  - classify: requirement vocabulary (product / design / technical) and
    filler detection
  - extract_feature: name from the product-area vocabulary, otherwise the
    first words; capabilities from comma / "and" separated clauses
  - match_feature: rapidfuzz similarity plus shared product area
  - extract_capability: first clause of the speech
"""

from __future__ import annotations

import re

from app.core.oracle import short_title
from app.core.schemas_analysis import (
    CapabilityExtraction,
    Classification,
    FeatureExtraction,
    FeatureMatch,
    FeatureSummary,
    MatchCandidate,
    TranscriptType,
)
from app.core.similarity import SimilarityMatcher

MIN_REQUIREMENT_CHARS = 15
AREA_MATCH_SCORE = 0.8
MIN_MATCH_SCORE = 0.5

# Requirement vocabulary by kind
REQUIREMENT_KEYWORDS: dict[str, list[str]] = {
    "product": [
        "price", "pricing", "cost", "user", "users", "feature", "workflow",
        "subscription", "plan", "tier", "billing", "export", "notification",
        "dashboard", "signup", "onboarding", "share",
    ],
    "design": [
        "design", "ui", "ux", "look", "button", "page", "layout", "sidebar",
        "dark mode", "theme", "modal", "screen", "mobile",
    ],
    "technical": [
        "api", "database", "auth", "authentication", "login", "next.js", "react",
        "postgres", "supabase", "stripe", "websocket", "websockets", "deploy",
        "server", "serverless", "cache", "redis", "integration", "integrate",
    ],
}

# Product areas used to name features and to relate speech to features
PRODUCT_AREAS: list[tuple[str, list[str]]] = [
    ("Authentication", ["auth", "login", "signup", "sign in", "password", "oauth", "session", "sso", "mfa"]),
    ("Billing & Payments", ["payment", "payments", "stripe", "checkout", "subscription", "subscriptions", "billing", "invoice", "plan", "pricing", "credit card"]),
    ("Data Layer", ["database", "postgres", "supabase", "sql", "query", "storage", "schema", "table"]),
    ("Design System", ["ui", "design", "component", "layout", "style", "theme", "dark mode", "css", "frontend", "ux"]),
    ("Backend API", ["api", "endpoint", "route", "backend", "server", "middleware"]),
    ("Notifications", ["email", "notification", "notifications", "alert", "sms", "push"]),
    ("Admin & Analytics", ["admin", "dashboard", "analytics", "chart", "report", "metrics", "stats", "moderation"]),
    ("Onboarding", ["onboarding", "tutorial", "guide", "welcome", "setup"]),
]

FILLER_WORDS = {
    "um", "uh", "erm", "hmm", "yeah", "yes", "no", "ok", "okay", "so", "well",
    "like", "i", "think", "you", "know", "mean", "just", "right", "basically",
    "actually", "hi", "hello", "hey", "thanks", "cool", "sure", "maybe",
}

ADDITIVE_CUES = re.compile(r"^(also|and|plus|oh and|add|another)\b|\b(also|as well|too)\b")

LEADING_PHRASES = re.compile(
    r"^(?:(?:so|and|also|plus|oh|um|uh|then)\s+)*"
    r"(?:(?:we|i|they|you)\s+(?:need|want|should have|should|would like|'d like|will need)\s+(?:to\s+)?)?"
    r"(?:(?:add|build|have|support|create|make|get)\s+)?"
    r"(?:(?:a|an|the|some)\s+)?",
    re.IGNORECASE,
)


def _contains(text_lower: str, keyword: str) -> bool:
    return re.search(rf"(?<![\w]){re.escape(keyword)}(?![\w])", text_lower) is not None


def _keyword_hits(text: str) -> dict[str, int]:
    lower = text.lower()
    return {
        kind: sum(1 for k in keywords if _contains(lower, k))
        for kind, keywords in REQUIREMENT_KEYWORDS.items()
    }


def product_area(text: str) -> str | None:
    """Name of the product area the text mentions most, if any."""
    lower = text.lower()
    best_name, best_hits = None, 0
    for name, keywords in PRODUCT_AREAS:
        hits = sum(1 for k in keywords if _contains(lower, k))
        if hits > best_hits:
            best_name, best_hits = name, hits
    return best_name


def _title_case(phrase: str) -> str:
    words = phrase.split()[:5]
    return " ".join(w if w.isupper() else w[:1].upper() + w[1:] for w in words)


def capability_phrases(text: str) -> list[str]:
    """Split speech into short capability-sized clauses."""
    clauses = re.split(r"[,;.!?]|\band\b|\bwith\b|\bplus\b", text, flags=re.IGNORECASE)
    phrases: list[str] = []
    for clause in clauses:
        cleaned = LEADING_PHRASES.sub("", clause.strip()).strip()
        words = [w for w in cleaned.split() if w.lower() not in FILLER_WORDS]
        if 2 <= len(words) <= 6:
            phrase = " ".join(words)
            phrase = phrase[:1].upper() + phrase[1:]
            if phrase not in phrases:
                phrases.append(phrase)
    return phrases


def _is_filler(text: str) -> bool:
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    return bool(words) and all(w in FILLER_WORDS for w in words)


class HeuristicOracle:
    """Keyword and fuzzy-match implementation of RequirementOracle."""

    def __init__(self, matcher: SimilarityMatcher | None = None):
        self.matcher = matcher or SimilarityMatcher()

    async def classify(
        self, text: str, existing_features: list[FeatureSummary]
    ) -> Classification:
        stripped = text.strip()
        if not stripped or _is_filler(stripped):
            return Classification(
                type=TranscriptType.NOISE, confidence=0.95, reasoning="only filler words"
            )
        if len(stripped) < MIN_REQUIREMENT_CHARS:
            return Classification(
                type=TranscriptType.NOISE, confidence=0.7, reasoning="too short to be a requirement"
            )

        hits = _keyword_hits(stripped)
        total = sum(hits.values())
        if total == 0:
            return Classification(
                type=TranscriptType.NOISE, confidence=0.5, reasoning="no requirement vocabulary"
            )

        kind = max(hits, key=hits.get)
        if existing_features and ADDITIVE_CUES.search(stripped.lower()):
            area = product_area(stripped)
            owners = [f for f in existing_features if area and product_area(f"{f.name} {f.summary}") == area]
            if owners:
                return Classification(
                    type=TranscriptType.CAPABILITY,
                    confidence=0.75,
                    reasoning=f"adds a {kind} detail to {owners[0].name}",
                )

        return Classification(
            type=TranscriptType.FEATURE,
            confidence=min(0.9, 0.65 + 0.05 * total),
            reasoning=f"{kind} requirement vocabulary ({total} hits)",
        )

    async def extract_feature(self, text: str, segments: list[str]) -> FeatureExtraction:
        phrases = capability_phrases(text)
        name = product_area(text) or (_title_case(phrases[0]) if phrases else short_title(text))
        first_sentence = re.split(r"(?<=[.!?])\s+", text.strip())[0]
        return FeatureExtraction(
            name=name,
            summary=first_sentence,
            key_capabilities=phrases[:5],
        )

    async def match_feature(self, text: str, candidates: list[MatchCandidate]) -> FeatureMatch:
        if not candidates:
            return FeatureMatch(matched_id=None, confidence=0.0, reasoning="no existing features")

        result = self.matcher.best_candidate(text, candidates)
        best_id, best_score = result.matched_id, result.score
        best_reason = f"similar to '{result.matched_text}'"

        # A weak fuzzy score still matches when both talk about the same area
        area = product_area(text)
        if area and best_score < AREA_MATCH_SCORE:
            for candidate in candidates:
                if product_area(" ".join(self.matcher.candidate_texts(candidate))) == area:
                    best_id, best_score = candidate.id, AREA_MATCH_SCORE
                    best_reason = f"same product area ({area})"
                    break

        if best_score < MIN_MATCH_SCORE:
            return FeatureMatch(matched_id=None, confidence=1.0 - best_score, reasoning="no similar feature")
        return FeatureMatch(matched_id=best_id, confidence=round(best_score, 4), reasoning=best_reason)

    async def extract_capability(self, text: str) -> CapabilityExtraction:
        phrases = capability_phrases(text)
        title = _title_case(phrases[0]) if phrases else short_title(text)
        return CapabilityExtraction(title=title, description=text.strip())
