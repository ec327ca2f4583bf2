"""
Fuzzy similarity between spoken text and the features on the canvas.

A pair of texts is scored by several rapidfuzz ratios and by key-term
overlap; the best of them wins and is judged against that strategy's own
threshold. Speech is noisy ("um, and the login thing"), so filler and
generic product-talk words never count as key terms.

A feature is compared through its name, its summary and each of its key
capabilities; the closest of those texts stands for the feature.

Usage:
    from app.core.similarity import SimilarityMatcher

    matcher = SimilarityMatcher()
    result = matcher.best_candidate("add google sign in", store.match_candidates())
    if result.is_match:
        print(result.matched_id, result.matched_text, result.score)
"""

import re
from dataclasses import dataclass, field
from enum import Enum

from rapidfuzz import fuzz

from app.core.schemas_analysis import MatchCandidate


class MatchStrategy(Enum):
    EXACT = "exact"
    TOKEN_SET = "token_set"
    PARTIAL = "partial"
    WRATIO = "wratio"
    KEY_TERMS = "key_terms"


# rapidfuzz scorers, in tie-break order
_FUZZ_RATIOS = (
    (MatchStrategy.TOKEN_SET, fuzz.token_set_ratio),  # reordered / extra words
    (MatchStrategy.PARTIAL, fuzz.partial_ratio),  # one text inside the other
    (MatchStrategy.WRATIO, fuzz.WRatio),
)


@dataclass
class ThresholdConfig:
    """Minimum score for a match, per strategy."""
    exact: float = 0.95
    token_set: float = 0.75
    partial: float = 0.80
    wratio: float = 0.75
    key_terms: float = 0.60

    def for_strategy(self, strategy: MatchStrategy) -> float:
        return getattr(self, strategy.value)


@dataclass
class MatchResult:
    """Closest feature for one piece of speech."""
    is_match: bool
    score: float
    strategy: MatchStrategy | None = None
    candidate: MatchCandidate | None = None
    matched_text: str = ""
    ranking: list[tuple[str, float]] = field(default_factory=list)

    @property
    def matched_id(self) -> str | None:
        return self.candidate.id if self.candidate else None


IGNORED_TERMS = {
    # function words
    "a", "an", "the", "and", "or", "of", "for", "to", "in", "on", "at", "by",
    "with", "from", "into", "as", "is", "are", "was", "be", "been", "it",
    "its", "this", "that", "these", "those", "do", "does", "have", "has",
    "will", "would", "could", "should", "can", "may", "might", "must",
    # spoken filler
    "um", "uh", "yeah", "okay", "like", "you", "know", "think", "maybe",
    "just", "really", "also", "so", "well", "gonna", "kind", "sort", "lets",
    "let", "i", "we", "our", "they", "want", "need", "some",
    # generic product talk
    "feature", "features", "app", "system", "thing", "option", "new", "add",
    "build", "make", "create", "tool", "service",
}


class SimilarityMatcher:
    """Best-of-strategies fuzzy matcher for speech against features."""

    def __init__(
        self,
        thresholds: ThresholdConfig | None = None,
        extra_ignored_terms: set[str] | None = None,
    ):
        self.thresholds = thresholds or ThresholdConfig()
        self.ignored_terms = IGNORED_TERMS | (extra_ignored_terms or set())

    @staticmethod
    def normalize(text: str) -> str:
        """Lowercase, drop punctuation, collapse whitespace."""
        return " ".join(re.sub(r"[^\w\s]", "", (text or "").lower()).split())

    def key_terms(self, text: str) -> set[str]:
        """Content words of the text ("We need Stripe subscriptions" → {"stripe", "subscriptions"})."""
        return {
            word
            for word in self.normalize(text).split()
            if len(word) > 2 and word not in self.ignored_terms
        }

    def _key_term_score(self, text_a: str, text_b: str) -> float | None:
        terms_a, terms_b = self.key_terms(text_a), self.key_terms(text_b)
        if not terms_a or not terms_b:
            return None
        shared = len(terms_a & terms_b)
        jaccard = shared / len(terms_a | terms_b)
        # Short feature names inside long speech still count
        coverage = shared / min(len(terms_a), len(terms_b))
        return (jaccard + coverage) / 2

    def compute_similarity(self, text_a: str, text_b: str) -> tuple[float, MatchStrategy]:
        """
        Best score over all strategies.

        Returns:
            Tuple of (score in [0, 1], strategy that produced it)
        """
        norm_a, norm_b = self.normalize(text_a), self.normalize(text_b)
        if not norm_a or not norm_b:
            return 0.0, MatchStrategy.EXACT
        if norm_a == norm_b:
            return 1.0, MatchStrategy.EXACT

        scores = [(ratio(norm_a, norm_b) / 100.0, strategy) for strategy, ratio in _FUZZ_RATIOS]
        overlap = self._key_term_score(text_a, text_b)
        if overlap is not None:
            scores.append((overlap, MatchStrategy.KEY_TERMS))
        return max(scores, key=lambda s: s[0])

    def is_match(self, score: float, strategy: MatchStrategy) -> bool:
        return score >= self.thresholds.for_strategy(strategy)

    @staticmethod
    def candidate_texts(candidate: MatchCandidate) -> list[str]:
        texts = [candidate.name, candidate.summary, *candidate.key_capabilities]
        return [t for t in texts if t and t.strip()]

    def best_candidate(self, text: str, candidates: list[MatchCandidate]) -> MatchResult:
        """
        Find the feature whose name, summary or capabilities are closest to `text`.

        Args:
            text: Spoken text
            candidates: Features on the canvas

        Returns:
            MatchResult for the best feature, with every feature's score in `ranking`
        """
        best = MatchResult(is_match=False, score=0.0)
        ranking: list[tuple[str, float]] = []

        for candidate in candidates:
            score, strategy, matched_text = 0.0, MatchStrategy.EXACT, ""
            for option in self.candidate_texts(candidate):
                option_score, option_strategy = self.compute_similarity(text, option)
                if option_score > score:
                    score, strategy, matched_text = option_score, option_strategy, option
            ranking.append((candidate.id, score))
            if score > best.score:
                best = MatchResult(
                    is_match=self.is_match(score, strategy),
                    score=score,
                    strategy=strategy,
                    candidate=candidate,
                    matched_text=matched_text,
                )

        best.ranking = sorted(ranking, key=lambda r: r[1], reverse=True)
        return best
