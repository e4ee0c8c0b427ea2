"""
Explanation Generator

Turns a finalized recommendation list and the metrics behind it into a
human-readable explanation: primary reason, contributing factors, risks,
alternatives that were considered, evidentiary data points, historical
context and a timeline expectation.
"""

import math
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from .models import (
    AdaptationHistoryEntry,
    ChangeTarget,
    Priority,
    Recommendation,
    RecommendationType,
    SignatureMetrics,
    UserSignature,
)

Impact = Literal["high", "medium", "low"]
Trend = Literal["improving", "stable", "declining"]

MAX_EXPLANATION_CONFIDENCE = 0.95
STEADY_STATE_CONFIDENCE = 0.9
LARGE_INTENSITY_CUT = -20
HISTORICAL_SUCCESS_THRESHOLD = 0.7
HISTORICAL_CONTEXT_ENTRIES = 3


@dataclass(frozen=True)
class ExplanationFactor:
    metric: str
    value: float
    impact: Impact
    description: str
    trend: Trend

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "value": self.value,
            "impact": self.impact,
            "description": self.description,
            "trend": self.trend,
        }


@dataclass(frozen=True)
class AlternativeOption:
    strategy: str
    why_not_chosen: str
    could_be_used_if: str

    def to_dict(self) -> dict[str, str]:
        return {
            "strategy": self.strategy,
            "why_not_chosen": self.why_not_chosen,
            "could_be_used_if": self.could_be_used_if,
        }


@dataclass(frozen=True)
class AdaptationExplanation:
    recommendation_id: str
    primary_reason: str
    contributing_factors: tuple[ExplanationFactor, ...]
    confidence: float
    risk_factors: tuple[str, ...]
    expected_outcome: str
    alternatives_considered: tuple[AlternativeOption, ...]
    data_points: tuple[str, ...]
    timeline_expectation: str
    historical_context: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "recommendation_id": self.recommendation_id,
            "primary_reason": self.primary_reason,
            "contributing_factors": [f.to_dict() for f in self.contributing_factors],
            "confidence": self.confidence,
            "risk_factors": list(self.risk_factors),
            "expected_outcome": self.expected_outcome,
            "alternatives_considered": [a.to_dict() for a in self.alternatives_considered],
            "data_points": list(self.data_points),
            "timeline_expectation": self.timeline_expectation,
            "historical_context": self.historical_context,
        }


ALTERNATIVES: dict[RecommendationType, AlternativeOption] = {
    RecommendationType.RECOVERY: AlternativeOption(
        strategy="Continue current intensity with extra rest days",
        why_not_chosen="Your ARI indicates you need focused recovery time",
        could_be_used_if="Your ARI improves above 40% in the next few days",
    ),
    RecommendationType.INTENSITY: AlternativeOption(
        strategy="Keep intensity and reduce volume only",
        why_not_chosen="Your fatigue signals point at session intensity rather than total volume",
        could_be_used_if="Your session completion rate stays above 80%",
    ),
    RecommendationType.EXERCISE_SWAP: AlternativeOption(
        strategy="Keep current exercises with a short deload week",
        why_not_chosen="A deload alone rarely restores motivation or breaks a plateau",
        could_be_used_if="Your progress velocity recovers without exercise changes",
    ),
    RecommendationType.FREQUENCY: AlternativeOption(
        strategy="Keep frequency and shorten each session",
        why_not_chosen="Missed sessions, not session length, are driving the drop in consistency",
        could_be_used_if="Your weekly consistency climbs back above 60%",
    ),
}


@dataclass
class _FactorCollector:
    factors: list[ExplanationFactor] = field(default_factory=list)
    data_points: list[str] = field(default_factory=list)

    def add(self, factor: ExplanationFactor, data_point: str) -> None:
        self.factors.append(factor)
        self.data_points.append(data_point)


class ExplanationGenerator:
    """Builds an AdaptationExplanation from the finalized recommendations."""

    def explain(
        self,
        recommendations: Sequence[Recommendation],
        metrics: SignatureMetrics,
        signature: UserSignature,
        history: Sequence[AdaptationHistoryEntry] = (),
    ) -> AdaptationExplanation:
        if not recommendations:
            return self.steady_state(metrics)

        primary = recommendations[0]
        collected = self.contributing_factors(metrics)

        return AdaptationExplanation(
            recommendation_id=primary.id,
            primary_reason=self.primary_reason(primary, metrics),
            contributing_factors=tuple(collected.factors),
            confidence=self.confidence(collected.factors, signature),
            risk_factors=tuple(self.risk_factors(primary)),
            expected_outcome=self.expected_outcome(primary),
            alternatives_considered=tuple(
                [ALTERNATIVES[primary.type]] if primary.type in ALTERNATIVES else []
            ),
            data_points=tuple(collected.data_points),
            timeline_expectation=self.timeline_expectation(primary),
            historical_context=self.historical_context(history),
        )

    @staticmethod
    def steady_state(metrics: SignatureMetrics) -> AdaptationExplanation:
        return AdaptationExplanation(
            recommendation_id=f"no-change-{uuid.uuid4().hex[:12]}",
            primary_reason="Your current plan is working well",
            contributing_factors=(
                ExplanationFactor(
                    metric="Adaptive Recovery Index",
                    value=metrics.recovery_index,
                    impact="low",
                    description="Your recovery is on track",
                    trend="stable",
                ),
            ),
            confidence=STEADY_STATE_CONFIDENCE,
            risk_factors=(),
            expected_outcome="Continue seeing steady progress with current approach",
            alternatives_considered=(),
            data_points=("No concerning metrics detected",),
            timeline_expectation="Keep monitoring for next 1-2 weeks",
        )

    @staticmethod
    def contributing_factors(metrics: SignatureMetrics) -> _FactorCollector:
        collected = _FactorCollector()

        if metrics.recovery_index < 30:
            collected.add(
                ExplanationFactor(
                    metric="Adaptive Recovery Index",
                    value=metrics.recovery_index,
                    impact="high",
                    description="Your recovery capacity is significantly compromised",
                    trend="declining",
                ),
                f"ARI at {metrics.recovery_index}% (critical threshold: 30%)",
            )

        if metrics.engagement_score < 40:
            collected.add(
                ExplanationFactor(
                    metric="Engagement Score",
                    value=metrics.engagement_score,
                    impact="high",
                    description="Your motivation and consistency have dropped notably",
                    trend="declining",
                ),
                f"Engagement at {metrics.engagement_score}% (warning threshold: 40%)",
            )

        if metrics.motivational_momentum < 30:
            collected.add(
                ExplanationFactor(
                    metric="Motivational Momentum",
                    value=metrics.motivational_momentum,
                    impact="medium",
                    description="Your recent session ratings and motivation are trending down",
                    trend="declining",
                ),
                f"Motivational momentum at {metrics.motivational_momentum}% (warning threshold: 30%)",
            )

        if metrics.progress_velocity < 20:
            collected.add(
                ExplanationFactor(
                    metric="Progress Velocity",
                    value=metrics.progress_velocity,
                    impact="medium",
                    description="Your rate of improvement has slowed",
                    trend="declining",
                ),
                f"Progress velocity at {metrics.progress_velocity}% (target: >50%)",
            )

        return collected

    @staticmethod
    def primary_reason(rec: Recommendation, metrics: SignatureMetrics) -> str:
        if rec.type == RecommendationType.RECOVERY:
            return (
                f"Your Adaptive Recovery Index ({metrics.recovery_index}%) indicates "
                f"you need focused recovery time"
            )
        if rec.type == RecommendationType.INTENSITY:
            return (
                f"Based on your fatigue patterns and engagement score "
                f"({metrics.engagement_score}%), an intensity adjustment will optimize "
                f"your progress"
            )
        if rec.type == RecommendationType.EXERCISE_SWAP:
            return (
                f"Your motivational momentum ({metrics.motivational_momentum}%) suggests "
                f"exercise variety will reignite your enthusiasm"
            )
        if rec.type == RecommendationType.FREQUENCY:
            return (
                f"Your engagement score ({metrics.engagement_score}%) shows your routine "
                f"needs simplifying to rebuild consistency"
            )
        return rec.reason

    @staticmethod
    def confidence(factors: Sequence[ExplanationFactor], signature: UserSignature) -> float:
        high_impact = sum(1 for f in factors if f.impact == "high")
        share = high_impact / max(len(factors), 1)
        return min(MAX_EXPLANATION_CONFIDENCE, share * 0.7 + signature.confidence_level * 0.3)

    @staticmethod
    def risk_factors(rec: Recommendation) -> list[str]:
        risks = []
        if rec.priority == Priority.CRITICAL:
            risks.append(
                "Without intervention, you may experience motivation loss or potential burnout"
            )
        intensity = rec.numeric_adjustment(ChangeTarget.INTENSITY)
        if intensity is not None and intensity < LARGE_INTENSITY_CUT:
            risks.append("Significant intensity reduction may temporarily slow visible progress")
        return risks

    @staticmethod
    def expected_outcome(rec: Recommendation) -> str:
        timeframe = "within a few days" if rec.duration_days <= 3 else "over the next week"

        if rec.type == RecommendationType.RECOVERY:
            return (
                f"Your ARI should improve by 20-30% {timeframe}, leading to better "
                f"workout quality and motivation"
            )
        if rec.type == RecommendationType.INTENSITY:
            intensity = rec.numeric_adjustment(ChangeTarget.INTENSITY)
            direction = "reduction" if intensity is not None and intensity < 0 else "increase"
            return (
                f"This {direction} should improve your adherence quality and engagement "
                f"score {timeframe}"
            )
        return f"You should see improvements in relevant metrics {timeframe}"

    @staticmethod
    def timeline_expectation(rec: Recommendation) -> str:
        return (
            f"Initial improvements expected within {math.ceil(rec.duration_days / 2)} days, "
            f"full effect by day {rec.duration_days}"
        )

    @staticmethod
    def historical_context(history: Sequence[AdaptationHistoryEntry]) -> str | None:
        successes = [
            h
            for h in history
            if h.has_outcome and h.effectiveness > HISTORICAL_SUCCESS_THRESHOLD
        ][-HISTORICAL_CONTEXT_ENTRIES:]
        if not successes:
            return None

        types: list[str] = []
        for entry in reversed(successes):
            if entry.recommendation.type.value not in types:
                types.append(entry.recommendation.type.value)
        return f"Based on your history, {' and '.join(types)} adaptations work well for you"


__all__ = [
    "AdaptationExplanation",
    "AlternativeOption",
    "ExplanationFactor",
    "ExplanationGenerator",
]
