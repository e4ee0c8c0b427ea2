"""
History Filter, Effectiveness Weighting and Outcome Learning

Uses the user's adaptation history to keep failed or recently tried
strategies out of the output, shifts priorities by learned effectiveness,
and folds observed outcomes back into analytics, rule weights and the user
signature.
"""

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import datetime, timedelta
from statistics import mean

import structlog

from .config import HistoryConfig, SignatureConfig
from .interactions import RuleContext
from .models import (
    AdaptationAnalytics,
    AdaptationHistoryEntry,
    AdaptationOutcome,
    ChangeTarget,
    Priority,
    Recommendation,
    RecommendationType,
    RuleName,
    SignatureMetrics,
    UserSignature,
)
from .personalization import TRIGGER_STRATEGIES
from .snapshot import MetricsSnapshot

logger = structlog.get_logger(__name__)

STRATEGY_TRIGGERS = {strategy: trigger for trigger, strategy in TRIGGER_STRATEGIES.items()}


def calculate_effectiveness(outcome: AdaptationOutcome) -> float:
    """Mean of the three outcome deltas, clamped to [0, 1]."""
    raw = mean(
        (outcome.adherence_change, outcome.motivation_change, outcome.performance_change)
    )
    return max(0.0, min(1.0, raw))


def combination_key(rules: Iterable[RuleName]) -> str:
    return "+".join(sorted(rule.value for rule in rules))


def derive_context_factors(
    snapshot: MetricsSnapshot, metrics: SignatureMetrics, rule_context: RuleContext
) -> tuple[str, ...]:
    """Context tags that select learned contextual modifiers."""
    factors = list(rule_context.contextual_factors)
    if snapshot.lifestyle.stress_level > 7:
        factors.append("high_stress")
    if snapshot.lifestyle.sleep_hours < 6:
        factors.append("poor_sleep")
    if metrics.engagement_score < 40:
        factors.append("low_engagement")
    if not snapshot.recent_workouts:
        factors.append("no_recent_sessions")
    return tuple(factors)


class HistoryFilter:
    """
    Drops non-critical recommendations whose type failed last time or was
    tried within the recency window. Critical recommendations always pass.
    """

    def __init__(self, config: HistoryConfig | None = None):
        self.config = config or HistoryConfig()

    def failure_set(self, history: Sequence[AdaptationHistoryEntry]) -> set[RecommendationType]:
        """Types whose most recent outcome-bearing entry fell below the failure threshold."""
        latest: dict[RecommendationType, float] = {}
        for entry in sorted(history, key=lambda h: h.timestamp):
            if entry.has_outcome:
                latest[entry.recommendation.type] = entry.effectiveness
        return {
            rec_type
            for rec_type, effectiveness in latest.items()
            if effectiveness < self.config.failure_threshold
        }

    def recency_set(
        self, history: Sequence[AdaptationHistoryEntry], reference_time: datetime
    ) -> set[RecommendationType]:
        window_start = reference_time - timedelta(days=self.config.recency_window_days)
        return {
            entry.recommendation.type
            for entry in history
            if window_start < entry.timestamp <= reference_time
        }

    def filter(
        self,
        recommendations: Iterable[Recommendation],
        history: Sequence[AdaptationHistoryEntry],
        reference_time: datetime,
    ) -> list[Recommendation]:
        failed = self.failure_set(history)
        recent = self.recency_set(history, reference_time)

        kept: list[Recommendation] = []
        for rec in recommendations:
            if rec.priority == Priority.CRITICAL:
                kept.append(rec)
                continue
            if rec.type in failed or rec.type in recent:
                logger.debug(
                    "Recommendation filtered by history",
                    type=rec.type.value,
                    failed=rec.type in failed,
                    recent=rec.type in recent,
                )
                continue
            kept.append(rec)
        return kept


class EffectivenessWeighting:
    """Promotes or demotes one priority level from learned effectiveness."""

    def __init__(self, config: HistoryConfig | None = None):
        self.config = config or HistoryConfig()

    def effective_rate(
        self,
        rec: Recommendation,
        analytics: AdaptationAnalytics,
        default_weights: dict[RuleName, float] | None = None,
        context_factors: Sequence[str] = (),
    ) -> float:
        default_weights = default_weights or {}
        rate = analytics.effectiveness_rates.get(rec.type, self.config.default_effectiveness_rate)

        factors = []
        for rule in rec.source_rules:
            weights = analytics.rule_weights.get(rule)
            if weights is None:
                factors.append(default_weights.get(rule, 1.0))
            else:
                factors.append(weights.factor(context_factors))
        if factors:
            rate *= mean(factors)

        return max(0.0, min(1.0, rate))

    def apply(
        self,
        recommendations: Iterable[Recommendation],
        analytics: AdaptationAnalytics,
        default_weights: dict[RuleName, float] | None = None,
        context_factors: Sequence[str] = (),
    ) -> list[Recommendation]:
        weighted = []
        for rec in recommendations:
            rate = self.effective_rate(rec, analytics, default_weights, context_factors)
            if rate > self.config.promotion_threshold:
                rec = rec.with_priority(rec.priority.promote())
            elif rate < self.config.demotion_threshold:
                rec = rec.with_priority(rec.priority.demote())
            weighted.append(rec)
        return weighted


class OutcomeLearner:
    """Folds a recorded outcome into analytics, rule weights and the signature."""

    def __init__(
        self,
        history_config: HistoryConfig | None = None,
        signature_config: SignatureConfig | None = None,
    ):
        self.history_config = history_config or HistoryConfig()
        self.signature_config = signature_config or SignatureConfig()

    def resolve(
        self, entry: AdaptationHistoryEntry, outcome: AdaptationOutcome
    ) -> AdaptationHistoryEntry:
        return replace(
            entry,
            outcome=outcome,
            effectiveness=calculate_effectiveness(outcome),
            satisfaction=outcome.satisfaction_rating,
        )

    def update_analytics(
        self, analytics: AdaptationAnalytics, entry: AdaptationHistoryEntry, now: datetime
    ) -> None:
        rec_type = entry.recommendation.type
        count = analytics.outcome_counts.get(rec_type, 0) + 1
        previous = analytics.effectiveness_rates.get(rec_type, entry.effectiveness)
        analytics.outcome_counts[rec_type] = count
        analytics.effectiveness_rates[rec_type] = previous + (entry.effectiveness - previous) / count

        key = combination_key(entry.triggered_rules)
        combo_count = analytics.combination_counts.get(key, 0) + 1
        combo_previous = analytics.combination_outcomes.get(key, entry.effectiveness)
        analytics.combination_counts[key] = combo_count
        analytics.combination_outcomes[key] = (
            combo_previous + (entry.effectiveness - combo_previous) / combo_count
        )

        analytics.data_points += 1
        analytics.last_updated = now

    def update_rule_weights(
        self,
        analytics: AdaptationAnalytics,
        entry: AdaptationHistoryEntry,
        now: datetime,
        default_weights: dict[RuleName, float] | None = None,
    ) -> None:
        default_weights = default_weights or {}
        low, high = self.history_config.min_rule_weight, self.history_config.max_rule_weight

        for rule in entry.recommendation.source_rules:
            weights = analytics.weights_for(rule, default_weights.get(rule, 1.0))
            step = weights.learning_rate * (entry.effectiveness - 0.5)
            weights.base_weight = max(low, min(high, weights.base_weight + step))
            for tag in entry.context_factors:
                modifier = weights.contextual_modifiers.get(tag, 1.0)
                weights.contextual_modifiers[tag] = max(low, min(high, modifier + step))
            weights.last_updated = now

    def update_signature(
        self,
        signature: UserSignature,
        entry: AdaptationHistoryEntry,
        outcome: AdaptationOutcome,
        now: datetime,
    ) -> None:
        config = self.signature_config
        rec = entry.recommendation
        effectiveness = entry.effectiveness
        succeeded = effectiveness > self.history_config.success_threshold
        failed = effectiveness < self.history_config.failure_threshold
        strategy = next(
            (
                c.adjustment
                for c in rec.changes
                if c.target == ChangeTarget.EXERCISE and not c.is_numeric
            ),
            None,
        )

        if succeeded and strategy and rec.type == RecommendationType.EXERCISE_SWAP:
            signature.plateau_breakers = [strategy] + [
                b for b in signature.plateau_breakers if b != strategy
            ]

        if succeeded and strategy and outcome.motivation_change > 0:
            trigger = STRATEGY_TRIGGERS.get(strategy, strategy)
            if trigger not in signature.motivational_triggers:
                signature.motivational_triggers.append(trigger)

        if failed and rec.type in (RecommendationType.INTENSITY, RecommendationType.RECOVERY):
            signature.average_recovery_days = min(
                config.max_recovery_days,
                signature.average_recovery_days + config.recovery_days_penalty,
            )
        elif succeeded and rec.type == RecommendationType.RECOVERY:
            signature.average_recovery_days = max(
                config.min_recovery_days,
                signature.average_recovery_days - config.recovery_days_reward,
            )

        if outcome.adherence_change > config.compliance_delta_threshold:
            signature.compliance_pattern = "improving"
        elif outcome.adherence_change < -config.compliance_delta_threshold:
            signature.compliance_pattern = "declining"
        else:
            signature.compliance_pattern = "stable"

        signature.last_updated = now


def predict_future_needs(
    signature: UserSignature,
    history: Sequence[AdaptationHistoryEntry],
    limit: int = 10,
) -> list[str]:
    """Coarse needs forecast from recurring adaptations and signature patterns."""
    needs: list[str] = []
    recent = list(history)[-limit:]

    recurring = Counter(entry.recommendation.type for entry in recent)
    for rec_type, count in recurring.most_common():
        if count >= 2:
            needs.append(f"Recurring {rec_type.value} adaptations; consider a longer-term adjustment")

    if signature.average_recovery_days > 3:
        needs.append("Extended recovery windows between demanding sessions")
    if signature.compliance_pattern == "declining":
        needs.append("Consistency support before adding training load")
    if signature.plateau_breakers:
        needs.append(f"Keep {signature.plateau_breakers[0]} ready for the next plateau")

    failures = [e for e in recent if e.has_outcome and e.effectiveness < 0.3]
    if len(failures) >= 2:
        needs.append("Review strategy mix; several recent adaptations were ineffective")

    return needs


__all__ = [
    "EffectivenessWeighting",
    "HistoryFilter",
    "OutcomeLearner",
    "calculate_effectiveness",
    "combination_key",
    "derive_context_factors",
    "predict_future_needs",
]
