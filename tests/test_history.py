"""
Tests for history filtering, effectiveness weighting and outcome learning.
"""

import unittest
from datetime import timedelta

import pytest
from factories import (
    NOW,
    make_entry,
    make_metrics,
    make_outcome,
    make_rec,
    make_signature,
    make_snapshot,
)

from adaptation_engine.config import HistoryConfig, SignatureConfig
from adaptation_engine.history import (
    EffectivenessWeighting,
    HistoryFilter,
    OutcomeLearner,
    calculate_effectiveness,
    combination_key,
    derive_context_factors,
    predict_future_needs,
)
from adaptation_engine.interactions import InteractionAnalyzer
from adaptation_engine.models import (
    AdaptationAnalytics,
    ChangeTarget,
    PlanChange,
    Priority,
    RecommendationType,
    RuleName,
    RuleWeights,
)
from adaptation_engine.rule_sets import BASELINE_RULE_SET


@pytest.mark.fast
class TestEffectivenessHelpers(unittest.TestCase):
    def test_effectiveness_is_clamped_mean(self):
        self.assertAlmostEqual(calculate_effectiveness(make_outcome(0.5)), 0.5)
        self.assertEqual(calculate_effectiveness(make_outcome(-0.8)), 0.0)
        self.assertEqual(calculate_effectiveness(make_outcome(1.0)), 1.0)

    def test_combination_key_is_order_independent(self):
        self.assertEqual(
            combination_key([RuleName.STRESS, RuleName.FATIGUE]),
            combination_key([RuleName.FATIGUE, RuleName.STRESS]),
        )
        self.assertEqual(combination_key([RuleName.STRESS, RuleName.FATIGUE]), "FatigueRule+StressRule")

    def test_context_factors(self):
        snapshot = make_snapshot(stress_level=9.0, sleep_hours=5.0, sessions=())
        context = InteractionAnalyzer().analyze([RuleName.FATIGUE, RuleName.STRESS])

        factors = derive_context_factors(snapshot, make_metrics(engagement_score=30), context)

        self.assertEqual(
            factors,
            (
                "high_stress_fatigue_compound",
                "high_stress",
                "poor_sleep",
                "low_engagement",
                "no_recent_sessions",
            ),
        )


@pytest.mark.fast
class TestHistoryFilter(unittest.TestCase):
    def setUp(self):
        self.filter = HistoryFilter(HistoryConfig())

    def test_failure_set_uses_latest_outcome_per_type(self):
        history = [
            make_entry(make_rec(), NOW - timedelta(days=20), effectiveness=0.1),
            make_entry(make_rec(), NOW - timedelta(days=10), effectiveness=0.8),
            make_entry(
                make_rec(type=RecommendationType.RECOVERY),
                NOW - timedelta(days=15),
                effectiveness=0.2,
            ),
            make_entry(make_rec(type=RecommendationType.VOLUME), NOW - timedelta(days=9)),
        ]

        self.assertEqual(self.filter.failure_set(history), {RecommendationType.RECOVERY})

    def test_recency_window(self):
        history = [
            make_entry(make_rec(), NOW - timedelta(days=3)),
            make_entry(make_rec(type=RecommendationType.VOLUME), NOW - timedelta(days=8)),
            make_entry(make_rec(type=RecommendationType.FREQUENCY), NOW + timedelta(days=1)),
        ]

        self.assertEqual(self.filter.recency_set(history, NOW), {RecommendationType.INTENSITY})

    def test_filter_drops_failed_and_recent_but_keeps_critical(self):
        history = [
            make_entry(make_rec(), NOW - timedelta(days=2)),
            make_entry(
                make_rec(type=RecommendationType.RECOVERY),
                NOW - timedelta(days=30),
                effectiveness=0.1,
            ),
        ]
        recent = make_rec(priority=Priority.HIGH)
        failed = make_rec(type=RecommendationType.RECOVERY, priority=Priority.MEDIUM)
        critical = make_rec(type=RecommendationType.RECOVERY, priority=Priority.CRITICAL)
        fresh = make_rec(type=RecommendationType.NUTRITION)

        kept = self.filter.filter([recent, failed, critical, fresh], history, NOW)

        self.assertEqual(kept, [critical, fresh])


@pytest.mark.fast
class TestEffectivenessWeighting(unittest.TestCase):
    def setUp(self):
        self.weighting = EffectivenessWeighting(HistoryConfig())

    def test_no_data_leaves_priority_unchanged(self):
        rec = make_rec(priority=Priority.MEDIUM, source_rules=(RuleName.MOTIVATION,))
        result = self.weighting.apply(
            [rec], AdaptationAnalytics(), BASELINE_RULE_SET.rule_weights
        )

        self.assertEqual(result[0].priority, Priority.MEDIUM)

    def test_high_rate_promotes(self):
        analytics = AdaptationAnalytics(effectiveness_rates={RecommendationType.INTENSITY: 0.9})
        (rec,) = self.weighting.apply([make_rec(priority=Priority.MEDIUM)], analytics)

        self.assertEqual(rec.priority, Priority.HIGH)

    def test_low_rate_demotes(self):
        analytics = AdaptationAnalytics(effectiveness_rates={RecommendationType.INTENSITY: 0.2})
        (rec,) = self.weighting.apply([make_rec(priority=Priority.MEDIUM)], analytics)

        self.assertEqual(rec.priority, Priority.LOW)

    def test_priority_clamped_at_extremes(self):
        analytics = AdaptationAnalytics(
            effectiveness_rates={
                RecommendationType.INTENSITY: 1.0,
                RecommendationType.VOLUME: 0.0,
            }
        )
        critical = make_rec(priority=Priority.CRITICAL)
        low = make_rec(type=RecommendationType.VOLUME, priority=Priority.LOW)

        result = self.weighting.apply([critical, low], analytics)

        self.assertEqual([r.priority for r in result], [Priority.CRITICAL, Priority.LOW])

    def test_learned_rule_weight_scales_rate(self):
        analytics = AdaptationAnalytics(
            effectiveness_rates={RecommendationType.INTENSITY: 0.9},
            rule_weights={RuleName.FATIGUE: RuleWeights(RuleName.FATIGUE, base_weight=0.5)},
        )
        rec = make_rec(priority=Priority.MEDIUM)

        self.assertAlmostEqual(self.weighting.effective_rate(rec, analytics), 0.45)
        self.assertEqual(self.weighting.apply([rec], analytics)[0].priority, Priority.MEDIUM)

    def test_contextual_modifier_applies_only_with_matching_tag(self):
        analytics = AdaptationAnalytics(
            rule_weights={
                RuleName.FATIGUE: RuleWeights(
                    RuleName.FATIGUE, contextual_modifiers={"high_stress": 2.0}
                )
            }
        )
        rec = make_rec(priority=Priority.MEDIUM)

        promoted = self.weighting.apply([rec], analytics, context_factors=("high_stress",))
        unchanged = self.weighting.apply([rec], analytics)

        self.assertEqual(promoted[0].priority, Priority.HIGH)
        self.assertEqual(unchanged[0].priority, Priority.MEDIUM)


@pytest.mark.fast
class TestOutcomeLearner(unittest.TestCase):
    def setUp(self):
        self.learner = OutcomeLearner(HistoryConfig(), SignatureConfig())

    def resolved(self, rec, value, **outcome_fields):
        outcome = make_outcome(value, **outcome_fields)
        entry = make_entry(rec, context_factors=("high_stress",))
        return self.learner.resolve(entry, outcome), outcome

    def test_resolve_sets_effectiveness_and_satisfaction(self):
        entry, _ = self.resolved(make_rec(), 0.6, satisfaction_rating=8)

        self.assertAlmostEqual(entry.effectiveness, 0.6)
        self.assertEqual(entry.satisfaction, 8)
        self.assertTrue(entry.has_outcome)

    def test_analytics_running_mean(self):
        analytics = AdaptationAnalytics()
        for value in (0.8, 0.4):
            entry, _ = self.resolved(make_rec(), value)
            self.learner.update_analytics(analytics, entry, NOW)

        self.assertAlmostEqual(analytics.effectiveness_rates[RecommendationType.INTENSITY], 0.6)
        self.assertEqual(analytics.outcome_counts[RecommendationType.INTENSITY], 2)
        self.assertEqual(analytics.data_points, 2)
        self.assertAlmostEqual(analytics.combination_outcomes["FatigueRule"], 0.6)

    def test_rule_weights_move_toward_outcome(self):
        analytics = AdaptationAnalytics()
        entry, _ = self.resolved(make_rec(source_rules=(RuleName.MOTIVATION,)), 0.9)

        self.learner.update_rule_weights(
            analytics, entry, NOW, BASELINE_RULE_SET.rule_weights
        )

        weights = analytics.rule_weights[RuleName.MOTIVATION]
        self.assertAlmostEqual(weights.base_weight, 0.62)
        self.assertAlmostEqual(weights.contextual_modifiers["high_stress"], 1.02)

    def test_rule_weights_stay_within_bounds(self):
        analytics = AdaptationAnalytics()
        entry, _ = self.resolved(make_rec(), -1.0)
        for _ in range(100):
            self.learner.update_rule_weights(analytics, entry, NOW)

        self.assertAlmostEqual(analytics.rule_weights[RuleName.FATIGUE].base_weight, 0.1)

    def test_successful_swap_becomes_first_plateau_breaker(self):
        signature = make_signature(plateau_breakers=["deload_week", "tempo_work"])
        rec = make_rec(
            type=RecommendationType.EXERCISE_SWAP,
            changes=(PlanChange(ChangeTarget.EXERCISE, "tempo_work"),),
        )
        entry, outcome = self.resolved(rec, 0.8)

        self.learner.update_signature(signature, entry, outcome, NOW)

        self.assertEqual(signature.plateau_breakers, ["tempo_work", "deload_week"])
        self.assertIn("tempo_work", signature.motivational_triggers)
        self.assertEqual(signature.compliance_pattern, "improving")

    def test_known_strategy_stored_as_trigger_key(self):
        signature = make_signature()
        rec = make_rec(
            type=RecommendationType.EXERCISE_SWAP,
            changes=(PlanChange(ChangeTarget.EXERCISE, "variety_injection"),),
        )
        entry, outcome = self.resolved(rec, 0.9)

        self.learner.update_signature(signature, entry, outcome, NOW)

        self.assertEqual(signature.motivational_triggers, ["variety"])

    def test_failed_intensity_lengthens_recovery(self):
        signature = make_signature(average_recovery_days=2.0)
        entry, outcome = self.resolved(make_rec(), -0.5)

        self.learner.update_signature(signature, entry, outcome, NOW)

        self.assertEqual(signature.average_recovery_days, 2.5)
        self.assertEqual(signature.compliance_pattern, "declining")

    def test_successful_recovery_shortens_recovery_with_floor(self):
        signature = make_signature(average_recovery_days=1.1)
        entry, outcome = self.resolved(make_rec(type=RecommendationType.RECOVERY), 0.9)

        self.learner.update_signature(signature, entry, outcome, NOW)

        self.assertEqual(signature.average_recovery_days, 1.0)

    def test_small_adherence_change_is_stable(self):
        signature = make_signature()
        entry, outcome = self.resolved(make_rec(), 0.05)

        self.learner.update_signature(signature, entry, outcome, NOW)

        self.assertEqual(signature.compliance_pattern, "stable")
        self.assertEqual(signature.last_updated, NOW)


@pytest.mark.fast
class TestPredictFutureNeeds(unittest.TestCase):
    def test_recurring_types_and_signature_patterns(self):
        signature = make_signature(
            average_recovery_days=4.0,
            compliance_pattern="declining",
            plateau_breakers=["deload_week"],
        )
        history = [
            make_entry(make_rec(), effectiveness=0.1),
            make_entry(make_rec(), effectiveness=0.2),
        ]

        needs = predict_future_needs(signature, history)

        self.assertEqual(len(needs), 5)
        self.assertTrue(needs[0].startswith("Recurring intensity adaptations"))
        self.assertIn("Keep deload_week ready for the next plateau", needs)

    def test_quiet_user_has_no_needs(self):
        self.assertEqual(predict_future_needs(make_signature(), []), [])
