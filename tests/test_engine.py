"""
Integration tests for the adaptation engine facade.

Exercises the full pipeline through the public API: ranked analysis,
history-aware filtering across analyses, outcome learning, explained
analysis with preemptive planning and simulation, rule set rollout and
per-user serialization.
"""

import unittest
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
from factories import (
    NOW,
    make_outcome,
    make_plan,
    make_rec,
    make_sessions,
    make_snapshot,
    poor_sleep_snapshot,
    stressed_snapshot,
)
from pydantic import ValidationError

from adaptation_engine.config import ConfigManager, EngineSettings
from adaptation_engine.engine import AdaptationEngine
from adaptation_engine.exceptions import AdaptationEngineError, SnapshotMismatchError
from adaptation_engine.ml_overlay import DEFAULT_MODEL, MLOverlay, StaticInferenceProvider
from adaptation_engine.models import (
    ChangeTarget,
    PlanChange,
    Priority,
    RecommendationType,
    RuleName,
    sort_by_priority,
)
from adaptation_engine.rule_sets import RuleSetVersion
from adaptation_engine.snapshot import ProgressData
from adaptation_engine.store import InMemoryAdaptationStore


def small_config():
    config = ConfigManager()
    config.simulation.iterations = 12
    config.simulation.max_workers = 2
    config.simulation.seed = 1234
    return config


class EngineTestCase(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryAdaptationStore()
        self.engine = AdaptationEngine(store=self.store, config=small_config())


@pytest.mark.medium
@pytest.mark.integration
class TestAnalyze(EngineTestCase):
    def test_healthy_user_gets_no_recommendations(self):
        recs = self.engine.analyze("user-1", make_snapshot())

        self.assertEqual(recs, [])
        self.assertEqual(self.store.get_history("user-1"), [])
        signature = self.store.get_signature("user-1")
        self.assertAlmostEqual(signature.confidence_level, 0.15)
        self.assertEqual(signature.last_updated, NOW)

    def test_snapshot_owner_must_match(self):
        with self.assertRaises(SnapshotMismatchError) as ctx:
            self.engine.analyze("user-2", make_snapshot("user-1"))

        self.assertEqual(ctx.exception.error_code, "SNAPSHOT_USER_MISMATCH")
        self.assertIsNone(self.store.get_signature("user-2"))

    def test_compound_stress_and_fatigue(self):
        recs = self.engine.analyze("user-1", stressed_snapshot())

        self.assertEqual(len(recs), 2)
        protocol = recs[0]
        self.assertEqual(protocol.type, RecommendationType.RECOVERY)
        self.assertEqual(protocol.priority, Priority.CRITICAL)
        self.assertEqual(protocol.source_rules, (RuleName.FATIGUE, RuleName.STRESS))
        self.assertEqual(recs[1].source_rules, (RuleName.RECOVERY,))
        self.assertEqual(recs[1].priority, Priority.CRITICAL)

    def test_history_entry_per_recommendation(self):
        recs = self.engine.analyze("user-1", stressed_snapshot())
        history = self.store.get_history("user-1")

        self.assertEqual([h.id for h in history], [r.id for r in recs])
        self.assertEqual(len({h.analysis_id for h in history}), 1)
        self.assertTrue(all(h.timestamp == NOW for h in history))
        self.assertTrue(all(h.rule_set_version == "v1.0.0" for h in history))
        self.assertIn("high_stress_fatigue_compound", history[0].context_factors)
        self.assertIn("high_stress", history[0].context_factors)
        self.assertEqual(
            set(history[0].triggered_rules),
            {RuleName.FATIGUE, RuleName.RECOVERY, RuleName.STRESS},
        )

    def test_recommendations_sorted_by_priority(self):
        snapshot = make_snapshot(sleep_hours=4.5, motivation=5.0)
        recs = self.engine.analyze("user-1", snapshot)

        ranks = [r.priority.rank for r in recs]
        self.assertEqual(ranks, sorted(ranks, reverse=True))
        self.assertGreater(len(recs), 1)

    def test_equal_priorities_keep_input_order(self):
        medium_a = make_rec(priority=Priority.MEDIUM, reason="first medium")
        critical = make_rec(priority=Priority.CRITICAL)
        medium_b = make_rec(priority=Priority.MEDIUM, reason="second medium")

        ranked = sort_by_priority([medium_a, critical, medium_b])

        self.assertEqual([r.id for r in ranked], [critical.id, medium_a.id, medium_b.id])

    def test_recently_tried_type_is_filtered(self):
        first = self.engine.analyze("user-1", poor_sleep_snapshot())
        again = self.engine.analyze("user-1", poor_sleep_snapshot(captured_at=NOW + timedelta(days=1)))
        later = self.engine.analyze(
            "user-1", poor_sleep_snapshot(captured_at=NOW + timedelta(days=10))
        )

        self.assertEqual([r.type for r in first], [RecommendationType.RECOVERY])
        self.assertEqual(first[0].priority, Priority.HIGH)
        self.assertEqual(again, [])
        self.assertEqual([r.type for r in later], [RecommendationType.RECOVERY])

    def test_critical_recommendations_bypass_history(self):
        self.engine.analyze("user-1", stressed_snapshot())
        again = self.engine.analyze("user-1", stressed_snapshot(captured_at=NOW + timedelta(hours=6)))

        self.assertEqual(len(again), 2)
        self.assertEqual(len(self.store.get_history("user-1")), 4)

    def test_training_sample_recorded(self):
        self.engine.analyze("user-1", stressed_snapshot())
        (sample,) = self.store.get_training_samples("user-1")

        self.assertEqual(sample.recommendation_types, (RecommendationType.RECOVERY,) * 2)
        self.assertAlmostEqual(sample.validation_weight, 0.15)
        self.assertIn("stress_level", sample.features)

    def test_invalid_config_rejected(self):
        config = ConfigManager()
        config.simulation.iterations = 0

        with self.assertRaises(AdaptationEngineError) as ctx:
            AdaptationEngine(config=config)
        self.assertEqual(ctx.exception.error_code, "INVALID_CONFIG")


@pytest.mark.medium
@pytest.mark.integration
class TestOutcomeLearning(EngineTestCase):
    def test_successful_outcome_updates_state(self):
        (rec,) = self.engine.analyze("user-1", poor_sleep_snapshot())

        result = self.engine.record_outcome("user-1", rec.id, make_outcome(0.9))

        self.assertTrue(result.applied)
        self.assertAlmostEqual(result.effectiveness, 0.9)
        (entry,) = self.store.get_history("user-1")
        self.assertTrue(entry.has_outcome)
        analytics = self.store.get_analytics("user-1")
        self.assertAlmostEqual(analytics.effectiveness_rates[RecommendationType.RECOVERY], 0.9)
        self.assertAlmostEqual(analytics.rule_weights[RuleName.RECOVERY].base_weight, 0.92)
        signature = self.store.get_signature("user-1")
        self.assertEqual(signature.average_recovery_days, 1.75)
        self.assertEqual(signature.compliance_pattern, "improving")

    def test_successful_type_is_promoted_next_time(self):
        (rec,) = self.engine.analyze("user-1", poor_sleep_snapshot())
        self.engine.record_outcome("user-1", rec.id, make_outcome(0.9))

        (promoted,) = self.engine.analyze(
            "user-1", poor_sleep_snapshot(captured_at=NOW + timedelta(days=10))
        )

        self.assertEqual(promoted.type, RecommendationType.RECOVERY)
        self.assertEqual(promoted.priority, Priority.CRITICAL)

    def test_failed_type_is_filtered_next_time(self):
        (rec,) = self.engine.analyze("user-1", poor_sleep_snapshot())
        self.engine.record_outcome("user-1", rec.id, make_outcome(-0.5))

        later = self.engine.analyze(
            "user-1", poor_sleep_snapshot(captured_at=NOW + timedelta(days=10))
        )

        self.assertEqual(later, [])
        self.assertEqual(self.store.get_signature("user-1").average_recovery_days, 2.5)

    def test_unknown_recommendation_is_diagnosed(self):
        issued = self.engine.analyze("user-1", stressed_snapshot())
        before = self.store.get_history("user-1")

        result = self.engine.record_outcome("user-1", "rec-missing", make_outcome(0.5))

        self.assertFalse(result.applied)
        self.assertIn("rec-missing", result.diagnostic)
        self.assertIsNone(self.store.get_analytics("user-1"))
        after = self.store.get_history("user-1")
        self.assertEqual(len(after), len(before))
        self.assertEqual(len(after), len(issued))
        self.assertFalse(any(entry.has_outcome for entry in after))

    def test_outcome_recorded_once(self):
        (rec,) = self.engine.analyze("user-1", poor_sleep_snapshot())
        self.engine.record_outcome("user-1", rec.id, make_outcome(0.9))

        repeat = self.engine.record_outcome("user-1", rec.id, make_outcome(0.1))

        self.assertFalse(repeat.applied)
        self.assertEqual(self.store.get_analytics("user-1").data_points, 1)


@pytest.mark.medium
@pytest.mark.integration
class TestAnalyzeWithExplanation(EngineTestCase):
    def test_report_for_critical_analysis(self):
        sink = Mock()
        engine = AdaptationEngine(store=self.store, config=small_config(), explanation_sink=sink)

        report = engine.analyze_with_explanation(stressed_snapshot())

        self.assertEqual(report.user_id, "user-1")
        self.assertEqual(report.explanation.recommendation_id, report.recommendations[0].id)
        self.assertEqual(report.preemptive_plan.user_id, "user-1")
        self.assertIsNotNone(report.simulation)
        self.assertEqual(report.simulation.iterations, 12)
        self.assertEqual(report.rule_set_version, "v1.0.0")
        sink.record.assert_called_once()

        (sample,) = self.store.get_training_samples("user-1")
        self.assertEqual(sample.validation_weight, report.explanation.confidence)
        self.assertEqual(sample.analysis_id, report.analysis_id)
        self.assertIn("recommendations", report.to_dict())

    def test_steady_state_skips_simulation(self):
        report = self.engine.analyze_with_explanation(make_snapshot())

        self.assertEqual(report.recommendations, ())
        self.assertIsNone(report.simulation)
        self.assertEqual(report.explanation.confidence, 0.9)
        self.assertEqual(self.store.get_training_samples(), [])

    def test_simulation_can_be_forced_or_skipped(self):
        forced = self.engine.analyze_with_explanation(make_snapshot(), simulate=True)
        skipped = self.engine.analyze_with_explanation(
            stressed_snapshot(captured_at=NOW + timedelta(days=1)), simulate=False
        )

        self.assertIsNotNone(forced.simulation)
        self.assertIsNone(skipped.simulation)

    def test_failing_sink_does_not_break_analysis(self):
        sink = Mock()
        sink.record.side_effect = RuntimeError("telemetry down")
        engine = AdaptationEngine(store=self.store, config=small_config(), explanation_sink=sink)

        report = engine.analyze_with_explanation(stressed_snapshot())

        self.assertEqual(len(report.recommendations), 2)


@pytest.mark.medium
@pytest.mark.integration
class TestEngineOperations(EngineTestCase):
    def test_apply_recommendations(self):
        plan = make_plan(intensity=7.0, volume=10.0, frequency=4)
        critical = make_rec(
            priority=Priority.CRITICAL,
            changes=(
                PlanChange(ChangeTarget.INTENSITY, -40),
                PlanChange(ChangeTarget.VOLUME, -30),
                PlanChange(ChangeTarget.FREQUENCY, -1),
                PlanChange(ChangeTarget.REST, "+1 day"),
            ),
        )
        medium = make_rec(
            priority=Priority.MEDIUM, changes=(PlanChange(ChangeTarget.FREQUENCY, -2),)
        )

        adjusted = AdaptationEngine.apply_recommendations(plan, [critical, medium])

        self.assertAlmostEqual(adjusted.intensity, 4.2)
        self.assertAlmostEqual(adjusted.volume, 7.0)
        self.assertEqual(adjusted.frequency, 3)
        self.assertEqual(plan.intensity, 7.0)

    def test_apply_recommendations_clamps(self):
        plan = make_plan(intensity=1.5, frequency=1)
        rec = make_rec(
            priority=Priority.HIGH,
            changes=(
                PlanChange(ChangeTarget.INTENSITY, -95),
                PlanChange(ChangeTarget.FREQUENCY, -3),
            ),
        )

        adjusted = AdaptationEngine.apply_recommendations(plan, [rec])

        self.assertEqual(adjusted.intensity, 1.0)
        self.assertEqual(adjusted.frequency, 1)

    def test_get_user_signature_creates_default_copy(self):
        signature = self.engine.get_user_signature("user-9")
        signature.plateau_breakers.append("tempo_work")

        stored = self.engine.get_user_signature("user-9")
        self.assertEqual(stored.plateau_breakers, [])
        self.assertEqual(stored.confidence_level, 0.1)
        self.assertEqual(stored.preferred_intensity_range, (5, 8))

    def test_simulate_does_not_persist_state(self):
        result = self.engine.simulate(stressed_snapshot(), [make_rec()])

        self.assertEqual(result.iterations, 12)
        self.assertIsNone(self.store.get_signature("user-1"))

    def test_user_insights(self):
        for day in range(12):
            self.engine.analyze("user-1", stressed_snapshot(captured_at=NOW + timedelta(days=day)))

        insights = self.engine.get_user_insights("user-1")

        self.assertEqual(len(insights.recent_history), 10)
        self.assertEqual(insights.rule_set_version, "v1.0.0")
        self.assertIsNone(insights.test_group)
        self.assertTrue(insights.predicted_needs[0].startswith("Recurring recovery"))

    def test_rule_set_rollout(self):
        self.engine.deploy_rule_set_version(
            RuleSetVersion(
                version_id="v1.1.0",
                version_name="sleep_only",
                rules=(RuleName.SLEEP,),
                rule_weights={RuleName.SLEEP: 1.0},
            ),
            test_group_percentage=100,
        )

        self.assertEqual(self.engine.analyze("user-1", stressed_snapshot()), [])
        recs = self.engine.analyze("user-2", make_snapshot("user-2", sleep_hours=4.0))

        self.assertEqual([r.type for r in recs], [RecommendationType.REST_DAY])
        (entry,) = self.store.get_history("user-2")
        self.assertEqual(entry.rule_set_version, "v1.1.0")
        self.assertEqual(self.engine.get_user_insights("user-2").test_group, "v1.1.0")

    def test_ml_overlay_tunes_pipeline_output(self):
        overlay = MLOverlay(
            StaticInferenceProvider(),
            model=replace(DEFAULT_MODEL, deployment_status="production"),
        )
        engine = AdaptationEngine(store=self.store, config=small_config(), ml_overlay=overlay)
        snapshot = make_snapshot(sessions=make_sessions(fatigue=8.5))

        (rec,) = engine.analyze("user-1", snapshot)

        self.assertEqual(rec.type, RecommendationType.INTENSITY)
        self.assertEqual(rec.numeric_adjustment(ChangeTarget.INTENSITY), -12.5)
        self.assertEqual(rec.duration_days, 5)

    def test_concurrent_analyses(self):
        users = [f"user-{i}" for i in range(4)]
        jobs = [
            (user, stressed_snapshot(user, NOW + timedelta(hours=hour)))
            for user in users
            for hour in range(5)
        ]

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(lambda job: self.engine.analyze(*job), jobs))

        self.assertTrue(all(len(recs) == 2 for recs in results))
        for user in users:
            self.assertEqual(len(self.store.get_history(user)), 10)
            self.assertAlmostEqual(self.store.get_signature(user).confidence_level, 0.35)


@pytest.mark.medium
@pytest.mark.integration
class TestSnapshotTimestamps(EngineTestCase):
    def test_naive_plan_start_is_read_as_utc(self):
        snapshot = make_snapshot(plan=make_plan(started_at=datetime(2024, 1, 1)))

        report = self.engine.analyze_with_explanation(snapshot)

        self.assertEqual(snapshot.current_plan.started_at.tzinfo, timezone.utc)
        self.assertEqual(report.preemptive_plan.current_week, 8)

    def test_naive_capture_after_aware_capture(self):
        first = self.engine.analyze("user-1", poor_sleep_snapshot())
        naive = poor_sleep_snapshot(captured_at=datetime(2024, 3, 2, 12))

        again = self.engine.analyze("user-1", naive)

        self.assertEqual(len(first), 1)
        self.assertEqual(naive.captured_at, NOW + timedelta(days=1))
        self.assertEqual(naive.recent_workouts[0].scheduled_date.tzinfo, timezone.utc)
        self.assertEqual(again, [])

    def test_offset_timestamps_converted_to_utc(self):
        local = datetime(2024, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))

        snapshot = make_snapshot(captured_at=local)

        self.assertEqual(snapshot.captured_at, NOW)
        self.assertEqual(snapshot.captured_at.tzinfo, timezone.utc)


@pytest.mark.fast
def test_average_rating_is_required():
    with pytest.raises(ValidationError):
        ProgressData(weekly_consistency=0.9)


@pytest.mark.fast
def test_from_settings_applies_environment(monkeypatch):
    monkeypatch.setenv("ADAPTATION_SIMULATION_ITERATIONS", "8")

    engine = AdaptationEngine.from_settings(EngineSettings())

    assert engine.config.simulation.iterations == 8
    assert engine.simulator.config.iterations == 8
