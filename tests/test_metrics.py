"""
Tests for the signature metric calculator.

Covers each composite score, the neutral fallbacks for users without
session data and the history-windowed metrics.
"""

import unittest
from datetime import timedelta

import pytest
from factories import NOW, make_entry, make_rec, make_sessions, make_signature, make_snapshot

from adaptation_engine.config import HistoryConfig
from adaptation_engine.metrics import MetricCalculator


@pytest.mark.fast
class TestMetricCalculator(unittest.TestCase):
    def setUp(self):
        self.calculator = MetricCalculator(HistoryConfig())
        self.signature = make_signature()

    def test_healthy_snapshot_scores(self):
        metrics = self.calculator.calculate(make_snapshot(), self.signature)

        # sleep 0.8, stress 0.7, workload 0.6, resilience 0.95 * 0.7
        self.assertEqual(metrics.recovery_index, 69)
        self.assertEqual(metrics.engagement_score, 84)
        self.assertEqual(metrics.motivational_momentum, 40)
        self.assertEqual(metrics.progress_velocity, 35)
        self.assertEqual(metrics.metabolic_adaptation, 50)
        self.assertEqual(metrics.plan_volatility, 0)

    def test_all_scores_within_bounds(self):
        snapshot = make_snapshot(
            sleep_hours=0.0,
            sleep_quality=1.0,
            stress_level=10.0,
            workload=10.0,
            motivation=1.0,
            weekly_consistency=0.0,
            average_rating=0.0,
            strength_gains={"squat": 50.0},
        )
        metrics = self.calculator.calculate(snapshot, self.signature)

        for name, value in metrics.to_dict().items():
            self.assertGreaterEqual(value, 0, name)
            self.assertLessEqual(value, 100, name)

    def test_neutral_fallbacks_without_sessions(self):
        snapshot = make_snapshot(sessions=())
        metrics = self.calculator.calculate(snapshot, self.signature)

        self.assertEqual(metrics.adherence_quality, 50)
        self.assertEqual(metrics.adaptation_efficiency, 50)
        # strength gains 2.0 plus the neutral session count of 5
        self.assertEqual(metrics.progress_velocity, 35)
        self.assertEqual(MetricCalculator.fatigue_resilience(()), 0.5)

    def test_momentum_follows_rating_trend(self):
        rising = make_snapshot(sessions=make_sessions(ratings=[4.0, 5.0, 6.0, 7.0, 8.0]))
        metrics = self.calculator.calculate(rising, self.signature)

        # (0.8 + 0.8 / 10) * 50
        self.assertEqual(metrics.motivational_momentum, 44)

    def test_resilience_uses_recovery_days_and_responsiveness(self):
        signature = make_signature(average_recovery_days=7.0, adaptation_responsiveness=0.5)
        self.assertEqual(MetricCalculator.resilience(signature), 75)

    def test_plan_volatility_counts_entries_in_window(self):
        history = [
            make_entry(make_rec(), timestamp=NOW - timedelta(days=days)) for days in (1, 5, 20)
        ]
        history.append(make_entry(make_rec(), timestamp=NOW - timedelta(days=45)))

        metrics = self.calculator.calculate(make_snapshot(), self.signature, history)

        self.assertEqual(metrics.plan_volatility, 10)

    def test_adaptation_efficiency_from_scored_history(self):
        history = [
            make_entry(make_rec(), effectiveness=value) for value in (0.9, 0.8, 0.1, 0.7)
        ]
        history.append(make_entry(make_rec()))  # no outcome yet

        self.assertEqual(self.calculator.adaptation_efficiency(history), 75)

    def test_calculation_is_repeatable(self):
        snapshot = make_snapshot()
        first = self.calculator.calculate(snapshot, self.signature)
        second = self.calculator.calculate(snapshot, self.signature)

        self.assertEqual(first, second)
