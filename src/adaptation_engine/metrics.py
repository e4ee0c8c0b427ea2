"""
Signature Metric Calculator

Derives the composite 0-100 scores that every rule reads. The calculator is
a pure function of its explicit inputs: snapshot, signature and the user's
adaptation history (windowed against ``snapshot.captured_at``). Missing
session data falls back to neutral midpoints so a brand-new user never
looks like a crisis.
"""

from collections.abc import Sequence
from datetime import timedelta
from statistics import mean

from .config import HistoryConfig
from .models import AdaptationHistoryEntry, SignatureMetrics, UserSignature
from .snapshot import LifestyleData, MetricsSnapshot, MoodData, ProgressData, WorkoutSession

NEUTRAL_FATIGUE_RESILIENCE = 0.5
NEUTRAL_ADHERENCE_QUALITY = 50
NEUTRAL_ADAPTATION_EFFICIENCY = 50
NEUTRAL_RECENT_SESSION_COUNT = 5
NEUTRAL_RECOVERY_FACTOR = 0.5


def _clamp_score(value: float) -> int:
    return max(0, min(100, round(value)))


class MetricCalculator:
    """Computes SignatureMetrics with no side effects."""

    def __init__(self, history_config: HistoryConfig | None = None):
        self.history_config = history_config or HistoryConfig()

    def calculate(
        self,
        snapshot: MetricsSnapshot,
        signature: UserSignature,
        history: Sequence[AdaptationHistoryEntry] = (),
    ) -> SignatureMetrics:
        sessions = snapshot.recent_workouts
        return SignatureMetrics(
            recovery_index=self.recovery_index(snapshot.lifestyle, sessions),
            engagement_score=self.engagement_score(snapshot.progress_data, snapshot.mood),
            plan_volatility=self.plan_volatility(snapshot, history),
            metabolic_adaptation=_clamp_score(signature.adaptation_responsiveness * 100),
            motivational_momentum=self.motivational_momentum(snapshot.mood, sessions),
            adherence_quality=self.adherence_quality(sessions),
            progress_velocity=self.progress_velocity(snapshot.progress_data, sessions),
            resilience=self.resilience(signature),
            adaptation_efficiency=self.adaptation_efficiency(history),
        )

    def recovery_index(
        self, lifestyle: LifestyleData, sessions: Sequence[WorkoutSession]
    ) -> int:
        """Sleep, inverted stress, inverted workload and fatigue resilience, equally weighted."""
        sleep_factor = min(1.0, (lifestyle.sleep_hours / 8) * (lifestyle.sleep_quality / 10))
        stress_factor = (10 - lifestyle.stress_level) / 10
        workload_factor = (10 - lifestyle.workload) / 10
        resilience = self.fatigue_resilience(sessions)
        return _clamp_score(
            (sleep_factor + stress_factor + workload_factor + resilience) / 4 * 100
        )

    @staticmethod
    def fatigue_resilience(sessions: Sequence[WorkoutSession]) -> float:
        """High completion under low reported fatigue; 0.5 with no sessions."""
        if not sessions:
            return NEUTRAL_FATIGUE_RESILIENCE
        avg_fatigue = mean(s.reported_fatigue for s in sessions)
        avg_completion = mean(s.completion_rate for s in sessions)
        return avg_completion * (1 - avg_fatigue / 10)

    @staticmethod
    def engagement_score(progress: ProgressData, mood: MoodData) -> int:
        return _clamp_score(
            (
                progress.weekly_consistency * 0.4
                + (mood.motivation / 10) * 0.3
                + (progress.average_rating / 10) * 0.3
            )
            * 100
        )

    def plan_volatility(
        self, snapshot: MetricsSnapshot, history: Sequence[AdaptationHistoryEntry]
    ) -> int:
        window_days = self.history_config.volatility_window_days
        window_start = snapshot.captured_at - timedelta(days=window_days)
        recent = [h for h in history if window_start <= h.timestamp <= snapshot.captured_at]
        return _clamp_score(len(recent) / window_days * 100)

    @staticmethod
    def motivational_momentum(mood: MoodData, sessions: Sequence[WorkoutSession]) -> int:
        ratings = [s.user_rating for s in sessions[-5:]]
        trend = (ratings[-1] - ratings[0]) / len(ratings) if len(ratings) > 1 else 0.0
        return _clamp_score((mood.motivation / 10 + trend / 10) * 50)

    @staticmethod
    def adherence_quality(sessions: Sequence[WorkoutSession]) -> int:
        if not sessions:
            return NEUTRAL_ADHERENCE_QUALITY

        def quality(session: WorkoutSession) -> float:
            effort = (
                (10 - session.reported_fatigue) / 10 if session.reported_fatigue > 0 else 0.5
            )
            return (session.completion_rate + effort + session.user_rating / 10) / 3

        return _clamp_score(mean(quality(s) for s in sessions) * 100)

    @staticmethod
    def progress_velocity(progress: ProgressData, sessions: Sequence[WorkoutSession]) -> int:
        strength_progress = sum(progress.strength_gains.values())
        recent_count = len(sessions[-10:]) if sessions else NEUTRAL_RECENT_SESSION_COUNT
        return _clamp_score((strength_progress + recent_count) * 5)

    @staticmethod
    def resilience(signature: UserSignature) -> int:
        recovery_factor = (
            7 / signature.average_recovery_days
            if signature.average_recovery_days > 0
            else NEUTRAL_RECOVERY_FACTOR
        )
        return _clamp_score((recovery_factor + signature.adaptation_responsiveness) * 50)

    def adaptation_efficiency(self, history: Sequence[AdaptationHistoryEntry]) -> int:
        scored = [h for h in history if h.has_outcome]
        if not scored:
            return NEUTRAL_ADAPTATION_EFFICIENCY
        threshold = self.history_config.effective_adaptation_threshold
        effective = sum(1 for h in scored if h.effectiveness > threshold)
        return _clamp_score(effective / len(scored) * 100)


__all__ = ["MetricCalculator"]
