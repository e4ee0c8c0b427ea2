"""
Preemptive Adaptation Planning

Forward-looking bundle built from the current metrics: plan confidence,
predicted future adaptations, early-warning signals, contingency plans, a
multi-week trajectory projection and a risk assessment. Every projection is
a deterministic function of the current snapshot, signature and metrics.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Literal

from .config import PlanningConfig
from .models import (
    ChangeTarget,
    PlanChange,
    Priority,
    Recommendation,
    RecommendationType,
    SignatureMetrics,
    UserSignature,
)
from .snapshot import MetricsSnapshot

Severity = Literal["minor_tweak", "moderate_adjustment", "major_overhaul"]
SignalTrend = Literal["approaching", "stable", "breached"]


@dataclass(frozen=True)
class PredictedAdaptation:
    """Adaptation the planner expects to become necessary."""

    estimated_trigger_date: datetime
    probability: float
    trigger_conditions: tuple[str, ...]
    recommendation_type: RecommendationType
    severity: Severity
    prevention_strategy: str

    def __post_init__(self):
        if not 0.0 <= self.probability <= 1.0:
            raise ValueError("Probability must be between 0.0 and 1.0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "estimated_trigger_date": self.estimated_trigger_date.isoformat(),
            "probability": self.probability,
            "trigger_conditions": list(self.trigger_conditions),
            "recommendation_type": self.recommendation_type.value,
            "severity": self.severity,
            "prevention_strategy": self.prevention_strategy,
        }


@dataclass(frozen=True)
class EarlyWarningSignal:
    """Metric drifting toward a warning threshold, with a linear days-to-threshold estimate."""

    signal: str
    current_value: float
    warning_threshold: float
    critical_threshold: float
    trend: SignalTrend
    days_to_threshold: int
    suggested_preventive_action: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "signal": self.signal,
            "current_value": self.current_value,
            "warning_threshold": self.warning_threshold,
            "critical_threshold": self.critical_threshold,
            "trend": self.trend,
            "days_to_threshold": self.days_to_threshold,
            "suggested_preventive_action": self.suggested_preventive_action,
        }


@dataclass(frozen=True)
class ContingencyPlan:
    scenario: str
    trigger_conditions: tuple[str, ...]
    immediate_action: Recommendation
    follow_up_actions: tuple[Recommendation, ...] = ()
    success_probability: float = 0.5

    def __post_init__(self):
        if not self.scenario:
            raise ValueError("Scenario cannot be empty")
        if not 0.0 <= self.success_probability <= 1.0:
            raise ValueError("Success probability must be between 0.0 and 1.0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenario": self.scenario,
            "trigger_conditions": list(self.trigger_conditions),
            "immediate_action": self.immediate_action.to_dict(),
            "follow_up_actions": [a.to_dict() for a in self.follow_up_actions],
            "success_probability": self.success_probability,
        }


@dataclass(frozen=True)
class TrajectoryPoint:
    """
    Projected metrics for one future week.

    ``confidence`` falls and ``interval_width`` (in metric points) widens as
    the projection reaches further ahead.
    """

    week: int
    predicted_metrics: dict[str, float]
    confidence: float
    interval_width: float
    key_milestones: tuple[str, ...] = ()

    def interval(self, metric: str) -> tuple[float, float]:
        value = self.predicted_metrics[metric]
        half = self.interval_width / 2
        return (max(0.0, value - half), min(100.0, value + half))

    def to_dict(self) -> dict[str, Any]:
        return {
            "week": self.week,
            "predicted_metrics": dict(self.predicted_metrics),
            "confidence": self.confidence,
            "interval_width": self.interval_width,
            "key_milestones": list(self.key_milestones),
        }


@dataclass(frozen=True)
class RiskAssessment:
    plateau_risk: float
    burnout_risk: float
    injury_risk: float
    motivation_drop_risk: float
    adherence_risk: float
    mitigation_strategies: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "plateau_risk": self.plateau_risk,
            "burnout_risk": self.burnout_risk,
            "injury_risk": self.injury_risk,
            "motivation_drop_risk": self.motivation_drop_risk,
            "adherence_risk": self.adherence_risk,
            "mitigation_strategies": list(self.mitigation_strategies),
        }


@dataclass(frozen=True)
class PreemptiveAdaptationPlan:
    user_id: str
    current_week: int
    plan_confidence_score: float
    predicted_adaptations: tuple[PredictedAdaptation, ...]
    early_warning_signals: tuple[EarlyWarningSignal, ...]
    contingency_plans: tuple[ContingencyPlan, ...]
    optimal_trajectory: tuple[TrajectoryPoint, ...]
    risk_assessment: RiskAssessment
    generated_at: datetime
    valid_until: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "current_week": self.current_week,
            "plan_confidence_score": self.plan_confidence_score,
            "predicted_adaptations": [p.to_dict() for p in self.predicted_adaptations],
            "early_warning_signals": [s.to_dict() for s in self.early_warning_signals],
            "contingency_plans": [c.to_dict() for c in self.contingency_plans],
            "optimal_trajectory": [t.to_dict() for t in self.optimal_trajectory],
            "risk_assessment": self.risk_assessment.to_dict(),
            "generated_at": self.generated_at.isoformat(),
            "valid_until": self.valid_until.isoformat(),
        }


@dataclass(frozen=True)
class _WarningWatch:
    signal: str
    metric: str
    watch_below: float
    warning: float
    critical: float
    action: str


WARNING_WATCHES = (
    _WarningWatch(
        signal="Adaptive Recovery Index Decline",
        metric="recovery_index",
        watch_below=50,
        warning=30,
        critical=15,
        action="Schedule additional rest days and focus on sleep quality",
    ),
    _WarningWatch(
        signal="Engagement Score Decline",
        metric="engagement_score",
        watch_below=60,
        warning=40,
        critical=25,
        action="Simplify the routine and schedule sessions at consistent times",
    ),
    _WarningWatch(
        signal="Motivational Momentum Decline",
        metric="motivational_momentum",
        watch_below=40,
        warning=30,
        critical=15,
        action="Add variety and short-term goals to upcoming sessions",
    ),
)

# metric -> (weekly gain, optimum cap)
TRAJECTORY_TARGETS = {
    "recovery_index": (10, 90),
    "engagement_score": (8, 85),
    "progress_velocity": (5, 75),
}

MITIGATION_STRATEGIES = (
    "Regular check-ins on energy levels",
    "Flexible workout scheduling",
    "Backup exercise options for low-motivation days",
)


def _action(
    type: RecommendationType,
    changes: list[tuple[ChangeTarget, float | str]],
    duration_days: int,
    reason: str,
    explanation: str,
    priority: Priority = Priority.CRITICAL,
) -> Recommendation:
    return Recommendation(
        type=type,
        priority=priority,
        changes=tuple(PlanChange(target=t, adjustment=a) for t, a in changes),
        duration_days=duration_days,
        reason=reason,
        explanation=explanation,
    )


class PreemptivePlanner:
    """Builds a PreemptiveAdaptationPlan from the current analysis inputs."""

    def __init__(self, config: PlanningConfig | None = None):
        self.config = config or PlanningConfig()

    def plan(
        self,
        snapshot: MetricsSnapshot,
        signature: UserSignature,
        metrics: SignatureMetrics,
    ) -> PreemptiveAdaptationPlan:
        reference = snapshot.captured_at
        return PreemptiveAdaptationPlan(
            user_id=snapshot.user_id,
            current_week=self.current_week(snapshot),
            plan_confidence_score=self.plan_confidence(snapshot, signature, metrics),
            predicted_adaptations=tuple(self.predict_adaptations(metrics, reference)),
            early_warning_signals=tuple(self.early_warning_signals(metrics)),
            contingency_plans=self.contingency_plans(signature),
            optimal_trajectory=tuple(self.project_trajectory(metrics)),
            risk_assessment=self.assess_risks(snapshot, metrics),
            generated_at=reference,
            valid_until=reference + timedelta(days=self.config.valid_for_days),
        )

    @staticmethod
    def current_week(snapshot: MetricsSnapshot) -> int:
        started_at = snapshot.current_plan.started_at
        if started_at is None:
            return 0
        return max(0, (snapshot.captured_at - started_at).days // 7)

    def plan_confidence(
        self,
        snapshot: MetricsSnapshot,
        signature: UserSignature,
        metrics: SignatureMetrics,
    ) -> float:
        terms = (
            0.2 if metrics.recovery_index > 50 else 0.0,
            0.2 if metrics.engagement_score > 60 else 0.0,
            0.2 if metrics.progress_velocity > 40 else 0.0,
            signature.confidence_level * 0.2,
            snapshot.progress_data.weekly_consistency * 0.2,
        )
        return min(self.config.plan_confidence_cap, sum(terms))

    @staticmethod
    def predict_adaptations(
        metrics: SignatureMetrics, reference: datetime
    ) -> list[PredictedAdaptation]:
        predictions = []

        if metrics.progress_velocity < 30:
            predictions.append(
                PredictedAdaptation(
                    estimated_trigger_date=reference + timedelta(days=14),
                    probability=0.7,
                    trigger_conditions=(
                        "Progress velocity remains below 20%",
                        "No strength gains for 2 weeks",
                    ),
                    recommendation_type=RecommendationType.EXERCISE_SWAP,
                    severity="moderate_adjustment",
                    prevention_strategy="Introduce exercise variation now",
                )
            )

        if metrics.motivational_momentum < 50:
            predictions.append(
                PredictedAdaptation(
                    estimated_trigger_date=reference + timedelta(days=7),
                    probability=0.5,
                    trigger_conditions=(
                        "Motivation score drops below 4",
                        "Adherence falls below 60%",
                    ),
                    recommendation_type=RecommendationType.EXERCISE_SWAP,
                    severity="minor_tweak",
                    prevention_strategy="Incorporate variety and achievement opportunities",
                )
            )

        return predictions

    def early_warning_signals(self, metrics: SignatureMetrics) -> list[EarlyWarningSignal]:
        signals = []
        for watch in WARNING_WATCHES:
            value = getattr(metrics, watch.metric)
            if value >= watch.watch_below:
                continue

            if value < watch.warning:
                trend = "breached"
            elif value < watch.warning + 10:
                trend = "approaching"
            else:
                trend = "stable"

            days = max(1, math.floor((value - watch.warning) / self.config.warning_decline_per_day))
            signals.append(
                EarlyWarningSignal(
                    signal=watch.signal,
                    current_value=value,
                    warning_threshold=watch.warning,
                    critical_threshold=watch.critical,
                    trend=trend,
                    days_to_threshold=days,
                    suggested_preventive_action=watch.action,
                )
            )
        return signals

    @staticmethod
    def contingency_plans(signature: UserSignature) -> tuple[ContingencyPlan, ...]:
        focus = signature.preferred_workout_types[0] if signature.preferred_workout_types else "strength"
        recovery_days = max(2, round(signature.average_recovery_days))

        return (
            ContingencyPlan(
                scenario="Motivation Crisis (score < 3)",
                trigger_conditions=("Motivation drops below 3", "Missed 3+ workouts in a week"),
                immediate_action=_action(
                    RecommendationType.EXERCISE_SWAP,
                    [(ChangeTarget.EXERCISE, "fun_variety_focus")],
                    3,
                    "Emergency motivation intervention",
                    "Switching to enjoyable exercises to rebuild enthusiasm",
                ),
                success_probability=0.75,
            ),
            ContingencyPlan(
                scenario="Recovery Crash (ARI < 15)",
                trigger_conditions=(
                    "Adaptive Recovery Index drops below 15",
                    "Reported fatigue of 9 or more for 3 sessions",
                ),
                immediate_action=_action(
                    RecommendationType.RECOVERY,
                    [(ChangeTarget.REST, "+2 days"), (ChangeTarget.INTENSITY, -40)],
                    recovery_days + 1,
                    "Emergency recovery protocol",
                    "Pausing hard training until recovery markers stabilize",
                ),
                follow_up_actions=(
                    _action(
                        RecommendationType.INTENSITY,
                        [(ChangeTarget.INTENSITY, -20)],
                        7,
                        "Gradual return to training load",
                        "Reintroducing intensity in small steps after the recovery block",
                        priority=Priority.HIGH,
                    ),
                ),
                success_probability=0.8,
            ),
            ContingencyPlan(
                scenario="Consistency Collapse (weekly consistency < 30%)",
                trigger_conditions=(
                    "Weekly consistency falls below 30%",
                    "Streak resets twice in two weeks",
                ),
                immediate_action=_action(
                    RecommendationType.FREQUENCY,
                    [
                        (ChangeTarget.FREQUENCY, -2),
                        (ChangeTarget.EXERCISE, f"focus_{focus}"),
                    ],
                    7,
                    "Emergency habit rebuild",
                    "Cutting the plan down to the sessions you are most likely to complete",
                ),
                follow_up_actions=(
                    _action(
                        RecommendationType.FREQUENCY,
                        [(ChangeTarget.FREQUENCY, 1)],
                        14,
                        "Restore training frequency",
                        "Adding one session back once the new habit holds for a week",
                        priority=Priority.MEDIUM,
                    ),
                ),
                success_probability=0.65,
            ),
        )

    def project_trajectory(self, metrics: SignatureMetrics) -> list[TrajectoryPoint]:
        trajectory = []
        for week in range(1, self.config.trajectory_weeks + 1):
            predicted = {
                metric: min(cap, getattr(metrics, metric) + week * gain)
                for metric, (gain, cap) in TRAJECTORY_TARGETS.items()
            }
            milestones: list[str] = []
            if week == 2:
                milestones.append("Should see improved energy levels")
            if week == self.config.trajectory_weeks:
                milestones.append("Reassess plan against projected metrics")

            trajectory.append(
                TrajectoryPoint(
                    week=week,
                    predicted_metrics=predicted,
                    confidence=max(0.0, round(0.8 - week * 0.1, 2)),
                    interval_width=5.0 * week,
                    key_milestones=tuple(milestones),
                )
            )
        return trajectory

    @staticmethod
    def assess_risks(snapshot: MetricsSnapshot, metrics: SignatureMetrics) -> RiskAssessment:
        return RiskAssessment(
            plateau_risk=0.6 if metrics.progress_velocity < 20 else 0.2,
            burnout_risk=0.4 if metrics.recovery_index < 30 else 0.1,
            injury_risk=0.3 if snapshot.lifestyle.sleep_hours < 6 else 0.1,
            motivation_drop_risk=0.5 if metrics.motivational_momentum < 30 else 0.2,
            adherence_risk=0.6 if metrics.engagement_score < 40 else 0.2,
            mitigation_strategies=MITIGATION_STRATEGIES,
        )


__all__ = [
    "ContingencyPlan",
    "EarlyWarningSignal",
    "PredictedAdaptation",
    "PreemptiveAdaptationPlan",
    "PreemptivePlanner",
    "RiskAssessment",
    "TrajectoryPoint",
]
