"""
Core data models for the adaptive recommendation engine.

Value types shared by every pipeline stage: priorities, recommendation
taxonomy, rule identifiers, derived signature metrics, the per-user
signature, adaptation history and learned weighting state.

Recommendations and history entries are immutable; stages that adjust them
produce copies with ``dataclasses.replace``.
"""

import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Priority(Enum):
    """Four ordered priority levels: critical > high > medium > low."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANKS[self]

    @classmethod
    def from_rank(cls, rank: int) -> "Priority":
        rank = max(1, min(4, rank))
        for priority, value in _PRIORITY_RANKS.items():
            if value == rank:
                return priority
        raise ValueError(f"Invalid priority rank: {rank}")

    def promote(self) -> "Priority":
        """Shift one level up, clamped at critical."""
        return Priority.from_rank(self.rank + 1)

    def demote(self) -> "Priority":
        """Shift one level down, clamped at low."""
        return Priority.from_rank(self.rank - 1)

    def escalate(self, multiplier: float) -> "Priority":
        """Scale the rank by an interaction multiplier (half-up rounding)."""
        return Priority.from_rank(math.floor(self.rank * multiplier + 0.5))


_PRIORITY_RANKS = {
    Priority.CRITICAL: 4,
    Priority.HIGH: 3,
    Priority.MEDIUM: 2,
    Priority.LOW: 1,
}


class RecommendationType(Enum):
    """Fixed taxonomy of plan-change recommendations."""

    INTENSITY = "intensity"
    VOLUME = "volume"
    FREQUENCY = "frequency"
    EXERCISE_SWAP = "exercise_swap"
    REST_DAY = "rest_day"
    NUTRITION = "nutrition"
    RECOVERY = "recovery"


class ChangeTarget(Enum):
    INTENSITY = "intensity"
    VOLUME = "volume"
    FREQUENCY = "frequency"
    EXERCISE = "exercise"
    REST = "rest"


class RuleName(Enum):
    """Tagged identifiers for every rule; interaction lookups use these."""

    FATIGUE = "FatigueRule"
    CONSISTENCY = "ConsistencyRule"
    PROGRESSIVE_OVERLOAD = "ProgressiveOverloadRule"
    RECOVERY = "RecoveryRule"
    MOTIVATION = "MotivationRule"
    PLATEAU = "PlateauRule"
    STRESS = "StressRule"
    SLEEP = "SleepRule"


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PlanChange:
    """One target/adjustment pair; numeric adjustments are percentages or counts."""

    target: ChangeTarget
    adjustment: float | str
    exercise_ids: tuple[str, ...] = ()

    @property
    def is_numeric(self) -> bool:
        return isinstance(self.adjustment, (int, float))

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target.value,
            "adjustment": self.adjustment,
            "exercise_ids": list(self.exercise_ids),
        }


@dataclass(frozen=True)
class Recommendation:
    """
    Proposed plan change.

    ``source_rules`` records which rules produced (or were merged into) this
    recommendation so later stages never need to inspect rule objects.
    """

    type: RecommendationType
    priority: Priority
    changes: tuple[PlanChange, ...]
    duration_days: int
    reason: str
    explanation: str
    source_rules: tuple[RuleName, ...] = ()
    id: str = field(default_factory=lambda: _new_id("rec"))

    def __post_init__(self):
        if not isinstance(self.priority, Priority):
            raise ValueError("Priority must be a Priority enum")
        if self.duration_days < 0:
            raise ValueError("Duration must be non-negative")

    def numeric_adjustment(self, target: ChangeTarget) -> float | None:
        """First numeric adjustment for a target, if any."""
        for change in self.changes:
            if change.target == target and change.is_numeric:
                return float(change.adjustment)
        return None

    def with_priority(self, priority: Priority) -> "Recommendation":
        return replace(self, priority=priority)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "priority": self.priority.value,
            "changes": [change.to_dict() for change in self.changes],
            "duration_days": self.duration_days,
            "reason": self.reason,
            "explanation": self.explanation,
            "source_rules": [rule.value for rule in self.source_rules],
        }


def sort_by_priority(recommendations: list[Recommendation]) -> list[Recommendation]:
    """Stable sort, critical first."""
    return sorted(recommendations, key=lambda rec: -rec.priority.rank)


@dataclass(frozen=True)
class SignatureMetrics:
    """Composite 0-100 scores derived from one snapshot."""

    recovery_index: int
    engagement_score: int
    plan_volatility: int
    metabolic_adaptation: int
    motivational_momentum: int
    adherence_quality: int
    progress_velocity: int
    resilience: int
    adaptation_efficiency: int

    def to_dict(self) -> dict[str, int]:
        return {
            "recovery_index": self.recovery_index,
            "engagement_score": self.engagement_score,
            "plan_volatility": self.plan_volatility,
            "metabolic_adaptation": self.metabolic_adaptation,
            "motivational_momentum": self.motivational_momentum,
            "adherence_quality": self.adherence_quality,
            "progress_velocity": self.progress_velocity,
            "resilience": self.resilience,
            "adaptation_efficiency": self.adaptation_efficiency,
        }


@dataclass
class UserSignature:
    """Slowly evolving per-user profile; owned and mutated by the engine."""

    user_id: str
    preferred_intensity_range: tuple[int, int] = (5, 8)
    average_recovery_days: float = 2.0
    fatigue_triggers: list[str] = field(default_factory=list)
    motivational_triggers: list[str] = field(default_factory=list)
    compliance_pattern: str = "unknown"
    adaptation_responsiveness: float = 0.5
    preferred_workout_types: list[str] = field(default_factory=list)
    injury_risk_factors: list[str] = field(default_factory=list)
    plateau_breakers: list[str] = field(default_factory=list)
    confidence_level: float = 0.1
    last_updated: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "preferred_intensity_range": list(self.preferred_intensity_range),
            "average_recovery_days": self.average_recovery_days,
            "fatigue_triggers": list(self.fatigue_triggers),
            "motivational_triggers": list(self.motivational_triggers),
            "compliance_pattern": self.compliance_pattern,
            "adaptation_responsiveness": self.adaptation_responsiveness,
            "preferred_workout_types": list(self.preferred_workout_types),
            "injury_risk_factors": list(self.injury_risk_factors),
            "plateau_breakers": list(self.plateau_breakers),
            "confidence_level": self.confidence_level,
            "last_updated": self.last_updated.isoformat(),
        }


@dataclass(frozen=True)
class AdaptationOutcome:
    """Observed response to an issued recommendation (deltas in -1..1)."""

    adherence_change: float
    motivation_change: float
    performance_change: float
    satisfaction_rating: float | None = None
    behavior_change: str = ""
    follow_up_required: bool = False
    unexpected_effects: tuple[str, ...] = ()

    def __post_init__(self):
        for name in ("adherence_change", "motivation_change", "performance_change"):
            value = getattr(self, name)
            if not -1.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between -1.0 and 1.0")
        if self.satisfaction_rating is not None and not 1 <= self.satisfaction_rating <= 10:
            raise ValueError("Satisfaction rating must be between 1 and 10")


@dataclass(frozen=True)
class AdaptationHistoryEntry:
    """One issued recommendation and, once known, its outcome."""

    id: str
    analysis_id: str
    user_id: str
    timestamp: datetime
    triggered_rules: tuple[RuleName, ...]
    recommendation: Recommendation
    context_factors: tuple[str, ...] = ()
    rule_set_version: str = "v1.0.0"
    outcome: AdaptationOutcome | None = None
    effectiveness: float | None = None
    satisfaction: float | None = None

    @property
    def has_outcome(self) -> bool:
        return self.effectiveness is not None


@dataclass
class RuleWeights:
    """Learned per-rule weighting state."""

    rule_name: RuleName
    base_weight: float = 1.0
    contextual_modifiers: dict[str, float] = field(default_factory=dict)
    learning_rate: float = 0.05
    last_updated: datetime = field(default_factory=_utcnow)

    def factor(self, context_factors: tuple[str, ...] | list[str]) -> float:
        """Base weight scaled by every matching contextual modifier."""
        value = self.base_weight
        for tag in context_factors:
            value *= self.contextual_modifiers.get(tag, 1.0)
        return value


@dataclass
class AdaptationAnalytics:
    """Per-user learned effectiveness state feeding the weighting stage."""

    effectiveness_rates: dict[RecommendationType, float] = field(default_factory=dict)
    outcome_counts: dict[RecommendationType, int] = field(default_factory=dict)
    combination_outcomes: dict[str, float] = field(default_factory=dict)
    combination_counts: dict[str, int] = field(default_factory=dict)
    rule_weights: dict[RuleName, RuleWeights] = field(default_factory=dict)
    data_points: int = 0
    last_updated: datetime = field(default_factory=_utcnow)

    def weights_for(self, rule: RuleName, default_weight: float = 1.0) -> RuleWeights:
        if rule not in self.rule_weights:
            self.rule_weights[rule] = RuleWeights(rule_name=rule, base_weight=default_weight)
        return self.rule_weights[rule]


@dataclass(frozen=True)
class TrainingSample:
    """Feature vector captured after an analysis for an external trainer."""

    user_id: str
    analysis_id: str
    features: dict[str, float]
    recommendation_types: tuple[RecommendationType, ...]
    rule_set_version: str
    validation_weight: float
    captured_at: datetime


@dataclass(frozen=True)
class OutcomeRecordResult:
    """Result of feeding an outcome back into the learning loop."""

    applied: bool
    recommendation_id: str
    effectiveness: float | None = None
    diagnostic: str | None = None


__all__ = [
    "AdaptationAnalytics",
    "AdaptationHistoryEntry",
    "AdaptationOutcome",
    "ChangeTarget",
    "OutcomeRecordResult",
    "PlanChange",
    "Priority",
    "Recommendation",
    "RecommendationType",
    "RuleName",
    "RuleWeights",
    "SignatureMetrics",
    "TrainingSample",
    "UserSignature",
    "sort_by_priority",
]
