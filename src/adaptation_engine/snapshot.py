"""
Metrics Snapshot Input Models

Validated, immutable telemetry models that the caller builds once per
analysis request. Range validation happens at construction; the engine
never mutates a snapshot (simulation and plan application work on copies).
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

PlanType = Literal["strength", "cardio", "hiit", "flexibility", "hybrid"]
MoodTrend = Literal["improving", "stable", "declining"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Naive datetimes are taken to be UTC; aware ones are converted to UTC."""
    if value is None:
        return None
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("*")
    @classmethod
    def normalize_timezone(cls, value):
        # Windowed computations compare against aware UTC timestamps
        if isinstance(value, datetime):
            return as_utc(value)
        return value


class Exercise(_FrozenModel):
    """Single exercise prescription inside a workout plan."""

    id: str
    name: str
    sets: int = Field(ge=0)
    reps: int | tuple[int, int]
    weight: float | None = None
    duration: float | None = None
    intensity: float = Field(ge=1, le=10)


class WorkoutPlan(_FrozenModel):
    """Current plan parameters the recommendations adjust."""

    id: str
    type: PlanType
    intensity: float = Field(ge=1, le=10)
    volume: float = Field(ge=1)
    frequency: int = Field(ge=1, le=7)
    duration: float = Field(ge=15, le=180)
    exercises: tuple[Exercise, ...] = ()
    progression_rate: float = 0.0
    started_at: datetime | None = None


class ExerciseResult(_FrozenModel):
    exercise_id: str
    completed_sets: int = Field(ge=0)
    completed_reps: tuple[int, ...] = ()
    completed_weight: float | None = None
    perceived_exertion: float = Field(ge=1, le=10)
    form_rating: float | None = Field(default=None, ge=1, le=10)


class WorkoutSession(_FrozenModel):
    """One recent session result."""

    id: str
    plan_id: str
    scheduled_date: datetime
    completed_at: datetime | None = None
    completion_rate: float = Field(ge=0, le=1)
    user_rating: float = Field(ge=1, le=10)
    reported_fatigue: float = Field(ge=0, le=10)
    exercise_results: tuple[ExerciseResult, ...] = ()
    notes: str | None = None


class ProgressData(_FrozenModel):
    """Cumulative progress counters."""

    streak: int = Field(default=0, ge=0)
    weekly_consistency: float = Field(ge=0, le=1)
    monthly_consistency: float = Field(default=0.0, ge=0, le=1)
    total_workouts: int = Field(default=0, ge=0)
    average_rating: float = Field(ge=0, le=10)
    strength_gains: dict[str, float] = Field(default_factory=dict)
    cardio_gains: dict[str, float] = Field(default_factory=dict)


class BloodPressure(_FrozenModel):
    systolic: float
    diastolic: float


class BiometricData(_FrozenModel):
    weight: float | None = None
    body_fat: float | None = None
    muscle_mass: float | None = None
    resting_heart_rate: float | None = None
    blood_pressure: BloodPressure | None = None
    measurements: dict[str, float] = Field(default_factory=dict)
    last_updated: datetime = Field(default_factory=_utcnow)


class LifestyleData(_FrozenModel):
    """Sleep, stress and workload factors."""

    sleep_hours: float = Field(ge=0, le=24)
    sleep_quality: float = Field(ge=1, le=10)
    stress_level: float = Field(ge=1, le=10)
    energy_level: float = Field(default=5.0, ge=1, le=10)
    workload: float = Field(ge=1, le=10)
    nutrition_compliance: float = Field(default=0.5, ge=0, le=1)
    hydration: float = Field(default=2.0, ge=0)


class MoodData(_FrozenModel):
    score: float = Field(default=5.0, ge=1, le=10)
    motivation: float = Field(ge=1, le=10)
    confidence: float = Field(default=5.0, ge=1, le=10)
    anxiety: float = Field(default=5.0, ge=1, le=10)
    recent_trend: MoodTrend = "stable"


class MetricsSnapshot(_FrozenModel):
    """
    Immutable analysis input for one user at one point in time.

    ``captured_at`` is the reference time for all windowed computations
    (recency, volatility), which keeps analysis repeatable.
    """

    user_id: str = Field(min_length=1)
    current_plan: WorkoutPlan
    recent_workouts: tuple[WorkoutSession, ...] = ()
    progress_data: ProgressData
    biometrics: BiometricData = Field(default_factory=BiometricData)
    lifestyle: LifestyleData
    mood: MoodData
    captured_at: datetime = Field(default_factory=_utcnow)


__all__ = [
    "BiometricData",
    "BloodPressure",
    "Exercise",
    "ExerciseResult",
    "LifestyleData",
    "MetricsSnapshot",
    "MoodData",
    "MoodTrend",
    "PlanType",
    "ProgressData",
    "WorkoutPlan",
    "WorkoutSession",
    "as_utc",
]
