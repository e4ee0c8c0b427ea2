"""
ML Overlay

Confidence-gated fine tuning of rule output by a pluggable inference
provider. The overlay only engages for a production model, only touches a
recommendation whose type matches the prediction, and falls back to the
untouched rule output on low confidence or any provider failure. It never
raises and never removes a recommendation.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal, Protocol, runtime_checkable

import structlog

from .config import MLOverlayConfig
from .models import ChangeTarget, PlanChange, Recommendation, RecommendationType, SignatureMetrics
from .snapshot import MetricsSnapshot

logger = structlog.get_logger(__name__)

DeploymentStatus = Literal["training", "testing", "production", "deprecated"]


@dataclass(frozen=True)
class MLFeature:
    name: str
    importance: float
    source: str
    description: str = ""
    type: Literal["numeric", "categorical", "boolean"] = "numeric"


@dataclass(frozen=True)
class MLModelConfig:
    model_type: str
    version: str
    deployment_status: DeploymentStatus
    features: tuple[MLFeature, ...] = ()
    hyperparameters: dict[str, Any] = field(default_factory=dict)
    accuracy: float = 0.0
    training_data_size: int = 0
    last_trained_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class MLPrediction:
    recommendation_type: RecommendationType
    parameter_adjustments: dict[str, float]
    confidence: float
    explanation: str
    feature_influences: dict[str, float] = field(default_factory=dict)
    model_version: str = ""
    fallback_to_rules: bool = False


@runtime_checkable
class InferenceProvider(Protocol):
    """Anything that turns a feature vector into a prediction."""

    def predict(self, features: dict[str, float]) -> MLPrediction: ...


DEFAULT_MODEL = MLModelConfig(
    model_type="gradient_boosting",
    version="1.0.0",
    deployment_status="training",
    features=(
        MLFeature("adaptive_recovery_index", 0.25, "proprietary_metrics", "Recovery index score"),
        MLFeature("engagement_score", 0.2, "proprietary_metrics", "User engagement level"),
        MLFeature(
            "historical_effectiveness", 0.15, "historical_data", "Past adaptation success rate"
        ),
    ),
    hyperparameters={"learning_rate": 0.1, "n_estimators": 100, "max_depth": 6},
)


class StaticInferenceProvider:
    """Returns one fixed prediction; stands in for a real model service."""

    def __init__(self, prediction: MLPrediction | None = None):
        self.prediction = prediction or MLPrediction(
            recommendation_type=RecommendationType.INTENSITY,
            parameter_adjustments={"intensity_change": -12.5, "duration": 5.2},
            confidence=0.78,
            explanation=(
                "ML model suggests slightly gentler intensity reduction based on "
                "similar user patterns"
            ),
            feature_influences={
                "adaptive_recovery_index": 0.35,
                "engagement_score": 0.25,
                "historical_effectiveness": 0.2,
            },
            model_version="1.0.0",
        )
        self.calls: list[dict[str, float]] = []

    def predict(self, features: dict[str, float]) -> MLPrediction:
        self.calls.append(dict(features))
        return self.prediction


def extract_features(snapshot: MetricsSnapshot, metrics: SignatureMetrics) -> dict[str, float]:
    return {
        "adaptive_recovery_index": float(metrics.recovery_index),
        "engagement_score": float(metrics.engagement_score),
        "progress_velocity": float(metrics.progress_velocity),
        "weekly_consistency": snapshot.progress_data.weekly_consistency,
        "motivation_score": snapshot.mood.motivation,
        "sleep_quality": snapshot.lifestyle.sleep_quality,
        "stress_level": snapshot.lifestyle.stress_level,
    }


class MLOverlay:
    """Applies a provider's prediction on top of rule-based recommendations."""

    def __init__(
        self,
        provider: InferenceProvider | None = None,
        model: MLModelConfig = DEFAULT_MODEL,
        config: MLOverlayConfig | None = None,
    ):
        self.provider = provider
        self.model = model
        self.config = config or MLOverlayConfig()

    @property
    def engaged(self) -> bool:
        return (
            self.provider is not None
            and self.model.deployment_status == self.config.required_status
        )

    def predict(
        self, snapshot: MetricsSnapshot, metrics: SignatureMetrics
    ) -> MLPrediction | None:
        if not self.engaged:
            return None

        features = extract_features(snapshot, metrics)
        try:
            return self.provider.predict(features)
        except Exception as e:
            logger.warning(
                "ML inference failed, using rule-based output",
                user_id=snapshot.user_id,
                model_version=self.model.version,
                error=str(e),
            )
            return None

    def apply(
        self,
        recommendations: Sequence[Recommendation],
        snapshot: MetricsSnapshot,
        metrics: SignatureMetrics,
    ) -> list[Recommendation]:
        recommendations = list(recommendations)
        prediction = self.predict(snapshot, metrics)
        if prediction is None:
            return recommendations

        try:
            if prediction.fallback_to_rules:
                return recommendations
            if prediction.confidence <= self.config.confidence_threshold:
                logger.debug(
                    "ML prediction below confidence threshold",
                    user_id=snapshot.user_id,
                    confidence=prediction.confidence,
                )
                return recommendations

            tuned = [
                self.fine_tune(rec, prediction)
                if rec.type == prediction.recommendation_type
                else rec
                for rec in recommendations
            ]
        except Exception as e:
            logger.warning(
                "ML fine tuning failed, using rule-based output",
                user_id=snapshot.user_id,
                error=str(e),
            )
            return recommendations

        return tuned

    @staticmethod
    def fine_tune(rec: Recommendation, prediction: MLPrediction) -> Recommendation:
        adjustments = prediction.parameter_adjustments
        changes = rec.changes
        duration = rec.duration_days

        if "intensity_change" in adjustments:
            changes = tuple(
                PlanChange(
                    target=c.target,
                    adjustment=adjustments["intensity_change"],
                    exercise_ids=c.exercise_ids,
                )
                if c.target == ChangeTarget.INTENSITY and c.is_numeric
                else c
                for c in changes
            )
        if "duration" in adjustments:
            duration = max(0, round(adjustments["duration"]))

        return replace(
            rec,
            changes=changes,
            duration_days=duration,
            explanation=f"{rec.explanation} (ML-optimized: {prediction.explanation})",
        )


__all__ = [
    "DEFAULT_MODEL",
    "InferenceProvider",
    "MLFeature",
    "MLModelConfig",
    "MLOverlay",
    "MLPrediction",
    "StaticInferenceProvider",
    "extract_features",
]
