"""
Adaptive Recommendation Engine

Facade that runs the full analysis pipeline for one user:

    metrics -> rules -> interactions -> personalization -> history filter
    -> effectiveness weighting -> ML overlay -> ranked recommendations

and, on request, the explanation, preemptive plan and simulation built on
top of the ranked output. Per-user state (signature, history, learned
analytics) lives behind an injected AdaptationStore; analyses and outcome
recording for the same user are serialized with a per-user lock, while
different users proceed in parallel.
"""

import threading
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

import structlog

from .config import ConfigManager, EngineSettings
from .exceptions import AdaptationEngineError, RuleSetError, SnapshotMismatchError
from .explanation import AdaptationExplanation, ExplanationGenerator
from .history import (
    EffectivenessWeighting,
    HistoryFilter,
    OutcomeLearner,
    derive_context_factors,
    predict_future_needs,
)
from .interactions import InteractionAnalyzer, RuleContext
from .logging_config import setup_logging
from .metrics import MetricCalculator
from .ml_overlay import MLOverlay, extract_features
from .models import (
    AdaptationAnalytics,
    AdaptationHistoryEntry,
    AdaptationOutcome,
    ChangeTarget,
    OutcomeRecordResult,
    Priority,
    Recommendation,
    RuleName,
    SignatureMetrics,
    TrainingSample,
    UserSignature,
    sort_by_priority,
)
from .personalization import SignaturePersonalizer
from .preemptive_planning import PreemptiveAdaptationPlan, PreemptivePlanner
from .rule_sets import RuleSetRegistry, RuleSetVersion
from .rules import evaluate_rules
from .simulation import SimulationResult, Simulator
from .snapshot import MetricsSnapshot, WorkoutPlan
from .store import AdaptationStore, InMemoryAdaptationStore

logger = structlog.get_logger(__name__)

APPLIED_PRIORITIES = (Priority.CRITICAL, Priority.HIGH)


@runtime_checkable
class ExplanationSink(Protocol):
    """Optional telemetry consumer for produced explanations."""

    def record(
        self,
        user_id: str,
        explanation: AdaptationExplanation,
        recommendations: Sequence[Recommendation],
    ) -> None: ...


@dataclass(frozen=True)
class AnalysisReport:
    analysis_id: str
    user_id: str
    recommendations: tuple[Recommendation, ...]
    explanation: AdaptationExplanation
    preemptive_plan: PreemptiveAdaptationPlan
    metrics: SignatureMetrics
    rule_set_version: str
    simulation: SimulationResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis_id": self.analysis_id,
            "user_id": self.user_id,
            "recommendations": [rec.to_dict() for rec in self.recommendations],
            "explanation": self.explanation.to_dict(),
            "preemptive_plan": self.preemptive_plan.to_dict(),
            "metrics": self.metrics.to_dict(),
            "rule_set_version": self.rule_set_version,
            "simulation": self.simulation.to_dict() if self.simulation else None,
        }


@dataclass(frozen=True)
class UserInsights:
    signature: UserSignature
    recent_history: tuple[AdaptationHistoryEntry, ...]
    rule_set_version: str
    test_group: str | None
    predicted_needs: tuple[str, ...]


@dataclass(frozen=True)
class _PipelineResult:
    analysis_id: str
    recommendations: tuple[Recommendation, ...]
    metrics: SignatureMetrics
    signature: UserSignature
    history: tuple[AdaptationHistoryEntry, ...]
    rule_context: RuleContext
    rule_set: RuleSetVersion


class AdaptationEngine:
    """
    Turns metrics snapshots into ranked, explained plan-change recommendations
    and learns from the outcomes reported back.
    """

    def __init__(
        self,
        store: AdaptationStore | None = None,
        config: ConfigManager | None = None,
        rule_sets: RuleSetRegistry | None = None,
        ml_overlay: MLOverlay | None = None,
        simulator: Simulator | None = None,
        explanation_sink: ExplanationSink | None = None,
    ):
        self.config = config or ConfigManager()
        if not self.config.validate_config():
            raise AdaptationEngineError("Invalid engine configuration", "INVALID_CONFIG")

        self.store = store or InMemoryAdaptationStore()
        self.rule_sets = rule_sets or RuleSetRegistry()
        self.ml_overlay = ml_overlay or MLOverlay(config=self.config.ml_overlay)
        self.simulator = simulator or Simulator(self.config.simulation)
        self.explanation_sink = explanation_sink

        self.metric_calculator = MetricCalculator(self.config.history)
        self.interaction_analyzer = InteractionAnalyzer()
        self.personalizer = SignaturePersonalizer()
        self.history_filter = HistoryFilter(self.config.history)
        self.weighting = EffectivenessWeighting(self.config.history)
        self.learner = OutcomeLearner(self.config.history, self.config.signature)
        self.explanation_generator = ExplanationGenerator()
        self.planner = PreemptivePlanner(self.config.planning)

        self._user_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

        logger.info(
            "AdaptationEngine initialized",
            rule_set=self.rule_sets.current_version_id,
            ml_overlay_engaged=self.ml_overlay.engaged,
        )

    @classmethod
    def from_settings(cls, settings: EngineSettings | None = None, **kwargs) -> "AdaptationEngine":
        """Build an engine from ADAPTATION_* environment settings and configure logging."""
        settings = settings or EngineSettings()
        setup_logging(settings.log_level, settings.json_logs)
        return cls(config=ConfigManager.from_settings(settings), **kwargs)

    # Public API

    def analyze(self, user_id: str, snapshot: MetricsSnapshot) -> list[Recommendation]:
        """Ranked recommendations for one snapshot (critical first, stable otherwise)."""
        self._check_snapshot_owner(user_id, snapshot)
        with self._user_lock(snapshot.user_id):
            result = self._run_pipeline(snapshot)
        self._record_training_sample(snapshot, result, result.signature.confidence_level)
        return list(result.recommendations)

    def analyze_with_explanation(
        self, snapshot: MetricsSnapshot, *, simulate: bool | None = None
    ) -> AnalysisReport:
        """
        Full analysis: recommendations plus explanation, preemptive plan and,
        when any recommendation is critical or high (or ``simulate`` is True),
        a simulation of the proposed set.
        """
        with self._user_lock(snapshot.user_id):
            result = self._run_pipeline(snapshot)

        recommendations = list(result.recommendations)
        explanation = self.explanation_generator.explain(
            recommendations, result.metrics, result.signature, result.history
        )
        plan = self.planner.plan(snapshot, result.signature, result.metrics)

        should_simulate = (
            simulate
            if simulate is not None
            else any(rec.priority in APPLIED_PRIORITIES for rec in recommendations)
        )
        simulation = None
        if should_simulate:
            simulation = self.simulator.simulate(
                snapshot, result.signature, result.metrics, recommendations
            )

        self._record_training_sample(snapshot, result, explanation.confidence)
        self._emit_explanation(snapshot.user_id, explanation, recommendations)

        return AnalysisReport(
            analysis_id=result.analysis_id,
            user_id=snapshot.user_id,
            recommendations=result.recommendations,
            explanation=explanation,
            preemptive_plan=plan,
            metrics=result.metrics,
            rule_set_version=result.rule_set.version_id,
            simulation=simulation,
        )

    def record_outcome(
        self, user_id: str, recommendation_id: str, outcome: AdaptationOutcome
    ) -> OutcomeRecordResult:
        """Feed an observed outcome back into analytics, rule weights and the signature."""
        with self._user_lock(user_id):
            history = self.store.get_history(user_id)
            entry = next((h for h in history if h.id == recommendation_id), None)

            if entry is None:
                diagnostic = f"No adaptation history entry {recommendation_id} for user {user_id}"
                logger.warning(
                    "Outcome for unknown recommendation ignored",
                    user_id=user_id,
                    recommendation_id=recommendation_id,
                )
                return OutcomeRecordResult(
                    applied=False, recommendation_id=recommendation_id, diagnostic=diagnostic
                )

            if entry.has_outcome:
                logger.warning(
                    "Outcome already recorded",
                    user_id=user_id,
                    recommendation_id=recommendation_id,
                )
                return OutcomeRecordResult(
                    applied=False,
                    recommendation_id=recommendation_id,
                    effectiveness=entry.effectiveness,
                    diagnostic=f"Outcome already recorded for {recommendation_id}",
                )

            now = datetime.now(timezone.utc)
            resolved = self.learner.resolve(entry, outcome)
            self.store.replace_history_entry(user_id, resolved)

            analytics = self.store.get_analytics(user_id) or AdaptationAnalytics()
            self.learner.update_analytics(analytics, resolved, now)
            self.learner.update_rule_weights(
                analytics, resolved, now, self._default_weights(resolved.rule_set_version)
            )
            self.store.save_analytics(user_id, analytics)

            signature = self._load_signature(user_id)
            self.learner.update_signature(signature, resolved, outcome, now)
            self.store.save_signature(signature)

        logger.info(
            "Outcome recorded",
            user_id=user_id,
            recommendation_id=recommendation_id,
            type=resolved.recommendation.type.value,
            effectiveness=round(resolved.effectiveness, 3),
        )
        return OutcomeRecordResult(
            applied=True,
            recommendation_id=recommendation_id,
            effectiveness=resolved.effectiveness,
        )

    def deploy_rule_set_version(
        self, version: RuleSetVersion, test_group_percentage: int = 10
    ) -> None:
        self.rule_sets.deploy(version, test_group_percentage)

    def get_user_signature(self, user_id: str) -> UserSignature:
        """Stored signature, creating the conservative default on first sight."""
        with self._user_lock(user_id):
            return self._load_signature(user_id)

    def get_user_insights(self, user_id: str) -> UserInsights:
        limit = self.config.history.insights_history_limit
        with self._user_lock(user_id):
            signature = self._load_signature(user_id)
            history = self.store.get_history(user_id)

        return UserInsights(
            signature=signature,
            recent_history=tuple(history[-limit:]),
            rule_set_version=self.rule_sets.version_for_user(user_id).version_id,
            test_group=self.rule_sets.test_group_for(user_id),
            predicted_needs=tuple(predict_future_needs(signature, history, limit)),
        )

    def simulate(
        self, snapshot: MetricsSnapshot, recommendations: Sequence[Recommendation]
    ) -> SimulationResult:
        """Simulate a recommendation set without touching stored user state."""
        signature = self.store.get_signature(snapshot.user_id) or self._default_signature(
            snapshot.user_id
        )
        history = self.store.get_history(snapshot.user_id)
        metrics = self.metric_calculator.calculate(snapshot, signature, history)
        return self.simulator.simulate(snapshot, signature, metrics, recommendations)

    @staticmethod
    def apply_recommendations(
        plan: WorkoutPlan, recommendations: Sequence[Recommendation]
    ) -> WorkoutPlan:
        """Copy of the plan with numeric changes from critical and high recommendations applied."""
        intensity, volume, frequency = plan.intensity, plan.volume, plan.frequency

        for rec in recommendations:
            if rec.priority not in APPLIED_PRIORITIES:
                continue
            for change in rec.changes:
                if not change.is_numeric:
                    continue
                if change.target == ChangeTarget.INTENSITY:
                    intensity = max(1.0, min(10.0, intensity * (1 + change.adjustment / 100)))
                elif change.target == ChangeTarget.VOLUME:
                    volume = max(1.0, volume * (1 + change.adjustment / 100))
                elif change.target == ChangeTarget.FREQUENCY:
                    frequency = int(max(1, min(7, round(frequency + change.adjustment))))

        return plan.model_copy(
            update={"intensity": intensity, "volume": volume, "frequency": frequency}
        )

    # Pipeline

    def _run_pipeline(self, snapshot: MetricsSnapshot) -> _PipelineResult:
        """Caller holds the user's lock."""
        start_time = time.time()
        user_id = snapshot.user_id
        analysis_id = f"analysis-{uuid.uuid4().hex[:12]}"

        signature = self._load_signature(user_id)
        history = tuple(self.store.get_history(user_id))
        analytics = self.store.get_analytics(user_id) or AdaptationAnalytics()
        rule_set = self.rule_sets.version_for_user(user_id)

        metrics = self.metric_calculator.calculate(snapshot, signature, history)

        fired = evaluate_rules(self.rule_sets.rules_for(rule_set), snapshot, signature, metrics)
        for name, rec in fired:
            logger.debug(
                "Rule fired",
                user_id=user_id,
                rule=name.value,
                type=rec.type.value,
                priority=rec.priority.value,
            )

        rule_context = self.interaction_analyzer.analyze(name for name, _ in fired)
        chained = self.interaction_analyzer.apply_chaining(fired, rule_context)
        personalized = self.personalizer.personalize(chained, signature)
        filtered = self.history_filter.filter(personalized, history, snapshot.captured_at)

        context_factors = derive_context_factors(snapshot, metrics, rule_context)
        weighted = self.weighting.apply(
            filtered, analytics, rule_set.rule_weights, context_factors
        )
        tuned = self.ml_overlay.apply(weighted, snapshot, metrics)
        ranked = tuple(sort_by_priority(tuned))

        if ranked:
            self.store.append_history(
                user_id,
                [
                    AdaptationHistoryEntry(
                        id=rec.id,
                        analysis_id=analysis_id,
                        user_id=user_id,
                        timestamp=snapshot.captured_at,
                        triggered_rules=rule_context.triggered_rules,
                        recommendation=rec,
                        context_factors=context_factors,
                        rule_set_version=rule_set.version_id,
                    )
                    for rec in ranked
                ],
            )

        self._evolve_signature(signature, metrics, snapshot.captured_at)
        self.store.save_signature(signature)

        logger.info(
            "Analysis complete",
            user_id=user_id,
            analysis_id=analysis_id,
            rules_fired=len(fired),
            recommendations=len(ranked),
            emergent_strategy=rule_context.emergent_strategy,
            rule_set=rule_set.version_id,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )

        return _PipelineResult(
            analysis_id=analysis_id,
            recommendations=ranked,
            metrics=metrics,
            signature=signature,
            history=history,
            rule_context=rule_context,
            rule_set=rule_set,
        )

    def _evolve_signature(
        self, signature: UserSignature, metrics: SignatureMetrics, captured_at: datetime
    ) -> None:
        config = self.config.signature
        signature.last_updated = captured_at
        signature.confidence_level = max(
            signature.confidence_level,
            min(1.0, signature.confidence_level + config.confidence_step),
        )
        if metrics.adaptation_efficiency > config.responsiveness_efficiency_threshold:
            signature.adaptation_responsiveness = min(
                1.0, signature.adaptation_responsiveness + config.responsiveness_step
            )

    # Helpers

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._user_locks.setdefault(user_id, threading.Lock())

    @staticmethod
    def _check_snapshot_owner(user_id: str, snapshot: MetricsSnapshot) -> None:
        if user_id != snapshot.user_id:
            raise SnapshotMismatchError(
                f"Snapshot belongs to {snapshot.user_id!r}, not {user_id!r}",
                expected_user_id=user_id,
                snapshot_user_id=snapshot.user_id,
            )

    def _default_signature(self, user_id: str) -> UserSignature:
        config = self.config.signature
        return UserSignature(
            user_id=user_id,
            preferred_intensity_range=config.preferred_intensity_range,
            average_recovery_days=config.average_recovery_days,
            adaptation_responsiveness=config.adaptation_responsiveness,
            confidence_level=config.initial_confidence,
        )

    def _load_signature(self, user_id: str) -> UserSignature:
        """Caller holds the user's lock."""
        signature = self.store.get_signature(user_id)
        if signature is None:
            signature = self._default_signature(user_id)
            self.store.save_signature(signature)
            logger.info("Created default user signature", user_id=user_id)
        return signature

    def _default_weights(self, version_id: str) -> dict[RuleName, float]:
        try:
            return self.rule_sets.get(version_id).rule_weights
        except RuleSetError:
            logger.warning("History references unknown rule set", version_id=version_id)
            return self.rule_sets.get(self.rule_sets.current_version_id).rule_weights

    def _record_training_sample(
        self, snapshot: MetricsSnapshot, result: _PipelineResult, validation_weight: float
    ) -> None:
        if not result.recommendations:
            return
        self.store.add_training_sample(
            TrainingSample(
                user_id=snapshot.user_id,
                analysis_id=result.analysis_id,
                features=extract_features(snapshot, result.metrics),
                recommendation_types=tuple(rec.type for rec in result.recommendations),
                rule_set_version=result.rule_set.version_id,
                validation_weight=validation_weight,
                captured_at=snapshot.captured_at,
            )
        )

    def _emit_explanation(
        self,
        user_id: str,
        explanation: AdaptationExplanation,
        recommendations: Sequence[Recommendation],
    ) -> None:
        if self.explanation_sink is None:
            return
        try:
            self.explanation_sink.record(user_id, explanation, recommendations)
        except Exception as e:
            logger.warning("Explanation sink failed", user_id=user_id, error=str(e))


__all__ = [
    "AdaptationEngine",
    "AnalysisReport",
    "ExplanationSink",
    "UserInsights",
]
