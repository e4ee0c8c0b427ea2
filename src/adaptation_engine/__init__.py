"""Adaptation Engine - adaptive training plan recommendations."""

__version__ = "0.1.0"

from .config import ConfigManager, EngineSettings
from .engine import AdaptationEngine, AnalysisReport, ExplanationSink, UserInsights
from .exceptions import (
    AdaptationEngineError,
    CacheError,
    InferenceError,
    RuleSetError,
    SnapshotMismatchError,
)
from .explanation import AdaptationExplanation, ExplanationGenerator
from .logging_config import setup_logging

# Learning and personalization components
from .history import EffectivenessWeighting, HistoryFilter, OutcomeLearner
from .interactions import InteractionAnalyzer, RuleContext, RuleInteraction
from .metrics import MetricCalculator
from .ml_overlay import InferenceProvider, MLModelConfig, MLOverlay, MLPrediction
from .models import (
    AdaptationHistoryEntry,
    AdaptationOutcome,
    ChangeTarget,
    OutcomeRecordResult,
    PlanChange,
    Priority,
    Recommendation,
    RecommendationType,
    RuleName,
    SignatureMetrics,
    UserSignature,
)
from .personalization import SignaturePersonalizer
from .preemptive_planning import PreemptiveAdaptationPlan, PreemptivePlanner
from .rule_sets import RuleSetRegistry, RuleSetVersion
from .rules import DEFAULT_RULES, AdaptationRule
from .simulation import SimulationCache, SimulationResult, SimulationScenario, Simulator
from .snapshot import MetricsSnapshot, WorkoutPlan
from .store import AdaptationStore, InMemoryAdaptationStore

__all__ = [
    # Core components
    "AdaptationEngine",
    "AnalysisReport",
    "ExplanationSink",
    "UserInsights",
    "ConfigManager",
    "EngineSettings",
    "setup_logging",
    # Errors
    "AdaptationEngineError",
    "CacheError",
    "InferenceError",
    "RuleSetError",
    "SnapshotMismatchError",
    # Data model
    "AdaptationHistoryEntry",
    "AdaptationOutcome",
    "ChangeTarget",
    "MetricsSnapshot",
    "OutcomeRecordResult",
    "PlanChange",
    "Priority",
    "Recommendation",
    "RecommendationType",
    "RuleName",
    "SignatureMetrics",
    "UserSignature",
    "WorkoutPlan",
    # Pipeline stages
    "AdaptationRule",
    "DEFAULT_RULES",
    "EffectivenessWeighting",
    "HistoryFilter",
    "InteractionAnalyzer",
    "MetricCalculator",
    "OutcomeLearner",
    "RuleContext",
    "RuleInteraction",
    "SignaturePersonalizer",
    # Explanation, planning and simulation
    "AdaptationExplanation",
    "ExplanationGenerator",
    "PreemptiveAdaptationPlan",
    "PreemptivePlanner",
    "SimulationCache",
    "SimulationResult",
    "SimulationScenario",
    "Simulator",
    # ML overlay and rule set versioning
    "InferenceProvider",
    "MLModelConfig",
    "MLOverlay",
    "MLPrediction",
    "RuleSetRegistry",
    "RuleSetVersion",
    # Persistence
    "AdaptationStore",
    "InMemoryAdaptationStore",
]
