"""
Configuration management for the adaptive recommendation engine.

This module provides centralized configuration for history filtering,
simulation, ML overlay gating, preemptive planning and user signature
evolution. Dataclass sections hold the reference defaults; EngineSettings
reads deployment overrides from ADAPTATION_* environment variables.
"""

from dataclasses import asdict, dataclass
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass
class HistoryConfig:
    """Thresholds for history filtering and effectiveness weighting."""

    failure_threshold: float = 0.3
    recency_window_days: float = 7.0
    promotion_threshold: float = 0.8
    demotion_threshold: float = 0.3
    success_threshold: float = 0.7
    effective_adaptation_threshold: float = 0.6
    volatility_window_days: float = 30.0
    default_effectiveness_rate: float = 0.5
    min_rule_weight: float = 0.1
    max_rule_weight: float = 2.0
    default_learning_rate: float = 0.05
    insights_history_limit: int = 10


@dataclass
class SimulationConfig:
    """Configuration for stochastic plan simulation."""

    iterations: int = 100
    duration_weeks: int = 4
    max_adaptations_per_week: int = 2
    max_workers: int = 4
    seed: int | None = None

    # Bounded cache (process lifetime is not an acceptable bound)
    cache_max_size: int = 256
    cache_ttl_seconds: float = 3600.0

    # Confidence = max(min, min(max, 1 - variance / variance_scale))
    variance_scale: float = 1000.0
    min_confidence: float = 0.5
    max_confidence: float = 0.95

    # Expected value blend
    progress_weight: float = 0.4
    adherence_weight: float = 0.3
    satisfaction_weight: float = 0.3


@dataclass
class MLOverlayConfig:
    """Configuration for the confidence-gated ML overlay."""

    confidence_threshold: float = 0.7
    required_status: str = "production"


@dataclass
class PlanningConfig:
    """Configuration for preemptive planning."""

    plan_confidence_cap: float = 0.95
    trajectory_weeks: int = 4
    valid_for_days: int = 7
    warning_decline_per_day: float = 5.0


@dataclass
class SignatureConfig:
    """Defaults and step sizes for per-user signature evolution."""

    initial_confidence: float = 0.1
    confidence_step: float = 0.05
    preferred_intensity_range: tuple[int, int] = (5, 8)
    average_recovery_days: float = 2.0
    adaptation_responsiveness: float = 0.5
    responsiveness_step: float = 0.1
    responsiveness_efficiency_threshold: int = 70
    max_recovery_days: float = 7.0
    min_recovery_days: float = 1.0
    recovery_days_penalty: float = 0.5
    recovery_days_reward: float = 0.25
    compliance_delta_threshold: float = 0.1


class EngineSettings(BaseSettings):
    """Deployment overrides read from the environment (ADAPTATION_ prefix)."""

    model_config = SettingsConfigDict(env_prefix="ADAPTATION_")

    simulation_iterations: int = 100
    simulation_cache_size: int = 256
    simulation_cache_ttl_seconds: float = 3600.0
    simulation_seed: int | None = None
    ml_confidence_threshold: float = 0.7
    log_level: str = "INFO"
    json_logs: bool = False


class ConfigManager:
    """
    Central configuration manager for the adaptation engine.

    Provides access to all configuration categories and handles
    configuration validation.
    """

    def __init__(self):
        """Initialize configuration manager with default values."""
        self.history = HistoryConfig()
        self.simulation = SimulationConfig()
        self.ml_overlay = MLOverlayConfig()
        self.planning = PlanningConfig()
        self.signature = SignatureConfig()

    @classmethod
    def from_settings(cls, settings: EngineSettings | None = None) -> "ConfigManager":
        """Build a configuration from environment-driven settings."""
        settings = settings or EngineSettings()
        config = cls()
        config.simulation.iterations = settings.simulation_iterations
        config.simulation.cache_max_size = settings.simulation_cache_size
        config.simulation.cache_ttl_seconds = settings.simulation_cache_ttl_seconds
        config.simulation.seed = settings.simulation_seed
        config.ml_overlay.confidence_threshold = settings.ml_confidence_threshold
        return config

    def get_all_config(self) -> dict[str, Any]:
        """
        Get all configuration as a dictionary.

        Returns:
            Dictionary containing all configuration sections
        """
        return {
            "history": asdict(self.history),
            "simulation": asdict(self.simulation),
            "ml_overlay": asdict(self.ml_overlay),
            "planning": asdict(self.planning),
            "signature": asdict(self.signature),
        }

    def validate_config(self) -> bool:
        """
        Validate configuration parameters for consistency.

        Returns:
            True if configuration is valid, False otherwise
        """
        history = self.history
        if not 0.0 <= history.demotion_threshold < history.promotion_threshold <= 1.0:
            return False

        if history.min_rule_weight <= 0 or history.min_rule_weight > history.max_rule_weight:
            return False

        simulation = self.simulation
        if simulation.iterations < 1 or simulation.max_workers < 1:
            return False

        if simulation.cache_max_size < 1 or simulation.cache_ttl_seconds <= 0:
            return False

        if not 0.0 < simulation.min_confidence <= simulation.max_confidence <= 1.0:
            return False

        blend = (
            simulation.progress_weight
            + simulation.adherence_weight
            + simulation.satisfaction_weight
        )
        if abs(blend - 1.0) > 0.01:
            return False

        if not 0.0 <= self.ml_overlay.confidence_threshold <= 1.0:
            return False

        low, high = self.signature.preferred_intensity_range
        if not 1 <= low <= high <= 10:
            return False

        return True


__all__ = [
    "HistoryConfig",
    "SimulationConfig",
    "MLOverlayConfig",
    "PlanningConfig",
    "SignatureConfig",
    "EngineSettings",
    "ConfigManager",
]
