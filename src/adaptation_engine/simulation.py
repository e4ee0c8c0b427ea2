"""
Simulated Plan Testing

Monte-Carlo style evaluation of a proposed recommendation set. Each trial
starts from a frozen SimulationState, applies recommendations week by week
(subject to the scenario's adaptation limit and the user's adherence), rolls
stochastic life events, and scores the resulting path. Trials are
independent and run on a thread pool, each with its own numpy Generator
spawned from a single SeedSequence.

Aggregated results are cached by (user id, stress, consistency,
recommendation types) in a bounded LRU+TTL cache.
"""

import hashlib
import json
import threading
import time
import uuid
from collections import OrderedDict
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, replace
from typing import Any

import numpy as np
import structlog

from .config import SimulationConfig
from .exceptions import CacheError
from .models import (
    ChangeTarget,
    Recommendation,
    RecommendationType,
    SignatureMetrics,
    UserSignature,
    sort_by_priority,
)
from .snapshot import MetricsSnapshot

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StochasticFactor:
    """Life event rolled once per week while inactive; overrides state fields while active."""

    event: str
    probability: float
    impact: dict[str, float]
    duration_weeks: int

    def __post_init__(self):
        if not 0.0 <= self.probability <= 1.0:
            raise ValueError("Probability must be between 0.0 and 1.0")
        if self.duration_weeks < 1:
            raise ValueError("Duration must be at least one week")


@dataclass(frozen=True)
class SimulationConstraint:
    type: str
    value: float
    reason: str


@dataclass(frozen=True)
class SimulationScenario:
    name: str
    duration_weeks: int
    stochastic_factors: tuple[StochasticFactor, ...]
    constraints: tuple[SimulationConstraint, ...] = ()

    @property
    def max_adaptations_per_week(self) -> int | None:
        for constraint in self.constraints:
            if constraint.type == "max_adaptations_per_week":
                return int(constraint.value)
        return None


@dataclass(frozen=True)
class SimulationState:
    """Immutable working copy of the simulated user state."""

    recovery_index: float
    engagement_score: float
    motivational_momentum: float
    progress_velocity: float
    motivation: float
    stress_level: float
    sleep_hours: float
    sleep_quality: float
    weekly_consistency: float

    @classmethod
    def from_inputs(cls, snapshot: MetricsSnapshot, metrics: SignatureMetrics) -> "SimulationState":
        return cls(
            recovery_index=float(metrics.recovery_index),
            engagement_score=float(metrics.engagement_score),
            motivational_momentum=float(metrics.motivational_momentum),
            progress_velocity=float(metrics.progress_velocity),
            motivation=float(snapshot.mood.motivation),
            stress_level=float(snapshot.lifestyle.stress_level),
            sleep_hours=float(snapshot.lifestyle.sleep_hours),
            sleep_quality=float(snapshot.lifestyle.sleep_quality),
            weekly_consistency=float(snapshot.progress_data.weekly_consistency),
        )

    def with_deltas(self, deltas: dict[str, float]) -> "SimulationState":
        updates = {}
        for name, delta in deltas.items():
            low, high = STATE_BOUNDS[name]
            updates[name] = max(low, min(high, getattr(self, name) + delta))
        return replace(self, **updates)

    def with_overrides(self, overrides: dict[str, float]) -> "SimulationState":
        return replace(self, **overrides)

    def to_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in STATE_BOUNDS}


STATE_BOUNDS: dict[str, tuple[float, float]] = {
    "recovery_index": (0.0, 100.0),
    "engagement_score": (0.0, 100.0),
    "motivational_momentum": (0.0, 100.0),
    "progress_velocity": (0.0, 100.0),
    "motivation": (1.0, 10.0),
    "stress_level": (1.0, 10.0),
    "sleep_hours": (0.0, 24.0),
    "sleep_quality": (1.0, 10.0),
    "weekly_consistency": (0.0, 1.0),
}


@dataclass(frozen=True)
class SimulationOutcome:
    path: tuple[Recommendation, ...]
    final_state: SimulationState
    user_satisfaction_score: float
    adherence_rate: float
    progress_score: float
    adaptation_efficiency: float
    events_occurred: tuple[str, ...]
    total_cost: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": [rec.id for rec in self.path],
            "final_state": self.final_state.to_dict(),
            "user_satisfaction_score": self.user_satisfaction_score,
            "adherence_rate": self.adherence_rate,
            "progress_score": self.progress_score,
            "adaptation_efficiency": self.adaptation_efficiency,
            "events_occurred": list(self.events_occurred),
            "total_cost": self.total_cost,
        }


@dataclass(frozen=True)
class SimulationResult:
    simulation_id: str
    scenario: SimulationScenario
    outcomes: tuple[SimulationOutcome, ...]
    best_path: tuple[Recommendation, ...]
    worst_path: tuple[Recommendation, ...]
    expected_value: float
    confidence: float
    run_time: float
    iterations: int
    cache_key: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "simulation_id": self.simulation_id,
            "scenario": self.scenario.name,
            "best_path": [rec.id for rec in self.best_path],
            "worst_path": [rec.id for rec in self.worst_path],
            "expected_value": self.expected_value,
            "confidence": self.confidence,
            "run_time": self.run_time,
            "iterations": self.iterations,
            "cache_key": self.cache_key,
        }


def default_scenario(config: SimulationConfig | None = None) -> SimulationScenario:
    """Four-week adaptation impact scenario with the standard life events."""
    config = config or SimulationConfig()
    return SimulationScenario(
        name="Adaptation Impact Simulation",
        duration_weeks=config.duration_weeks,
        stochastic_factors=(
            StochasticFactor("work_stress_spike", 0.2, {"stress_level": 8.0}, 1),
            StochasticFactor("motivation_boost", 0.3, {"motivation": 8.0}, 2),
            StochasticFactor("life_disruption", 0.1, {"sleep_hours": 5.0}, 1),
        ),
        constraints=(
            SimulationConstraint(
                type="max_adaptations_per_week",
                value=config.max_adaptations_per_week,
                reason="Avoid overwhelming user with changes",
            ),
        ),
    )


def recommendation_effect(rec: Recommendation) -> dict[str, float]:
    """Qualitative effect of one applied recommendation on the simulated state."""
    intensity = rec.numeric_adjustment(ChangeTarget.INTENSITY) or 0.0
    frequency = rec.numeric_adjustment(ChangeTarget.FREQUENCY) or 0.0

    if rec.type == RecommendationType.RECOVERY:
        return {"recovery_index": 8.0, "sleep_quality": 1.0, "stress_level": -0.5}
    if rec.type == RecommendationType.REST_DAY:
        return {"recovery_index": 10.0, "sleep_quality": 0.5}
    if rec.type == RecommendationType.NUTRITION:
        return {"recovery_index": 3.0}
    if rec.type == RecommendationType.EXERCISE_SWAP:
        return {"motivation": 1.0, "engagement_score": 5.0, "motivational_momentum": 5.0}
    if rec.type == RecommendationType.FREQUENCY:
        if frequency < 0:
            return {"weekly_consistency": 0.1, "engagement_score": 4.0, "progress_velocity": -2.0}
        return {"progress_velocity": 3.0, "weekly_consistency": -0.05}
    if intensity < 0:
        return {"recovery_index": 6.0, "stress_level": -0.5, "progress_velocity": -2.0}
    return {"progress_velocity": 6.0, "recovery_index": -4.0}


def adherence_estimate(state: SimulationState) -> float:
    estimate = (
        0.5 * state.weekly_consistency
        + 0.3 * state.motivation / 10
        + 0.2 * state.recovery_index / 100
        - (0.1 if state.stress_level > 7 else 0.0)
    )
    return max(0.05, min(0.99, estimate))


def weekly_progress(state: SimulationState, adherence: float) -> float:
    return 25.0 * adherence * (0.5 + state.recovery_index / 200) * (0.5 + state.motivation / 20)


def satisfaction_score(state: SimulationState, adherence: float) -> float:
    score = state.motivation * 0.6 + (10 - state.stress_level) * 0.2 + adherence * 10 * 0.2
    return max(1.0, min(10.0, score))


def lifestyle_adjusted(state: SimulationState, baseline: SimulationState) -> SimulationState:
    """Recovery reacts to event-driven sleep and stress shifts relative to the start."""
    shift = (state.sleep_hours - baseline.sleep_hours) * 4 - (
        state.stress_level - baseline.stress_level
    ) * 4
    return state.with_deltas({"recovery_index": shift})


def run_trial(
    scenario: SimulationScenario,
    initial: SimulationState,
    recommendations: Sequence[Recommendation],
    rng: np.random.Generator,
) -> SimulationOutcome:
    """One independent trial; never mutates its inputs."""
    pending = list(sort_by_priority(list(recommendations)))
    limit = scenario.max_adaptations_per_week or len(pending)

    state = initial
    path: list[Recommendation] = []
    events: list[str] = []
    active_until: dict[str, int] = {}
    progress = 0.0
    adherence_by_week: list[float] = []
    effective = initial

    for week in range(scenario.duration_weeks):
        adherence = adherence_estimate(effective)

        attempted = pending[:limit]
        pending = pending[limit:]
        for rec in attempted:
            if rng.random() < adherence:
                state = state.with_deltas(recommendation_effect(rec))
                path.append(rec)

        for factor in scenario.stochastic_factors:
            if active_until.get(factor.event, -1) >= week:
                continue
            if rng.random() < factor.probability:
                events.append(factor.event)
                active_until[factor.event] = week + factor.duration_weeks - 1

        overrides: dict[str, float] = {}
        for factor in scenario.stochastic_factors:
            if active_until.get(factor.event, -1) >= week:
                overrides.update(factor.impact)

        effective = lifestyle_adjusted(state.with_overrides(overrides), initial)
        adherence = adherence_estimate(effective)
        adherence_by_week.append(adherence)
        progress += weekly_progress(effective, adherence)

    adherence_rate = float(np.mean(adherence_by_week)) if adherence_by_week else 0.0
    return SimulationOutcome(
        path=tuple(path),
        final_state=effective,
        user_satisfaction_score=satisfaction_score(effective, adherence_rate),
        adherence_rate=adherence_rate,
        progress_score=max(0.0, min(100.0, progress)),
        adaptation_efficiency=len(path) / len(recommendations) if recommendations else 1.0,
        events_occurred=tuple(events),
        total_cost=len(recommendations) * 10.0,
    )


@dataclass
class CacheEntry:
    """Cache entry with TTL and access tracking."""

    result: SimulationResult
    created_at: float
    last_accessed: float
    ttl_seconds: float
    access_count: int = 0

    @property
    def is_expired(self) -> bool:
        return (time.time() - self.created_at) > self.ttl_seconds

    def touch(self) -> None:
        self.last_accessed = time.time()
        self.access_count += 1


class SimulationCache:
    """
    Thread-safe LRU cache with TTL for simulation results.

    Expired entries are dropped lazily on access and by ``purge_expired``.
    """

    def __init__(self, max_size: int = 256, default_ttl: float = 3600.0):
        self.max_size = max_size
        self.default_ttl = default_ttl

        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._metrics = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
            "ttl_evictions": 0,
            "size_evictions": 0,
            "put_operations": 0,
        }

        logger.debug("SimulationCache initialized", max_size=max_size, ttl=default_ttl)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def put(self, cache_key: str, result: SimulationResult, ttl: float | None = None) -> None:
        if ttl is None:
            ttl = self.default_ttl

        try:
            with self._lock:
                now = time.time()
                if cache_key in self._cache:
                    del self._cache[cache_key]

                self._cache[cache_key] = CacheEntry(
                    result=result, created_at=now, last_accessed=now, ttl_seconds=ttl
                )
                self._metrics["put_operations"] += 1

                while len(self._cache) > self.max_size:
                    lru_key, _ = self._cache.popitem(last=False)
                    self._metrics["evictions"] += 1
                    self._metrics["size_evictions"] += 1
                    logger.debug("Evicted LRU simulation", cache_key=lru_key)

        except Exception as e:
            logger.error("Simulation cache put failed", cache_key=cache_key, error=str(e))
            raise CacheError(f"Failed to store simulation in cache: {e}", "PUT") from e

    def get(self, cache_key: str) -> SimulationResult | None:
        """Cached result, or None when missing or expired. Never raises."""
        try:
            with self._lock:
                entry = self._cache.get(cache_key)
                if entry is None:
                    self._metrics["misses"] += 1
                    return None

                if entry.is_expired:
                    del self._cache[cache_key]
                    self._metrics["misses"] += 1
                    self._metrics["ttl_evictions"] += 1
                    self._metrics["evictions"] += 1
                    return None

                entry.touch()
                self._cache.move_to_end(cache_key)
                self._metrics["hits"] += 1
                return entry.result

        except Exception as e:
            logger.error("Simulation cache get failed", cache_key=cache_key, error=str(e))
            return None

    def purge_expired(self) -> int:
        with self._lock:
            expired = [key for key, entry in self._cache.items() if entry.is_expired]
            for key in expired:
                del self._cache[key]
            self._metrics["ttl_evictions"] += len(expired)
            self._metrics["evictions"] += len(expired)
            return len(expired)

    def clear(self) -> int:
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            return count

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._metrics["hits"] + self._metrics["misses"]
            return {
                "size": len(self._cache),
                "max_size": self.max_size,
                "hit_rate": self._metrics["hits"] / total if total else 0.0,
                "total_requests": total,
                **self._metrics,
            }

    @staticmethod
    def generate_cache_key(
        snapshot: MetricsSnapshot,
        recommendations: Sequence[Recommendation],
        scenario: SimulationScenario | None = None,
    ) -> str:
        """
        SHA-256 over user id, stress, consistency and the joined recommendation types.

        A non-default scenario is folded into the key in full, so custom runs
        never share entries with the standard scenario or with each other.
        """
        normalized = {
            "user_id": snapshot.user_id,
            "stress_level": snapshot.lifestyle.stress_level,
            "weekly_consistency": snapshot.progress_data.weekly_consistency,
            "types": "-".join(rec.type.value for rec in recommendations),
        }
        if scenario is not None:
            normalized["scenario"] = asdict(scenario)
        payload = json.dumps(normalized, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]


class Simulator:
    """Runs cached, parallel simulations of proposed recommendation sets."""

    def __init__(
        self,
        config: SimulationConfig | None = None,
        cache: SimulationCache | None = None,
    ):
        self.config = config or SimulationConfig()
        self.cache = cache or SimulationCache(
            max_size=self.config.cache_max_size,
            default_ttl=self.config.cache_ttl_seconds,
        )
        self._trials_run = 0
        self._counter_lock = threading.Lock()

    @property
    def trials_run(self) -> int:
        """Total trials executed; cache hits do not add to it."""
        with self._counter_lock:
            return self._trials_run

    def simulate(
        self,
        snapshot: MetricsSnapshot,
        signature: UserSignature,
        metrics: SignatureMetrics,
        recommendations: Sequence[Recommendation],
        scenario: SimulationScenario | None = None,
    ) -> SimulationResult:
        standard = default_scenario(self.config)
        scenario = scenario or standard
        cache_key = self.cache.generate_cache_key(
            snapshot, recommendations, None if scenario == standard else scenario
        )
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug("Simulation cache hit", user_id=snapshot.user_id, cache_key=cache_key)
            return cached

        initial = SimulationState.from_inputs(snapshot, metrics)
        recs = tuple(recommendations)
        iterations = self.config.iterations

        start_time = time.time()
        children = np.random.SeedSequence(self.config.seed).spawn(iterations)

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures = [
                executor.submit(run_trial, scenario, initial, recs, np.random.default_rng(child))
                for child in children
            ]
            outcomes = tuple(future.result() for future in futures)

        with self._counter_lock:
            self._trials_run += len(outcomes)

        result = self.aggregate(
            outcomes,
            scenario=scenario,
            simulation_id=f"sim-{signature.user_id}-{uuid.uuid4().hex[:8]}",
            run_time=time.time() - start_time,
            cache_key=cache_key,
        )
        self.cache.put(cache_key, result)

        logger.info(
            "Simulation complete",
            user_id=snapshot.user_id,
            iterations=iterations,
            expected_value=round(result.expected_value, 3),
            confidence=round(result.confidence, 3),
        )
        return result

    def aggregate(
        self,
        outcomes: Sequence[SimulationOutcome],
        scenario: SimulationScenario,
        simulation_id: str,
        run_time: float,
        cache_key: str = "",
    ) -> SimulationResult:
        config = self.config
        progress = np.array([o.progress_score for o in outcomes], dtype=float)
        blended = np.array(
            [
                o.progress_score * config.progress_weight
                + o.adherence_rate * config.adherence_weight
                + o.user_satisfaction_score * config.satisfaction_weight
                for o in outcomes
            ],
            dtype=float,
        )

        best = outcomes[int(np.argmax(progress))]
        worst = outcomes[int(np.argmin(progress))]

        return SimulationResult(
            simulation_id=simulation_id,
            scenario=scenario,
            outcomes=tuple(outcomes),
            best_path=best.path,
            worst_path=worst.path,
            expected_value=float(np.mean(blended)),
            confidence=self.confidence(progress),
            run_time=run_time,
            iterations=len(outcomes),
            cache_key=cache_key,
        )

    def confidence(self, progress_scores: Sequence[float] | np.ndarray) -> float:
        """Lower variance means higher confidence, clamped to the configured band."""
        variance = float(np.var(np.asarray(progress_scores, dtype=float)))
        config = self.config
        return max(
            config.min_confidence,
            min(config.max_confidence, 1 - variance / config.variance_scale),
        )


__all__ = [
    "SimulationCache",
    "SimulationConstraint",
    "SimulationOutcome",
    "SimulationResult",
    "SimulationScenario",
    "SimulationState",
    "Simulator",
    "StochasticFactor",
    "default_scenario",
    "run_trial",
]
