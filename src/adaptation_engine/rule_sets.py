"""
Versioned Rule Sets

Named bundles of active rules and their default weights, rolled out to a
deterministic share of users for A/B comparison. Assignment hashes the user
id together with the version id, so a user always lands in the same bucket
for a given version regardless of when they were first seen.
"""

import hashlib
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

import structlog

from .exceptions import RuleSetError
from .models import RuleName
from .rules import RULES_BY_NAME, AdaptationRule

logger = structlog.get_logger(__name__)

BASELINE_VERSION_ID = "v1.0.0"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RuleSetPerformance:
    avg_user_satisfaction: float = 0.0
    avg_effectiveness: float = 0.0
    avg_adaptation_speed: float = 0.0
    retention_impact: float = 0.0


@dataclass(frozen=True)
class RuleSetVersion:
    """Immutable once activated; retirement produces a replaced copy."""

    version_id: str
    version_name: str
    rules: tuple[RuleName, ...]
    rule_weights: dict[RuleName, float]
    activated_at: datetime = field(default_factory=_utcnow)
    description: str = ""
    change_summary: tuple[str, ...] = ()
    performance_metrics: RuleSetPerformance = field(default_factory=RuleSetPerformance)
    retired_at: datetime | None = None

    def __post_init__(self):
        if not self.version_id:
            raise RuleSetError("Rule set version id cannot be empty")
        if not self.rules:
            raise RuleSetError("Rule set must enable at least one rule", self.version_id)
        unknown = [r for r in self.rules if not isinstance(r, RuleName)]
        if unknown:
            raise RuleSetError(f"Unknown rule names: {unknown}", self.version_id)
        stray = [r for r in self.rule_weights if r not in self.rules]
        if stray:
            raise RuleSetError(
                f"Weights given for rules outside the set: {[r.value for r in stray]}",
                self.version_id,
            )

    @property
    def is_retired(self) -> bool:
        return self.retired_at is not None

    def weight_for(self, rule: RuleName) -> float:
        return self.rule_weights.get(rule, 1.0)


BASELINE_RULE_SET = RuleSetVersion(
    version_id=BASELINE_VERSION_ID,
    version_name="baseline_rule_set",
    rules=tuple(RuleName),
    rule_weights={
        RuleName.FATIGUE: 1.0,
        RuleName.CONSISTENCY: 0.8,
        RuleName.PROGRESSIVE_OVERLOAD: 0.7,
        RuleName.RECOVERY: 0.9,
        RuleName.MOTIVATION: 0.6,
        RuleName.PLATEAU: 0.7,
        RuleName.STRESS: 0.9,
        RuleName.SLEEP: 0.8,
    },
    description="Initial production rule set with balanced weights",
    change_summary=("Initial release",),
)


def assignment_bucket(user_id: str, version_id: str) -> int:
    """Stable 0-99 bucket for a (user, version) pair."""
    digest = hashlib.sha256(f"{user_id}:{version_id}".encode("utf-8")).hexdigest()
    return int(digest, 16) % 100


class RuleSetRegistry:
    """Holds the baseline and every deployed version with its rollout share."""

    def __init__(self, baseline: RuleSetVersion = BASELINE_RULE_SET):
        self._lock = threading.Lock()
        self._versions: dict[str, RuleSetVersion] = {baseline.version_id: baseline}
        self._rollouts: dict[str, int] = {}
        self._deploy_order: list[str] = []
        self.current_version_id = baseline.version_id

    def get(self, version_id: str) -> RuleSetVersion:
        with self._lock:
            try:
                return self._versions[version_id]
            except KeyError:
                raise RuleSetError(f"Unknown rule set version: {version_id}", version_id) from None

    def versions(self) -> list[RuleSetVersion]:
        with self._lock:
            return list(self._versions.values())

    def deploy(self, version: RuleSetVersion, test_group_percentage: int = 10) -> None:
        if not 0 <= test_group_percentage <= 100:
            raise RuleSetError(
                f"Test group percentage must be within 0-100, got {test_group_percentage}",
                version.version_id,
            )
        with self._lock:
            if version.version_id in self._versions:
                raise RuleSetError(
                    f"Rule set version already exists: {version.version_id}", version.version_id
                )
            self._versions[version.version_id] = version
            self._rollouts[version.version_id] = test_group_percentage
            self._deploy_order.append(version.version_id)

        logger.info(
            "Rule set version deployed",
            version_id=version.version_id,
            test_group_percentage=test_group_percentage,
            rules=[r.value for r in version.rules],
        )

    def retire(self, version_id: str, at: datetime | None = None) -> RuleSetVersion:
        with self._lock:
            version = self._versions.get(version_id)
            if version is None:
                raise RuleSetError(f"Unknown rule set version: {version_id}", version_id)
            if version_id == self.current_version_id:
                raise RuleSetError("Cannot retire the current baseline rule set", version_id)
            retired = replace(version, retired_at=at or _utcnow())
            self._versions[version_id] = retired

        logger.info("Rule set version retired", version_id=version_id)
        return retired

    def test_group_for(self, user_id: str) -> str | None:
        """Newest active deployment whose rollout bucket includes the user."""
        with self._lock:
            for version_id in reversed(self._deploy_order):
                if self._versions[version_id].is_retired:
                    continue
                if assignment_bucket(user_id, version_id) < self._rollouts[version_id]:
                    return version_id
        return None

    def version_for_user(self, user_id: str) -> RuleSetVersion:
        return self.get(self.test_group_for(user_id) or self.current_version_id)

    @staticmethod
    def rules_for(version: RuleSetVersion) -> tuple[AdaptationRule, ...]:
        return tuple(RULES_BY_NAME[name] for name in version.rules)


__all__ = [
    "BASELINE_RULE_SET",
    "BASELINE_VERSION_ID",
    "RuleSetPerformance",
    "RuleSetRegistry",
    "RuleSetVersion",
    "assignment_bucket",
]
