"""
Adaptation Rules

Each rule is a stateless policy that inspects (snapshot, signature, metrics)
and emits at most one Recommendation. Rules never read each other's output;
ties and combinations are resolved later by the interaction analyzer and the
history stage.

Most rules have two severity bands: a narrow critical trigger and a wider
standard trigger with a smaller adjustment. Conditions that depend on recent
sessions are only evaluated when sessions exist.
"""

from abc import ABC, abstractmethod
from statistics import mean

from .models import (
    ChangeTarget,
    PlanChange,
    Priority,
    Recommendation,
    RecommendationType,
    RuleName,
    SignatureMetrics,
    UserSignature,
)
from .snapshot import MetricsSnapshot


def change(target: ChangeTarget, adjustment: float | str) -> PlanChange:
    return PlanChange(target=target, adjustment=adjustment)


class AdaptationRule(ABC):
    """Base class for all adaptation rules."""

    name: RuleName

    @abstractmethod
    def evaluate(
        self,
        snapshot: MetricsSnapshot,
        signature: UserSignature,
        metrics: SignatureMetrics,
    ) -> Recommendation | None:
        """Return one recommendation when the rule fires, otherwise None."""

    def recommend(
        self,
        type: RecommendationType,
        priority: Priority,
        changes: list[PlanChange],
        duration_days: float,
        reason: str,
        explanation: str,
    ) -> Recommendation:
        return Recommendation(
            type=type,
            priority=priority,
            changes=tuple(changes),
            duration_days=round(duration_days),
            reason=reason,
            explanation=explanation,
            source_rules=(self.name,),
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class FatigueRule(AdaptationRule):
    """Recovery index plus session fatigue/completion, personalized by tolerance."""

    name = RuleName.FATIGUE

    CRITICAL_RECOVERY_INDEX = 15
    LOW_RECOVERY_INDEX = 30

    def evaluate(self, snapshot, signature, metrics):
        sessions = snapshot.recent_workouts
        recent_fatigue = mean(s.reported_fatigue for s in sessions[-3:]) if sessions else None
        completion = mean(s.completion_rate for s in sessions[-5:]) if sessions else None

        ari = metrics.recovery_index
        fatigue_threshold = 9 if signature.preferred_intensity_range[1] > 8 else 8
        tolerates_fatigue = len(signature.fatigue_triggers) < 3

        if (
            ari < self.CRITICAL_RECOVERY_INDEX
            or (recent_fatigue is not None and recent_fatigue >= 9)
            or (completion is not None and completion < 0.5)
        ):
            return self.recommend(
                RecommendationType.RECOVERY,
                Priority.CRITICAL,
                [
                    change(ChangeTarget.INTENSITY, -40),
                    change(ChangeTarget.VOLUME, -30),
                    change(ChangeTarget.FREQUENCY, -1),
                ],
                signature.average_recovery_days + 2,
                f"Critical fatigue detected (ARI: {ari}) - immediate intervention required",
                f"Your Adaptive Recovery Index is critically low at {ari}%. "
                f"I'm implementing a comprehensive recovery protocol tailored to your "
                f"{signature.average_recovery_days:g}-day recovery pattern.",
            )

        if (
            ari < self.LOW_RECOVERY_INDEX
            or (recent_fatigue is not None and recent_fatigue >= fatigue_threshold)
            or (completion is not None and completion < 0.7)
        ):
            adjustment = -15 if tolerates_fatigue else -25
            return self.recommend(
                RecommendationType.INTENSITY,
                Priority.HIGH,
                [
                    change(ChangeTarget.INTENSITY, adjustment),
                    change(ChangeTarget.VOLUME, -15),
                ],
                signature.average_recovery_days,
                f"Elevated fatigue with ARI at {ari}% - personalized recovery needed",
                f"Based on your fatigue tolerance profile, I'm reducing intensity by "
                f"{abs(adjustment)}% for {signature.average_recovery_days:g} days to "
                f"restore your recovery capacity.",
            )

        return None


class ConsistencyRule(AdaptationRule):
    """Engagement and streak based habit rebuilding."""

    name = RuleName.CONSISTENCY

    def evaluate(self, snapshot, signature, metrics):
        progress = snapshot.progress_data
        engagement = metrics.engagement_score
        weekend_dropoff = "weekends low" in signature.compliance_pattern

        if engagement < 25 or (progress.weekly_consistency < 0.3 and progress.streak < 2):
            focus = (
                signature.preferred_workout_types[0]
                if signature.preferred_workout_types
                else "strength"
            )
            return self.recommend(
                RecommendationType.FREQUENCY,
                Priority.CRITICAL,
                [
                    change(ChangeTarget.FREQUENCY, -2),
                    change(ChangeTarget.INTENSITY, -30),
                    change(ChangeTarget.EXERCISE, f"focus_{focus}"),
                ],
                14,
                f"Critical engagement crisis (Score: {engagement}) - emergency simplification",
                f"Your engagement score has dropped to {engagement}%. I'm creating an "
                f"ultra-simple {focus}-focused routine to rebuild your momentum over 2 weeks.",
            )

        if engagement < 40 or (progress.weekly_consistency < 0.5 and progress.streak < 3):
            if weekend_dropoff:
                changes = [change(ChangeTarget.FREQUENCY, -1), change(ChangeTarget.INTENSITY, -20)]
                explanation = (
                    "I've noticed your weekend adherence pattern. Let's focus on weekday "
                    "consistency first, then gradually add weekend sessions."
                )
            else:
                changes = [change(ChangeTarget.FREQUENCY, -1), change(ChangeTarget.INTENSITY, -10)]
                explanation = (
                    f"Your engagement score is {engagement}%. I'm simplifying your routine "
                    f"to rebuild the habit."
                )
            return self.recommend(
                RecommendationType.FREQUENCY,
                Priority.MEDIUM,
                changes,
                10 if weekend_dropoff else 7,
                f"Low engagement detected (Score: {engagement}) - rebuilding habits",
                explanation,
            )

        return None


class ProgressiveOverloadRule(AdaptationRule):
    name = RuleName.PROGRESSIVE_OVERLOAD

    MIN_WORKOUTS = 12
    STAGNATION_GAIN = 0.02

    def evaluate(self, snapshot, signature, metrics):
        progress = snapshot.progress_data
        gains = list(progress.strength_gains.values())
        stagnated = bool(gains) and all(gain < self.STAGNATION_GAIN for gain in gains)

        if progress.total_workouts > self.MIN_WORKOUTS and stagnated:
            return self.recommend(
                RecommendationType.INTENSITY,
                Priority.MEDIUM,
                [change(ChangeTarget.INTENSITY, 10), change(ChangeTarget.EXERCISE, "variation")],
                14,
                "Strength plateau detected - need progressive overload",
                "I notice your strength gains have plateaued. I'm increasing intensity and "
                "adding exercise variations to stimulate new growth.",
            )
        return None


class RecoveryRule(AdaptationRule):
    name = RuleName.RECOVERY

    def evaluate(self, snapshot, signature, metrics):
        lifestyle = snapshot.lifestyle
        if lifestyle.sleep_hours < 6 or lifestyle.sleep_quality < 5 or lifestyle.stress_level > 7:
            return self.recommend(
                RecommendationType.RECOVERY,
                Priority.HIGH,
                [change(ChangeTarget.REST, "+1 day"), change(ChangeTarget.INTENSITY, -15)],
                5,
                "Poor recovery indicators detected",
                "Your sleep and stress levels indicate you need more recovery. I'm adding an "
                "extra rest day and reducing intensity.",
            )
        return None


class MotivationRule(AdaptationRule):
    """Momentum-driven exercise swaps shaped by the user's motivational triggers."""

    name = RuleName.MOTIVATION

    def evaluate(self, snapshot, signature, metrics):
        mood = snapshot.mood
        momentum = metrics.motivational_momentum
        triggers = signature.motivational_triggers

        if momentum < 15 or (mood.motivation <= 3 and mood.recent_trend == "declining"):
            explanation = "Your motivational momentum is critically low. "
            if "variety" in triggers:
                strategy = "variety_injection"
                explanation += "I'm adding exercise variety to reignite your interest."
            elif "competition" in triggers:
                strategy = "competition_element"
                explanation += "I'm introducing competitive elements to boost engagement."
            elif "PBs" in triggers:
                strategy = "personal_record_focus"
                explanation += "We're going to focus on achieving new personal records."
            else:
                strategy = "basic_motivation_boost"
                explanation += "I'm implementing a comprehensive motivation recovery protocol."

            return self.recommend(
                RecommendationType.EXERCISE_SWAP,
                Priority.CRITICAL,
                [change(ChangeTarget.EXERCISE, strategy), change(ChangeTarget.INTENSITY, -20)],
                7,
                f"Critical motivational momentum ({momentum}%) - emergency intervention",
                f"{explanation} Current momentum: {momentum}%",
            )

        if momentum < 30 or mood.motivation <= 5:
            strategy = "general_motivation_boost"
            changes = [change(ChangeTarget.EXERCISE, "motivation_boost")]
            if "variety" in triggers and len(signature.preferred_workout_types) > 1:
                strategy = "workout_type_rotation"
                changes = [change(ChangeTarget.EXERCISE, "rotate_workout_types")]
            elif "PBs" in triggers:
                strategy = "personal_record_opportunities"
                changes = [change(ChangeTarget.INTENSITY, 5), change(ChangeTarget.EXERCISE, "pb_focus")]

            return self.recommend(
                RecommendationType.EXERCISE_SWAP,
                Priority.MEDIUM,
                changes,
                5,
                f"Declining motivational momentum ({momentum}%) - personalized boost needed",
                f"Your motivation patterns suggest {strategy} will help. "
                f"Current momentum: {momentum}%",
            )

        return None


class PlateauRule(AdaptationRule):
    """Progress velocity plateaus, broken with the user's proven strategies when known."""

    name = RuleName.PLATEAU

    def evaluate(self, snapshot, signature, metrics):
        progress = snapshot.progress_data
        velocity = metrics.progress_velocity
        breakers = signature.plateau_breakers

        recent_gains = list(progress.strength_gains.values())[-4:]
        low_gains = bool(recent_gains) and mean(recent_gains) < 0.5

        if velocity < 10 or low_gains:
            explanation = "I've detected a plateau in your progress velocity. "
            if breakers:
                strategy = breakers[0]
                explanation += (
                    f"Based on your history, {strategy} has worked best for breaking your plateaus."
                )
            else:
                strategy = "intensity_variation"
                explanation += "I'm implementing a multi-faceted plateau breakthrough protocol."

            return self.recommend(
                RecommendationType.EXERCISE_SWAP,
                Priority.HIGH,
                [
                    change(ChangeTarget.EXERCISE, strategy),
                    change(ChangeTarget.INTENSITY, 15),
                    change(ChangeTarget.VOLUME, 10),
                ],
                10,
                f"Plateau detected - Progress Velocity at {velocity}%",
                f"{explanation} Your progress velocity has dropped to {velocity}%.",
            )

        if velocity < 20 or progress.average_rating < 6:
            strategy = breakers[0] if breakers else "exercise_variation"
            return self.recommend(
                RecommendationType.EXERCISE_SWAP,
                Priority.MEDIUM,
                [change(ChangeTarget.EXERCISE, strategy), change(ChangeTarget.INTENSITY, 5)],
                7,
                f"Declining progress velocity ({velocity}%) - preemptive plateau prevention",
                f"Your progress velocity suggests we should proactively prevent a plateau "
                f"using {strategy}.",
            )

        return None


class StressRule(AdaptationRule):
    name = RuleName.STRESS

    def evaluate(self, snapshot, signature, metrics):
        lifestyle = snapshot.lifestyle
        if lifestyle.stress_level > 8 or lifestyle.workload > 8:
            return self.recommend(
                RecommendationType.INTENSITY,
                Priority.CRITICAL,
                [change(ChangeTarget.EXERCISE, "stress_relief"), change(ChangeTarget.INTENSITY, -25)],
                3,
                "High stress levels - prioritizing stress relief",
                "Your stress levels are very high. I'm switching to stress-relieving exercises "
                "like yoga and reducing intensity significantly.",
            )
        return None


class SleepRule(AdaptationRule):
    name = RuleName.SLEEP

    def evaluate(self, snapshot, signature, metrics):
        lifestyle = snapshot.lifestyle
        if lifestyle.sleep_hours < 5 or lifestyle.sleep_quality < 3:
            return self.recommend(
                RecommendationType.REST_DAY,
                Priority.CRITICAL,
                [change(ChangeTarget.REST, "+2 days")],
                2,
                "Severely inadequate sleep - mandatory rest",
                "Your sleep is critically low. I'm prescribing 2 rest days to prioritize "
                "recovery. Let's focus on sleep hygiene.",
            )
        return None


DEFAULT_RULES: tuple[AdaptationRule, ...] = (
    FatigueRule(),
    ConsistencyRule(),
    ProgressiveOverloadRule(),
    RecoveryRule(),
    MotivationRule(),
    PlateauRule(),
    StressRule(),
    SleepRule(),
)

RULES_BY_NAME: dict[RuleName, AdaptationRule] = {rule.name: rule for rule in DEFAULT_RULES}


def evaluate_rules(
    rules: tuple[AdaptationRule, ...] | list[AdaptationRule],
    snapshot: MetricsSnapshot,
    signature: UserSignature,
    metrics: SignatureMetrics,
) -> list[tuple[RuleName, Recommendation]]:
    """Run every rule independently and pair each result with its rule tag."""
    fired: list[tuple[RuleName, Recommendation]] = []
    for rule in rules:
        recommendation = rule.evaluate(snapshot, signature, metrics)
        if recommendation is not None:
            fired.append((rule.name, recommendation))
    return fired


__all__ = [
    "AdaptationRule",
    "ConsistencyRule",
    "DEFAULT_RULES",
    "FatigueRule",
    "MotivationRule",
    "PlateauRule",
    "ProgressiveOverloadRule",
    "RULES_BY_NAME",
    "RecoveryRule",
    "SleepRule",
    "StressRule",
    "evaluate_rules",
]
