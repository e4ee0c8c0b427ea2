"""
Signature-driven personalization of recommendation strategies.

Generic exercise strategies are swapped for the user's own proven plateau
breakers or trigger-derived strategies. Type and priority are never touched,
and running the step twice gives the same result as running it once.
"""

from collections.abc import Iterable
from dataclasses import replace

from .models import ChangeTarget, PlanChange, Recommendation, UserSignature

PLATEAU_GENERIC_STRATEGIES = frozenset({"exercise_variation", "variation", "intensity_variation"})
MOTIVATION_GENERIC_STRATEGIES = frozenset({"motivation_boost", "general_motivation_boost"})
GENERIC_STRATEGIES = PLATEAU_GENERIC_STRATEGIES | MOTIVATION_GENERIC_STRATEGIES

TRIGGER_STRATEGIES = {
    "variety": "variety_injection",
    "competition": "competition_element",
    "PBs": "personal_record_focus",
}


def trigger_strategy(signature: UserSignature) -> str | None:
    """
    Strategy for the first usable motivational trigger.

    Triggers are either known trigger keys ("variety", "competition", "PBs")
    or strategy names learned from successful outcomes, used as-is.
    """
    for trigger in signature.motivational_triggers:
        strategy = TRIGGER_STRATEGIES.get(trigger, trigger)
        if strategy not in GENERIC_STRATEGIES:
            return strategy
    return None


def personalized_strategy(generic: str, signature: UserSignature) -> str | None:
    """Concrete replacement for a generic strategy; never returns a generic name."""
    breaker = next(
        (b for b in signature.plateau_breakers if b not in GENERIC_STRATEGIES), None
    )
    from_trigger = trigger_strategy(signature)

    if generic in PLATEAU_GENERIC_STRATEGIES:
        return breaker or from_trigger
    if generic in MOTIVATION_GENERIC_STRATEGIES:
        return from_trigger or breaker
    return None


class SignaturePersonalizer:
    """Applies per-user strategy substitution to a recommendation list."""

    NOTE_TEMPLATE = "Personalized with {strategy}, which has worked for you before."

    def personalize(
        self, recommendations: Iterable[Recommendation], signature: UserSignature
    ) -> list[Recommendation]:
        return [self.personalize_one(rec, signature) for rec in recommendations]

    def personalize_one(self, rec: Recommendation, signature: UserSignature) -> Recommendation:
        changes: list[PlanChange] = []
        substituted: list[str] = []

        for change in rec.changes:
            if change.target == ChangeTarget.EXERCISE and change.adjustment in GENERIC_STRATEGIES:
                strategy = personalized_strategy(change.adjustment, signature)
                if strategy and strategy != change.adjustment:
                    changes.append(replace(change, adjustment=strategy))
                    substituted.append(strategy)
                    continue
            changes.append(change)

        if not substituted:
            return rec

        explanation = rec.explanation
        for strategy in substituted:
            note = self.NOTE_TEMPLATE.format(strategy=strategy)
            if note not in explanation:
                explanation = f"{explanation} {note}"

        return replace(rec, changes=tuple(changes), explanation=explanation)


__all__ = [
    "GENERIC_STRATEGIES",
    "SignaturePersonalizer",
    "personalized_strategy",
    "trigger_strategy",
]
