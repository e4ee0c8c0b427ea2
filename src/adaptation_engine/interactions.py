"""
Rule Interaction Analyzer and Chainer

When specific combinations of rules fire together, the combination means
more than its parts. A static interaction table keyed by sets of rule names
identifies those combinations; the winning entry's compound strategy picks
a composition routine that merges or escalates recommendations.

Resolution when several entries apply: highest compound priority, then the
most specific entry (largest rule set), then the earliest declaration.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

import structlog

from .models import (
    ChangeTarget,
    PlanChange,
    Priority,
    Recommendation,
    RecommendationType,
    RuleName,
)

logger = structlog.get_logger(__name__)


class InteractionType(Enum):
    AMPLIFY = "amplify"
    SUPPRESS = "suppress"
    REDIRECT = "redirect"
    MERGE = "merge"


@dataclass(frozen=True)
class RuleInteraction:
    """Read-only interaction table entry."""

    rules: frozenset[RuleName]
    interaction_type: InteractionType
    resulting_strategy: str
    priority_modifier: float
    compound_priority: Priority
    contextual_factor: str
    description: str

    @property
    def specificity(self) -> int:
        return len(self.rules)

    def applies_to(self, triggered: Iterable[RuleName]) -> bool:
        return self.rules <= set(triggered)


RULE_INTERACTIONS: tuple[RuleInteraction, ...] = (
    RuleInteraction(
        rules=frozenset({RuleName.FATIGUE, RuleName.STRESS}),
        interaction_type=InteractionType.AMPLIFY,
        resulting_strategy="comprehensive_recovery_protocol",
        priority_modifier=1.5,
        compound_priority=Priority.CRITICAL,
        contextual_factor="high_stress_fatigue_compound",
        description="Both high stress and fatigue require immediate intervention",
    ),
    RuleInteraction(
        rules=frozenset({RuleName.PLATEAU, RuleName.CONSISTENCY}),
        interaction_type=InteractionType.REDIRECT,
        resulting_strategy="simplified_progression_plan",
        priority_modifier=1.2,
        compound_priority=Priority.HIGH,
        contextual_factor="plateau_consistency_issue",
        description="Plateau plus low consistency calls for a simpler approach",
    ),
    RuleInteraction(
        rules=frozenset({RuleName.MOTIVATION, RuleName.PROGRESSIVE_OVERLOAD}),
        interaction_type=InteractionType.MERGE,
        resulting_strategy="gamified_progression_system",
        priority_modifier=1.1,
        compound_priority=Priority.MEDIUM,
        contextual_factor="motivation_progression_synergy",
        description="Low motivation plus a need for progression is best gamified",
    ),
)


@dataclass(frozen=True)
class RuleContext:
    """What the interaction analysis found for one analysis cycle."""

    triggered_rules: tuple[RuleName, ...]
    interactions: tuple[RuleInteraction, ...]
    compound_priority: Priority
    contextual_factors: tuple[str, ...]
    winning_interaction: RuleInteraction | None = None

    @property
    def emergent_strategy(self) -> str | None:
        if self.winning_interaction is None:
            return None
        return self.winning_interaction.resulting_strategy


def _most_urgent(*recommendations: Recommendation) -> Priority:
    return max((rec.priority for rec in recommendations), key=lambda p: p.rank)


def _merge_changes(recommendations: Sequence[Recommendation]) -> tuple[PlanChange, ...]:
    """Most negative numeric adjustment per target plus every non-numeric action."""
    numeric: dict[ChangeTarget, PlanChange] = {}
    actions: list[PlanChange] = []
    order: list[ChangeTarget | PlanChange] = []

    for rec in recommendations:
        for change in rec.changes:
            if change.is_numeric:
                current = numeric.get(change.target)
                if current is None:
                    numeric[change.target] = change
                    order.append(change.target)
                elif change.adjustment < current.adjustment:
                    numeric[change.target] = change
            elif change not in actions:
                actions.append(change)
                order.append(change)

    return tuple(numeric[item] if isinstance(item, ChangeTarget) else item for item in order)


class InteractionAnalyzer:
    """Looks up applicable interactions and runs the winning composition routine."""

    def __init__(self, interactions: Sequence[RuleInteraction] = RULE_INTERACTIONS):
        self.interactions = tuple(interactions)
        self._composers = {
            "comprehensive_recovery_protocol": self._comprehensive_recovery_protocol,
            "simplified_progression_plan": self._simplified_progression_plan,
            "gamified_progression_system": self._gamified_progression_system,
        }

    def analyze(self, triggered_rules: Iterable[RuleName]) -> RuleContext:
        triggered = tuple(triggered_rules)
        applicable = tuple(i for i in self.interactions if i.applies_to(triggered))

        if not applicable:
            return RuleContext(
                triggered_rules=triggered,
                interactions=(),
                compound_priority=Priority.LOW,
                contextual_factors=(),
            )

        declaration_order = {interaction: index for index, interaction in enumerate(applicable)}
        winner = max(
            applicable,
            key=lambda i: (i.compound_priority.rank, i.specificity, -declaration_order[i]),
        )
        compound_priority = max(
            (i.compound_priority for i in applicable), key=lambda p: p.rank
        )

        logger.debug(
            "Rule interactions applicable",
            interactions=[i.resulting_strategy for i in applicable],
            winner=winner.resulting_strategy,
        )

        return RuleContext(
            triggered_rules=triggered,
            interactions=applicable,
            compound_priority=compound_priority,
            contextual_factors=tuple(i.contextual_factor for i in applicable),
            winning_interaction=winner,
        )

    def apply_chaining(
        self,
        fired: Sequence[tuple[RuleName, Recommendation]],
        context: RuleContext,
    ) -> list[Recommendation]:
        """Compose recommendations for the winning interaction; pass-through otherwise."""
        recommendations = [rec for _, rec in fired]
        interaction = context.winning_interaction
        if interaction is None:
            return recommendations

        composer = self._composers.get(interaction.resulting_strategy)
        if composer is None:
            logger.warning(
                "No composition routine for interaction",
                strategy=interaction.resulting_strategy,
            )
            return recommendations

        by_rule = dict(fired)
        return composer(fired, by_rule, interaction)

    @staticmethod
    def _replace_members(
        fired: Sequence[tuple[RuleName, Recommendation]],
        members: frozenset[RuleName],
        composed: Recommendation,
        escalate_others: float | None = None,
    ) -> list[Recommendation]:
        result: list[Recommendation] = []
        inserted = False
        for name, rec in fired:
            if name in members:
                if not inserted:
                    result.append(composed)
                    inserted = True
                continue
            if escalate_others is not None:
                rec = rec.with_priority(rec.priority.escalate(escalate_others))
            result.append(rec)
        return result

    def _comprehensive_recovery_protocol(self, fired, by_rule, interaction):
        fatigue = by_rule[RuleName.FATIGUE]
        stress = by_rule[RuleName.STRESS]
        members = (fatigue, stress)

        protocol = Recommendation(
            type=RecommendationType.RECOVERY,
            priority=Priority.CRITICAL,
            changes=_merge_changes(members),
            duration_days=max(rec.duration_days for rec in members),
            reason="; ".join(rec.reason for rec in members),
            explanation=(
                "Fatigue and high stress are compounding each other. I'm combining "
                "recovery and stress relief into one comprehensive recovery protocol."
            ),
            source_rules=(RuleName.FATIGUE, RuleName.STRESS),
        )
        return self._replace_members(
            fired, interaction.rules, protocol, escalate_others=interaction.priority_modifier
        )

    def _simplified_progression_plan(self, fired, by_rule, interaction):
        plateau = by_rule[RuleName.PLATEAU]
        consistency = by_rule[RuleName.CONSISTENCY]

        frequency_change = next(
            (c for c in consistency.changes if c.target == ChangeTarget.FREQUENCY),
            PlanChange(target=ChangeTarget.FREQUENCY, adjustment=-1),
        )
        plan = Recommendation(
            type=RecommendationType.FREQUENCY,
            priority=_most_urgent(plateau, consistency).escalate(interaction.priority_modifier),
            changes=(
                frequency_change,
                PlanChange(target=ChangeTarget.INTENSITY, adjustment=0),
                PlanChange(target=ChangeTarget.EXERCISE, adjustment="simplified_progression"),
            ),
            duration_days=max(plateau.duration_days, consistency.duration_days),
            reason="; ".join((plateau.reason, consistency.reason)),
            explanation=(
                "Your progress has stalled while consistency is slipping. Instead of "
                "pushing harder, I'm simplifying your progression so you can rebuild "
                "the habit before we chase new gains."
            ),
            source_rules=(RuleName.PLATEAU, RuleName.CONSISTENCY),
        )
        return self._replace_members(fired, interaction.rules, plan)

    def _gamified_progression_system(self, fired, by_rule, interaction):
        motivation = by_rule[RuleName.MOTIVATION]
        overload = by_rule[RuleName.PROGRESSIVE_OVERLOAD]

        system = Recommendation(
            type=RecommendationType.EXERCISE_SWAP,
            priority=_most_urgent(motivation, overload).escalate(interaction.priority_modifier),
            changes=(
                PlanChange(target=ChangeTarget.EXERCISE, adjustment="gamified_progression"),
                PlanChange(target=ChangeTarget.INTENSITY, adjustment=5),
            ),
            duration_days=max(motivation.duration_days, overload.duration_days),
            reason="; ".join((motivation.reason, overload.reason)),
            explanation=(
                "You need both a motivation lift and new progression. I'm turning your "
                "next block into a gamified progression system with small, trackable wins."
            ),
            source_rules=(RuleName.MOTIVATION, RuleName.PROGRESSIVE_OVERLOAD),
        )
        return self._replace_members(fired, interaction.rules, system)


__all__ = [
    "InteractionAnalyzer",
    "InteractionType",
    "RULE_INTERACTIONS",
    "RuleContext",
    "RuleInteraction",
]
