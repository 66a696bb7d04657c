"""
Arbiter & Conflict Resolution
=============================

Precedence among rules for the same concept:

1. lowest authority rank (LAW beats GUIDANCE)
2. highest confidence
3. most recent effective_from (unset sorts oldest)

A tie on all three is undecidable and stays OPEN for human review.

Version: 0.1.0
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from shared.logging import get_logger
from shared.models import (
    AlertSeverity,
    AlertType,
    ConflictStatus,
    RegulatoryConflict,
    RegulatoryRule,
    RuleStatus,
    utcnow,
)
from services.regulatory_truth.lifecycle import RuleLifecycleManager
from services.regulatory_truth.storage import RuleStore
from services.regulatory_truth.watchdog import Watchdog

logger = get_logger(__name__)

ARBITER_ACTOR = "arbiter"


def _precedence_key(rule: RegulatoryRule) -> tuple[int, float, int]:
    effective = (rule.effective_from or date.min).toordinal()
    return (rule.authority_rank, -rule.confidence, -effective)


@dataclass(frozen=True)
class ArbitrationDecision:
    """Winner (or tie) among competing rules."""

    winner_id: str | None
    strategy: str
    ranking: list[str]

    @property
    def decided(self) -> bool:
        return self.winner_id is not None


def rank_rules(rules: Sequence[RegulatoryRule]) -> ArbitrationDecision:
    """
    Order rules by precedence and name the deciding criterion.

    ``strategy`` is one of authority, confidence, recency, single or tie.
    """
    ordered = sorted(rules, key=_precedence_key)
    ranking = [r.id for r in ordered]

    if not ordered:
        return ArbitrationDecision(winner_id=None, strategy="tie", ranking=[])
    if len(ordered) == 1:
        return ArbitrationDecision(winner_id=ordered[0].id, strategy="single", ranking=ranking)

    best, runner_up = _precedence_key(ordered[0]), _precedence_key(ordered[1])
    if best == runner_up:
        return ArbitrationDecision(winner_id=None, strategy="tie", ranking=ranking)

    strategy = ("authority", "confidence", "recency")[
        next(i for i, (a, b) in enumerate(zip(best, runner_up)) if a != b)
    ]
    return ArbitrationDecision(winner_id=ordered[0].id, strategy=strategy, ranking=ranking)


def arbitrate(rules: Sequence[RegulatoryRule]) -> str | None:
    """Winning rule id, or None when precedence cannot decide."""
    return rank_rules(rules).winner_id


@dataclass
class ResolutionOutcome:
    """What happened to one conflict."""

    conflict_id: str
    resolved: bool
    winner_id: str | None = None
    loser_id: str | None = None
    strategy: str | None = None
    message: str | None = None


class ConflictResolver:
    """Applies the arbiter (or a reviewer's choice) to open conflicts."""

    def __init__(
        self,
        store: RuleStore,
        lifecycle: RuleLifecycleManager,
        watchdog: Watchdog | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._lifecycle = lifecycle
        self._watchdog = watchdog
        self._clock = clock

    async def _alert(
        self,
        alert_type: AlertType,
        message: str,
        entity_id: str,
        details: dict[str, Any],
    ) -> None:
        if self._watchdog is not None:
            await self._watchdog.raise_alert(alert_type, AlertSeverity.WARNING, message, entity_id, details)

    async def resolve(
        self,
        conflict_id: str,
        winner_id: str | None = None,
        actor: str = ARBITER_ACTOR,
    ) -> ResolutionOutcome:
        """
        Resolve one OPEN conflict.

        Args:
            conflict_id: Conflict to resolve
            winner_id: Reviewer-chosen winner; the arbiter decides when None
            actor: Recorded on the conflict and on rule transitions
        """
        conflict = await self._store.get_conflict(conflict_id)
        if conflict is None:
            return ResolutionOutcome(conflict_id, resolved=False, message="Conflict not found")
        if conflict.status != ConflictStatus.OPEN:
            return ResolutionOutcome(conflict_id, resolved=False, message="Conflict is not open")

        rule_a = await self._store.get_rule(conflict.item_a_id)
        rule_b = await self._store.get_rule(conflict.item_b_id)
        rules = [r for r in (rule_a, rule_b) if r is not None]

        if winner_id is not None:
            if not conflict.involves(winner_id):
                return ResolutionOutcome(
                    conflict_id, resolved=False, message=f"{winner_id} is not part of this conflict"
                )
            decision = ArbitrationDecision(winner_id=winner_id, strategy="manual", ranking=[r.id for r in rules])
        else:
            decision = rank_rules(rules)

        winner = decision.winner_id
        if winner is None:
            logger.warning("conflict_undecidable", conflict_id=conflict_id, ranking=decision.ranking)
            await self._alert(
                AlertType.CONFLICT_UNRESOLVED,
                f"Conflict {conflict_id} needs human review: rules tie on authority, confidence and recency",
                conflict_id,
                {"item_a_id": conflict.item_a_id, "item_b_id": conflict.item_b_id},
            )
            return ResolutionOutcome(conflict_id, resolved=False, strategy="tie", message="Undecidable tie")

        loser = conflict.other(winner)

        conflict.status = ConflictStatus.RESOLVED
        conflict.resolved_at = self._clock()
        conflict.resolution = {
            "winner_id": winner,
            "loser_id": loser,
            "strategy": decision.strategy,
            "resolved_by": actor,
        }
        await self._store.save_conflict(conflict)

        await self._settle_loser(conflict, loser, winner, actor)
        await self._settle_winner(winner, actor)

        logger.info(
            "conflict_resolved",
            conflict_id=conflict_id,
            winner_id=winner,
            loser_id=loser,
            strategy=decision.strategy,
        )
        return ResolutionOutcome(
            conflict_id,
            resolved=True,
            winner_id=winner,
            loser_id=loser,
            strategy=decision.strategy,
        )

    async def _settle_loser(
        self,
        conflict: RegulatoryConflict,
        loser_id: str,
        winner_id: str,
        actor: str,
    ) -> None:
        loser = await self._store.get_rule(loser_id)
        if loser is None or loser.status == RuleStatus.REJECTED:
            return

        if loser.status == RuleStatus.PUBLISHED:
            await self._alert(
                AlertType.PUBLISHED_RULE_OUTRANKED,
                f"Published rule {loser.concept_slug} was outranked by {winner_id}",
                loser_id,
                {"conflict_id": conflict.id, "winner_id": winner_id},
            )
            return

        await self._lifecycle.reject(loser_id, actor, reason=f"Outranked by {winner_id} (conflict {conflict.id})")

    async def _settle_winner(self, winner_id: str, actor: str) -> None:
        winner = await self._store.get_rule(winner_id)
        if winner is None or winner.status != RuleStatus.CONFLICT:
            return

        still_open = await self._store.list_conflicts(ConflictStatus.OPEN, rule_id=winner_id)
        if not still_open:
            await self._lifecycle.transition(
                winner_id, RuleStatus.PENDING_REVIEW, actor, reason="All conflicts resolved"
            )

    async def resolve_open(self) -> list[ResolutionOutcome]:
        """Run the arbiter over every OPEN conflict."""
        outcomes = [
            await self.resolve(conflict.id)
            for conflict in await self._store.list_conflicts(ConflictStatus.OPEN)
        ]
        logger.info(
            "open_conflicts_processed",
            total=len(outcomes),
            resolved=sum(1 for o in outcomes if o.resolved),
        )
        return outcomes
