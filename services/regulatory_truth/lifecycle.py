"""
Rule Lifecycle Manager
======================

Owns the rule status state machine:

    DRAFT -> PENDING_REVIEW -> APPROVED -> PUBLISHED

REJECTED is reachable from every non-terminal state and CONFLICT is set
when a structural conflict is detected. PUBLISHED and REJECTED are
terminal.

Transitions into APPROVED or PUBLISHED pass a gate that re-verifies
provenance against the current evidence text. Publishing additionally
requires approval, no open conflicts and sufficient confidence. A blocked
transition leaves the rule untouched and returns the reason; it never
raises.

Transitions of the same rule are serialized by a per-rule lock.

Version: 0.1.0
"""

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from shared.config import settings
from shared.logging import get_logger
from shared.models import (
    AlertSeverity,
    AlertType,
    ConflictStatus,
    RegulatoryRule,
    RuleStatus,
    RuleTransition,
    utcnow,
)
from services.regulatory_truth.provenance import PointerVerification, ProvenanceValidator
from services.regulatory_truth.storage import RuleStore
from services.regulatory_truth.watchdog import Watchdog

logger = get_logger(__name__)


ALLOWED_TRANSITIONS: dict[RuleStatus, frozenset[RuleStatus]] = {
    RuleStatus.DRAFT: frozenset({RuleStatus.PENDING_REVIEW, RuleStatus.REJECTED, RuleStatus.CONFLICT}),
    RuleStatus.PENDING_REVIEW: frozenset({RuleStatus.APPROVED, RuleStatus.REJECTED, RuleStatus.CONFLICT}),
    RuleStatus.APPROVED: frozenset({RuleStatus.PUBLISHED, RuleStatus.REJECTED, RuleStatus.CONFLICT}),
    RuleStatus.CONFLICT: frozenset({RuleStatus.PENDING_REVIEW, RuleStatus.REJECTED}),
    RuleStatus.PUBLISHED: frozenset(),
    RuleStatus.REJECTED: frozenset(),
}

GATED_STATUSES = frozenset({RuleStatus.APPROVED, RuleStatus.PUBLISHED})
TERMINAL_STATUSES = frozenset({RuleStatus.PUBLISHED, RuleStatus.REJECTED})


class BlockReason(str, Enum):
    """Why a transition was refused."""

    RULE_NOT_FOUND = "RULE_NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    MISSING_APPROVAL = "MISSING_APPROVAL"
    NO_SOURCE_POINTERS = "NO_SOURCE_POINTERS"
    PROVENANCE_FAILED = "PROVENANCE_FAILED"
    MISSING_LINEAGE = "MISSING_LINEAGE"
    UNRESOLVED_CONFLICTS = "UNRESOLVED_CONFLICTS"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"


@dataclass
class TransitionResult:
    """Outcome of a requested status transition."""

    rule_id: str
    success: bool
    to_status: RuleStatus
    from_status: RuleStatus | None = None
    block_reason: BlockReason | None = None
    message: str | None = None
    pointer_checks: list[PointerVerification] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.success and self.from_status != self.to_status


@dataclass
class PublishReport:
    """Per-rule outcomes of a batch publish."""

    results: list[TransitionResult] = field(default_factory=list)

    @property
    def published(self) -> list[str]:
        return [r.rule_id for r in self.results if r.success]

    @property
    def blocked(self) -> list[TransitionResult]:
        return [r for r in self.results if not r.success]

    @property
    def all_published(self) -> bool:
        return not self.blocked


class RuleLifecycleManager:
    """Guarded status transitions for regulatory rules."""

    def __init__(
        self,
        store: RuleStore,
        validator: ProvenanceValidator,
        watchdog: Watchdog | None = None,
        min_confidence: float | None = None,
        block_on_open_conflicts: bool | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._validator = validator
        self._watchdog = watchdog
        self._clock = clock
        self.min_confidence = (
            settings.publish.min_confidence if min_confidence is None else min_confidence
        )
        self.block_on_open_conflicts = (
            settings.publish.block_on_open_conflicts
            if block_on_open_conflicts is None
            else block_on_open_conflicts
        )
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, rule_id: str) -> asyncio.Lock:
        lock = self._locks.get(rule_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[rule_id] = lock
        return lock

    async def transition(
        self,
        rule_id: str,
        target: RuleStatus,
        actor: str = "system",
        reason: str | None = None,
    ) -> TransitionResult:
        """
        Move a rule to ``target`` if the state machine and gates allow it.

        Args:
            rule_id: Rule to transition
            target: Requested status
            actor: Who requested the transition (recorded in history)
            reason: Free-text reason (recorded in history)

        Returns:
            TransitionResult; ``success`` is False when blocked
        """
        async with self._lock(rule_id):
            rule = await self._store.get_rule(rule_id)
            if rule is None:
                return TransitionResult(
                    rule_id=rule_id,
                    success=False,
                    to_status=target,
                    block_reason=BlockReason.RULE_NOT_FOUND,
                    message=f"Rule {rule_id} does not exist",
                )

            if rule.status == target:
                return TransitionResult(
                    rule_id=rule_id,
                    success=True,
                    from_status=rule.status,
                    to_status=target,
                    message=f"Rule already {target.value}",
                )

            blocked = self._check_state_machine(rule, target)
            if blocked is None and target in GATED_STATUSES:
                blocked = await self._check_gate(rule, target)

            if blocked is not None:
                logger.warning(
                    "rule_transition_blocked",
                    rule_id=rule_id,
                    from_status=rule.status.value,
                    to_status=target.value,
                    block_reason=blocked.block_reason.value if blocked.block_reason else None,
                    message=blocked.message,
                )
                return blocked

            return await self._apply(rule, target, actor, reason)

    def _blocked(
        self,
        rule: RegulatoryRule,
        target: RuleStatus,
        block_reason: BlockReason,
        message: str,
        pointer_checks: list[PointerVerification] | None = None,
    ) -> TransitionResult:
        return TransitionResult(
            rule_id=rule.id,
            success=False,
            from_status=rule.status,
            to_status=target,
            block_reason=block_reason,
            message=message,
            pointer_checks=pointer_checks or [],
        )

    def _check_state_machine(self, rule: RegulatoryRule, target: RuleStatus) -> TransitionResult | None:
        if rule.status in TERMINAL_STATUSES:
            return self._blocked(
                rule, target, BlockReason.INVALID_TRANSITION, f"{rule.status.value} is a terminal status"
            )
        if target == RuleStatus.PUBLISHED and rule.status != RuleStatus.APPROVED:
            return self._blocked(
                rule,
                target,
                BlockReason.MISSING_APPROVAL,
                f"Only APPROVED rules can be published (status is {rule.status.value})",
            )
        if target not in ALLOWED_TRANSITIONS[rule.status]:
            return self._blocked(
                rule,
                target,
                BlockReason.INVALID_TRANSITION,
                f"Transition {rule.status.value} -> {target.value} is not allowed",
            )
        return None

    async def _check_gate(self, rule: RegulatoryRule, target: RuleStatus) -> TransitionResult | None:
        if not rule.source_pointer_ids:
            return self._blocked(
                rule, target, BlockReason.NO_SOURCE_POINTERS, "Rule has no source pointers"
            )

        pointers = await self._store.get_source_pointers(rule.source_pointer_ids)
        missing = set(rule.source_pointer_ids) - {p.id for p in pointers}
        if missing:
            return self._blocked(
                rule,
                target,
                BlockReason.PROVENANCE_FAILED,
                f"Source pointers missing: {', '.join(sorted(missing))}",
            )

        checks = await self._validator.verify_pointers(pointers)
        failed = [c for c in checks if not c.found]
        if failed:
            await self._alert_provenance(rule, failed)
            return self._blocked(
                rule,
                target,
                BlockReason.PROVENANCE_FAILED,
                "; ".join(c.reason or c.pointer_id for c in failed),
                pointer_checks=checks,
            )

        if not rule.has_lineage:
            return self._blocked(
                rule,
                target,
                BlockReason.MISSING_LINEAGE,
                "Rule has no originating candidate facts or agent runs",
                pointer_checks=checks,
            )

        if target == RuleStatus.PUBLISHED:
            if self.block_on_open_conflicts:
                open_conflicts = await self._store.list_conflicts(ConflictStatus.OPEN, rule_id=rule.id)
                if open_conflicts:
                    return self._blocked(
                        rule,
                        target,
                        BlockReason.UNRESOLVED_CONFLICTS,
                        f"{len(open_conflicts)} open conflict(s) reference this rule",
                        pointer_checks=checks,
                    )

            if rule.confidence < self.min_confidence:
                return self._blocked(
                    rule,
                    target,
                    BlockReason.LOW_CONFIDENCE,
                    f"Confidence {rule.confidence:.2f} is below {self.min_confidence:.2f}",
                    pointer_checks=checks,
                )

        return None

    async def _alert_provenance(self, rule: RegulatoryRule, failed: list[PointerVerification]) -> None:
        if self._watchdog is None:
            return
        await self._watchdog.raise_alert(
            AlertType.PROVENANCE_FAILURE,
            AlertSeverity.WARNING,
            f"Rule {rule.concept_slug} failed provenance re-verification",
            entity_id=rule.id,
            details={
                "pointers": [
                    {"pointer_id": c.pointer_id, "evidence_id": c.evidence_id, "reason": c.reason}
                    for c in failed
                ]
            },
        )

    async def _apply(
        self,
        rule: RegulatoryRule,
        target: RuleStatus,
        actor: str,
        reason: str | None,
    ) -> TransitionResult:
        now = self._clock()
        previous = rule.status

        rule.history.append(
            RuleTransition(from_status=previous, to_status=target, actor=actor, reason=reason, at=now)
        )
        rule.status = target
        rule.status_reason = reason
        rule.updated_at = now
        await self._store.save_rule(rule)

        logger.info(
            "rule_transitioned",
            rule_id=rule.id,
            concept_slug=rule.concept_slug,
            from_status=previous.value,
            to_status=target.value,
            actor=actor,
        )
        return TransitionResult(rule_id=rule.id, success=True, from_status=previous, to_status=target)

    # -- Convenience transitions -----------------------------------------

    async def submit_for_review(self, rule_id: str, actor: str = "system") -> TransitionResult:
        return await self.transition(rule_id, RuleStatus.PENDING_REVIEW, actor)

    async def approve(self, rule_id: str, actor: str, reason: str | None = None) -> TransitionResult:
        return await self.transition(rule_id, RuleStatus.APPROVED, actor, reason)

    async def publish(self, rule_id: str, actor: str = "system") -> TransitionResult:
        return await self.transition(rule_id, RuleStatus.PUBLISHED, actor)

    async def reject(self, rule_id: str, actor: str, reason: str) -> TransitionResult:
        return await self.transition(rule_id, RuleStatus.REJECTED, actor, reason)

    async def mark_conflict(self, rule_id: str, actor: str, reason: str) -> TransitionResult:
        return await self.transition(rule_id, RuleStatus.CONFLICT, actor, reason)

    async def publish_rules(self, rule_ids: Iterable[str], actor: str = "system") -> PublishReport:
        """
        Publish a batch of rules; each rule succeeds or fails on its own.

        Returns:
            PublishReport with one TransitionResult per requested id
        """
        report = PublishReport()
        for rule_id in dict.fromkeys(rule_ids):
            report.results.append(await self.publish(rule_id, actor))

        logger.info(
            "publish_batch_completed",
            requested=len(report.results),
            published=len(report.published),
            blocked=len(report.blocked),
        )
        return report
