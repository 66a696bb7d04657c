"""
Structural Conflict Detector
============================

Compares a new rule with existing non-rejected rules that share its
concept slug, or cite one of the same legal articles, and raises:

- VALUE_MISMATCH: values differ and the effective windows overlap
- AUTHORITY_SUPERSEDE: values agree, the windows overlap and the new rule
  outranks the existing one

A pair raises at most one conflict. Windows use inclusive bounds; a
missing bound is open-ended.

Version: 0.1.0
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from shared.logging import get_logger
from shared.models import ConflictType, RegulatoryConflict, RegulatoryRule, RuleStatus
from services.regulatory_truth.storage import RuleStore

logger = get_logger(__name__)

COMPARABLE_STATUSES = frozenset(
    {
        RuleStatus.DRAFT,
        RuleStatus.PENDING_REVIEW,
        RuleStatus.APPROVED,
        RuleStatus.PUBLISHED,
        RuleStatus.CONFLICT,
    }
)


@dataclass(frozen=True)
class ConflictSeed:
    """A detected, not yet persisted, conflict."""

    conflict_type: ConflictType
    item_a_id: str
    item_b_id: str
    description: str
    metadata: dict[str, Any] = field(default_factory=dict)


def dates_overlap(
    start1: date | None,
    end1: date | None,
    start2: date | None,
    end2: date | None,
) -> bool:
    """``start1 <= end2 and start2 <= end1`` with None as -inf / +inf."""
    starts_before_other_ends = start1 is None or end2 is None or start1 <= end2
    other_starts_before_end = start2 is None or end1 is None or start2 <= end1
    return starts_before_other_ends and other_starts_before_end


def _same_value(a: RegulatoryRule, b: RegulatoryRule) -> bool:
    return a.value.strip().casefold() == b.value.strip().casefold()


def _window(rule: RegulatoryRule) -> str:
    start = rule.effective_from.isoformat() if rule.effective_from else "-inf"
    end = rule.effective_until.isoformat() if rule.effective_until else "+inf"
    return f"[{start}, {end}]"


def find_conflicts(new_rule: RegulatoryRule, existing: Iterable[RegulatoryRule]) -> list[ConflictSeed]:
    """
    Pure comparison of a rule against candidates.

    Args:
        new_rule: The rule being introduced
        existing: Candidate rules (same concept or same cited article)

    Returns:
        One seed per conflicting pair
    """
    seeds: list[ConflictSeed] = []
    seen: set[str] = set()

    for other in existing:
        if other.id == new_rule.id or other.id in seen or other.status not in COMPARABLE_STATUSES:
            continue
        seen.add(other.id)

        if not dates_overlap(
            new_rule.effective_from,
            new_rule.effective_until,
            other.effective_from,
            other.effective_until,
        ):
            continue

        metadata = {
            "concept_slug": new_rule.concept_slug,
            "other_concept_slug": other.concept_slug,
            "new_window": _window(new_rule),
            "existing_window": _window(other),
        }

        if not _same_value(new_rule, other):
            seeds.append(
                ConflictSeed(
                    conflict_type=ConflictType.VALUE_MISMATCH,
                    item_a_id=new_rule.id,
                    item_b_id=other.id,
                    description=(
                        f"{new_rule.concept_slug}: value {new_rule.value!r} conflicts with "
                        f"{other.value!r} over overlapping effective windows"
                    ),
                    metadata={**metadata, "value_a": new_rule.value, "value_b": other.value},
                )
            )
        elif new_rule.authority_rank < other.authority_rank:
            seeds.append(
                ConflictSeed(
                    conflict_type=ConflictType.AUTHORITY_SUPERSEDE,
                    item_a_id=new_rule.id,
                    item_b_id=other.id,
                    description=(
                        f"{new_rule.concept_slug}: {new_rule.authority_level.value} source "
                        f"supersedes {other.authority_level.value} source"
                    ),
                    metadata={
                        **metadata,
                        "rank_a": new_rule.authority_rank,
                        "rank_b": other.authority_rank,
                    },
                )
            )

    return seeds


class ConflictDetector:
    """Detects and persists structural conflicts."""

    def __init__(self, store: RuleStore) -> None:
        self._store = store

    async def _candidates(self, rule: RegulatoryRule) -> list[RegulatoryRule]:
        candidates = await self._store.list_rules(COMPARABLE_STATUSES, concept_slug=rule.concept_slug)

        pointers = await self._store.get_source_pointers(rule.source_pointer_ids)
        articles = {p.article_number for p in pointers if p.article_number}
        for article in sorted(articles):
            candidates.extend(await self._store.rules_citing_article(article, COMPARABLE_STATUSES))

        return candidates

    async def detect_structural_conflicts(self, new_rule: RegulatoryRule) -> list[ConflictSeed]:
        """Conflicts the rule would introduce against stored rules."""
        seeds = find_conflicts(new_rule, await self._candidates(new_rule))
        if seeds:
            logger.info(
                "structural_conflicts_detected",
                rule_id=new_rule.id,
                concept_slug=new_rule.concept_slug,
                count=len(seeds),
                types=[s.conflict_type.value for s in seeds],
            )
        return seeds

    async def seed_conflicts(self, seeds: Iterable[ConflictSeed]) -> list[RegulatoryConflict]:
        """
        Persist seeds, skipping pairs that already have an OPEN conflict.

        Returns:
            Newly created conflicts
        """
        created: list[RegulatoryConflict] = []
        for seed in seeds:
            conflict = RegulatoryConflict(
                conflict_type=seed.conflict_type,
                item_a_id=seed.item_a_id,
                item_b_id=seed.item_b_id,
                description=seed.description,
                metadata=seed.metadata,
            )
            if await self._store.create_conflict_if_absent(conflict):
                created.append(conflict)
                logger.info(
                    "conflict_created",
                    conflict_id=conflict.id,
                    type=conflict.conflict_type.value,
                    item_a_id=conflict.item_a_id,
                    item_b_id=conflict.item_b_id,
                )
            else:
                logger.debug("conflict_already_open", item_a_id=seed.item_a_id, item_b_id=seed.item_b_id)
        return created

    async def detect_and_seed(self, new_rule: RegulatoryRule) -> list[RegulatoryConflict]:
        return await self.seed_conflicts(await self.detect_structural_conflicts(new_rule))
