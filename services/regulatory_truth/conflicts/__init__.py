"""
Conflicts
=========

Structural conflict detection and precedence arbitration.
"""

from services.regulatory_truth.conflicts.arbiter import (
    ArbitrationDecision,
    ConflictResolver,
    ResolutionOutcome,
    arbitrate,
    rank_rules,
)
from services.regulatory_truth.conflicts.detector import (
    COMPARABLE_STATUSES,
    ConflictDetector,
    ConflictSeed,
    dates_overlap,
    find_conflicts,
)

__all__ = [
    "ConflictDetector",
    "ConflictSeed",
    "COMPARABLE_STATUSES",
    "dates_overlap",
    "find_conflicts",
    "ArbitrationDecision",
    "ConflictResolver",
    "ResolutionOutcome",
    "arbitrate",
    "rank_rules",
]
