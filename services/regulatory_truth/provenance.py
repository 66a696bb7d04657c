"""
Provenance Validator
====================

Proves that a quoted claim is present in an evidence snapshot's
extractable text.

Matching runs in three steps:

1. exact: the quote is a verbatim substring of the text
2. normalized: after Unicode normalization, case folding, quote/dash
   unification and whitespace collapsing, the quote is a substring
3. normalized (near match): for quotes longer than
   ``NEAR_MATCH_PREFIX_CHARS`` normalized characters, the leading
   ``NEAR_MATCH_PREFIX_CHARS`` characters are a substring

Anything else is ``none``. The validator is used at extraction time to
stamp pointer match types and by the lifecycle manager as a publication
gate against the then-current evidence content.

Version: 0.1.0
"""

import re
import unicodedata
from collections.abc import Iterable
from dataclasses import dataclass

from shared.logging import get_logger
from shared.models import MatchType, SourcePointer
from services.regulatory_truth.content import EvidenceContentProvider
from services.regulatory_truth.storage import RegulatoryStore

logger = get_logger(__name__)

NEAR_MATCH_PREFIX_CHARS = 50

_QUOTE_TRANSLATION = str.maketrans(
    {
        "‘": "'",
        "’": "'",
        "‚": "'",
        "‛": "'",
        "“": '"',
        "”": '"',
        "„": '"',
        "«": '"',
        "»": '"',
        "‐": "-",
        "‑": "-",
        "‒": "-",
        "–": "-",
        "—": "-",
        "−": "-",
        " ": " ",
    }
)
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class QuoteMatch:
    """Result of locating a quote in evidence text."""

    found: bool
    match_type: MatchType


def normalize_for_match(text: str) -> str:
    """Canonical form used for tolerant quote matching."""
    text = unicodedata.normalize("NFKC", text).translate(_QUOTE_TRANSLATION)
    return _WHITESPACE_RE.sub(" ", text.casefold()).strip()


def find_quote_in_evidence(evidence_text: str, exact_quote: str) -> QuoteMatch:
    """
    Locate a quote in evidence text.

    Args:
        evidence_text: Extractable text of the evidence snapshot
        exact_quote: Quote claimed by a pointer or candidate fact

    Returns:
        QuoteMatch with ``found`` and the match type
    """
    if not exact_quote.strip():
        return QuoteMatch(found=False, match_type=MatchType.NONE)

    if exact_quote in evidence_text:
        return QuoteMatch(found=True, match_type=MatchType.EXACT)

    haystack = normalize_for_match(evidence_text)
    needle = normalize_for_match(exact_quote)

    if needle in haystack:
        return QuoteMatch(found=True, match_type=MatchType.NORMALIZED)

    if len(needle) > NEAR_MATCH_PREFIX_CHARS and needle[:NEAR_MATCH_PREFIX_CHARS] in haystack:
        return QuoteMatch(found=True, match_type=MatchType.NORMALIZED)

    return QuoteMatch(found=False, match_type=MatchType.NONE)


@dataclass(frozen=True)
class PointerVerification:
    """Verification outcome for one source pointer."""

    pointer_id: str
    evidence_id: str
    found: bool
    match_type: MatchType
    reason: str | None = None


class ProvenanceValidator:
    """Verifies source pointers against current evidence text."""

    def __init__(self, store: RegulatoryStore, content: EvidenceContentProvider) -> None:
        self._store = store
        self._content = content

    async def verify_pointer(self, pointer: SourcePointer) -> PointerVerification:
        """Check that a pointer's evidence exists and still contains its quote."""
        evidence = await self._store.get_evidence(pointer.evidence_id)
        if evidence is None:
            logger.warning(
                "provenance_evidence_missing",
                pointer_id=pointer.id,
                evidence_id=pointer.evidence_id,
            )
            return PointerVerification(
                pointer_id=pointer.id,
                evidence_id=pointer.evidence_id,
                found=False,
                match_type=MatchType.NONE,
                reason=f"Evidence {pointer.evidence_id} does not exist",
            )

        text = await self._content.text_for(evidence)
        match = find_quote_in_evidence(text, pointer.exact_quote)

        if not match.found:
            logger.warning(
                "provenance_quote_not_found",
                pointer_id=pointer.id,
                evidence_id=pointer.evidence_id,
                quote_preview=pointer.exact_quote[:80],
            )

        return PointerVerification(
            pointer_id=pointer.id,
            evidence_id=pointer.evidence_id,
            found=match.found,
            match_type=match.match_type,
            reason=None if match.found else f"Quote not found in evidence {pointer.evidence_id}",
        )

    async def verify_pointers(self, pointers: Iterable[SourcePointer]) -> list[PointerVerification]:
        return [await self.verify_pointer(p) for p in pointers]
