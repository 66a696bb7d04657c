"""
Pipeline Errors
===============

Typed failures raised by pipeline stages. Stage-local errors are recovered
by the soft-fail runner; ConfigurationError is fatal and aborts startup.
Guard rejections are not errors (see lifecycle.TransitionResult).
"""


class RegulatoryTruthError(Exception):
    """Base class for pipeline errors."""


class FetchError(RegulatoryTruthError):
    """Outbound fetch failed (network error or non-success status)."""

    def __init__(
        self,
        url: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(f"{message} ({url})")

    @property
    def is_transient(self) -> bool:
        """Network errors, 5xx and 429 count against the circuit breaker."""
        return self.status_code is None or self.status_code >= 500 or self.status_code == 429


class CircuitOpenError(RegulatoryTruthError):
    """The circuit breaker for a domain is open; fail fast."""

    def __init__(self, domain: str, retry_after_seconds: float) -> None:
        self.domain = domain
        self.retry_after_seconds = retry_after_seconds
        minutes = round(retry_after_seconds / 60)
        super().__init__(f"Circuit breaker open for {domain}. Resets in {minutes} minutes")


class ProviderError(RegulatoryTruthError):
    """Extraction/composition provider failure."""


class ExtractionError(ProviderError):
    """The extraction provider failed or returned an invalid payload."""


class CompositionError(ProviderError):
    """The composition provider failed or returned an invalid payload."""


class EvidenceNotFoundError(RegulatoryTruthError):
    """Referenced evidence does not exist."""

    def __init__(self, evidence_id: str) -> None:
        self.evidence_id = evidence_id
        super().__init__(f"Evidence not found: {evidence_id}")


class RuleNotFoundError(RegulatoryTruthError):
    """Referenced rule does not exist."""

    def __init__(self, rule_id: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"Rule not found: {rule_id}")


class SourceNotFoundError(RegulatoryTruthError):
    """Referenced regulatory source does not exist."""

    def __init__(self, source_id: str) -> None:
        self.source_id = source_id
        super().__init__(f"Source not found: {source_id}")


class EvidenceImmutabilityError(RegulatoryTruthError):
    """Attempt to rewrite an existing evidence snapshot."""


class StoreConsistencyError(RegulatoryTruthError):
    """A record the store just wrote or matched could not be read back."""

    def __init__(self, collection: str, key: str) -> None:
        self.collection = collection
        self.key = key
        super().__init__(f"{collection} record {key} missing after write")


class ConfigurationError(RegulatoryTruthError):
    """Fatal misconfiguration (missing store, missing credentials)."""
