"""
Watchdog
========

Collects pipeline anomalies as append-only WatchdogAlerts.

- CRITICAL alerts are persisted and dispatched to every sink at once.
- WARNING and INFO alerts are persisted and summarized in the daily digest.

Notification is best-effort: sink failures are logged and never raised.

Version: 0.1.0
"""

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any

from shared.config import settings
from shared.logging import get_logger
from shared.models import AlertSeverity, AlertType, WatchdogAlert, utcnow
from services.regulatory_truth.soft_fail import BatchResult
from services.regulatory_truth.storage import RegulatoryStore, RuleStore
from services.regulatory_truth.watchdog.sinks import (
    AlertSink,
    ChatWebhookSink,
    DailyDigest,
    DigestStats,
    EmailSink,
)

logger = get_logger(__name__)

# Batches where at least this share of items failed are critical
CRITICAL_FAILURE_RATIO = 0.5


class Watchdog:
    """Raises, persists and dispatches pipeline alerts."""

    def __init__(
        self,
        rule_store: RuleStore,
        regulatory_store: RegulatoryStore,
        sinks: Sequence[AlertSink] = (),
        digest_window_hours: int = 24,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._rule_store = rule_store
        self._regulatory_store = regulatory_store
        self.sinks = list(sinks)
        self.digest_window = timedelta(hours=digest_window_hours)
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        rule_store: RuleStore,
        regulatory_store: RegulatoryStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> "Watchdog":
        """Build a watchdog with the sinks configured in settings."""
        alerts = settings.alerts
        sinks: list[AlertSink] = []
        if alerts.chat_webhook_url:
            sinks.append(ChatWebhookSink(alerts.chat_webhook_url))
        if alerts.admin_email:
            sinks.append(
                EmailSink(
                    host=alerts.smtp_host,
                    port=alerts.smtp_port,
                    sender=alerts.smtp_from,
                    recipient=alerts.admin_email,
                    user=alerts.smtp_user,
                    password=alerts.smtp_password.get_secret_value(),
                    dashboard_url=alerts.dashboard_url,
                )
            )
        return cls(
            rule_store,
            regulatory_store,
            sinks=sinks,
            digest_window_hours=alerts.digest_window_hours,
            clock=clock,
        )

    async def raise_alert(
        self,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
        entity_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> WatchdogAlert:
        """
        Record an alert; dispatch it immediately when CRITICAL.

        Returns:
            The persisted alert
        """
        alert = WatchdogAlert(
            type=alert_type,
            severity=severity,
            entity_id=entity_id,
            message=message,
            details=details or {},
            occurred_at=self._clock(),
        )
        await self._rule_store.append_alert(alert)

        log = logger.error if severity == AlertSeverity.CRITICAL else logger.warning
        log(
            "watchdog_alert",
            alert_id=alert.id,
            type=alert_type.value,
            severity=severity.value,
            entity_id=entity_id,
            message=message,
        )

        if severity == AlertSeverity.CRITICAL:
            await self.dispatch(alert)
        return alert

    async def dispatch(self, alert: WatchdogAlert) -> dict[str, bool]:
        """Send an alert to every sink. Returns delivery status per sink."""
        delivered: dict[str, bool] = {}
        for sink in self.sinks:
            try:
                delivered[sink.name] = await sink.send(alert)
            except Exception as e:
                logger.error("alert_sink_failed", sink=sink.name, alert_id=alert.id, error=str(e))
                delivered[sink.name] = False
        return delivered

    async def on_circuit_open(self, domain: str, consecutive_errors: int) -> None:
        """Listener for the fetch client when a domain breaker opens."""
        await self.raise_alert(
            AlertType.CIRCUIT_OPEN,
            AlertSeverity.WARNING,
            f"Circuit breaker opened for {domain} after {consecutive_errors} consecutive errors",
            entity_id=domain,
            details={"domain": domain, "consecutive_errors": consecutive_errors},
        )

    async def check_batch(self, operation: str, batch: BatchResult[Any]) -> WatchdogAlert | None:
        """
        Inspect a finished batch and raise an alert for its failures.

        A failure ratio of at least 50% is CRITICAL; any other failure is a
        WARNING. Clean batches raise nothing.
        """
        if not batch.has_failures:
            return None

        severity = (
            AlertSeverity.CRITICAL
            if batch.failure_ratio >= CRITICAL_FAILURE_RATIO
            else AlertSeverity.WARNING
        )
        return await self.raise_alert(
            AlertType.BATCH_FAILURE,
            severity,
            f"{operation}: {batch.failed}/{batch.total} items failed",
            details={
                "operation": operation,
                "succeeded": batch.succeeded,
                "failed": batch.failed,
                "total": batch.total,
                "errors": [
                    {"entity_id": entity_id, "error": error}
                    for entity_id, error in batch.errors[:20]
                ],
            },
        )

    async def collect_digest(self, now: datetime | None = None) -> DailyDigest:
        """Gather warnings and activity counts for the current window."""
        window_end = now or self._clock()
        window_start = window_end - self.digest_window

        stats = DigestStats(
            sources_checked=await self._regulatory_store.count_sources_checked_since(window_start),
            items_discovered=await self._regulatory_store.count_items_discovered_since(window_start),
            rules_created=await self._rule_store.count_rules_created_since(window_start),
            avg_confidence=await self._rule_store.average_confidence_since(window_start),
        )
        warnings = await self._rule_store.list_alerts(window_start, severity=AlertSeverity.WARNING)

        return DailyDigest(
            window_start=window_start,
            window_end=window_end,
            stats=stats,
            warnings=warnings,
        )

    async def send_daily_digest(self, now: datetime | None = None) -> DailyDigest:
        """Collect the digest and deliver it to every sink."""
        digest = await self.collect_digest(now)

        for sink in self.sinks:
            try:
                digest.delivered[sink.name] = await sink.send_digest(digest)
            except Exception as e:
                logger.error("digest_sink_failed", sink=sink.name, error=str(e))
                digest.delivered[sink.name] = False

        logger.info(
            "daily_digest_sent",
            status=digest.status,
            warnings=len(digest.warnings),
            sources_checked=digest.stats.sources_checked,
            items_discovered=digest.stats.items_discovered,
            rules_created=digest.stats.rules_created,
            delivered=digest.delivered,
        )
        return digest
