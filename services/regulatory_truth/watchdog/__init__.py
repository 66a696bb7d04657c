"""
Watchdog
========

Pipeline health alerts, notification sinks and the daily digest.
"""

from services.regulatory_truth.watchdog.alerting import CRITICAL_FAILURE_RATIO, Watchdog
from services.regulatory_truth.watchdog.sinks import (
    AlertSink,
    ChatWebhookSink,
    DailyDigest,
    DigestStats,
    EmailSink,
)

__all__ = [
    "Watchdog",
    "CRITICAL_FAILURE_RATIO",
    "AlertSink",
    "ChatWebhookSink",
    "EmailSink",
    "DailyDigest",
    "DigestStats",
]
