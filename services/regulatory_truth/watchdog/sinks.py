"""
Alert Sinks
===========

Best-effort notification transports. ``send`` returns whether delivery
succeeded; transport errors are logged and reported as ``False``, never
raised into the pipeline.

Version: 0.1.0
"""

import asyncio
import html
import json
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage

import httpx

from shared.logging import get_logger
from shared.models import WatchdogAlert

logger = get_logger(__name__)


@dataclass(frozen=True)
class DigestStats:
    """Pipeline activity counted over the digest window."""

    sources_checked: int = 0
    items_discovered: int = 0
    rules_created: int = 0
    avg_confidence: float = 0.0


@dataclass
class DailyDigest:
    """Summary of warnings and activity for one digest window."""

    window_start: datetime
    window_end: datetime
    stats: DigestStats
    warnings: list[WatchdogAlert] = field(default_factory=list)
    delivered: dict[str, bool] = field(default_factory=dict)

    @property
    def status(self) -> str:
        return "HEALTHY" if not self.warnings else "WARNINGS"

    @property
    def subject(self) -> str:
        return f"[RegTruth] Daily Watchdog Report - {self.window_end.date().isoformat()}"

    def to_text(self) -> str:
        lines = [
            f"Daily Watchdog Report ({self.status})",
            "",
            f"Warnings since {self.window_start.isoformat()}:",
        ]
        lines.extend(f"- {w.type.value}: {w.message}" for w in self.warnings)
        if not self.warnings:
            lines.append("- No warnings")
        lines.extend(
            [
                "",
                "Health summary:",
                f"- Sources checked: {self.stats.sources_checked}",
                f"- Items discovered: {self.stats.items_discovered}",
                f"- Rules created: {self.stats.rules_created}",
                f"- Avg confidence: {self.stats.avg_confidence * 100:.1f}%",
            ]
        )
        return "\n".join(lines)


class AlertSink(ABC):
    """A notification transport."""

    name: str = "sink"

    @abstractmethod
    async def send(self, alert: WatchdogAlert) -> bool:
        """Deliver a single alert."""
        ...

    @abstractmethod
    async def send_digest(self, digest: DailyDigest) -> bool:
        """Deliver a daily digest."""
        ...


def _alert_text(alert: WatchdogAlert) -> str:
    lines = [
        f"[{alert.severity.value}] {alert.type.value}: {alert.message}",
        f"Entity: {alert.entity_id or 'N/A'}",
        f"Time: {alert.occurred_at.isoformat()}",
    ]
    if alert.details:
        lines.append(json.dumps(alert.details, indent=2, default=str, ensure_ascii=False))
    return "\n".join(lines)


class ChatWebhookSink(AlertSink):
    """Slack-compatible incoming webhook."""

    name = "chat"

    def __init__(
        self,
        webhook_url: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def _post(self, text: str) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.post(self.webhook_url, json={"text": text})
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("chat_alert_failed", error=str(e))
            return False
        return True

    async def send(self, alert: WatchdogAlert) -> bool:
        delivered = await self._post(_alert_text(alert))
        if delivered:
            logger.info("chat_alert_sent", alert_id=alert.id, type=alert.type.value)
        return delivered

    async def send_digest(self, digest: DailyDigest) -> bool:
        return await self._post(f"*{digest.subject}*\n{digest.to_text()}")


class EmailSink(AlertSink):
    """SMTP delivery to the administrator address."""

    name = "email"

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        recipient: str,
        user: str = "",
        password: str = "",
        dashboard_url: str = "",
        timeout_seconds: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.recipient = recipient
        self.user = user
        self.password = password
        self.dashboard_url = dashboard_url
        self.timeout_seconds = timeout_seconds

    def _build_message(self, subject: str, text: str, html_body: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = self.recipient
        message.set_content(text)
        message.add_alternative(html_body, subtype="html")
        return message

    def _deliver(self, message: EmailMessage) -> None:
        smtp_cls = smtplib.SMTP_SSL if self.port == 465 else smtplib.SMTP
        with smtp_cls(self.host, self.port, timeout=self.timeout_seconds) as smtp:
            if self.port != 465 and self.user:
                smtp.starttls()
            if self.user and self.password:
                smtp.login(self.user, self.password)
            smtp.send_message(message)

    async def _send(self, message: EmailMessage, kind: str) -> bool:
        if not self.recipient:
            logger.info("email_skipped_no_recipient", kind=kind)
            return False
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("email_delivery_failed", kind=kind, error=str(e))
            return False

        logger.info("email_sent", kind=kind, recipient=self.recipient)
        return True

    def _footer(self) -> str:
        if not self.dashboard_url:
            return ""
        return f'<hr><p><a href="{html.escape(self.dashboard_url)}">View Dashboard</a></p>'

    async def send(self, alert: WatchdogAlert) -> bool:
        subject = f"[RegTruth {alert.severity.value}] {alert.type.value}: {alert.message}"[:200]
        details = (
            f"<h3>Details</h3><pre>{html.escape(json.dumps(alert.details, indent=2, default=str))}</pre>"
            if alert.details
            else ""
        )
        body = (
            "<h2>Regulatory Truth Pipeline Alert</h2>"
            "<table>"
            f"<tr><td><strong>Severity:</strong></td><td>{alert.severity.value}</td></tr>"
            f"<tr><td><strong>Type:</strong></td><td>{alert.type.value}</td></tr>"
            f"<tr><td><strong>Entity:</strong></td><td>{html.escape(alert.entity_id or 'N/A')}</td></tr>"
            f"<tr><td><strong>Time:</strong></td><td>{alert.occurred_at.isoformat()}</td></tr>"
            "</table>"
            f"<h3>Message</h3><p>{html.escape(alert.message)}</p>"
            f"{details}{self._footer()}"
        )
        message = self._build_message(subject, _alert_text(alert), body)
        return await self._send(message, kind="alert")

    async def send_digest(self, digest: DailyDigest) -> bool:
        warnings = "".join(
            f"<li>{w.type.value}: {html.escape(w.message)}</li>" for w in digest.warnings
        ) or "<li>No warnings</li>"
        stats = digest.stats
        body = (
            "<h2>Daily Watchdog Report</h2>"
            f"<p><strong>Status:</strong> {digest.status}</p>"
            f"<h3>Warnings</h3><ul>{warnings}</ul>"
            "<h3>Health Summary</h3><ul>"
            f"<li>Sources checked: {stats.sources_checked}</li>"
            f"<li>Items discovered: {stats.items_discovered}</li>"
            f"<li>Rules created: {stats.rules_created}</li>"
            f"<li>Avg confidence: {stats.avg_confidence * 100:.1f}%</li>"
            f"</ul>{self._footer()}"
        )
        message = self._build_message(digest.subject, digest.to_text(), body)
        return await self._send(message, kind="digest")
