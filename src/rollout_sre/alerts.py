"""
Operator alerting for rollouts.

Sends alerts when a rollout is rolled back, held for an operator, halted by
a fatal error, or promoted. Supports Slack incoming webhooks, generic JSON
webhooks, and in-process callbacks.

No external dependencies — uses urllib for HTTP calls.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class AlertChannel(Enum):
    """Supported alert channel types."""

    SLACK = "slack"
    GENERIC_WEBHOOK = "generic_webhook"
    CALLBACK = "callback"  # In-process callback


class AlertSeverity(Enum):
    """Alert severity levels, lowest first."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


_SEVERITY_ORDER = [AlertSeverity.INFO, AlertSeverity.WARNING, AlertSeverity.CRITICAL]


@dataclass
class Alert:
    """An alert about a rollout."""

    title: str
    message: str
    severity: AlertSeverity = AlertSeverity.WARNING
    source: str = "rollout-sre"
    rollout_id: str = ""
    service: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "message": self.message,
            "severity": self.severity.value,
            "source": self.source,
            "rollout_id": self.rollout_id,
            "service": self.service,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }


@dataclass
class ChannelConfig:
    """Configuration for an alert channel."""

    channel_type: AlertChannel
    name: str
    url: str = ""
    callback: Optional[Callable[[Alert], None]] = None  # For CALLBACK type
    min_severity: AlertSeverity = AlertSeverity.WARNING
    enabled: bool = True


@dataclass
class DeliveryResult:
    """Result of attempting to deliver an alert."""

    channel_name: str
    success: bool
    status_code: int = 0
    error: str = ""
    timestamp: float = field(default_factory=time.time)


def format_slack(alert: Alert) -> Dict[str, Any]:
    """Format alert as a Slack incoming webhook payload."""
    fields = [{"type": "mrkdwn", "text": f"*Severity:* {alert.severity.value}"}]
    if alert.service:
        fields.append({"type": "mrkdwn", "text": f"*Service:* {alert.service}"})
    if alert.rollout_id:
        fields.append({"type": "mrkdwn", "text": f"*Rollout:* {alert.rollout_id}"})

    return {
        "text": f"{alert.title}: {alert.message}",
        "blocks": [
            {"type": "header", "text": {"type": "plain_text", "text": alert.title}},
            {"type": "section", "text": {"type": "mrkdwn", "text": alert.message}},
            {"type": "section", "fields": fields},
        ],
    }


def format_generic(alert: Alert) -> Dict[str, Any]:
    """Format alert as a generic JSON webhook payload."""
    return alert.to_dict()


class AlertManager:
    """
    Manages alert channels and dispatches alerts.

    Thread-safe: the controller sends from its worker threads.

    Usage:
        manager = AlertManager()
        manager.add_channel(ChannelConfig(
            channel_type=AlertChannel.SLACK,
            name="deploys",
            url="https://hooks.slack.com/services/...",
        ))
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._channels: Dict[str, ChannelConfig] = {}
        self._history: List[DeliveryResult] = []
        self._formatters = {
            AlertChannel.SLACK: format_slack,
            AlertChannel.GENERIC_WEBHOOK: format_generic,
        }

    def add_channel(self, config: ChannelConfig) -> None:
        with self._lock:
            self._channels[config.name] = config

    def remove_channel(self, name: str) -> None:
        with self._lock:
            self._channels.pop(name, None)

    def list_channels(self) -> List[str]:
        with self._lock:
            return list(self._channels)

    def send(self, alert: Alert) -> List[DeliveryResult]:
        """Send *alert* to every enabled channel whose severity floor it meets."""
        with self._lock:
            channels = list(self._channels.values())

        results: List[DeliveryResult] = []
        for config in channels:
            if not config.enabled:
                continue
            if _SEVERITY_ORDER.index(alert.severity) < _SEVERITY_ORDER.index(config.min_severity):
                continue
            result = self._deliver(config, alert)
            if not result.success:
                logger.warning(
                    "Alert delivery to %s failed: %s", config.name, result.error or result.status_code
                )
            results.append(result)

        with self._lock:
            self._history.extend(results)
        return results

    def _deliver(self, config: ChannelConfig, alert: Alert) -> DeliveryResult:
        """Deliver alert to a single channel. Delivery problems never propagate."""
        if config.channel_type == AlertChannel.CALLBACK:
            try:
                if config.callback:
                    config.callback(alert)
            except Exception as e:
                return DeliveryResult(channel_name=config.name, success=False, error=str(e))
            return DeliveryResult(channel_name=config.name, success=True)

        payload = self._formatters.get(config.channel_type, format_generic)(alert)
        return self._http_post(config.name, config.url, payload)

    def _http_post(self, channel_name: str, url: str, payload: Dict[str, Any]) -> DeliveryResult:
        """Send HTTP POST. Isolated for testability."""
        if not url:
            return DeliveryResult(channel_name=channel_name, success=False, error="No URL configured")

        data = json.dumps(payload).encode("utf-8")
        req = urllib.request.Request(
            url,
            data=data,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=10) as resp:
                return DeliveryResult(channel_name=channel_name, success=True, status_code=resp.status)
        except urllib.error.HTTPError as e:
            return DeliveryResult(
                channel_name=channel_name, success=False, status_code=e.code, error=str(e)
            )
        except (urllib.error.URLError, OSError) as e:
            return DeliveryResult(channel_name=channel_name, success=False, error=str(e))

    @property
    def history(self) -> List[DeliveryResult]:
        with self._lock:
            return list(self._history)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "channels": len(self._channels),
                "total_sent": len(self._history),
                "successful": sum(1 for r in self._history if r.success),
                "failed": sum(1 for r in self._history if not r.success),
            }
