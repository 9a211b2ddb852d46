"""
Tests for rollout alerting.

Covers: Alert, AlertManager, ChannelConfig, formatters, delivery.
Uses CALLBACK channels for zero-network testing.
"""

import pytest

from rollout_sre.alerts import (
    Alert,
    AlertChannel,
    AlertManager,
    AlertSeverity,
    ChannelConfig,
    DeliveryResult,
    format_generic,
    format_slack,
)


# =============================================================================
# Alert
# =============================================================================


class TestAlert:
    def test_basic(self):
        a = Alert(title="Rollout rolled back", message="checkout-v2 failed analysis")
        assert a.severity == AlertSeverity.WARNING
        assert a.source == "rollout-sre"

    def test_to_dict(self):
        a = Alert(
            title="Rollout halted",
            message="store corrupt",
            severity=AlertSeverity.CRITICAL,
            rollout_id="abc123",
        )
        d = a.to_dict()
        assert d["severity"] == "critical"
        assert d["rollout_id"] == "abc123"


# =============================================================================
# Formatters
# =============================================================================


class TestFormatters:
    def test_slack_format(self):
        a = Alert(
            title="Rollout rolled back",
            message="error_rate above threshold",
            service="checkout",
            rollout_id="abc123",
        )
        payload = format_slack(a)
        assert payload["text"].startswith("Rollout rolled back")
        assert payload["blocks"][0]["type"] == "header"
        fields = [f["text"] for f in payload["blocks"][2]["fields"]]
        assert "*Service:* checkout" in fields
        assert "*Rollout:* abc123" in fields

    def test_generic_format(self):
        a = Alert(title="Test", message="msg", metadata={"phase": "rolled_back"})
        payload = format_generic(a)
        assert payload["title"] == "Test"
        assert payload["metadata"] == {"phase": "rolled_back"}


# =============================================================================
# AlertManager
# =============================================================================


@pytest.fixture
def received():
    return []


@pytest.fixture
def manager(received):
    m = AlertManager()
    m.add_channel(ChannelConfig(
        channel_type=AlertChannel.CALLBACK,
        name="cb",
        callback=received.append,
    ))
    return m


class TestAlertManager:
    def test_callback_delivery(self, manager, received):
        results = manager.send(Alert(title="t", message="m"))
        assert len(received) == 1
        assert results[0].success

    def test_severity_filter(self, manager, received):
        manager.send(Alert(title="t", message="m", severity=AlertSeverity.INFO))
        assert received == []
        manager.send(Alert(title="t", message="m", severity=AlertSeverity.CRITICAL))
        assert len(received) == 1

    def test_disabled_channel(self, received):
        m = AlertManager()
        m.add_channel(ChannelConfig(
            channel_type=AlertChannel.CALLBACK, name="cb", callback=received.append, enabled=False
        ))
        assert m.send(Alert(title="t", message="m")) == []

    def test_callback_error_is_reported(self):
        def boom(alert):
            raise RuntimeError("sink down")

        m = AlertManager()
        m.add_channel(ChannelConfig(channel_type=AlertChannel.CALLBACK, name="bad", callback=boom))
        results = m.send(Alert(title="t", message="m"))
        assert results[0].success is False
        assert results[0].error == "sink down"

    def test_webhook_without_url(self):
        m = AlertManager()
        m.add_channel(ChannelConfig(channel_type=AlertChannel.GENERIC_WEBHOOK, name="hook"))
        results = m.send(Alert(title="t", message="m"))
        assert results[0].success is False
        assert "No URL" in results[0].error

    def test_webhook_payload(self, monkeypatch):
        sent = []

        def fake_post(self, channel_name, url, payload):
            sent.append((url, payload))
            return DeliveryResult(channel_name=channel_name, success=True, status_code=200)

        monkeypatch.setattr(AlertManager, "_http_post", fake_post)
        m = AlertManager()
        m.add_channel(ChannelConfig(
            channel_type=AlertChannel.SLACK, name="slack", url="https://hooks.example/x"
        ))
        m.send(Alert(title="Rollout succeeded", message="v2 is stable"))
        url, payload = sent[0]
        assert url == "https://hooks.example/x"
        assert "blocks" in payload

    def test_remove_and_list(self, manager):
        assert manager.list_channels() == ["cb"]
        manager.remove_channel("cb")
        assert manager.list_channels() == []

    def test_stats(self, manager):
        manager.send(Alert(title="t", message="m"))
        stats = manager.get_stats()
        assert stats["channels"] == 1
        assert stats["total_sent"] == 1
        assert stats["successful"] == 1
        assert len(manager.history) == 1
