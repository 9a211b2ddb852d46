"""Shared fixtures: a controllable clock and in-memory platform adapters."""

from __future__ import annotations

from typing import Any

import pytest

from rollout_sre.adapters.memory import (
    InMemoryTrafficRouter,
    InMemoryWorkloadManager,
    ScriptedMetricsProvider,
)
from rollout_sre.alerts import AlertChannel, AlertManager, ChannelConfig, AlertSeverity
from rollout_sre.config import ControllerConfig
from rollout_sre.delivery.controller import RolloutController
from rollout_sre.delivery.spec import RolloutSpec, load_spec
from rollout_sre.delivery.store import InMemoryRolloutStore


class CorruptibleStore(InMemoryRolloutStore):
    """In-memory store that can hold an undecodable record."""

    def put_raw(self, rollout_id: str, service: str, body: str) -> None:
        with self._lock:
            self._records[rollout_id] = (service, False, body)


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_spec(**overrides: Any) -> RolloutSpec:
    data: dict[str, Any] = {
        "name": "checkout",
        "replicas": 10,
        "steps": [
            {"weight": 20, "pause_duration_seconds": 30},
            {"weight": 50, "pause_duration_seconds": 30},
            {"weight": 100, "pause_duration_seconds": 30},
        ],
    }
    data.update(overrides)
    return load_spec(data)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def router() -> InMemoryTrafficRouter:
    return InMemoryTrafficRouter()


@pytest.fixture
def workload() -> InMemoryWorkloadManager:
    return InMemoryWorkloadManager()


@pytest.fixture
def provider() -> ScriptedMetricsProvider:
    return ScriptedMetricsProvider()


@pytest.fixture
def store() -> CorruptibleStore:
    return CorruptibleStore()


@pytest.fixture
def received_alerts() -> list:
    return []


@pytest.fixture
def alerts(received_alerts) -> AlertManager:
    manager = AlertManager()
    manager.add_channel(ChannelConfig(
        channel_type=AlertChannel.CALLBACK,
        name="test",
        callback=received_alerts.append,
        min_severity=AlertSeverity.INFO,
    ))
    return manager


@pytest.fixture
def controller(workload, router, provider, store, clock, alerts):
    ctl = RolloutController(
        workload,
        router,
        provider,
        store=store,
        config=ControllerConfig(apply_backoff_base_seconds=1.0, max_concurrency=2),
        alerts=alerts,
        clock=clock,
    )
    yield ctl
    ctl.stop()
