"""
Canary Rollout Example — ship a new checkout version behind a metric gate.

Drives two rollouts of ``examples/checkout.yaml`` with in-memory adapters and
a simulated clock: a healthy candidate that is promoted, then a candidate
with a latency regression that is rolled back at its first analysis.

Run:
    pip install -e .
    python examples/canary_rollout.py
"""

import logging
from pathlib import Path

from rollout_sre import RolloutController, RolloutSpec
from rollout_sre.adapters import AnalysisWindow, MetricReading
from rollout_sre.adapters.memory import (
    InMemoryTrafficRouter,
    InMemoryWorkloadManager,
    ScriptedMetricsProvider,
)

logging.basicConfig(level=logging.INFO, format="%(levelname)-7s %(message)s")


class SimClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def simulated_metrics(version: str, metric: str, window: AnalysisWindow) -> MetricReading:
    """~10 requests/s; v3 regresses on latency."""
    samples = int(window.duration_seconds * 10)
    if metric == "error_rate":
        return MetricReading(0.004, samples)
    return MetricReading(950.0 if version == "checkout-v3" else 180.0, samples)


def run(spec: RolloutSpec, stable: str, candidate: str) -> None:
    clock = SimClock()
    router = InMemoryTrafficRouter({stable: 100})
    controller = RolloutController(
        InMemoryWorkloadManager(),
        router,
        ScriptedMetricsProvider(source=simulated_metrics),
        clock=clock,
    )
    rollout_id = controller.start_rollout(spec, stable, candidate)

    print(f"\n{stable} -> {candidate}")
    print("-" * 60)
    state = controller.get_rollout_state(rollout_id)
    while not state.is_terminal:
        controller.tick()
        state = controller.get_rollout_state(rollout_id)
        clock.now += 30

    print(f"Result:  {state.phase.value}")
    print(f"Traffic: {' -> '.join(str(w.get(candidate, 0)) for w in router.history)} (% on {candidate})")
    for record in state.analysis_history:
        print(f"  step {record.step_index + 1} attempt {record.attempt}: {record.verdict.value}")
    if state.abort_reason:
        print(f"Reason:  {state.abort_reason}")
    controller.stop()


if __name__ == "__main__":
    spec = RolloutSpec.from_yaml(Path(__file__).with_name("checkout.yaml"))
    print("Canary Rollout Example")
    print("=" * 60)
    print(f"Plan: {spec.weight_sequence}")
    run(spec, "checkout-v1", "checkout-v2")
    run(spec, "checkout-v2", "checkout-v3")
