"""Rollout SRE — automated progressive delivery.

rollout-sre shifts live traffic from a stable version of a service to a
candidate version in controlled steps, checks the candidate's health at
each step, and either promotes it or rolls all traffic back.

Core concepts
-------------
* **Rollout spec** — a declarative plan: the strategy (canary or
  blue/green), the weight steps and their pauses, the analysis
  thresholds, and what to do on failure. See
  ``rollout_sre.delivery.spec``.

* **Analysis** — at each step the candidate's error rate and p99 latency
  are read from a Metrics Provider and judged pass, fail, or
  inconclusive. Too few samples is never a pass.

* **Controller** — a reconciliation loop that owns every rollout's state,
  drives the platform through a Workload Manager and a Traffic Router,
  and persists progress so a restart picks up where it left off.

Quick start::

    from rollout_sre import RolloutController, RolloutSpec
    from rollout_sre.adapters.memory import (
        InMemoryTrafficRouter, InMemoryWorkloadManager, ScriptedMetricsProvider,
    )

    spec = RolloutSpec.from_yaml("checkout.yaml")
    controller = RolloutController(
        InMemoryWorkloadManager(), InMemoryTrafficRouter(), ScriptedMetricsProvider()
    )
    rollout_id = controller.start_rollout(spec, "checkout-v1", "checkout-v2")
    controller.start()
"""

from rollout_sre.config import ControllerConfig
from rollout_sre.delivery.controller import RolloutController
from rollout_sre.delivery.spec import RolloutSpec, RolloutStep, load_spec
from rollout_sre.delivery.state import Phase, RolloutState
from rollout_sre.errors import (
    ApplyFailureError,
    InvalidSpecError,
    InvalidTransitionError,
    PersistenceError,
    ProviderUnavailableError,
    RolloutError,
    RolloutNotFoundError,
)

__version__ = "0.1.0"

__all__ = [
    "ApplyFailureError",
    "ControllerConfig",
    "InvalidSpecError",
    "InvalidTransitionError",
    "PersistenceError",
    "Phase",
    "ProviderUnavailableError",
    "RolloutController",
    "RolloutError",
    "RolloutNotFoundError",
    "RolloutSpec",
    "RolloutState",
    "RolloutStep",
    "load_spec",
]
