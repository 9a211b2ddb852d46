"""
rollout-sre CLI — inspect rollout specs before submitting them.

Usage:
    rollout-sre validate checkout.yaml
    rollout-sre plan checkout.yaml
    rollout-sre plan checkout.yaml --json
    rollout-sre version
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from rollout_sre import __version__
from rollout_sre.delivery.spec import RolloutSpec
from rollout_sre.errors import InvalidSpecError

logger = logging.getLogger(__name__)


def _load(path: str) -> Optional[RolloutSpec]:
    logger.debug("Loading rollout spec from %s", path)
    try:
        return RolloutSpec.from_yaml(path)
    except FileNotFoundError:
        print(f"error: {path}: no such file", file=sys.stderr)
    except InvalidSpecError as exc:
        print(f"error: {path} is not a valid rollout spec", file=sys.stderr)
        for err in exc.errors:
            print(f"  - {err}", file=sys.stderr)
    return None


def _plan(spec: RolloutSpec) -> Dict[str, Any]:
    steps = []
    for index, step in enumerate(spec.effective_steps):
        steps.append({
            "index": index,
            "name": step.name,
            "weight": step.weight,
            "pause_seconds": step.pause_duration_seconds,
            "analysis": step.required_analysis,
        })
    return {
        "name": spec.name,
        "strategy": spec.strategy.value,
        "promotion_mode": spec.promotion_mode.value,
        "rollback_policy": spec.rollback_policy.value,
        "weights": spec.weight_sequence,
        "steps": steps,
        "checks": [c.model_dump(mode="json") for c in spec.analysis.checks()],
    }


def cli(args: Optional[List[str]] = None) -> int:
    """Main CLI entry point. Returns exit code."""
    parser = argparse.ArgumentParser(
        prog="rollout-sre",
        description="Automated canary and blue/green delivery",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command")

    validate_parser = subparsers.add_parser("validate", help="Validate a rollout spec")
    validate_parser.add_argument("spec", help="Path to a rollout spec YAML file")

    plan_parser = subparsers.add_parser("plan", help="Show the traffic steps a spec will take")
    plan_parser.add_argument("spec", help="Path to a rollout spec YAML file")
    plan_parser.add_argument("--json", action="store_true", help="Print the plan as JSON")

    subparsers.add_parser("version", help="Show version")

    parsed = parser.parse_args(args)
    logging.basicConfig(
        level=getattr(logging, parsed.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if parsed.command == "version":
        print(f"rollout-sre {__version__}")
        return 0

    if parsed.command == "validate":
        spec = _load(parsed.spec)
        if spec is None:
            return 1
        print(f"{parsed.spec}: ok ({spec.strategy.value}, {len(spec.effective_steps)} step(s))")
        return 0

    if parsed.command == "plan":
        spec = _load(parsed.spec)
        if spec is None:
            return 1
        plan = _plan(spec)
        if parsed.json:
            print(json.dumps(plan, indent=2))
            return 0
        print(f"{plan['name']} ({plan['strategy']}, {plan['promotion_mode']})")
        for step in plan["steps"]:
            gate = "analysis" if step["analysis"] else "no analysis"
            label = f" {step['name']}" if step["name"] else ""
            print(
                f"  step {step['index'] + 1}{label}: weight {step['weight']}%, "
                f"pause {step['pause_seconds']:.0f}s, {gate}"
            )
        print("weights: " + " -> ".join(str(w) for w in plan["weights"]))
        return 0

    parser.print_help()
    return 1


def main() -> None:
    sys.exit(cli())


if __name__ == "__main__":
    main()
