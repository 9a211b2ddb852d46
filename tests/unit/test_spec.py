"""Tests for rollout spec loading and validation."""

import pytest
from pydantic import ValidationError

from rollout_sre.delivery.spec import (
    AnalysisConfig,
    ComparisonOp,
    MetricCheck,
    PromotionMode,
    RollbackPolicy,
    RolloutSpec,
    Strategy,
    load_spec,
)
from rollout_sre.errors import ErrorKind, InvalidSpecError


def _canary(*weights: int, **extra) -> dict:
    data = {
        "name": "checkout",
        "replicas": 10,
        "steps": [{"weight": w, "pause_duration_seconds": 30} for w in weights],
    }
    data.update(extra)
    return data


class TestLoadSpec:
    def test_defaults(self) -> None:
        spec = load_spec(_canary(20, 50, 100))
        assert spec.strategy == Strategy.CANARY
        assert spec.promotion_mode == PromotionMode.AUTOMATIC
        assert spec.rollback_policy == RollbackPolicy.AUTO_ON_FAILURE
        assert spec.analysis.max_inconclusive_retries == 5
        assert spec.analysis.min_sample_count == 100
        assert [s.weight for s in spec.steps] == [20, 50, 100]

    def test_passes_spec_through(self) -> None:
        spec = load_spec(_canary(50))
        assert load_spec(spec) is spec

    def test_spec_is_immutable(self) -> None:
        spec = load_spec(_canary(50))
        with pytest.raises(ValidationError):
            spec.replicas = 3

    def test_equal_weights_allowed(self) -> None:
        spec = load_spec(_canary(25, 25, 100))
        assert spec.weight_sequence == [25, 25, 100]


class TestRejectedSpecs:
    def test_decreasing_weights(self) -> None:
        with pytest.raises(InvalidSpecError, match="lower than the previous step"):
            load_spec(_canary(50, 20))

    def test_weight_above_100(self) -> None:
        with pytest.raises(InvalidSpecError) as exc_info:
            load_spec(_canary(20, 150))
        assert exc_info.value.kind == ErrorKind.INVALID_SPEC
        assert any("steps.1.weight" in e for e in exc_info.value.errors)

    def test_negative_weight(self) -> None:
        with pytest.raises(InvalidSpecError):
            load_spec(_canary(-5, 50))

    def test_negative_pause(self) -> None:
        data = _canary(50)
        data["steps"][0]["pause_duration_seconds"] = -1
        with pytest.raises(InvalidSpecError, match="pause_duration_seconds"):
            load_spec(data)

    def test_canary_without_steps(self) -> None:
        with pytest.raises(InvalidSpecError, match="at least one step"):
            load_spec({"name": "checkout"})

    def test_blue_green_with_extra_steps(self) -> None:
        with pytest.raises(InvalidSpecError, match="at most one cutover step"):
            load_spec(_canary(50, 100, strategy="blue_green"))

    def test_blue_green_partial_weight(self) -> None:
        with pytest.raises(InvalidSpecError, match="must use weight 100"):
            load_spec(_canary(50, strategy="blue_green"))

    def test_min_ready_above_replicas(self) -> None:
        with pytest.raises(InvalidSpecError, match="min_ready_replicas"):
            load_spec(_canary(50, replicas=2, min_ready_replicas=3))

    def test_analysis_without_checks(self) -> None:
        data = _canary(50, analysis={"max_error_rate": None, "max_p99_latency_ms": None})
        with pytest.raises(InvalidSpecError, match="no metric checks"):
            load_spec(data)

    def test_no_checks_ok_without_required_analysis(self) -> None:
        data = _canary(50, analysis={"max_error_rate": None, "max_p99_latency_ms": None})
        data["steps"][0]["required_analysis"] = False
        spec = load_spec(data)
        assert spec.analysis.checks() == []

    def test_missing_name(self) -> None:
        with pytest.raises(InvalidSpecError) as exc_info:
            load_spec({"steps": [{"weight": 50}]})
        assert "name" in str(exc_info.value)

    def test_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            load_spec(_canary(50, 10))


class TestBlueGreen:
    def test_implicit_cutover_step(self) -> None:
        spec = load_spec({"name": "checkout", "strategy": "blue_green", "replicas": 4})
        steps = spec.effective_steps
        assert len(steps) == 1
        assert steps[0].weight == 100
        assert steps[0].pause_duration_seconds == 300
        assert steps[0].required_analysis is True
        assert spec.weight_sequence == [100]
        assert spec.is_blue_green

    def test_explicit_bake_time(self) -> None:
        spec = load_spec({
            "name": "checkout",
            "strategy": "blue_green",
            "steps": [{"weight": 100, "pause_duration_seconds": 600}],
        })
        assert spec.effective_steps[0].pause_duration_seconds == 600


class TestWeightSequence:
    def test_appends_full_cutover(self) -> None:
        assert load_spec(_canary(10, 30)).weight_sequence == [10, 30, 100]

    def test_ends_at_100(self) -> None:
        assert load_spec(_canary(20, 50, 100)).weight_sequence == [20, 50, 100]


class TestAnalysisConfig:
    def test_builtin_checks(self) -> None:
        checks = AnalysisConfig().checks()
        assert [c.metric for c in checks] == ["error_rate", "latency_p99_ms"]
        assert all(c.comparison == ComparisonOp.LTE for c in checks)

    def test_custom_checks_follow_builtins(self) -> None:
        config = AnalysisConfig(
            max_p99_latency_ms=None,
            metrics=[MetricCheck(metric="success_rate", threshold=0.99, comparison="gte")],
        )
        assert [c.metric for c in config.checks()] == ["error_rate", "success_rate"]

    def test_min_samples_override(self) -> None:
        config = AnalysisConfig(min_sample_count=100)
        assert config.min_samples_for(MetricCheck(metric="x", threshold=1)) == 100
        assert config.min_samples_for(MetricCheck(metric="x", threshold=1, min_samples=5)) == 5


class TestMetricCheck:
    @pytest.mark.parametrize(
        ("comparison", "value", "expected"),
        [
            ("lte", 0.05, True),
            ("lte", 0.06, False),
            ("lt", 0.05, False),
            ("gte", 0.05, True),
            ("gt", 0.05, False),
            ("gt", 0.07, True),
        ],
    )
    def test_evaluate(self, comparison: str, value: float, expected: bool) -> None:
        check = MetricCheck(metric="m", threshold=0.05, comparison=comparison)
        assert check.evaluate(value) is expected


class TestYaml:
    def test_from_yaml(self, tmp_path) -> None:
        path = tmp_path / "checkout.yaml"
        path.write_text(
            "name: checkout\n"
            "replicas: 6\n"
            "promotion_mode: manual_gate\n"
            "steps:\n"
            "  - weight: 25\n"
            "    pause_duration_seconds: 60\n"
            "  - weight: 100\n"
            "analysis:\n"
            "  max_error_rate: 0.01\n"
        )
        spec = RolloutSpec.from_yaml(path)
        assert spec.replicas == 6
        assert spec.promotion_mode == PromotionMode.MANUAL_GATE
        assert spec.analysis.max_error_rate == 0.01
        assert spec.weight_sequence == [25, 100]

    def test_round_trip_keeps_disabled_checks(self, tmp_path) -> None:
        spec = load_spec(_canary(50, analysis={"max_p99_latency_ms": None}))
        path = tmp_path / "out.yaml"
        spec.to_yaml(path)
        assert RolloutSpec.from_yaml(path) == spec

    def test_unparseable_yaml(self, tmp_path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("name: [unclosed\n")
        with pytest.raises(InvalidSpecError, match="Cannot parse"):
            RolloutSpec.from_yaml(path)

    def test_not_a_mapping(self, tmp_path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(InvalidSpecError, match="mapping"):
            RolloutSpec.from_yaml(path)
