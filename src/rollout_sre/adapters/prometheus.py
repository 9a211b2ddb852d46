"""Metrics Provider backed by the Prometheus HTTP API.

Each metric name maps to a pair of PromQL templates: one for the value and
one for the number of requests behind it. Templates are formatted with
``version`` and ``window`` (a Prometheus range such as ``300s``).

Usage:
    provider = PrometheusMetricsProvider("http://prometheus:9090")
    reading = provider.query("checkout-v2", "error_rate", window)
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, Optional

from rollout_sre.adapters import AnalysisWindow, MetricReading
from rollout_sre.errors import ProviderUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricQuery:
    """PromQL for one metric: its value and its sample count."""

    value: str
    samples: str


_REQUESTS = 'sum(increase(http_requests_total{{version="{version}"}}[{window}]))'

DEFAULT_QUERIES: Dict[str, MetricQuery] = {
    "error_rate": MetricQuery(
        value=(
            'sum(rate(http_requests_total{{version="{version}",code=~"5.."}}[{window}]))'
            ' / sum(rate(http_requests_total{{version="{version}"}}[{window}]))'
        ),
        samples=_REQUESTS,
    ),
    "latency_p99_ms": MetricQuery(
        value=(
            "1000 * histogram_quantile(0.99, sum by (le) ("
            'rate(http_request_duration_seconds_bucket{{version="{version}"}}[{window}])))'
        ),
        samples=_REQUESTS,
    ),
}


class PrometheusMetricsProvider:
    """Runs instant queries evaluated at the end of the analysis window."""

    def __init__(
        self,
        base_url: str,
        queries: Optional[Dict[str, MetricQuery]] = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.queries = dict(DEFAULT_QUERIES)
        if queries:
            self.queries.update(queries)
        self.timeout = timeout

    def query(self, version: str, metric: str, window: AnalysisWindow) -> MetricReading:
        template = self.queries.get(metric)
        if template is None:
            raise ProviderUnavailableError(f"No PromQL configured for metric '{metric}'", metric=metric)

        range_ = f"{max(1, int(window.duration_seconds))}s"
        value = self._scalar(template.value.format(version=version, window=range_), window.end, metric)
        samples = self._scalar(
            template.samples.format(version=version, window=range_), window.end, metric
        )
        if value is None or samples is None:
            # No series yet: treat as no data rather than a healthy zero.
            return MetricReading(value=0.0, sample_count=0)
        return MetricReading(value=value, sample_count=int(samples))

    def _scalar(self, promql: str, at: float, metric: str) -> Optional[float]:
        payload = self._get("/api/v1/query", {"query": promql, "time": at}, metric)
        if payload.get("status") != "success":
            raise ProviderUnavailableError(
                f"Prometheus query failed: {payload.get('error', 'unknown error')}", metric=metric
            )
        result = payload.get("data", {}).get("result", [])
        if not result:
            return None
        try:
            value = float(result[0]["value"][1])
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ProviderUnavailableError(
                f"Unexpected Prometheus response for {metric}", metric=metric
            ) from exc
        if value != value:  # NaN, e.g. 0/0
            return None
        return value

    def _get(self, path: str, params: Dict[str, Any], metric: str) -> Dict[str, Any]:
        url = f"{self.base_url}{path}?{urllib.parse.urlencode(params)}"
        req = urllib.request.Request(url, headers={"Accept": "application/json"})
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            raise ProviderUnavailableError(
                f"Prometheus returned HTTP {exc.code}", metric=metric
            ) from exc
        except (urllib.error.URLError, OSError, ValueError) as exc:
            raise ProviderUnavailableError(f"Prometheus unreachable: {exc}", metric=metric) from exc
