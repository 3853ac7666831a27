# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Metrics collector supporting both dict snapshots and Prometheus metrics.

This module provides the MetricsCollector class that serves as the single
source of truth for all metrics in stream-gate.

Features:
    1. Thread-safe counter/gauge/histogram operations
    2. Prometheus metric registration (default or caller-supplied registry)
    3. Dict snapshot for JSON export and tests
    4. Label cardinality protection (max 1000 unique combinations per metric)

Usage:
    >>> from stream_gate.observability.collector import get_metrics_collector
    >>> collector = get_metrics_collector()
    >>> collector.inc_counter('stream_gate_tokens_issued_total',
    ...                       labels={'tier': 'free'})
    >>> metrics = collector.get_metrics()
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, ClassVar

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from .constants import (
    ACTIVE_TRANSFERS,
    DENIAL_CACHE_HITS_TOTAL,
    ISSUANCE_DENIALS_TOTAL,
    STORE_ERRORS_TOTAL,
    TOKEN_VALIDATIONS_TOTAL,
    TOKENS_ISSUED_TOTAL,
    TRANSFER_BYTES_TOTAL,
    TRANSFER_DURATION_BUCKETS,
    TRANSFER_DURATION_SECONDS,
    TRANSFER_IDLE_CANCELLATIONS_TOTAL,
    TRANSFERS_TOTAL,
)

logger = logging.getLogger(__name__)


@dataclass
class MetricDefinition:
    """
    Definition for a metric that can be instantiated.

    This dataclass defines the schema for metrics, including their type,
    description, labels, and histogram buckets.
    """

    name: str
    metric_type: str  # 'counter', 'gauge', 'histogram'
    description: str
    label_names: tuple[str, ...] = ()
    buckets: list[float] | None = None


METRIC_DEFINITIONS: dict[str, MetricDefinition] = {
    TOKENS_ISSUED_TOTAL: MetricDefinition(
        TOKENS_ISSUED_TOTAL, "counter", "Total tokens issued", ("tier",)
    ),
    ISSUANCE_DENIALS_TOTAL: MetricDefinition(
        ISSUANCE_DENIALS_TOTAL,
        "counter",
        "Total issuance denials",
        ("tier", "reason"),
    ),
    DENIAL_CACHE_HITS_TOTAL: MetricDefinition(
        DENIAL_CACHE_HITS_TOTAL, "counter", "Total denial cache hits", ()
    ),
    TOKEN_VALIDATIONS_TOTAL: MetricDefinition(
        TOKEN_VALIDATIONS_TOTAL,
        "counter",
        "Total token validations",
        ("outcome",),
    ),
    TRANSFERS_TOTAL: MetricDefinition(
        TRANSFERS_TOTAL, "counter", "Total transfers finished", ("status",)
    ),
    TRANSFER_BYTES_TOTAL: MetricDefinition(
        TRANSFER_BYTES_TOTAL, "counter", "Total bytes relayed", ()
    ),
    TRANSFER_DURATION_SECONDS: MetricDefinition(
        TRANSFER_DURATION_SECONDS,
        "histogram",
        "Duration of transfers",
        ("status",),
        buckets=TRANSFER_DURATION_BUCKETS,
    ),
    ACTIVE_TRANSFERS: MetricDefinition(
        ACTIVE_TRANSFERS, "gauge", "Transfers currently in flight", ()
    ),
    TRANSFER_IDLE_CANCELLATIONS_TOTAL: MetricDefinition(
        TRANSFER_IDLE_CANCELLATIONS_TOTAL,
        "counter",
        "Total transfers cancelled for inactivity",
        (),
    ),
    STORE_ERRORS_TOTAL: MetricDefinition(
        STORE_ERRORS_TOTAL, "counter", "Total token store errors", ("operation",)
    ),
}

_PROMETHEUS_TYPES: dict[str, Any] = {
    "counter": Counter,
    "gauge": Gauge,
    "histogram": Histogram,
}


class MetricsCollector:
    """
    Metrics collector backing both a dict snapshot and Prometheus.

    Thread Safety:
        All operations use RLock for thread-safe access.

    Cardinality Protection:
        To prevent unbounded memory growth, a maximum of MAX_LABEL_COMBINATIONS
        unique label combinations are tracked per metric.

    Example:
        >>> collector = MetricsCollector(registry=CollectorRegistry())
        >>> collector.inc_counter('stream_gate_transfers_total',
        ...                       labels={'status': 'completed'})
        >>> collector.get_metrics()["counters"]
    """

    MAX_LABEL_COMBINATIONS: ClassVar[int] = 1000

    def __init__(
        self,
        enable_prometheus: bool = True,
        registry: CollectorRegistry | None = None,
    ) -> None:
        """
        Initialize the metrics collector.

        Args:
            enable_prometheus: Whether to mirror metrics into Prometheus
            registry: Optional Prometheus CollectorRegistry (tests pass their own)
        """
        self._enable_prometheus = enable_prometheus
        self._registry = registry if registry is not None else REGISTRY

        self._counters: dict[str, dict[str, float]] = defaultdict(
            lambda: defaultdict(float)
        )
        self._gauges: dict[str, dict[str, float]] = defaultdict(
            lambda: defaultdict(float)
        )
        self._histograms: dict[str, dict[str, list[float]]] = defaultdict(
            lambda: defaultdict(list)
        )

        self._lock = threading.RLock()

        self._prom_metrics: dict[str, Any] = {}
        self._label_combinations: dict[str, set[str]] = defaultdict(set)

        logger.debug(
            f"MetricsCollector initialized "
            f"(prometheus={'enabled' if self._enable_prometheus else 'disabled'})"
        )

    def _labels_to_key(self, labels: dict[str, str] | None) -> str:
        """Convert labels dict to a stable string key."""
        if not labels:
            return ""
        return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))

    def _admit(self, name: str, labels: dict[str, str] | None) -> str | None:
        """
        Resolve the series key for a label set under the cardinality cap.

        Returns:
            The series key, or None when a new series would exceed the cap
        """
        label_key = self._labels_to_key(labels)
        if label_key in self._label_combinations[name]:
            return label_key
        if len(self._label_combinations[name]) >= self.MAX_LABEL_COMBINATIONS:
            logger.warning(
                f"Cardinality limit ({self.MAX_LABEL_COMBINATIONS}) reached "
                f"for metric {name}. Dropping label combination: {label_key}"
            )
            return None
        self._label_combinations[name].add(label_key)
        return label_key

    def _prom_metric(self, name: str, metric_type: str) -> Any | None:
        """Return the Prometheus metric backing a predefined name, creating it once."""
        if not self._enable_prometheus:
            return None

        with self._lock:
            if name in self._prom_metrics:
                return self._prom_metrics[name]

            defn = METRIC_DEFINITIONS.get(name)
            if defn is None or defn.metric_type != metric_type:
                logger.debug(f"No {metric_type} definition for {name}")
                return None

            kwargs: dict[str, Any] = {"registry": self._registry}
            if metric_type == "histogram":
                kwargs["buckets"] = defn.buckets or TRANSFER_DURATION_BUCKETS
            try:
                metric = _PROMETHEUS_TYPES[metric_type](
                    name, defn.description, list(defn.label_names), **kwargs
                )
            except ValueError as e:
                # Name already taken in this registry
                logger.warning(f"Could not register {metric_type} {name}: {e}")
                metric = None

            self._prom_metrics[name] = metric
            return metric

    def _mirror(
        self,
        name: str,
        metric_type: str,
        method: str,
        value: float,
        labels: dict[str, str] | None,
    ) -> None:
        metric = self._prom_metric(name, metric_type)
        if metric is None:
            return
        try:
            target = metric.labels(**labels) if labels else metric
            getattr(target, method)(value)
        except ValueError as e:
            logger.debug(f"Prometheus {method} on {name} rejected: {e}")

    # === Counter Operations ===

    def inc_counter(
        self,
        name: str,
        value: float = 1,
        labels: dict[str, str] | None = None,
    ) -> None:
        """
        Increment a counter metric.

        Raises:
            ValueError: If value is negative
        """
        if value < 0:
            raise ValueError("Counter increment must be non-negative")

        with self._lock:
            label_key = self._admit(name, labels)
            if label_key is None:
                return
            self._counters[name][label_key] += value

        self._mirror(name, "counter", "inc", value, labels)

    # === Gauge Operations ===

    def inc_gauge(
        self,
        name: str,
        value: float = 1.0,
        labels: dict[str, str] | None = None,
    ) -> None:
        with self._lock:
            label_key = self._admit(name, labels)
            if label_key is None:
                return
            self._gauges[name][label_key] += value

        self._mirror(name, "gauge", "inc", value, labels)

    def dec_gauge(
        self,
        name: str,
        value: float = 1.0,
        labels: dict[str, str] | None = None,
    ) -> None:
        self.inc_gauge(name, -value, labels)

    # === Histogram Operations ===

    def observe_histogram(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Record an observation; the dict snapshot keeps the latest 5000 per series."""
        with self._lock:
            label_key = self._admit(name, labels)
            if label_key is None:
                return
            observations = self._histograms[name][label_key]
            observations.append(value)
            if len(observations) > 10000:
                del observations[:-5000]

        self._mirror(name, "histogram", "observe", value, labels)

    # === Snapshot Operations ===

    def get_metrics(self) -> dict[str, Any]:
        """
        Get a snapshot of all metrics.

        Returns a dict suitable for JSON serialization with structure:
        {
            "counters": {"metric_name": {"label_key": value, ...}, ...},
            "gauges": {"metric_name": {"label_key": value, ...}, ...},
            "histograms": {"metric_name": {"label_key": {...}, ...}, ...}
        }
        """
        with self._lock:
            counters = {
                name: dict(label_values)
                for name, label_values in self._counters.items()
            }
            gauges = {
                name: dict(label_values) for name, label_values in self._gauges.items()
            }

            histograms: dict[str, dict[str, dict[str, Any]]] = {}
            for name, label_values in self._histograms.items():
                histograms[name] = {}
                for label_key, observations in label_values.items():
                    if observations:
                        histograms[name][label_key] = {
                            "count": len(observations),
                            "sum": sum(observations),
                            "avg": sum(observations) / len(observations),
                            "min": min(observations),
                            "max": max(observations),
                        }

        return {
            "counters": counters,
            "gauges": gauges,
            "histograms": histograms,
        }

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Return the current dict value of one counter series."""
        with self._lock:
            return self._counters.get(name, {}).get(self._labels_to_key(labels), 0)

    def reset(self) -> None:
        """Reset all metrics to zero."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._label_combinations.clear()

        logger.debug("Metrics collector reset")

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    @property
    def prometheus_enabled(self) -> bool:
        """Check if Prometheus metrics are enabled."""
        return self._enable_prometheus


# =============================================================================
# Singleton Pattern
# =============================================================================

_global_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector(enable_prometheus: bool = True) -> MetricsCollector:
    """
    Get or create the global metrics collector singleton.

    Args:
        enable_prometheus: Whether to enable Prometheus metrics
            (only used on first call)
    """
    global _global_collector

    if _global_collector is None:
        with _collector_lock:
            if _global_collector is None:
                _global_collector = MetricsCollector(
                    enable_prometheus=enable_prometheus
                )

    return _global_collector


def reset_metrics_collector() -> None:
    """
    Reset the global metrics collector singleton (mainly for testing).
    """
    global _global_collector
    with _collector_lock:
        if _global_collector:
            _global_collector.reset()
        _global_collector = None


__all__ = [
    "METRIC_DEFINITIONS",
    "MetricDefinition",
    "MetricsCollector",
    "get_metrics_collector",
    "reset_metrics_collector",
]
