# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Observability and metrics for stream-gate.

Classes:
    MetricsCollector: Collector backing a dict snapshot and Prometheus.

Functions:
    get_metrics_collector: Get the global metrics collector singleton.
    reset_metrics_collector: Reset the global metrics collector singleton.
"""

from .collector import (
    METRIC_DEFINITIONS,
    MetricDefinition,
    MetricsCollector,
    get_metrics_collector,
    reset_metrics_collector,
)
from .constants import (
    ACTIVE_TRANSFERS,
    DENIAL_CACHE_HITS_TOTAL,
    ISSUANCE_DENIALS_TOTAL,
    METRIC_PREFIX,
    STORE_ERRORS_TOTAL,
    TOKEN_VALIDATIONS_TOTAL,
    TOKENS_ISSUED_TOTAL,
    TRANSFER_BYTES_TOTAL,
    TRANSFER_DURATION_BUCKETS,
    TRANSFER_DURATION_SECONDS,
    TRANSFER_IDLE_CANCELLATIONS_TOTAL,
    TRANSFERS_TOTAL,
)

__all__ = [
    "ACTIVE_TRANSFERS",
    "DENIAL_CACHE_HITS_TOTAL",
    "ISSUANCE_DENIALS_TOTAL",
    "METRIC_DEFINITIONS",
    "METRIC_PREFIX",
    "STORE_ERRORS_TOTAL",
    "TOKENS_ISSUED_TOTAL",
    "TOKEN_VALIDATIONS_TOTAL",
    "TRANSFERS_TOTAL",
    "TRANSFER_BYTES_TOTAL",
    "TRANSFER_DURATION_BUCKETS",
    "TRANSFER_DURATION_SECONDS",
    "TRANSFER_IDLE_CANCELLATIONS_TOTAL",
    "MetricDefinition",
    "MetricsCollector",
    "get_metrics_collector",
    "reset_metrics_collector",
]
