# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Metric name constants following Prometheus naming conventions.

All metric names use the `stream_gate_` prefix.

Naming Conventions:
    - Counter metrics end with `_total`
    - Histogram metrics for time end with `_seconds`
    - Gauges use present-tense descriptive names

Label Best Practices:
    To prevent label cardinality explosion, use only:
    - `tier` - Subscription tier (categorical: free, pro)
    - `reason` - Denial reason (enum: daily, hourly, concurrency)
    - `outcome` - Validation outcome (enum: claimed, token_invalid, ...)
    - `status` - Transfer status (enum: completed, cancelled, failed)
    - `operation` - Store operation name

    NEVER use:
    - `owner_id` - Unique per user (unbounded!)
    - `token_id` - Unique per token (unbounded!)
"""


# =============================================================================
# Global Prefix
# =============================================================================

METRIC_PREFIX = "stream_gate"
"""Prefix for all Prometheus metrics in this library."""


# =============================================================================
# Issuance Metrics (tokens/issuer.py, service.py)
# =============================================================================

TOKENS_ISSUED_TOTAL = f"{METRIC_PREFIX}_tokens_issued_total"
"""Total tokens issued."""

ISSUANCE_DENIALS_TOTAL = f"{METRIC_PREFIX}_issuance_denials_total"
"""Total issuance requests denied by a quota or concurrency guard."""

DENIAL_CACHE_HITS_TOTAL = f"{METRIC_PREFIX}_denial_cache_hits_total"
"""Total issuance requests rejected from the in-process denial cache."""


# =============================================================================
# Validation Metrics (tokens/validator.py)
# =============================================================================

TOKEN_VALIDATIONS_TOTAL = f"{METRIC_PREFIX}_token_validations_total"
"""Total secrets presented for redemption, by outcome."""


# =============================================================================
# Transfer Metrics (transfer/engine.py, transfer/tracker.py)
# =============================================================================

TRANSFERS_TOTAL = f"{METRIC_PREFIX}_transfers_total"
"""Total transfers finished, by status."""

TRANSFER_BYTES_TOTAL = f"{METRIC_PREFIX}_transfer_bytes_total"
"""Total bytes relayed to sinks."""

TRANSFER_DURATION_SECONDS = f"{METRIC_PREFIX}_transfer_duration_seconds"
"""Duration of transfers (histogram)."""

ACTIVE_TRANSFERS = f"{METRIC_PREFIX}_active_transfers"
"""Number of transfers currently in flight."""

TRANSFER_IDLE_CANCELLATIONS_TOTAL = (
    f"{METRIC_PREFIX}_transfer_idle_cancellations_total"
)
"""Total transfers cancelled by the idle sweep."""


# =============================================================================
# Store Metrics (stores/)
# =============================================================================

STORE_ERRORS_TOTAL = f"{METRIC_PREFIX}_store_errors_total"
"""Total token store failures surfaced to callers."""


# =============================================================================
# Histogram Buckets
# =============================================================================

TRANSFER_DURATION_BUCKETS: list[float] = [
    1.0,
    5.0,
    10.0,
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
    1200.0,
    1800.0,
]
"""Transfer duration buckets (in seconds, up to 30 minutes)."""


__all__ = [
    "ACTIVE_TRANSFERS",
    "DENIAL_CACHE_HITS_TOTAL",
    "ISSUANCE_DENIALS_TOTAL",
    "METRIC_PREFIX",
    "STORE_ERRORS_TOTAL",
    "TOKENS_ISSUED_TOTAL",
    "TOKEN_VALIDATIONS_TOTAL",
    "TRANSFERS_TOTAL",
    "TRANSFER_BYTES_TOTAL",
    "TRANSFER_DURATION_BUCKETS",
    "TRANSFER_DURATION_SECONDS",
    "TRANSFER_IDLE_CANCELLATIONS_TOTAL",
]
