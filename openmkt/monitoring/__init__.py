"""
Open Market - Monitoring Module

- Structured logging
- In-process metrics
"""

from .logging import configure_logging, get_logger, log_duration
from .metrics import (
    Counter,
    Histogram,
    MetricsRegistry,
    aggregation_duration_seconds,
    aggregation_failures_total,
    delegated_tokens_total,
    dpop_nonce_retries_total,
    get_metrics_registry,
    identity_resolutions_total,
    metrics,
    token_refreshes_total,
)

__all__ = [
    # Registry and types
    "MetricsRegistry",
    "Counter",
    "Histogram",
    "metrics",
    "get_metrics_registry",
    # Pre-defined metrics
    "identity_resolutions_total",
    "aggregation_failures_total",
    "aggregation_duration_seconds",
    "dpop_nonce_retries_total",
    "token_refreshes_total",
    "delegated_tokens_total",
    # Logging
    "configure_logging",
    "get_logger",
    "log_duration",
]
