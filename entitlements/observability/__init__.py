"""
Observability module - Logging and Metrics.
"""

from entitlements.observability.logging import get_logger, log_context, setup_logging
from entitlements.observability.metrics import metrics

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
]
