"""Observability helpers."""

from specmap.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_scan,
    record_token_usage,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_scan",
    "record_token_usage",
]
