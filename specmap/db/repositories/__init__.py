"""Repository package for database access."""

from .scan_runs import SqliteScanRunRepository

__all__ = [
    "SqliteScanRunRepository",
]
