"""
Utilities package for SIPOMA Store.

Exports shared helpers for logging and caller-side retries. Keep this package
lightweight and free of domain-specific logic.
"""

from sipoma_store.utils.logging import configure_logging, get_logger
from sipoma_store.utils.retry import retry_network

__all__ = [
    "configure_logging",
    "get_logger",
    "retry_network",
]
