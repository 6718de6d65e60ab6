"""
Tables package for SIPOMA Store.

Re-exports the typed accessor and the dashboard's named collections so
downstream code can import from `sipoma_store.tables` directly.
"""

from sipoma_store.tables.accessor import ChangeStream, TableAccessor
from sipoma_store.tables.collections import COLLECTIONS, accessor_for

__all__ = [
    "TableAccessor",
    "ChangeStream",
    "COLLECTIONS",
    "accessor_for",
]
