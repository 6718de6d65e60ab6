"""
Domain package for SIPOMA Store.

Exports the record models, query and change-event values, and the result
contracts shared by the client and the table accessors. Keep this package
focused on data definitions and validation concerns.
"""

from sipoma_store.domain.models import (
    Alert,
    ChangeEvent,
    ChangeKind,
    DeliveryPlan,
    FactoryLog,
    OrderBy,
    PackingPlantStock,
    Product,
    Project,
    QueryOptions,
    RecordId,
    RemoteRecord,
    Session,
    Task,
    User,
    UserProfile,
)
from sipoma_store.domain.results import BulkResult, ItemError, Result

__all__ = [
    # Records
    "RecordId",
    "RemoteRecord",
    "Project",
    "Task",
    "FactoryLog",
    "DeliveryPlan",
    "PackingPlantStock",
    "Product",
    "Alert",
    "UserProfile",
    # Queries and events
    "OrderBy",
    "QueryOptions",
    "ChangeKind",
    "ChangeEvent",
    # Auth
    "User",
    "Session",
    # Results
    "Result",
    "BulkResult",
    "ItemError",
]
