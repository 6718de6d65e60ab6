"""
Domain models for SIPOMA Store.

Defines the value types that cross the store boundary: record shapes used as
the validation boundary for rows coming off the network, query options, change
events, and the authenticated session. Record models mirror the dashboard's
collections; they keep unknown columns so a schema change on the backend does
not break reads.
"""
from __future__ import annotations

import time
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, Field, field_validator

RecordId = Union[int, str]


class RemoteRecord(BaseModel):
    """
    A row of any collection. Only the identifier is required.
    """

    id: RecordId = Field(..., description="Collection-unique identifier.")

    model_config = {
        "extra": "allow",
        "populate_by_name": True,
    }


class Project(RemoteRecord):
    title: str
    description: Optional[str] = None
    status: str = "planning"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    progress: float = 0.0
    health_score: Optional[float] = None
    owner_id: Optional[str] = None
    team_members: List[str] = Field(default_factory=list)
    budget: Optional[float] = None
    actual_cost: Optional[float] = None
    tags: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Task(RemoteRecord):
    project_id: RecordId
    title: str
    description: Optional[str] = None
    status: str = "todo"
    priority: str = "medium"
    assignee_id: Optional[str] = None
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    progress: float = 0.0
    dependencies: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FactoryLog(RemoteRecord):
    """Hourly finish-mill reading."""

    mill_id: str
    timestamp: datetime
    shift: Optional[str] = None
    operator_id: Optional[str] = None
    production_rate: float = 0.0
    energy_consumption: float = 0.0
    parameters: Dict[str, float] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class DeliveryPlan(RemoteRecord):
    vessel_name: str
    cargo_type: Optional[str] = None
    planned_quantity: float = 0.0
    actual_quantity: Optional[float] = None
    loading_rate: Optional[float] = None
    berth_allocation: Optional[str] = None
    priority_level: Optional[str] = None
    status: str = "planned"
    eta: Optional[datetime] = None
    etd: Optional[datetime] = None
    loading_start: Optional[datetime] = None
    loading_end: Optional[datetime] = None


class PackingPlantStock(RemoteRecord):
    plant_id: RecordId
    product_id: RecordId
    tanggal: date
    stok_awal: Optional[float] = None
    stok_akhir: Optional[float] = None


class Product(RemoteRecord):
    product_code: str
    product_name: str
    unit: Optional[str] = None


class Alert(RemoteRecord):
    # ``message`` is a real column here; an alert row is not an error payload.
    type: str
    severity: str
    title: str
    message: str
    source: Optional[str] = None
    timestamp: Optional[datetime] = None
    acknowledged: bool = False
    resolved: bool = False


class UserProfile(RemoteRecord):
    email: str
    full_name: Optional[str] = None
    role: Optional[str] = None
    department: Optional[str] = None
    is_active: bool = True
    avatar_url: Optional[str] = None


class OrderBy(BaseModel):
    column: str
    ascending: bool = True

    model_config = {"frozen": True}


class QueryOptions(BaseModel):
    """
    How ``find_all`` selects, filters, orders and pages a collection.

    ``filter`` is a conjunction of equality predicates. ``offset`` without
    ``limit`` pages by the configured default page size.
    """

    select: Optional[str] = None
    filter: Dict[str, Any] = Field(default_factory=dict)
    order: Optional[OrderBy] = None
    limit: Optional[int] = Field(None, ge=0)
    offset: Optional[int] = Field(None, ge=0)

    model_config = {"frozen": True}

    @field_validator("select", mode="before")
    @classmethod
    def _join_columns(cls, value: Any) -> Any:
        if isinstance(value, Sequence) and not isinstance(value, str):
            return ",".join(str(column) for column in value)
        return value


class ChangeKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    """
    One committed mutation delivered over a realtime channel.

    For deletes ``record`` is the removed row (as much of it as the backend
    replicates, at least its identifier).
    """

    kind: ChangeKind
    collection: str
    record: Dict[str, Any] = Field(default_factory=dict)
    old_record: Dict[str, Any] = Field(default_factory=dict)
    schema_name: str = "public"
    commit_timestamp: Optional[datetime] = None

    model_config = {"frozen": True}


class User(BaseModel):
    """Authenticated principal as reported by the auth endpoint."""

    id: str
    email: Optional[str] = None
    role: Optional[str] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    model_config = {"extra": "ignore"}


class Session(BaseModel):
    """Token bundle for the signed-in principal."""

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_at: Optional[int] = Field(None, description="Epoch seconds.")
    user: User

    model_config = {"extra": "ignore"}

    @classmethod
    def from_token_response(cls, payload: Dict[str, Any]) -> "Session":
        data = dict(payload)
        if data.get("expires_at") is None and data.get("expires_in") is not None:
            data["expires_at"] = int(time.time()) + int(data["expires_in"])
        return cls.model_validate(data)

    def is_expired(self, leeway_seconds: int = 10, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return self.expires_at - leeway_seconds <= current


class AuthResponse(BaseModel):
    """
    Outcome of a sign-up: the new principal, plus a session when the backend
    signed it in right away. ``session`` is None while e-mail confirmation is
    pending.
    """

    user: User
    session: Optional[Session] = None


__all__ = [
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
    "OrderBy",
    "QueryOptions",
    "ChangeKind",
    "ChangeEvent",
    "User",
    "Session",
    "AuthResponse",
]
