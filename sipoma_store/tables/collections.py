"""
Named collections of the SIPOMA dashboard and the queries built on them.

Each factory returns a ``TableAccessor`` bound to the given client (or to the
process default when ``client`` is None). Aggregate reports run through the
backend's ``execute_sql`` procedure.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sipoma_store.domain.models import (
    Alert,
    DeliveryPlan,
    FactoryLog,
    OrderBy,
    PackingPlantStock,
    Product,
    Project,
    QueryOptions,
    RemoteRecord,
    Task,
    UserProfile,
)
from sipoma_store.domain.results import Result
from sipoma_store.errors import QueryError
from sipoma_store.infrastructure.client import RemoteClient, get_client
from sipoma_store.infrastructure.realtime import ChangeCallback, ChannelHandle
from sipoma_store.tables.accessor import TableAccessor

# Most recent rows scanned when picking the latest stock level per product.
STOCK_SCAN_LIMIT = 10_000

ACTIVE_DELIVERY_STATUSES = ("planned", "confirmed", "in_progress")

PORT_PERIODS = {
    "day": "1 day",
    "week": "7 days",
    "month": "30 days",
}


def projects(client: Optional[RemoteClient] = None) -> TableAccessor[Project]:
    return TableAccessor("projects", Project, client=client)


def tasks(client: Optional[RemoteClient] = None) -> TableAccessor[Task]:
    return TableAccessor("tasks", Task, client=client)


def factory_logs(client: Optional[RemoteClient] = None) -> TableAccessor[FactoryLog]:
    return TableAccessor("factory_logs", FactoryLog, client=client)


def finish_mill_logs(client: Optional[RemoteClient] = None) -> TableAccessor[FactoryLog]:
    return TableAccessor("finish_mill_hourly_logs", FactoryLog, client=client)


def delivery_plans(client: Optional[RemoteClient] = None) -> TableAccessor[DeliveryPlan]:
    return TableAccessor("delivery_plans", DeliveryPlan, client=client)


def packing_plant_stock(client: Optional[RemoteClient] = None) -> TableAccessor[PackingPlantStock]:
    return TableAccessor("packing_plant_stock", PackingPlantStock, client=client)


def products(client: Optional[RemoteClient] = None) -> TableAccessor[Product]:
    return TableAccessor("master_product", Product, client=client)


def users(client: Optional[RemoteClient] = None) -> TableAccessor[UserProfile]:
    return TableAccessor("users", UserProfile, client=client)


def alerts(client: Optional[RemoteClient] = None) -> TableAccessor[Alert]:
    return TableAccessor("alerts", Alert, client=client)


COLLECTIONS = {
    "projects": projects,
    "tasks": tasks,
    "factory_logs": factory_logs,
    "finish_mill_hourly_logs": finish_mill_logs,
    "delivery_plans": delivery_plans,
    "packing_plant_stock": packing_plant_stock,
    "master_product": products,
    "users": users,
    "alerts": alerts,
}


def accessor_for(name: str, client: Optional[RemoteClient] = None) -> TableAccessor[Any]:
    """Typed accessor for a known collection, or a generic one for any other name."""
    factory = COLLECTIONS.get(name)
    if factory is None:
        return TableAccessor(name, RemoteRecord, client=client)
    return factory(client)


async def get_active_projects(client: Optional[RemoteClient] = None) -> Result[List[Project]]:
    return await projects(client).find_all(
        QueryOptions(
            filter={"status": "active"},
            order=OrderBy(column="created_at", ascending=False),
        )
    )


async def current_stock_by_area(
    area_id: int,
    client: Optional[RemoteClient] = None,
) -> Result[List[Dict[str, Any]]]:
    """
    Latest closing stock (``stok_akhir``) per product for one packing plant.

    Every product of the master list appears once; products without stock rows
    report 0.
    """
    product_result = await products(client).find_all(
        QueryOptions(
            select="id,product_code,product_name,unit",
            order=OrderBy(column="product_name", ascending=True),
        )
    )
    if not product_result.ok:
        return Result.failure(product_result.error)

    stock_result = await packing_plant_stock(client).find_all(
        QueryOptions(
            select="product_id,stok_akhir,tanggal",
            filter={"plant_id": int(area_id)},
            order=OrderBy(column="tanggal", ascending=False),
            limit=STOCK_SCAN_LIMIT,
        )
    )
    if not stock_result.ok:
        return Result.failure(stock_result.error)

    latest_by_product: Dict[int, float] = {}
    for row in stock_result.data:
        product_id = int(row["product_id"])
        if product_id not in latest_by_product:
            latest_by_product[product_id] = float(row.get("stok_akhir") or 0)

    return Result.success(
        [
            {
                "product_id": product["id"],
                "product_code": product.get("product_code"),
                "product_name": product.get("product_name"),
                "unit": product.get("unit"),
                "stok": latest_by_product.get(int(product["id"]), 0),
            }
            for product in product_result.data
        ]
    )


async def get_factory_metrics(
    start: datetime,
    end: datetime,
    client: Optional[RemoteClient] = None,
) -> Result[Any]:
    """Daily production and energy totals between ``start`` and ``end``."""
    return await (client or get_client()).execute_query(
        """
        SELECT
          DATE(timestamp) AS date,
          AVG(production_rate) AS avg_production,
          SUM(energy_consumption) AS total_energy,
          COUNT(*) AS total_records
        FROM finish_mill_hourly_logs
        WHERE timestamp BETWEEN $1 AND $2
        GROUP BY DATE(timestamp)
        ORDER BY date DESC
        """,
        [start.isoformat(), end.isoformat()],
    )


async def get_port_performance_metrics(
    period: str = "day",
    client: Optional[RemoteClient] = None,
) -> Result[Any]:
    interval = PORT_PERIODS.get(period)
    if interval is None:
        return Result.failure(
            QueryError(message=f"Unknown period '{period}'. Available: {', '.join(PORT_PERIODS)}")
        )
    return await (client or get_client()).execute_query(
        """
        SELECT
          COUNT(*) AS total_deliveries,
          AVG(loading_rate) AS avg_loading_rate,
          SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END) AS completed_deliveries,
          AVG(EXTRACT(EPOCH FROM (loading_end - loading_start)) / 3600) AS avg_loading_hours
        FROM delivery_plans
        WHERE created_at >= NOW() - $1::interval
        """,
        [interval],
    )


async def get_packing_plant_summary(client: Optional[RemoteClient] = None) -> Result[Any]:
    return await (client or get_client()).execute_query(
        """
        SELECT
          p.plant_name,
          p.plant_code,
          s.current_stock,
          s.capacity,
          (s.current_stock / s.capacity * 100) AS utilization_percentage,
          s.days_of_stock
        FROM packing_plant_master p
        LEFT JOIN (
          SELECT DISTINCT ON (plant_id)
            plant_id, current_stock, capacity, days_of_stock
          FROM packing_plant_daily_stock
          ORDER BY plant_id, date DESC
        ) s ON p.id = s.plant_id
        WHERE p.is_active = true
        """
    )


async def get_alerts_summary(client: Optional[RemoteClient] = None) -> Result[Any]:
    """Unresolved alerts from the last 24 hours, counted by severity."""
    return await (client or get_client()).execute_query(
        """
        SELECT
          severity,
          COUNT(*) AS count,
          COUNT(CASE WHEN acknowledged = false THEN 1 END) AS unacknowledged
        FROM alerts
        WHERE created_at >= NOW() - INTERVAL '24 hours'
          AND resolved = false
        GROUP BY severity
        """
    )


async def subscribe_to_factory_data(
    callback: ChangeCallback,
    client: Optional[RemoteClient] = None,
) -> Result[ChannelHandle]:
    return await finish_mill_logs(client).subscribe(callback)


async def subscribe_to_alerts(
    callback: ChangeCallback,
    client: Optional[RemoteClient] = None,
) -> Result[ChannelHandle]:
    return await alerts(client).subscribe(callback, "resolved=eq.false")


async def subscribe_to_delivery_updates(
    callback: ChangeCallback,
    client: Optional[RemoteClient] = None,
) -> Result[ChannelHandle]:
    statuses = ",".join(ACTIVE_DELIVERY_STATUSES)
    return await delivery_plans(client).subscribe(callback, f"status=in.({statuses})")


__all__ = [
    "COLLECTIONS",
    "accessor_for",
    "projects",
    "tasks",
    "factory_logs",
    "finish_mill_logs",
    "delivery_plans",
    "packing_plant_stock",
    "products",
    "users",
    "alerts",
    "get_active_projects",
    "current_stock_by_area",
    "get_factory_metrics",
    "get_port_performance_metrics",
    "get_packing_plant_summary",
    "get_alerts_summary",
    "subscribe_to_factory_data",
    "subscribe_to_alerts",
    "subscribe_to_delivery_updates",
]
