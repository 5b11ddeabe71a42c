"""
Stock lookup collaborator for the Material Requisition stock check.

``StockLookup`` is the narrow interface the orchestrator depends on;
``DatabaseStockLookup`` reads Warehouse / InventoryLevel rows.  Tests or an
external WMS adapter can pass any object with the same three methods.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import select

from scm_workflow.models import db
from scm_workflow.models.inventory import InventoryLevel, Warehouse


@dataclass(frozen=True)
class StockLevel:
    on_hand: float = 0.0
    reserved: float = 0.0

    @property
    def available(self) -> float:
        # reservations beyond on-hand never make availability negative
        return max(self.on_hand - self.reserved, 0.0)


class StockLookup(Protocol):
    def get_stock_level(self, item_id: int, warehouse_id: int) -> StockLevel: ...

    def project_warehouses(self, project_id: int) -> list[int]: ...

    def other_project_warehouses(self, project_id: int) -> dict[int, list[int]]: ...


class DatabaseStockLookup:
    """Default lookup over the local inventory tables."""

    def get_stock_level(self, item_id: int, warehouse_id: int) -> StockLevel:
        row = db.session.execute(
            select(InventoryLevel).where(
                InventoryLevel.item_id == item_id,
                InventoryLevel.warehouse_id == warehouse_id,
            )
        ).scalar_one_or_none()
        if row is None:
            return StockLevel()
        return StockLevel(on_hand=row.qty_on_hand or 0.0, reserved=row.qty_reserved or 0.0)

    def project_warehouses(self, project_id: int) -> list[int]:
        stmt = (
            select(Warehouse.id)
            .where(Warehouse.project_id == project_id, Warehouse.is_active.is_(True))
            .order_by(Warehouse.id)
        )
        return list(db.session.execute(stmt).scalars().all())

    def other_project_warehouses(self, project_id: int) -> dict[int, list[int]]:
        """Active warehouses of every other project, grouped by project id."""
        stmt = (
            select(Warehouse.project_id, Warehouse.id)
            .where(
                Warehouse.project_id.is_not(None),
                Warehouse.project_id != project_id,
                Warehouse.is_active.is_(True),
            )
            .order_by(Warehouse.project_id, Warehouse.id)
        )
        grouped: dict[int, list[int]] = {}
        for other_project_id, warehouse_id in db.session.execute(stmt).all():
            grouped.setdefault(other_project_id, []).append(warehouse_id)
        return grouped
