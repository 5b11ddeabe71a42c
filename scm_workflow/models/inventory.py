"""
Inventory models read by the stock lookup during Material Requisition checks.

Models:
    - Warehouse:       storage location owned by a project
    - InventoryLevel:  on-hand and reserved quantity of one item in one warehouse
"""

from datetime import datetime, timezone

from scm_workflow.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class Warehouse(db.Model):
    __tablename__ = "warehouses"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    project_id = db.Column(db.Integer, nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "project_id": self.project_id,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Warehouse {self.id}: {self.code}>"


class InventoryLevel(db.Model):
    __tablename__ = "inventory_levels"

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, nullable=False)
    warehouse_id = db.Column(
        db.Integer, db.ForeignKey("warehouses.id", ondelete="CASCADE"), nullable=False,
    )
    qty_on_hand = db.Column(db.Float, nullable=False, default=0)
    qty_reserved = db.Column(db.Float, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("item_id", "warehouse_id", name="uq_inventory_item_warehouse"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "item_id": self.item_id,
            "warehouse_id": self.warehouse_id,
            "qty_on_hand": self.qty_on_hand,
            "qty_reserved": self.qty_reserved,
        }

    def __repr__(self):
        return f"<InventoryLevel item={self.item_id} wh={self.warehouse_id} {self.qty_on_hand}>"
