"""
Shipment and receiving domain models.

Models:
    - Shipment:      inbound purchase-order shipment tracked from PO to delivery
    - CustomsStage:  customs clearance milestone recorded against a shipment
    - GoodsReceipt:  receiving document (GRN) optionally linked to a shipment

Lifecycle states:
    Shipment:      draft → po_issued → in_production → ready_to_ship → in_transit
                   → at_port → customs_clearing → cleared → [in_delivery →] delivered
                   cancelled from every state before delivery
    GoodsReceipt:  draft → pending_qc → qc_approved → received → stored
                   pending_qc → rejected → draft
"""

from datetime import datetime, timezone
from enum import Enum

from scm_workflow.models import db


class ShipmentStatus(str, Enum):
    DRAFT = "draft"
    PO_ISSUED = "po_issued"
    IN_PRODUCTION = "in_production"
    READY_TO_SHIP = "ready_to_ship"
    IN_TRANSIT = "in_transit"
    AT_PORT = "at_port"
    CUSTOMS_CLEARING = "customs_clearing"
    CLEARED = "cleared"
    IN_DELIVERY = "in_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class GoodsReceiptStatus(str, Enum):
    DRAFT = "draft"
    PENDING_QC = "pending_qc"
    QC_APPROVED = "qc_approved"
    RECEIVED = "received"
    STORED = "stored"
    REJECTED = "rejected"


_S = ShipmentStatus

SHIPMENT_TRANSITIONS = {
    _S.DRAFT:            [_S.PO_ISSUED, _S.CANCELLED],
    _S.PO_ISSUED:        [_S.IN_PRODUCTION, _S.CANCELLED],
    _S.IN_PRODUCTION:    [_S.READY_TO_SHIP, _S.CANCELLED],
    _S.READY_TO_SHIP:    [_S.IN_TRANSIT, _S.CANCELLED],
    _S.IN_TRANSIT:       [_S.AT_PORT, _S.CANCELLED],
    _S.AT_PORT:          [_S.CUSTOMS_CLEARING, _S.CANCELLED],
    _S.CUSTOMS_CLEARING: [_S.CLEARED, _S.CANCELLED],
    _S.CLEARED:          [_S.IN_DELIVERY, _S.DELIVERED, _S.CANCELLED],
    _S.IN_DELIVERY:      [_S.DELIVERED, _S.CANCELLED],
    _S.DELIVERED:        [],
    _S.CANCELLED:        [],
}

_G = GoodsReceiptStatus

GRN_TRANSITIONS = {
    _G.DRAFT:       [_G.PENDING_QC],
    _G.PENDING_QC:  [_G.QC_APPROVED, _G.REJECTED],
    _G.QC_APPROVED: [_G.RECEIVED],
    _G.RECEIVED:    [_G.STORED],
    _G.STORED:      [],
    _G.REJECTED:    [_G.DRAFT],
}

# Customs milestone → shipment status it implies
CUSTOMS_STAGE_STATUS = {
    "docs_submitted":    _S.CUSTOMS_CLEARING,
    "declaration_filed": _S.CUSTOMS_CLEARING,
    "under_inspection":  _S.CUSTOMS_CLEARING,
    "awaiting_payment":  _S.CUSTOMS_CLEARING,
    "duties_paid":       _S.CUSTOMS_CLEARING,
    "ready_for_release": _S.CUSTOMS_CLEARING,
    "released":          _S.CLEARED,
}


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(dt):
    return dt.isoformat() if dt else None


class Shipment(db.Model):
    """Inbound shipment tracked through production, transport and customs."""

    __tablename__ = "shipments"

    id = db.Column(db.Integer, primary_key=True)
    shipment_number = db.Column(db.String(30), unique=True, nullable=False)
    status = db.Column(db.String(30), nullable=False, default=ShipmentStatus.DRAFT.value)
    po_number = db.Column(db.String(50), nullable=True)
    supplier_id = db.Column(db.Integer, nullable=True)
    project_id = db.Column(db.Integer, nullable=True, index=True)
    port_of_entry = db.Column(db.String(100), nullable=True)
    expected_arrival = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_reason = db.Column(db.Text, nullable=True)

    goods_receipt_id = db.Column(
        db.Integer, db.ForeignKey("goods_receipts.id", ondelete="SET NULL"), nullable=True,
    )

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    customs_stages = db.relationship(
        "CustomsStage", backref="shipment", lazy="select",
        cascade="all, delete-orphan", order_by="CustomsStage.id",
    )
    goods_receipt = db.relationship("GoodsReceipt", foreign_keys=[goods_receipt_id])

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self, include_customs=False):
        d = {
            "id": self.id,
            "shipment_number": self.shipment_number,
            "status": self.status,
            "po_number": self.po_number,
            "supplier_id": self.supplier_id,
            "project_id": self.project_id,
            "port_of_entry": self.port_of_entry,
            "expected_arrival": _iso(self.expected_arrival),
            "delivery_date": _iso(self.delivery_date),
            "goods_receipt_id": self.goods_receipt_id,
            "created_at": _iso(self.created_at),
        }
        if include_customs:
            d["customs_stages"] = [c.to_dict() for c in self.customs_stages]
        return d

    def __repr__(self):
        return f"<Shipment {self.id}: {self.shipment_number} [{self.status}]>"


class CustomsStage(db.Model):
    """Customs clearance milestone.  Details can be corrected; the row is never removed."""

    __tablename__ = "customs_stages"

    id = db.Column(db.Integer, primary_key=True)
    shipment_id = db.Column(
        db.Integer, db.ForeignKey("shipments.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    stage = db.Column(db.String(30), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    customs_ref = db.Column(db.String(60), nullable=True)
    duties_amount = db.Column(db.Float, nullable=True)
    issues = db.Column(db.Text, nullable=True)
    resolution = db.Column(db.Text, nullable=True)
    recorded_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    stage_end_date = db.Column(db.DateTime(timezone=True), nullable=True,
                               comment="Stamped when a resolution is recorded")

    def to_dict(self):
        return {
            "id": self.id,
            "shipment_id": self.shipment_id,
            "stage": self.stage,
            "notes": self.notes,
            "customs_ref": self.customs_ref,
            "duties_amount": self.duties_amount,
            "issues": self.issues,
            "resolution": self.resolution,
            "recorded_at": _iso(self.recorded_at),
            "stage_end_date": _iso(self.stage_end_date),
        }

    def __repr__(self):
        return f"<CustomsStage {self.id}: shipment={self.shipment_id} {self.stage}>"


class GoodsReceipt(db.Model):
    """Receiving document (GRN)."""

    __tablename__ = "goods_receipts"

    id = db.Column(db.Integer, primary_key=True)
    grn_number = db.Column(db.String(30), unique=True, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=GoodsReceiptStatus.DRAFT.value)
    warehouse_id = db.Column(db.Integer, nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self):
        return {
            "id": self.id,
            "grn_number": self.grn_number,
            "status": self.status,
            "warehouse_id": self.warehouse_id,
            "received_at": _iso(self.received_at),
        }

    def __repr__(self):
        return f"<GoodsReceipt {self.id}: {self.grn_number} [{self.status}]>"
