"""
Material Requisition (MR) domain models.

Models:
    - MaterialRequisition:  project request for materials, sourced from stock or purchase
    - MrLine:               one requested item with its stock-sourcing decision

Lifecycle states:
    draft → submitted → under_review → approved → checking_stock
    checking_stock → from_stock | needs_purchase | not_available_locally
    → [partially_fulfilled →] fulfilled
    submitted / under_review → rejected → draft (reopen)
"""

from datetime import datetime, timezone
from enum import Enum

from scm_workflow.models import db


class MaterialRequisitionStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    CHECKING_STOCK = "checking_stock"
    FROM_STOCK = "from_stock"
    NEEDS_PURCHASE = "needs_purchase"
    NOT_AVAILABLE_LOCALLY = "not_available_locally"
    PARTIALLY_FULFILLED = "partially_fulfilled"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


_S = MaterialRequisitionStatus

MR_TRANSITIONS = {
    _S.DRAFT:                 [_S.SUBMITTED, _S.CANCELLED],
    _S.SUBMITTED:             [_S.UNDER_REVIEW, _S.REJECTED, _S.CANCELLED],
    _S.UNDER_REVIEW:          [_S.APPROVED, _S.REJECTED, _S.CANCELLED],
    _S.APPROVED:              [_S.CHECKING_STOCK, _S.CANCELLED],
    _S.CHECKING_STOCK:        [_S.FROM_STOCK, _S.NEEDS_PURCHASE, _S.NOT_AVAILABLE_LOCALLY, _S.CANCELLED],
    _S.FROM_STOCK:            [_S.PARTIALLY_FULFILLED, _S.FULFILLED, _S.CANCELLED],
    _S.NEEDS_PURCHASE:        [_S.PARTIALLY_FULFILLED, _S.FULFILLED, _S.CANCELLED],
    _S.NOT_AVAILABLE_LOCALLY: [_S.PARTIALLY_FULFILLED, _S.FULFILLED, _S.CANCELLED],
    _S.PARTIALLY_FULFILLED:   [_S.FULFILLED, _S.CANCELLED],
    _S.FULFILLED:             [],
    _S.REJECTED:              [_S.DRAFT, _S.CANCELLED],
    _S.CANCELLED:             [],
}

# Per-line sourcing decision written by the stock check
LINE_SOURCES = {
    "pending",                  # not yet checked
    "from_stock",               # project warehouses cover the full quantity
    "both",                     # partial stock, remainder purchased
    "purchase_required",        # nothing in project warehouses
    "available_other_project",  # nothing locally, but another project holds stock
}


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(dt):
    return dt.isoformat() if dt else None


class MaterialRequisition(db.Model):
    """Project material request, checked against stock once approved."""

    __tablename__ = "material_requisitions"

    id = db.Column(db.Integer, primary_key=True)
    mr_number = db.Column(db.String(30), unique=True, nullable=False)
    status = db.Column(db.String(30), nullable=False, default=MaterialRequisitionStatus.DRAFT.value)
    project_id = db.Column(db.Integer, nullable=False, index=True)
    department = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.Text, default="")

    requested_by_id = db.Column(db.Integer, nullable=True)
    reviewed_by_id = db.Column(db.Integer, nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by_id = db.Column(db.Integer, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    stock_checked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    fulfillment_date = db.Column(db.DateTime(timezone=True), nullable=True)

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    lines = db.relationship(
        "MrLine", backref="requisition", lazy="select",
        cascade="all, delete-orphan", order_by="MrLine.id",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self, include_lines=True):
        d = {
            "id": self.id,
            "mr_number": self.mr_number,
            "status": self.status,
            "project_id": self.project_id,
            "department": self.department,
            "notes": self.notes,
            "requested_by_id": self.requested_by_id,
            "reviewed_by_id": self.reviewed_by_id,
            "approved_by_id": self.approved_by_id,
            "approved_at": _iso(self.approved_at),
            "stock_checked_at": _iso(self.stock_checked_at),
            "rejection_reason": self.rejection_reason,
            "fulfillment_date": _iso(self.fulfillment_date),
            "created_at": _iso(self.created_at),
        }
        if include_lines:
            d["lines"] = [ln.to_dict() for ln in self.lines]
        return d

    def __repr__(self):
        return f"<MaterialRequisition {self.id}: {self.mr_number} [{self.status}]>"


class MrLine(db.Model):
    """Requested item; qty_from_stock + qty_from_purchase == qty_requested after the check."""

    __tablename__ = "mr_lines"

    id = db.Column(db.Integer, primary_key=True)
    mr_id = db.Column(
        db.Integer, db.ForeignKey("material_requisitions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    item_id = db.Column(db.Integer, nullable=True, comment="NULL for free-text items; always purchased")
    description = db.Column(db.String(255), default="")
    qty_requested = db.Column(db.Float, nullable=False)
    qty_from_stock = db.Column(db.Float, nullable=False, default=0)
    qty_from_purchase = db.Column(db.Float, nullable=False, default=0)
    source = db.Column(db.String(30), nullable=False, default="pending")
    other_project_id = db.Column(db.Integer, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "mr_id": self.mr_id,
            "item_id": self.item_id,
            "description": self.description,
            "qty_requested": self.qty_requested,
            "qty_from_stock": self.qty_from_stock,
            "qty_from_purchase": self.qty_from_purchase,
            "source": self.source,
            "other_project_id": self.other_project_id,
        }

    def __repr__(self):
        return f"<MrLine {self.id}: item={self.item_id} {self.qty_requested} [{self.source}]>"
