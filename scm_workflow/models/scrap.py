"""
Scrap Item domain model.

Lifecycle states:
    identified → reported → approved → in_ssc → sold | disposed → closed
    reported → rejected → identified (reopen)

Approval from ``reported`` needs three independent sign-offs (site manager,
QC, storekeeper), kept as boolean gates on the row.
"""

from datetime import datetime, timezone
from enum import Enum

from scm_workflow.models import db


class ScrapItemStatus(str, Enum):
    IDENTIFIED = "identified"
    REPORTED = "reported"
    APPROVED = "approved"
    IN_SSC = "in_ssc"
    SOLD = "sold"
    DISPOSED = "disposed"
    CLOSED = "closed"
    REJECTED = "rejected"


_S = ScrapItemStatus

SCRAP_TRANSITIONS = {
    _S.IDENTIFIED: [_S.REPORTED],
    _S.REPORTED:   [_S.APPROVED, _S.REJECTED],
    _S.APPROVED:   [_S.IN_SSC],
    _S.IN_SSC:     [_S.SOLD, _S.DISPOSED],
    _S.SOLD:       [_S.CLOSED],
    _S.DISPOSED:   [_S.CLOSED],
    _S.CLOSED:     [],
    _S.REJECTED:   [_S.IDENTIFIED],
}

# Gate column name per signing role
SCRAP_GATES = {
    "site_manager": "site_manager_approval",
    "qc": "qc_approval",
    "storekeeper": "storekeeper_approval",
}


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(dt):
    return dt.isoformat() if dt else None


class ScrapItem(db.Model):
    """Material identified for disposal through the Scrap Sales Committee (SSC)."""

    __tablename__ = "scrap_items"

    id = db.Column(db.Integer, primary_key=True)
    scrap_number = db.Column(db.String(30), unique=True, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=ScrapItemStatus.IDENTIFIED.value)
    project_id = db.Column(db.Integer, nullable=True, index=True)
    warehouse_id = db.Column(db.Integer, nullable=True)
    material_type = db.Column(db.String(50), nullable=False, default="mixed")
    description = db.Column(db.Text, default="")
    qty = db.Column(db.Float, nullable=False, default=0)
    estimated_value = db.Column(db.Float, nullable=True)
    photos = db.Column(db.JSON, nullable=False, default=list, comment="List of stored photo URLs")

    # Independent sign-off gates (reported → approved)
    site_manager_approval = db.Column(db.Boolean, nullable=False, default=False)
    qc_approval = db.Column(db.Boolean, nullable=False, default=False)
    storekeeper_approval = db.Column(db.Boolean, nullable=False, default=False)

    reported_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ssc_date = db.Column(db.DateTime(timezone=True), nullable=True)
    buyer_name = db.Column(db.String(200), nullable=True)
    sold_at = db.Column(db.DateTime(timezone=True), nullable=True)
    buyer_pickup_deadline = db.Column(db.DateTime(timezone=True), nullable=True)
    disposed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    @property
    def all_gates_approved(self):
        return all(getattr(self, col) for col in SCRAP_GATES.values())

    def to_dict(self):
        return {
            "id": self.id,
            "scrap_number": self.scrap_number,
            "status": self.status,
            "project_id": self.project_id,
            "warehouse_id": self.warehouse_id,
            "material_type": self.material_type,
            "description": self.description,
            "qty": self.qty,
            "estimated_value": self.estimated_value,
            "photos": list(self.photos or []),
            "site_manager_approval": self.site_manager_approval,
            "qc_approval": self.qc_approval,
            "storekeeper_approval": self.storekeeper_approval,
            "buyer_name": self.buyer_name,
            "buyer_pickup_deadline": _iso(self.buyer_pickup_deadline),
            "closed_at": _iso(self.closed_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<ScrapItem {self.id}: {self.scrap_number} [{self.status}]>"
