"""
Job Order domain models.

Models:
    - JobOrder:   transport / equipment / rental request priced and approved by amount
    - JoPayment:  invoice or payment recorded against a completed Job Order

Lifecycle states:
    draft → pending_approval → [quoted →] approved → assigned → in_progress
    in_progress ⇄ on_hold → completed → [closure_pending → closure_approved →] invoiced
    rejected → draft (reopen); cancelled from every state before completion
"""

from datetime import datetime, timezone
from enum import Enum

from scm_workflow.models import db


class JobOrderStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    QUOTED = "quoted"
    APPROVED = "approved"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CLOSURE_PENDING = "closure_pending"
    CLOSURE_APPROVED = "closure_approved"
    INVOICED = "invoiced"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


_S = JobOrderStatus

JO_TRANSITIONS = {
    _S.DRAFT:            [_S.PENDING_APPROVAL, _S.CANCELLED],
    _S.PENDING_APPROVAL: [_S.QUOTED, _S.APPROVED, _S.REJECTED, _S.CANCELLED],
    _S.QUOTED:           [_S.APPROVED, _S.REJECTED, _S.CANCELLED],
    _S.APPROVED:         [_S.ASSIGNED, _S.CANCELLED],
    _S.ASSIGNED:         [_S.IN_PROGRESS, _S.CANCELLED],
    _S.IN_PROGRESS:      [_S.ON_HOLD, _S.COMPLETED, _S.CANCELLED],
    _S.ON_HOLD:          [_S.IN_PROGRESS, _S.CANCELLED],
    _S.COMPLETED:        [_S.INVOICED, _S.CLOSURE_PENDING],
    _S.CLOSURE_PENDING:  [_S.CLOSURE_APPROVED],
    _S.CLOSURE_APPROVED: [_S.INVOICED],
    _S.INVOICED:         [],
    _S.REJECTED:         [_S.DRAFT, _S.CANCELLED],
    _S.CANCELLED:        [],
}

JO_TYPES = {
    "transport", "equipment", "rental_monthly", "rental_daily",
    "scrap", "generator_rental", "generator_maintenance",
}

# pending → approved → paid; add_payment(paid=True) records a settled line directly
PAYMENT_STATUS_FLOW = {
    "pending":  {"approved"},
    "approved": {"paid"},
    "paid":     set(),
}


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(dt):
    return dt.isoformat() if dt else None


class JobOrder(db.Model):
    """
    A priced service request.  total_amount drives approval escalation and
    may be revised by an approver's quote.
    """

    __tablename__ = "job_orders"

    id = db.Column(db.Integer, primary_key=True)
    jo_number = db.Column(db.String(30), unique=True, nullable=False)
    jo_type = db.Column(db.String(30), nullable=False, default="transport")
    status = db.Column(db.String(30), nullable=False, default=JobOrderStatus.DRAFT.value)
    description = db.Column(db.Text, default="")

    project_id = db.Column(db.Integer, nullable=True, index=True)
    requested_by_id = db.Column(db.Integer, nullable=True)
    supplier_id = db.Column(db.Integer, nullable=True)

    total_amount = db.Column(db.Float, nullable=True)
    insurance_required = db.Column(db.Boolean, nullable=False, default=False)
    coa_approval_required = db.Column(db.Boolean, nullable=False, default=False)

    # Routing snapshot taken at submit
    approval_level = db.Column(db.Integer, nullable=True)
    approver_role = db.Column(db.String(50), nullable=True)

    # Quote (pending_approval → quoted)
    quote_amount = db.Column(db.Float, nullable=True)
    quoted_by_id = db.Column(db.Integer, nullable=True)
    quoted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    hold_reason = db.Column(db.String(255), nullable=True)
    completion_date = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by_id = db.Column(db.Integer, nullable=True)
    closure_approved_by_id = db.Column(db.Integer, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    payments = db.relationship(
        "JoPayment", backref="job_order", lazy="select",
        cascade="all, delete-orphan", order_by="JoPayment.id",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self, include_payments=False):
        d = {
            "id": self.id,
            "jo_number": self.jo_number,
            "jo_type": self.jo_type,
            "status": self.status,
            "description": self.description,
            "project_id": self.project_id,
            "requested_by_id": self.requested_by_id,
            "supplier_id": self.supplier_id,
            "total_amount": self.total_amount,
            "insurance_required": self.insurance_required,
            "coa_approval_required": self.coa_approval_required,
            "approval_level": self.approval_level,
            "approver_role": self.approver_role,
            "quote_amount": self.quote_amount,
            "submitted_at": _iso(self.submitted_at),
            "approved_at": _iso(self.approved_at),
            "start_date": _iso(self.start_date),
            "hold_reason": self.hold_reason,
            "completion_date": _iso(self.completion_date),
            "completed_by_id": self.completed_by_id,
            "created_at": _iso(self.created_at),
        }
        if include_payments:
            d["payments"] = [p.to_dict() for p in self.payments]
        return d

    def __repr__(self):
        return f"<JobOrder {self.id}: {self.jo_number} [{self.status}]>"


class JoPayment(db.Model):
    """Invoice / payment line for a Job Order."""

    __tablename__ = "jo_payments"

    id = db.Column(db.Integer, primary_key=True)
    job_order_id = db.Column(
        db.Integer, db.ForeignKey("job_orders.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    invoice_number = db.Column(db.String(50), nullable=True)
    amount = db.Column(db.Float, nullable=False)
    payment_status = db.Column(db.String(20), nullable=False, default="pending",
                               comment="pending | approved | paid")
    recorded_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "job_order_id": self.job_order_id,
            "invoice_number": self.invoice_number,
            "amount": self.amount,
            "payment_status": self.payment_status,
            "recorded_at": _iso(self.recorded_at),
            "approved_at": _iso(self.approved_at),
            "paid_at": _iso(self.paid_at),
        }

    def __repr__(self):
        return f"<JoPayment {self.id}: JO={self.job_order_id} {self.amount}>"
