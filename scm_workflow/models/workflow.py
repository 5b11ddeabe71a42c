"""
Workflow engine tables shared by every document type.

Models:
    - SlaRecord:                 deadline clock per (document, kind) with stop-clock support
    - ApprovalWorkflowRule:      amount-range → approver role / SLA hours (configuration)
    - ApprovalRecord:            append-only log of sequential approval decisions
    - ParallelApprovalGroup:     multi-party sign-off resolved by "all" or "any" policy
    - ParallelApprovalResponse:  one approver's answer inside a group

Polymorphic reference pattern:
    document_type + document_id identify the workflow document (job_order,
    material_requisition, scrap_item, shipment, goods_receipt).  No real FK is
    declared so one table can serve every document family.
"""

from datetime import datetime, timezone

from scm_workflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

SLA_KINDS = frozenset({"response", "stock_verification", "buyer_pickup", "delivery"})

APPROVAL_MODES = frozenset({"all", "any"})

GROUP_STATUSES = frozenset({"pending", "approved", "rejected"})

RESPONSE_DECISIONS = frozenset({"approved", "rejected"})

# Job Order approval ladder: [min_amount, max_amount) → role / SLA hours
JO_APPROVAL_LADDER = [
    {"level": 1, "label": "Level 1 - Logistics Coordinator", "approver_role": "logistics_coordinator",
     "min_amount": 0, "max_amount": 5_000, "sla_hours": 4},
    {"level": 2, "label": "Level 2 - Logistics Manager", "approver_role": "manager",
     "min_amount": 5_000, "max_amount": 20_000, "sla_hours": 8},
    {"level": 3, "label": "Level 3 - Operations Director", "approver_role": "manager",
     "min_amount": 20_000, "max_amount": 100_000, "sla_hours": 24},
    {"level": 4, "label": "Level 4 - CEO", "approver_role": "admin",
     "min_amount": 100_000, "max_amount": None, "sla_hours": 48},
]

_DEFAULT_LADDERS = {
    "job_order": JO_APPROVAL_LADDER,
}


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(dt):
    return dt.isoformat() if dt else None


# ═════════════════════════════════════════════════════════════════════════════
# 1. SlaRecord
# ═════════════════════════════════════════════════════════════════════════════


class SlaRecord(db.Model):
    """
    Deadline clock for one document.

    Business rules:
    - due_date is wall-clock time.  Resuming a pause advances it by the
      paused span, so repeated pause/resume cycles add up.
    - met is written once (at completion) and never overwritten.
    - A cancelled or rejected document closes its clocks with met = null
      and a closed_reason; such a record can be restarted.
    - stop_clock_* fields stay after resume as the trace of the last pause.
    """

    __tablename__ = "sla_records"

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(40), nullable=False)
    document_id = db.Column(db.Integer, nullable=False)
    kind = db.Column(
        db.String(30), nullable=False, default="response",
        comment="response | stock_verification | buyer_pickup | delivery",
    )

    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    response_hours = db.Column(db.Float, nullable=True)

    # Stop-clock
    paused = db.Column(db.Boolean, nullable=False, default=False)
    stop_clock_start = db.Column(db.DateTime(timezone=True), nullable=True)
    stop_clock_end = db.Column(db.DateTime(timezone=True), nullable=True)
    stop_clock_reason = db.Column(db.String(255), nullable=True)
    total_paused_seconds = db.Column(
        db.Float, nullable=False, default=0.0,
        comment="Sum of all completed pause spans",
    )

    met = db.Column(db.Boolean, nullable=True, comment="Set once at completion; null when no deadline")
    evaluated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_reason = db.Column(
        db.String(30), nullable=True,
        comment="cancelled | rejected; set when the clock stops without a verdict",
    )

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        db.UniqueConstraint("document_type", "document_id", "kind", name="uq_sla_document_kind"),
        db.Index("ix_sla_due", "due_date", "met"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "document_type": self.document_type,
            "document_id": self.document_id,
            "kind": self.kind,
            "start_date": _iso(self.start_date),
            "due_date": _iso(self.due_date),
            "response_hours": self.response_hours,
            "paused": self.paused,
            "stop_clock_start": _iso(self.stop_clock_start),
            "stop_clock_end": _iso(self.stop_clock_end),
            "stop_clock_reason": self.stop_clock_reason,
            "total_paused_seconds": self.total_paused_seconds,
            "met": self.met,
            "evaluated_at": _iso(self.evaluated_at),
            "closed_reason": self.closed_reason,
        }

    def __repr__(self):
        return f"<SlaRecord {self.id}: {self.document_type}/{self.document_id} {self.kind}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. ApprovalWorkflowRule
# ═════════════════════════════════════════════════════════════════════════════


class ApprovalWorkflowRule(db.Model):
    """
    Amount-escalated routing rule.  Ranges are [min_amount, max_amount);
    max_amount NULL means unbounded.  Rules for one document type must
    partition the amount axis (checked by approval_service.validate_rules).
    """

    __tablename__ = "approval_workflow_rules"

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(40), nullable=False, index=True)
    level = db.Column(db.Integer, nullable=False, default=1)
    label = db.Column(db.String(100), nullable=True)
    min_amount = db.Column(db.Float, nullable=False, default=0)
    max_amount = db.Column(db.Float, nullable=True, comment="NULL = unbounded")
    approver_role = db.Column(db.String(50), nullable=False)
    sla_hours = db.Column(db.Float, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def contains(self, amount):
        """True if ``amount`` falls inside [min_amount, max_amount)."""
        if amount < self.min_amount:
            return False
        return self.max_amount is None or amount < self.max_amount

    def to_dict(self):
        return {
            "id": self.id,
            "document_type": self.document_type,
            "level": self.level,
            "label": self.label,
            "min_amount": self.min_amount,
            "max_amount": self.max_amount,
            "approver_role": self.approver_role,
            "sla_hours": self.sla_hours,
        }

    def __repr__(self):
        upper = self.max_amount if self.max_amount is not None else "inf"
        return f"<ApprovalWorkflowRule {self.document_type} L{self.level} [{self.min_amount}, {upper})>"


def seed_default_approval_rules(document_type="job_order"):
    """
    Install the standard approval ladder for a document type.

    Skips if rules already exist for that type.  Returns the created rules.
    """
    existing = ApprovalWorkflowRule.query.filter_by(document_type=document_type).count()
    if existing:
        return []

    ladder = _DEFAULT_LADDERS.get(document_type)
    if ladder is None:
        return []

    items = [ApprovalWorkflowRule(document_type=document_type, **row) for row in ladder]
    db.session.add_all(items)
    db.session.flush()
    return items


# ═════════════════════════════════════════════════════════════════════════════
# 3. ApprovalRecord
# ═════════════════════════════════════════════════════════════════════════════


class ApprovalRecord(db.Model):
    """
    Immutable sequential approval decision.

    Business rules:
    - Records are never updated or deleted (append-only log).
    - within_sla captures whether the decision landed before the running
      response deadline at decision time.
    """

    __tablename__ = "approval_records"

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(40), nullable=False)
    document_id = db.Column(db.Integer, nullable=False)
    approver_id = db.Column(db.Integer, nullable=False)
    approved = db.Column(db.Boolean, nullable=False)
    level = db.Column(db.Integer, nullable=False, default=1)
    quote_amount = db.Column(db.Float, nullable=True)
    comments = db.Column(db.Text, nullable=True)
    within_sla = db.Column(db.Boolean, nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        db.Index("ix_approval_document", "document_type", "document_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "document_type": self.document_type,
            "document_id": self.document_id,
            "approver_id": self.approver_id,
            "approved": self.approved,
            "level": self.level,
            "quote_amount": self.quote_amount,
            "comments": self.comments,
            "within_sla": self.within_sla,
            "decided_at": _iso(self.decided_at),
        }

    def __repr__(self):
        verdict = "approved" if self.approved else "rejected"
        return f"<ApprovalRecord #{self.id} {self.document_type}/{self.document_id} L{self.level} {verdict}>"


# ═════════════════════════════════════════════════════════════════════════════
# 4. ParallelApprovalGroup / ParallelApprovalResponse
# ═════════════════════════════════════════════════════════════════════════════


class ParallelApprovalGroup(db.Model):
    """
    Independent approvers gating one transition.

    Lifecycle: pending → approved | rejected (terminal; later responses are stale).
    """

    __tablename__ = "parallel_approval_groups"

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(40), nullable=False)
    document_id = db.Column(db.Integer, nullable=False)
    approval_level = db.Column(db.Integer, nullable=False, default=1)
    mode = db.Column(db.String(10), nullable=False, comment="all | any")
    status = db.Column(db.String(20), nullable=False, default="pending")
    expected_approvers = db.Column(db.JSON, nullable=False, default=list)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    # bumped by every response so concurrent responders always collide on version
    response_count = db.Column(db.Integer, nullable=False, default=0)

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    responses = db.relationship(
        "ParallelApprovalResponse", backref="group", lazy="select",
        cascade="all, delete-orphan", order_by="ParallelApprovalResponse.id",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        db.Index("ix_parallel_group_document", "document_type", "document_id"),
    )

    def to_dict(self, include_responses=True):
        d = {
            "id": self.id,
            "document_type": self.document_type,
            "document_id": self.document_id,
            "approval_level": self.approval_level,
            "mode": self.mode,
            "status": self.status,
            "expected_approvers": list(self.expected_approvers or []),
            "response_count": self.response_count,
            "resolved_at": _iso(self.resolved_at),
            "created_at": _iso(self.created_at),
        }
        if include_responses:
            d["responses"] = [r.to_dict() for r in self.responses]
        return d

    def __repr__(self):
        return f"<ParallelApprovalGroup {self.id}: {self.document_type}/{self.document_id} {self.mode} {self.status}>"


class ParallelApprovalResponse(db.Model):
    """One approver's decision inside a parallel group."""

    __tablename__ = "parallel_approval_responses"

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(
        db.Integer, db.ForeignKey("parallel_approval_groups.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    approver_id = db.Column(db.Integer, nullable=False)
    decision = db.Column(db.String(20), nullable=False, comment="approved | rejected")
    comments = db.Column(db.Text, nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint("group_id", "approver_id", name="uq_parallel_response_approver"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "group_id": self.group_id,
            "approver_id": self.approver_id,
            "decision": self.decision,
            "comments": self.comments,
            "decided_at": _iso(self.decided_at),
        }

    def __repr__(self):
        return f"<ParallelApprovalResponse group={self.group_id} approver={self.approver_id} {self.decision}>"
