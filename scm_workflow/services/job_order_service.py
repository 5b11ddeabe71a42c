"""
Job Order orchestrator.

Business rules:
    JO-V001  amount above JO_INSURANCE_THRESHOLD requires insurance_required
    JO-V002  only draft Job Orders can be edited
    JO-V003  payments only once work is completed
    JO-V004  start only from assigned (on_hold goes through resume)
    JO-V005  resume only from on_hold
    JO-V006  assign needs a supplier
    JO-V007  an inline quote on approve may not need a higher approval level
    JO-V008  payment status only moves pending → approved → paid

A quote is re-checked like a create: JO-V001 applies to the quoted amount,
and ``quote`` re-routes the Job Order to the level the new amount falls in.

SLA: submit routes the amount through the approval ladder and starts the
response clock with the matched rule's hours.  hold / resume pause and
resume that same clock; complete fixes ``met`` against the adjusted deadline.
Rejection and cancellation close the clock without a verdict.

Usage:
    svc = JobOrderService(clock=clock)
    jo = svc.create({"jo_type": "transport", "total_amount": 5000})
    svc.submit(jo.id)
    svc.approve(jo.id, approver_id=7, approved=True)
"""

from __future__ import annotations

import logging

from scm_workflow.core.exceptions import BusinessRuleError, NotFoundError, ValidationError
from scm_workflow.middleware.logging_config import doc_extra
from scm_workflow.models import db
from scm_workflow.models.job_order import (
    JO_TYPES,
    PAYMENT_STATUS_FLOW,
    JobOrder,
    JobOrderStatus,
    JoPayment,
)
from scm_workflow.services.document_number import generate_document_number
from scm_workflow.services.orchestrator import DocumentOrchestrator, TransitionResult
from scm_workflow.services.transition_guard import DocumentType

logger = logging.getLogger(__name__)

S = JobOrderStatus

_EDITABLE_FIELDS = (
    "jo_type", "description", "project_id", "supplier_id",
    "total_amount", "insurance_required", "coa_approval_required",
)

_PAYABLE_STATUSES = {S.COMPLETED.value, S.CLOSURE_PENDING.value, S.CLOSURE_APPROVED.value, S.INVOICED.value}


class JobOrderService(DocumentOrchestrator):
    document_type = DocumentType.JOB_ORDER.value
    model = JobOrder

    # ── Creation / editing ───────────────────────────────────────────────

    def _check_amount_rules(self, jo: JobOrder) -> None:
        if jo.jo_type not in JO_TYPES:
            raise ValidationError(f"Unknown jo_type: {jo.jo_type}", details={"jo_type": jo.jo_type})
        if jo.total_amount is not None and jo.total_amount < 0:
            raise ValidationError("total_amount must not be negative", details={"total_amount": jo.total_amount})

        threshold = self.setting("JO_INSURANCE_THRESHOLD")
        if (jo.total_amount or 0) > threshold and not jo.insurance_required:
            raise BusinessRuleError(
                f"Job Orders above {threshold:,.0f} require insurance",
                rule_code="JO-V001",
            )
        # monthly rentals always need a certificate of acceptance
        if jo.jo_type == "rental_monthly":
            jo.coa_approval_required = True

    def create(self, data: dict, requested_by_id: int | None = None, cancel_token=None) -> JobOrder:
        with self._uow("create", cancel_token):
            jo = JobOrder(
                jo_type=data.get("jo_type", "transport"),
                description=data.get("description", ""),
                project_id=data.get("project_id"),
                supplier_id=data.get("supplier_id"),
                requested_by_id=requested_by_id,
                total_amount=data.get("total_amount"),
                insurance_required=bool(data.get("insurance_required", False)),
                coa_approval_required=bool(data.get("coa_approval_required", False)),
                status=S.DRAFT.value,
                created_at=self.clock.now(),
            )
            self._check_amount_rules(jo)
            jo.jo_number = generate_document_number(self.document_type, clock=self.clock)
            db.session.add(jo)
            db.session.flush()
            logger.info("Job Order created: %s", jo.jo_number,
                        extra=doc_extra(self.document_type, jo.id))
        return jo

    def update(self, jo_id: int, data: dict, cancel_token=None) -> JobOrder:
        with self._uow("update", cancel_token):
            jo = self._load(jo_id)
            if jo.status != S.DRAFT.value:
                raise BusinessRuleError("Only draft Job Orders can be updated", rule_code="JO-V002")
            for key in _EDITABLE_FIELDS:
                if key in data:
                    setattr(jo, key, data[key])
            self._check_amount_rules(jo)
        return jo

    # ── Approval ─────────────────────────────────────────────────────────

    def submit(self, jo_id: int, cancel_token=None) -> TransitionResult:
        def apply(jo, result):
            route = self.approvals.route_for_approval(self.document_type, jo.total_amount or 0)
            jo.approval_level = route.level
            jo.approver_role = route.approver_role
            jo.submitted_at = self.clock.now()
            result.sla_record = self.sla.start(self.document_type, jo.id, route.sla_hours)
            result.extras["route"] = route.to_dict()

        return self._transition(jo_id, S.PENDING_APPROVAL, "submit", cancel_token, apply)

    def quote(self, jo_id: int, approver_id: int, quote_amount: float,
              comments: str | None = None, cancel_token=None) -> TransitionResult:
        """Approver prices the request; the quote becomes the working amount."""
        if quote_amount is None or quote_amount < 0:
            raise ValidationError("quote_amount must be zero or positive", details={"quote_amount": quote_amount})

        def apply(jo, result):
            route = self._apply_quote(jo, approver_id, quote_amount)
            if route.level != jo.approval_level:
                logger.info(
                    "Quote re-routed approval from level %s to %s", jo.approval_level, route.level,
                    extra=doc_extra(self.document_type, jo.id),
                )
                jo.approval_level = route.level
                jo.approver_role = route.approver_role
            result.extras["route"] = route.to_dict()
            result.extras["comments"] = comments

        return self._transition(jo_id, S.QUOTED, "quote", cancel_token, apply)

    def _apply_quote(self, jo: JobOrder, approver_id: int, quote_amount: float):
        """Make the quote the working amount and re-check it.  Returns its approval route."""
        jo.quote_amount = quote_amount
        jo.total_amount = quote_amount
        jo.quoted_by_id = approver_id
        jo.quoted_at = self.clock.now()
        self._check_amount_rules(jo)
        return self.approvals.route_for_approval(self.document_type, quote_amount)

    def approve(self, jo_id: int, approver_id: int, approved: bool = True,
                quote_amount: float | None = None, comments: str | None = None,
                cancel_token=None) -> TransitionResult:
        """Record the approver's decision and move to approved or rejected.

        ``sla_met`` on the result tells whether the decision landed inside the
        response deadline.  The SLA record itself stays open until complete.
        """
        target = S.APPROVED if approved else S.REJECTED

        def apply(jo, result):
            if quote_amount is not None:
                route = self._apply_quote(jo, approver_id, quote_amount)
                if route.level > (jo.approval_level or 1):
                    raise BusinessRuleError(
                        f"A quote of {quote_amount:,.0f} needs level {route.level} approval; "
                        f"this Job Order is routed to level {jo.approval_level or 1}",
                        rule_code="JO-V007",
                    )
            sla_record = self.sla.get(self.document_type, jo.id)
            within = self.sla.within_sla(sla_record)
            result.approval = self.approvals.decide(
                self.document_type, jo.id, approver_id, approved,
                level=jo.approval_level or 1,
                quote_amount=quote_amount,
                comments=comments,
                within_sla=within,
            )
            result.sla_met = within
            result.sla_record = sla_record
            if approved:
                jo.approved_at = self.clock.now()
            else:
                self.sla.close(self.document_type, jo.id, "rejected")

        return self._transition(jo_id, target, "approve" if approved else "reject", cancel_token, apply)

    def reject(self, jo_id: int, approver_id: int, comments: str | None = None,
               cancel_token=None) -> TransitionResult:
        return self.approve(jo_id, approver_id, approved=False, comments=comments, cancel_token=cancel_token)

    def reopen(self, jo_id: int, cancel_token=None) -> TransitionResult:
        """Send a rejected Job Order back to draft for editing and resubmission."""
        return self._transition(jo_id, S.DRAFT, "reopen", cancel_token)

    # ── Execution ────────────────────────────────────────────────────────

    def assign(self, jo_id: int, supplier_id: int, cancel_token=None) -> TransitionResult:
        def apply(jo, result):
            if not supplier_id:
                raise BusinessRuleError("A supplier is required to assign a Job Order", rule_code="JO-V006")
            jo.supplier_id = supplier_id

        return self._transition(jo_id, S.ASSIGNED, "assign", cancel_token, apply)

    def start(self, jo_id: int, cancel_token=None) -> TransitionResult:
        def apply(jo, result):
            if jo.status != S.ASSIGNED.value:
                raise BusinessRuleError("Only assigned Job Orders can be started; use resume", rule_code="JO-V004")
            jo.start_date = self.clock.now()

        return self._transition(jo_id, S.IN_PROGRESS, "start", cancel_token, apply)

    def hold(self, jo_id: int, reason: str | None = None, cancel_token=None) -> TransitionResult:
        def apply(jo, result):
            jo.hold_reason = reason
            result.sla_record = self.sla.pause(self.document_type, jo.id, reason)

        return self._transition(jo_id, S.ON_HOLD, "hold", cancel_token, apply)

    def resume(self, jo_id: int, cancel_token=None) -> TransitionResult:
        def apply(jo, result):
            if jo.status != S.ON_HOLD.value:
                raise BusinessRuleError("Only Job Orders on hold can be resumed", rule_code="JO-V005")
            jo.hold_reason = None
            result.sla_record = self.sla.resume(self.document_type, jo.id)

        return self._transition(jo_id, S.IN_PROGRESS, "resume", cancel_token, apply)

    def complete(self, jo_id: int, actor_id: int, cancel_token=None) -> TransitionResult:
        def apply(jo, result):
            jo.completion_date = self.clock.now()
            jo.completed_by_id = actor_id
            result.sla_met = self.sla.evaluate(self.document_type, jo.id)
            result.sla_record = self.sla.get(self.document_type, jo.id)

        return self._transition(jo_id, S.COMPLETED, "complete", cancel_token, apply)

    # ── Closure / billing ────────────────────────────────────────────────

    def request_closure(self, jo_id: int, cancel_token=None) -> TransitionResult:
        return self._transition(jo_id, S.CLOSURE_PENDING, "request_closure", cancel_token)

    def approve_closure(self, jo_id: int, approver_id: int, cancel_token=None) -> TransitionResult:
        def apply(jo, result):
            jo.closure_approved_by_id = approver_id

        return self._transition(jo_id, S.CLOSURE_APPROVED, "approve_closure", cancel_token, apply)

    def invoice(self, jo_id: int, amount: float | None = None, invoice_number: str | None = None,
                cancel_token=None) -> TransitionResult:
        def apply(jo, result):
            payment_amount = amount if amount is not None else jo.total_amount
            if payment_amount is None:
                raise ValidationError("An invoice amount is required", details={"amount": None})
            payment = JoPayment(
                invoice_number=invoice_number,
                amount=payment_amount,
                payment_status="pending",
                recorded_at=self.clock.now(),
            )
            jo.payments.append(payment)
            result.extras["payment"] = payment

        return self._transition(jo_id, S.INVOICED, "invoice", cancel_token, apply)

    def add_payment(self, jo_id: int, amount: float, invoice_number: str | None = None,
                    paid: bool = False, cancel_token=None) -> JoPayment:
        if amount is None or amount <= 0:
            raise ValidationError("Payment amount must be positive", details={"amount": amount})
        with self._uow("add_payment", cancel_token):
            jo = self._load(jo_id)
            if jo.status not in _PAYABLE_STATUSES:
                raise BusinessRuleError(
                    f"Payments cannot be recorded while the Job Order is {jo.status}",
                    rule_code="JO-V003",
                )
            now = self.clock.now()
            payment = JoPayment(
                invoice_number=invoice_number,
                amount=amount,
                payment_status="paid" if paid else "pending",
                recorded_at=now,
                paid_at=now if paid else None,
            )
            jo.payments.append(payment)
            db.session.flush()
        return payment

    def update_payment(self, jo_id: int, payment_id: int, data: dict, cancel_token=None) -> JoPayment:
        """Correct a payment line or move its status along pending → approved → paid."""
        with self._uow("update_payment", cancel_token):
            jo = self._load(jo_id)
            payment = next((p for p in jo.payments if p.id == payment_id), None)
            if payment is None:
                raise NotFoundError("JoPayment", payment_id)

            if "amount" in data:
                if data["amount"] is None or data["amount"] <= 0:
                    raise ValidationError("Payment amount must be positive", details={"amount": data["amount"]})
                payment.amount = data["amount"]
            if "invoice_number" in data:
                payment.invoice_number = data["invoice_number"]

            new_status = data.get("payment_status")
            if new_status and new_status != payment.payment_status:
                allowed = PAYMENT_STATUS_FLOW.get(payment.payment_status, set())
                if new_status not in allowed:
                    raise BusinessRuleError(
                        f"Payment cannot move from {payment.payment_status} to {new_status}",
                        rule_code="JO-V008",
                    )
                payment.payment_status = new_status
                if new_status == "approved":
                    payment.approved_at = self.clock.now()
                elif new_status == "paid":
                    payment.paid_at = self.clock.now()
                logger.info(
                    "Payment %s marked %s", payment.id, new_status,
                    extra=doc_extra(self.document_type, jo.id),
                )
            db.session.flush()
        return payment

    def cancel(self, jo_id: int, cancel_token=None) -> TransitionResult:
        def apply(jo, result):
            jo.cancelled_at = self.clock.now()
            self.sla.close(self.document_type, jo.id, "cancelled")

        return self._transition(jo_id, S.CANCELLED, "cancel", cancel_token, apply)
