"""
Material Requisition orchestrator.

Business rules:
    MR-V001  stock can only be checked on an approved MR
    MR-V002  an MR needs at least one line with a positive quantity
    MR-V003  sourcing can only be resolved after the stock check

Stock check classification, per line, over the project's own warehouses:
    available >= requested      → from_stock          (qty_from_stock = requested)
    0 < available < requested   → both                (stock + purchase remainder)
    available == 0              → purchase_required   (qty_from_purchase = requested)

When every line comes back purchase_required, other projects' warehouses are
searched; lines found there become ``available_other_project`` and the result
suggests an inter-project transfer instead of a purchase.

SLA: approve starts a stock-verification clock (MR_STOCK_VERIFICATION_HOURS),
fixed when the stock check runs and closed without a verdict on cancel.
"""

from __future__ import annotations

import logging

from scm_workflow.core.exceptions import BusinessRuleError, ValidationError
from scm_workflow.middleware.logging_config import doc_extra
from scm_workflow.models import db
from scm_workflow.models.material_requisition import (
    MaterialRequisition,
    MaterialRequisitionStatus,
    MrLine,
)
from scm_workflow.services.document_number import generate_document_number
from scm_workflow.services.orchestrator import DocumentOrchestrator, TransitionResult
from scm_workflow.services.stock_lookup import DatabaseStockLookup
from scm_workflow.services.transition_guard import DocumentType

logger = logging.getLogger(__name__)

S = MaterialRequisitionStatus

SLA_KIND = "stock_verification"


def classify_line(requested: float, available: float) -> tuple[str, float, float]:
    """Return (source, qty_from_stock, qty_from_purchase) for one line."""
    if available >= requested:
        return "from_stock", requested, 0.0
    if available > 0:
        return "both", available, requested - available
    return "purchase_required", 0.0, requested


class MaterialRequisitionService(DocumentOrchestrator):
    document_type = DocumentType.MATERIAL_REQUISITION.value
    model = MaterialRequisition

    def __init__(self, *, stock_lookup=None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.stock = stock_lookup or DatabaseStockLookup()

    # ── Creation ─────────────────────────────────────────────────────────

    def create(self, data: dict, requested_by_id: int | None = None, cancel_token=None) -> MaterialRequisition:
        lines = data.get("lines") or []
        if not lines or any((ln.get("qty_requested") or 0) <= 0 for ln in lines):
            raise BusinessRuleError("An MR needs at least one line with a positive quantity", rule_code="MR-V002")
        if data.get("project_id") is None:
            raise ValidationError("project_id is required", details={"project_id": None})

        with self._uow("create", cancel_token):
            mr = MaterialRequisition(
                project_id=data["project_id"],
                department=data.get("department"),
                notes=data.get("notes", ""),
                requested_by_id=requested_by_id,
                status=S.DRAFT.value,
                created_at=self.clock.now(),
            )
            for ln in lines:
                mr.lines.append(MrLine(
                    item_id=ln.get("item_id"),
                    description=ln.get("description", ""),
                    qty_requested=ln["qty_requested"],
                ))
            mr.mr_number = generate_document_number(self.document_type, clock=self.clock)
            db.session.add(mr)
            db.session.flush()
            logger.info("MR created: %s (%d lines)", mr.mr_number, len(mr.lines),
                        extra=doc_extra(self.document_type, mr.id))
        return mr

    # ── Review / approval ────────────────────────────────────────────────

    def submit(self, mr_id: int, cancel_token=None) -> TransitionResult:
        return self._transition(mr_id, S.SUBMITTED, "submit", cancel_token)

    def review(self, mr_id: int, reviewer_id: int, cancel_token=None) -> TransitionResult:
        def apply(mr, result):
            mr.reviewed_by_id = reviewer_id
            mr.reviewed_at = self.clock.now()

        return self._transition(mr_id, S.UNDER_REVIEW, "review", cancel_token, apply)

    def approve(self, mr_id: int, approver_id: int, cancel_token=None) -> TransitionResult:
        def apply(mr, result):
            mr.approved_by_id = approver_id
            mr.approved_at = self.clock.now()
            result.sla_record = self.sla.start(
                self.document_type, mr.id, self.setting("MR_STOCK_VERIFICATION_HOURS"), kind=SLA_KIND,
            )

        return self._transition(mr_id, S.APPROVED, "approve", cancel_token, apply)

    def reject(self, mr_id: int, reason: str | None = None, cancel_token=None) -> TransitionResult:
        def apply(mr, result):
            mr.rejection_reason = reason
            self.sla.close(self.document_type, mr.id, "rejected")

        return self._transition(mr_id, S.REJECTED, "reject", cancel_token, apply)

    def reopen(self, mr_id: int, cancel_token=None) -> TransitionResult:
        return self._transition(mr_id, S.DRAFT, "reopen", cancel_token)

    # ── Stock check ──────────────────────────────────────────────────────

    def _available(self, item_id: int, warehouse_ids: list[int]) -> float:
        return sum(self.stock.get_stock_level(item_id, wh).available for wh in warehouse_ids)

    def check_stock(self, mr_id: int, cancel_token=None) -> TransitionResult:
        with self._uow("check_stock", cancel_token):
            mr = self._load(mr_id)
            if mr.status != S.APPROVED.value:
                raise BusinessRuleError("MR must be approved to check stock", rule_code="MR-V001")
            self._guard(mr, S.CHECKING_STOCK)
            result = TransitionResult(document=mr, from_status=mr.status, to_status=S.CHECKING_STOCK.value)

            warehouses = self.stock.project_warehouses(mr.project_id)
            line_results = []
            for line in mr.lines:
                available = self._available(line.item_id, warehouses) if line.item_id is not None else 0.0
                source, from_stock, from_purchase = classify_line(line.qty_requested, available)
                line.source = source
                line.qty_from_stock = from_stock
                line.qty_from_purchase = from_purchase
                line.other_project_id = None
                line_results.append({"line_id": line.id, "item_id": line.item_id,
                                     "available": available, "source": source})

            suggest_transfer = False
            if line_results and all(r["source"] == "purchase_required" for r in line_results):
                suggest_transfer = self._search_other_projects(mr, line_results)

            result.sla_met = self.sla.evaluate(self.document_type, mr.id, kind=SLA_KIND)
            result.sla_record = self.sla.get(self.document_type, mr.id, kind=SLA_KIND)
            mr.stock_checked_at = self.clock.now()
            self._move(mr, S.CHECKING_STOCK)
            result.extras["lines"] = line_results
            result.extras["suggest_transfer"] = suggest_transfer
        return result

    def _search_other_projects(self, mr: MaterialRequisition, line_results: list[dict]) -> bool:
        others = self.stock.other_project_warehouses(mr.project_id)
        lines_by_id = {ln.id: ln for ln in mr.lines}
        found = False
        for entry in line_results:
            if entry["item_id"] is None:
                continue
            for other_project_id, warehouse_ids in others.items():
                if self._available(entry["item_id"], warehouse_ids) > 0:
                    line = lines_by_id[entry["line_id"]]
                    line.source = "available_other_project"
                    line.other_project_id = other_project_id
                    entry["source"] = "available_other_project"
                    entry["other_project_id"] = other_project_id
                    found = True
                    break
        if found:
            logger.info("Stock found in other projects; transfer suggested",
                        extra=doc_extra(self.document_type, mr.id))
        return found

    # ── Sourcing / fulfilment ────────────────────────────────────────────

    def resolve_sourcing(self, mr_id: int, cancel_token=None) -> TransitionResult:
        """Pick from_stock or needs_purchase from the per-line stock decisions."""
        with self._uow("resolve_sourcing", cancel_token):
            mr = self._load(mr_id)
            if mr.status != S.CHECKING_STOCK.value:
                raise BusinessRuleError("Run the stock check before resolving sourcing", rule_code="MR-V003")
            has_stock = any(ln.qty_from_stock > 0 for ln in mr.lines)
            fully_stocked = all(ln.source == "from_stock" for ln in mr.lines)
            target = S.FROM_STOCK if has_stock and fully_stocked else S.NEEDS_PURCHASE
            result = TransitionResult(document=mr, from_status=mr.status, to_status=target.value)
            self._move(mr, target)
        return result

    def mark_not_available_locally(self, mr_id: int, cancel_token=None) -> TransitionResult:
        """Route the MR to an inter-project transfer request."""
        return self._transition(mr_id, S.NOT_AVAILABLE_LOCALLY, "mark_not_available_locally", cancel_token)

    def fulfill(self, mr_id: int, partial: bool = False, cancel_token=None) -> TransitionResult:
        target = S.PARTIALLY_FULFILLED if partial else S.FULFILLED

        def apply(mr, result):
            if not partial:
                mr.fulfillment_date = self.clock.now()

        return self._transition(mr_id, target, "fulfill", cancel_token, apply)

    def cancel(self, mr_id: int, cancel_token=None) -> TransitionResult:
        def apply(mr, result):
            self.sla.close(self.document_type, mr.id, "cancelled")

        return self._transition(mr_id, S.CANCELLED, "cancel", cancel_token, apply)
