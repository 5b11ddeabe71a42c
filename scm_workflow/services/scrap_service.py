"""
Scrap Item orchestrator.

Business rules:
    SCRAP-V001  photos are required before reporting
    SCRAP-V002  only identified items can be edited
    SCRAP-V003  sign-off gates can only be set while reported
    SCRAP-V004  approve needs all three gates (site manager, QC, storekeeper)
    SCRAP-V005  a parallel approval group must be resolved before it can advance the item
    SCRAP-V006  a sale needs a buyer name

Two ways to reach ``approved``:
    - the three document-local gates, set one by one, then approve()
    - a parallel "all" group opened with open_approval_group(), then
      advance_from_group() once the group resolves
"""

from __future__ import annotations

import logging
from datetime import timedelta

from scm_workflow.core.exceptions import BusinessRuleError, ValidationError
from scm_workflow.middleware.logging_config import doc_extra
from scm_workflow.models import db
from scm_workflow.models.scrap import SCRAP_GATES, ScrapItem, ScrapItemStatus
from scm_workflow.services.document_number import generate_document_number
from scm_workflow.services.orchestrator import DocumentOrchestrator, TransitionResult
from scm_workflow.services.transition_guard import DocumentType

logger = logging.getLogger(__name__)

S = ScrapItemStatus

SLA_KIND = "buyer_pickup"

_EDITABLE_FIELDS = ("material_type", "description", "qty", "estimated_value", "photos", "warehouse_id")


class ScrapService(DocumentOrchestrator):
    document_type = DocumentType.SCRAP_ITEM.value
    model = ScrapItem

    # ── Creation / editing ───────────────────────────────────────────────

    def create(self, data: dict, cancel_token=None) -> ScrapItem:
        if (data.get("qty") or 0) < 0:
            raise ValidationError("qty must not be negative", details={"qty": data.get("qty")})
        with self._uow("create", cancel_token):
            item = ScrapItem(
                project_id=data.get("project_id"),
                warehouse_id=data.get("warehouse_id"),
                material_type=data.get("material_type", "mixed"),
                description=data.get("description", ""),
                qty=data.get("qty", 0),
                estimated_value=data.get("estimated_value"),
                photos=list(data.get("photos") or []),
                status=S.IDENTIFIED.value,
                created_at=self.clock.now(),
            )
            item.scrap_number = generate_document_number(self.document_type, clock=self.clock)
            db.session.add(item)
            db.session.flush()
            logger.info("Scrap item identified: %s", item.scrap_number,
                        extra=doc_extra(self.document_type, item.id))
        return item

    def update(self, scrap_id: int, data: dict, cancel_token=None) -> ScrapItem:
        with self._uow("update", cancel_token):
            item = self._load(scrap_id)
            if item.status != S.IDENTIFIED.value:
                raise BusinessRuleError("Only identified scrap items can be updated", rule_code="SCRAP-V002")
            for key in _EDITABLE_FIELDS:
                if key in data:
                    setattr(item, key, list(data[key]) if key == "photos" else data[key])
        return item

    # ── Reporting and sign-off gates ─────────────────────────────────────

    def report(self, scrap_id: int, cancel_token=None) -> TransitionResult:
        def apply(item, result):
            if not item.photos:
                raise BusinessRuleError("Photos are required before reporting scrap", rule_code="SCRAP-V001")
            item.reported_at = self.clock.now()

        return self._transition(scrap_id, S.REPORTED, "report", cancel_token, apply)

    def _set_gate(self, scrap_id: int, role: str, cancel_token=None) -> ScrapItem:
        column = SCRAP_GATES[role]
        with self._uow(f"approve_by_{role}", cancel_token):
            item = self._load(scrap_id)
            if item.status != S.REPORTED.value:
                raise BusinessRuleError(
                    f"Scrap must be reported before {role} approval (status: {item.status})",
                    rule_code="SCRAP-V003",
                )
            setattr(item, column, True)
            logger.info("Scrap gate %s approved", role,
                        extra=doc_extra(self.document_type, item.id))
        return item

    def approve_by_site_manager(self, scrap_id: int, cancel_token=None) -> ScrapItem:
        return self._set_gate(scrap_id, "site_manager", cancel_token)

    def approve_by_qc(self, scrap_id: int, cancel_token=None) -> ScrapItem:
        return self._set_gate(scrap_id, "qc", cancel_token)

    def approve_by_storekeeper(self, scrap_id: int, cancel_token=None) -> ScrapItem:
        return self._set_gate(scrap_id, "storekeeper", cancel_token)

    def approve(self, scrap_id: int, cancel_token=None) -> TransitionResult:
        def apply(item, result):
            if not item.all_gates_approved:
                missing = [role for role, col in SCRAP_GATES.items() if not getattr(item, col)]
                raise BusinessRuleError(
                    f"Scrap approval still needs: {', '.join(missing)}",
                    rule_code="SCRAP-V004",
                )
            item.approved_at = self.clock.now()

        return self._transition(scrap_id, S.APPROVED, "approve", cancel_token, apply)

    def reject(self, scrap_id: int, reason: str | None = None, cancel_token=None) -> TransitionResult:
        def apply(item, result):
            item.rejection_reason = reason

        return self._transition(scrap_id, S.REJECTED, "reject", cancel_token, apply)

    def reopen(self, scrap_id: int, cancel_token=None) -> TransitionResult:
        """rejected → identified; gates are cleared so sign-off starts over."""
        def apply(item, result):
            for column in SCRAP_GATES.values():
                setattr(item, column, False)

        return self._transition(scrap_id, S.IDENTIFIED, "reopen", cancel_token, apply)

    # ── Parallel group variant ───────────────────────────────────────────

    def open_approval_group(self, scrap_id: int, approver_ids: list[int], level: int = 1,
                            cancel_token=None):
        with self._uow("open_approval_group", cancel_token):
            item = self._load(scrap_id)
            if item.status != S.REPORTED.value:
                raise BusinessRuleError(
                    f"Scrap must be reported before opening sign-off (status: {item.status})",
                    rule_code="SCRAP-V003",
                )
            group = self.parallel.create_group(self.document_type, item.id, level, "all", approver_ids)
        return group

    def respond_to_group(self, scrap_id: int, group_id: int, approver_id: int, decision,
                         comments: str | None = None, cancel_token=None):
        """Record one sign-off; a concurrent responder surfaces as ConflictError."""
        with self._uow("respond_to_group", cancel_token):
            item = self._load(scrap_id)
            group = self.parallel.get_group(group_id)
            if group.document_type != self.document_type or group.document_id != item.id:
                raise BusinessRuleError(
                    f"Approval group {group_id} does not belong to scrap item {scrap_id}",
                    rule_code="SCRAP-V005",
                )
            group = self.parallel.respond(group_id, approver_id, decision, comments)
        return group

    def advance_from_group(self, scrap_id: int, group_id: int, cancel_token=None) -> TransitionResult:
        """Move to approved or rejected according to a resolved group."""
        with self._uow("advance_from_group", cancel_token):
            item = self._load(scrap_id)
            group = self.parallel.get_group(group_id)
            if group.document_type != self.document_type or group.document_id != item.id:
                raise BusinessRuleError(
                    f"Approval group {group_id} does not belong to scrap item {scrap_id}",
                    rule_code="SCRAP-V005",
                )
            if group.status == "pending":
                raise BusinessRuleError(
                    f"Approval group {group_id} is still pending",
                    rule_code="SCRAP-V005",
                )
            target = S.APPROVED if group.status == "approved" else S.REJECTED
            self._guard(item, target)
            result = TransitionResult(document=item, from_status=item.status, to_status=target.value)
            if target is S.APPROVED:
                for column in SCRAP_GATES.values():
                    setattr(item, column, True)
                item.approved_at = self.clock.now()
            self._move(item, target)
            result.extras["group"] = self.parallel.get_group_status(group_id)
        return result

    # ── Disposal ─────────────────────────────────────────────────────────

    def send_to_ssc(self, scrap_id: int, cancel_token=None) -> TransitionResult:
        def apply(item, result):
            item.ssc_date = self.clock.now()

        return self._transition(scrap_id, S.IN_SSC, "send_to_ssc", cancel_token, apply)

    def mark_sold(self, scrap_id: int, buyer_name: str, cancel_token=None) -> TransitionResult:
        """Record the buyer and start the pickup clock (SCRAP_PICKUP_DAYS)."""
        def apply(item, result):
            if not buyer_name:
                raise BusinessRuleError("A buyer name is required to sell scrap", rule_code="SCRAP-V006")
            days = self.setting("SCRAP_PICKUP_DAYS")
            now = self.clock.now()
            item.buyer_name = buyer_name
            item.sold_at = now
            item.buyer_pickup_deadline = now + timedelta(days=days)
            result.sla_record = self.sla.start(self.document_type, item.id, days * 24, kind=SLA_KIND)

        return self._transition(scrap_id, S.SOLD, "mark_sold", cancel_token, apply)

    def dispose(self, scrap_id: int, cancel_token=None) -> TransitionResult:
        def apply(item, result):
            item.disposed_at = self.clock.now()

        return self._transition(scrap_id, S.DISPOSED, "dispose", cancel_token, apply)

    def close(self, scrap_id: int, cancel_token=None) -> TransitionResult:
        """Close; a sold item's pickup SLA is evaluated here."""
        def apply(item, result):
            item.closed_at = self.clock.now()
            result.sla_met = self.sla.evaluate(self.document_type, item.id, kind=SLA_KIND)
            result.sla_record = self.sla.get(self.document_type, item.id, kind=SLA_KIND)

        return self._transition(scrap_id, S.CLOSED, "close", cancel_token, apply)
