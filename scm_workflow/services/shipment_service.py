"""
Shipment orchestrator.

Linear logistics steps go through ``update_status``; customs milestones go
through ``add_customs_stage``, which moves the shipment when the milestone
implies a new status and the move is legal.

Business rules:
    SHIP-V001  a customs milestone must imply a legal move (or none)
    SHIP-V002  delivered and cancelled shipments cannot be edited
    SHIP-V003  a corrected customs stage must imply the same status

Delivery is the one place with a best-effort side effect: after the
shipment is committed as delivered, the linked Goods Receipt is moved to
``received``.  That update runs in its own transaction and only reports
failure through a SideEffectOutcome on the result.
"""

from __future__ import annotations

import logging

from scm_workflow.core.exceptions import BusinessRuleError, NotFoundError, ValidationError
from scm_workflow.middleware.logging_config import doc_extra
from scm_workflow.models import db
from scm_workflow.models.shipment import (
    CUSTOMS_STAGE_STATUS,
    CustomsStage,
    GoodsReceipt,
    GoodsReceiptStatus,
    Shipment,
    ShipmentStatus,
)
from scm_workflow.services.document_number import generate_document_number
from scm_workflow.services.orchestrator import DocumentOrchestrator, TransitionResult
from scm_workflow.services.transition_guard import DocumentType, key_of

logger = logging.getLogger(__name__)

S = ShipmentStatus

SLA_KIND = "delivery"

# Statuses reachable only through dedicated operations
_DEDICATED = {S.DELIVERED.value: "deliver", S.CANCELLED.value: "cancel"}

_EDITABLE_FIELDS = (
    "po_number", "supplier_id", "project_id", "port_of_entry",
    "expected_arrival", "goods_receipt_id",
)

_CUSTOMS_FIELDS = ("notes", "customs_ref", "duties_amount", "issues", "resolution")


class ShipmentService(DocumentOrchestrator):
    document_type = DocumentType.SHIPMENT.value
    model = Shipment

    def create(self, data: dict, cancel_token=None) -> Shipment:
        with self._uow("create", cancel_token):
            shipment = Shipment(
                po_number=data.get("po_number"),
                supplier_id=data.get("supplier_id"),
                project_id=data.get("project_id"),
                port_of_entry=data.get("port_of_entry"),
                expected_arrival=data.get("expected_arrival"),
                goods_receipt_id=data.get("goods_receipt_id"),
                status=S.DRAFT.value,
                created_at=self.clock.now(),
            )
            shipment.shipment_number = generate_document_number(self.document_type, clock=self.clock)
            db.session.add(shipment)
            db.session.flush()
            logger.info("Shipment created: %s", shipment.shipment_number,
                        extra=doc_extra(self.document_type, shipment.id))
        return shipment

    def update(self, shipment_id: int, data: dict, cancel_token=None) -> Shipment:
        """Edit header fields.  Status never changes here."""
        if "status" in data:
            raise ValidationError("Use update_status() to change a shipment's status",
                                  details={"status": data["status"]})
        with self._uow("update", cancel_token):
            shipment = self._load(shipment_id)
            if self.transitions.is_terminal(self.document_type, shipment.status):
                raise BusinessRuleError(
                    f"A {shipment.status} shipment can no longer be edited",
                    rule_code="SHIP-V002",
                )
            for key in _EDITABLE_FIELDS:
                if key in data:
                    setattr(shipment, key, data[key])
            db.session.flush()
        return shipment

    def update_status(self, shipment_id: int, to_status, cancel_token=None) -> TransitionResult:
        """Guarded move along the logistics chain (po_issued ... in_delivery)."""
        target = key_of(to_status)
        if target in _DEDICATED:
            raise ValidationError(
                f"Use {_DEDICATED[target]}() to move a shipment to {target}",
                details={"to_status": target},
            )

        def apply(shipment, result):
            if target == S.IN_TRANSIT.value:
                hours = self.setting("SHIPMENT_DELIVERY_SLA_HOURS")
                if hours:
                    result.sla_record = self.sla.start(self.document_type, shipment.id, hours, kind=SLA_KIND)

        return self._transition(shipment_id, target, "update_status", cancel_token, apply)

    def add_customs_stage(self, shipment_id: int, stage: str, notes: str | None = None,
                          cancel_token=None) -> TransitionResult:
        if stage not in CUSTOMS_STAGE_STATUS:
            raise ValidationError(
                f"Unknown customs stage: {stage}",
                details={"stage": stage, "allowed": sorted(CUSTOMS_STAGE_STATUS)},
            )

        with self._uow("add_customs_stage", cancel_token):
            shipment = self._load(shipment_id)
            implied = CUSTOMS_STAGE_STATUS[stage]
            result = TransitionResult(document=shipment, from_status=shipment.status, to_status=shipment.status)
            shipment.customs_stages.append(CustomsStage(stage=stage, notes=notes, recorded_at=self.clock.now()))

            if shipment.status != implied.value:
                if not self.transitions.can_transition(self.document_type, shipment.status, implied):
                    raise BusinessRuleError(
                        f"Customs stage '{stage}' does not fit a shipment in status {shipment.status}",
                        rule_code="SHIP-V001",
                    )
                self._move(shipment, implied)
                result.to_status = implied.value
            result.extras["stage"] = stage
        return result

    def update_customs_stage(self, shipment_id: int, stage_id: int, data: dict,
                             cancel_token=None) -> CustomsStage:
        """Correct a recorded milestone or record its resolution.

        A corrected stage name must imply the same shipment status as the
        original one; the shipment itself is not moved.
        """
        with self._uow("update_customs_stage", cancel_token):
            shipment = self._load(shipment_id)
            record = next((c for c in shipment.customs_stages if c.id == stage_id), None)
            if record is None:
                raise NotFoundError("CustomsStage", stage_id)

            new_stage = data.get("stage")
            if new_stage is not None and new_stage != record.stage:
                if new_stage not in CUSTOMS_STAGE_STATUS:
                    raise ValidationError(
                        f"Unknown customs stage: {new_stage}",
                        details={"stage": new_stage, "allowed": sorted(CUSTOMS_STAGE_STATUS)},
                    )
                if CUSTOMS_STAGE_STATUS[new_stage] != CUSTOMS_STAGE_STATUS[record.stage]:
                    raise BusinessRuleError(
                        f"Customs stage '{record.stage}' cannot be corrected to '{new_stage}'",
                        rule_code="SHIP-V003",
                    )
                record.stage = new_stage

            for key in _CUSTOMS_FIELDS:
                if key in data:
                    setattr(record, key, data[key])
            if data.get("resolution"):
                record.stage_end_date = self.clock.now()
            db.session.flush()
            logger.info("Customs stage %s updated", record.id,
                        extra=doc_extra(self.document_type, shipment.id))
        return record

    def deliver(self, shipment_id: int, cancel_token=None) -> TransitionResult:
        def apply(shipment, result):
            shipment.delivery_date = self.clock.now()
            result.sla_met = self.sla.evaluate(self.document_type, shipment.id, kind=SLA_KIND)
            result.sla_record = self.sla.get(self.document_type, shipment.id, kind=SLA_KIND)

        result = self._transition(shipment_id, S.DELIVERED, "deliver", cancel_token, apply)

        grn_id = result.document.goods_receipt_id
        if grn_id is not None:
            result.side_effects.append(
                self.run_best_effort(
                    "goods_receipt_received",
                    lambda: self._mark_receipt_received(grn_id),
                    document_id=shipment_id,
                )
            )
        return result

    def _mark_receipt_received(self, grn_id: int) -> None:
        grn = db.session.get(GoodsReceipt, grn_id)
        if grn is None:
            raise LookupError(f"GoodsReceipt {grn_id} no longer exists")
        self.transitions.assert_transition(
            DocumentType.GOODS_RECEIPT, grn.status, GoodsReceiptStatus.RECEIVED,
        )
        grn.status = GoodsReceiptStatus.RECEIVED.value
        grn.received_at = self.clock.now()
        db.session.flush()

    def cancel(self, shipment_id: int, reason: str | None = None, cancel_token=None) -> TransitionResult:
        def apply(shipment, result):
            shipment.cancelled_reason = reason
            self.sla.close(self.document_type, shipment.id, "cancelled")

        return self._transition(shipment_id, S.CANCELLED, "cancel", cancel_token, apply)
