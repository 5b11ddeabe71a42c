"""
Tests: Shipment orchestrator.

Covers:
    - guarded logistics chain through update_status
    - customs milestones moving the shipment (and refusing when out of order)
    - delivery SLA started in transit and evaluated at delivery
    - best-effort Goods Receipt update after delivery: failure is reported,
      never rolled into the shipment's own transition
    - header edits and customs stage corrections
    - cancel closing the delivery clock
"""

from datetime import timedelta

import pytest

from scm_workflow.core.exceptions import (
    BusinessRuleError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from scm_workflow.models import db as _db
from scm_workflow.models.shipment import CustomsStage, GoodsReceipt
from scm_workflow.services.clock import as_utc
from scm_workflow.services.shipment_service import ShipmentService

TO_PORT = ["po_issued", "in_production", "ready_to_ship", "in_transit", "at_port"]


def _make_grn(status="qc_approved", number="GRN-2026-0001"):
    grn = GoodsReceipt(grn_number=number, status=status, warehouse_id=1)
    _db.session.add(grn)
    _db.session.commit()
    return grn


def _make_shipment(svc, **kw):
    data = {"po_number": "PO-7781", "supplier_id": 3, "project_id": 1, "port_of_entry": "Jeddah"}
    data.update(kw)
    return svc.create(data)


def _walk(svc, shipment, statuses):
    for status in statuses:
        svc.update_status(shipment.id, status)


def _make_cleared(svc, **kw):
    shipment = _make_shipment(svc, **kw)
    _walk(svc, shipment, TO_PORT)
    svc.add_customs_stage(shipment.id, "docs_submitted")
    svc.add_customs_stage(shipment.id, "released")
    return shipment


# ═════════════════════════════════════════════════════════════════════════════
# 1. LOGISTICS CHAIN
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_create_starts_draft(shipment_service, clock):
    shipment = _make_shipment(shipment_service)
    assert shipment.status == "draft"
    assert shipment.shipment_number == f"SH-{clock.now().year}-0001"


@pytest.mark.unit
def test_walk_to_port(shipment_service):
    shipment = _make_shipment(shipment_service)
    _walk(shipment_service, shipment, TO_PORT)
    assert shipment_service.get(shipment.id).status == "at_port"


@pytest.mark.unit
def test_skipping_a_step_is_refused(shipment_service):
    shipment = _make_shipment(shipment_service)
    with pytest.raises(InvalidTransitionError) as exc_info:
        shipment_service.update_status(shipment.id, "in_transit")
    assert exc_info.value.allowed == ["cancelled", "po_issued"]


@pytest.mark.unit
@pytest.mark.parametrize("status", ["delivered", "cancelled"])
def test_dedicated_statuses_need_their_operation(shipment_service, status):
    shipment = _make_shipment(shipment_service)
    with pytest.raises(ValidationError):
        shipment_service.update_status(shipment.id, status)


# ═════════════════════════════════════════════════════════════════════════════
# 2. CUSTOMS
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_customs_stages_drive_status(shipment_service):
    shipment = _make_shipment(shipment_service)
    _walk(shipment_service, shipment, TO_PORT)

    result = shipment_service.add_customs_stage(shipment.id, "docs_submitted", notes="BL + invoice")
    assert (result.from_status, result.to_status) == ("at_port", "customs_clearing")

    result = shipment_service.add_customs_stage(shipment.id, "duties_paid")
    assert (result.from_status, result.to_status) == ("customs_clearing", "customs_clearing")

    result = shipment_service.add_customs_stage(shipment.id, "released")
    assert result.status == "cleared"

    stages = CustomsStage.query.filter_by(shipment_id=shipment.id).order_by(CustomsStage.id).all()
    assert [s.stage for s in stages] == ["docs_submitted", "duties_paid", "released"]
    assert stages[0].notes == "BL + invoice"


@pytest.mark.unit
def test_out_of_order_stage_is_refused_and_not_recorded(shipment_service):
    shipment = _make_shipment(shipment_service)
    _walk(shipment_service, shipment, TO_PORT[:4])

    with pytest.raises(BusinessRuleError) as exc_info:
        shipment_service.add_customs_stage(shipment.id, "docs_submitted")
    assert exc_info.value.rule_code == "SHIP-V001"
    assert shipment_service.get(shipment.id).status == "in_transit"
    assert CustomsStage.query.filter_by(shipment_id=shipment.id).count() == 0


@pytest.mark.unit
def test_release_straight_from_port_is_refused(shipment_service):
    shipment = _make_shipment(shipment_service)
    _walk(shipment_service, shipment, TO_PORT)
    with pytest.raises(BusinessRuleError):
        shipment_service.add_customs_stage(shipment.id, "released")


@pytest.mark.unit
def test_unknown_stage_is_refused(shipment_service):
    shipment = _make_shipment(shipment_service)
    with pytest.raises(ValidationError):
        shipment_service.add_customs_stage(shipment.id, "bribe_paid")


@pytest.mark.unit
def test_resolving_a_customs_stage_stamps_end_date(shipment_service, clock):
    shipment = _make_shipment(shipment_service)
    _walk(shipment_service, shipment, TO_PORT)
    shipment_service.add_customs_stage(shipment.id, "under_inspection")
    stage = CustomsStage.query.filter_by(shipment_id=shipment.id).one()

    stage = shipment_service.update_customs_stage(
        shipment.id, stage.id, {"customs_ref": "REF-123", "issues": "seal mismatch"},
    )
    assert stage.customs_ref == "REF-123"
    assert stage.stage_end_date is None

    clock.advance(hours=6)
    stage = shipment_service.update_customs_stage(shipment.id, stage.id, {"resolution": "Resealed"})
    assert stage.resolution == "Resealed"
    assert as_utc(stage.stage_end_date) == clock.now()
    assert shipment_service.get(shipment.id).status == "customs_clearing"


@pytest.mark.unit
def test_customs_stage_correction_keeps_implied_status(shipment_service):
    shipment = _make_shipment(shipment_service)
    _walk(shipment_service, shipment, TO_PORT)
    shipment_service.add_customs_stage(shipment.id, "docs_submitted")
    stage = CustomsStage.query.filter_by(shipment_id=shipment.id).one()

    assert shipment_service.update_customs_stage(
        shipment.id, stage.id, {"stage": "declaration_filed"},
    ).stage == "declaration_filed"

    with pytest.raises(BusinessRuleError) as exc_info:
        shipment_service.update_customs_stage(shipment.id, stage.id, {"stage": "released"})
    assert exc_info.value.rule_code == "SHIP-V003"
    with pytest.raises(ValidationError):
        shipment_service.update_customs_stage(shipment.id, stage.id, {"stage": "bribe_paid"})
    _db.session.expire_all()
    assert _db.session.get(CustomsStage, stage.id).stage == "declaration_filed"


@pytest.mark.unit
def test_customs_stage_of_another_shipment_is_not_found(shipment_service):
    shipment = _make_shipment(shipment_service)
    _walk(shipment_service, shipment, TO_PORT)
    shipment_service.add_customs_stage(shipment.id, "docs_submitted")
    stage = CustomsStage.query.filter_by(shipment_id=shipment.id).one()
    other = _make_shipment(shipment_service)
    with pytest.raises(NotFoundError):
        shipment_service.update_customs_stage(other.id, stage.id, {"notes": "x"})


# ═════════════════════════════════════════════════════════════════════════════
# 3. DELIVERY + SLA
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_in_transit_starts_delivery_clock(shipment_service, clock):
    shipment = _make_shipment(shipment_service)
    _walk(shipment_service, shipment, TO_PORT[:3])
    result = shipment_service.update_status(shipment.id, "in_transit")
    assert result.sla_record.kind == "delivery"
    assert as_utc(result.sla_record.due_date) == clock.now() + timedelta(hours=72)


@pytest.mark.unit
def test_on_time_delivery(shipment_service, clock):
    shipment = _make_cleared(shipment_service)
    clock.advance(hours=48)
    result = shipment_service.deliver(shipment.id)
    assert result.status == "delivered"
    assert result.sla_met is True
    assert as_utc(shipment.delivery_date) == clock.now()


@pytest.mark.unit
def test_late_delivery(shipment_service, clock):
    shipment = _make_cleared(shipment_service)
    clock.advance(hours=73)
    assert shipment_service.deliver(shipment.id).sla_met is False


@pytest.mark.unit
def test_no_delivery_clock_when_unconfigured(clock):
    svc = ShipmentService(clock=clock, settings={"SHIPMENT_DELIVERY_SLA_HOURS": None})
    shipment = _make_cleared(svc)
    result = svc.deliver(shipment.id)
    assert result.sla_met is None
    assert result.sla_record is None


@pytest.mark.unit
def test_delivery_via_in_delivery(shipment_service):
    shipment = _make_cleared(shipment_service)
    shipment_service.update_status(shipment.id, "in_delivery")
    assert shipment_service.deliver(shipment.id).status == "delivered"


# ═════════════════════════════════════════════════════════════════════════════
# 4. GOODS RECEIPT SIDE EFFECT
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_delivery_receives_linked_grn(shipment_service, clock):
    grn = _make_grn("qc_approved")
    shipment = _make_cleared(shipment_service, goods_receipt_id=grn.id)

    result = shipment_service.deliver(shipment.id)
    assert [o.to_dict() for o in result.side_effects] == [
        {"name": "goods_receipt_received", "ok": True, "error": None},
    ]
    _db.session.expire_all()
    grn = _db.session.get(GoodsReceipt, grn.id)
    assert grn.status == "received"
    assert as_utc(grn.received_at) == clock.now()


@pytest.mark.unit
def test_grn_failure_does_not_undo_delivery(shipment_service):
    grn = _make_grn("draft")
    shipment = _make_cleared(shipment_service, goods_receipt_id=grn.id)

    result = shipment_service.deliver(shipment.id)
    assert result.status == "delivered"
    outcome = result.side_effects[0]
    assert outcome.ok is False
    assert "draft" in outcome.error

    _db.session.expire_all()
    assert shipment_service.get(shipment.id).status == "delivered"
    assert _db.session.get(GoodsReceipt, grn.id).status == "draft"


@pytest.mark.unit
def test_delivery_without_grn_has_no_side_effects(shipment_service):
    shipment = _make_cleared(shipment_service)
    assert shipment_service.deliver(shipment.id).side_effects == []


# ═════════════════════════════════════════════════════════════════════════════
# 5. CANCEL
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_cancel_in_customs(shipment_service):
    shipment = _make_shipment(shipment_service)
    _walk(shipment_service, shipment, TO_PORT)
    shipment_service.add_customs_stage(shipment.id, "under_inspection")
    result = shipment_service.cancel(shipment.id, reason="goods seized")
    assert result.status == "cancelled"
    assert shipment.cancelled_reason == "goods seized"


@pytest.mark.unit
def test_delivered_is_terminal(shipment_service):
    shipment = _make_cleared(shipment_service)
    shipment_service.deliver(shipment.id)
    with pytest.raises(InvalidTransitionError):
        shipment_service.cancel(shipment.id)


@pytest.mark.unit
def test_cancel_in_transit_closes_delivery_clock(shipment_service, clock):
    shipment = _make_shipment(shipment_service)
    _walk(shipment_service, shipment, TO_PORT[:4])
    shipment_service.cancel(shipment.id, reason="supplier default")

    clock.advance(days=10)
    assert shipment_service.sla.list_overdue("shipment") == []
    record = shipment_service.sla.get("shipment", shipment.id, kind="delivery")
    assert record.closed_reason == "cancelled"


# ═════════════════════════════════════════════════════════════════════════════
# 6. HEADER EDITS
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_update_edits_header_fields(shipment_service):
    shipment = _make_shipment(shipment_service)
    _walk(shipment_service, shipment, TO_PORT[:2])
    updated = shipment_service.update(shipment.id, {"port_of_entry": "Dammam", "po_number": "PO-7790"})
    assert (updated.port_of_entry, updated.po_number) == ("Dammam", "PO-7790")
    assert updated.status == "in_production"


@pytest.mark.unit
def test_update_cannot_change_status(shipment_service):
    shipment = _make_shipment(shipment_service)
    with pytest.raises(ValidationError):
        shipment_service.update(shipment.id, {"status": "delivered"})
    assert shipment_service.get(shipment.id).status == "draft"


@pytest.mark.unit
def test_terminal_shipment_cannot_be_edited(shipment_service):
    shipment = _make_shipment(shipment_service)
    shipment_service.cancel(shipment.id)
    with pytest.raises(BusinessRuleError) as exc_info:
        shipment_service.update(shipment.id, {"port_of_entry": "Dammam"})
    assert exc_info.value.rule_code == "SHIP-V002"
