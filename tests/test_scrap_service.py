"""
Tests: Scrap Item orchestrator.

Covers:
    - photos required before reporting (SCRAP-V001)
    - three sign-off gates, only while reported; approve needs all of them
    - parallel "all" group as an alternative sign-off path
    - SSC sale with buyer pickup SLA, disposal, closure
"""

from datetime import timedelta

import pytest
from sqlalchemy import text

from scm_workflow.core.exceptions import (
    BusinessRuleError,
    ConflictError,
    InvalidTransitionError,
    ValidationError,
)
from scm_workflow.models import db as _db
from scm_workflow.services.clock import as_utc

PHOTOS = ["https://files.example.com/scrap/1.jpg"]


def _make_item(svc, **kw):
    data = {"project_id": 1, "material_type": "steel", "description": "Offcuts", "qty": 120, "photos": PHOTOS}
    data.update(kw)
    return svc.create(data)


def _make_reported(svc, **kw):
    item = _make_item(svc, **kw)
    svc.report(item.id)
    return item


def _make_approved(svc):
    item = _make_reported(svc)
    svc.approve_by_site_manager(item.id)
    svc.approve_by_qc(item.id)
    svc.approve_by_storekeeper(item.id)
    svc.approve(item.id)
    return item


# ═════════════════════════════════════════════════════════════════════════════
# 1. IDENTIFY / REPORT
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_create_starts_identified(scrap_service, clock):
    item = _make_item(scrap_service)
    assert item.status == "identified"
    assert item.scrap_number == f"SCR-{clock.now().year}-0001"


@pytest.mark.unit
def test_create_rejects_negative_qty(scrap_service):
    with pytest.raises(ValidationError):
        _make_item(scrap_service, qty=-1)


@pytest.mark.unit
def test_report_requires_photos(scrap_service):
    item = _make_item(scrap_service, photos=[])
    with pytest.raises(BusinessRuleError) as exc_info:
        scrap_service.report(item.id)
    assert exc_info.value.rule_code == "SCRAP-V001"
    assert scrap_service.get(item.id).status == "identified"

    scrap_service.update(item.id, {"photos": PHOTOS})
    result = scrap_service.report(item.id)
    assert result.status == "reported"
    assert item.reported_at is not None


@pytest.mark.unit
def test_update_only_while_identified(scrap_service):
    item = _make_reported(scrap_service)
    with pytest.raises(BusinessRuleError) as exc_info:
        scrap_service.update(item.id, {"qty": 10})
    assert exc_info.value.rule_code == "SCRAP-V002"


# ═════════════════════════════════════════════════════════════════════════════
# 2. SIGN-OFF GATES
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_gates_require_reported(scrap_service):
    item = _make_item(scrap_service)
    with pytest.raises(BusinessRuleError) as exc_info:
        scrap_service.approve_by_qc(item.id)
    assert exc_info.value.rule_code == "SCRAP-V003"


@pytest.mark.unit
def test_approve_lists_missing_gates(scrap_service):
    item = _make_reported(scrap_service)
    scrap_service.approve_by_site_manager(item.id)
    with pytest.raises(BusinessRuleError) as exc_info:
        scrap_service.approve(item.id)
    assert exc_info.value.rule_code == "SCRAP-V004"
    assert "qc" in str(exc_info.value)
    assert "storekeeper" in str(exc_info.value)
    assert scrap_service.get(item.id).status == "reported"


@pytest.mark.unit
def test_approve_after_all_gates(scrap_service):
    item = _make_approved(scrap_service)
    assert item.status == "approved"
    assert item.all_gates_approved
    assert item.approved_at is not None


@pytest.mark.unit
def test_reject_and_reopen_clears_gates(scrap_service):
    item = _make_reported(scrap_service)
    scrap_service.approve_by_qc(item.id)
    scrap_service.reject(item.id, reason="not scrap, reusable")
    assert item.rejection_reason == "not scrap, reusable"

    assert scrap_service.reopen(item.id).status == "identified"
    assert item.qc_approval is False


# ═════════════════════════════════════════════════════════════════════════════
# 3. PARALLEL GROUP PATH
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_group_approval_advances_item(scrap_service):
    item = _make_reported(scrap_service)
    group = scrap_service.open_approval_group(item.id, [21, 22, 23])
    assert group.mode == "all"

    for approver in (21, 22, 23):
        scrap_service.parallel.respond(group.id, approver, "approved")

    result = scrap_service.advance_from_group(item.id, group.id)
    assert result.status == "approved"
    assert item.all_gates_approved
    assert result.extras["group"]["status"] == "approved"


@pytest.mark.unit
def test_group_rejection_rejects_item(scrap_service):
    item = _make_reported(scrap_service)
    group = scrap_service.open_approval_group(item.id, [21, 22])
    scrap_service.parallel.respond(group.id, 22, "rejected")
    assert scrap_service.advance_from_group(item.id, group.id).status == "rejected"


@pytest.mark.unit
def test_pending_group_cannot_advance(scrap_service):
    item = _make_reported(scrap_service)
    group = scrap_service.open_approval_group(item.id, [21, 22])
    scrap_service.parallel.respond(group.id, 21, "approved")
    with pytest.raises(BusinessRuleError) as exc_info:
        scrap_service.advance_from_group(item.id, group.id)
    assert exc_info.value.rule_code == "SCRAP-V005"


@pytest.mark.unit
def test_foreign_group_cannot_advance(scrap_service):
    item = _make_reported(scrap_service)
    other = _make_reported(scrap_service)
    group = scrap_service.open_approval_group(other.id, [21])
    scrap_service.parallel.respond(group.id, 21, "approved")
    with pytest.raises(BusinessRuleError) as exc_info:
        scrap_service.advance_from_group(item.id, group.id)
    assert exc_info.value.rule_code == "SCRAP-V005"


@pytest.mark.unit
def test_group_requires_reported(scrap_service):
    item = _make_item(scrap_service)
    with pytest.raises(BusinessRuleError):
        scrap_service.open_approval_group(item.id, [21])


@pytest.mark.unit
def test_respond_to_group_records_sign_off(scrap_service):
    item = _make_reported(scrap_service)
    group = scrap_service.open_approval_group(item.id, [21, 22])
    scrap_service.respond_to_group(item.id, group.id, 21, "approved")
    group = scrap_service.respond_to_group(item.id, group.id, 22, "approved")
    assert group.status == "approved"
    assert group.response_count == 2
    assert scrap_service.advance_from_group(item.id, group.id).status == "approved"


@pytest.mark.unit
def test_simultaneous_last_sign_offs_raise_conflict(scrap_service):
    item = _make_reported(scrap_service)
    group = scrap_service.open_approval_group(item.id, [21, 22, 23])
    scrap_service.respond_to_group(item.id, group.id, 21, "approved")
    group = scrap_service.parallel.get_group(group.id)
    assert len(group.responses) == 1
    # approver 23 lands first from another worker
    _db.session.execute(
        text("UPDATE parallel_approval_groups SET version = version + 1 WHERE id = :id"),
        {"id": group.id},
    )

    with pytest.raises(ConflictError):
        scrap_service.respond_to_group(item.id, group.id, 22, "approved")
    _db.session.expire_all()
    reloaded = scrap_service.parallel.get_group(group.id)
    assert [r.approver_id for r in reloaded.responses] == [21]
    assert reloaded.status == "pending"


@pytest.mark.unit
def test_respond_to_foreign_group_is_refused(scrap_service):
    item = _make_reported(scrap_service)
    other = _make_reported(scrap_service)
    group = scrap_service.open_approval_group(other.id, [21])
    with pytest.raises(BusinessRuleError) as exc_info:
        scrap_service.respond_to_group(item.id, group.id, 21, "approved")
    assert exc_info.value.rule_code == "SCRAP-V005"


# ═════════════════════════════════════════════════════════════════════════════
# 4. DISPOSAL
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_sale_sets_pickup_deadline_and_sla(scrap_service, clock):
    item = _make_approved(scrap_service)
    scrap_service.send_to_ssc(item.id)
    result = scrap_service.mark_sold(item.id, buyer_name="Metal Recycling Co")

    assert result.status == "sold"
    assert as_utc(item.buyer_pickup_deadline) == clock.now() + timedelta(days=10)
    assert result.sla_record.kind == "buyer_pickup"
    assert result.sla_record.response_hours == 240

    clock.advance(days=7)
    result = scrap_service.close(item.id)
    assert result.status == "closed"
    assert result.sla_met is True


@pytest.mark.unit
def test_late_pickup_is_not_met(scrap_service, clock):
    item = _make_approved(scrap_service)
    scrap_service.send_to_ssc(item.id)
    scrap_service.mark_sold(item.id, buyer_name="Metal Recycling Co")
    clock.advance(days=11)
    assert scrap_service.close(item.id).sla_met is False


@pytest.mark.unit
def test_sale_needs_buyer(scrap_service):
    item = _make_approved(scrap_service)
    scrap_service.send_to_ssc(item.id)
    with pytest.raises(BusinessRuleError) as exc_info:
        scrap_service.mark_sold(item.id, buyer_name="")
    assert exc_info.value.rule_code == "SCRAP-V006"


@pytest.mark.unit
def test_dispose_then_close_has_no_sla(scrap_service):
    item = _make_approved(scrap_service)
    scrap_service.send_to_ssc(item.id)
    scrap_service.dispose(item.id)
    result = scrap_service.close(item.id)
    assert result.status == "closed"
    assert result.sla_met is None
    assert result.sla_record is None


@pytest.mark.unit
def test_ssc_requires_approval(scrap_service):
    item = _make_reported(scrap_service)
    with pytest.raises(InvalidTransitionError):
        scrap_service.send_to_ssc(item.id)
