"""
Tests: SLA tracker start / pause / resume / evaluate with a frozen clock.

Covers:
    - due date = start + response hours
    - pause/resume shifts the deadline by the paused span; cycles add up
    - zero-length pause, resume without pause, double resume
    - AlreadyPausedError leaves the record untouched
    - evaluation boundary (exactly at due → met, one second later → not met)
    - met is immutable once evaluated
    - read-time overdue detection
    - close without a verdict for cancelled or rejected documents
"""

from datetime import timedelta

import pytest

from scm_workflow.core.exceptions import (
    AlreadyPausedError,
    BusinessRuleError,
    NotFoundError,
    ValidationError,
)
from scm_workflow.models import db as _db
from scm_workflow.services.clock import as_utc
from scm_workflow.services.sla_service import SlaTracker

DOC = "job_order"


@pytest.fixture()
def tracker(clock):
    return SlaTracker(clock)


# ═════════════════════════════════════════════════════════════════════════════
# 1. START
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_start_sets_due_date_from_response_hours(tracker, clock):
    rec = tracker.start(DOC, 1, 24)
    assert as_utc(rec.start_date) == clock.now()
    assert as_utc(rec.due_date) == clock.now() + timedelta(hours=24)
    assert rec.met is None
    assert rec.paused is False


@pytest.mark.unit
def test_start_rejects_negative_hours(tracker):
    with pytest.raises(ValidationError):
        tracker.start(DOC, 1, -1)


@pytest.mark.unit
def test_start_rejects_unknown_kind(tracker):
    with pytest.raises(ValidationError):
        tracker.start(DOC, 1, 4, kind="lunch_break")


@pytest.mark.unit
def test_restart_before_evaluation_resets_clock(tracker, clock):
    tracker.start(DOC, 1, 8)
    tracker.pause(DOC, 1, "waiting")
    clock.advance(hours=2)
    rec = tracker.start(DOC, 1, 4)
    assert as_utc(rec.due_date) == clock.now() + timedelta(hours=4)
    assert rec.paused is False
    assert rec.stop_clock_start is None
    assert rec.total_paused_seconds == 0


@pytest.mark.unit
def test_restart_after_evaluation_is_refused(tracker):
    tracker.start(DOC, 1, 8)
    tracker.evaluate(DOC, 1)
    with pytest.raises(BusinessRuleError) as exc_info:
        tracker.start(DOC, 1, 8)
    assert exc_info.value.rule_code == "SLA-V001"


@pytest.mark.unit
def test_kinds_are_tracked_independently(tracker):
    tracker.start(DOC, 1, 8)
    tracker.start(DOC, 1, 4, kind="stock_verification")
    assert tracker.get(DOC, 1).response_hours == 8
    assert tracker.get(DOC, 1, kind="stock_verification").response_hours == 4


# ═════════════════════════════════════════════════════════════════════════════
# 2. PAUSE / RESUME
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_pause_resume_shifts_due_by_paused_span(tracker, clock):
    rec = tracker.start(DOC, 1, 24)
    original_due = as_utc(rec.due_date)

    clock.advance(hours=3)
    tracker.pause(DOC, 1, "parts")
    clock.advance(hours=5, minutes=30)
    rec = tracker.resume(DOC, 1)

    assert as_utc(rec.due_date) == original_due + timedelta(hours=5, minutes=30)
    assert rec.paused is False
    assert as_utc(rec.stop_clock_end) == clock.now()
    assert rec.stop_clock_reason == "parts"


@pytest.mark.unit
def test_two_pause_cycles_accumulate(tracker, clock):
    rec = tracker.start(DOC, 1, 24)
    original_due = as_utc(rec.due_date)

    clock.advance(hours=1)
    tracker.pause(DOC, 1, "first")
    clock.advance(hours=2)
    tracker.resume(DOC, 1)

    clock.advance(hours=1)
    tracker.pause(DOC, 1, "second")
    clock.advance(minutes=45)
    rec = tracker.resume(DOC, 1)

    assert as_utc(rec.due_date) == original_due + timedelta(hours=2, minutes=45)
    assert rec.total_paused_seconds == pytest.approx(2 * 3600 + 45 * 60)


@pytest.mark.unit
def test_zero_length_pause_extends_by_nothing(tracker):
    rec = tracker.start(DOC, 1, 24)
    original_due = as_utc(rec.due_date)
    tracker.pause(DOC, 1)
    rec = tracker.resume(DOC, 1)
    assert as_utc(rec.due_date) == original_due


@pytest.mark.unit
def test_resume_without_pause_only_records_end(tracker, clock):
    rec = tracker.start(DOC, 1, 24)
    original_due = as_utc(rec.due_date)
    clock.advance(hours=1)
    rec = tracker.resume(DOC, 1)
    assert as_utc(rec.due_date) == original_due
    assert as_utc(rec.stop_clock_end) == clock.now()


@pytest.mark.unit
def test_double_resume_extends_once(tracker, clock):
    rec = tracker.start(DOC, 1, 24)
    original_due = as_utc(rec.due_date)
    tracker.pause(DOC, 1)
    clock.advance(hours=2)
    tracker.resume(DOC, 1)
    clock.advance(hours=2)
    rec = tracker.resume(DOC, 1)
    assert as_utc(rec.due_date) == original_due + timedelta(hours=2)


@pytest.mark.unit
def test_double_pause_raises_and_leaves_record_unchanged(tracker, clock):
    tracker.start(DOC, 1, 24)
    clock.advance(hours=1)
    rec = tracker.pause(DOC, 1, "parts")
    first_start = as_utc(rec.stop_clock_start)

    clock.advance(hours=1)
    with pytest.raises(AlreadyPausedError):
        tracker.pause(DOC, 1, "again")

    rec = tracker.get(DOC, 1)
    assert as_utc(rec.stop_clock_start) == first_start
    assert rec.stop_clock_reason == "parts"


@pytest.mark.unit
def test_pause_unknown_record_raises_not_found(tracker):
    with pytest.raises(NotFoundError):
        tracker.pause(DOC, 999, "nothing to pause")


@pytest.mark.unit
def test_pause_after_evaluation_is_refused(tracker):
    tracker.start(DOC, 1, 1)
    tracker.evaluate(DOC, 1)
    with pytest.raises(BusinessRuleError) as exc_info:
        tracker.pause(DOC, 1)
    assert exc_info.value.rule_code == "SLA-V002"


# ═════════════════════════════════════════════════════════════════════════════
# 3. EVALUATION
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_evaluate_exactly_at_due_is_met(tracker, clock):
    tracker.start(DOC, 1, 8)
    clock.advance(hours=8)
    assert tracker.evaluate(DOC, 1) is True


@pytest.mark.unit
def test_evaluate_one_second_late_is_not_met(tracker, clock):
    tracker.start(DOC, 1, 8)
    clock.advance(hours=8, seconds=1)
    assert tracker.evaluate(DOC, 1) is False


@pytest.mark.unit
def test_evaluate_against_adjusted_due(tracker, clock):
    tracker.start(DOC, 1, 8)
    clock.advance(hours=4)
    tracker.pause(DOC, 1)
    clock.advance(hours=10)
    tracker.resume(DOC, 1)
    clock.advance(hours=4)
    # 18h wall clock, 8h of active time
    assert tracker.evaluate(DOC, 1) is True


@pytest.mark.unit
def test_evaluate_while_paused_excludes_open_pause(tracker, clock):
    tracker.start(DOC, 1, 2)
    clock.advance(hours=1)
    tracker.pause(DOC, 1)
    clock.advance(hours=6)
    assert tracker.evaluate(DOC, 1) is True


@pytest.mark.unit
def test_met_is_immutable_once_set(tracker, clock):
    tracker.start(DOC, 1, 1)
    clock.advance(hours=2)
    assert tracker.evaluate(DOC, 1) is False
    clock.set(clock.now() - timedelta(hours=5))
    assert tracker.evaluate(DOC, 1) is False
    assert tracker.get(DOC, 1).met is False


@pytest.mark.unit
def test_evaluate_without_record_returns_none(tracker):
    assert tracker.evaluate(DOC, 42) is None


@pytest.mark.unit
def test_evaluation_persists_across_commit(tracker, clock):
    tracker.start(DOC, 1, 1)
    tracker.evaluate(DOC, 1)
    _db.session.commit()
    _db.session.expire_all()
    rec = tracker.get(DOC, 1)
    assert rec.met is True
    assert as_utc(rec.evaluated_at) == clock.now()


# ═════════════════════════════════════════════════════════════════════════════
# 4. READ-TIME BREACH
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_overdue_is_computed_at_read_time(tracker, clock):
    rec = tracker.start(DOC, 1, 4)
    assert tracker.is_overdue(rec) is False
    clock.advance(hours=4, seconds=1)
    assert tracker.is_overdue(rec) is True


@pytest.mark.unit
def test_paused_record_is_not_overdue_while_stopped(tracker, clock):
    rec = tracker.start(DOC, 1, 4)
    clock.advance(hours=1)
    tracker.pause(DOC, 1)
    clock.advance(hours=10)
    assert tracker.is_overdue(rec) is False
    assert tracker.remaining(rec) == timedelta(hours=3)


@pytest.mark.unit
def test_list_overdue_returns_only_breached_running_records(tracker, clock):
    tracker.start(DOC, 1, 1)
    tracker.start(DOC, 2, 10)
    tracker.start("shipment", 3, 1, kind="delivery")
    tracker.start(DOC, 4, 1)
    tracker.evaluate(DOC, 4)
    clock.advance(hours=2)

    overdue = tracker.list_overdue()
    assert {(r.document_type, r.document_id) for r in overdue} == {(DOC, 1), ("shipment", 3)}
    assert [r.document_id for r in tracker.list_overdue(DOC)] == [1]


# ═════════════════════════════════════════════════════════════════════════════
# CLOSE
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_close_stops_every_open_clock_of_the_document(tracker, clock):
    tracker.start(DOC, 1, 8)
    tracker.start(DOC, 1, 2, kind="delivery")
    tracker.start(DOC, 2, 8)
    tracker.pause(DOC, 1, kind="delivery")

    closed = tracker.close(DOC, 1, "cancelled")
    _db.session.commit()
    assert sorted(r.kind for r in closed) == ["delivery", "response"]
    assert all(r.met is None and r.closed_reason == "cancelled" for r in closed)
    assert all(r.paused is False for r in closed)

    clock.advance(days=5)
    assert [r.document_id for r in tracker.list_overdue(DOC)] == [2]


@pytest.mark.unit
def test_close_leaves_evaluated_clock_alone(tracker, clock):
    tracker.start(DOC, 1, 8)
    clock.advance(hours=1)
    tracker.evaluate(DOC, 1)
    assert tracker.close(DOC, 1, "cancelled") == []
    rec = tracker.get(DOC, 1)
    assert rec.met is True
    assert rec.closed_reason is None


@pytest.mark.unit
def test_closed_clock_refuses_pause_but_can_restart(tracker, clock):
    tracker.start(DOC, 1, 8)
    tracker.close(DOC, 1, "rejected")
    with pytest.raises(BusinessRuleError) as exc_info:
        tracker.pause(DOC, 1)
    assert exc_info.value.rule_code == "SLA-V002"

    clock.advance(hours=3)
    rec = tracker.start(DOC, 1, 8)
    assert rec.closed_reason is None
    assert rec.evaluated_at is None
    assert as_utc(rec.due_date) == clock.now() + timedelta(hours=8)
