"""
SLA Tracker: deadline clocks with stop-clock (pause / resume) support.

One SlaRecord per (document_type, document_id, kind).  All arithmetic is on
absolute timestamps: resume advances ``due_date`` by the wall-clock span of
the pause, so several pause/resume cycles add up without an elapsed counter.

Breach is never pushed.  ``is_overdue`` / ``list_overdue`` compute it at read
time against the injected clock; alerting is left to whoever polls them.

The tracker only adds and flushes.  The calling orchestrator owns the
transaction, so SLA changes commit (or roll back) together with the status move.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select

from scm_workflow.core.exceptions import (
    AlreadyPausedError,
    BusinessRuleError,
    NotFoundError,
    ValidationError,
)
from scm_workflow.middleware.logging_config import doc_extra
from scm_workflow.models import db
from scm_workflow.models.workflow import SLA_KINDS, SlaRecord
from scm_workflow.services.clock import SystemClock, as_utc
from scm_workflow.services.transition_guard import key_of

logger = logging.getLogger(__name__)


class SlaTracker:
    """Start, pause, resume and evaluate document deadlines."""

    def __init__(self, clock=None) -> None:
        self.clock = clock or SystemClock()

    # ── Lookup ───────────────────────────────────────────────────────────

    def get(self, document_type, document_id: int, kind: str = "response") -> SlaRecord | None:
        stmt = select(SlaRecord).where(
            SlaRecord.document_type == key_of(document_type),
            SlaRecord.document_id == document_id,
            SlaRecord.kind == kind,
        )
        return db.session.execute(stmt).scalar_one_or_none()

    def require(self, document_type, document_id: int, kind: str = "response") -> SlaRecord:
        record = self.get(document_type, document_id, kind)
        if record is None:
            raise NotFoundError("SlaRecord", f"{key_of(document_type)}/{document_id}/{kind}")
        return record

    # ── Mutations ────────────────────────────────────────────────────────

    def start(self, document_type, document_id: int, response_hours: float,
              kind: str = "response") -> SlaRecord:
        """Start the clock: start_date = now, due_date = now + response_hours.

        Restarting a record that was never evaluated resets it (a document
        re-submitted after rejection gets a fresh clock), and so does one
        stopped by ``close``.  A record whose ``met`` is already final
        cannot be restarted.
        """
        if kind not in SLA_KINDS:
            raise ValidationError(f"Unknown SLA kind: {kind}", details={"kind": kind})
        if response_hours is None or response_hours < 0:
            raise ValidationError("response_hours must be zero or positive",
                                  details={"response_hours": response_hours})

        now = self.clock.now()
        record = self.get(document_type, document_id, kind)
        if record is None:
            record = SlaRecord(document_type=key_of(document_type), document_id=document_id, kind=kind)
            db.session.add(record)
        elif record.evaluated_at is not None and record.closed_reason is None:
            raise BusinessRuleError(
                f"{kind} SLA for {key_of(document_type)} {document_id} was already evaluated",
                rule_code="SLA-V001",
            )

        record.start_date = now
        record.due_date = now + timedelta(hours=response_hours)
        record.response_hours = response_hours
        record.paused = False
        record.stop_clock_start = None
        record.stop_clock_end = None
        record.stop_clock_reason = None
        record.total_paused_seconds = 0.0
        record.met = None
        record.evaluated_at = None
        record.closed_reason = None
        db.session.flush()

        logger.info(
            "SLA started",
            extra=doc_extra(record.document_type, document_id, sla_kind=kind),
        )
        return record

    def pause(self, document_type, document_id: int, reason: str | None = None,
              kind: str = "response") -> SlaRecord:
        """Stop the clock.  Pausing twice raises AlreadyPausedError and changes nothing."""
        record = self.require(document_type, document_id, kind)
        self._ensure_open(record)
        if record.paused:
            raise AlreadyPausedError(record.document_type, document_id, kind)

        record.paused = True
        record.stop_clock_start = self.clock.now()
        record.stop_clock_end = None
        record.stop_clock_reason = reason
        db.session.flush()

        logger.info(
            "SLA paused: %s", reason or "-",
            extra=doc_extra(record.document_type, document_id, sla_kind=kind),
        )
        return record

    def resume(self, document_type, document_id: int, kind: str = "response") -> SlaRecord:
        """Restart the clock and push due_date out by the paused span.

        Without an open pause this only stamps stop_clock_end, so a double
        resume never extends the deadline twice.
        """
        record = self.require(document_type, document_id, kind)
        self._ensure_open(record)
        now = self.clock.now()

        if record.paused and record.stop_clock_start is not None:
            paused_for = now - as_utc(record.stop_clock_start)
            if record.due_date is not None:
                record.due_date = as_utc(record.due_date) + paused_for
            record.total_paused_seconds = (record.total_paused_seconds or 0.0) + paused_for.total_seconds()
            logger.info(
                "SLA resumed after %.0fs", paused_for.total_seconds(),
                extra=doc_extra(record.document_type, document_id, sla_kind=kind),
            )
        else:
            logger.debug(
                "SLA resume without open pause; deadline unchanged",
                extra=doc_extra(record.document_type, document_id, sla_kind=kind),
            )

        record.paused = False
        record.stop_clock_end = now
        db.session.flush()
        return record

    def evaluate(self, document_type, document_id: int, kind: str = "response") -> bool | None:
        """Fix ``met`` at completion: now <= due_date, or None without a deadline.

        Idempotent: once evaluated, the stored value is returned unchanged.
        A record still paused is judged against its deadline plus the open pause.
        """
        record = self.get(document_type, document_id, kind)
        if record is None:
            return None
        if record.evaluated_at is not None:
            return record.met

        now = self.clock.now()
        due = self.effective_due(record, now)
        record.met = None if due is None else now <= due
        record.evaluated_at = now
        db.session.flush()

        logger.info(
            "SLA evaluated: met=%s", record.met,
            extra=doc_extra(record.document_type, document_id, sla_kind=kind),
        )
        return record.met

    def close(self, document_type, document_id: int, reason: str) -> list[SlaRecord]:
        """Stop every open clock of a document without a verdict (met stays None).

        Used when the document is cancelled or rejected, so abandoned
        deadlines drop out of ``list_overdue``.
        """
        stmt = select(SlaRecord).where(
            SlaRecord.document_type == key_of(document_type),
            SlaRecord.document_id == document_id,
            SlaRecord.evaluated_at.is_(None),
        )
        records = list(db.session.execute(stmt).scalars().all())
        now = self.clock.now()
        for record in records:
            record.paused = False
            record.met = None
            record.evaluated_at = now
            record.closed_reason = reason
            logger.info(
                "SLA closed: %s", reason,
                extra=doc_extra(record.document_type, document_id, sla_kind=record.kind),
            )
        db.session.flush()
        return records

    # ── Read-time helpers ────────────────────────────────────────────────

    def effective_due(self, record: SlaRecord, now: datetime | None = None) -> datetime | None:
        """Deadline including any pause still open at ``now``."""
        if record.due_date is None:
            return None
        due = as_utc(record.due_date)
        if record.paused and record.stop_clock_start is not None:
            due = due + ((now or self.clock.now()) - as_utc(record.stop_clock_start))
        return due

    def within_sla(self, record: SlaRecord | None, now: datetime | None = None) -> bool | None:
        """Whether ``now`` is still inside the deadline, without persisting anything."""
        if record is None or record.due_date is None:
            return None
        now = now or self.clock.now()
        return now <= self.effective_due(record, now)

    def is_overdue(self, record: SlaRecord, now: datetime | None = None) -> bool:
        if record.evaluated_at is not None:
            return record.met is False
        if record.due_date is None:
            return False
        if record.paused:
            # stopped clock: overdue only if the deadline had passed before the pause
            return as_utc(record.stop_clock_start) > as_utc(record.due_date)
        return (now or self.clock.now()) > as_utc(record.due_date)

    def remaining(self, record: SlaRecord, now: datetime | None = None) -> timedelta | None:
        now = now or self.clock.now()
        due = self.effective_due(record, now)
        if due is None:
            return None
        return due - now

    def list_overdue(self, document_type=None) -> list[SlaRecord]:
        """Unevaluated records whose deadline has passed (see is_overdue for paused ones)."""
        now = self.clock.now()
        stmt = select(SlaRecord).where(
            SlaRecord.evaluated_at.is_(None),
            SlaRecord.due_date.is_not(None),
        )
        if document_type is not None:
            stmt = stmt.where(SlaRecord.document_type == key_of(document_type))
        rows = db.session.execute(stmt.order_by(SlaRecord.due_date)).scalars().all()
        return [r for r in rows if self.is_overdue(r, now)]

    # ── Internals ────────────────────────────────────────────────────────

    @staticmethod
    def _ensure_open(record: SlaRecord) -> None:
        if record.evaluated_at is not None:
            raise BusinessRuleError(
                f"{record.kind} SLA for {record.document_type} {record.document_id} is already closed",
                rule_code="SLA-V002",
            )
