"""
Sequential, amount-escalated approval.

Routing picks the single ApprovalWorkflowRule whose [min_amount, max_amount)
range contains the document amount.  A gap is a configuration error and
surfaces as NoMatchingRuleError; it is never papered over with a default
approver.  Overlapping rules raise RuleConfigurationError for the same reason.

Decisions are appended to ApprovalRecord and never edited.

Usage:
    coordinator = SequentialApprovalCoordinator(clock)
    route = coordinator.route_for_approval("job_order", 5000)
    # -> ApprovalRoute(level=2, approver_role="manager", sla_hours=8.0, ...)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select

from scm_workflow.core.exceptions import (
    NoMatchingRuleError,
    RuleConfigurationError,
    ValidationError,
)
from scm_workflow.middleware.logging_config import doc_extra
from scm_workflow.models import db
from scm_workflow.models.workflow import ApprovalRecord, ApprovalWorkflowRule
from scm_workflow.services.clock import SystemClock
from scm_workflow.services.transition_guard import key_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalRoute:
    """Outcome of routing: who must approve and how long they have."""

    level: int
    approver_role: str
    sla_hours: float
    label: str | None = None
    rule_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "approver_role": self.approver_role,
            "sla_hours": self.sla_hours,
            "label": self.label,
            "rule_id": self.rule_id,
        }


def _rules_for(document_type) -> list[ApprovalWorkflowRule]:
    stmt = (
        select(ApprovalWorkflowRule)
        .where(ApprovalWorkflowRule.document_type == key_of(document_type))
        .order_by(ApprovalWorkflowRule.min_amount, ApprovalWorkflowRule.id)
    )
    return list(db.session.execute(stmt).scalars().all())


def validate_rules(document_type) -> list[str]:
    """Describe every gap or overlap in a document type's ranges.

    Returns an empty list for a clean partition of [0, inf).
    """
    rules = _rules_for(document_type)
    problems = []
    if not rules:
        return [f"no rules configured for {key_of(document_type)}"]

    if rules[0].min_amount > 0:
        problems.append(f"gap [0, {rules[0].min_amount})")

    for prev, cur in zip(rules, rules[1:]):
        if prev.max_amount is None:
            problems.append(f"overlap: rule {prev.id} is unbounded but rule {cur.id} starts at {cur.min_amount}")
        elif cur.min_amount > prev.max_amount:
            problems.append(f"gap [{prev.max_amount}, {cur.min_amount})")
        elif cur.min_amount < prev.max_amount:
            problems.append(f"overlap [{cur.min_amount}, {prev.max_amount}) between rules {prev.id} and {cur.id}")

    if rules[-1].max_amount is not None:
        problems.append(f"gap [{rules[-1].max_amount}, inf)")
    return problems


class SequentialApprovalCoordinator:
    """Routes documents to an approver level and records decisions."""

    def __init__(self, clock=None) -> None:
        self.clock = clock or SystemClock()

    def route_for_approval(self, document_type, amount: float | None) -> ApprovalRoute:
        if amount is None:
            raise ValidationError("amount is required for approval routing", details={"amount": None})
        if amount < 0:
            raise ValidationError("amount must not be negative", details={"amount": amount})

        matches = [r for r in _rules_for(document_type) if r.contains(amount)]
        if not matches:
            logger.warning(
                "No approval rule covers amount %s", amount,
                extra=doc_extra(key_of(document_type), None),
            )
            raise NoMatchingRuleError(key_of(document_type), amount)
        if len(matches) > 1:
            raise RuleConfigurationError(
                key_of(document_type),
                [f"amount {amount} matches rules {[r.id for r in matches]}"],
            )

        rule = matches[0]
        return ApprovalRoute(
            level=rule.level,
            approver_role=rule.approver_role,
            sla_hours=rule.sla_hours,
            label=rule.label,
            rule_id=rule.id,
        )

    def decide(
        self,
        document_type,
        document_id: int,
        approver_id: int,
        approved: bool,
        *,
        level: int = 1,
        quote_amount: float | None = None,
        comments: str | None = None,
        within_sla: bool | None = None,
    ) -> ApprovalRecord:
        """Append a decision.  Moving the document is the orchestrator's job.

        ``within_sla`` is the caller's read of the running response deadline
        (SlaTracker.within_sla) at decision time.
        """
        if quote_amount is not None and quote_amount < 0:
            raise ValidationError("quote_amount must not be negative", details={"quote_amount": quote_amount})

        now = self.clock.now()

        record = ApprovalRecord(
            document_type=key_of(document_type),
            document_id=document_id,
            approver_id=approver_id,
            approved=bool(approved),
            level=level,
            quote_amount=quote_amount,
            comments=comments,
            within_sla=within_sla,
            decided_at=now,
        )
        db.session.add(record)
        db.session.flush()

        logger.info(
            "Approval decision recorded: %s", "approved" if approved else "rejected",
            extra=doc_extra(record.document_type, document_id, approver_id=approver_id),
        )
        return record

    def history(self, document_type, document_id: int) -> list[ApprovalRecord]:
        stmt = (
            select(ApprovalRecord)
            .where(
                ApprovalRecord.document_type == key_of(document_type),
                ApprovalRecord.document_id == document_id,
            )
            .order_by(ApprovalRecord.decided_at, ApprovalRecord.id)
        )
        return list(db.session.execute(stmt).scalars().all())
