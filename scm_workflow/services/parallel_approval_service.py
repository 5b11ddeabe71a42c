"""
Parallel multi-party approval groups.

A group holds one slot per expected approver and resolves by policy:
    all:  approved once every slot approved; rejected on the first rejection
    any:  approved on the first approval; rejected once every slot rejected

Resolution is immediate and final.  Responses to a resolved group raise
GroupResolvedError, so a late "approve" can never flip a rejected group.

Like the SLA tracker, this service flushes but does not commit; the caller's
unit of work owns the transaction.  Every response also updates the group
row, so two approvers answering at once collide on the group's version and
the later commit fails with StaleDataError instead of leaving the group
pending with every slot filled.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from scm_workflow.core.exceptions import (
    AlreadyRespondedError,
    BusinessRuleError,
    GroupResolvedError,
    NotFoundError,
    ValidationError,
)
from scm_workflow.middleware.logging_config import doc_extra
from scm_workflow.models import db
from scm_workflow.models.workflow import (
    APPROVAL_MODES,
    RESPONSE_DECISIONS,
    ParallelApprovalGroup,
    ParallelApprovalResponse,
)
from scm_workflow.services.clock import SystemClock
from scm_workflow.services.transition_guard import key_of

logger = logging.getLogger(__name__)


def _normalise_decision(decision) -> str:
    if isinstance(decision, bool):
        return "approved" if decision else "rejected"
    decision = str(decision).lower()
    if decision not in RESPONSE_DECISIONS:
        raise ValidationError(
            f"decision must be one of {sorted(RESPONSE_DECISIONS)}",
            details={"decision": decision},
        )
    return decision


def resolve_status(mode: str, expected: list[int], responses: dict[int, str]) -> str:
    """Pure resolution rule for a group given its current responses."""
    approvals = sum(1 for d in responses.values() if d == "approved")
    rejections = sum(1 for d in responses.values() if d == "rejected")

    if mode == "all":
        if rejections:
            return "rejected"
        if approvals == len(expected):
            return "approved"
        return "pending"

    # any
    if approvals:
        return "approved"
    if rejections == len(expected):
        return "rejected"
    return "pending"


class ParallelApprovalCoordinator:

    def __init__(self, clock=None) -> None:
        self.clock = clock or SystemClock()

    def create_group(self, document_type, document_id: int, level: int, mode: str,
                     approver_ids: list[int]) -> ParallelApprovalGroup:
        if mode not in APPROVAL_MODES:
            raise ValidationError(f"mode must be one of {sorted(APPROVAL_MODES)}", details={"mode": mode})

        # keep first occurrence order, drop duplicates
        slots = list(dict.fromkeys(approver_ids or []))
        if not slots:
            raise ValidationError("At least one approver is required", details={"approver_ids": approver_ids})

        group = ParallelApprovalGroup(
            document_type=key_of(document_type),
            document_id=document_id,
            approval_level=level,
            mode=mode,
            status="pending",
            expected_approvers=slots,
            response_count=0,
            created_at=self.clock.now(),
        )
        db.session.add(group)
        db.session.flush()

        logger.info(
            "Parallel approval group created (%s, %d approvers)", mode, len(slots),
            extra=doc_extra(group.document_type, document_id, group_id=group.id),
        )
        return group

    def get_group(self, group_id: int) -> ParallelApprovalGroup:
        group = db.session.get(ParallelApprovalGroup, group_id)
        if group is None:
            raise NotFoundError("ParallelApprovalGroup", group_id)
        return group

    def respond(self, group_id: int, approver_id: int, decision, comments: str | None = None) -> ParallelApprovalGroup:
        group = self.get_group(group_id)
        if group.status != "pending":
            raise GroupResolvedError(group_id, group.status)
        if approver_id not in (group.expected_approvers or []):
            raise BusinessRuleError(
                f"Approver {approver_id} is not part of approval group {group_id}",
                rule_code="PAR-V002",
            )
        if any(r.approver_id == approver_id for r in group.responses):
            raise AlreadyRespondedError(group_id, approver_id)

        now = self.clock.now()
        response = ParallelApprovalResponse(
            approver_id=approver_id,
            decision=_normalise_decision(decision),
            comments=comments,
            decided_at=now,
        )
        group.responses.append(response)
        group.response_count = (group.response_count or 0) + 1

        answered = {r.approver_id: r.decision for r in group.responses}
        new_status = resolve_status(group.mode, list(group.expected_approvers), answered)
        if new_status != "pending":
            group.status = new_status
            group.resolved_at = now
            logger.info(
                "Parallel approval group resolved: %s", new_status,
                extra=doc_extra(group.document_type, group.document_id, group_id=group.id, approver_id=approver_id),
            )
        db.session.flush()
        return group

    def status(self, group_id: int) -> str:
        return self.get_group(group_id).status

    def get_group_status(self, group_id: int) -> dict:
        """Status summary with response counts, for dashboards and callers."""
        group = self.get_group(group_id)
        answered = {r.approver_id for r in group.responses}
        return {
            "group_id": group.id,
            "document_type": group.document_type,
            "document_id": group.document_id,
            "mode": group.mode,
            "status": group.status,
            "total_approvers": len(group.expected_approvers or []),
            "approved": sum(1 for r in group.responses if r.decision == "approved"),
            "rejected": sum(1 for r in group.responses if r.decision == "rejected"),
            "pending_approvers": [a for a in group.expected_approvers if a not in answered],
            "responses": [r.to_dict() for r in group.responses],
        }

    def pending_for_approver(self, approver_id: int) -> list[ParallelApprovalGroup]:
        """Open groups where ``approver_id`` still owes a response."""
        stmt = (
            select(ParallelApprovalGroup)
            .where(ParallelApprovalGroup.status == "pending")
            .order_by(ParallelApprovalGroup.created_at, ParallelApprovalGroup.id)
        )
        groups = db.session.execute(stmt).scalars().all()
        return [
            g for g in groups
            if approver_id in (g.expected_approvers or [])
            and all(r.approver_id != approver_id for r in g.responses)
        ]

    def groups_for_document(self, document_type, document_id: int) -> list[ParallelApprovalGroup]:
        stmt = (
            select(ParallelApprovalGroup)
            .where(
                ParallelApprovalGroup.document_type == key_of(document_type),
                ParallelApprovalGroup.document_id == document_id,
            )
            .order_by(ParallelApprovalGroup.id)
        )
        return list(db.session.execute(stmt).scalars().all())
