"""
Document orchestrator base.

Each document type gets a subclass that composes the transition guard, SLA
tracker and approval coordinators around its own business rules.  Every
transition follows the same steps:

    1. load the document           (NotFoundError)
    2. guard the (from, to) pair   (InvalidTransitionError)
    3. check type preconditions    (BusinessRuleError with a rule code)
    4. SLA / approval side effects
    5. persist status + derived fields in ONE commit
    6. return a TransitionResult

``unit_of_work`` gives step 5 its all-or-nothing behaviour: any exception,
a stale version or duplicate key (ConflictError) or a fired cancellation
token rolls back the status move together with its SLA and approval rows.

Best-effort side effects (``run_best_effort``) run after the primary commit.
Their failures are logged and reported as a SideEffectOutcome; they never
undo or fail the primary transition.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from scm_workflow.config import Config
from scm_workflow.core.exceptions import (
    ConflictError,
    NotFoundError,
    OperationCancelledError,
)
from scm_workflow.middleware.logging_config import doc_extra
from scm_workflow.models import db
from scm_workflow.services.approval_service import SequentialApprovalCoordinator
from scm_workflow.services.clock import SystemClock
from scm_workflow.services.parallel_approval_service import ParallelApprovalCoordinator
from scm_workflow.services.sla_service import SlaTracker
from scm_workflow.services.transition_guard import DEFAULT_TRANSITIONS, key_of

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Result types
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class SideEffectOutcome:
    """Fire-and-forget result, kept apart from the primary transition result."""

    name: str
    ok: bool
    error: str | None = None

    def to_dict(self) -> dict:
        return {"name": self.name, "ok": self.ok, "error": self.error}


@dataclass
class TransitionResult:
    document: Any
    from_status: str | None = None
    to_status: str | None = None
    sla_met: bool | None = None
    sla_record: Any = None
    approval: Any = None
    side_effects: list[SideEffectOutcome] = field(default_factory=list)
    extras: dict = field(default_factory=dict)

    @property
    def status(self) -> str:
        return self.document.status

    def to_dict(self) -> dict:
        return {
            "document": self.document.to_dict(),
            "from_status": self.from_status,
            "to_status": self.to_status,
            "sla_met": self.sla_met,
            "sla": self.sla_record.to_dict() if self.sla_record is not None else None,
            "approval": self.approval.to_dict() if self.approval is not None else None,
            "side_effects": [s.to_dict() for s in self.side_effects],
            **self.extras,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Unit of work
# ═════════════════════════════════════════════════════════════════════════════


@contextmanager
def unit_of_work(operation: str, cancel_token=None, resource: str = "Document"):
    """Commit everything done inside the block, or nothing.

    ``cancel_token`` is anything with ``is_set()`` (e.g. threading.Event).
    It is checked on entry and again just before commit.
    """
    if cancel_token is not None and cancel_token.is_set():
        raise OperationCancelledError(operation)
    try:
        yield db.session
        if cancel_token is not None and cancel_token.is_set():
            raise OperationCancelledError(operation)
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Concurrent modification during %s", operation)
        raise ConflictError(resource, "version") from exc
    except IntegrityError as exc:
        # e.g. two creates drew the same document number
        db.session.rollback()
        logger.warning("Unique constraint hit during %s: %s", operation, exc.orig)
        raise ConflictError(resource, "unique", str(exc.orig)) from exc
    except Exception as exc:
        db.session.rollback()
        logger.info("%s rolled back: %s", operation, exc,
                    extra={"rule_code": getattr(exc, "rule_code", None)})
        raise


# ═════════════════════════════════════════════════════════════════════════════
# Base orchestrator
# ═════════════════════════════════════════════════════════════════════════════


class DocumentOrchestrator:
    """Shared plumbing for the per-type orchestrators."""

    document_type: str = ""
    model = None

    def __init__(
        self,
        *,
        transitions=None,
        clock=None,
        sla=None,
        approvals=None,
        parallel=None,
        settings: dict | None = None,
    ) -> None:
        self.transitions = transitions or DEFAULT_TRANSITIONS
        self.clock = clock or SystemClock()
        self.sla = sla or SlaTracker(self.clock)
        self.approvals = approvals or SequentialApprovalCoordinator(self.clock)
        self.parallel = parallel or ParallelApprovalCoordinator(self.clock)
        self._settings = settings or {}

    # ── Settings ─────────────────────────────────────────────────────────

    def setting(self, key: str):
        """Explicit override, else Flask app config, else the Config default."""
        if key in self._settings:
            return self._settings[key]
        if has_app_context() and key in current_app.config:
            return current_app.config[key]
        return getattr(Config, key)

    # ── Steps ────────────────────────────────────────────────────────────

    def _load(self, document_id: int):
        doc = db.session.get(self.model, document_id)
        if doc is None:
            raise NotFoundError(self.model.__name__, document_id)
        return doc

    def _guard(self, doc, to_status) -> None:
        self.transitions.assert_transition(self.document_type, doc.status, to_status)

    def _move(self, doc, to_status) -> str:
        """Guard and apply a status change.  Returns the previous status."""
        self._guard(doc, to_status)
        previous = doc.status
        doc.status = key_of(to_status)
        logger.info(
            "Transition %s -> %s", previous, doc.status,
            extra=doc_extra(self.document_type, doc.id, from_status=previous, to_status=doc.status),
        )
        return previous

    def _uow(self, operation: str, cancel_token=None):
        return unit_of_work(
            f"{self.document_type}.{operation}", cancel_token,
            resource=self.model.__name__ if self.model is not None else "Document",
        )

    def _transition(self, document_id: int, to_status, operation: str, cancel_token=None,
                    apply: Callable | None = None) -> TransitionResult:
        """Load, guard, apply the per-op mutation and commit in one unit of work."""
        with self._uow(operation, cancel_token):
            doc = self._load(document_id)
            self._guard(doc, to_status)
            result = TransitionResult(document=doc, from_status=doc.status, to_status=key_of(to_status))
            if apply is not None:
                apply(doc, result)
            self._move(doc, to_status)
        return result

    def run_best_effort(self, name: str, fn: Callable[[], Any], document_id: int | None = None) -> SideEffectOutcome:
        """Run a secondary update in its own transaction; never raises."""
        try:
            fn()
            db.session.commit()
        except Exception as exc:
            db.session.rollback()
            logger.warning(
                "Best-effort side effect '%s' failed: %s", name, exc,
                exc_info=True,
                extra=doc_extra(self.document_type, document_id, side_effect=name),
            )
            return SideEffectOutcome(name=name, ok=False, error=str(exc))
        return SideEffectOutcome(name=name, ok=True)

    # ── Reads ────────────────────────────────────────────────────────────

    def get(self, document_id: int):
        return self._load(document_id)
