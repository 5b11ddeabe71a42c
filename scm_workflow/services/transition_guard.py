"""
Transition Guard: static table of legal status moves per document type.

The per-type tables live next to their models (JO_TRANSITIONS,
MR_TRANSITIONS, ...).  ``TransitionTable`` freezes them into one immutable
value object that orchestrators receive explicitly; there is no module-level
mutable state to patch.

Usage:
    from scm_workflow.services.transition_guard import DEFAULT_TRANSITIONS

    DEFAULT_TRANSITIONS.assert_transition("job_order", "draft", "pending_approval")
    DEFAULT_TRANSITIONS.can_transition("scrap_item", "closed", "reported")   # False
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from collections.abc import Iterable, Mapping

from scm_workflow.core.exceptions import InvalidTransitionError, ValidationError
from scm_workflow.models.job_order import JO_TRANSITIONS
from scm_workflow.models.material_requisition import MR_TRANSITIONS
from scm_workflow.models.scrap import SCRAP_TRANSITIONS
from scm_workflow.models.shipment import GRN_TRANSITIONS, SHIPMENT_TRANSITIONS


class DocumentType(str, Enum):
    JOB_ORDER = "job_order"
    MATERIAL_REQUISITION = "material_requisition"
    SCRAP_ITEM = "scrap_item"
    SHIPMENT = "shipment"
    GOODS_RECEIPT = "goods_receipt"


def key_of(value) -> str:
    """Plain string for an enum member or a raw status string."""
    return value.value if isinstance(value, Enum) else str(value)


class TransitionTable:
    """Immutable ``(document_type, from_status) -> frozenset(to_status)`` lookup."""

    __slots__ = ("_table",)

    def __init__(self, graphs: Mapping[object, Mapping[object, Iterable[object]]]) -> None:
        table = {}
        for doc_type, graph in graphs.items():
            frozen = {key_of(src): frozenset(key_of(dst) for dst in dsts) for src, dsts in graph.items()}
            undeclared = set().union(*frozen.values()) - frozen.keys() if frozen else set()
            if undeclared:
                raise ValidationError(
                    f"Transition graph for {key_of(doc_type)} targets undeclared states",
                    details={"states": sorted(undeclared)},
                )
            table[key_of(doc_type)] = MappingProxyType(frozen)
        self._table = MappingProxyType(table)

    def __setattr__(self, name, value):
        if hasattr(self, "_table"):
            raise AttributeError("TransitionTable is immutable")
        object.__setattr__(self, name, value)

    def _graph(self, document_type):
        graph = self._table.get(key_of(document_type))
        if graph is None:
            raise ValidationError(f"Unknown document type: {key_of(document_type)}")
        return graph

    def document_types(self) -> list[str]:
        return sorted(self._table)

    def statuses(self, document_type) -> frozenset[str]:
        return frozenset(self._graph(document_type))

    def successors(self, document_type, from_status) -> frozenset[str]:
        graph = self._graph(document_type)
        status = key_of(from_status)
        if status not in graph:
            raise ValidationError(
                f"Unknown status '{status}' for {key_of(document_type)}",
                details={"status": status},
            )
        return graph[status]

    def is_terminal(self, document_type, status) -> bool:
        return not self.successors(document_type, status)

    def can_transition(self, document_type, from_status, to_status) -> bool:
        try:
            return key_of(to_status) in self.successors(document_type, from_status)
        except ValidationError:
            return False

    def assert_transition(self, document_type, from_status, to_status) -> None:
        """Return silently if legal, else raise InvalidTransitionError naming the pair."""
        graph = self._graph(document_type)
        allowed = graph.get(key_of(from_status), frozenset())
        if key_of(to_status) not in allowed:
            raise InvalidTransitionError(
                key_of(document_type), key_of(from_status), key_of(to_status), tuple(allowed),
            )


DEFAULT_TRANSITIONS = TransitionTable({
    DocumentType.JOB_ORDER: JO_TRANSITIONS,
    DocumentType.MATERIAL_REQUISITION: MR_TRANSITIONS,
    DocumentType.SCRAP_ITEM: SCRAP_TRANSITIONS,
    DocumentType.SHIPMENT: SHIPMENT_TRANSITIONS,
    DocumentType.GOODS_RECEIPT: GRN_TRANSITIONS,
})
