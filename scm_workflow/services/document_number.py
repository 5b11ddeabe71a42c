"""
Document number generator.

Format: ``{PREFIX}-{YYYY}-{seq}``, e.g. JO-2026-0007.  The sequence is the
count of existing numbers for that prefix and year, plus one.  Called once,
at document creation; numbers are never regenerated.
"""

from __future__ import annotations

from flask import current_app, has_app_context
from sqlalchemy import func, select

from scm_workflow.core.exceptions import ValidationError
from scm_workflow.models import db
from scm_workflow.models.job_order import JobOrder
from scm_workflow.models.material_requisition import MaterialRequisition
from scm_workflow.models.scrap import ScrapItem
from scm_workflow.models.shipment import GoodsReceipt, Shipment
from scm_workflow.services.clock import SystemClock
from scm_workflow.services.transition_guard import key_of

DOC_PREFIXES = {
    "job_order": "JO",
    "material_requisition": "MR",
    "scrap_item": "SCR",
    "shipment": "SH",
    "goods_receipt": "GRN",
}

_NUMBER_COLUMNS = {
    "job_order": JobOrder.jo_number,
    "material_requisition": MaterialRequisition.mr_number,
    "scrap_item": ScrapItem.scrap_number,
    "shipment": Shipment.shipment_number,
    "goods_receipt": GoodsReceipt.grn_number,
}


def generate_document_number(document_type, clock=None, padding: int | None = None) -> str:
    doc_type = key_of(document_type)
    prefix = DOC_PREFIXES.get(doc_type)
    if prefix is None:
        raise ValidationError(f"No number prefix for document type: {doc_type}")

    if padding is None:
        padding = current_app.config.get("DOCUMENT_NUMBER_PADDING", 4) if has_app_context() else 4

    year = (clock or SystemClock()).now().year
    stem = f"{prefix}-{year}-"
    column = _NUMBER_COLUMNS[doc_type]
    count = db.session.execute(
        select(func.count()).where(column.like(f"{stem}%"))
    ).scalar() or 0
    return f"{stem}{count + 1:0{padding}d}"
