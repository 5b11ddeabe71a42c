"""
Structured logging for the workflow engine.

Services log with ``extra=doc_extra(document_type, document_id, ...)``.
The JSON formatter turns those attributes into top-level fields; the
readable formatter folds them into a short ``[job_order#12 draft->pending_approval]``
prefix.

Environment:
    LOG_LEVEL   DEBUG / INFO / ... (default: DEBUG in dev, INFO in prod)
    LOG_FORMAT  json | readable    (default: json in prod, readable otherwise)
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Workflow attributes carried on log records via ``extra``
WORKFLOW_FIELDS = (
    "document_type",
    "document_id",
    "from_status",
    "to_status",
    "rule_code",
    "group_id",
    "approver_id",
    "sla_kind",
    "side_effect",
)


def doc_extra(document_type, document_id, **fields) -> dict:
    """Build the ``extra`` mapping for a log call about one document."""
    extra = {"document_type": document_type, "document_id": document_id}
    extra.update({k: v for k, v in fields.items() if v is not None})
    return extra


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update(
            (key, getattr(record, key)) for key in WORKFLOW_FIELDS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line format for development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def _context(record: logging.LogRecord) -> str:
        doc_type = getattr(record, "document_type", None)
        if doc_type is None:
            return ""
        parts = [f"{doc_type}#{getattr(record, 'document_id', '?')}"]
        src, dst = getattr(record, "from_status", None), getattr(record, "to_status", None)
        if src or dst:
            parts.append(f"{src}->{dst}")
        rule = getattr(record, "rule_code", None)
        if rule:
            parts.append(rule)
        return f" [{' '.join(parts)}]"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = (
            f"{color}{ts} {record.levelname:<8}{self.RESET} "
            f"{record.name}:{self._context(record)} {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    Production (not DEBUG, not TESTING) defaults to JSON; everything else
    defaults to the readable format.  LOG_FORMAT overrides the choice.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = os.getenv("LOG_FORMAT", "json" if is_prod else "readable").lower()
    formatter = JSONFormatter() if fmt == "json" else ReadableFormatter()

    root = logging.getLogger()
    # repeated create_app() calls in tests must not stack handlers
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("sqlalchemy.engine", "alembic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
