"""
Logging setup for the workflow services.

Services log through ``logging.getLogger(__name__)`` and attach the idea
they act on via ``extra=`` (see ``WORKFLOW_FIELDS``). Two renderings:

    readable  colored one-liners with an ``[idea=7 stage=2]`` prefix
    json      one JSON object per line for log shipping

``LOG_FORMAT`` (readable | json) picks one explicitly; otherwise debug and
testing apps get readable output and everything else JSON. ``LOG_LEVEL``
sets the threshold.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

WORKFLOW_FIELDS = (
    "idea_id",
    "workflow_id",
    "old_workflow_id",
    "stage",
    "from_stage",
    "to_stage",
    "actor_id",
    "action",
    "template",
    "recipients",
)

# Shown inline by the readable formatter, in this order
_INLINE_FIELDS = ("idea_id", "stage", "action")


def _workflow_context(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in WORKFLOW_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(_workflow_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        ctx = _workflow_context(record)
        inline = " ".join(f"{k.removesuffix('_id')}={ctx[k]}" for k in _INLINE_FIELDS if k in ctx)
        prefix = f" [{inline}]" if inline else ""
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}:{prefix} {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger for *app*.

    Existing root handlers are replaced, so building several apps in one
    process (the test suite does) never duplicates output.
    """
    is_testing = app.config.get("TESTING", False)
    readable_default = app.config.get("DEBUG", False) or is_testing
    fmt = os.getenv("LOG_FORMAT", "readable" if readable_default else "json").lower()

    level_name = os.getenv("LOG_LEVEL", "DEBUG" if readable_default else "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # SQL echo stays off unless asked for
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
