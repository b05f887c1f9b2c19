"""
Logging setup for the EmoJournal backend.

Call ``setup_logging()`` once from the application factory. Modules then
log through ``logging.getLogger("emojournal.<component>")``.
Production gets one JSON object per line (what Render's log viewer
indexes); everywhere else gets a readable single-line format.
"""

import json
import logging
import sys
from datetime import datetime, timezone

ROOT_LOGGER = "emojournal"

_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName",
}


class JSONFormatter(logging.Formatter):
    """Formats records as JSON, carrying any ``extra=`` fields along."""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                log_entry[key] = value
            except (TypeError, ValueError):
                log_entry[key] = str(value)

        return json.dumps(log_entry)


def setup_logging(level="INFO", json_output=False):
    """Attach a stdout handler to the ``emojournal`` logger tree."""
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )

    logger = logging.getLogger(ROOT_LOGGER)
    # Re-running the factory (tests) must not stack handlers.
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(log_level)
    logger.propagate = True
    return logger
