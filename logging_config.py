"""
Structured logging for the quote service.
Call setup_logging() once at startup; modules log through
logging.getLogger("quotedesk.<area>").

Request and quote context travels in `extra=` and lands as top-level keys in
JSON lines, or as a trailing [key=value ...] suffix on the console.
"""
import logging
import logging.handlers
import os
import json
from datetime import datetime, timezone

from src.core.paths import LOG_DIR

# extra= keys promoted into the log output
CONTEXT_FIELDS = ("route", "method", "status", "duration_ms", "stage",
                  "format", "quote_file", "items", "total")

LOG_FILENAME = "quotedesk.log"


def _context(record) -> dict:
    return {k: getattr(record, k) for k in CONTEXT_FIELDS if hasattr(record, k)}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for the rotating file and log shippers."""
    def format(self, record):
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(_context(record))
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class HumanFormatter(logging.Formatter):
    """Colored console lines for local runs."""
    COLORS = {
        "DEBUG": "\033[36m", "INFO": "\033[32m",
        "WARNING": "\033[33m", "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def format(self, record):
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{ts} [{record.levelname[0]}] {record.name}: {record.getMessage()}"
        ctx = _context(record)
        if ctx:
            line += " [" + " ".join(f"{k}={v}" for k, v in ctx.items()) + "]"
        if self.color:
            line = f"{self.COLORS.get(record.levelname, '')}{line}{self.RESET}"
        if record.exc_info and record.exc_info[0]:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level=None, json_logs=None, log_dir=None):
    """
    Configure the root logger.

    Args:
        level: LOG_LEVEL env, INFO when unset
        json_logs: JSON on the console too; QUOTEDESK_JSON_LOGS env when None
        log_dir: where quotedesk.log rotates (DATA_DIR/logs by default)
    """
    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO")
    if json_logs is None:
        json_logs = bool(os.environ.get("QUOTEDESK_JSON_LOGS"))
    log_dir = log_dir or LOG_DIR

    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    root.handlers.clear()

    console = logging.StreamHandler()
    console.setFormatter(JSONFormatter() if json_logs else HumanFormatter())
    root.addHandler(console)

    # 5MB x 5 backups
    file_path = None
    try:
        os.makedirs(log_dir, exist_ok=True)
        file_path = os.path.join(log_dir, LOG_FILENAME)
        fh = logging.handlers.RotatingFileHandler(file_path, maxBytes=5_000_000,
                                                  backupCount=5, encoding="utf-8")
        fh.setFormatter(JSONFormatter())
        root.addHandler(fh)
    except OSError as e:
        file_path = None
        logging.getLogger("quotedesk").warning("File logging disabled: %s", e)

    for name in ("urllib3", "werkzeug", "PIL", "reportlab"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("quotedesk").info("Logging initialized (%s)", "json" if json_logs else "console",
                                        extra={"stage": "startup"})
    return file_path
