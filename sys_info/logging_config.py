"""
Logging setup for both the operator tools and the remote agent.

Logs always go to stderr. Standard output carries report text only, so a
dispatcher can stream it back verbatim.
"""

import json
import logging
import socket
import sys
from datetime import datetime, timezone
from typing import Optional


class StructuredFormatter(logging.Formatter):
    """
    JSON-lines formatter.

    One JSON object per record, with the host name attached so logs from
    several managed hosts can be told apart once aggregated.
    """

    _skip_fields = {
        'name', 'msg', 'args', 'created', 'filename', 'funcName',
        'levelname', 'levelno', 'lineno', 'module', 'msecs',
        'pathname', 'process', 'processName', 'relativeCreated',
        'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
        'message', 'asctime', 'taskName',
    }

    def __init__(self, host: Optional[str] = None):
        super().__init__()
        self.host = host or socket.gethostname()

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "host": self.host,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self._skip_fields
        }
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str)


def setup_logging(level: int = logging.WARNING, json_format: bool = False) -> None:
    """Configure the root logger once per process."""
    handler = logging.StreamHandler(sys.stderr)
    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    # asyncssh logs every channel open at INFO
    logging.getLogger("asyncssh").setLevel(max(level, logging.WARNING))
