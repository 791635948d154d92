"""
Logging setup for the API and the batch runner.

Modules log through `logging.getLogger(__name__)` and pass structured
context with `extra={...}`; this formatter appends that context to the line.
"""
import logging
import os
from typing import Optional

# Attributes every LogRecord has; anything else came from `extra`
_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class ContextFormatter(logging.Formatter):
    """Formatter that renders `extra` fields as key=value pairs"""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = {
            key: value for key, value in vars(record).items()
            if key not in _RESERVED_ATTRS
        }
        if context:
            rendered = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
            line = f"{line} | {rendered}"
        return line


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure the root logger once.

    Args:
        level: Log level name; defaults to LOG_LEVEL env var or INFO
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger()
    root.setLevel(level_name)

    if any(getattr(h, "_eduguard", False) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(ContextFormatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    ))
    handler._eduguard = True
    root.addHandler(handler)
