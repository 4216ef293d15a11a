"""Logging setup — console or syslog, with a two-placeholder line format.

The line format takes exactly two ``%s`` placeholders: severity first,
message second (``"<%s>\\t%s"`` by default). Records below WARNING go to
stdout, the rest to stderr. With ``use_syslog`` the records go to the local
syslog daemon instead (facility daemon).
"""

from __future__ import annotations

import logging
import logging.handlers
import re
import sys

from pulsemon.version import APP_NAME

_CONVERSION = re.compile(r"%(.?)", re.DOTALL)

# Severity labels as they appear in the log line.
_LABELS = {
    logging.CRITICAL: "CRIT",
    logging.ERROR: "ERR",
    logging.WARNING: "WARN",
    logging.INFO: "INFO",
    logging.DEBUG: "DEBUG",
}

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}


class LogFormatError(ValueError):
    """Raised when LOG_FORMAT does not have exactly two %s placeholders."""


class SeverityFormatter(logging.Formatter):
    """Render ``fmt % (severity, message)``; tracebacks are appended."""

    def __init__(self, fmt: str) -> None:
        super().__init__()
        self._fmt_line = fmt

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        label = _LABELS.get(record.levelno, record.levelname)
        return self._fmt_line % (label, message)


class _BelowWarning(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < logging.WARNING


def parse_level(name: str) -> int:
    """Map LOG_LEVEL to a logging level; unknown names fall back to INFO."""
    return _LEVELS.get(name.strip().upper(), logging.INFO)


def validate_format(fmt: str) -> str:
    """Accept exactly two ``%s`` conversions; ``%%`` is the only other one allowed."""
    conversions = _CONVERSION.findall(fmt)
    if any(c not in ("s", "%") for c in conversions) or conversions.count("s") != 2:
        raise LogFormatError("Wrong log format. Expected 2 string placeholders")
    return fmt


def configure_logging(level: str = "INFO", fmt: str = "<%s>\t%s", use_syslog: bool = False) -> None:
    """Install pulsemon's handlers on the ``pulsemon`` logger tree."""
    formatter = SeverityFormatter(validate_format(fmt))
    root = logging.getLogger("pulsemon")
    root.setLevel(parse_level(level))
    root.propagate = False
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if use_syslog:
        try:
            handler: logging.Handler = logging.handlers.SysLogHandler(
                address="/dev/log",
                facility=logging.handlers.SysLogHandler.LOG_DAEMON,
            )
        except OSError as e:
            _install_console(root, formatter)
            root.error("Syslog failed, disabling: %s", e)
            return
        handler.ident = f"{APP_NAME}: "
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(handler)
        return

    _install_console(root, formatter)


def _install_console(root: logging.Logger, formatter: logging.Formatter) -> None:
    out = logging.StreamHandler(sys.stdout)
    out.addFilter(_BelowWarning())
    out.setFormatter(formatter)

    err = logging.StreamHandler(sys.stderr)
    err.setLevel(logging.WARNING)
    err.setFormatter(formatter)

    root.addHandler(out)
    root.addHandler(err)
