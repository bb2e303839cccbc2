"""Logging setup for the explorer application.

Library modules only create module loggers; the application calls
:func:`configure_logging` once at startup.
"""
import logging
import re

_PRIVATE_KEY_PEM = re.compile(
    r"-----BEGIN[^-]*PRIVATE KEY-----.*?-----END[^-]*PRIVATE KEY-----", re.DOTALL
)
_PASSWORD_FIELD = re.compile(r"(pass(?:word|phrase)?\s*[=:]\s*)\S+", re.IGNORECASE)


class SensitiveDataFilter(logging.Filter):
    """Redact private keys and password assignments from log records."""

    def filter(self, record):
        if record.msg:
            message = record.getMessage()
            redacted = _PRIVATE_KEY_PEM.sub("[PRIVATE KEY REDACTED]", message)
            redacted = _PASSWORD_FIELD.sub(r"\1[REDACTED]", redacted)
            if redacted != message:
                record.msg = redacted
                record.args = None
        return True


def configure_logging(level="INFO"):
    """Configure the root logger and attach the redaction filter to its handlers."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers:
        if not any(isinstance(f, SensitiveDataFilter) for f in handler.filters):
            handler.addFilter(SensitiveDataFilter())
    # Streamlit's file watcher is chatty at DEBUG
    logging.getLogger("watchdog").setLevel(logging.WARNING)
