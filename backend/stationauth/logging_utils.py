# Overview: Log level configuration and secret redaction for app and service loggers.

from __future__ import annotations

import logging
import re


_SECRET_KEYS = ("password", "token", "secret", "authorization")

# key=value / "key": "value" pairs whose key names a secret
_SECRET_PAIR_RE = re.compile(
    r"(?P<key>[\"']?\b\w*(?:%s)\w*[\"']?\s*[:=]\s*)(?P<quote>[\"']?)(?P<value>[^\s,\"'}]+)" % "|".join(_SECRET_KEYS),
    re.IGNORECASE,
)
_BEARER_RE = re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+", re.IGNORECASE)

REDACTED = "[REDACTED]"


def redact(text: str) -> str:
    text = _BEARER_RE.sub(lambda m: m.group(1) + REDACTED, text)
    return _SECRET_PAIR_RE.sub(lambda m: m.group("key") + m.group("quote") + REDACTED, text)


class RedactingFilter(logging.Filter):
    """
    Masks password/token/secret values in a record's rendered message.

    The message is rendered once, redacted, and frozen (args cleared) so
    later handlers cannot re-expand the original arguments.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        record.msg = redact(message)
        record.args = None
        return True


def configure_logging(app) -> None:
    """Apply LOG_LEVEL to the app and package loggers and install redaction."""
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    package_logger = logging.getLogger("stationauth")
    package_logger.setLevel(level)
    app.logger.setLevel(level)

    for logger in (package_logger, app.logger):
        if not any(isinstance(f, RedactingFilter) for f in logger.filters):
            logger.addFilter(RedactingFilter())

    # Logger filters skip records propagated from child loggers; handler filters do not
    for handler in app.logger.handlers + logging.getLogger().handlers:
        if not any(isinstance(f, RedactingFilter) for f in handler.filters):
            handler.addFilter(RedactingFilter())
