"""Logging filters that scrub sensitive content."""

from __future__ import annotations

import logging
import re

_SENSITIVE_PATTERN = re.compile(
    r"(Authorization: Bearer\s+[\w\.-]+"
    r"|Bearer\s+[\w\.-]{16,}"
    r"|Api-Key\"?\s*[:=]\s*\"?[\w-]+\"?"
    r"|AccessToken\"\s*:\s*\"[^\"]+\""
    r"|access_token\"\s*:\s*\"[^\"]+\""
    r"|Password\"\s*:\s*\"[^\"]+\")",
    re.IGNORECASE,
)


def redact(message: str) -> str:
    """Return ``message`` with credentials replaced by a marker."""
    return _SENSITIVE_PATTERN.sub("**REDACTED**", message)


class SensitiveFilter(logging.Filter):
    """Replace sensitive tokens in log messages with a redaction marker."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                redact(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        return True


def install_sensitive_filter(*logger_names: str) -> None:
    """Attach a single :class:`SensitiveFilter` to each named logger."""
    for name in logger_names:
        target = logging.getLogger(name)
        if not any(isinstance(flt, SensitiveFilter) for flt in target.filters):
            target.addFilter(SensitiveFilter())


__all__ = ["SensitiveFilter", "install_sensitive_filter", "redact"]
