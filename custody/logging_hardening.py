"""Logging Hardening and Redaction.

Filters that keep credential ciphertext, plaintext passwords and bearer
tokens out of application logs, whichever module emits them.
"""
import logging
import re

SECRET_PATTERNS = [
    # Stored credential blobs are base64 of at least 96 bytes (128 chars).
    (re.compile(r'[A-Za-z0-9+/]{120,}={0,2}'), '[REDACTED_BLOB]'),
    (re.compile(r'("password"\s*:\s*")[^"]*(")', re.IGNORECASE), r'\1[REDACTED]\2'),
    (re.compile(r"(password=)\S+", re.IGNORECASE), r'\1[REDACTED]'),
    (re.compile(r'(Bearer\s+)[A-Za-z0-9\-_\.=]+'), r'\1[REDACTED]'),
    (re.compile(r'("credential_master_key"\s*:\s*")[^"]*(")', re.IGNORECASE), r'\1[REDACTED]\2'),
]


def redact_string(text: str) -> str:
    for pattern, replacement in SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class SecretRedactionFilter(logging.Filter):
    """Filter that redacts secret-like patterns from log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_string(record.msg)

        if record.args and isinstance(record.args, tuple):
            record.args = tuple(redact_string(a) if isinstance(a, str) else a for a in record.args)

        return True


def setup_logging_redaction() -> None:
    """Apply the SecretRedactionFilter to the root logger and every existing logger."""
    redact_filter = SecretRedactionFilter()

    root_logger = logging.getLogger()
    for f in root_logger.filters[:]:
        if isinstance(f, SecretRedactionFilter):
            root_logger.removeFilter(f)
    root_logger.addFilter(redact_filter)

    # Filters on a logger do not apply to records propagated from its children,
    # so every known logger gets its own copy.
    for name in list(logging.root.manager.loggerDict):
        logger = logging.getLogger(name)
        for f in logger.filters[:]:
            if isinstance(f, SecretRedactionFilter):
                logger.removeFilter(f)
        logger.addFilter(redact_filter)

    logging.getLogger(__name__).info("Logging redaction filters active.")
