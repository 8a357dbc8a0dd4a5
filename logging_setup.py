"""
Logging configuration for the collector.

Every record passes through SecretRedactingFormatter, so a credential that
slips into a message (an upstream URL in an exception, for instance) is
written as REDACTED.
"""

import logging
from typing import Optional

from config import config
from redaction import redact_secrets

# httpx logs full request URLs at INFO, including app_key
NOISY_LOGGERS = ("httpx", "httpcore")


class SecretRedactingFormatter(logging.Formatter):
    """Formatter that redacts credential query values from the rendered record"""

    def format(self, record: logging.LogRecord) -> str:
        return redact_secrets(super().format(record))


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure the root logger once per process.

    Must be called before the first collection run.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level or config.logging.level)

    formatter = SecretRedactingFormatter(config.logging.format)
    if not root_logger.handlers:
        root_logger.addHandler(logging.StreamHandler())
    for handler in root_logger.handlers:
        handler.setFormatter(formatter)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
