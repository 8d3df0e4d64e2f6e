"""Process-wide logging setup."""

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: int = logging.INFO) -> None:
    """Apply the standard log format once per process."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # The audit trail is always kept at INFO, even when the root logger is quieter.
    logging.getLogger("app.audit").setLevel(logging.INFO)
