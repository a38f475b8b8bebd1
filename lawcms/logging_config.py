from __future__ import annotations

import logging


def configure_app_logging(level: str = "INFO") -> None:
    """
    Logging configuration for the `lawcms` package.

    Notes:
    - Plain stdlib logging; uvicorn installs the handlers.
    - Set `LAWCMS_LOG_LEVEL=DEBUG` (or INFO/WARNING/ERROR) to control verbosity.
    - `lawcms.security.audit` is the diagnostic channel for audit-write failures;
      it is never raised below WARNING so those failures stay visible.
    """

    normalized = level.upper()
    logging.getLogger("lawcms").setLevel(normalized)
    logging.getLogger("lawcms").propagate = True

    audit_logger = logging.getLogger("lawcms.security.audit")
    if audit_logger.getEffectiveLevel() > logging.WARNING:
        audit_logger.setLevel(logging.WARNING)
