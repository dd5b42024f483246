"""Singleton logging configuration.

``setup_logging()`` configures the root logger once per process and
quiets the HTTP client loggers, which log every request at INFO.
Idempotent (guarded by a module-level flag).
"""

import logging

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(name)s] - %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"

# Third-party loggers to suppress to WARNING
_SUPPRESSED_LOGGERS = (
    "httpx",
    "httpcore",
)

_configured = False


def setup_logging(level: str = "INFO") -> None:
    """Configure root logger and suppress noisy third-party loggers.

    Second call is a no-op; use :func:`set_level` to change the level
    after startup (e.g. for ``--verbose``).
    """
    global _configured  # noqa: PLW0603
    if _configured:
        return
    _configured = True

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )

    for name in _SUPPRESSED_LOGGERS:
        lg = logging.getLogger(name)
        lg.setLevel(logging.WARNING)


def set_level(level: str) -> None:
    """Change the root logger level."""
    logging.getLogger().setLevel(getattr(logging, level.upper()))
