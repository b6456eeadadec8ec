"""Process-wide logging setup for the CLI and the HTTP host."""

from __future__ import annotations

import logging
import os
from typing import Mapping

LOG_LEVEL_ENV = "NOVELGRAPH_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "WARNING"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_CONFIGURED = False


def resolve_log_level(
    level: str | int | None = None, *, environ: Mapping[str, str] | None = None
) -> int:
    """Turn ``level`` or ``NOVELGRAPH_LOG_LEVEL`` into a numeric level.

    Unknown names fall back to ``WARNING``.
    """

    if isinstance(level, int):
        return level
    if level is None or not level.strip():
        env = os.environ if environ is None else environ
        level = env.get(LOG_LEVEL_ENV, "").strip() or DEFAULT_LOG_LEVEL
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.WARNING


def configure_logging(
    level: str | int | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    force: bool = False,
) -> int:
    """Attach a console handler to the ``novelgraph`` logger once per process."""

    global _CONFIGURED
    numeric_level = resolve_log_level(level, environ=environ)
    logger = logging.getLogger("novelgraph")
    logger.setLevel(numeric_level)
    if _CONFIGURED and not force:
        return numeric_level

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z"))
    logger.handlers.clear()
    logger.addHandler(handler)
    _CONFIGURED = True
    return numeric_level


__all__ = ["LOG_LEVEL_ENV", "configure_logging", "resolve_log_level"]
