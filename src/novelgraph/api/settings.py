"""Configuration helpers for running the novel editor service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping


def _normalise_path(value: str | None) -> Path | None:
    if value is None:
        return None

    trimmed = value.strip()
    if not trimmed:
        return None

    return Path(trimmed).expanduser()


def _normalise_string(value: str | None, *, default: str) -> str:
    if value is None:
        return default

    trimmed = value.strip()
    return trimmed or default


@dataclass(frozen=True)
class NovelApiSettings:
    """Deployment settings for the FastAPI application.

    ``novel_path`` points at an exported novel to open on startup; when it is
    unset the bundled demo story is loaded instead. Blank environment values
    are treated as unset.
    """

    novel_path: Path | None = None
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "NovelApiSettings":
        source = environ if environ is not None else os.environ

        return cls(
            novel_path=_normalise_path(source.get("NOVELGRAPH_NOVEL_PATH")),
            log_level=_normalise_string(
                source.get("NOVELGRAPH_LOG_LEVEL"), default="WARNING"
            ).upper(),
        )


__all__ = ["NovelApiSettings"]
