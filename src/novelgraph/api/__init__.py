"""FastAPI application exposing the novel editor and player."""

from .app import create_app
from .settings import NovelApiSettings

__all__ = ["create_app", "NovelApiSettings"]
