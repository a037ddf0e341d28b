"""FastAPI application exposing the disc pack endpoints."""

from .app import create_app

__all__ = ["create_app"]
