"""HTTP interface for the Dolphin STEM solver."""

from .server import create_app

__all__ = ["create_app"]
