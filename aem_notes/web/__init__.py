"""Web interface for AEM Notes."""

from .server import create_app

__all__ = ["create_app"]
