"""Control API for the container registry."""

from .server import ControlServer, create_app

__all__ = ["ControlServer", "create_app"]
