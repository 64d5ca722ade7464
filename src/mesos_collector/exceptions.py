"""
Exceptions raised by the collector.

Kept in one module so that discovery, scraping and the control API can share
them without importing each other.
"""

from typing import Optional


class CollectorError(Exception):
    """Base class for all collector errors."""

    pass


class ConfigurationError(CollectorError):
    """Raised when static configuration is malformed."""

    pass


class DiscoveryError(CollectorError):
    """Raised when an endpoint cannot be derived from scheduler state."""

    pass


class TransportError(CollectorError):
    """Raised when a target could not be fetched or decoded."""

    def __init__(self, url: str, message: str):
        super().__init__(f"{url}: {message}")
        self.url = url


class CycleCancelledError(TransportError):
    """Raised for targets that were still pending when the cycle was cancelled."""

    def __init__(self, url: str):
        super().__init__(url, "collection cycle was cancelled")


class ProtocolError(CollectorError):
    """Raised when the scheduler answers with an unexpected message."""

    pass


class EmptyResponseError(ProtocolError):
    """Raised when a scheduler response carries no payload for its type."""

    pass


class ConflictError(CollectorError):
    """Raised when a registration would reuse a port owned by another container."""

    def __init__(self, container_id: str, port: int, owner: Optional[str] = None):
        message = f"Port {port} requested by {container_id} is already in use"
        if owner:
            message += f" by {owner}"
        super().__init__(message)
        self.container_id = container_id
        self.port = port
        self.owner = owner
