"""Local container registry with per-container statsd listeners."""

from .containers import ContainerRegistry, read_container_files, validate_container_id
from .statsd import StatsdListener, parse_statsd_line

__all__ = [
    "ContainerRegistry",
    "StatsdListener",
    "parse_statsd_line",
    "read_container_files",
    "validate_container_id",
]
