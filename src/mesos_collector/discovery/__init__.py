"""Scrape target discovery."""

from .resolver import TargetResolver, parse_static_url, address_to_url
from .task_endpoints import (
    get_container_id,
    get_endpoint_from_task_labels,
    get_endpoints_from_task_ports,
    get_task_targets,
    is_host_port,
)

__all__ = [
    "TargetResolver",
    "parse_static_url",
    "address_to_url",
    "get_container_id",
    "get_endpoint_from_task_labels",
    "get_endpoints_from_task_ports",
    "get_task_targets",
    "is_host_port",
]
