"""Derive scrape endpoints from the tasks running on the local agent.

A task exposes metrics either through a labelled port in its discovery info,
or through task-level labels selecting one of its ports by index or name.
"""

from typing import List, Optional
import logging

from mesos_collector.exceptions import DiscoveryError
from mesos_collector.mesos.types import GetTasks, Task, TaskStatus
from mesos_collector.models import ScrapeTarget, TaskPort

logger = logging.getLogger(__name__)

FORMAT_LABEL = "DCOS_METRICS_FORMAT"
ENDPOINT_LABEL = "DCOS_METRICS_ENDPOINT"
PORT_INDEX_LABEL = "DCOS_METRICS_PORT_INDEX"
PORT_NAME_LABEL = "DCOS_METRICS_PORT_NAME"
NETWORK_SCOPE_LABEL = "network-scope"

DEFAULT_ROUTE = "/metrics"


def get_container_id(statuses: List[TaskStatus]) -> str:
    """Return the container id used to key a task's metrics.

    The first status carrying a container id decides. For nested containers
    the parent (executor) container id is returned, otherwise the task's own
    container id. Returns an empty string when no status has a container id.
    """
    for status in statuses:
        if status.container_id:
            return status.parent_container_id or status.container_id
    return ""


def get_task_ip(task: Task) -> str:
    """Return the first IP address of the task's latest status.

    Raises:
        DiscoveryError: If the task has no status or no IP address
    """
    if not task.statuses:
        raise DiscoveryError(f"Task {task.task_id} had no associated statuses")

    # Statuses are chronological, the last is the latest
    latest = task.statuses[-1]
    if latest.ip_addresses:
        return latest.ip_addresses[0]
    raise DiscoveryError(f"Task {task.task_id} had no associated IP address")


def is_host_port(port: TaskPort, task: Task) -> bool:
    """Whether the port is reachable through the node's network namespace."""
    scope = port.labels.get(NETWORK_SCOPE_LABEL)
    if scope is not None:
        return scope == "host"

    for resource in task.resources:
        if resource.name != "ports":
            continue
        for port_range in resource.ranges:
            if port_range.begin <= port.number <= port_range.end:
                return True
        if resource.scalar is not None and resource.scalar == float(port.number):
            return True

    # Pod port mappings are reported in the statuses
    for status in task.statuses:
        if port.number in status.host_ports:
            return True

    # MESOS and DOCKER containerizer port mappings
    return port.number in task.container_host_ports


def get_hostname_for_port(port: TaskPort, task: Task, node_hostname: str) -> str:
    """Resolve the host part of an endpoint for the given port.

    Raises:
        DiscoveryError: If the port is not host-scoped and the task has no IP
    """
    if is_host_port(port, task):
        return node_hostname
    try:
        return get_task_ip(task)
    except DiscoveryError as e:
        raise DiscoveryError(
            f"Could not retrieve IP address for {task.task_id}: {e}"
        ) from e


def get_endpoints_from_task_ports(
    task: Task, node_hostname: str, target_format: str = "prometheus"
) -> List[str]:
    """Return endpoints for every port labelled with the target format."""
    endpoints = []
    for port in task.ports:
        if port.labels.get(FORMAT_LABEL) != target_format:
            continue
        try:
            hostname = get_hostname_for_port(port, task, node_hostname)
        except DiscoveryError as e:
            logger.error(str(e))
            continue
        route = port.labels.get(ENDPOINT_LABEL) or DEFAULT_ROUTE
        endpoints.append(f"http://{hostname}:{port.number}{route}")
    return endpoints


def get_endpoint_from_task_labels(
    task: Task, node_hostname: str, target_format: str = "prometheus"
) -> Optional[str]:
    """Return the endpoint selected by the task's own labels, if any.

    The port is chosen by ``DCOS_METRICS_PORT_INDEX`` when present, else by
    ``DCOS_METRICS_PORT_NAME``. A bad index never falls back to the name.
    """
    labels = task.labels
    if labels.get(FORMAT_LABEL) != target_format:
        return None

    port_index = labels.get(PORT_INDEX_LABEL, "")
    port_name = labels.get(PORT_NAME_LABEL, "")
    if not port_index and not port_name:
        return None

    port: Optional[TaskPort] = None
    if port_index:
        try:
            index = int(port_index)
        except ValueError:
            logger.error(
                f"Could not retrieve port index {port_index!r} for task {task.task_id}"
            )
            return None
        if index < 0 or index >= len(task.ports):
            logger.error(f"Port index {index} is out of range for task {task.task_id}")
            return None
        port = task.ports[index]
    else:
        for candidate in task.ports:
            if candidate.name == port_name:
                port = candidate
        if port is None:
            logger.error(f"Could not match port name {port_name} for task {task.task_id}")
            return None

    try:
        hostname = get_hostname_for_port(port, task, node_hostname)
    except DiscoveryError as e:
        logger.error(str(e))
        return None

    route = labels.get(ENDPOINT_LABEL) or DEFAULT_ROUTE
    return f"http://{hostname}:{port.number}{route}"


def get_task_targets(
    tasks: GetTasks, node_hostname: str, target_format: str = "prometheus"
) -> List[ScrapeTarget]:
    """Convert the agent's launched tasks into scrape targets.

    Each target is tagged with the task's ``container_id``.
    """
    results = []
    for task in tasks.launched_tasks:
        endpoints = get_endpoints_from_task_ports(task, node_hostname, target_format)
        endpoint = get_endpoint_from_task_labels(task, node_hostname, target_format)
        if endpoint:
            endpoints.append(endpoint)

        container_id = get_container_id(task.statuses)
        for url in endpoints:
            results.append(
                ScrapeTarget(
                    url=url,
                    original_url=url,
                    tags={"container_id": container_id},
                )
            )
    return results
