"""Typed views of the Mesos agent operator API JSON messages.

Only the parts of the protobuf messages that discovery and enrichment read
are modelled. Every ``from_dict`` tolerates missing optional fields.
"""

from typing import Dict, List, Optional
from dataclasses import dataclass, field

from mesos_collector.models import TaskPort


def simplify_labels(labels: Optional[Dict]) -> Dict[str, str]:
    """Convert a ``Labels`` message (``{"labels": [{"key", "value"}]}``) to a dict."""
    results: Dict[str, str] = {}
    if labels:
        for label in labels.get("labels", []):
            results[label.get("key", "")] = label.get("value", "")
    return results


def _value(message: Optional[Dict]) -> Optional[str]:
    """Read the ``value`` of an id message such as ``TaskID``."""
    if message:
        return message.get("value")
    return None


def _host_ports(network_infos: List[Dict]) -> List[int]:
    ports = []
    for info in network_infos:
        for mapping in info.get("port_mappings", []):
            if "host_port" in mapping:
                ports.append(int(mapping["host_port"]))
    return ports


@dataclass
class PortRange:
    begin: int
    end: int


@dataclass
class Resource:
    """A task resource; only ``ports`` resources are inspected."""

    name: str
    ranges: List[PortRange] = field(default_factory=list)
    scalar: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict) -> "Resource":
        ranges = [
            PortRange(begin=int(r.get("begin", 0)), end=int(r.get("end", 0)))
            for r in data.get("ranges", {}).get("range", [])
        ]
        scalar = data.get("scalar", {}).get("value")
        return cls(name=data.get("name", ""), ranges=ranges, scalar=scalar)


@dataclass
class TaskStatus:
    """The container-related part of a ``TaskStatus``."""

    state: Optional[str] = None
    container_id: Optional[str] = None
    parent_container_id: Optional[str] = None
    ip_addresses: List[str] = field(default_factory=list)
    host_ports: List[int] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict) -> "TaskStatus":
        status = data.get("container_status") or {}
        cid = status.get("container_id") or {}
        network_infos = status.get("network_infos", [])

        ip_addresses = []
        for info in network_infos:
            for ip in info.get("ip_addresses", []):
                if ip.get("ip_address"):
                    ip_addresses.append(ip["ip_address"])

        return cls(
            state=data.get("state"),
            container_id=cid.get("value"),
            parent_container_id=_value(cid.get("parent")),
            ip_addresses=ip_addresses,
            host_ports=_host_ports(network_infos),
        )


@dataclass
class Task:
    """A task as returned in ``GET_TASKS`` / ``GET_STATE``."""

    task_id: str
    name: str
    framework_id: str
    executor_id: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)
    ports: List[TaskPort] = field(default_factory=list)
    resources: List[Resource] = field(default_factory=list)
    statuses: List[TaskStatus] = field(default_factory=list)
    container_host_ports: List[int] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict) -> "Task":
        discovery = data.get("discovery") or {}
        ports = [
            TaskPort(
                number=int(p.get("number", 0)),
                name=p.get("name"),
                protocol=p.get("protocol"),
                labels=simplify_labels(p.get("labels")),
            )
            for p in (discovery.get("ports") or {}).get("ports", [])
        ]

        # Host ports mapped by the MESOS or DOCKER containerizer
        container = data.get("container") or {}
        container_host_ports = _host_ports(container.get("network_infos", []))
        docker = container.get("docker") or {}
        for mapping in docker.get("port_mappings", []):
            if "host_port" in mapping:
                container_host_ports.append(int(mapping["host_port"]))

        return cls(
            task_id=_value(data.get("task_id")) or "",
            name=data.get("name", ""),
            framework_id=_value(data.get("framework_id")) or "",
            executor_id=_value(data.get("executor_id")),
            labels=simplify_labels(data.get("labels")),
            ports=ports,
            resources=[Resource.from_dict(r) for r in data.get("resources", [])],
            statuses=[TaskStatus.from_dict(s) for s in data.get("statuses", [])],
            container_host_ports=container_host_ports,
        )


@dataclass
class GetTasks:
    """Payload of a ``GET_TASKS`` response."""

    launched_tasks: List[Task] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict) -> "GetTasks":
        return cls(
            launched_tasks=[Task.from_dict(t) for t in data.get("launched_tasks", [])]
        )


@dataclass
class GetState:
    """Payload of a ``GET_STATE`` response.

    ``tasks`` is ``None`` when the agent reported no task section at all.
    """

    tasks: Optional[GetTasks] = None
    framework_names: Dict[str, str] = field(default_factory=dict)
    executor_names: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict) -> "GetState":
        tasks = None
        if data.get("get_tasks") is not None:
            tasks = GetTasks.from_dict(data["get_tasks"])

        framework_names = {}
        for framework in (data.get("get_frameworks") or {}).get("frameworks", []):
            info = framework.get("framework_info") or {}
            framework_id = _value(info.get("id"))
            if framework_id:
                framework_names[framework_id] = info.get("name", "")

        executor_names = {}
        for executor in (data.get("get_executors") or {}).get("executors", []):
            info = executor.get("executor_info") or {}
            executor_id = _value(info.get("executor_id"))
            if executor_id:
                executor_names[executor_id] = info.get("name", "")

        return cls(
            tasks=tasks,
            framework_names=framework_names,
            executor_names=executor_names,
        )
