"""Pytest configuration and shared fixtures."""

import pytest

from mesos_collector.mesos.types import GetState, GetTasks, Task


def _labels(values):
    return {"labels": [{"key": k, "value": v} for k, v in (values or {}).items()]}


def build_status(
    container_id=None,
    parent_id=None,
    ips=None,
    host_ports=None,
    state="TASK_RUNNING",
):
    """Build a TaskStatus JSON message."""
    container_status = {
        "network_infos": [
            {
                "ip_addresses": [{"ip_address": ip} for ip in ips or []],
                "port_mappings": [
                    {"host_port": p, "container_port": p} for p in host_ports or []
                ],
            }
        ]
    }
    if container_id:
        cid = {"value": container_id}
        if parent_id:
            cid["parent"] = {"value": parent_id}
        container_status["container_id"] = cid
    return {"state": state, "container_status": container_status}


def build_task(
    task_id="task-1",
    name="web",
    framework_id="framework-1",
    executor_id=None,
    labels=None,
    ports=None,
    port_ranges=None,
    statuses=None,
    docker_host_ports=None,
):
    """Build a Task JSON message.

    ``ports`` is a list of ``(number, name, labels)`` tuples.
    """
    task = {
        "task_id": {"value": task_id},
        "name": name,
        "framework_id": {"value": framework_id},
        "labels": _labels(labels),
        "discovery": {
            "ports": {
                "ports": [
                    {"number": number, "name": port_name, "labels": _labels(port_labels)}
                    for number, port_name, port_labels in ports or []
                ]
            }
        },
        "resources": [],
        "statuses": statuses or [],
    }
    if executor_id:
        task["executor_id"] = {"value": executor_id}
    if port_ranges:
        task["resources"].append(
            {
                "name": "ports",
                "ranges": {"range": [{"begin": b, "end": e} for b, e in port_ranges]},
            }
        )
    if docker_host_ports:
        task["container"] = {
            "type": "DOCKER",
            "docker": {
                "port_mappings": [
                    {"host_port": p, "container_port": 8080} for p in docker_host_ports
                ]
            },
        }
    return task


def build_state(tasks, frameworks=None, executors=None):
    """Build a GET_STATE payload."""
    return {
        "get_tasks": {"launched_tasks": tasks},
        "get_frameworks": {
            "frameworks": [
                {"framework_info": {"id": {"value": fid}, "name": name}}
                for fid, name in (frameworks or {}).items()
            ]
        },
        "get_executors": {
            "executors": [
                {"executor_info": {"executor_id": {"value": eid}, "name": name}}
                for eid, name in (executors or {}).items()
            ]
        },
    }


@pytest.fixture
def task_factory():
    """Factory building typed tasks from keyword arguments.

    Returns:
        Callable returning a Task
    """
    return lambda **kwargs: Task.from_dict(build_task(**kwargs))


@pytest.fixture
def status_factory():
    """Factory building TaskStatus JSON messages."""
    return build_status


@pytest.fixture
def tasks_factory():
    """Factory building a GetTasks from task JSON messages."""
    return lambda *tasks: GetTasks.from_dict({"launched_tasks": list(tasks)})


@pytest.fixture
def sample_state():
    """Agent state with one running task in container abc123.

    Returns:
        Typed GetState
    """
    task = build_task(
        task_id="task-abc",
        name="my-task",
        framework_id="framework-1",
        executor_id="executor-1",
        labels={"DCOS_METRICS_FOO": "bar", "UNRELATED": "x"},
        statuses=[build_status(container_id="abc123", ips=["10.0.0.5"])],
    )
    return GetState.from_dict(
        build_state(
            [task],
            frameworks={"framework-1": "F"},
            executors={"executor-1": "E"},
        )
    )


@pytest.fixture
def sample_exposition():
    """Prometheus text exposition payload.

    Returns:
        Payload bytes
    """
    return b"""# HELP go_goroutines Number of goroutines that currently exist.
# TYPE go_goroutines gauge
go_goroutines 15
# HELP http_requests_total Total HTTP requests.
# TYPE http_requests_total counter
http_requests_total{code="200",method="get"} 1027
http_requests_total{code="400",method="post"} 3
# HELP rpc_duration_seconds RPC latency.
# TYPE rpc_duration_seconds summary
rpc_duration_seconds{quantile="0.5"} 0.05
rpc_duration_seconds{quantile="0.99"} 0.2
rpc_duration_seconds_sum 17.5
rpc_duration_seconds_count 200
# HELP request_size_bytes Request sizes.
# TYPE request_size_bytes histogram
request_size_bytes_bucket{le="100"} 10
request_size_bytes_bucket{le="1000"} 15
request_size_bytes_bucket{le="+Inf"} 16
request_size_bytes_sum 4200
request_size_bytes_count 16
# TYPE build_info untyped
build_info{version="1.2.3"} 1
"""


@pytest.fixture
def task_json():
    """Builder for Task JSON messages."""
    return build_task


@pytest.fixture
def state_json():
    """Builder for GET_STATE payloads."""
    return build_state
