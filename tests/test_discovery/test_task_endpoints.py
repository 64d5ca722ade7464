"""Tests for task endpoint discovery."""

import pytest

from mesos_collector.discovery.task_endpoints import (
    get_container_id,
    get_endpoint_from_task_labels,
    get_endpoints_from_task_ports,
    get_task_ip,
    get_task_targets,
    is_host_port,
)
from mesos_collector.exceptions import DiscoveryError
from mesos_collector.mesos.types import TaskStatus

NODE = "agent-1.example.com"
PROMETHEUS = {"DCOS_METRICS_FORMAT": "prometheus"}


class TestGetContainerId:
    """Tests for the container id policy."""

    def test_parent_preferred(self, status_factory):
        """Test that the parent id wins over the direct id."""
        statuses = [TaskStatus.from_dict(status_factory(container_id="child", parent_id="parent"))]
        assert get_container_id(statuses) == "parent"

    def test_direct_id(self, status_factory):
        """Test a non-nested container."""
        statuses = [TaskStatus.from_dict(status_factory(container_id="abc123"))]
        assert get_container_id(statuses) == "abc123"

    def test_first_status_decides(self, status_factory):
        """Test that the first status with a container id takes priority."""
        statuses = [
            TaskStatus.from_dict(status_factory()),
            TaskStatus.from_dict(status_factory(container_id="first")),
            TaskStatus.from_dict(status_factory(container_id="second", parent_id="p")),
        ]
        assert get_container_id(statuses) == "first"

    def test_no_container(self):
        """Test that tasks without a container id yield an empty id."""
        assert get_container_id([]) == ""


class TestGetTaskIp:
    """Tests for task IP resolution."""

    def test_latest_status(self, task_factory, status_factory):
        """Test that the last status is used."""
        task = task_factory(
            statuses=[
                status_factory(container_id="c", ips=["10.0.0.1"]),
                status_factory(container_id="c", ips=["10.0.0.2", "10.0.0.3"]),
            ]
        )
        assert get_task_ip(task) == "10.0.0.2"

    def test_no_statuses(self, task_factory):
        """Test that a task without statuses has no IP."""
        with pytest.raises(DiscoveryError):
            get_task_ip(task_factory())

    def test_no_address(self, task_factory, status_factory):
        """Test that a status without addresses has no IP."""
        with pytest.raises(DiscoveryError):
            get_task_ip(task_factory(statuses=[status_factory(container_id="c")]))


class TestIsHostPort:
    """Tests for the host-scope rule."""

    def test_network_scope_label_host(self, task_factory):
        """Test an explicit host scope label."""
        task = task_factory(ports=[(9100, "m", {"network-scope": "host"})])
        assert is_host_port(task.ports[0], task) is True

    def test_network_scope_label_container(self, task_factory):
        """Test that an explicit container scope overrides port resources."""
        task = task_factory(
            ports=[(31000, "m", {"network-scope": "container"})],
            port_ranges=[(31000, 31010)],
        )
        assert is_host_port(task.ports[0], task) is False

    def test_port_in_resource_range(self, task_factory):
        """Test a port within the task's port resources."""
        task = task_factory(ports=[(31005, "m", {})], port_ranges=[(31000, 31010)])
        assert is_host_port(task.ports[0], task) is True

    def test_port_in_status_mapping(self, task_factory, status_factory):
        """Test a port mapped in a pod status."""
        task = task_factory(
            ports=[(31500, "m", {})],
            statuses=[status_factory(container_id="c", host_ports=[31500])],
        )
        assert is_host_port(task.ports[0], task) is True

    def test_port_in_docker_mapping(self, task_factory):
        """Test a port mapped by the docker containerizer."""
        task = task_factory(ports=[(31600, "m", {})], docker_host_ports=[31600])
        assert is_host_port(task.ports[0], task) is True

    def test_container_port(self, task_factory):
        """Test that an unmapped port is not host-scoped."""
        task = task_factory(ports=[(8080, "m", {})], port_ranges=[(31000, 31010)])
        assert is_host_port(task.ports[0], task) is False


class TestPortLabelDiscovery:
    """Tests for discovery through labelled ports."""

    def test_host_scoped_port(self, task_factory):
        """Test a host-scoped port with the default route."""
        labels = dict(PROMETHEUS, **{"network-scope": "host"})
        task = task_factory(ports=[(9100, "metrics", labels)])
        assert get_endpoints_from_task_ports(task, NODE) == [f"http://{NODE}:9100/metrics"]

    def test_container_scoped_port_uses_task_ip(self, task_factory, status_factory):
        """Test that a container port uses the task's IP."""
        task = task_factory(
            ports=[(8080, "metrics", PROMETHEUS)],
            statuses=[status_factory(container_id="c", ips=["9.0.0.1"])],
        )
        assert get_endpoints_from_task_ports(task, NODE) == ["http://9.0.0.1:8080/metrics"]

    def test_route_label(self, task_factory):
        """Test that the endpoint label overrides the route."""
        labels = dict(PROMETHEUS, **{"network-scope": "host", "DCOS_METRICS_ENDPOINT": "/stats"})
        task = task_factory(ports=[(9100, "metrics", labels)])
        assert get_endpoints_from_task_ports(task, NODE) == [f"http://{NODE}:9100/stats"]

    def test_other_format_ignored(self, task_factory):
        """Test that ports for another format are ignored."""
        task = task_factory(ports=[(9100, "m", {"DCOS_METRICS_FORMAT": "statsd"})])
        assert get_endpoints_from_task_ports(task, NODE) == []

    def test_missing_ip_skips_endpoint(self, task_factory):
        """Test that a container port without task IP is skipped."""
        task = task_factory(
            ports=[
                (8080, "a", PROMETHEUS),
                (9100, "b", dict(PROMETHEUS, **{"network-scope": "host"})),
            ]
        )
        assert get_endpoints_from_task_ports(task, NODE) == [f"http://{NODE}:9100/metrics"]


class TestTaskLabelDiscovery:
    """Tests for discovery through task labels."""

    def test_port_index(self, task_factory):
        """Test selecting a port by index."""
        task = task_factory(
            labels=dict(PROMETHEUS, DCOS_METRICS_PORT_INDEX="0"),
            ports=[(9100, "a", {"network-scope": "host"}), (9200, "b", {})],
        )
        assert get_endpoint_from_task_labels(task, NODE) == f"http://{NODE}:9100/metrics"

    def test_index_out_of_range_has_no_fallback(self, task_factory):
        """Test that a bad index does not fall back to the port name."""
        task = task_factory(
            labels=dict(PROMETHEUS, DCOS_METRICS_PORT_INDEX="5", DCOS_METRICS_PORT_NAME="a"),
            ports=[(9100, "a", {"network-scope": "host"}), (9200, "b", {})],
        )
        assert get_endpoint_from_task_labels(task, NODE) is None

    def test_non_integer_index(self, task_factory):
        """Test that a non-integer index yields no endpoint."""
        task = task_factory(
            labels=dict(PROMETHEUS, DCOS_METRICS_PORT_INDEX="first"),
            ports=[(9100, "a", {"network-scope": "host"})],
        )
        assert get_endpoint_from_task_labels(task, NODE) is None

    def test_index_has_priority_over_name(self, task_factory):
        """Test that the index wins when both selectors are present."""
        task = task_factory(
            labels=dict(PROMETHEUS, DCOS_METRICS_PORT_INDEX="1", DCOS_METRICS_PORT_NAME="a"),
            ports=[(9100, "a", {"network-scope": "host"}), (9200, "b", {"network-scope": "host"})],
        )
        assert get_endpoint_from_task_labels(task, NODE) == f"http://{NODE}:9200/metrics"

    def test_port_name_last_match(self, task_factory):
        """Test selecting by name, the last matching port wins."""
        task = task_factory(
            labels=dict(PROMETHEUS, DCOS_METRICS_PORT_NAME="metrics"),
            ports=[
                (9100, "metrics", {"network-scope": "host"}),
                (9300, "metrics", {"network-scope": "host"}),
            ],
        )
        assert get_endpoint_from_task_labels(task, NODE) == f"http://{NODE}:9300/metrics"

    def test_unknown_port_name(self, task_factory):
        """Test that an unmatched name yields no endpoint."""
        task = task_factory(
            labels=dict(PROMETHEUS, DCOS_METRICS_PORT_NAME="missing"),
            ports=[(9100, "metrics", {"network-scope": "host"})],
        )
        assert get_endpoint_from_task_labels(task, NODE) is None

    def test_without_format_label(self, task_factory):
        """Test that tasks without the format label are ignored."""
        task = task_factory(
            labels={"DCOS_METRICS_PORT_INDEX": "0"},
            ports=[(9100, "a", {"network-scope": "host"})],
        )
        assert get_endpoint_from_task_labels(task, NODE) is None


class TestGetTaskTargets:
    """Tests for converting tasks to scrape targets."""

    def test_targets_tagged_with_container_id(self, task_json, tasks_factory, status_factory):
        """Test the host-scoped port example end to end."""
        tasks = tasks_factory(
            task_json(
                ports=[(9100, "metrics", dict(PROMETHEUS, **{"network-scope": "host"}))],
                statuses=[status_factory(container_id="abc123")],
            )
        )

        targets = get_task_targets(tasks, NODE)

        assert len(targets) == 1
        assert targets[0].url == f"http://{NODE}:9100/metrics"
        assert targets[0].original_url == targets[0].url
        assert targets[0].tags == {"container_id": "abc123"}

    def test_port_and_task_label_endpoints(self, task_json, tasks_factory):
        """Test that both discovery mechanisms contribute endpoints."""
        tasks = tasks_factory(
            task_json(
                labels=dict(PROMETHEUS, DCOS_METRICS_PORT_INDEX="1"),
                ports=[
                    (9100, "a", dict(PROMETHEUS, **{"network-scope": "host"})),
                    (9200, "b", {"network-scope": "host"}),
                ],
            )
        )

        urls = [t.url for t in get_task_targets(tasks, NODE)]

        assert urls == [f"http://{NODE}:9100/metrics", f"http://{NODE}:9200/metrics"]
