"""Collector for the Mesos master and agent ``/metrics/snapshot`` endpoints."""

from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote, urlsplit, urlunsplit
import logging
import re

import requests

from mesos_collector.collectors.base_collector import BaseCollector, CollectResult
from mesos_collector.exceptions import CollectorError, ConfigurationError, TransportError
from mesos_collector.models import MetricKind, MetricRecord

logger = logging.getLogger(__name__)

MASTER = "master"
AGENT = "agent"

DEFAULT_PORTS = {MASTER: 5050, AGENT: 5051}

_INVALID_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def parse_node_url(value: str, role: str) -> str:
    """Turn a configured master/agent address into a URL.

    Bare ``host`` or ``host:port`` values are accepted for backwards
    compatibility, using the role's default port when none is given.
    """
    if value.startswith("http://") or value.startswith("https://"):
        return value.rstrip("/")

    host, _, port = value.partition(":")
    url = f"http://{host}:{port or DEFAULT_PORTS[role]}"
    logger.warning(f"Using {url!r} as connection URL; please update your configuration to use an URL")
    return url


def decode_framework_name(encoded: str) -> str:
    """Percent-decode a framework name taken from a metric key.

    Mesos percent-encodes framework names before building metric keys. When
    the value is not valid percent-encoding the raw value is kept.
    """
    if _INVALID_ESCAPE.search(encoded):
        logger.warning(f"Error decoding framework name {encoded!r} from Mesos metrics: invalid escape")
        return encoded
    try:
        return unquote(encoded, errors="strict")
    except UnicodeDecodeError as e:
        logger.warning(f"Error decoding framework name {encoded!r} from Mesos metrics: {e}")
        return encoded


def flatten(data: Dict, prefix: str = "") -> Dict[str, float]:
    """Flatten nested JSON into ``a/b/c`` keys, keeping numeric leaves only."""
    fields: Dict[str, float] = {}
    for key, value in data.items():
        name = f"{prefix}/{key}" if prefix else key
        if isinstance(value, dict):
            fields.update(flatten(value, name))
        elif isinstance(value, bool):
            fields[name] = float(value)
        elif isinstance(value, (int, float)):
            fields[name] = float(value)
    return fields


def split_tagged_field(parts: List[str]) -> Tuple[str, Dict[str, str]]:
    """Pull identifiers embedded in a metric key out into tags.

    Args:
        parts: Metric key split on ``/``

    Returns:
        The field name without identifiers, and the extracted tags
    """
    tags: Dict[str, str] = {}

    if parts[0] == "master":
        tags["framework_name"] = decode_framework_name(parts[2])
        tags["framework_id"] = parts[3]
        if len(parts) == 5:
            # e.g. master/frameworks/<name>/<id>/calls
            return f"{parts[0]}/{parts[1]}/{parts[4]}_total", tags

        kind = parts[4]
        if kind == "offers":
            return f"{parts[0]}/{parts[1]}/{parts[4]}/{parts[5]}", tags
        if kind in ("calls", "events", "operations"):
            tag = {"calls": "call_type", "events": "event_type", "operations": "operation_type"}[kind]
            tags[tag] = parts[5]
            return f"{parts[0]}/{parts[1]}/{parts[4]}", tags
        if kind == "tasks" and len(parts) > 6:
            tags["task_state"] = parts[6]
            return f"{parts[0]}/{parts[1]}/{parts[4]}/{parts[5]}", tags
        if kind == "roles" and len(parts) > 6:
            tags["role_name"] = parts[5]
            return f"{parts[0]}/{parts[1]}/{parts[4]}/{parts[6]}", tags

        logger.info(f"Unexpected metric name {kind}")
        return f"{parts[0]}/{parts[1]}/{'/'.join(parts[4:])}", tags

    # allocator/<allocator>/...
    kind = parts[2]
    if kind == "roles" and len(parts) > 5:
        tags["role_name"] = parts[3]
        return f"{parts[0]}/{parts[2]}/{parts[4]}/{parts[5]}", tags
    if kind == "offer_filters" and len(parts) > 5:
        tags["role_name"] = parts[4]
        return f"{parts[0]}/{parts[2]}/{parts[3]}/{parts[5]}", tags
    if kind == "quota" and len(parts) > 7:
        tags["role_name"] = parts[4]
        tags["resource"] = parts[6]
        return f"{parts[0]}/{parts[2]}/{parts[3]}/{parts[5]}/{parts[7]}", tags

    logger.info(f"Unexpected metric name {kind}")
    return "/".join(parts), tags


class MesosCollector(BaseCollector):
    """Collects the metrics snapshot of Mesos masters and agents.

    The flat snapshot becomes one ``mesos`` record per node. Per-framework
    and per-role allocator metrics are split into separate records tagged with
    the identifiers found in their keys.
    """

    def __init__(self, config: Optional[Dict] = None):
        """Initialize the Mesos collector.

        Args:
            config: Optional configuration dictionary with:
                - masters: Master URLs (or host[:port])
                - agents: Agent URLs (or host[:port])
                - timeout: Request timeout in seconds (default: 10)
                - ca_certificate_path: CA bundle used to verify the nodes
                - user_agent: User-Agent header value
        """
        super().__init__(config)
        self.timeout = self.config.get("timeout", 10.0)
        self.nodes: List[Tuple[str, str]] = []
        for master in self.config.get("masters") or []:
            self.nodes.append((parse_node_url(master, MASTER), MASTER))
        for agent in self.config.get("agents") or []:
            self.nodes.append((parse_node_url(agent, AGENT), AGENT))

        self.session = requests.Session()
        self.session.headers["User-Agent"] = self.config.get("user_agent", "mesos-collector")
        if self.config.get("ca_certificate_path"):
            self.session.verify = self.config["ca_certificate_path"]

    def close(self) -> None:
        self.session.close()

    def collect(self) -> CollectResult:
        """Collect the snapshot of every configured node concurrently."""
        result = CollectResult()
        if not self.nodes:
            return result

        with ThreadPoolExecutor(max_workers=len(self.nodes), thread_name_prefix="mesos") as executor:
            futures = [
                (url, executor.submit(self.gather_node, url, role)) for url, role in self.nodes
            ]
            for url, future in futures:
                try:
                    result.records.extend(future.result())
                except CollectorError as e:
                    logger.warning(f"Mesos snapshot failed: {e}")
                    result.errors.append(e)
        return result

    def validate_config(self) -> bool:
        """Validate the configured node URLs.

        Raises:
            ConfigurationError: If a node URL has no host
        """
        for url, _ in self.nodes:
            if not urlsplit(url).hostname:
                raise ConfigurationError(f"Could not extract hostname from: {url!r}")
        return True

    def gather_node(self, url: str, role: str) -> List[MetricRecord]:
        """Fetch and convert the snapshot of a single node.

        Raises:
            TransportError: If the request fails or the body is not JSON
        """
        try:
            response = self.session.get(f"{url}/metrics/snapshot", timeout=self.timeout)
            response.raise_for_status()
            snapshot = response.json()
        except requests.RequestException as e:
            raise TransportError(url, f"error fetching snapshot: {e}") from e
        except ValueError as e:
            raise TransportError(url, "error decoding JSON response") from e

        parts = urlsplit(url)
        tags = {
            "server": parts.hostname or "",
            "url": urlunsplit((parts.scheme, parts.netloc.rsplit("@", 1)[-1], "", "", "")),
            "role": role,
        }
        return self.convert_snapshot(flatten(snapshot), tags, role)

    def convert_snapshot(
        self, fields: Dict[str, float], tags: Dict[str, str], role: str
    ) -> List[MetricRecord]:
        """Split a flattened snapshot into tagged records."""
        tags = dict(tags)
        if role == MASTER:
            tags["state"] = "leader" if fields.get("master/elected") else "standby"

        plain: Dict[str, float] = {}
        tagged: Dict[Tuple, Dict[str, float]] = {}
        for name, value in fields.items():
            parts = name.split("/")
            is_framework = name.startswith("master/frameworks/") and len(parts) >= 5
            is_allocator = name.startswith("allocator/") and len(parts) > 5
            if not (is_framework or is_allocator):
                plain[name] = value
                continue

            field_name, extra = split_tagged_field(parts)
            key = tuple(sorted(extra.items()))
            tagged.setdefault(key, {})[field_name] = value

        records = [MetricRecord(name="mesos", kind=MetricKind.UNTYPED, fields=plain, tags=tags)]
        for key, group in tagged.items():
            group_tags = dict(key)
            group_tags.update(tags)
            records.append(
                MetricRecord(name="mesos", kind=MetricKind.UNTYPED, fields=group, tags=group_tags)
            )
        return records
