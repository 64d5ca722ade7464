"""Resolve the full set of scrape targets for a collection cycle."""

from typing import Dict, List, Optional, TYPE_CHECKING
from urllib.parse import SplitResult, urlsplit, urlunsplit
import logging
import socket
import threading

from mesos_collector.discovery.task_endpoints import get_task_targets
from mesos_collector.exceptions import CollectorError, ConfigurationError
from mesos_collector.mesos.client import OperatorClient
from mesos_collector.models import ScrapeTarget

if TYPE_CHECKING:
    from mesos_collector.registry.containers import ContainerRegistry

logger = logging.getLogger(__name__)

SCRAPE_SCHEMES = ("http", "https", "unix")


def parse_static_url(url: str) -> SplitResult:
    """Parse and validate a statically configured scrape URL.

    HTTP(S) URLs without a path get the default ``/metrics`` path.

    Raises:
        ConfigurationError: If the URL cannot be used as a scrape target
    """
    try:
        parts = urlsplit(url)
        # Accessing the port validates it
        parts.port
    except ValueError as e:
        raise ConfigurationError(f"Could not parse {url}: {e}") from e

    if parts.scheme not in SCRAPE_SCHEMES:
        raise ConfigurationError(f"Unsupported scheme in {url!r}")
    if parts.scheme == "unix":
        if not parts.path:
            raise ConfigurationError(f"Missing socket path in {url!r}")
        return parts
    if not parts.hostname:
        raise ConfigurationError(f"Missing host in {url!r}")
    if not parts.path:
        parts = parts._replace(path="/metrics")
    return parts


def address_to_url(template: SplitResult, address: str) -> str:
    """Substitute the host of ``template`` with ``address``.

    Scheme, user info, port, path, query and fragment are preserved.
    """
    host = f"[{address}]" if ":" in address else address
    if template.port is not None:
        host = f"{host}:{template.port}"
    if "@" in template.netloc:
        host = template.netloc.rsplit("@", 1)[0] + "@" + host
    return urlunsplit(
        (template.scheme, host, template.path, template.query, template.fragment)
    )


def lookup_host(hostname: str) -> List[str]:
    """Resolve a hostname to its unique addresses, in resolver order."""
    addresses: List[str] = []
    for info in socket.getaddrinfo(hostname, None, proto=socket.IPPROTO_TCP):
        address = info[4][0]
        if address not in addresses:
            addresses.append(address)
    return addresses


class TargetResolver:
    """Merges every target source into one de-duplicated target set.

    Sources are merged in a fixed order: static URLs, DNS services, locally
    registered containers, then scheduler tasks. When two sources produce the
    same resolved URL the later source wins, so scheduler-discovered targets
    override everything else.
    """

    def __init__(
        self,
        config: Optional[Dict] = None,
        operator_client: Optional[OperatorClient] = None,
        node_hostname: Optional[str] = None,
        registry: Optional["ContainerRegistry"] = None,
        mesos_timeout: float = 10.0,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialize the resolver.

        Args:
            config: Optional configuration dictionary with:
                - urls: Static scrape URLs
                - dns_services: URLs whose hostname is resolved to one target per address
                - format: Label value marking a task port as scrapable (default: prometheus)
            operator_client: Client for scheduler task discovery (disabled when None)
            node_hostname: Hostname used for host-scoped task ports
            registry: Local container registry (disabled when None)
            mesos_timeout: Deadline for the task discovery query, in seconds
            cancel_event: When set, task discovery is skipped and the last known targets are reused
        """
        self.config = config or {}
        self.urls: List[str] = list(self.config.get("urls") or [])
        self.dns_services: List[str] = list(self.config.get("dns_services") or [])
        self.target_format = self.config.get("format", "prometheus")
        self.operator_client = operator_client
        self.node_hostname = node_hostname
        self.registry = registry
        self.mesos_timeout = mesos_timeout
        self.cancel_event = cancel_event or threading.Event()

        # Last successful task discovery, reused when the scheduler is unavailable
        self._task_targets: List[ScrapeTarget] = []

    def validate_config(self) -> None:
        """Check static configuration, failing fast on malformed entries.

        Raises:
            ConfigurationError: If a static URL or DNS service URL is malformed
        """
        for url in self.urls + self.dns_services:
            parse_static_url(url)
        if self.operator_client is not None and not self.node_hostname:
            raise ConfigurationError("Task discovery requires the node hostname")

    def resolve(self) -> Dict[str, ScrapeTarget]:
        """Compute the targets for one collection cycle.

        Returns:
            Mapping of resolved URL to target, in source precedence order
        """
        sources = [
            ("static", self._static_targets),
            ("dns", self._dns_targets),
            ("registry", self._registry_targets),
            ("tasks", self._discovered_task_targets),
        ]

        targets: Dict[str, ScrapeTarget] = {}
        for source, produce in sources:
            for target in produce():
                if target.url in targets:
                    logger.debug(f"Target {target.url} from {source} overrides an earlier source")
                targets[target.url] = target

        logger.debug(f"Resolved {len(targets)} scrape targets")
        return targets

    def _static_targets(self) -> List[ScrapeTarget]:
        results = []
        for url in self.urls:
            try:
                parts = parse_static_url(url)
            except ConfigurationError as e:
                logger.warning(f"{e}, skipping it")
                continue
            # urlunsplit would collapse unix:///path to unix:/path
            resolved = url if parts.scheme == "unix" else urlunsplit(parts)
            results.append(ScrapeTarget(url=resolved, original_url=resolved))
        return results

    def _dns_targets(self) -> List[ScrapeTarget]:
        results = []
        for service in self.dns_services:
            try:
                template = parse_static_url(service)
            except ConfigurationError as e:
                logger.warning(f"{e}, skipping it")
                continue
            if template.scheme == "unix":
                logger.warning(f"Cannot resolve unix socket service {service}, skipping it")
                continue

            try:
                addresses = lookup_host(template.hostname)
            except OSError as e:
                logger.warning(f"Could not resolve {template.netloc}, skipping it. Error: {e}")
                continue

            for address in addresses:
                results.append(
                    ScrapeTarget(
                        url=address_to_url(template, address),
                        original_url=service,
                        address=address,
                    )
                )
        return results

    def _registry_targets(self) -> List[ScrapeTarget]:
        if self.registry is None:
            return []
        return [
            ScrapeTarget(
                url=f"statsd://{c.statsd_host}:{c.statsd_port}",
                original_url=f"statsd://{c.statsd_host}:{c.statsd_port}",
                tags={"container_id": c.container_id},
            )
            for c in self.registry.list_containers()
        ]

    def _discovered_task_targets(self) -> List[ScrapeTarget]:
        if self.operator_client is None or not self.node_hostname:
            return []
        if self.cancel_event.is_set():
            logger.debug("Cycle cancelled, skipping task discovery")
            return list(self._task_targets)

        try:
            tasks = self.operator_client.get_tasks(timeout=self.mesos_timeout)
        except CollectorError as e:
            logger.error(f"Task discovery failed, reusing last known targets: {e}")
            return list(self._task_targets)

        self._task_targets = get_task_targets(
            tasks, self.node_hostname, self.target_format
        )
        return list(self._task_targets)
