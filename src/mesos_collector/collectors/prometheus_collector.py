"""Collector scraping Prometheus exposition endpoints."""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING
from urllib.parse import parse_qs, urlsplit
import http.client
import logging
import socket
import threading

import requests

from mesos_collector.collectors import exposition
from mesos_collector.collectors.base_collector import BaseCollector, CollectResult
from mesos_collector.discovery.resolver import TargetResolver
from mesos_collector.exceptions import (
    CollectorError,
    ConfigurationError,
    CycleCancelledError,
    TransportError,
)
from mesos_collector.models import MetricRecord, ScrapeTarget

if TYPE_CHECKING:
    from mesos_collector.registry.containers import ContainerRegistry

logger = logging.getLogger(__name__)


class UnixHTTPConnection(http.client.HTTPConnection):
    """HTTP connection over a Unix domain socket."""

    def __init__(self, socket_path: str, timeout: float):
        super().__init__("localhost", timeout=timeout)
        self.socket_path = socket_path

    def connect(self):
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        try:
            sock.connect(self.socket_path)
        except OSError:
            sock.close()
            raise
        self.sock = sock


class PrometheusCollector(BaseCollector):
    """Scrapes every resolved target concurrently and parses the payloads.

    Records are tagged with their provenance: ``url`` (the original URL
    without user info), ``address`` for DNS-resolved targets, and any extra
    tags carried by the target such as ``container_id``.
    """

    def __init__(
        self,
        config: Optional[Dict] = None,
        resolver: Optional[TargetResolver] = None,
        registry: Optional["ContainerRegistry"] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialize the Prometheus collector.

        Args:
            config: Optional configuration dictionary with:
                - response_timeout: Per-request timeout in seconds (default: 3)
                - bearer_token: Path of a file holding a bearer token
                - tls: Dict with ca, cert, key and insecure_skip_verify
                - max_workers: Upper bound on concurrent fetches (default: 32)
            resolver: Target resolver (defaults to one built from config)
            registry: Container registry serving ``statsd://`` targets
            cancel_event: When set, targets not yet fetched are abandoned
        """
        super().__init__(config)
        self.response_timeout = self.config.get("response_timeout", 3.0)
        self.bearer_token = self.config.get("bearer_token")
        self.max_workers = self.config.get("max_workers", 32)
        self.cancel_event = cancel_event or threading.Event()
        self.resolver = resolver or TargetResolver(
            self.config, registry=registry, cancel_event=self.cancel_event
        )
        self.registry = registry

        tls = self.config.get("tls") or {}
        self.verify = self._verify_option(tls)
        self.cert = self._cert_option(tls)

        self.session = requests.Session()
        self.session.verify = self.verify
        if self.cert:
            self.session.cert = self.cert

    def close(self) -> None:
        self.session.close()

    def collect(self) -> CollectResult:
        """Resolve targets and scrape them all.

        Returns:
            Records from every target that succeeded, errors from the rest
        """
        if self.cancel_event.is_set():
            logger.debug("Cycle cancelled, nothing to scrape")
            return CollectResult()

        targets = list(self.resolver.resolve().values())
        logger.debug(f"Scraping {len(targets)} targets")
        return self.scrape_all(targets)

    def validate_config(self) -> bool:
        """Validate static configuration.

        Returns:
            True if configuration is valid

        Raises:
            ConfigurationError: If a static URL is malformed or TLS files are inconsistent
        """
        self.resolver.validate_config()
        tls = self.config.get("tls") or {}
        if bool(tls.get("cert")) != bool(tls.get("key")):
            raise ConfigurationError("TLS cert and key must be configured together")
        return True

    def scrape_all(self, targets: List[ScrapeTarget]) -> CollectResult:
        """Fetch all targets in parallel and wait for every one of them.

        A failing target never prevents the others from being collected.
        """
        result = CollectResult()
        if not targets:
            return result

        workers = max(1, min(self.max_workers, len(targets)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="scrape") as executor:
            futures = {executor.submit(self.scrape, target): target for target in targets}
            for future in as_completed(futures):
                target = futures[future]
                try:
                    result.records.extend(future.result())
                except CollectorError as e:
                    logger.warning(f"Scrape failed: {e}")
                    result.errors.append(e)
                except Exception as e:
                    logger.error(f"Unexpected error scraping {target.url}: {e}", exc_info=True)
                    result.errors.append(TransportError(target.url, str(e)))
        return result

    def scrape(self, target: ScrapeTarget) -> List[MetricRecord]:
        """Fetch and parse a single target.

        Raises:
            CycleCancelledError: If the cycle was cancelled before the fetch
            TransportError: If the fetch fails or the payload cannot be parsed
        """
        if self.cancel_event.is_set():
            raise CycleCancelledError(target.url)

        if target.scheme == "statsd":
            records = self._drain_statsd(target)
        else:
            if target.scheme == "unix":
                status, content_type, body = self._fetch_unix(target)
            else:
                status, content_type, body = self._fetch_http(target)

            if not 200 <= status < 300:
                raise TransportError(target.url, f"returned HTTP status {status}")

            try:
                records = exposition.parse(body, content_type)
            except (ValueError, UnicodeDecodeError) as e:
                raise TransportError(target.url, f"error reading metrics: {e}") from e

        url_tag = target.url_tag()
        for record in records:
            record.add_tag("url", url_tag)
            if target.address:
                record.add_tag("address", target.address)
            for key, value in target.tags.items():
                record.add_tag(key, value)
        return records

    def _headers(self, target: ScrapeTarget) -> Dict[str, str]:
        headers = {"Accept": exposition.ACCEPT_HEADER}
        if self.bearer_token:
            try:
                with open(self.bearer_token, "r") as f:
                    token = f.read().strip()
            except OSError as e:
                raise TransportError(target.url, f"could not read bearer token: {e}") from e
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _fetch_http(self, target: ScrapeTarget) -> Tuple[int, str, bytes]:
        url = target.url
        if not urlsplit(url).path:
            url = url + "/metrics"

        try:
            response = self.session.get(
                url, headers=self._headers(target), timeout=self.response_timeout
            )
        except requests.RequestException as e:
            raise TransportError(target.url, f"error making HTTP request: {e}") from e

        return (
            response.status_code,
            response.headers.get("Content-Type", ""),
            response.content,
        )

    def _fetch_unix(self, target: ScrapeTarget) -> Tuple[int, str, bytes]:
        parts = urlsplit(target.url)
        path = parse_qs(parts.query).get("path", ["/metrics"])[0] or "/metrics"

        conn = UnixHTTPConnection(parts.path, timeout=self.response_timeout)
        try:
            conn.request("GET", path, headers=self._headers(target))
            response = conn.getresponse()
            body = response.read()
            return response.status, response.getheader("Content-Type", ""), body
        except (OSError, http.client.HTTPException) as e:
            raise TransportError(target.url, f"error making HTTP request: {e}") from e
        finally:
            conn.close()

    def _drain_statsd(self, target: ScrapeTarget) -> List[MetricRecord]:
        container_id = target.tags.get("container_id", "")
        if self.registry is None:
            raise TransportError(target.url, "no container registry is configured")
        records = self.registry.drain(container_id)
        if records is None:
            raise TransportError(target.url, f"container {container_id} is not registered")
        return records

    @staticmethod
    def _verify_option(tls: Dict):
        if tls.get("insecure_skip_verify"):
            return False
        return tls.get("ca") or True

    @staticmethod
    def _cert_option(tls: Dict):
        if tls.get("cert") and tls.get("key"):
            return (tls["cert"], tls["key"])
        return None
