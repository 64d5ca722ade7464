"""Collector context wiring every component of one collector process."""

from typing import Callable, List, Optional, Union
import logging
import threading

from mesos_collector.collectors.accumulator import Accumulator, accumulate
from mesos_collector.collectors.base_collector import CollectResult
from mesos_collector.collectors.mesos_collector import MesosCollector
from mesos_collector.collectors.prometheus_collector import PrometheusCollector
from mesos_collector.discovery.resolver import TargetResolver
from mesos_collector.mesos.client import OperatorClient, get_agent_hostname
from mesos_collector.metadata.cache import MetadataCache
from mesos_collector.models import MetricRecord
from mesos_collector.processors.lowercase import Lowercase
from mesos_collector.processors.nginx_vts_filter import NginxVTSFilter
from mesos_collector.registry.containers import ContainerRegistry
from mesos_collector.utils.config import Config

logger = logging.getLogger(__name__)


class CollectorContext:
    """Owns the resolver, collectors, metadata cache and container registry.

    One context exists per process. ``gather`` runs a full collection cycle:
    resolve targets, scrape them in parallel, collect Mesos snapshots, enrich
    records with workload metadata, apply processors and hand everything to
    an accumulator. ``stop`` cancels pending fetches and releases resources.
    """

    def __init__(
        self,
        scraper: PrometheusCollector,
        registry: ContainerRegistry,
        operator_client: Optional[OperatorClient] = None,
        mesos_collector: Optional[MesosCollector] = None,
        metadata: Optional[MetadataCache] = None,
        processors: Optional[List[Union[NginxVTSFilter, Lowercase]]] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.scraper = scraper
        self.registry = registry
        self.operator_client = operator_client
        self.mesos_collector = mesos_collector
        self.metadata = metadata
        self.processors = processors or []
        self.cancel_event = cancel_event or scraper.cancel_event

        self._loop_thread: Optional[threading.Thread] = None
        self._started = False

    @classmethod
    def from_config(cls, config: Config) -> "CollectorContext":
        """Build a context from configuration.

        Raises:
            ConfigurationError: If the agent URL has no usable hostname
        """
        cancel_event = threading.Event()
        mesos_config = config.section("mesos")
        prometheus_config = config.section("prometheus")

        operator_client = None
        node_hostname = None
        agent_url = config.get("mesos.agent_url")
        if agent_url:
            node_hostname = get_agent_hostname(agent_url)
            operator_client = OperatorClient(agent_url, mesos_config)

        registry = ContainerRegistry(
            containers_dir=config.get("statsd.containers_dir"),
            default_host=config.get("statsd.host", "127.0.0.1"),
        )

        resolver = TargetResolver(
            prometheus_config,
            operator_client=operator_client,
            node_hostname=node_hostname,
            registry=registry,
            mesos_timeout=config.get("mesos.timeout", 10.0),
            cancel_event=cancel_event,
        )
        scraper = PrometheusCollector(
            prometheus_config,
            resolver=resolver,
            registry=registry,
            cancel_event=cancel_event,
        )

        mesos_collector = None
        if mesos_config.get("masters") or mesos_config.get("agents"):
            mesos_collector = MesosCollector(mesos_config)

        metadata = None
        if operator_client is not None and config.get("metadata.enabled", True):
            metadata = MetadataCache(
                operator_client, config.section("metadata"), cancel_event=cancel_event
            )

        processors = []
        if config.get("processors.nginx_vts_filter.conversions"):
            processors.append(
                NginxVTSFilter.from_config(config.section("processors.nginx_vts_filter"))
            )
        if config.get("processors.lowercase.enabled", False):
            processors.append(
                Lowercase(send_original=config.get("processors.lowercase.send_original", False))
            )

        return cls(
            scraper=scraper,
            registry=registry,
            operator_client=operator_client,
            mesos_collector=mesos_collector,
            metadata=metadata,
            processors=processors,
            cancel_event=cancel_event,
        )

    def validate_config(self) -> bool:
        """Fail fast on malformed static configuration.

        Raises:
            ConfigurationError: If any collector is misconfigured
        """
        self.scraper.validate_config()
        if self.mesos_collector is not None:
            self.mesos_collector.validate_config()
        return True

    def start(self) -> None:
        """Validate configuration and restore persisted registrations."""
        if self._started:
            return
        self.validate_config()
        self.registry.load()
        self._started = True

    def gather(self, accumulator: Optional[Accumulator] = None) -> CollectResult:
        """Run one collection cycle.

        Per-target failures never abort the cycle: they are returned in the
        result and added to the accumulator's errors.

        Args:
            accumulator: Receives records and errors (optional)

        Returns:
            Enriched records and the errors of this cycle
        """
        result = self.scraper.collect()
        if self.mesos_collector is not None:
            result.extend(self.mesos_collector.collect())

        records: List[MetricRecord] = result.records
        if self.metadata is not None:
            records = self.metadata.apply(records)
        for processor in self.processors:
            records = processor.apply(records)
        result.records = records

        if accumulator is not None:
            accumulate(accumulator, records)
            for error in result.errors:
                accumulator.add_error(error)

        logger.info(
            f"Collected {len(result.records)} records with {len(result.errors)} errors"
        )
        return result

    def run(
        self,
        interval: float,
        on_cycle: Optional[Callable[[CollectResult], None]] = None,
    ) -> None:
        """Start gathering every ``interval`` seconds in a background thread."""
        if self._loop_thread is not None and self._loop_thread.is_alive():
            return

        self._loop_thread = threading.Thread(
            target=self._collect_loop, args=(interval, on_cycle), daemon=True
        )
        self._loop_thread.start()
        logger.info(f"Collection loop started with interval {interval}s")

    def stop(self) -> None:
        """Cancel pending fetches and release every resource."""
        self.cancel_event.set()
        # Closing the session aborts an in-flight scheduler query
        if self.operator_client is not None:
            self.operator_client.close()
        if self._loop_thread is not None:
            self._loop_thread.join(timeout=10)
            self._loop_thread = None

        if self.metadata is not None:
            self.metadata.close()
        self.registry.close()
        self.scraper.close()
        if self.mesos_collector is not None:
            self.mesos_collector.close()
        logger.info("Collector stopped")

    def _collect_loop(
        self,
        interval: float,
        on_cycle: Optional[Callable[[CollectResult], None]],
    ) -> None:
        while not self.cancel_event.is_set():
            try:
                result = self.gather()
                if on_cycle is not None:
                    on_cycle(result)
            except Exception as e:
                logger.error(f"Error in collection loop: {e}", exc_info=True)

            self.cancel_event.wait(interval)
