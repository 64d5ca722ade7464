"""Container metadata cache used to enrich scraped records."""

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional
import logging
import threading

from mesos_collector.discovery.task_endpoints import get_container_id
from mesos_collector.exceptions import CollectorError
from mesos_collector.mesos.client import OperatorClient
from mesos_collector.mesos.types import GetState
from mesos_collector.metadata.single_flight import RefreshGate
from mesos_collector.models import ContainerInfo, MetricRecord

logger = logging.getLogger(__name__)

METRICS_LABEL_PREFIX = "DCOS_METRICS_"
LABEL_WHITELIST = ("DCOS_SERVICE_NAME",)


def map_task_labels(labels: Dict[str, str]) -> Dict[str, str]:
    """Select the task labels that carry metric metadata.

    Labels prefixed ``DCOS_METRICS_`` are kept with the prefix stripped and
    whitelisted labels are kept as they are; keys are lower-cased.
    """
    results = {}
    for key, value in labels.items():
        if key.startswith(METRICS_LABEL_PREFIX):
            key = key[len(METRICS_LABEL_PREFIX):]
            if not key:
                continue
        elif key not in LABEL_WHITELIST:
            continue
        results[key.lower()] = value
    return results


def build_container_map(state: GetState) -> Dict[str, ContainerInfo]:
    """Index the launched tasks of an agent state by container id."""
    containers: Dict[str, ContainerInfo] = {}
    if state.tasks is None:
        # No tasks are running on the agent
        return containers

    for task in state.tasks.launched_tasks:
        cid = get_container_id(task.statuses)
        if not cid:
            continue

        executor_name = ""
        if task.executor_id:
            executor_name = state.executor_names.get(task.executor_id, "")

        containers[cid] = ContainerInfo(
            container_id=cid,
            task_name=task.name,
            executor_name=executor_name,
            framework_name=state.framework_names.get(task.framework_id, ""),
            task_labels=map_task_labels(task.labels),
        )
    return containers


class MetadataCache:
    """Maps container ids to workload metadata, refreshed in the background.

    Records for unknown containers pass through untouched and trigger an
    asynchronous refresh. Refreshes are rate limited so that a burst of
    unknown containers produces a single state query.
    """

    def __init__(
        self,
        client: Optional[OperatorClient],
        config: Optional[Dict] = None,
        gate: Optional[RefreshGate] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialize the metadata cache.

        Args:
            client: Operator API client used for state queries
            config: Optional configuration dictionary with:
                - timeout: State query timeout in seconds (default: 10)
                - rate_limit: Minimum seconds between refreshes (default: 5)
            gate: Single-flight gate (defaults to one using rate_limit)
            cancel_event: When set, no further refreshes are started
        """
        self.config = config or {}
        self.client = client
        self.timeout = self.config.get("timeout", 10.0)
        self.rate_limit = self.config.get("rate_limit", 5.0)
        self.gate = gate or RefreshGate(self.rate_limit)
        self.cancel_event = cancel_event or threading.Event()

        self._lock = threading.Lock()
        self._containers: Dict[str, ContainerInfo] = {}
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="metadata")
        self._pending: Optional[Future] = None

    @property
    def containers(self) -> Dict[str, ContainerInfo]:
        """Snapshot of the current container map."""
        with self._lock:
            return self._containers

    def get(self, container_id: str) -> Optional[ContainerInfo]:
        return self.containers.get(container_id)

    def apply(self, records: Iterable[MetricRecord]) -> List[MetricRecord]:
        """Add workload metadata tags to records carrying a ``container_id``.

        Returns:
            The same records, enriched where the container is known
        """
        records = list(records)
        containers = self.containers
        unknown = set()

        for record in records:
            cid = record.get_tag("container_id")
            if cid is None:
                continue
            info = containers.get(cid)
            if info is None:
                unknown.add(cid)
                continue

            for key, value in info.task_labels.items():
                record.add_tag(key, value)
            record.add_tag("service_name", info.framework_name)
            if info.executor_name:
                record.add_tag("executor_name", info.executor_name)
            record.add_tag("task_name", info.task_name)

        if unknown:
            self.refresh(sorted(unknown))
        return records

    def refresh(self, container_ids: Optional[List[str]] = None) -> Optional[Future]:
        """Schedule a background refresh unless one is running or cooling down.

        Args:
            container_ids: Unknown container ids that caused the refresh, for logging

        Returns:
            Future completing when the refresh is done, or None if dropped
        """
        if self.client is None or self.cancel_event.is_set():
            return None
        if not self.gate.try_acquire():
            return None

        try:
            future = self._executor.submit(self._refresh, container_ids or [])
        except RuntimeError:
            # Executor already shut down
            self.gate.release()
            return None
        self._pending = future
        return future

    def wait_for_refresh(self, timeout: Optional[float] = None) -> bool:
        """Block until the latest scheduled refresh completes.

        Returns:
            True if a refresh completed successfully
        """
        future = self._pending
        if future is None:
            return False
        return bool(future.result(timeout=timeout))

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def _refresh(self, container_ids: List[str]) -> bool:
        try:
            for cid in container_ids:
                logger.info(f"Metadata for container {cid!r} was not found in cache")

            if self.cancel_event.is_set():
                return False

            try:
                state = self.client.get_state(timeout=self.timeout)
            except CollectorError as e:
                logger.error(f"Metadata refresh failed, keeping cached metadata: {e}")
                return False
            except Exception as e:
                logger.error(f"Unexpected error refreshing metadata: {e}", exc_info=True)
                return False

            containers = build_container_map(state)
            with self._lock:
                self._containers = containers
            logger.debug(f"Cached metadata for {len(containers)} containers")
            return True
        finally:
            self.gate.release()
