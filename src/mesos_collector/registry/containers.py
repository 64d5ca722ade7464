"""Registry of locally registered containers and their statsd listeners."""

from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union
import json
import logging
import os
import re
import threading

from mesos_collector.exceptions import ConflictError
from mesos_collector.models import MetricRecord, RegisteredContainer
from mesos_collector.registry.statsd import StatsdListener

logger = logging.getLogger(__name__)

DEFAULT_STATSD_HOST = "127.0.0.1"

_CONTAINER_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def validate_container_id(container_id: str) -> str:
    """Check that a container id is usable as a persistence file name.

    Raises:
        ValueError: If the id is empty or contains path characters
    """
    if not isinstance(container_id, str) or not _CONTAINER_ID_RE.match(container_id):
        raise ValueError(f"Invalid container id: {container_id!r}")
    return container_id


def read_container_files(containers_dir: Union[str, Path]) -> List[RegisteredContainer]:
    """Read the registrations persisted in a containers directory.

    Invalid files are skipped with a warning.
    """
    directory = Path(containers_dir)
    if not directory.is_dir():
        return []

    containers = []
    for path in sorted(directory.iterdir()):
        if not path.is_file() or path.name.startswith("."):
            continue
        try:
            with open(path, "r") as f:
                container = RegisteredContainer.from_dict(json.load(f))
            validate_container_id(container.container_id)
        except (OSError, ValueError) as e:
            logger.warning(f"Skipping invalid container file {path}: {e}")
            continue
        containers.append(container)
    return containers


class ContainerRegistry:
    """Concurrent map of registered containers to statsd listeners.

    Registrations are idempotent: adding a known id returns the stored entry
    unchanged. A port owned by one container is never handed to another.
    When a containers directory is configured every registration is also
    persisted there as ``<dir>/<container_id>`` so it survives restarts.
    """

    def __init__(
        self,
        containers_dir: Optional[Union[str, Path]] = None,
        default_host: str = DEFAULT_STATSD_HOST,
        listener_factory: Callable[[str, int, str], StatsdListener] = StatsdListener,
    ):
        """Initialize the registry.

        Args:
            containers_dir: Directory holding one JSON file per container (optional)
            default_host: Listener host used when a registration gives none
            listener_factory: Callable building a listener from (host, port, container_id)
        """
        self.containers_dir = Path(containers_dir) if containers_dir else None
        self.default_host = default_host
        self.listener_factory = listener_factory

        self._lock = threading.RLock()
        self._containers: Dict[str, RegisteredContainer] = {}
        self._listeners: Dict[str, StatsdListener] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._containers)

    def load(self) -> int:
        """Restore registrations persisted in the containers directory.

        Invalid files are skipped with a warning.

        Returns:
            Number of containers loaded
        """
        if self.containers_dir is None:
            return 0

        loaded = 0
        for container in read_container_files(self.containers_dir):
            try:
                self._register(container.container_id, container.statsd_host,
                               container.statsd_port, persist=False)
            except ConflictError as e:
                logger.warning(f"Skipping container {container.container_id}: {e}")
                continue
            loaded += 1

        logger.info(f"Loaded {loaded} containers from {self.containers_dir}")
        return loaded

    def add_container(
        self,
        container_id: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ) -> RegisteredContainer:
        """Register a container, or return its existing registration.

        Args:
            container_id: Container id
            host: Statsd listener host (default host when unset)
            port: Statsd listener port (ephemeral when unset)

        Returns:
            The stored registration

        Raises:
            ValueError: If the container id is invalid
            ConflictError: If the port belongs to another container or cannot be bound
        """
        validate_container_id(container_id)
        return self._register(container_id, host, port, persist=True)

    def remove_container(self, container_id: str) -> None:
        """Remove a registration and release its listener. Unknown ids are ignored."""
        with self._lock:
            container = self._containers.pop(container_id, None)
            listener = self._listeners.pop(container_id, None)
            if container is None:
                return
            if listener is not None:
                listener.close()
            self._delete_file(container_id)
        logger.info(f"Removed container {container_id}")

    def list_containers(self) -> List[RegisteredContainer]:
        """Return all registrations ordered by container id."""
        with self._lock:
            return [self._containers[cid] for cid in sorted(self._containers)]

    def get_container(self, container_id: str) -> Tuple[Optional[RegisteredContainer], bool]:
        with self._lock:
            container = self._containers.get(container_id)
        return container, container is not None

    def drain(self, container_id: str) -> Optional[List[MetricRecord]]:
        """Return the statsd records buffered for a container.

        Returns:
            Buffered records, or None if the container is not registered
        """
        with self._lock:
            listener = self._listeners.get(container_id)
        if listener is None:
            return None
        return listener.drain()

    def close(self) -> None:
        """Stop every listener. Persisted registrations are kept."""
        with self._lock:
            listeners = list(self._listeners.values())
            self._listeners.clear()
            self._containers.clear()
        for listener in listeners:
            listener.close()

    def _register(
        self,
        container_id: str,
        host: Optional[str],
        port: Optional[int],
        persist: bool,
    ) -> RegisteredContainer:
        with self._lock:
            existing = self._containers.get(container_id)
            if existing is not None:
                logger.debug(f"Container {container_id} is already registered")
                return existing

            if port:
                for other in self._containers.values():
                    if other.statsd_port == port:
                        raise ConflictError(container_id, port, owner=other.container_id)

            listener = self.listener_factory(host or self.default_host, port or 0, container_id)
            try:
                listener.start()
            except OSError as e:
                logger.error(f"Could not bind statsd listener for {container_id}: {e}")
                raise ConflictError(container_id, port or 0) from e

            container = RegisteredContainer(
                container_id=container_id,
                statsd_host=listener.host,
                statsd_port=listener.port,
            )
            if persist:
                try:
                    self._write_file(container)
                except OSError:
                    listener.close()
                    raise

            self._containers[container_id] = container
            self._listeners[container_id] = listener

        logger.info(
            f"Registered container {container_id} on "
            f"{container.statsd_host}:{container.statsd_port}"
        )
        return container

    def _write_file(self, container: RegisteredContainer) -> None:
        if self.containers_dir is None:
            return
        self.containers_dir.mkdir(parents=True, exist_ok=True)
        path = self.containers_dir / container.container_id
        tmp_path = self.containers_dir / f".{container.container_id}.tmp"
        with open(tmp_path, "w") as f:
            json.dump(container.to_dict(), f)
        os.replace(tmp_path, path)

    def _delete_file(self, container_id: str) -> None:
        if self.containers_dir is None:
            return
        path = self.containers_dir / container_id
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not delete container file {path}: {e}")
