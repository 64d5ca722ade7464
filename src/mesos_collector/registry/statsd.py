"""UDP statsd listener owned by a registered container."""

from typing import Dict, List, Optional, Tuple, Union
from dataclasses import dataclass, field
import logging
import socket
import threading

from mesos_collector.models import MetricKind, MetricRecord

logger = logging.getLogger(__name__)

MAX_PACKET_SIZE = 65535

_KINDS = {
    "c": MetricKind.COUNTER,
    "g": MetricKind.GAUGE,
    "ms": MetricKind.UNTYPED,
    "h": MetricKind.UNTYPED,
    "d": MetricKind.UNTYPED,
}


@dataclass
class StatsdSample:
    name: str
    kind: MetricKind
    value: Union[int, float]
    sample_rate: float = 1.0
    tags: Dict[str, str] = field(default_factory=dict)
    relative: bool = False


def _number(text: str) -> Union[int, float]:
    try:
        return int(text)
    except ValueError:
        return float(text)


def parse_statsd_line(line: str) -> StatsdSample:
    """Parse one ``name:value|type[|@rate][|#tag:value,...]`` line.

    Raises:
        ValueError: If the line is not valid statsd
    """
    name, sep, rest = line.partition(":")
    if not sep or not name:
        raise ValueError(f"Missing metric name in {line!r}")

    segments = rest.split("|")
    if len(segments) < 2:
        raise ValueError(f"Missing metric type in {line!r}")

    value_text, type_code = segments[0], segments[1]
    if type_code not in _KINDS:
        raise ValueError(f"Unsupported metric type {type_code!r} in {line!r}")

    sample = StatsdSample(
        name=name,
        kind=_KINDS[type_code],
        value=_number(value_text),
        relative=type_code == "g" and value_text[:1] in ("+", "-"),
    )
    for segment in segments[2:]:
        if segment.startswith("@"):
            sample.sample_rate = float(segment[1:])
            if sample.sample_rate <= 0:
                raise ValueError(f"Invalid sample rate in {line!r}")
        elif segment.startswith("#"):
            for tag in segment[1:].split(","):
                key, _, value = tag.partition(":")
                if key:
                    sample.tags[key] = value
    return sample


class StatsdListener:
    """Receives statsd packets on a UDP socket and aggregates them.

    Counters are summed, gauges and timings keep their last value. ``drain``
    returns the aggregated records and starts a new interval.
    """

    def __init__(self, host: str, port: int, container_id: str):
        self.requested_host = host
        self.requested_port = port
        self.container_id = container_id

        self._sock: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._lock = threading.Lock()
        self._values: Dict[Tuple, MetricRecord] = {}

    @property
    def host(self) -> str:
        return self.requested_host

    @property
    def port(self) -> int:
        if self._sock is not None:
            return self._sock.getsockname()[1]
        return self.requested_port

    def start(self) -> None:
        """Bind the socket and start receiving in a background thread.

        Raises:
            OSError: If the address cannot be bound
        """
        if self._running:
            return

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind((self.requested_host, self.requested_port))
        except OSError:
            sock.close()
            raise
        sock.settimeout(0.5)
        self._sock = sock
        self._running = True
        self._thread = threading.Thread(
            target=self._serve, name=f"statsd-{self.container_id}", daemon=True
        )
        self._thread.start()
        logger.info(f"Statsd listener for {self.container_id} on {self.host}:{self.port}")

    def close(self) -> None:
        """Stop receiving and release the socket."""
        self._running = False
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        if self._sock:
            self._sock.close()
            self._sock = None

    def handle_packet(self, data: bytes) -> None:
        for line in data.decode("utf-8", errors="replace").splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                sample = parse_statsd_line(line)
            except ValueError as e:
                logger.warning(f"Dropping statsd line from {self.container_id}: {e}")
                continue
            self._record(sample)

    def drain(self) -> List[MetricRecord]:
        """Return the records aggregated since the last drain."""
        with self._lock:
            records = list(self._values.values())
            self._values = {}
        return records

    def _record(self, sample: StatsdSample) -> None:
        tags = dict(sample.tags)
        tags["container_id"] = self.container_id
        key = (sample.name, sample.kind, tuple(sorted(tags.items())))

        with self._lock:
            record = self._values.get(key)
            if record is None:
                record = MetricRecord(
                    name=sample.name, kind=sample.kind, fields={"value": 0}, tags=tags
                )
                self._values[key] = record

            if sample.kind == MetricKind.COUNTER:
                increment = sample.value
                if sample.sample_rate != 1.0:
                    increment = sample.value / sample.sample_rate
                record.fields["value"] += increment
            elif sample.relative:
                record.fields["value"] += sample.value
            else:
                record.fields["value"] = sample.value

    def _serve(self) -> None:
        while self._running:
            try:
                data, _ = self._sock.recvfrom(MAX_PACKET_SIZE)
            except socket.timeout:
                continue
            except OSError:
                if self._running:
                    logger.error(f"Statsd listener for {self.container_id} failed", exc_info=True)
                break
            self.handle_packet(data)
