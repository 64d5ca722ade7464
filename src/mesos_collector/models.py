"""Core data model shared by discovery, scraping and enrichment."""

from typing import Dict, Optional, Union
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from urllib.parse import urlsplit, urlunsplit

Number = Union[int, float]


class MetricKind(str, Enum):
    """Kind of a parsed metric, as declared by the exposition payload."""

    COUNTER = "counter"
    GAUGE = "gauge"
    SUMMARY = "summary"
    HISTOGRAM = "histogram"
    UNTYPED = "untyped"


@dataclass
class MetricRecord:
    """A single tagged time-series record.

    Records are produced by parsing an exposition payload. After parsing only
    the enrichment stage touches them, by adding or removing tags (and
    occasionally rewriting field keys or the name).
    """

    name: str
    kind: MetricKind
    fields: Dict[str, Number]
    tags: Dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def add_tag(self, key: str, value: str) -> None:
        self.tags[key] = value

    def remove_tag(self, key: str) -> None:
        self.tags.pop(key, None)

    def get_tag(self, key: str) -> Optional[str]:
        return self.tags.get(key)

    def copy(self) -> "MetricRecord":
        """Return an independent copy of this record."""
        return MetricRecord(
            name=self.name,
            kind=self.kind,
            fields=dict(self.fields),
            tags=dict(self.tags),
            timestamp=self.timestamp,
        )

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "kind": self.kind.value,
            "fields": self.fields,
            "tags": self.tags,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ScrapeTarget:
    """A resolved endpoint to scrape during one collection cycle.

    Targets are de-duplicated on ``url``, the final resolved URL string.
    ``original_url`` is the URL before any address substitution and is what
    ends up in the ``url`` tag of scraped records.
    """

    url: str
    original_url: str
    address: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)

    @property
    def scheme(self) -> str:
        return urlsplit(self.url).scheme

    def url_tag(self) -> str:
        """Return the original URL with any user info removed."""
        return strip_user_info(self.original_url)

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return {
            "url": self.url,
            "original_url": self.original_url,
            "address": self.address,
            "tags": self.tags,
        }


@dataclass
class TaskPort:
    """A port declared in a task's discovery info."""

    number: int
    name: Optional[str] = None
    protocol: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class ContainerInfo:
    """Workload metadata cached for a container id."""

    container_id: str
    task_name: str
    executor_name: str = ""
    framework_name: str = ""
    task_labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class RegisteredContainer:
    """A locally registered container and its statsd listener address."""

    container_id: str
    statsd_host: str
    statsd_port: int

    def to_dict(self) -> Dict:
        """Convert to dictionary, keys ordered as persisted."""
        return {
            "container_id": self.container_id,
            "statsd_host": self.statsd_host,
            "statsd_port": self.statsd_port,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "RegisteredContainer":
        """Build a registration from its serialized form.

        Raises:
            ValueError: If a field is missing or has the wrong type
        """
        try:
            container_id = data["container_id"]
            host = data["statsd_host"]
            port = data["statsd_port"]
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid container registration: {e}") from e

        if not isinstance(container_id, str) or not container_id:
            raise ValueError("container_id must be a non-empty string")
        if not isinstance(host, str) or not host:
            raise ValueError("statsd_host must be a non-empty string")
        if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
            raise ValueError("statsd_port must be an integer between 1 and 65535")

        return cls(container_id=container_id, statsd_host=host, statsd_port=port)


def strip_user_info(url: str) -> str:
    """Remove ``user:password@`` from a URL, leaving everything else intact."""
    parts = urlsplit(url)
    if "@" not in parts.netloc:
        return url
    netloc = parts.netloc.rsplit("@", 1)[1]
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
