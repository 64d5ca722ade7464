"""Base class for metric collectors."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from dataclasses import dataclass, field

from mesos_collector.exceptions import CollectorError
from mesos_collector.models import MetricRecord


@dataclass
class CollectResult:
    """Records gathered by one collection, plus the per-target errors."""

    records: List[MetricRecord] = field(default_factory=list)
    errors: List[CollectorError] = field(default_factory=list)

    def extend(self, other: "CollectResult") -> None:
        self.records.extend(other.records)
        self.errors.extend(other.errors)


class BaseCollector(ABC):
    """Abstract base class for all collectors."""

    def __init__(self, config: Optional[Dict] = None):
        """Initialize the collector.

        Args:
            config: Optional configuration dictionary
        """
        self.config = config or {}

    @abstractmethod
    def collect(self) -> CollectResult:
        """Collect metric records.

        Failures of individual targets are reported in the result's errors
        instead of being raised.

        Returns:
            Records and per-target errors
        """
        pass

    @abstractmethod
    def validate_config(self) -> bool:
        """Validate the collector configuration.

        Returns:
            True if configuration is valid
        """
        pass
