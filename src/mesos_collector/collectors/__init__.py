"""Metric collectors for scrape targets and Mesos nodes."""

from .base_collector import BaseCollector, CollectResult
from .accumulator import Accumulator, accumulate
from .prometheus_collector import PrometheusCollector
from .mesos_collector import MesosCollector

__all__ = [
    "BaseCollector",
    "CollectResult",
    "Accumulator",
    "accumulate",
    "PrometheusCollector",
    "MesosCollector",
]
