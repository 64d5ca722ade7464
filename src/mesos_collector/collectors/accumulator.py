"""In-process accumulator that sorts records by metric kind."""

from typing import Callable, Dict, List, Optional
from datetime import datetime
import threading

from mesos_collector.models import MetricKind, MetricRecord, Number


class Accumulator:
    """Collects records handed over at the end of a collection cycle.

    Records are kept per kind so that an output stage can treat counters,
    gauges, summaries, histograms and untyped fields differently.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[MetricKind, List[MetricRecord]] = {
            kind: [] for kind in MetricKind
        }
        self.errors: List[Exception] = []

    def add_fields(self, name, fields, tags, timestamp=None) -> None:
        self._add(MetricKind.UNTYPED, name, fields, tags, timestamp)

    def add_counter(self, name, fields, tags, timestamp=None) -> None:
        self._add(MetricKind.COUNTER, name, fields, tags, timestamp)

    def add_gauge(self, name, fields, tags, timestamp=None) -> None:
        self._add(MetricKind.GAUGE, name, fields, tags, timestamp)

    def add_summary(self, name, fields, tags, timestamp=None) -> None:
        self._add(MetricKind.SUMMARY, name, fields, tags, timestamp)

    def add_histogram(self, name, fields, tags, timestamp=None) -> None:
        self._add(MetricKind.HISTOGRAM, name, fields, tags, timestamp)

    def add_error(self, error: Optional[Exception]) -> None:
        if error is None:
            return
        with self._lock:
            self.errors.append(error)

    def records(self, kind: Optional[MetricKind] = None) -> List[MetricRecord]:
        """Return accumulated records, optionally only those of one kind."""
        with self._lock:
            if kind is not None:
                return list(self._records[kind])
            return [r for records in self._records.values() for r in records]

    def _add(
        self,
        kind: MetricKind,
        name: str,
        fields: Dict[str, Number],
        tags: Dict[str, str],
        timestamp: Optional[datetime],
    ) -> None:
        record = MetricRecord(name=name, kind=kind, fields=dict(fields), tags=dict(tags))
        if timestamp is not None:
            record.timestamp = timestamp
        with self._lock:
            self._records[kind].append(record)


def _adder_for(acc: Accumulator, kind: MetricKind) -> Callable:
    return {
        MetricKind.COUNTER: acc.add_counter,
        MetricKind.GAUGE: acc.add_gauge,
        MetricKind.SUMMARY: acc.add_summary,
        MetricKind.HISTOGRAM: acc.add_histogram,
        MetricKind.UNTYPED: acc.add_fields,
    }[kind]


def accumulate(acc: Accumulator, records: List[MetricRecord]) -> None:
    """Hand records to the accumulator method matching their kind."""
    for record in records:
        _adder_for(acc, record.kind)(
            record.name, record.fields, record.tags, record.timestamp
        )
